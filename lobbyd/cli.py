from __future__ import annotations

import argparse
import getpass
import os
import sys
from dataclasses import replace
from pathlib import Path

from .config import (
    LobbyRuntimeConfig,
    apply_config_data,
    apply_env_overrides,
    default_config_path,
    ensure_private_dir,
    load_toml,
)
from .constants import DEFAULT_ADMIN_NAME
from .logging_config import configure_logging
from .service import LobbyService
from .trust import hash_secret


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    content = f"""# lobbyd configuration (TOML)
#
# This file was created on first run.
# Edit it, then start lobbyd again.

[lobby]

# Address and port for both the chat page and the WebSocket endpoint.
# The PORT environment variable overrides `port`.
host = "0.0.0.0"
port = 8080

# Optional: serve this HTML file at / instead of the bundled page.
index_path = ""

# Administrator
#
# Joining as `admin_name` requires the password whose bcrypt hash is set
# below. Generate one with:
#
#   lobbyd --hash-password
#
# LOBBYD_ADMIN_PASSWORD_HASH in the environment overrides this value.
# Leave empty to disable admin logins.
admin_name = {DEFAULT_ADMIN_NAME!r}
admin_password_hash = ""

# Close the connection after a wrong admin password (otherwise the client
# may retry on the same connection).
close_on_bad_admin_password = true

# Limits.
nick_max_chars = 32
max_text_chars = 2000
max_message_bytes = 65536
rate_limit_msgs_per_minute = 240

# WebSocket keepalive (0 disables).
ping_interval_s = 20.0
ping_timeout_s = 20.0

[logging]

# Log level for lobbyd itself.
level = "INFO"

# Log level for the websockets library.
websockets_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)
    try:
        os.chmod(config_path, 0o600)
    except OSError:
        pass


def _prompt_password_hash() -> int:
    pwd = getpass.getpass("Password: ")
    confirm = getpass.getpass("Confirm:  ")
    if pwd != confirm:
        print("Passwords do not match.", file=sys.stderr)
        return 1
    if not pwd:
        print("Password must not be empty.", file=sys.stderr)
        return 1
    print(hash_secret(pwd))
    return 0


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lobbyd", description="Run a chat lobby server")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument(
        "--hash-password",
        action="store_true",
        help="Prompt for an admin password, print its bcrypt hash and exit",
    )

    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 8080)")
    p.add_argument("--index", default=None, help="HTML file served at /")
    p.add_argument("--admin-name", default=None, help="Reserved administrator name")

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace, environ=None) -> LobbyRuntimeConfig:
    """Defaults, then the config file, then the environment, then flags."""
    cfg = LobbyRuntimeConfig(config_path=str(args.config))

    if args.config and os.path.exists(args.config):
        cfg = apply_config_data(cfg, load_toml(args.config))

    cfg = apply_env_overrides(cfg, environ)

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.index is not None:
        cfg = replace(cfg, index_path=str(args.index) or None)
    if args.admin_name is not None:
        cfg = replace(cfg, admin_name=str(args.admin_name))
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    if args.hash_password:
        raise SystemExit(_prompt_password_hash())

    config_path = str(args.config)
    if not os.path.exists(config_path):
        _write_default_config(config_path)
        print(
            "Created default lobbyd config. Set admin_password_hash before starting:\n"
            f"- Config: {config_path}\n"
            "\nThen re-run lobbyd.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = LobbyService(cfg)
    svc.run_forever()


if __name__ == "__main__":
    main()
