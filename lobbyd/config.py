from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from .constants import DEFAULT_ADMIN_NAME


@dataclass(frozen=True)
class LobbyRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 8080
    index_path: str | None = None
    admin_name: str = DEFAULT_ADMIN_NAME
    admin_password_hash: str | None = None
    close_on_bad_admin_password: bool = True
    nick_max_chars: int = 32
    max_text_chars: int = 2000
    rate_limit_msgs_per_minute: int = 240
    ping_interval_s: float = 20.0
    ping_timeout_s: float = 20.0
    max_message_bytes: int = 64 * 1024
    log_level: str = "INFO"
    log_websockets_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    log_datefmt: str | None = None


def default_config_path() -> Path:
    """`$LOBBYD_HOME/lobbyd.toml`, falling back to `~/.lobbyd/lobbyd.toml`."""
    home = os.environ.get("LOBBYD_HOME") or Path.home() / ".lobbyd"
    return Path(home) / "lobbyd.toml"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    try:
        path.chmod(0o700)
    except OSError:
        # Not every filesystem honours modes.
        pass


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: LobbyRuntimeConfig, data: dict) -> LobbyRuntimeConfig:
    lobby = data.get("lobby") if isinstance(data, dict) else None
    if isinstance(lobby, dict):
        data = {**data, **lobby}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        if "level" in log_table:
            mapped["log_level"] = log_table.get("level")
        if "websockets_level" in log_table:
            mapped["log_websockets_level"] = log_table.get("websockets_level")
        if "console" in log_table:
            mapped["log_console"] = log_table.get("console")
        if "file" in log_table:
            mapped["log_file"] = log_table.get("file")
        if "format" in log_table:
            mapped["log_format"] = log_table.get("format")
        if "datefmt" in log_table:
            mapped["log_datefmt"] = log_table.get("datefmt")
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")

    updates: dict[str, Any] = {k: v for k, v in data.items() if k in allowed}

    for key in ("index_path", "admin_password_hash", "log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None

    if "port" in updates:
        updates["port"] = int(updates["port"])

    return replace(base, **updates) if updates else base


def apply_env_overrides(
    cfg: LobbyRuntimeConfig, environ: Mapping[str, str] | None = None
) -> LobbyRuntimeConfig:
    """Apply ``PORT`` and ``LOBBYD_ADMIN_PASSWORD_HASH`` from the environment."""
    env = os.environ if environ is None else environ

    port = str(env.get("PORT", "")).strip()
    if port:
        try:
            cfg = replace(cfg, port=int(port))
        except ValueError as e:
            raise ValueError(f"invalid PORT {port!r}") from e

    digest = str(env.get("LOBBYD_ADMIN_PASSWORD_HASH", "")).strip()
    if digest:
        cfg = replace(cfg, admin_password_hash=digest)

    return cfg
