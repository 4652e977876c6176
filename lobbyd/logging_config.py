from __future__ import annotations

import logging
import os
from pathlib import Path

from .config import LobbyRuntimeConfig

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_level(value, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value

    text = str(value).strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"

    level = logging.getLevelName(text)
    if isinstance(level, int):
        return level

    try:
        return int(text)
    except ValueError:
        return default


def _blank_to_none(value) -> str | None:
    if value is None:
        return None
    s = str(value)
    return s if s.strip() else None


def _build_handlers(cfg: LobbyRuntimeConfig, log_file: str | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    if log_file:
        p = Path(os.path.expanduser(log_file))
        p.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(p, encoding="utf-8"))
        try:
            os.chmod(p, 0o600)
        except OSError:
            pass

    return handlers


def configure_logging(
    cfg: LobbyRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Configure Python logging for lobbyd.

    Safe to call more than once; existing root handlers are replaced.
    ``override_file=""`` disables file logging even if the config sets one.
    """
    if override_file is not None:
        log_file = _blank_to_none(override_file)
    else:
        log_file = _blank_to_none(cfg.log_file)

    formatter = logging.Formatter(
        fmt=_blank_to_none(cfg.log_format) or DEFAULT_FORMAT,
        datefmt=_blank_to_none(cfg.log_datefmt),
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    for h in _build_handlers(cfg, log_file):
        h.setFormatter(formatter)
        root.addHandler(h)

    root.setLevel(_parse_level(override_level or cfg.log_level, logging.INFO))

    # The websockets library logs every handshake failure at INFO/ERROR.
    logging.getLogger("websockets").setLevel(
        _parse_level(cfg.log_websockets_level, logging.WARNING)
    )

    logging.captureWarnings(True)
