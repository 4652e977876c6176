from __future__ import annotations

from datetime import datetime, timezone

from .constants import K_TYPE


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def make_envelope(msg_type: str, **payload) -> dict:
    env: dict[str, object] = {K_TYPE: str(msg_type)}
    for k, v in payload.items():
        if v is not None:
            env[k] = v
    return env


def validate_envelope(env: dict) -> None:
    if not isinstance(env, dict):
        raise TypeError("envelope must be a JSON object")

    for k in env.keys():
        if not isinstance(k, str):
            raise TypeError("envelope keys must be strings")

    if K_TYPE not in env:
        raise ValueError(f"missing envelope key {K_TYPE!r}")

    t = env[K_TYPE]
    if not isinstance(t, str):
        raise TypeError("message type must be a string")
    if not t:
        raise ValueError("message type must not be empty")
