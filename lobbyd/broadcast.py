"""Fan-out of lobby events to connected channels."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .codec import encode
from .constants import T_ALERT, T_CONNECTION_DENIED, T_UPDATE_USER_LISTS
from .envelope import make_envelope

if TYPE_CHECKING:
    from .service import LobbyService


class Broadcaster:
    """
    Delivers envelopes to one of four audiences.

    Handles:
    - All live channels
    - All live channels but one
    - Channels bound to an admin identity
    - A single channel

    A channel is anything with ``is_open()`` and ``send_nowait(text)``.
    Delivery is fire-and-forget: channels that are not open are skipped and
    nothing is queued or retried. Writes never suspend, so every channel sees
    events in the order they were issued.
    """

    def __init__(self, hub: LobbyService) -> None:
        self.hub = hub
        self.log = logging.getLogger("lobbyd.broadcast")

    def _deliver(self, channels: Iterable, env: dict) -> int:
        payload = encode(env)
        sent = 0
        for channel in channels:
            if channel is None or not channel.is_open():
                continue
            try:
                channel.send_nowait(payload)
                sent += 1
            except Exception as e:
                self.log.debug(
                    "Dropped %s to channel=%s: %s",
                    env.get("type"),
                    self.hub._fmt_channel(channel),
                    e,
                )
        return sent

    def send(self, channel, env: dict) -> int:
        return self._deliver((channel,), env)

    def to_all(self, env: dict) -> int:
        return self._deliver(self.hub.session_manager.live_channels(), env)

    def to_all_but(self, excluded, env: dict) -> int:
        return self._deliver(
            [ch for ch in self.hub.session_manager.live_channels() if ch is not excluded],
            env,
        )

    def to_admins(self, env: dict) -> int:
        return self._deliver(self.hub.session_manager.admin_channels(), env)

    def alert(self, channel, text: str) -> int:
        return self.send(channel, make_envelope(T_ALERT, message=text))

    def deny(self, channel, reason: str, text: str) -> int:
        return self.send(
            channel, make_envelope(T_CONNECTION_DENIED, reason=reason, message=text)
        )

    def user_lists(self, *, excluded=None) -> int:
        env = make_envelope(T_UPDATE_USER_LISTS, **self.hub.state.registry.user_lists())
        if excluded is not None:
            return self.to_all_but(excluded, env)
        return self.to_all(env)
