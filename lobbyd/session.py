from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import AlreadyBound, InvalidTransition
from .models import Identity

if TYPE_CHECKING:
    from .service import LobbyService


class SessionState(str, Enum):
    UNBOUND = "unbound"
    JOINING = "joining"  # admin credential check in flight
    ACTIVE = "active"
    BANNED = "banned"
    CLOSED = "closed"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.UNBOUND: frozenset(
        {SessionState.JOINING, SessionState.ACTIVE, SessionState.CLOSED}
    ),
    SessionState.JOINING: frozenset(
        {SessionState.UNBOUND, SessionState.ACTIVE, SessionState.CLOSED}
    ),
    SessionState.ACTIVE: frozenset({SessionState.BANNED, SessionState.CLOSED}),
    SessionState.BANNED: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


@dataclass
class _RateState:
    """Token bucket state for rate limiting."""

    tokens: float
    last_refill: float


@dataclass
class Session:
    channel: Any
    state: SessionState = SessionState.UNBOUND
    identity: Identity | None = None
    pending_name: str | None = None
    rate: _RateState | None = None
    connected_at: float = field(default_factory=time.monotonic)

    @property
    def accepts_events(self) -> bool:
        return self.state in (
            SessionState.UNBOUND,
            SessionState.JOINING,
            SessionState.ACTIVE,
        )

    def advance(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"cannot go from {self.state.value} to {new_state.value}"
            )
        self.state = new_state


class SessionManager:
    """
    Manages session lifecycle for lobby connections.

    This class is responsible for:
    - Session creation when a connection opens
    - Binding a connection to exactly one identity
    - Identity indexing for ban/target lookups
    - Rate limiting with token bucket algorithm
    - Session cleanup and teardown
    """

    def __init__(self, hub: LobbyService) -> None:
        self.hub = hub
        self.log = logging.getLogger("lobbyd.session")
        self.sessions: dict[Any, Session] = {}
        self._index_by_id: dict[str, Any] = {}  # identity id -> channel

    def on_connect(self, channel) -> Session:
        sess = Session(channel=channel)

        per_min = int(self.hub.config.rate_limit_msgs_per_minute)
        if per_min > 0:
            sess.rate = _RateState(tokens=float(per_min), last_refill=time.monotonic())

        self.sessions[channel] = sess
        self.log.info("Session created channel=%s", self.hub._fmt_channel(channel))
        return sess

    def get_session(self, channel) -> Session | None:
        return self.sessions.get(channel)

    def begin_join(self, channel, name: str) -> None:
        sess = self.sessions[channel]
        sess.advance(SessionState.JOINING)
        sess.pending_name = name

    def abort_join(self, channel) -> None:
        sess = self.sessions.get(channel)
        if sess is None or sess.state is not SessionState.JOINING:
            return
        sess.pending_name = None
        sess.advance(SessionState.UNBOUND)

    def bind(self, channel, identity: Identity) -> Session:
        """Attach ``identity`` to ``channel``. A channel binds at most once."""
        sess = self.sessions[channel]
        if sess.identity is not None:
            raise AlreadyBound()

        sess.advance(SessionState.ACTIVE)
        sess.identity = identity
        sess.pending_name = None
        self._index_by_id[identity.id] = channel
        return sess

    def mark_banned(self, channel) -> None:
        sess = self.sessions.get(channel)
        if sess is None:
            return
        sess.advance(SessionState.BANNED)
        if sess.identity is not None:
            self._index_by_id.pop(sess.identity.id, None)

    def mark_closing(self, channel) -> None:
        """Stop accepting events from a channel we are about to close."""
        sess = self.sessions.get(channel)
        if sess is None or sess.state is SessionState.CLOSED:
            return
        sess.advance(SessionState.CLOSED)

    def on_channel_closed(self, channel) -> Session | None:
        """
        Drop the session for a closed channel.

        Returns the session, still carrying its identity, so the caller can
        release it.
        """
        sess = self.sessions.pop(channel, None)
        if sess is None:
            return None

        last_state = sess.state
        if sess.state is not SessionState.CLOSED:
            sess.advance(SessionState.CLOSED)

        if sess.identity is not None:
            if self._index_by_id.get(sess.identity.id) is channel:
                self._index_by_id.pop(sess.identity.id, None)

        self.log.info(
            "Session closed channel=%s state=%s age=%.1fs",
            self.hub._fmt_channel(channel),
            last_state.value,
            self.age(sess),
        )

        return sess

    def age(self, sess: Session) -> float:
        """Seconds since the session's connection opened."""
        return max(0.0, time.monotonic() - sess.connected_at)

    def get_channel_by_identity(self, identity_id: str):
        """Look up channel by bound identity id (O(1))."""
        return self._index_by_id.get(identity_id)

    def refill_and_take(self, channel, cost: float = 1.0) -> bool:
        """
        Token bucket rate limiting.

        Refills tokens based on elapsed time and attempts to take `cost` tokens.
        Returns True if tokens were available and taken, False if rate limited.
        """
        sess = self.sessions.get(channel)
        state = sess.rate if sess is not None else None
        if state is None:
            return True

        now = time.monotonic()
        per_min = float(max(1, int(self.hub.config.rate_limit_msgs_per_minute)))
        rate_per_s = per_min / 60.0
        elapsed = max(0.0, now - state.last_refill)
        state.tokens = min(per_min, state.tokens + elapsed * rate_per_s)
        state.last_refill = now

        if state.tokens < cost:
            return False

        state.tokens -= cost
        return True

    def live_channels(self) -> list:
        """Channels still taking part; banned and closing ones are left out."""
        return [ch for ch, sess in self.sessions.items() if sess.accepts_events]

    def admin_channels(self) -> list:
        return [
            ch
            for ch, sess in self.sessions.items()
            if sess.state is SessionState.ACTIVE
            and sess.identity is not None
            and sess.identity.is_admin
            and ch.is_open()
        ]

    def get_stats(self) -> dict[str, int]:
        """Get session statistics for monitoring."""
        by_state: dict[str, int] = {s.value: 0 for s in SessionState}
        for sess in self.sessions.values():
            by_state[sess.state.value] += 1
        oldest = max((self.age(s) for s in self.sessions.values()), default=0.0)
        return {"total": len(self.sessions), "oldest_s": int(oldest), **by_state}
