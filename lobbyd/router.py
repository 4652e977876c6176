from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING

from .codec import decode
from .constants import (
    CLOSE_AUTH_FAILED,
    CLOSE_BANNED,
    K_TYPE,
    P_PASSWORD,
    P_USER_NAME,
    R_ALREADY_JOINED,
    R_INCORRECT_PASSWORD,
    R_INVALID_NAME,
    R_NAME_TAKEN,
    T_ADMIN_MESSAGE,
    T_BAN_USER,
    T_BANNED,
    T_CHAT_MESSAGE,
    T_CLEAR_CHAT,
    T_DELETE_FEATURE_REQUEST,
    T_FEATURE_REQUEST,
    T_JOIN,
    T_UNBAN_USER,
)
from .envelope import make_envelope, validate_envelope
from .errors import (
    AlreadyBound,
    Banned,
    IncorrectCredentials,
    InvalidName,
    LobbyError,
    NameTaken,
)
from .gate import authorize
from .models import Role
from .session import Session, SessionState
from .util import normalize_nick

if TYPE_CHECKING:
    from .service import LobbyService

_DENY_REASONS: dict[type[LobbyError], str] = {
    NameTaken: R_NAME_TAKEN,
    IncorrectCredentials: R_INCORRECT_PASSWORD,
    InvalidName: R_INVALID_NAME,
    AlreadyBound: R_ALREADY_JOINED,
}


class MessageRouter:
    """
    Handles message routing and dispatching for the lobby.

    This class is responsible for:
    - Decoding and validating incoming frames
    - Rate limiting
    - Checking each action against the caller's bound identity
    - Dispatching messages by type (join, chat, moderation, feature requests)
    - Turning rejections into replies for the caller only
    """

    def __init__(self, hub: LobbyService) -> None:
        self.hub = hub
        self.log = logging.getLogger("lobbyd.router")

        commands = hub.command_handler
        self._handlers = {
            T_JOIN: self._handle_join,
            T_CHAT_MESSAGE: commands.handle_chat_message,
            T_ADMIN_MESSAGE: commands.handle_admin_message,
            T_BAN_USER: commands.handle_ban_user,
            T_UNBAN_USER: commands.handle_unban_user,
            T_CLEAR_CHAT: commands.handle_clear_chat,
            T_FEATURE_REQUEST: commands.handle_feature_request,
            T_DELETE_FEATURE_REQUEST: commands.handle_delete_feature_request,
        }

    async def route_message(self, channel, data: str | bytes) -> None:
        """Main entry point for one inbound frame."""
        sess = self.hub.session_manager.get_session(channel)
        if sess is None or not sess.accepts_events:
            return

        if not self.hub.session_manager.refill_and_take(channel, 1.0):
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug(
                    "Rate limited channel=%s", self.hub._fmt_channel(channel)
                )
            self.hub.broadcaster.alert(channel, "rate limited")
            return

        try:
            env = decode(data)
            validate_envelope(env)
        except Exception as e:
            self.log.debug(
                "Bad message channel=%s bytes=%s err=%s",
                self.hub._fmt_channel(channel),
                len(data),
                e,
            )
            self.hub.broadcaster.alert(channel, f"bad message: {e}")
            return

        t = env[K_TYPE]
        handler = self._handlers.get(t)
        if handler is None:
            self.log.warning(
                "Unknown message type %r channel=%s", t, self.hub._fmt_channel(channel)
            )
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX channel=%s t=%s user=%r",
                self.hub._fmt_channel(channel),
                t,
                sess.identity.name if sess.identity else None,
            )

        try:
            authorize(t, sess.identity)
            result = handler(channel, sess, env)
            if inspect.isawaitable(result):
                await result
        except LobbyError as e:
            self._reject(channel, sess, t, e)

    def _reject(self, channel, sess: Session, t: str, err: LobbyError) -> None:
        """Tell only the caller what went wrong, closing on fatal errors."""
        if isinstance(err, Banned):
            self.hub.broadcaster.send(channel, make_envelope(T_BANNED, message=err.message))
            self.hub.session_manager.mark_closing(channel)
            self.hub.drop_channel(channel, CLOSE_BANNED, "banned")
            return

        if t != T_JOIN:
            self.hub.broadcaster.alert(channel, err.message)
            return

        reason = _DENY_REASONS.get(type(err))
        if reason is None:
            self.hub.broadcaster.alert(channel, err.message)
            return

        self.hub.broadcaster.deny(channel, reason, err.message)
        if isinstance(err, IncorrectCredentials) and self.hub.config.close_on_bad_admin_password:
            self.hub.session_manager.mark_closing(channel)
            self.hub.drop_channel(channel, CLOSE_AUTH_FAILED, "incorrect admin password")

    async def _handle_join(self, channel, sess: Session, env: dict) -> None:
        """Handle join (only valid on an unbound channel)."""
        if sess.state is not SessionState.UNBOUND:
            raise AlreadyBound()

        registry = self.hub.state.registry
        trust = self.hub.trust_manager

        name = normalize_nick(env.get(P_USER_NAME), self.hub.config.nick_max_chars)
        if name is None:
            raise InvalidName()

        registry.check_name(name)

        role = Role.REGULAR
        if trust.is_admin_name(name):
            # Hold the name so a second join cannot slip in while the
            # credential check is suspended.
            registry.reserve(name)
            self.hub.session_manager.begin_join(channel, name)
            try:
                ok = await trust.verify_admin(env.get(P_PASSWORD))
            finally:
                registry.release(name)

            if sess.state is not SessionState.JOINING:
                # Channel went away while we were checking.
                return

            if not ok:
                self.hub.session_manager.abort_join(channel)
                self.log.info(
                    "Incorrect admin password channel=%s", self.hub._fmt_channel(channel)
                )
                raise IncorrectCredentials()
            role = Role.ADMIN

        try:
            identity = registry.register(name, role)
        except LobbyError:
            self.hub.session_manager.abort_join(channel)
            raise

        self.hub.session_manager.bind(channel, identity)
        self.hub.welcome(channel, identity)
