"""Handlers for chat, moderation and feature-request actions.

Role checks happen in the router before any of these run; handlers only
validate their payloads, mutate lobby state and fan out the result.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import (
    CLOSE_BANNED,
    P_REQUEST_ID,
    P_TEXT,
    P_USER_ID,
    T_BANNED,
    T_CHAT_HISTORY,
    T_NEW_MESSAGE,
    T_UPDATE_FEATURE_REQUESTS,
)
from .envelope import make_envelope
from .errors import MalformedEvent, Unauthorized
from .models import ChatMessage, FeatureRequest
from .session import Session
from .util import normalize_text

if TYPE_CHECKING:
    from .service import LobbyService


class CommandHandler:
    """Handles chat and operator actions for the lobby."""

    def __init__(self, hub: LobbyService) -> None:
        self.hub = hub
        self.log = logging.getLogger("lobbyd.commands")

    def _require_text(self, env: dict) -> str:
        limit = int(self.hub.config.max_text_chars)
        text = normalize_text(env.get(P_TEXT), limit)
        if text is None:
            if limit:
                raise MalformedEvent(
                    f"text must be a non-empty string of at most {limit} characters"
                )
            raise MalformedEvent("text must be a non-empty string")
        return text

    def _require_id(self, env: dict, key: str) -> str:
        value = env.get(key)
        if not isinstance(value, str) or not value.strip():
            raise MalformedEvent(f"missing {key}")
        return value.strip()

    def _post(self, message: ChatMessage) -> None:
        self.hub.state.messages.append(message)
        # Sender is part of the audience; clients do not echo locally.
        self.hub.broadcaster.to_all(make_envelope(T_NEW_MESSAGE, message=message.to_wire()))

    def _push_feature_requests(self) -> None:
        self.hub.broadcaster.to_admins(
            make_envelope(
                T_UPDATE_FEATURE_REQUESTS,
                requests=[r.to_wire() for r in self.hub.state.feature_requests.snapshot()],
            )
        )

    def handle_chat_message(self, channel, sess: Session, env: dict) -> None:
        text = self._require_text(env)
        self.log.info("New message from %s: %s", sess.identity.name, text)
        self._post(ChatMessage.by(sess.identity, text))

    def handle_admin_message(self, channel, sess: Session, env: dict) -> None:
        text = self._require_text(env)
        self.log.info("Admin announcement from %s: %s", sess.identity.name, text)
        self._post(ChatMessage.by(sess.identity, text))

    def handle_ban_user(self, channel, sess: Session, env: dict) -> None:
        target_id = self._require_id(env, P_USER_ID)
        if target_id == sess.identity.id:
            raise Unauthorized("You cannot ban yourself.")

        record = self.hub.state.registry.ban(target_id)
        self.log.info("Admin %s has banned user: %s", sess.identity.name, record.name)

        target = self.hub.session_manager.get_channel_by_identity(target_id)
        if target is not None:
            self.hub.broadcaster.send(
                target,
                make_envelope(T_BANNED, message="You have been banned from this chat."),
            )
            self.hub.session_manager.mark_banned(target)
            self.hub.drop_channel(target, CLOSE_BANNED, "banned")

        self.hub.broadcaster.user_lists(excluded=target)

    def handle_unban_user(self, channel, sess: Session, env: dict) -> None:
        target_id = self._require_id(env, P_USER_ID)
        record = self.hub.state.registry.unban(target_id)
        self.log.info("Admin %s has unbanned user: %s", sess.identity.name, record.name)
        self.hub.broadcaster.user_lists()

    def handle_clear_chat(self, channel, sess: Session, env: dict) -> None:
        dropped = self.hub.state.messages.clear()
        self.log.info("Admin %s cleared the chat (%s messages)", sess.identity.name, dropped)
        self.hub.broadcaster.to_all(make_envelope(T_CHAT_HISTORY, messages=[]))

    def handle_feature_request(self, channel, sess: Session, env: dict) -> None:
        text = self._require_text(env)
        self.hub.state.feature_requests.add(FeatureRequest.by(sess.identity, text))
        self.log.info("New feature request from %s: %s", sess.identity.name, text)
        self._push_feature_requests()

    def handle_delete_feature_request(self, channel, sess: Session, env: dict) -> None:
        request_id = self._require_id(env, P_REQUEST_ID)
        self.hub.state.feature_requests.remove(request_id)
        self.log.info(
            "Admin %s deleted feature request: %s", sess.identity.name, request_id
        )
        self._push_feature_requests()
