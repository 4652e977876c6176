"""Role checks for inbound actions."""

from __future__ import annotations

from .constants import (
    T_ADMIN_MESSAGE,
    T_BAN_USER,
    T_CLEAR_CHAT,
    T_DELETE_FEATURE_REQUEST,
    T_FEATURE_REQUEST,
    T_JOIN,
    T_UNBAN_USER,
)
from .errors import AlreadyBound, NotJoined, Unauthorized
from .models import Identity

ADMIN_ACTIONS = frozenset(
    {
        T_ADMIN_MESSAGE,
        T_BAN_USER,
        T_UNBAN_USER,
        T_CLEAR_CHAT,
        T_DELETE_FEATURE_REQUEST,
    }
)

REGULAR_ONLY_ACTIONS = frozenset({T_FEATURE_REQUEST})


def authorize(action: str, identity: Identity | None) -> None:
    """Raise unless ``identity`` may perform ``action``.

    ``identity`` is whatever is bound to the calling connection, or None for
    a connection that has not joined yet. Unknown actions are not gated
    here; the router drops them.
    """
    if action == T_JOIN:
        if identity is not None:
            raise AlreadyBound()
        return

    if identity is None:
        raise NotJoined()

    if action in ADMIN_ACTIONS and not identity.is_admin:
        raise Unauthorized()

    if action in REGULAR_ONLY_ACTIONS and identity.is_admin:
        raise Unauthorized("Admins cannot submit feature requests.")
