"""Connected and banned identities for the lobby."""

from __future__ import annotations

import logging

from .errors import Banned, NameTaken, NotFound
from .models import BanRecord, Identity, Role


class IdentityRegistry:
    """
    Tracks who is connected and who is banned.

    Handles:
    - Name uniqueness among currently connected identities
    - Name reservations while a join is waiting on credential checks
    - Moving identities between the connected and banned sets

    The connected and banned sets are always disjoint. The registry never
    talks to clients; callers broadcast the resulting state.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("lobbyd.registry")

        self._connected: dict[str, Identity] = {}  # id -> identity
        self._banned: dict[str, BanRecord] = {}  # id -> ban record
        self._pending: set[str] = set()  # names with a join in flight

    def is_banned_name(self, name: str) -> bool:
        return any(rec.name == name for rec in self._banned.values())

    def is_connected_name(self, name: str) -> bool:
        return any(ident.name == name for ident in self._connected.values())

    def check_name(self, name: str) -> None:
        """Raise if ``name`` cannot join right now.

        Bans are checked before uniqueness so a banned name is always
        terminated, even if someone else currently holds it.
        """
        if self.is_banned_name(name):
            raise Banned()
        if self.is_connected_name(name) or name in self._pending:
            raise NameTaken()

    def reserve(self, name: str) -> None:
        """Hold ``name`` while its join is suspended on a credential check."""
        self.check_name(name)
        self._pending.add(name)

    def release(self, name: str) -> None:
        self._pending.discard(name)

    def register(self, name: str, role: Role = Role.REGULAR) -> Identity:
        """Create and record a new connected identity.

        A reservation for ``name`` is consumed by a successful registration.
        """
        self._pending.discard(name)
        self.check_name(name)
        identity = Identity(name=name, role=role)
        self._connected[identity.id] = identity
        self.log.debug("Registered id=%s name=%r role=%s", identity.id, name, role.value)
        return identity

    def remove(self, identity_id: str) -> bool:
        """Remove from the connected set. Returns False if it was not there."""
        return self._connected.pop(identity_id, None) is not None

    def get(self, identity_id: str) -> Identity | None:
        return self._connected.get(identity_id)

    def ban(self, identity_id: str) -> BanRecord:
        """Move a connected identity to the ban set."""
        identity = self._connected.pop(identity_id, None)
        if identity is None:
            raise NotFound("No such connected user.")
        record = BanRecord.from_identity(identity)
        self._banned[record.id] = record
        return record

    def unban(self, identity_id: str) -> BanRecord:
        """Drop a ban record. The identity is not reconnected."""
        record = self._banned.pop(identity_id, None)
        if record is None:
            raise NotFound("No such banned user.")
        return record

    def connected(self) -> list[Identity]:
        return list(self._connected.values())

    def banned(self) -> list[BanRecord]:
        return list(self._banned.values())

    def user_lists(self) -> dict[str, list[dict]]:
        return {
            "connectedUsers": [i.to_wire() for i in self._connected.values()],
            "bannedUsers": [b.to_wire() for b in self._banned.values()],
        }

    def get_stats(self) -> dict[str, int]:
        return {
            "connected_count": len(self._connected),
            "banned_count": len(self._banned),
            "pending_count": len(self._pending),
        }
