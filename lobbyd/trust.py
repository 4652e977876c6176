"""Administrator credential handling for the lobby."""

from __future__ import annotations

import asyncio
import logging

import bcrypt


def hash_secret(secret: str, *, rounds: int = 12) -> str:
    """Return a bcrypt digest for ``secret``."""
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def verify_secret(secret: str, digest: str) -> bool:
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), digest.encode("ascii"))
    except ValueError:
        # Malformed digest in config.
        return False


class TrustManager:
    """
    Decides who may act as the lobby administrator.

    The administrator is whoever joins under the reserved name with the
    secret matching the configured bcrypt digest. Without a configured
    digest nobody can become administrator.
    """

    def __init__(self, admin_name: str, admin_password_hash: str | None) -> None:
        self.log = logging.getLogger("lobbyd.trust")
        self.admin_name = admin_name
        self._digest = admin_password_hash or None

        if self._digest is None:
            self.log.warning(
                "No admin_password_hash configured; %r logins will be refused",
                admin_name,
            )

    def is_admin_name(self, name: str) -> bool:
        return name == self.admin_name

    async def verify_admin(self, password) -> bool:
        """Check ``password`` against the admin digest without blocking the loop."""
        if self._digest is None or not isinstance(password, str) or not password:
            return False

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, verify_secret, password, self._digest)
