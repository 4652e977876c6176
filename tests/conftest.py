import itertools
import json

import pytest

from lobbyd.codec import encode
from lobbyd.config import LobbyRuntimeConfig
from lobbyd.service import LobbyService
from lobbyd.trust import TrustManager, hash_secret

ADMIN_PASSWORD = "toor"

_ids = itertools.count(1)


class FakeChannel:
    """Records what the lobby sends instead of writing to a socket."""

    def __init__(self) -> None:
        self.channel_id = f"fake-{next(_ids):04d}"
        self.sent: list[dict] = []
        self.open = True
        self.close_code: int | None = None
        self.close_reason: str | None = None

    def is_open(self) -> bool:
        return self.open

    def send_nowait(self, payload: str) -> None:
        self.sent.append(json.loads(payload))

    async def close(self, code: int, reason: str) -> None:
        self.open = False
        self.close_code = code
        self.close_reason = reason

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]

    def of_type(self, t: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == t]

    def last(self, t: str) -> dict:
        matches = self.of_type(t)
        assert matches, f"no {t!r} in {self.types()}"
        return matches[-1]


@pytest.fixture(scope="session")
def admin_digest() -> str:
    return hash_secret(ADMIN_PASSWORD, rounds=4)


@pytest.fixture
def config(admin_digest) -> LobbyRuntimeConfig:
    return LobbyRuntimeConfig(admin_password_hash=admin_digest)


@pytest.fixture
def lobby(config) -> LobbyService:
    return LobbyService(
        config,
        trust_manager=TrustManager(config.admin_name, config.admin_password_hash),
    )


@pytest.fixture
def connect(lobby):
    def _connect() -> FakeChannel:
        ch = FakeChannel()
        lobby.on_connect(ch)
        return ch

    return _connect


@pytest.fixture
def send(lobby):
    async def _send(channel: FakeChannel, msg_type: str, **payload) -> None:
        await lobby.handle_message(channel, encode({"type": msg_type, **payload}))
        await lobby.drain_closes()

    return _send


@pytest.fixture
def join(connect, send):
    async def _join(name: str, password: str | None = None) -> FakeChannel:
        ch = connect()
        payload = {"userName": name}
        if password is not None:
            payload["password"] = password
        await send(ch, "join", **payload)
        return ch

    return _join
