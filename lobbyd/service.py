from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from http import HTTPStatus
from importlib import resources

from websockets.asyncio.server import ServerConnection, broadcast, serve
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response
from websockets.protocol import State

from .broadcast import Broadcaster
from .commands import CommandHandler
from .config import LobbyRuntimeConfig
from .constants import (
    T_CHAT_HISTORY,
    T_JOIN_SUCCESS,
    T_UPDATE_FEATURE_REQUESTS,
)
from .envelope import make_envelope
from .history import FeatureRequestQueue, MessageLog
from .models import Identity
from .registry import IdentityRegistry
from .router import MessageRouter
from .session import SessionManager
from .trust import TrustManager
from .util import expand_path


@dataclass
class LobbyState:
    """Everything the lobby knows; lives as long as the process."""

    registry: IdentityRegistry = field(default_factory=IdentityRegistry)
    messages: MessageLog = field(default_factory=MessageLog)
    feature_requests: FeatureRequestQueue = field(default_factory=FeatureRequestQueue)


class WebSocketChannel:
    """Adapts a websockets server connection to the channel interface."""

    def __init__(self, ws: ServerConnection) -> None:
        self.ws = ws
        self.channel_id = str(ws.id)

    def is_open(self) -> bool:
        return self.ws.state is State.OPEN

    def send_nowait(self, payload: str) -> None:
        # broadcast() writes without waiting for the buffer to drain and
        # skips connections that are no longer open.
        broadcast([self.ws], payload)

    async def close(self, code: int, reason: str) -> None:
        await self.ws.close(code=code, reason=reason)


class LobbyService:
    def __init__(
        self,
        config: LobbyRuntimeConfig,
        *,
        trust_manager: TrustManager | None = None,
    ) -> None:
        self.config = config
        self.log = logging.getLogger("lobbyd.service")

        # All shared state is touched only from handlers running on the
        # event loop, one frame at a time; no locks needed.
        self.state = LobbyState()

        self.trust_manager = trust_manager or TrustManager(
            config.admin_name, config.admin_password_hash
        )

        # Session manager for connection lifecycle
        self.session_manager = SessionManager(self)

        # Fan-out to connected channels
        self.broadcaster = Broadcaster(self)

        # Command handler for chat and operator actions
        self.command_handler = CommandHandler(self)

        # Message router for inbound frames
        self.router = MessageRouter(self)

        self._close_tasks: set[asyncio.Task] = set()
        self._shutdown = asyncio.Event()
        self._index_html: bytes | None = None

    def _fmt_channel(self, channel) -> str:
        cid = getattr(channel, "channel_id", None)
        if isinstance(cid, str) and cid:
            return cid[:8]
        return "-"

    # Connection lifecycle

    def on_connect(self, channel) -> None:
        self.session_manager.on_connect(channel)

    async def handle_message(self, channel, data: str | bytes) -> None:
        """Handle one inbound frame; never raises."""
        try:
            await self.router.route_message(channel, data)
        except Exception:
            self.log.exception(
                "Unhandled error routing frame channel=%s", self._fmt_channel(channel)
            )

    def on_disconnect(self, channel) -> None:
        sess = self.session_manager.on_channel_closed(channel)
        if sess is None or sess.identity is None:
            return

        if self.state.registry.remove(sess.identity.id):
            self.log.info("%s has left the chat.", sess.identity.name)
            self.broadcaster.user_lists()

    def welcome(self, channel, identity: Identity) -> None:
        """Bring a freshly joined channel up to date, then tell everyone."""
        self.log.info(
            "%s has joined the chat. admin=%s channel=%s",
            identity.name,
            identity.is_admin,
            self._fmt_channel(channel),
        )

        self.broadcaster.send(channel, make_envelope(T_JOIN_SUCCESS, user=identity.to_wire()))
        history = [m.to_wire() for m in self.state.messages.replay()]
        self.broadcaster.send(channel, make_envelope(T_CHAT_HISTORY, messages=history))
        if identity.is_admin:
            self.broadcaster.send(
                channel,
                make_envelope(
                    T_UPDATE_FEATURE_REQUESTS,
                    requests=[r.to_wire() for r in self.state.feature_requests.snapshot()],
                ),
            )

        self.broadcaster.user_lists()

    def drop_channel(self, channel, code: int, reason: str) -> None:
        """Close ``channel`` in the background.

        Whatever was already sent to it goes out first. The caller's frame is
        not held up waiting for the peer to acknowledge the close.
        """
        self.log.info(
            "Closing channel=%s code=%s reason=%s",
            self._fmt_channel(channel),
            code,
            reason,
        )
        task = asyncio.get_running_loop().create_task(
            self._close_channel(channel, code, reason)
        )
        self._close_tasks.add(task)
        task.add_done_callback(self._close_tasks.discard)

    async def _close_channel(self, channel, code: int, reason: str) -> None:
        try:
            await channel.close(code, reason)
        except Exception as e:
            self.log.debug("Close failed channel=%s: %s", self._fmt_channel(channel), e)

    async def drain_closes(self) -> None:
        """Wait for every forced close started so far."""
        while self._close_tasks:
            tasks = list(self._close_tasks)
            await asyncio.gather(*tasks)
            self._close_tasks.difference_update(tasks)

    # Transport

    async def _handle_connection(self, ws: ServerConnection) -> None:
        channel = WebSocketChannel(ws)
        self.on_connect(channel)
        try:
            async for data in ws:
                await self.handle_message(channel, data)
        except ConnectionClosed:
            pass
        except Exception:
            self.log.exception("Connection handler failed channel=%s", self._fmt_channel(channel))
        finally:
            self.on_disconnect(channel)

    def _load_index(self) -> bytes:
        if self._index_html is None:
            if self.config.index_path:
                with open(expand_path(self.config.index_path), "rb") as f:
                    self._index_html = f.read()
            else:
                self._index_html = (
                    resources.files("lobbyd").joinpath("static/index.html").read_bytes()
                )
        return self._index_html

    def _process_request(self, connection: ServerConnection, request: Request) -> Response | None:
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None

        path = request.path.split("?", 1)[0]
        if path not in ("/", "/index.html"):
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")

        try:
            body = self._load_index()
        except OSError:
            self.log.exception("Failed to load index page")
            return connection.respond(HTTPStatus.INTERNAL_SERVER_ERROR, "Index unavailable\n")

        headers = Headers(
            [
                ("Content-Type", "text/html; charset=utf-8"),
                ("Content-Length", str(len(body))),
                ("Cache-Control", "no-cache"),
            ]
        )
        return Response(HTTPStatus.OK.value, HTTPStatus.OK.phrase, headers, body)

    def listen(self, host: str | None = None, port: int | None = None) -> serve:
        """Build the websockets server; use it as an async context manager."""
        return serve(
            self._handle_connection,
            self.config.host if host is None else host,
            self.config.port if port is None else port,
            process_request=self._process_request,
            ping_interval=self.config.ping_interval_s or None,
            ping_timeout=self.config.ping_timeout_s or None,
            max_size=self.config.max_message_bytes,
        )

    async def serve(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                pass

        async with self.listen():
            self.log.info("Lobby listening on %s:%s", self.config.host, self.config.port)
            self.log.info(
                "Policy admin_name=%r nick_max_chars=%s max_text_chars=%s rate_limit_msgs_per_minute=%s",
                self.config.admin_name,
                self.config.nick_max_chars,
                self.config.max_text_chars,
                self.config.rate_limit_msgs_per_minute,
            )
            await self._shutdown.wait()

        await self.drain_closes()

        self.log.info(
            "Lobby stopped sessions=%s registry=%s",
            self.session_manager.get_stats(),
            self.state.registry.get_stats(),
        )

    def run_forever(self) -> None:
        asyncio.run(self.serve())

    def stop(self) -> None:
        self._shutdown.set()
