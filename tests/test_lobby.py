"""End-to-end behaviour of the lobby over fake channels."""

import asyncio
from dataclasses import replace

import pytest

from lobbyd.codec import encode
from lobbyd.constants import CLOSE_AUTH_FAILED, CLOSE_BANNED
from lobbyd.service import LobbyService
from lobbyd.session import SessionState

from .conftest import ADMIN_PASSWORD, FakeChannel

pytestmark = pytest.mark.asyncio

ADMIN_ACTIONS = [
    ("adminMessage", {"text": "hello"}),
    ("banUser", {"userId": "x"}),
    ("unbanUser", {"userId": "x"}),
    ("clearChat", {}),
    ("deleteFeatureRequest", {"requestId": "x"}),
]


def names(msg: dict, key: str = "connectedUsers") -> list[str]:
    return [u["name"] for u in msg[key]]


async def test_join_sequence_replays_history_first(join) -> None:
    alice = await join("Alice")

    assert alice.types() == ["joinSuccess", "chatHistory", "updateUserLists"]
    user = alice.last("joinSuccess")["user"]
    assert user["name"] == "Alice" and user["isAdmin"] is False
    assert alice.last("chatHistory")["messages"] == []
    assert names(alice.last("updateUserLists")) == ["Alice"]


async def test_distinct_names_all_join_and_are_listed(join) -> None:
    channels = [await join(n) for n in ("Alice", "Bob", "Carol")]

    for ch in channels:
        assert ch.of_type("joinSuccess")
    assert names(channels[0].last("updateUserLists")) == ["Alice", "Bob", "Carol"]


async def test_chat_scenario_sender_included_once(join, send) -> None:
    alice = await join("Alice")
    bob = await join("Bob")

    await send(bob, "chatMessage", text="hi")

    for ch in (alice, bob):
        msgs = ch.of_type("newMessage")
        assert len(msgs) == 1
        assert msgs[0]["message"]["userName"] == "Bob"
        assert msgs[0]["message"]["text"] == "hi"
        assert msgs[0]["message"]["isAdmin"] is False


async def test_history_is_replayed_to_late_joiners(join, send) -> None:
    alice = await join("Alice")
    await send(alice, "chatMessage", text="first")
    await send(alice, "chatMessage", text="second")

    bob = await join("Bob")

    replay = bob.last("chatHistory")["messages"]
    assert [m["text"] for m in replay] == ["first", "second"]
    assert not bob.of_type("newMessage")


async def test_duplicate_name_is_denied_and_may_retry(lobby, join, send) -> None:
    await join("Alice")
    dup = await join("Alice")

    denied = dup.last("connectionDenied")
    assert denied["reason"] == "name_taken"
    assert dup.open
    assert len(lobby.state.registry.connected()) == 1

    await send(dup, "join", userName="Alice2")
    assert dup.last("joinSuccess")["user"]["name"] == "Alice2"


async def test_invalid_names_are_denied(join) -> None:
    for bad in ("", "   ", "a" * 33, "two\nlines"):
        ch = await join(bad)
        assert ch.last("connectionDenied")["reason"] == "invalid_name"
        assert ch.open


async def test_name_is_stripped(join) -> None:
    ch = await join("  Alice  ")
    assert ch.last("joinSuccess")["user"]["name"] == "Alice"


async def test_second_join_on_same_channel(lobby, join, send) -> None:
    alice = await join("Alice")
    await send(alice, "join", userName="Other")

    assert alice.last("connectionDenied")["reason"] == "already_joined"
    assert [i.name for i in lobby.state.registry.connected()] == ["Alice"]


async def test_actions_before_join_are_refused(connect, send) -> None:
    ch = connect()
    await send(ch, "chatMessage", text="hi")

    assert ch.types() == ["alert"]
    assert ch.last("alert")["message"] == "You must join the chat first."
    assert ch.open


async def test_admin_join(join) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)

    assert admin.types() == [
        "joinSuccess",
        "chatHistory",
        "updateFeatureRequests",
        "updateUserLists",
    ]
    assert admin.last("joinSuccess")["user"]["isAdmin"] is True


async def test_admin_wrong_password(lobby, join) -> None:
    bystander = await join("Alice")
    before = len(bystander.sent)

    ch = await join("Admin", "wrong")

    denied = ch.last("connectionDenied")
    assert denied["reason"] == "incorrect_password"
    assert denied["message"] == "Incorrect admin password."
    assert not ch.of_type("joinSuccess")
    assert ch.close_code == CLOSE_AUTH_FAILED
    assert [i.name for i in lobby.state.registry.connected()] == ["Alice"]
    assert len(bystander.sent) == before


async def test_admin_without_password(join) -> None:
    ch = await join("Admin")
    assert ch.last("connectionDenied")["reason"] == "incorrect_password"


async def test_admin_wrong_password_may_retry_when_configured(config) -> None:
    lobby = LobbyService(replace(config, close_on_bad_admin_password=False))
    ch = FakeChannel()
    lobby.on_connect(ch)

    await lobby.handle_message(ch, '{"type":"join","userName":"Admin","password":"nope"}')
    assert ch.open
    assert lobby.session_manager.get_session(ch).state is SessionState.UNBOUND

    await lobby.handle_message(
        ch, '{"type":"join","userName":"Admin","password":"%s"}' % ADMIN_PASSWORD
    )
    assert ch.last("joinSuccess")["user"]["isAdmin"] is True


async def test_non_admin_cannot_use_admin_actions(lobby, join, send) -> None:
    alice = await join("Alice")
    bob = await join("Bob")
    await send(alice, "chatMessage", text="keep me")
    lists_before = lobby.state.registry.user_lists()

    for action, payload in ADMIN_ACTIONS:
        alice_seen = len(alice.sent)
        bob_seen = len(bob.sent)

        await send(bob, action, **payload)

        new = bob.sent[bob_seen:]
        assert new == [
            {"type": "alert", "message": "You are not authorized to perform this action."}
        ]
        assert len(alice.sent) == alice_seen

    assert len(lobby.state.messages) == 1
    assert lobby.state.registry.user_lists() == lists_before


async def test_ban_scenario(lobby, join, send) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)
    alice = await join("Alice")
    bob = await join("Bob")
    bob_id = bob.last("joinSuccess")["user"]["id"]
    bob_lists_before = len(bob.of_type("updateUserLists"))

    await send(admin, "banUser", userId=bob_id)

    assert bob.types()[-1] == "banned"
    assert bob.close_code == CLOSE_BANNED
    assert len(bob.of_type("updateUserLists")) == bob_lists_before
    for ch in (admin, alice):
        lists = ch.last("updateUserLists")
        assert names(lists) == ["Admin", "Alice"]
        assert names(lists, "bannedUsers") == ["Bob"]

    # The transport reports the close afterwards; no second announcement.
    alice_seen = len(alice.sent)
    lobby.on_disconnect(bob)
    assert len(alice.sent) == alice_seen

    again = await join("Bob")
    assert again.types() == ["banned"]
    assert again.close_code == CLOSE_BANNED
    assert "Bob" not in [i.name for i in lobby.state.registry.connected()]


class StalledChannel(FakeChannel):
    """A peer that never acknowledges the close handshake until told to."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def close(self, code: int, reason: str) -> None:
        await self.release.wait()
        await super().close(code, reason)


async def test_pending_close_does_not_block_banning_admin(lobby, join) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)
    bob = StalledChannel()
    lobby.on_connect(bob)
    await lobby.handle_message(bob, encode({"type": "join", "userName": "Bob"}))
    bob_id = bob.last("joinSuccess")["user"]["id"]

    await lobby.handle_message(admin, encode({"type": "banUser", "userId": bob_id}))
    await lobby.handle_message(admin, encode({"type": "adminMessage", "text": "next"}))

    assert admin.last("newMessage")["message"]["text"] == "next"
    assert bob.types()[-1] == "banned"
    assert bob.close_code is None

    bob.release.set()
    await lobby.drain_closes()
    assert bob.close_code == CLOSE_BANNED


async def test_banned_channel_ignores_further_frames(lobby, join, send) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)
    bob = await join("Bob")
    await send(admin, "banUser", userId=bob.last("joinSuccess")["user"]["id"])
    # Close frame not yet processed by the peer; the frame is dropped.
    bob.open = True
    seen = len(bob.sent)

    await send(bob, "chatMessage", text="still here?")

    assert len(bob.sent) == seen
    assert len(lobby.state.messages) == 0


async def test_unban_allows_rejoin(lobby, join, send) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)
    bob = await join("Bob")
    bob_id = bob.last("joinSuccess")["user"]["id"]
    await send(admin, "banUser", userId=bob_id)
    lobby.on_disconnect(bob)

    await send(admin, "unbanUser", userId=bob_id)

    assert names(admin.last("updateUserLists"), "bannedUsers") == []
    assert names(admin.last("updateUserLists")) == ["Admin"]
    back = await join("Bob")
    assert back.of_type("joinSuccess")


async def test_ban_and_unban_unknown_ids(join, send) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)

    await send(admin, "banUser", userId="missing")
    assert admin.last("alert")["message"] == "No such connected user."

    await send(admin, "unbanUser", userId="missing")
    assert admin.last("alert")["message"] == "No such banned user."

    await send(admin, "banUser")
    assert admin.last("alert")["message"] == "missing userId"


async def test_admin_cannot_ban_self(lobby, join, send) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)
    admin_id = admin.last("joinSuccess")["user"]["id"]

    await send(admin, "banUser", userId=admin_id)

    assert admin.last("alert")["message"] == "You cannot ban yourself."
    assert lobby.state.registry.banned() == []
    assert admin.open


async def test_leave_updates_everyone(lobby, join) -> None:
    alice = await join("Alice")
    bob = await join("Bob")

    lobby.on_disconnect(bob)

    assert names(alice.last("updateUserLists")) == ["Alice"]
    again = await join("Bob")
    assert again.of_type("joinSuccess")


async def test_disconnect_before_join_is_silent(lobby, join, connect) -> None:
    alice = await join("Alice")
    seen = len(alice.sent)

    lurker = connect()
    lobby.on_disconnect(lurker)

    assert len(alice.sent) == seen


async def test_clear_chat(lobby, join, send) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)
    alice = await join("Alice")
    await send(alice, "chatMessage", text="one")

    await send(admin, "clearChat")

    for ch in (admin, alice):
        assert ch.last("chatHistory")["messages"] == []
    assert lobby.state.messages.replay() == []
    late = await join("Bob")
    assert late.last("chatHistory")["messages"] == []


async def test_admin_message(join, send) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)
    alice = await join("Alice")

    await send(admin, "adminMessage", text="maintenance at noon")

    for ch in (admin, alice):
        msg = ch.last("newMessage")["message"]
        assert msg["isAdmin"] is True
        assert msg["userName"] == "Admin"


async def test_feature_request_goes_to_admins_only(join, send) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)
    alice = await join("Alice")
    bob = await join("Bob")

    await send(bob, "featureRequest", text="dark mode")

    requests = admin.last("updateFeatureRequests")["requests"]
    assert [(r["userName"], r["text"]) for r in requests] == [("Bob", "dark mode")]
    assert not bob.of_type("updateFeatureRequests")
    assert not alice.of_type("updateFeatureRequests")


async def test_admin_cannot_submit_feature_request(lobby, join, send) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)

    await send(admin, "featureRequest", text="more power")

    assert admin.last("alert")["message"] == "Admins cannot submit feature requests."
    assert len(lobby.state.feature_requests) == 0


async def test_delete_feature_request(lobby, join, send) -> None:
    admin = await join("Admin", ADMIN_PASSWORD)
    bob = await join("Bob")
    await send(bob, "featureRequest", text="dark mode")
    request_id = admin.last("updateFeatureRequests")["requests"][0]["id"]

    await send(admin, "deleteFeatureRequest", requestId=request_id)
    assert admin.last("updateFeatureRequests")["requests"] == []

    await send(admin, "deleteFeatureRequest", requestId=request_id)
    assert admin.last("alert")["message"] == "No such feature request."


async def test_admin_sees_queue_on_join(join, send) -> None:
    bob = await join("Bob")
    await send(bob, "featureRequest", text="emoji")

    admin = await join("Admin", ADMIN_PASSWORD)

    assert [r["text"] for r in admin.last("updateFeatureRequests")["requests"]] == ["emoji"]


async def test_malformed_frames_do_not_break_the_channel(lobby, join, send) -> None:
    alice = await join("Alice")

    await lobby.handle_message(alice, "{nope")
    assert alice.last("alert")["message"].startswith("bad message")

    await lobby.handle_message(alice, "[1, 2]")
    assert alice.last("alert")["message"].startswith("bad message")

    seen = len(alice.sent)
    await send(alice, "doSomethingElse")
    assert len(alice.sent) == seen

    await send(alice, "chatMessage", text="   ")
    assert alice.last("alert")["message"].startswith("text must be")

    await send(alice, "chatMessage", text="still works")
    assert alice.last("newMessage")["message"]["text"] == "still works"


async def test_text_length_limit(lobby, join, send) -> None:
    alice = await join("Alice")
    limit = lobby.config.max_text_chars

    await send(alice, "chatMessage", text="x" * (limit + 1))

    assert "at most" in alice.last("alert")["message"]
    assert len(lobby.state.messages) == 0


async def test_handler_failure_is_isolated(lobby, join, send) -> None:
    alice = await join("Alice")

    def boom(*_args):
        raise RuntimeError("boom")

    original = lobby.router._handlers["chatMessage"]
    lobby.router._handlers["chatMessage"] = boom
    await send(alice, "chatMessage", text="hi")

    lobby.router._handlers["chatMessage"] = original
    await send(alice, "chatMessage", text="hi again")
    assert alice.last("newMessage")["message"]["text"] == "hi again"


async def test_rate_limited_frames_are_dropped(config) -> None:
    lobby = LobbyService(replace(config, rate_limit_msgs_per_minute=2))
    ch = FakeChannel()
    lobby.on_connect(ch)

    await lobby.handle_message(ch, '{"type":"join","userName":"Alice"}')
    await lobby.handle_message(ch, '{"type":"chatMessage","text":"one"}')
    await lobby.handle_message(ch, '{"type":"chatMessage","text":"two"}')

    assert ch.last("alert")["message"] == "rate limited"
    assert [m.text for m in lobby.state.messages.replay()] == ["one"]


async def test_closed_channels_are_skipped(lobby, join, send) -> None:
    alice = await join("Alice")
    bob = await join("Bob")
    bob.open = False
    seen = len(bob.sent)

    await send(alice, "chatMessage", text="anyone?")

    assert len(bob.sent) == seen
    assert alice.last("newMessage")["message"]["text"] == "anyone?"
