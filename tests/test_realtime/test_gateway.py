import asyncio
import json

import pytest
from fastapi import WebSocketDisconnect
from sqlalchemy import func, select

from socialchat.models import Message, User
from socialchat.realtime.connections import ConnectionState
from socialchat.realtime.gateway import WS_CLOSE_UNAUTHORIZED, ChatGateway, StoreScope
from socialchat.schemas.realtime import ServerEvent

from test_helpers import FakeWebSocket, issue_token

pytestmark = pytest.mark.asyncio


async def connect(gateway: ChatGateway, user, websocket: FakeWebSocket | None = None):
    websocket = websocket or FakeWebSocket()
    identity = await gateway.authenticate(await issue_token(user))
    connection = await gateway.connect(websocket, identity)
    return websocket, connection


async def open_chat(db_test_session_manager, a, b):
    async with db_test_session_manager() as session:
        chat = await StoreScope(session).conversations.open_personal_chat(a.id, b.id)
        return chat.id


async def make_group(db_test_session_manager, creator, *members, name="Crew"):
    async with db_test_session_manager() as session:
        group = await StoreScope(session).conversations.create_group(
            creator_id=creator.id, name=name, participant_ids=[m.id for m in members]
        )
        return group.id


async def load_user(db_test_session_manager, user_id) -> User:
    async with db_test_session_manager() as session:
        result = await session.execute(select(User).where(User.id == user_id))
        return result.scalar_one()


async def test_connect_announces_presence(gateway, db_test_session_manager, alice, bob):
    ws_a, _ = await connect(gateway, alice)
    assert ws_a.accepted
    (snapshot,) = ws_a.events(ServerEvent.ONLINE_USERS)
    assert [u["user_id"] for u in snapshot] == [str(alice.id)]

    ws_b, _ = await connect(gateway, bob)

    (joined,) = ws_a.events(ServerEvent.USER_JOINED)
    assert joined["user_id"] == str(bob.id)
    assert joined["name"] == "Bob"
    latest = ws_a.events(ServerEvent.UPDATE_ONLINE_USERS)[-1]
    assert {u["user_id"] for u in latest} == {str(alice.id), str(bob.id)}
    assert ws_b.events(ServerEvent.USER_JOINED) == []

    stored = await load_user(db_test_session_manager, bob.id)
    assert stored.is_online is True


async def test_personal_chat_end_to_end(gateway, db_test_session_manager, alice, bob):
    ws_a, conn_a = await connect(gateway, alice)
    ws_b, conn_b = await connect(gateway, bob)
    chat_id = await open_chat(db_test_session_manager, alice, bob)

    await gateway.handle_message(conn_a, {"type": "join_chat", "conversation_id": str(chat_id)})
    await gateway.handle_message(conn_b, {"type": "join_chat", "conversation_id": str(chat_id)})
    (joined,) = ws_a.events(ServerEvent.JOINED_CHAT)
    assert joined["conversation"]["name"] == "Bob"
    assert set(joined["participant_ids"]) == {str(alice.id), str(bob.id)}

    await gateway.handle_message(
        conn_a,
        json.dumps({"type": "send_message", "conversation_id": str(chat_id), "text": "hello"}),
    )

    (to_a,) = ws_a.events(ServerEvent.RECEIVE_MESSAGE)
    (to_b,) = ws_b.events(ServerEvent.RECEIVE_MESSAGE)
    assert to_a == to_b
    assert to_b["text"] == "hello"
    assert to_b["sender_id"] == str(alice.id)
    assert to_b["seq"] == 1
    assert ws_b.events(ServerEvent.ERROR) == []

    async with db_test_session_manager() as session:
        (summary,) = await StoreScope(session).messages.get_user_conversations(bob.id)
    assert summary.id == chat_id
    assert summary.name == "Alice"
    assert summary.last_message.text == "hello"
    assert str(summary.last_message.id) == to_b["id"]


async def test_online_participant_outside_the_room_gets_a_private_notice(
    gateway, db_test_session_manager, alice, bob
):
    ws_a, conn_a = await connect(gateway, alice)
    ws_b, _ = await connect(gateway, bob)
    chat_id = await open_chat(db_test_session_manager, alice, bob)

    await gateway.handle_message(conn_a, {"type": "join_chat", "conversation_id": str(chat_id)})
    await gateway.handle_message(
        conn_a, {"type": "send_message", "conversation_id": str(chat_id), "text": "ping"}
    )

    assert [m["text"] for m in ws_a.events(ServerEvent.RECEIVE_MESSAGE)] == ["ping"]
    assert ws_b.events(ServerEvent.RECEIVE_MESSAGE) == []
    (notice,) = ws_b.events(ServerEvent.RECEIVE_PRIVATE_MESSAGE)
    assert notice["conversation_id"] == str(chat_id)


async def test_messages_are_delivered_in_store_order(
    gateway, db_test_session_manager, alice, bob
):
    ws_a, conn_a = await connect(gateway, alice)
    ws_b, conn_b = await connect(gateway, bob)
    chat_id = await open_chat(db_test_session_manager, alice, bob)
    for conn in (conn_a, conn_b):
        await gateway.handle_message(conn, {"type": "join_chat", "conversation_id": str(chat_id)})

    await asyncio.gather(
        *(
            gateway.handle_message(
                conn, {"type": "send_message", "conversation_id": str(chat_id), "text": text}
            )
            for conn, text in [(conn_a, "a1"), (conn_b, "b1"), (conn_a, "a2")]
        )
    )

    seqs = [m["seq"] for m in ws_b.events(ServerEvent.RECEIVE_MESSAGE)]
    assert seqs == [1, 2, 3]
    assert ws_a.events(ServerEvent.RECEIVE_MESSAGE) == ws_b.events(ServerEvent.RECEIVE_MESSAGE)


async def test_join_by_non_participant_is_refused_without_closing(
    gateway, db_test_session_manager, alice, bob, make_user
):
    mallory = await make_user("Mallory")
    chat_id = await open_chat(db_test_session_manager, alice, bob)
    ws_m, conn_m = await connect(gateway, mallory)

    await gateway.handle_message(conn_m, {"type": "join_chat", "conversation_id": str(chat_id)})

    (error,) = ws_m.events(ServerEvent.ERROR)
    assert error["code"] == 403
    assert error["event"] == "join_chat"
    assert not conn_m.is_joined(chat_id)
    assert conn_m.state == ConnectionState.AUTHENTICATED
    assert ws_m.close_code is None


@pytest.mark.parametrize(
    "payload",
    [
        "not json at all",
        json.dumps(["join_chat"]),
        json.dumps({"type": "dance"}),
        json.dumps({"type": "send_message", "text": "no conversation"}),
        json.dumps({"type": "join_chat", "conversation_id": "not-a-uuid"}),
    ],
)
async def test_malformed_events_are_answered_with_error(gateway, alice, payload):
    ws_a, conn_a = await connect(gateway, alice)

    await gateway.handle_message(conn_a, payload)

    (error,) = ws_a.events(ServerEvent.ERROR)
    assert error["code"] == 400
    assert conn_a.state == ConnectionState.AUTHENTICATED


async def test_failed_send_reaches_only_the_sender(
    gateway, db_test_session_manager, alice, bob
):
    ws_a, conn_a = await connect(gateway, alice)
    ws_b, conn_b = await connect(gateway, bob)
    chat_id = await open_chat(db_test_session_manager, alice, bob)
    for conn in (conn_a, conn_b):
        await gateway.handle_message(conn, {"type": "join_chat", "conversation_id": str(chat_id)})

    await gateway.handle_message(
        conn_a, {"type": "send_message", "conversation_id": str(chat_id), "text": "   "}
    )
    await gateway.handle_message(
        conn_a,
        {"type": "send_group_message", "conversation_id": str(chat_id), "text": "hi group"},
    )

    errors = ws_a.events(ServerEvent.ERROR)
    assert [e["code"] for e in errors] == [400, 400]
    assert [e["event"] for e in errors] == ["send_message", "send_group_message"]
    assert ws_b.events(ServerEvent.RECEIVE_MESSAGE) == []
    assert ws_b.events(ServerEvent.RECEIVE_GROUP_MESSAGE) == []
    assert ws_b.events(ServerEvent.ERROR) == []


async def test_typing_is_relayed_to_other_joined_users(
    gateway, db_test_session_manager, alice, bob
):
    ws_a, conn_a = await connect(gateway, alice)
    ws_b, conn_b = await connect(gateway, bob)
    chat_id = await open_chat(db_test_session_manager, alice, bob)

    await gateway.handle_message(
        conn_a, {"type": "typing", "conversation_id": str(chat_id), "is_typing": True}
    )
    (error,) = ws_a.events(ServerEvent.ERROR)
    assert error["code"] == 403

    for conn in (conn_a, conn_b):
        await gateway.handle_message(conn, {"type": "join_chat", "conversation_id": str(chat_id)})
    await gateway.handle_message(
        conn_a, {"type": "typing", "conversation_id": str(chat_id), "is_typing": True}
    )

    (typing,) = ws_b.events(ServerEvent.USER_TYPING)
    assert typing == {
        "conversation_id": str(chat_id),
        "user_id": str(alice.id),
        "name": "Alice",
        "is_typing": True,
    }
    assert ws_a.events(ServerEvent.USER_TYPING) == []


async def test_group_room_join_leave_and_messages(
    gateway, db_test_session_manager, alice, bob
):
    group_id = await make_group(db_test_session_manager, alice, bob)
    personal_id = await open_chat(db_test_session_manager, alice, bob)
    ws_a, conn_a = await connect(gateway, alice)
    ws_b, conn_b = await connect(gateway, bob)

    await gateway.handle_message(conn_a, {"type": "join_group", "conversation_id": str(group_id)})
    await gateway.handle_message(conn_b, {"type": "join_group", "conversation_id": str(group_id)})
    (joined,) = ws_a.events(ServerEvent.USER_JOINED_GROUP)
    assert joined["user_id"] == str(bob.id)

    await gateway.handle_message(
        conn_b,
        {"type": "send_group_message", "conversation_id": str(group_id), "text": "hi all"},
    )
    assert [m["text"] for m in ws_a.events(ServerEvent.RECEIVE_GROUP_MESSAGE)] == ["hi all"]

    await gateway.handle_message(conn_b, {"type": "leave_group", "conversation_id": str(group_id)})
    (left,) = ws_a.events(ServerEvent.USER_LEFT_GROUP)
    assert left["user_id"] == str(bob.id)
    assert not conn_b.is_joined(group_id)

    await gateway.handle_message(
        conn_a, {"type": "join_group", "conversation_id": str(personal_id)}
    )
    (error,) = ws_a.events(ServerEvent.ERROR)
    assert error["code"] == 400


async def test_evicted_member_leaves_the_room(gateway, db_test_session_manager, alice, bob):
    group_id = await make_group(db_test_session_manager, alice, bob)
    ws_a, conn_a = await connect(gateway, alice)
    ws_b, conn_b = await connect(gateway, bob)
    for conn in (conn_a, conn_b):
        await gateway.handle_message(conn, {"type": "join_group", "conversation_id": str(group_id)})

    await gateway.evict_participant(group_id, bob.id)

    assert not conn_b.is_joined(group_id)
    assert conn_a.is_joined(group_id)
    assert ws_a.events(ServerEvent.USER_LEFT_GROUP)[-1]["user_id"] == str(bob.id)


async def test_offline_is_announced_once_after_last_connection(
    gateway, db_test_session_manager, alice, bob
):
    ws_a, _ = await connect(gateway, alice)
    _, bob_tab_1 = await connect(gateway, bob)
    _, bob_tab_2 = await connect(gateway, bob)
    assert len(ws_a.events(ServerEvent.USER_JOINED)) == 1

    await gateway.disconnect(bob_tab_1)
    assert ws_a.events(ServerEvent.USER_LEFT) == []
    assert gateway.presence.is_online(bob.id)

    await gateway.disconnect(bob_tab_2)
    await gateway.disconnect(bob_tab_2)

    (left,) = ws_a.events(ServerEvent.USER_LEFT)
    assert left["user_id"] == str(bob.id)
    assert not gateway.presence.is_online(bob.id)

    stored = await load_user(db_test_session_manager, bob.id)
    assert stored.is_online is False
    assert stored.last_seen_at is not None


async def test_serve_runs_a_socket_until_it_disconnects(
    gateway, db_test_session_manager, alice, bob
):
    chat_id = await open_chat(db_test_session_manager, alice, bob)
    websocket = FakeWebSocket(
        incoming=[
            {"type": "join_chat", "conversation_id": str(chat_id)},
            {"type": "send_message", "conversation_id": str(chat_id), "text": "via serve"},
        ]
    )

    await gateway.serve(websocket, await issue_token(alice))

    assert websocket.event_names()[:2] == [
        ServerEvent.ONLINE_USERS,
        ServerEvent.UPDATE_ONLINE_USERS,
    ]
    (message,) = websocket.events(ServerEvent.RECEIVE_MESSAGE)
    assert message["text"] == "via serve"
    assert not gateway.presence.is_online(alice.id)
    assert gateway.manager.connections == {}


@pytest.mark.parametrize("token", [None, "", "definitely.not.ajwt"])
async def test_serve_rejects_bad_tokens_before_accepting(gateway, token):
    websocket = FakeWebSocket()

    await gateway.serve(websocket, token)

    assert websocket.accepted is False
    assert websocket.close_code == WS_CLOSE_UNAUTHORIZED
    assert gateway.presence.list_online() == []


async def test_slow_store_yields_timeout_error(session_factory, alice, bob, db_test_session_manager):
    chat_id = await open_chat(db_test_session_manager, alice, bob)
    fast = ChatGateway(session_factory=session_factory)
    identity = await fast.authenticate(await issue_token(alice))

    async def slow_sessions():
        await asyncio.sleep(5)
        async for session in session_factory():
            yield session

    slow = ChatGateway(session_factory=slow_sessions, store_timeout=0.05)
    websocket = FakeWebSocket()
    connection = await slow.connect(websocket, identity)

    await slow.handle_message(
        connection, {"type": "join_chat", "conversation_id": str(chat_id)}
    )

    (error,) = websocket.events(ServerEvent.ERROR)
    assert error["code"] == 504
    assert not connection.is_joined(chat_id)


async def test_dead_peer_does_not_stop_group_fan_out(
    gateway, db_test_session_manager, alice, bob, make_user
):
    carol = await make_user("Carol")
    group_id = await make_group(db_test_session_manager, alice, bob, carol)
    ws_a, conn_a = await connect(gateway, alice)
    ws_b, conn_b = await connect(gateway, bob)
    ws_c, conn_c = await connect(gateway, carol)
    for conn in (conn_a, conn_b, conn_c):
        await gateway.handle_message(conn, {"type": "join_group", "conversation_id": str(group_id)})

    # Bob's socket dies without a close frame
    ws_b.fail_sends_with = WebSocketDisconnect(code=1006)
    await gateway.handle_message(
        conn_a,
        {"type": "send_group_message", "conversation_id": str(group_id), "text": "still here?"},
    )

    assert [m["text"] for m in ws_a.events(ServerEvent.RECEIVE_GROUP_MESSAGE)] == ["still here?"]
    assert [m["text"] for m in ws_c.events(ServerEvent.RECEIVE_GROUP_MESSAGE)] == ["still here?"]
    assert ws_a.events(ServerEvent.ERROR) == []

    async with db_test_session_manager() as session:
        (summary,) = [
            c
            for c in await StoreScope(session).messages.get_user_conversations(carol.id)
            if c.id == group_id
        ]
    assert summary.last_message.text == "still here?"


@pytest.mark.parametrize(
    "failure", [WebSocketDisconnect(code=1006), ConnectionResetError("reset by peer")]
)
async def test_connect_survives_a_dead_peer(gateway, alice, bob, failure):
    await connect(gateway, bob, FakeWebSocket(fail_sends_with=failure))

    ws_a, conn_a = await connect(gateway, alice)

    assert conn_a.state == ConnectionState.AUTHENTICATED
    (snapshot,) = ws_a.events(ServerEvent.ONLINE_USERS)
    assert {u["user_id"] for u in snapshot} == {str(alice.id), str(bob.id)}
    assert gateway.presence.is_online(alice.id)


async def test_failed_connect_does_not_leave_the_user_online(gateway, alice, bob):
    ws_b, _ = await connect(gateway, bob)
    websocket = FakeWebSocket(fail_sends_with=ValueError("unserializable"))

    with pytest.raises(ValueError):
        await gateway.serve(websocket, await issue_token(alice))

    assert not gateway.presence.is_online(alice.id)
    assert [c.user_id for c in gateway.manager.connections.values()] == [bob.id]
    assert [n["user_id"] for n in ws_b.events(ServerEvent.USER_LEFT)] == [str(alice.id)]


async def test_serve_answers_binary_frames_and_keeps_reading(
    gateway, db_test_session_manager, alice, bob
):
    chat_id = await open_chat(db_test_session_manager, alice, bob)
    join = json.dumps({"type": "join_chat", "conversation_id": str(chat_id)})
    websocket = FakeWebSocket(
        incoming=[
            b"\x00\xff\xfe",
            join.encode("utf-8"),
            {"type": "send_message", "conversation_id": str(chat_id), "text": "after bytes"},
        ]
    )

    await gateway.serve(websocket, await issue_token(alice))

    (error,) = websocket.events(ServerEvent.ERROR)
    assert error["code"] == 400
    (joined,) = websocket.events(ServerEvent.JOINED_CHAT)
    assert joined["conversation"]["id"] == str(chat_id)
    (message,) = websocket.events(ServerEvent.RECEIVE_MESSAGE)
    assert message["text"] == "after bytes"


async def test_message_stored_before_a_stall_is_still_delivered(
    db_test_session_manager, alice, bob
):
    chat_id = await open_chat(db_test_session_manager, alice, bob)
    stall = {"armed": False}

    async def sessions_slow_to_close():
        async with db_test_session_manager() as session:
            try:
                yield session
            finally:
                if stall["armed"]:
                    await asyncio.sleep(5)

    gateway = ChatGateway(session_factory=sessions_slow_to_close, store_timeout=0.5)
    ws_a, conn_a = await connect(gateway, alice)
    ws_b, conn_b = await connect(gateway, bob)
    for conn in (conn_a, conn_b):
        await gateway.handle_message(conn, {"type": "join_chat", "conversation_id": str(chat_id)})

    stall["armed"] = True
    await gateway.handle_message(
        conn_a, {"type": "send_message", "conversation_id": str(chat_id), "text": "once"}
    )
    stall["armed"] = False

    assert ws_a.events(ServerEvent.ERROR) == []
    assert [m["text"] for m in ws_a.events(ServerEvent.RECEIVE_MESSAGE)] == ["once"]
    assert [m["text"] for m in ws_b.events(ServerEvent.RECEIVE_MESSAGE)] == ["once"]
    async with db_test_session_manager() as session:
        count = await session.scalar(
            select(func.count()).select_from(Message).where(Message.conversation_id == chat_id)
        )
    assert count == 1
