import asyncio
import uuid

import pytest

from socialchat.realtime.presence import PresenceRegistry, PresenceTransition

pytestmark = pytest.mark.asyncio


async def test_user_stays_online_until_last_connection_closes():
    registry = PresenceRegistry()
    user_id = uuid.uuid4()

    transitions = [
        await registry.on_connect(f"tab-{i}", user_id, "Alice") for i in range(3)
    ]
    assert transitions == [PresenceTransition.ONLINE, None, None]
    assert registry.sockets_for(user_id) == ["tab-0", "tab-1", "tab-2"]

    first = await registry.on_disconnect("tab-0")
    second = await registry.on_disconnect("tab-1")
    assert first.transition is None
    assert second.transition is None
    assert second.remaining_connections == 1
    assert registry.is_online(user_id)

    last = await registry.on_disconnect("tab-2")
    assert last.transition == PresenceTransition.OFFLINE
    assert last.user_id == user_id
    assert not registry.is_online(user_id)
    assert registry.sockets_for(user_id) == []

    # A late duplicate disconnect must not produce a second offline
    repeat = await registry.on_disconnect("tab-2")
    assert repeat.transition is None
    assert repeat.user_id is None


async def test_registering_a_connection_twice_is_a_no_op():
    registry = PresenceRegistry()
    user_id = uuid.uuid4()

    assert await registry.on_connect("c1", user_id, "Bob") == PresenceTransition.ONLINE
    assert await registry.on_connect("c1", user_id, "Bob") is None

    change = await registry.on_disconnect("c1")
    assert change.transition == PresenceTransition.OFFLINE


async def test_concurrent_connects_and_disconnects_keep_counts():
    registry = PresenceRegistry()
    user_id = uuid.uuid4()

    connects = await asyncio.gather(
        *(registry.on_connect(f"c{i}", user_id, "Carol") for i in range(20))
    )
    assert connects.count(PresenceTransition.ONLINE) == 1

    disconnects = await asyncio.gather(
        *(registry.on_disconnect(f"c{i}") for i in range(20))
    )
    offline = [d for d in disconnects if d.transition == PresenceTransition.OFFLINE]
    assert len(offline) == 1
    assert registry.list_online() == []


async def test_list_online_reports_each_user_once():
    registry = PresenceRegistry()
    alice, bob = uuid.uuid4(), uuid.uuid4()

    await registry.on_connect("a1", alice, "Alice")
    await registry.on_connect("b1", bob, "Bob")
    await registry.on_connect("a2", alice, "Alice")

    online = {u.user_id: u for u in registry.list_online()}
    assert set(online) == {alice, bob}
    assert online[alice].connections == 2
    assert online[alice].name == "Alice"
    assert online[bob].connections == 1
    assert registry.online_user_ids() == {alice, bob}

    await registry.clear()
    assert registry.list_online() == []
    assert not registry.is_online(alice)
