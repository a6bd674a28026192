from __future__ import annotations

import asyncio

from src.roomchat.domain.chat_models import SYSTEM_AUTHOR
from src.roomchat.infrastructure.chat_store import get_chat_store
from src.roomchat.infrastructure.gateway import get_gateway

from .utils import seed_room


def test_create_room_makes_creator_the_first_member():
    gateway = get_gateway()
    store = get_chat_store()
    room_id = seed_room(gateway, ["alice"])

    assert asyncio.run(store.count_members(gateway, room_id)) == 1
    assert asyncio.run(store.is_member(gateway, room_id, "alice"))
    assert not asyncio.run(store.is_member(gateway, room_id, "bob"))


def test_add_member_is_unique_per_pair():
    gateway = get_gateway()
    store = get_chat_store()
    room_id = seed_room(gateway, ["alice"])

    assert asyncio.run(store.add_member(gateway, room_id, "bob")) is True
    assert asyncio.run(store.add_member(gateway, room_id, "bob")) is False
    assert asyncio.run(store.count_members(gateway, room_id)) == 2


def test_history_orders_by_timestamp_then_insertion_and_labels_authors():
    gateway = get_gateway()
    store = get_chat_store()
    room_id = seed_room(gateway, ["alice"])
    same_ts = "2024-05-01T10:00:00.000000Z"

    async def write():
        await store.insert_message(gateway, room_id, "alice", "first", created_at=same_ts)
        await store.insert_message(gateway, room_id, SYSTEM_AUTHOR, "second", created_at=same_ts)
        await store.insert_message(gateway, room_id, "ghost", "third", created_at=same_ts)
        await store.insert_message(gateway, room_id, "alice", "earlier", created_at="2024-05-01T09:00:00.000000Z")

    asyncio.run(write())
    history = asyncio.run(store.history(gateway, room_id))

    assert [h.body for h in history] == ["earlier", "first", "second", "third"]
    assert [h.author_label for h in history] == [
        "alice@example.com",
        "alice@example.com",
        "system",
        "Unknown",
    ]


def test_inserted_message_round_trips_through_history():
    gateway = get_gateway()
    store = get_chat_store()
    room_id = seed_room(gateway, ["alice"])

    row = asyncio.run(store.insert_message(gateway, room_id, "alice", "hello there"))
    history = asyncio.run(store.history(gateway, room_id))

    assert len(history) == 1
    assert history[0].id == row["id"]
    assert history[0].body == "hello there"
    assert history[0].author_id == "alice"
    assert history[0].model_dump(by_alias=True)["authorLabel"] == "alice@example.com"


def test_list_rooms_for_user_reports_member_count_and_last_message():
    gateway = get_gateway()
    store = get_chat_store()
    mine = seed_room(gateway, ["alice", "bob"], name="Shared")
    seed_room(gateway, ["carol"], name="Elsewhere")
    asyncio.run(store.insert_message(gateway, mine, "bob", "latest words"))

    rooms = asyncio.run(store.list_rooms_for_user(gateway, "alice"))

    assert [r.name for r in rooms] == ["Shared"]
    assert rooms[0].member_count == 2
    assert rooms[0].last_message == "latest words"
