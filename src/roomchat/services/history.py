from __future__ import annotations

from typing import List

from ..domain.chat_models import HistoryEntry
from ..infrastructure.chat_store import ChatStore, get_chat_store
from ..infrastructure.gateway import Gateway
from .send_orchestrator import NotAMember, RoomNotFound


async def read_history(gateway: Gateway, room_id: str, user_id: str, store: ChatStore | None = None) -> List[HistoryEntry]:
    """Room history in display order, for members only.

    Read-only: nothing is inserted when the room is empty.
    """
    store = store or get_chat_store()
    room = await store.get_room(gateway, room_id)
    if room is None:
        raise RoomNotFound(f"room {room_id} does not exist")
    if not await store.is_member(gateway, room_id, user_id):
        raise NotAMember(f"user {user_id} is not a member of room {room_id}")
    return await store.history(gateway, room_id)
