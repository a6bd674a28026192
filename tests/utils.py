from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Iterable, List, Optional, Sequence

from src.roomchat.infrastructure.chat_store import get_chat_store
from src.roomchat.infrastructure.gateway import Gateway
from src.roomchat.security.auth import User, create_access_token
from src.roomchat.services.provider_errors import ProviderNetworkFailure


def token_for(user_id: str, email: Optional[str] = None, *, roles: Sequence[str] = ("member",)) -> str:
    email = email or f"{user_id}@example.com"
    return create_access_token(User(id=user_id, email=email, name=user_id.title(), roles=list(roles)))


def headers_for(user_id: str, email: Optional[str] = None, *, roles: Sequence[str] = ("member",)) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user_id, email, roles=roles)}"}


def sse_events(body: str) -> List[Dict[str, Any]]:
    """Decode a complete ``text/event-stream`` body into its JSON events."""
    events: List[Dict[str, Any]] = []
    for frame in body.split("\n\n"):
        for line in frame.splitlines():
            if line.startswith("data: "):
                events.append(json.loads(line[len("data: "):]))
    return events


class ScriptedProvider:
    """Stand-in adapter yielding fixed deltas, optionally failing after ``fail_after`` of them."""

    def __init__(self, deltas: Iterable[str], fail_after: Optional[int] = None, binding: Any = None) -> None:
        self.deltas = list(deltas)
        self.fail_after = fail_after
        self.binding = binding
        self.calls: List[tuple] = []

    async def produce(self, system_prompt: str, user_message: str):
        self.calls.append((system_prompt, user_message))
        for idx, delta in enumerate(self.deltas):
            if self.fail_after is not None and idx == self.fail_after:
                raise ProviderNetworkFailure("connection reset by peer")
            yield delta
        if self.fail_after is not None and self.fail_after >= len(self.deltas):
            raise ProviderNetworkFailure("connection reset by peer")


def seed_room(
    gateway: Gateway,
    members: Sequence[str],
    *,
    ai_type: str = "code_generation",
    model: Optional[str] = None,
    name: str = "Room",
) -> str:
    """Create a room owned by ``members[0]`` with every listed member joined."""

    async def _seed() -> str:
        store = get_chat_store()
        for user_id in members:
            await store.upsert_user(gateway, user_id, f"{user_id}@example.com", user_id.title())
        async with gateway.transaction("seed-room") as tx:
            room = await store.create_room(tx, name, members[0], ai_type, model)
            for user_id in members[1:]:
                await store.add_member(tx, room.id, user_id)
        return room.id

    return asyncio.run(_seed())
