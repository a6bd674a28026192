"""Send orchestration: persist a room message and, when needed, stream an AI reply.

A run is split into two short units of work around the provider call:

1. In one transaction: check the room and membership, read the member count,
   decide whether the assistant is summoned, insert the user message, commit.
2. Stream deltas from the provider adapter with no transaction open.
3. In a second transaction: insert the assistant message and bump room
   activity. Only this unit is rolled back when something goes wrong, so the
   user's message survives any failure of the AI phase.

Events are yielded in the order ``user_message_saved``, ``ai_response_chunk``*,
then ``ai_response_complete`` or ``error``.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from ..config import Settings, get_settings
from ..domain.chat_models import SYSTEM_AUTHOR, Room, StreamEvent
from ..infrastructure.chat_store import ChatStore, get_chat_store, now_iso
from ..infrastructure.events import publish_room_message
from ..infrastructure.gateway import Gateway, GatewayError, get_gateway
from ..observability.metrics import observe_provider_stream, record_run
from .model_router import ModelRouter, ProviderBinding
from .prompts import system_prompt_for
from .provider_errors import ProviderError
from .providers import StreamingProvider, build_provider

logger = logging.getLogger(__name__)

MENTION_TOKENS = ("@AI", "＠AI")


class SendRejected(Exception):
    """A precondition of the send failed before anything was written."""

    message = "The message could not be sent"

    def __init__(self, details: str = "") -> None:
        super().__init__(details or self.message)
        self.details = details or self.message

    @property
    def code(self) -> str:
        return type(self).__name__


class RoomNotFound(SendRejected):
    message = "Chat room not found"


class NotAMember(SendRejected):
    message = "You are not a member of this chat room"


class EmptyMessage(SendRejected):
    message = "Message text is empty"


def has_mention(text: str) -> bool:
    """Case-sensitive substring match for the half- or full-width mention."""
    return any(token in text for token in MENTION_TOKENS)


def should_call_ai(member_count: int, text: str) -> bool:
    # A solo room talks to the assistant implicitly; shared rooms must summon it.
    return member_count == 1 or has_mention(text)


@dataclass
class StreamingRun:
    """Ephemeral state of one orchestration run."""

    room_id: str
    user_message_id: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    assistant_message_id: Optional[str] = None
    state: str = "not_started"
    outcome: Optional[str] = None
    _deltas: List[str] = field(default_factory=list)
    _full: str = ""

    def append(self, delta: str) -> str:
        self._deltas.append(delta)
        self._full += delta
        return self._full

    @property
    def full_text(self) -> str:
        return self._full

    @property
    def delta_count(self) -> int:
        return len(self._deltas)


ProviderFactory = Callable[[ProviderBinding], StreamingProvider]


def _error_event(message: str, details: str, code: str) -> StreamEvent:
    return StreamEvent(type="error", data={"message": message, "details": details, "code": code})


class SendOrchestrator:
    def __init__(
        self,
        gateway: Gateway,
        store: Optional[ChatStore] = None,
        router: Optional[ModelRouter] = None,
        provider_factory: Optional[ProviderFactory] = None,
        settings: Optional[Settings] = None,
        publisher: Callable[..., Any] = publish_room_message,
    ) -> None:
        self._settings = settings or get_settings()
        self._gateway = gateway
        self._store = store or get_chat_store()
        self._router = router or ModelRouter(default_model=self._settings.default_model)
        self._provider_factory = provider_factory or (lambda binding: build_provider(binding, self._settings))
        self._publisher = publisher

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------
    async def check_access(self, room_id: str, user_id: str) -> Room:
        """Raise :class:`RoomNotFound` / :class:`NotAMember` before streaming starts."""
        room = await self._store.get_room(self._gateway, room_id)
        if room is None:
            raise RoomNotFound(f"room {room_id} does not exist")
        if not await self._store.is_member(self._gateway, room_id, user_id):
            raise NotAMember(f"user {user_id} is not a member of room {room_id}")
        return room

    # ------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------
    async def _save_user_message(self, room_id: str, user_id: str, text: str) -> Tuple[Room, Dict[str, Any], bool, int]:
        async with self._gateway.transaction("send-user-message") as tx:
            room = await self._store.get_room(tx, room_id)
            if room is None:
                raise RoomNotFound(f"room {room_id} does not exist")
            if not await self._store.is_member(tx, room_id, user_id):
                raise NotAMember(f"user {user_id} is not a member of room {room_id}")
            # Counted inside the same transaction as the insert so a concurrent
            # join/leave cannot change the decision after it is made.
            member_count = await self._store.count_members(tx, room_id)
            call_ai = should_call_ai(member_count, text)
            row = await self._store.insert_message(tx, room_id, user_id, text)
            await self._store.touch_room(tx, room_id)
        return room, row, call_ai, member_count

    async def _save_assistant_message(self, run: StreamingRun) -> Dict[str, Any]:
        async with self._gateway.transaction("send-assistant-message") as tx:
            row = await self._store.insert_message(
                tx,
                run.room_id,
                SYSTEM_AUTHOR,
                run.full_text,
                message_id=run.assistant_message_id,
                reply_to=run.user_message_id,
            )
            await self._store.touch_room(tx, run.room_id)
        return row

    async def _notify(self, room_id: str, row: Dict[str, Any]) -> None:
        # redis-py blocks; keep the round trip off the event loop.
        try:
            await asyncio.to_thread(self._publisher, room_id, row["id"], row["user_id"], row["created_at"])
        except Exception as exc:
            logger.warning("room_event_publish_failed", extra={"room": room_id, "err": str(exc)})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def handle_send(
        self,
        room_id: str,
        user_id: str,
        message_text: str,
        requested_ai_type: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        if not (message_text or "").strip():
            record_run("rejected")
            yield _error_event(EmptyMessage.message, "message must contain text", "EmptyMessage")
            return

        try:
            room, user_row, call_ai, member_count = await self._save_user_message(room_id, user_id, message_text)
        except SendRejected as exc:
            logger.info("send_rejected", extra={"room": room_id, "user": user_id, "code": exc.code})
            record_run("rejected")
            yield _error_event(exc.message, exc.details, exc.code)
            return
        except GatewayError as exc:
            logger.exception("send_user_message_failed room=%s", room_id)
            record_run("errored")
            yield _error_event("Failed to save the message", str(exc), type(exc).__name__)
            return

        run = StreamingRun(room_id=room_id, user_message_id=user_row["id"])
        if call_ai:
            run.assistant_message_id = str(uuid.uuid4())
        logger.info(
            "send_user_message_saved",
            extra={"room": room_id, "run": run.run_id, "members": member_count, "call_ai": call_ai},
        )
        await self._notify(room_id, user_row)
        yield StreamEvent(
            type="user_message_saved",
            data={
                "id": user_row["id"],
                "runId": run.run_id,
                "text": user_row["message"],
                "message": user_row["message"],
                "timestamp": user_row["created_at"],
                "shouldCallAI": call_ai,
                "assistantMessageId": run.assistant_message_id,
            },
        )

        if not call_ai:
            run.outcome = "skipped"
            record_run("skipped")
            return

        ai_type = requested_ai_type or room.ai_type
        provider_name = "unresolved"
        try:
            binding = self._router.resolve_binding(room.model)
            provider_name = binding.kind.value
            provider = self._provider_factory(binding)
            run.state = "streaming"
            started = time.perf_counter()
            async for delta in provider.produce(system_prompt_for(ai_type), message_text):
                full = run.append(delta)
                yield StreamEvent(
                    type="ai_response_chunk",
                    data={
                        "id": run.assistant_message_id,
                        "delta": delta,
                        "fullContentSoFar": full,
                        "timestamp": now_iso(),
                    },
                )
            observe_provider_stream(provider_name, time.perf_counter() - started)
        except ProviderError as exc:
            run.state = run.outcome = "errored"
            logger.warning(
                "send_ai_failed",
                extra={"room": room_id, "run": run.run_id, "provider": provider_name, "code": exc.code, "err": exc.details},
            )
            record_run("errored")
            yield _error_event(exc.message, exc.details, exc.code)
            return
        except Exception as exc:
            run.state = run.outcome = "errored"
            logger.exception("send_ai_crashed run=%s provider=%s", run.run_id, provider_name)
            record_run("errored")
            yield _error_event("An error occurred while generating the AI response", str(exc), type(exc).__name__)
            return

        try:
            assistant_row = await self._save_assistant_message(run)
        except GatewayError as exc:
            run.state = run.outcome = "errored"
            logger.exception("send_assistant_message_failed run=%s", run.run_id)
            record_run("errored")
            yield _error_event("Failed to save the AI response", str(exc), type(exc).__name__)
            return

        run.state = run.outcome = "completed"
        logger.info(
            "send_run_completed",
            extra={"room": room_id, "run": run.run_id, "provider": provider_name, "deltas": run.delta_count},
        )
        record_run("completed")
        await self._notify(room_id, assistant_row)
        yield StreamEvent(
            type="ai_response_complete",
            data={
                "id": assistant_row["id"],
                "fullText": assistant_row["message"],
                "message": assistant_row["message"],
                "timestamp": assistant_row["created_at"],
            },
        )


_orchestrator: SendOrchestrator | None = None


def get_orchestrator() -> SendOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SendOrchestrator(get_gateway())
    return _orchestrator


def reset_orchestrator() -> None:
    global _orchestrator
    _orchestrator = None
