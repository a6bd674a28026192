"""Client view-model for one room: an ordered list of message records.

Records move through ``pending -> persisted`` (user messages) or
``streaming -> complete`` (assistant replies). The reducer never concatenates
deltas itself; the server's cumulative ``fullContentSoFar`` is authoritative.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from ..domain.chat_models import SYSTEM_AUTHOR

PENDING = "pending"
PERSISTED = "persisted"
STREAMING = "streaming"
COMPLETE = "complete"


@dataclass
class MessageView:
    local_id: str
    body: str
    author_id: Optional[str]
    state: str
    id: Optional[str] = None
    author_label: Optional[str] = None
    created_at: Optional[str] = None
    reply_to: Optional[str] = None

    @property
    def is_assistant(self) -> bool:
        return self.author_id == SYSTEM_AUTHOR


def _event_parts(event: Any) -> tuple[str, Mapping[str, Any]]:
    if isinstance(event, Mapping):
        return str(event.get("type")), event.get("data") or {}
    return str(event.type), event.data


class Transcript:
    def __init__(self, user_id: Optional[str] = None) -> None:
        self.user_id = user_id
        self.messages: List[MessageView] = []
        self.error: Optional[str] = None
        self._seq = itertools.count(1)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def busy(self) -> bool:
        """True while a send is unresolved; the input stays disabled."""
        return any(m.state in (PENDING, STREAMING) for m in self.messages)

    def bodies(self) -> List[str]:
        return [m.body for m in self.messages]

    def find(self, message_id: str) -> Optional[MessageView]:
        for view in self.messages:
            if view.id == message_id:
                return view
        return None

    def _latest(self, state: str, assistant: Optional[bool] = None) -> Optional[MessageView]:
        for view in reversed(self.messages):
            if view.state != state:
                continue
            if assistant is not None and view.is_assistant != assistant:
                continue
            return view
        return None

    def _oldest_pending(self) -> Optional[MessageView]:
        for view in self.messages:
            if view.state == PENDING:
                return view
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_optimistic(self, text: str) -> str:
        local_id = f"local-{next(self._seq)}"
        self.error = None
        self.messages.append(MessageView(local_id=local_id, body=text, author_id=self.user_id, state=PENDING))
        return local_id

    def fail(self, message: str) -> None:
        """Drop in-flight records that will never resolve and surface ``message``."""
        self.messages = [m for m in self.messages if m.state not in (PENDING, STREAMING)]
        self.error = message

    def apply(self, event: Any) -> None:
        kind, data = _event_parts(event)
        if kind == "user_message_saved":
            self._on_saved(data)
        elif kind == "ai_response_chunk":
            view = self._latest(STREAMING, assistant=True)
            if view is not None:
                view.body = str(data.get("fullContentSoFar", view.body))
        elif kind == "ai_response_complete":
            view = self._latest(STREAMING, assistant=True)
            if view is None:
                view = self._append_assistant(data.get("id"), None)
            view.id = data.get("id") or view.id
            view.body = str(data.get("fullText") or data.get("message") or view.body)
            view.created_at = data.get("timestamp", view.created_at)
            view.state = COMPLETE
        elif kind == "error":
            # Only records the server never committed are dropped; a persisted
            # user message stays visible.
            self.fail(str(data.get("message") or "The message could not be processed"))

    def _append_assistant(self, message_id: Optional[str], reply_to: Optional[str]) -> MessageView:
        view = MessageView(
            local_id=f"local-{next(self._seq)}",
            body="",
            author_id=SYSTEM_AUTHOR,
            author_label=SYSTEM_AUTHOR,
            state=STREAMING,
            id=message_id,
            reply_to=reply_to,
        )
        self.messages.append(view)
        return view

    def _on_saved(self, data: Mapping[str, Any]) -> None:
        view = self._oldest_pending()
        if view is None:
            view = MessageView(local_id=f"local-{next(self._seq)}", body="", author_id=self.user_id, state=PENDING)
            self.messages.append(view)
        view.id = data.get("id")
        view.body = str(data.get("text") or data.get("message") or view.body)
        view.created_at = data.get("timestamp")
        view.state = PERSISTED
        if data.get("shouldCallAI"):
            self._append_assistant(data.get("assistantMessageId"), view.id)

    def replace_with_history(self, entries: Iterable[Mapping[str, Any]]) -> None:
        """Rebuild from durable history, keeping only unsent optimistic records."""
        pending = [m for m in self.messages if m.state == PENDING]
        rebuilt: List[MessageView] = []
        for entry in entries:
            author = entry.get("authorId")
            rebuilt.append(
                MessageView(
                    local_id=f"local-{next(self._seq)}",
                    id=entry.get("id"),
                    body=str(entry.get("body") or ""),
                    author_id=author,
                    author_label=entry.get("authorLabel"),
                    created_at=entry.get("createdAt"),
                    reply_to=entry.get("replyTo"),
                    state=COMPLETE if author == SYSTEM_AUTHOR else PERSISTED,
                )
            )
        self.messages = rebuilt + pending

    def dismiss_error(self) -> None:
        self.error = None
