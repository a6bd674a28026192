from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SYSTEM_AUTHOR = "system"

EventType = Literal["user_message_saved", "ai_response_chunk", "ai_response_complete", "error"]


class RoomCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    ai_type: Optional[str] = Field(default=None, alias="aiType")
    model: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class Room(BaseModel):
    id: str
    name: str
    created_by: str
    ai_type: str
    model: Optional[str] = None
    created_at: str
    updated_at: str


class RoomSummary(Room):
    member_count: int = 0
    last_message: Optional[str] = None


class SendRequest(BaseModel):
    room_id: str = Field(alias="roomId", min_length=1)
    message: str = Field(min_length=1)
    ai_type: Optional[str] = Field(default=None, alias="aiType")

    model_config = ConfigDict(populate_by_name=True)


class HistoryEntry(BaseModel):
    id: str
    author_id: str = Field(alias="authorId")
    author_label: str = Field(alias="authorLabel")
    body: str
    created_at: str = Field(alias="createdAt")
    reply_to: Optional[str] = Field(default=None, alias="replyTo")

    model_config = ConfigDict(populate_by_name=True)


class HistoryResponse(BaseModel):
    room_id: str = Field(alias="roomId")
    history: List[HistoryEntry]

    model_config = ConfigDict(populate_by_name=True)


class StreamEvent(BaseModel):
    """One frame of the send stream: a ``type`` discriminator plus a ``data`` object."""

    type: EventType
    data: Dict[str, Any] = Field(default_factory=dict)


class ChatModelOption(BaseModel):
    provider: str
    model: str
    label: str
    streaming: bool
    available: bool


class AiTypeOption(BaseModel):
    ai_type: str
    label: str
