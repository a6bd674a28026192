from __future__ import annotations

import uuid
from typing import List, Optional
from fastapi import APIRouter, HTTPException, status, Depends, Query
from fastapi.responses import StreamingResponse

from ...config import get_settings
from ...security.rbac import require_permission, Permission
from ...security.auth import User
from ...domain.chat_models import AiTypeOption, ChatModelOption, HistoryResponse, SendRequest
from ...infrastructure.chat_store import get_chat_store
from ...infrastructure.gateway import Gateway, get_gateway
from ...services.history import read_history
from ...services.model_router import ModelRouter
from ...services.prompts import known_ai_types
from ...services.send_orchestrator import NotAMember, RoomNotFound, SendOrchestrator, SendRejected, get_orchestrator
from ...services.stream_transport import SSE_HEADERS, sse_frames, start_run


router = APIRouter(prefix="/chat", tags=["chat"])


def rejection_to_http(exc: SendRejected) -> HTTPException:
    if isinstance(exc, RoomNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, NotAMember):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)


async def remember_user(gateway: Gateway, user: User) -> None:
    """Record the caller so history can label their messages."""
    await get_chat_store().upsert_user(gateway, user.id, user.email, user.name or None)


async def _open_stream(
    orchestrator: SendOrchestrator,
    gateway: Gateway,
    user: User,
    room_id: str,
    message: str,
    ai_type: Optional[str],
) -> StreamingResponse:
    if not message.strip():
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Message text is empty")
    await remember_user(gateway, user)
    # 404/403 are only possible before the response switches to streaming.
    try:
        await orchestrator.check_access(room_id, user.id)
    except SendRejected as exc:
        raise rejection_to_http(exc)
    channel, task = start_run(
        orchestrator.handle_send(room_id, user.id, message, requested_ai_type=ai_type),
        label=f"{room_id}:{uuid.uuid4().hex[:8]}",
    )
    # A heartbeat of 0 disables keep-alive comments.
    frames = sse_frames(channel, task, heartbeat=get_settings().sse_heartbeat or None)
    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/send")
async def send_message(
    req: SendRequest,
    user: User = Depends(require_permission(Permission.CHAT_WRITE)),
    orchestrator: SendOrchestrator = Depends(get_orchestrator),
    gateway: Gateway = Depends(get_gateway),
) -> StreamingResponse:
    return await _open_stream(orchestrator, gateway, user, req.room_id, req.message, req.ai_type)


@router.get("/send")
async def send_message_sse(
    room_id: str = Query(..., alias="roomId", min_length=1),
    message: str = Query(..., min_length=1),
    ai_type: Optional[str] = Query(None, alias="aiType"),
    user: User = Depends(require_permission(Permission.CHAT_WRITE)),
    orchestrator: SendOrchestrator = Depends(get_orchestrator),
    gateway: Gateway = Depends(get_gateway),
) -> StreamingResponse:
    """EventSource variant of ``POST /chat/send``; the token travels as ``?token=``."""
    return await _open_stream(orchestrator, gateway, user, room_id, message, ai_type)


@router.get("/history", response_model=HistoryResponse, response_model_by_alias=True)
async def get_history(
    room_id: str = Query(..., alias="roomId", min_length=1),
    user: User = Depends(require_permission(Permission.CHAT_READ)),
    gateway: Gateway = Depends(get_gateway),
) -> HistoryResponse:
    await remember_user(gateway, user)
    try:
        entries = await read_history(gateway, room_id, user.id)
    except SendRejected as exc:
        raise rejection_to_http(exc)
    return HistoryResponse(room_id=room_id, history=entries)


@router.get("/models", response_model=List[ChatModelOption])
def list_models(user: User = Depends(require_permission(Permission.CHAT_READ))) -> List[ChatModelOption]:
    router_ = ModelRouter(default_model=get_settings().default_model)
    return [ChatModelOption(**entry) for entry in router_.catalog()]


@router.get("/ai-types", response_model=List[AiTypeOption])
def list_ai_types(user: User = Depends(require_permission(Permission.CHAT_READ))) -> List[AiTypeOption]:
    return [AiTypeOption(ai_type=key, label=label) for key, label in known_ai_types()]
