from __future__ import annotations

from typing import List
from fastapi import APIRouter, HTTPException, status, Depends

from ...config import get_settings
from ...security.rbac import require_permission, Permission
from ...security.auth import User
from ...domain.chat_models import HistoryResponse, Room, RoomCreate, RoomSummary
from ...infrastructure.chat_store import get_chat_store
from ...infrastructure.gateway import Gateway, get_gateway
from ...services.history import read_history
from ...services.prompts import is_known_ai_type
from ...services.send_orchestrator import SendRejected
from .chat import rejection_to_http, remember_user


router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.post("", response_model=Room, status_code=status.HTTP_201_CREATED)
async def create_room(
    req: RoomCreate,
    user: User = Depends(require_permission(Permission.CHAT_WRITE)),
    gateway: Gateway = Depends(get_gateway),
) -> Room:
    if req.ai_type and not is_known_ai_type(req.ai_type):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown AI type: {req.ai_type}")
    await remember_user(gateway, user)
    store = get_chat_store()
    async with gateway.transaction("create-room") as tx:
        room = await store.create_room(
            tx,
            name=req.name.strip(),
            created_by=user.id,
            ai_type=req.ai_type or get_settings().default_ai_type,
            model=req.model,
        )
    return room


@router.get("", response_model=List[RoomSummary])
async def list_rooms(
    user: User = Depends(require_permission(Permission.CHAT_READ)),
    gateway: Gateway = Depends(get_gateway),
) -> List[RoomSummary]:
    return await get_chat_store().list_rooms_for_user(gateway, user.id)


@router.post("/{room_id}/join", response_model=RoomSummary)
async def join_room(
    room_id: str,
    user: User = Depends(require_permission(Permission.CHAT_WRITE)),
    gateway: Gateway = Depends(get_gateway),
) -> RoomSummary:
    await remember_user(gateway, user)
    store = get_chat_store()
    room = await store.get_room(gateway, room_id)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat room not found")
    await store.add_member(gateway, room_id, user.id)
    members = await store.count_members(gateway, room_id)
    return RoomSummary(**room.model_dump(), member_count=members)


@router.get("/{room_id}/messages", response_model=HistoryResponse, response_model_by_alias=True)
async def room_messages(
    room_id: str,
    user: User = Depends(require_permission(Permission.CHAT_READ)),
    gateway: Gateway = Depends(get_gateway),
) -> HistoryResponse:
    try:
        entries = await read_history(gateway, room_id, user.id)
    except SendRejected as exc:
        raise rejection_to_http(exc)
    return HistoryResponse(room_id=room_id, history=entries)
