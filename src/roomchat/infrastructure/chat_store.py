from __future__ import annotations

from datetime import UTC, datetime
from typing import List, Optional
import uuid

from ..domain.chat_models import SYSTEM_AUTHOR, HistoryEntry, Room, RoomSummary
from .gateway import Executor, Row


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid.uuid4())


class ChatStore:
    """SQL for rooms, memberships, messages and users.

    Methods take the executor to run on, either the gateway itself (autocommit)
    or a transaction handle owned by the caller.
    """

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    async def upsert_user(self, db: Executor, user_id: str, email: Optional[str], name: Optional[str] = None) -> None:
        await db.run(
            "INSERT INTO users (id, email, name, created_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET email = excluded.email, name = COALESCE(excluded.name, users.name)",
            (user_id, email, name, now_iso()),
        )

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------
    def _room_model(self, row: Row) -> Room:
        return Room(
            id=row["id"],
            name=row["name"],
            created_by=row["created_by"],
            ai_type=row["ai_type"],
            model=row.get("model"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def create_room(
        self,
        db: Executor,
        name: str,
        created_by: str,
        ai_type: str,
        model: Optional[str] = None,
    ) -> Room:
        room_id = new_id()
        now = now_iso()
        await db.run(
            "INSERT INTO chat_rooms (id, name, created_by, ai_type, model, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (room_id, name, created_by, ai_type, model, now, now),
        )
        # The creator is always the first member.
        await self.add_member(db, room_id, created_by)
        return Room(
            id=room_id,
            name=name,
            created_by=created_by,
            ai_type=ai_type,
            model=model,
            created_at=now,
            updated_at=now,
        )

    async def get_room(self, db: Executor, room_id: str) -> Optional[Room]:
        row = await db.get("SELECT * FROM chat_rooms WHERE id = ?", (room_id,))
        return self._room_model(row) if row else None

    async def list_rooms_for_user(self, db: Executor, user_id: str) -> List[RoomSummary]:
        rows = await db.all(
            """
            SELECT r.*,
                   (SELECT COUNT(*) FROM chat_room_members m WHERE m.room_id = r.id) AS member_count,
                   (SELECT message FROM chat_room_messages
                     WHERE room_id = r.id ORDER BY created_at DESC, seq DESC LIMIT 1) AS last_message
              FROM chat_rooms r
             WHERE EXISTS (SELECT 1 FROM chat_room_members WHERE room_id = r.id AND user_id = ?)
             ORDER BY r.updated_at DESC
            """,
            (user_id,),
        )
        return [
            RoomSummary(
                **self._room_model(row).model_dump(),
                member_count=int(row["member_count"] or 0),
                last_message=row.get("last_message"),
            )
            for row in rows
        ]

    async def touch_room(self, db: Executor, room_id: str) -> None:
        await db.run("UPDATE chat_rooms SET updated_at = ? WHERE id = ?", (now_iso(), room_id))

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------
    async def add_member(self, db: Executor, room_id: str, user_id: str) -> bool:
        changed = await db.run(
            "INSERT OR IGNORE INTO chat_room_members (room_id, user_id, joined_at) VALUES (?, ?, ?)",
            (room_id, user_id, now_iso()),
        )
        return changed > 0

    async def is_member(self, db: Executor, room_id: str, user_id: str) -> bool:
        row = await db.get(
            "SELECT 1 AS ok FROM chat_room_members WHERE room_id = ? AND user_id = ?",
            (room_id, user_id),
        )
        return row is not None

    async def count_members(self, db: Executor, room_id: str) -> int:
        row = await db.get(
            "SELECT COUNT(*) AS count FROM chat_room_members WHERE room_id = ?",
            (room_id,),
        )
        return int(row["count"]) if row else 0

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    async def insert_message(
        self,
        db: Executor,
        room_id: str,
        user_id: str,
        body: str,
        message_id: Optional[str] = None,
        created_at: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> Row:
        mid = message_id or new_id()
        ts = created_at or now_iso()
        await db.run(
            "INSERT INTO chat_room_messages (id, room_id, user_id, reply_to, message, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (mid, room_id, user_id, reply_to, body, ts),
        )
        return {
            "id": mid,
            "room_id": room_id,
            "user_id": user_id,
            "reply_to": reply_to,
            "message": body,
            "created_at": ts,
        }

    async def get_message(self, db: Executor, message_id: str) -> Optional[Row]:
        return await db.get("SELECT * FROM chat_room_messages WHERE id = ?", (message_id,))

    async def history(self, db: Executor, room_id: str) -> List[HistoryEntry]:
        rows = await db.all(
            """
            SELECT m.id, m.user_id, m.reply_to, m.message, m.created_at,
                   CASE WHEN m.user_id = ? THEN ? ELSE COALESCE(u.email, 'Unknown') END AS author_label
              FROM chat_room_messages m
              LEFT JOIN users u ON m.user_id = u.id
             WHERE m.room_id = ?
             ORDER BY m.created_at ASC, m.seq ASC
            """,
            (SYSTEM_AUTHOR, SYSTEM_AUTHOR, room_id),
        )
        return [
            HistoryEntry(
                id=row["id"],
                author_id=row["user_id"],
                author_label=row["author_label"],
                body=row["message"],
                created_at=row["created_at"],
                reply_to=row.get("reply_to"),
            )
            for row in rows
        ]


_store: ChatStore | None = None


def get_chat_store() -> ChatStore:
    global _store
    if _store is None:
        _store = ChatStore()
    return _store
