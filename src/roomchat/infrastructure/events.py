"""Best-effort Redis notifications about new room messages.

Other members' clients subscribe to ``roomchat.events.room.message`` and pull
history when something lands in a room they are viewing. Nothing here may fail
a send run: without ``REDIS_URL`` publishing is a no-op, and connection or
publish errors drop the client so the next call reconnects.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger(__name__)


class _RedisPublisher:
    def __init__(self, url: str) -> None:
        self._url = url
        self._client = None
        self._connect()

    def _connect(self) -> None:
        try:
            self._client = redis.Redis.from_url(self._url, socket_timeout=0.5, socket_connect_timeout=0.5)
            self._client.ping()
        except Exception as exc:
            logger.debug("redis_connect_failed", extra={"err": str(exc)})
            self._client = None

    def publish(self, channel: str, payload: Dict[str, Any]) -> bool:
        if not self._client:
            self._connect()
        if not self._client:
            return False
        try:
            self._client.publish(channel, json.dumps(payload))
            return True
        except Exception as exc:
            logger.warning("redis_publish_failed", extra={"channel": channel, "err": str(exc)})
            self._client = None
            return False


_publisher: Optional[_RedisPublisher] = None


def _get_publisher() -> Optional[_RedisPublisher]:
    global _publisher
    if _publisher is not None:
        return _publisher
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    _publisher = _RedisPublisher(url)
    return _publisher


def publish_event(event_type: str, payload: Dict[str, Any]) -> bool:
    publisher = _get_publisher()
    if not publisher:
        return False
    return publisher.publish(f"roomchat.events.{event_type}", payload)


def publish_room_message(room_id: str, message_id: str, author_id: str, created_at: str) -> bool:
    return publish_event(
        "room.message",
        {"room_id": room_id, "message_id": message_id, "author_id": author_id, "created_at": created_at},
    )
