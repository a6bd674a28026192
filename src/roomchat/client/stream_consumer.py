"""Blocking SSE client for ``POST /chat/send``.

The consumer retries opening the stream only until the server has confirmed
the user message (``user_message_saved``). After that a resend would
duplicate the message, so a dropped stream is recovered by pulling
``GET /chat/history`` instead.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests

from .transcript import Transcript

logger = logging.getLogger(__name__)

TERMINAL = ("ai_response_complete", "error")
INTERRUPTED = "The response was interrupted. Reload the room to see the reply."


class StreamConnectError(Exception):
    """The stream could not be opened."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class StreamProtocolError(Exception):
    """The server sent a frame that is not a typed JSON event."""


@dataclass
class SendOutcome:
    status: str  # saved | completed | errored | recovered | incomplete
    user_message_id: Optional[str] = None
    assistant_message_id: Optional[str] = None
    run_id: Optional[str] = None
    error: Optional[str] = None


def parse_sse_lines(lines: Iterator[str]) -> Iterator[Dict[str, Any]]:
    """Yield the JSON payload of every ``data:`` line; other SSE fields are ignored."""
    for raw in lines:
        if not raw:
            continue
        line = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        if not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise StreamProtocolError(f"Frame is not JSON: {payload[:80]!r}") from exc
        if not isinstance(event, dict) or not isinstance(event.get("type"), str):
            raise StreamProtocolError("Frame has no event type")
        yield event


class StreamConsumer:
    def __init__(
        self,
        base_url: str,
        token: str,
        transcript: Optional[Transcript] = None,
        session: Optional[requests.Session] = None,
        connect_timeout: float = 5.0,
        idle_timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        history_polls: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.transcript = transcript or Transcript()
        self._token = token
        self._session = session or requests.Session()
        # requests applies the read timeout to every socket read, which makes it an idle timeout.
        self._timeout = (connect_timeout, idle_timeout)
        self._max_retries = max_retries
        self._backoff = backoff_seconds
        self._history_polls = max(1, history_polls)
        self._sleep = sleep

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def _open(self, room_id: str, text: str, ai_type: Optional[str]) -> requests.Response:
        body: Dict[str, Any] = {"roomId": room_id, "message": text}
        if ai_type:
            body["aiType"] = ai_type
        try:
            resp = self._session.post(
                f"{self.base_url}/chat/send",
                json=body,
                headers={**self._headers, "Accept": "text/event-stream"},
                timeout=self._timeout,
                stream=True,
            )
        except requests.exceptions.RequestException as exc:
            raise StreamConnectError(str(exc)) from exc
        if resp.status_code >= 400:
            detail = resp.text[:200]
            resp.close()
            raise StreamConnectError(f"HTTP {resp.status_code}: {detail}", retryable=resp.status_code >= 500)
        return resp

    def fetch_history(self, room_id: str) -> Optional[List[Dict[str, Any]]]:
        try:
            resp = self._session.get(
                f"{self.base_url}/chat/history",
                params={"roomId": room_id},
                headers=self._headers,
                timeout=self._timeout,
            )
            resp.raise_for_status()
            return list(resp.json().get("history", []))
        except (requests.exceptions.RequestException, ValueError) as exc:
            logger.warning("history_refresh_failed", extra={"room": room_id, "err": str(exc)})
            return None

    def _refresh(self, room_id: str) -> Optional[List[Dict[str, Any]]]:
        entries = self.fetch_history(room_id)
        if entries is not None:
            self.transcript.replace_with_history(entries)
        return entries

    def send(self, room_id: str, text: str, ai_type: Optional[str] = None) -> SendOutcome:
        self.transcript.add_optimistic(text)
        attempt = 0
        while True:
            outcome = self._attempt(room_id, text, ai_type)
            if outcome is not None:
                return outcome
            attempt += 1
            if attempt > self._max_retries:
                message = "Connection to the server failed. Please try again."
                self.transcript.fail(message)
                return SendOutcome(status="errored", error=message)
            delay = self._backoff * attempt
            logger.info("stream_reconnecting", extra={"room": room_id, "attempt": attempt, "delay": delay})
            self._sleep(delay)

    def _attempt(self, room_id: str, text: str, ai_type: Optional[str]) -> Optional[SendOutcome]:
        """Run one connection; None means nothing was confirmed and a retry is safe."""
        try:
            resp = self._open(room_id, text, ai_type)
        except StreamConnectError as exc:
            logger.warning("stream_open_failed", extra={"room": room_id, "err": str(exc)})
            if exc.retryable:
                return None
            self.transcript.fail(str(exc))
            return SendOutcome(status="errored", error=str(exc))

        outcome = SendOutcome(status="incomplete")
        saved = False
        call_ai = False
        terminal: Optional[str] = None
        try:
            for event in parse_sse_lines(resp.iter_lines(decode_unicode=True)):
                self.transcript.apply(event)
                kind, data = event["type"], event.get("data") or {}
                if kind == "user_message_saved":
                    saved = True
                    call_ai = bool(data.get("shouldCallAI"))
                    outcome.user_message_id = data.get("id")
                    outcome.assistant_message_id = data.get("assistantMessageId")
                    outcome.run_id = data.get("runId")
                elif kind == "error":
                    outcome.error = str(data.get("message") or "")
                if kind in TERMINAL:
                    terminal = kind
                    break
        except (requests.exceptions.RequestException, StreamProtocolError) as exc:
            logger.warning("stream_dropped", extra={"room": room_id, "saved": saved, "err": str(exc)})
        finally:
            resp.close()

        if terminal == "error":
            outcome.status = "errored"
            if saved:
                self._refresh(room_id)
                self.transcript.error = outcome.error
            return outcome
        if terminal == "ai_response_complete":
            outcome.status = "completed"
            self._refresh(room_id)
            return outcome
        if not saved:
            return None
        if not call_ai:
            outcome.status = "saved"
            return outcome
        return self._recover(room_id, outcome)

    def _recover(self, room_id: str, outcome: SendOutcome) -> SendOutcome:
        # The run may still be streaming server-side, so history is polled a few times.
        for poll in range(self._history_polls):
            if poll:
                self._sleep(self._backoff * poll)
            entries = self._refresh(room_id)
            for entry in entries or []:
                if entry.get("id") == outcome.assistant_message_id or (
                    outcome.user_message_id and entry.get("replyTo") == outcome.user_message_id
                ):
                    outcome.status = "recovered"
                    return outcome
        outcome.status = "incomplete"
        outcome.error = INTERRUPTED
        self.transcript.fail(INTERRUPTED)
        return outcome
