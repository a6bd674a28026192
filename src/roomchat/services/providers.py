"""Provider adapters: one streaming interface over three LLM backends.

Every adapter exposes ``produce(system_prompt, user_message)`` as an async
iterator of text deltas. The OpenAI adapter passes upstream deltas through;
the Gemini and Claude adapters fetch one complete body and slice it into
fixed-size fragments so callers never need to know which branch fired.

Adapters make exactly one upstream call per run and never retry it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Tuple

import requests
from langchain_openai import ChatOpenAI
from requests.adapters import HTTPAdapter

from ..config import Settings
from .model_router import ProviderBinding, ProviderKind
from .provider_errors import (
    ProviderEmptyResponse,
    ProviderError,
    ProviderMalformedResponse,
    ProviderNetworkFailure,
)

LOG = logging.getLogger("roomchat.llm")

ANTHROPIC_VERSION = "2023-06-01"


class StreamingProvider(Protocol):
    binding: ProviderBinding

    def produce(self, system_prompt: str, user_message: str) -> AsyncIterator[str]: ...


def _build_session() -> requests.Session:
    session = requests.Session()
    # One attempt per run: a retried POST may be billed twice.
    adapter = HTTPAdapter(max_retries=0, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class OpenAIStreamingProvider:
    """Chat-completions API with native token streaming via ``ChatOpenAI.astream``."""

    def __init__(
        self,
        binding: ProviderBinding,
        temperature: float = 0.7,
        max_tokens: int = 4000,
        timeout: float = 60.0,
    ) -> None:
        self.binding = binding
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout

    def _client(self) -> ChatOpenAI:
        return ChatOpenAI(
            api_key=self.binding.api_key,
            base_url=self.binding.base_url,
            model=self.binding.model,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            timeout=self._timeout,
            max_retries=0,
            streaming=True,
        )

    async def produce(self, system_prompt: str, user_message: str) -> AsyncIterator[str]:
        llm = self._client()
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]
        LOG.debug("llm_stream_started", extra={"provider": self.binding.kind.value, "model": self.binding.model})
        emitted = 0
        try:
            async for chunk in llm.astream(messages):
                content = getattr(chunk, "content", None)
                if not isinstance(content, str):
                    raise ProviderMalformedResponse(f"Stream chunk carried {type(content).__name__}, expected text")
                if not content:
                    continue
                emitted += 1
                yield content
        except ProviderError:
            raise
        except Exception as exc:
            LOG.warning("llm_stream_failed", extra={"provider": "openai", "err": str(exc), "deltas": emitted})
            raise ProviderNetworkFailure(str(exc)) from exc
        if not emitted:
            raise ProviderEmptyResponse(f"{self.binding.model} streamed no content")


class ChunkedProvider(ABC):
    """Base for request/response APIs replayed as a pseudo-stream."""

    def __init__(
        self,
        binding: ProviderBinding,
        chunk_size: int = 20,
        chunk_delay: float = 0.05,
        timeout: float = 60.0,
        temperature: float = 0.7,
        max_tokens: int = 4000,
        session: Optional[requests.Session] = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.binding = binding
        self._chunk_size = chunk_size
        self._chunk_delay = chunk_delay
        self._timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._session = session or _build_session()

    @abstractmethod
    def _request(self, system_prompt: str, user_message: str) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        """Return the URL, headers and JSON payload of the upstream call."""

    @abstractmethod
    def _extract_text(self, data: Any) -> str:
        """Pull the reply text out of the decoded response body."""

    def fetch_text(self, system_prompt: str, user_message: str) -> str:
        """Blocking call returning the complete, validated response body."""
        url, headers, payload = self._request(system_prompt, user_message)
        started = time.perf_counter()
        try:
            resp = self._session.post(url, json=payload, headers=headers, timeout=(5, self._timeout))
        except requests.exceptions.RequestException as exc:
            LOG.warning("llm_request_failed", extra={"provider": self.binding.kind.value, "err": str(exc)})
            raise ProviderNetworkFailure(str(exc)) from exc
        if resp.status_code >= 400:
            raise ProviderNetworkFailure(f"{self.binding.kind.value} returned HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderMalformedResponse("Response body is not JSON") from exc
        text = self._extract_text(data)
        if not isinstance(text, str):
            raise ProviderMalformedResponse(f"Response text is {type(text).__name__}, expected text")
        if not text.strip():
            raise ProviderEmptyResponse(f"{self.binding.model} returned an empty body")
        LOG.debug(
            "llm_response_received",
            extra={
                "provider": self.binding.kind.value,
                "chars": len(text),
                "elapsed_s": round(time.perf_counter() - started, 3),
            },
        )
        return text

    async def produce(self, system_prompt: str, user_message: str) -> AsyncIterator[str]:
        text = await asyncio.to_thread(self.fetch_text, system_prompt, user_message)
        for idx in range(0, len(text), self._chunk_size):
            if idx and self._chunk_delay:
                await asyncio.sleep(self._chunk_delay)
            yield text[idx : idx + self._chunk_size]


class GeminiProvider(ChunkedProvider):
    def _request(self, system_prompt: str, user_message: str) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        url = f"{self.binding.base_url}/models/{self.binding.model}:generateContent"
        headers = {"x-goog-api-key": self.binding.api_key, "Content-Type": "application/json"}
        payload = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_message}]}],
            "generationConfig": {"temperature": self._temperature, "maxOutputTokens": self._max_tokens},
        }
        return url, headers, payload

    def _extract_text(self, data: Any) -> str:
        try:
            candidates = data["candidates"]
            parts = candidates[0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderMalformedResponse("Gemini response has no candidate content") from exc
        texts: List[str] = []
        for part in parts:
            if not isinstance(part, dict):
                raise ProviderMalformedResponse("Gemini content part is not an object")
            value = part.get("text")
            if value is None:
                continue
            if not isinstance(value, str):
                raise ProviderMalformedResponse("Gemini content part text is not a string")
            texts.append(value)
        return "".join(texts)


class ClaudeProvider(ChunkedProvider):
    def _request(self, system_prompt: str, user_message: str) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        url = f"{self.binding.base_url}/messages"
        headers = {
            "x-api-key": self.binding.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.binding.model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_message}],
        }
        return url, headers, payload

    def _extract_text(self, data: Any) -> str:
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise ProviderMalformedResponse("Claude response has no content blocks")
        texts: List[str] = []
        for block in blocks:
            if not isinstance(block, dict):
                raise ProviderMalformedResponse("Claude content block is not an object")
            if block.get("type") != "text":
                continue
            value = block.get("text")
            if not isinstance(value, str):
                raise ProviderMalformedResponse("Claude text block has no string text")
            texts.append(value)
        return "".join(texts)


def build_provider(binding: ProviderBinding, settings: Settings) -> StreamingProvider:
    """Instantiate the adapter variant for ``binding``."""
    if binding.kind is ProviderKind.OPENAI:
        return OpenAIStreamingProvider(
            binding,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.llm_timeout,
        )
    chunked_cls = GeminiProvider if binding.kind is ProviderKind.GEMINI else ClaudeProvider
    return chunked_cls(
        binding,
        chunk_size=settings.chunk_size,
        chunk_delay=settings.chunk_delay,
        timeout=settings.llm_timeout,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
