"""Process-wide settings for the roomchat service.

Values are read from the environment (optionally seeded from a ``.env`` file by
the API entry point). Provider credentials are not part of this object; the
model router reads them directly so that tests can hand it an explicit mapping.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Invalid value for {name}: {raw!r}")


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Invalid value for {name}: {raw!r}")


@dataclass(frozen=True)
class Settings:
    db_path: str = "data/roomchat.sqlite"
    default_model: str = "gpt-4o-mini"
    default_ai_type: str = "code_generation"
    chunk_size: int = 20
    chunk_delay: float = 0.05
    llm_timeout: float = 60.0
    sse_heartbeat: float = 15.0
    temperature: float = 0.7
    max_tokens: int = 4000

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = env if env is not None else os.environ
        chunk_size = _int(env, "ROOMCHAT_CHUNK_SIZE", 20)
        if chunk_size < 1:
            raise RuntimeError("ROOMCHAT_CHUNK_SIZE must be positive")
        return Settings(
            db_path=env.get("ROOMCHAT_DB_PATH") or "data/roomchat.sqlite",
            default_model=env.get("ROOMCHAT_DEFAULT_MODEL") or "gpt-4o-mini",
            default_ai_type=env.get("ROOMCHAT_DEFAULT_AI_TYPE") or "code_generation",
            chunk_size=chunk_size,
            chunk_delay=max(0.0, _float(env, "ROOMCHAT_CHUNK_DELAY", 0.05)),
            llm_timeout=_float(env, "ROOMCHAT_LLM_TIMEOUT", 60.0),
            sse_heartbeat=max(0.0, _float(env, "ROOMCHAT_SSE_HEARTBEAT", 15.0)),
            temperature=_float(env, "ROOMCHAT_LLM_TEMPERATURE", 0.7),
            max_tokens=_int(env, "ROOMCHAT_LLM_MAX_TOKENS", 4000),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
