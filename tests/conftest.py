import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


_PROVIDER_ENV = (
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OPENAI_MODEL",
    "GEMINI_API_KEY",
    "GEMINI_BASE_URL",
    "GEMINI_MODEL",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_BASE_URL",
    "ANTHROPIC_MODEL",
    "REDIS_URL",
)


@pytest.fixture(autouse=True)
def _isolated_backend(tmp_path, monkeypatch):
    """Give every test its own SQLite file and no real provider credentials."""
    from src.roomchat.config import reset_settings
    from src.roomchat.infrastructure.gateway import reset_gateway
    from src.roomchat.services.send_orchestrator import reset_orchestrator

    for key in _PROVIDER_ENV:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ROOMCHAT_DB_PATH", str(tmp_path / "roomchat.sqlite"))
    monkeypatch.setenv("ROOMCHAT_CHUNK_DELAY", "0")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    reset_settings()
    reset_gateway()
    reset_orchestrator()
    yield
    reset_orchestrator()
    reset_gateway()
    reset_settings()
