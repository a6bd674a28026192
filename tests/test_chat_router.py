from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from src.roomchat.api.main import app
from src.roomchat.infrastructure.gateway import get_gateway
from src.roomchat.services.model_router import ModelRouter
from src.roomchat.services.send_orchestrator import SendOrchestrator, get_orchestrator

from .utils import ScriptedProvider, headers_for, seed_room, sse_events, token_for


client = TestClient(app)


@pytest.fixture
def provider():
    """Route every send through a scripted provider with an OpenAI credential present."""
    scripted = ScriptedProvider(["Hi ", "from ", "the bot"])
    app.dependency_overrides[get_orchestrator] = lambda: SendOrchestrator(
        get_gateway(),
        router=ModelRouter(env={"OPENAI_API_KEY": "sk-test"}),
        provider_factory=lambda binding: scripted,
        publisher=lambda *args: None,
    )
    yield scripted
    app.dependency_overrides.pop(get_orchestrator, None)


def test_post_send_streams_events_for_solo_room(provider):
    room_id = seed_room(get_gateway(), ["alice"])

    res = client.post("/chat/send", json={"roomId": room_id, "message": "hello"}, headers=headers_for("alice"))

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.headers["cache-control"].startswith("no-cache")
    events = sse_events(res.text)
    assert [e["type"] for e in events] == [
        "user_message_saved",
        "ai_response_chunk",
        "ai_response_chunk",
        "ai_response_chunk",
        "ai_response_complete",
    ]
    assert events[-1]["data"]["fullText"] == "Hi from the bot"

    hist = client.get("/chat/history", params={"roomId": room_id}, headers=headers_for("alice"))
    assert hist.status_code == 200
    body = hist.json()
    assert body["roomId"] == room_id
    assert [(h["authorLabel"], h["body"]) for h in body["history"]] == [
        ("alice@example.com", "hello"),
        ("system", "Hi from the bot"),
    ]
    assert body["history"][1]["replyTo"] == events[0]["data"]["id"]
    assert body["history"][1]["id"] == events[0]["data"]["assistantMessageId"]


def test_get_send_accepts_token_query_parameter(provider):
    room_id = seed_room(get_gateway(), ["alice", "bob"])

    res = client.get(
        "/chat/send",
        params={"roomId": room_id, "message": "@AI help", "aiType": "standard", "token": token_for("bob")},
    )

    assert res.status_code == 200
    events = sse_events(res.text)
    assert events[0]["data"]["shouldCallAI"] is True
    assert events[-1]["type"] == "ai_response_complete"


def test_shared_room_without_mention_only_confirms_save(provider):
    room_id = seed_room(get_gateway(), ["alice", "bob", "carol"])

    res = client.post("/chat/send", json={"roomId": room_id, "message": "hello"}, headers=headers_for("carol"))

    assert [e["type"] for e in sse_events(res.text)] == ["user_message_saved"]
    assert provider.calls == []


def test_provider_failure_ends_stream_with_error_and_keeps_message():
    failing = ScriptedProvider(["partial"], fail_after=1)
    app.dependency_overrides[get_orchestrator] = lambda: SendOrchestrator(
        get_gateway(),
        router=ModelRouter(env={"OPENAI_API_KEY": "sk-test"}),
        provider_factory=lambda binding: failing,
        publisher=lambda *args: None,
    )
    try:
        room_id = seed_room(get_gateway(), ["alice"])
        res = client.post("/chat/send", json={"roomId": room_id, "message": "hello"}, headers=headers_for("alice"))
    finally:
        app.dependency_overrides.pop(get_orchestrator, None)

    events = sse_events(res.text)
    assert [e["type"] for e in events] == ["user_message_saved", "ai_response_chunk", "error"]
    assert set(events[-1]["data"]) == {"message", "details", "code"}

    hist = client.get("/chat/history", params={"roomId": room_id}, headers=headers_for("alice")).json()
    assert [h["body"] for h in hist["history"]] == ["hello"]


def test_send_to_unknown_room_is_404(provider):
    res = client.post("/chat/send", json={"roomId": "missing", "message": "hello"}, headers=headers_for("alice"))
    assert res.status_code == 404


def test_send_by_non_member_is_403(provider):
    room_id = seed_room(get_gateway(), ["alice"])
    res = client.post("/chat/send", json={"roomId": room_id, "message": "hello"}, headers=headers_for("mallory"))
    assert res.status_code == 403


@pytest.mark.parametrize("message", ["", "   "])
def test_empty_message_is_422(provider, message):
    room_id = seed_room(get_gateway(), ["alice"])
    res = client.post("/chat/send", json={"roomId": room_id, "message": message}, headers=headers_for("alice"))
    assert res.status_code == 422


def test_send_requires_authentication():
    res = client.post("/chat/send", json={"roomId": "r", "message": "hello"})
    assert res.status_code == 401


def test_viewer_cannot_send():
    room_id = seed_room(get_gateway(), ["alice"])
    res = client.post(
        "/chat/send",
        json={"roomId": room_id, "message": "hello"},
        headers=headers_for("alice", roles=["viewer"]),
    )
    assert res.status_code == 403


def test_history_requires_membership():
    room_id = seed_room(get_gateway(), ["alice"])

    assert client.get("/chat/history", params={"roomId": room_id}, headers=headers_for("eve")).status_code == 403
    assert client.get("/chat/history", params={"roomId": "nope"}, headers=headers_for("eve")).status_code == 404


def test_history_of_empty_room_stays_empty():
    room_id = seed_room(get_gateway(), ["alice"])

    for _ in range(2):
        res = client.get("/chat/history", params={"roomId": room_id}, headers=headers_for("alice"))
        assert res.status_code == 200
        assert res.json()["history"] == []


def test_models_and_ai_types_catalogs(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-live")

    models = client.get("/chat/models", headers=headers_for("alice"))
    assert models.status_code == 200
    by_provider = {m["provider"]: m for m in models.json()}
    assert by_provider["openai"]["available"] is True
    assert by_provider["gemini"]["available"] is False

    types = client.get("/chat/ai-types", headers=headers_for("alice"))
    assert types.status_code == 200
    keys = [t["ai_type"] for t in types.json()]
    assert "code_generation" in keys and "english_conversation" in keys


def test_api_prefix_mirrors_routes(provider):
    room_id = seed_room(get_gateway(), ["alice"])
    res = client.post("/api/chat/send", json={"roomId": room_id, "message": "hi"}, headers=headers_for("alice"))
    assert res.status_code == 200
    assert sse_events(res.text)[-1]["type"] == "ai_response_complete"
