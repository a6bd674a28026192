from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from src.roomchat.api.main import app
from src.roomchat.observability.metrics import record_run, sanitize_path


client = TestClient(app)


def test_metrics_endpoint_exposes_histogram():
    # Trigger a request to ensure histogram has an observation
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["components"]["database"] == "ok"

    m = client.get("/metrics")
    assert m.status_code == 200
    body = m.text

    assert "# HELP roomchat_request_latency_seconds" in body
    assert "# TYPE roomchat_request_latency_seconds histogram" in body
    assert "roomchat_request_latency_seconds_count" in body
    assert "roomchat_send_runs_total" in body


def test_record_run_increments_outcome_counter():
    before = REGISTRY.get_sample_value("roomchat_send_runs_total", {"outcome": "skipped"}) or 0.0
    record_run("skipped")
    after = REGISTRY.get_sample_value("roomchat_send_runs_total", {"outcome": "skipped"})
    assert after == before + 1


def test_sanitize_path_collapses_ids():
    assert sanitize_path("/rooms/3f2a/join") == "/rooms"
    assert sanitize_path("/chat/history?roomId=abc") == "/chat/history"
    assert sanitize_path("/api/rooms/abc/messages") == "/api/rooms"
    assert sanitize_path("") == "/"
