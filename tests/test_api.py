import json
import time
from contextlib import asynccontextmanager
from typing import List, Tuple

import pytest
from fastapi.testclient import TestClient

from async_push_service.api import MAX_BODY_BYTES, create_app
from async_push_service.core import AsyncPushCore
from async_push_service.models import Delivered
from async_push_service.prometheus import PushMetrics


class DummyService:
    def __init__(self, queued: int = 0):
        self.calls = []
        self.metrics = PushMetrics()
        self.queued = queued

    async def handle_command(self, cmd, payload):
        self.calls.append((cmd, payload))
        if cmd == "status":
            return {"ok": True, "status": "ok", "queued": self.queued, "mode": "queued", "draining": False}
        if cmd == "push":
            to = payload.get("to")
            tokens = [to] if isinstance(to, str) else list(to or [])
            return {"ok": True, "queued": len(tokens)}
        return {"ok": False, "error": "unknown command"}


class RecordingClient:
    def __init__(self):
        self.sent: List[Tuple[str, dict]] = []

    async def send(self, token, payload):
        self.sent.append((token, payload.to_wire(token)))
        return Delivered(200, "{}")


@pytest.fixture
def client_and_service():
    svc = DummyService(queued=4)
    return TestClient(create_app(svc)), svc


@pytest.fixture
def real_core():
    client = RecordingClient()
    core = AsyncPushCore(client=client, min_interval_ms=0, stagger_ms=0)
    return core, client


def app_with_lifespan(core):
    @asynccontextmanager
    async def lifespan(app):
        await core.start()
        yield
        await core.stop()

    return create_app(core, lifespan=lifespan)


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_health_reports_queue_depth(client_and_service):
    client, svc = client_and_service

    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "queued": 4}
    assert svc.calls == [("status", {})]


def test_push_accepts_and_dispatches_to_service(client_and_service):
    client, svc = client_and_service

    response = client.post("/push", json={"to": ["A", "B"], "title": "t", "body": "b"})
    assert response.status_code == 202
    assert response.json() == {"queued": 2}
    assert svc.calls == [("push", {"to": ["A", "B"], "title": "t", "body": "b"})]


def test_malformed_json_is_rejected(client_and_service):
    client, svc = client_and_service

    response = client.post("/push", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json()["error"]
    assert svc.calls == []


def test_non_object_json_is_rejected(client_and_service):
    client, svc = client_and_service

    response = client.post("/push", json=["A", "B"])
    assert response.status_code == 400
    assert response.json() == {"error": "Request body must be a JSON object"}
    assert svc.calls == []


def test_oversized_body_is_rejected_before_parsing(client_and_service):
    client, svc = client_and_service

    # Not valid JSON either: a parse attempt would have produced a 400
    body = b"{" + b"x" * MAX_BODY_BYTES
    response = client.post("/push", content=body, headers={"Content-Type": "application/json"})
    assert response.status_code == 413
    assert response.json() == {"error": "Payload too large"}
    assert svc.calls == []


def test_oversized_chunked_body_is_rejected_while_streaming(client_and_service):
    client, svc = client_and_service

    def chunks():
        yield b"{"
        for _ in range(MAX_BODY_BYTES // 1024):
            yield b"x" * 1024

    # A generator body is sent chunked, without a Content-Length header
    response = client.post("/push", content=chunks(), headers={"Content-Type": "application/json"})
    assert response.status_code == 413
    assert response.json() == {"error": "Payload too large"}
    assert svc.calls == []


def test_body_at_limit_is_accepted(client_and_service):
    client, _ = client_and_service

    prefix = b'{"to": "X", "title": "t", "body": "'
    suffix = b'"}'
    body = prefix + b"y" * (MAX_BODY_BYTES - len(prefix) - len(suffix)) + suffix
    assert len(body) == MAX_BODY_BYTES
    response = client.post("/push", content=body, headers={"Content-Type": "application/json"})
    assert response.status_code == 202


def test_unknown_routes_and_methods_return_404(client_and_service):
    client, _ = client_and_service

    cases = (
        ("GET", "/nope"),
        ("POST", "/health"),
        ("GET", "/push"),
        ("DELETE", "/push"),
        ("POST", "/push/"),
        ("GET", "/health/"),
    )
    for method, path in cases:
        response = client.request(method, path, follow_redirects=False)
        assert response.status_code == 404, (method, path)
        assert response.json() == {"error": "Not found"}


def test_trailing_slash_push_does_not_reach_service(client_and_service):
    client, svc = client_and_service

    response = client.post("/push/", json={"to": "X", "title": "t", "body": "b"}, follow_redirects=False)
    assert response.status_code == 404
    assert svc.calls == []


def test_missing_to_returns_400(real_core):
    core, _ = real_core
    client = TestClient(create_app(core))

    response = client.post("/push", json={"title": "t", "body": "b"})
    assert response.status_code == 400
    assert "to" in response.json()["error"]


def test_missing_title_or_body_returns_400(real_core):
    core, _ = real_core
    client = TestClient(create_app(core))

    response = client.post("/push", json={"to": "ABC"})
    assert response.status_code == 400
    assert response.json() == {"error": "Missing 'title' or 'body'"}


def test_empty_body_is_treated_as_empty_object(real_core):
    core, _ = real_core
    client = TestClient(create_app(core))

    response = client.post("/push", content=b"")
    assert response.status_code == 400
    assert response.json() == {"error": "Missing 'to' token(s)"}


def test_single_token_push_is_delivered(real_core):
    core, recorder = real_core

    with TestClient(app_with_lifespan(core)) as client:
        response = client.post("/push", json={"to": "X", "title": "t", "body": "b"})
        assert response.status_code == 202
        assert response.json() == {"queued": 1}
        assert wait_for(lambda: len(recorder.sent) == 1)

    token, wire = recorder.sent[0]
    assert token == "X"
    assert wire["to"] == "X"
    assert wire["priority"] == "high"
    assert wire["sound"] == "default"
    assert wire["channelId"] == "default"


def test_multi_token_push_is_delivered_in_order():
    recorder = RecordingClient()
    core = AsyncPushCore(client=recorder, min_interval_ms=0, stagger_ms=50)

    with TestClient(app_with_lifespan(core)) as client:
        response = client.post("/push", json={"to": ["A", "B"], "title": "t", "body": "b"})
        assert response.status_code == 202
        assert response.json() == {"queued": 2}
        assert wait_for(lambda: len(recorder.sent) == 2)

        health = client.get("/health")
        assert health.status_code == 200
        assert health.json()["queued"] == 0

    assert [token for token, _ in recorder.sent] == ["A", "B"]


def test_health_answers_while_sends_are_pending():
    recorder = RecordingClient()
    core = AsyncPushCore(client=recorder, min_interval_ms=60000, stagger_ms=0)

    with TestClient(app_with_lifespan(core)) as client:
        client.post("/push", json={"to": ["A", "B", "C"], "title": "t", "body": "b"})
        assert wait_for(lambda: len(recorder.sent) == 1)

        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["queued"] >= 0
        assert response.json()["queued"] <= 2


def test_full_queue_returns_503():
    core = AsyncPushCore(client=RecordingClient(), min_interval_ms=60000, stagger_ms=0, queue_max_size=2)

    with TestClient(app_with_lifespan(core)) as client:
        assert client.post("/push", json={"to": ["A", "B"], "title": "t", "body": "b"}).status_code == 202
        response = client.post("/push", json={"to": ["C", "D", "E"], "title": "t", "body": "b"})
        assert response.status_code == 503
        assert "Queue full" in response.json()["error"]


def test_metrics_endpoint_exposes_counters(real_core):
    core, _ = real_core
    client = TestClient(create_app(core))

    client.post("/push", content=b"{broken")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'push_rejected_requests_total{reason="malformed_json"} 1.0' in response.text


def test_lifespan_stops_core_on_shutdown():
    core = AsyncPushCore(client=RecordingClient(), min_interval_ms=60000, stagger_ms=0)

    with TestClient(app_with_lifespan(core)) as client:
        client.post("/push", json={"to": ["A", "B"], "title": "t", "body": "b"})

    assert core.depth == 0
    assert core.dispatcher.is_draining is False


def test_push_forwards_optional_fields(client_and_service):
    client, svc = client_and_service

    payload = {"to": "X", "title": "t", "body": "b", "data": {"n": 1}, "channelId": "alerts"}
    client.post("/push", content=json.dumps(payload).encode(), headers={"Content-Type": "application/json"})
    assert svc.calls[-1] == ("push", payload)
