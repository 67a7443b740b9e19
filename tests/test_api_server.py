"""HTTP-level tests for the FastAPI application."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import requests
from fastapi.testclient import TestClient

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from api_server import app, get_video_service
from helpers import PNG_DATA_URL, DummyResponse, FakeClock, FakeSession, processing, queued, video
from modules.video.service import VideoService
from modules.video.settings import VideoSettings

MODEL = "wan-2.5-preview-image-to-video"


@pytest.fixture
def provider():
    """Install a video service backed by a fake session; yields the session."""

    session = FakeSession([])
    clock = FakeClock()
    settings = VideoSettings(model=MODEL, poll_interval=5.0, max_wait=20.0, resume_max_wait=10.0)
    service = VideoService(settings, api_key="test-key", session=session, sleep=clock.sleep, clock=clock)
    app.dependency_overrides[get_video_service] = lambda: service
    try:
        yield session
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def test_options_preflight_returns_empty_204(client: TestClient) -> None:
    response = client.options("/api/video", headers={"Origin": "https://roleplay-chat.com"})

    assert response.status_code == 204
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "https://roleplay-chat.com"
    assert response.headers["access-control-allow-methods"] == "POST,OPTIONS"


def test_missing_image_is_rejected_before_any_provider_call(client: TestClient, provider: FakeSession) -> None:
    response = client.post("/api/video", json={"duration": 5})

    assert response.status_code == 400
    assert response.json()["field"] == "image"
    assert response.headers["access-control-allow-origin"] == "*"
    assert provider.calls == []


def test_unsupported_duration_lists_accepted_values(client: TestClient, provider: FakeSession) -> None:
    response = client.post("/api/video", json={"image": PNG_DATA_URL, "duration": 7})

    assert response.status_code == 400
    body = response.json()
    assert body["field"] == "duration"
    assert body["supported"] == [5, 10]
    assert provider.calls == []


def test_invalid_json_body_is_a_client_error(client: TestClient, provider: FakeSession) -> None:
    response = client.post(
        "/api/video",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid JSON body"
    assert provider.calls == []


def test_binary_result_is_streamed_with_media_type(client: TestClient, provider: FakeSession) -> None:
    provider.responses = [queued(), processing(), video(content=b"mp4-bytes" * 100)]

    response = client.post(
        "/api/video",
        json={"image": PNG_DATA_URL, "duration": "10", "prompt": "ocean waves", "quality": "1080p"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "video/mp4"
    assert response.headers["x-queue-id"] == "q-123"
    assert response.content == b"mp4-bytes" * 100
    assert provider.calls[0]["json"]["duration"] == "10s"
    assert provider.calls[0]["json"]["resolution"] == "1080p"


def test_image_data_url_alias_is_accepted(client: TestClient, provider: FakeSession) -> None:
    provider.responses = [queued(), video()]

    response = client.post("/api/video", json={"imageDataUrl": PNG_DATA_URL, "duration": 5})

    assert response.status_code == 200
    assert provider.calls[0]["json"]["image_url"] == PNG_DATA_URL


def test_still_processing_returns_202_with_queue_id(client: TestClient, provider: FakeSession) -> None:
    # Polls at t=0, 5, 10, 15 and 20 with a 20s budget.
    provider.responses = [queued("q-slow")] + [processing() for _ in range(5)]

    response = client.post("/api/video", json={"image": PNG_DATA_URL, "duration": 5})

    assert response.status_code == 202
    assert response.json() == {"status": "PROCESSING", "queue_id": "q-slow", "model": MODEL}


def test_resume_polls_existing_job_without_resubmitting(client: TestClient, provider: FakeSession) -> None:
    provider.responses = [processing(), video(content=b"done", content_type="video/webm")]

    response = client.post("/api/video", json={"queue_id": "q-old"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "video/webm"
    assert response.content == b"done"
    assert all(call["url"].endswith("/video/retrieve") for call in provider.calls)
    assert {call["json"]["queue_id"] for call in provider.calls} == {"q-old"}
    assert {call["json"]["model"] for call in provider.calls} == {MODEL}


def test_resume_rejects_blank_queue_id(client: TestClient, provider: FakeSession) -> None:
    response = client.post("/api/video", json={"queue_id": "  "})

    assert response.status_code == 400
    assert response.json()["field"] == "queue_id"
    assert provider.calls == []


def test_terminal_failure_is_a_gateway_error(client: TestClient, provider: FakeSession) -> None:
    failure = {"status": "FAILED", "error": "Content policy violation"}
    provider.responses = [queued(), DummyResponse(failure)]

    response = client.post("/api/video", json={"image": PNG_DATA_URL, "duration": 5})

    assert response.status_code == 502
    body = response.json()
    assert body["code"] == "GENERATION_FAILED"
    assert body["upstream"] == failure
    assert len(provider.calls) == 2


def test_url_result_is_returned_as_is(client: TestClient, provider: FakeSession) -> None:
    result = {"status": "COMPLETED", "video_url": "https://cdn.example.com/abc.mp4"}
    provider.responses = [DummyResponse(result)]

    response = client.post("/api/video", json={"queue_id": "q-1"})

    assert response.status_code == 200
    assert response.json() == result


def test_submission_rejection_carries_upstream_status(client: TestClient, provider: FakeSession) -> None:
    provider.responses = [DummyResponse({"code": "RATE_LIMIT", "message": "Slow down"}, status_code=429)]

    response = client.post("/api/video", json={"image": PNG_DATA_URL, "duration": 5})

    assert response.status_code == 502
    body = response.json()
    assert body["upstream_status"] == 429
    assert body["upstream"] == {"code": "RATE_LIMIT", "message": "Slow down"}
    assert response.headers["access-control-allow-origin"] == "*"


def test_missing_api_key_is_a_server_error(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("VENICE_API_KEY", raising=False)
    monkeypatch.setattr("modules.video.service.VENICE_API_KEY", "")

    response = client.post("/api/video", json={"image": PNG_DATA_URL, "duration": 5})

    assert response.status_code == 500
    assert response.json() == {"error": "Missing VENICE_API_KEY"}


def test_unhandled_error_becomes_500_with_cors() -> None:
    class BrokenService:
        def generate(self, *args, **kwargs):
            raise KeyError("boom")

    app.dependency_overrides[get_video_service] = lambda: BrokenService()
    client = TestClient(app, raise_server_exceptions=False)
    try:
        response = client.post("/api/video", json={"image": PNG_DATA_URL, "duration": 5})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json()["error"] == "Server error"
    assert response.headers["access-control-allow-origin"] == "*"


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_unknown_status_is_reported_as_malformed_upstream(client: TestClient, provider: FakeSession) -> None:
    provider.responses = [DummyResponse({"status": "HIBERNATING"})]

    response = client.post("/api/video", json={"queue_id": "q-1"})

    assert response.status_code == 502
    body = response.json()
    assert body["code"] == "MALFORMED_UPSTREAM_RESPONSE"
    assert body["status"] == "HIBERNATING"
    assert body["queue_id"] == "q-1"
    assert len(provider.calls) == 1


def test_queue_response_without_id_is_a_gateway_error(client: TestClient, provider: FakeSession) -> None:
    provider.responses = [DummyResponse({"model": MODEL})]

    response = client.post("/api/video", json={"image": PNG_DATA_URL, "duration": 5})

    assert response.status_code == 502
    body = response.json()
    assert body["code"] == "MALFORMED_UPSTREAM_RESPONSE"
    assert body["upstream_status"] == 200
    assert body["upstream"] == {"model": MODEL}
    assert len(provider.calls) == 1


def test_unreachable_provider_is_a_gateway_error(client: TestClient, provider: FakeSession) -> None:
    provider.responses = [requests.ConnectionError("connection refused")]

    response = client.post("/api/video", json={"image": PNG_DATA_URL, "duration": 5})

    assert response.status_code == 502
    assert response.json()["code"] == "UPSTREAM_UNREACHABLE"
    assert response.headers["access-control-allow-origin"] == "*"
