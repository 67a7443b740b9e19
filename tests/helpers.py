"""Stand-ins for ``requests`` objects shared by the test modules."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional


class DummyResponse:
    """Simple stand-in for ``requests.Response`` used in the tests."""

    def __init__(
        self,
        payload: Any = None,
        status_code: int = 200,
        *,
        content: bytes = b"",
        content_type: Optional[str] = "application/json",
    ) -> None:
        self._payload = payload
        self._content = content
        self.status_code = status_code
        self.headers: Dict[str, str] = {"content-type": content_type} if content_type else {}
        self.closed = False

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload

    @property
    def text(self) -> str:
        if self._payload is not None:
            return json.dumps(self._payload)
        return self._content.decode("utf-8", errors="replace")

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self._content), chunk_size):
            yield self._content[start : start + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Records outbound calls and replays queued responses in order."""

    def __init__(self, responses: List[Any]) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self.headers: Dict[str, str] = {}

    def post(self, url: str, json: Any = None, timeout: Any = None, stream: bool = False) -> DummyResponse:
        self.calls.append({"url": url, "json": json, "stream": stream})
        if not self.responses:
            raise AssertionError(f"Unexpected request to {url}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="

PROCESSING = {"status": "PROCESSING", "average_execution_time": 145000, "execution_duration": 5200}


def queued(queue_id: str = "q-123", model: str = "wan-2.5-preview-image-to-video") -> DummyResponse:
    return DummyResponse({"model": model, "queue_id": queue_id})


def processing() -> DummyResponse:
    return DummyResponse(dict(PROCESSING))


def video(content: bytes = b"\x00\x00\x00\x18ftypmp42", content_type: str = "video/mp4") -> DummyResponse:
    return DummyResponse(content=content, content_type=content_type)
