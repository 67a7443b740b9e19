"""Venice image-to-video service.

This module wraps the provider's queue API. ``submit`` validates the request
and creates a job, ``retrieve`` performs a single status check and
``poll_until_terminal_or_timeout`` repeats status checks inside a fixed time
budget. Provider status strings are only ever interpreted by
:func:`classify_payload`, which maps them onto :class:`JobState`.

Finished videos are never buffered: a binary retrieve response is kept open
and handed back to the caller, who streams it with
:meth:`PollOutcome.iter_bytes`.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests

from config import PROVIDER_TIMEOUT, VENICE_API_KEY, VENICE_API_URL

from .settings import VideoSettings, load_settings


logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(
    r"^data:(image/[a-z0-9.+-]+)((?:;[a-z0-9._+-]+=[a-z0-9._+-]+)*);base64,(.*)$",
    re.IGNORECASE | re.DOTALL,
)


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------
class VideoGenerationError(RuntimeError):
    """Base class for every failure of the video flow."""

    status_code = 500

    def to_dict(self) -> Dict[str, Any]:
        return {"error": str(self)}


class VideoConfigurationError(VideoGenerationError):
    """Raised when the provider credentials are missing."""


class VideoValidationError(VideoGenerationError):
    """Raised for client-correctable input problems."""

    status_code = 400

    def __init__(self, field_name: str, message: str, *, supported: Optional[List[Any]] = None) -> None:
        super().__init__(message)
        self.field = field_name
        self.supported = supported

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"error": str(self), "field": self.field}
        if self.supported is not None:
            data["supported"] = list(self.supported)
        return data


class UpstreamError(VideoGenerationError):
    """The provider answered with a non-success HTTP status."""

    status_code = 502
    code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        *,
        upstream_status: Optional[int] = None,
        upstream_body: Any = None,
    ) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": str(self),
            "code": self.code,
            "upstream_status": self.upstream_status,
            "upstream": self.upstream_body,
        }


class UpstreamContractError(UpstreamError):
    """The provider answered successfully but not in the shape we rely on."""

    code = "MALFORMED_UPSTREAM_RESPONSE"


class ProviderConnectionError(UpstreamError):
    """The provider could not be reached at all."""

    code = "UPSTREAM_UNREACHABLE"


# ----------------------------------------------------------------------
# Job states
# ----------------------------------------------------------------------
class JobState(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED_URL = "COMPLETED_URL"
    COMPLETED_BINARY = "COMPLETED_BINARY"
    FAILED = "FAILED"
    CONTRACT_VIOLATION = "CONTRACT_VIOLATION"

    @property
    def is_terminal(self) -> bool:
        return self is not JobState.PROCESSING


@dataclass
class SubmittedJob:
    queue_id: str
    model: str


@dataclass
class PollOutcome:
    """Result of one status check, tagged by ``state``.

    ``url`` is set for COMPLETED_URL, ``response``/``media_type`` for
    COMPLETED_BINARY and ``reason`` for FAILED and CONTRACT_VIOLATION.
    """

    state: JobState
    queue_id: str = ""
    model: str = ""
    status: str = ""
    url: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    media_type: Optional[str] = None
    reason: str = ""
    response: Optional[requests.Response] = field(default=None, repr=False)

    def iter_bytes(self, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        """Yield the binary artifact chunk by chunk and release the connection."""

        if self.response is None:
            return
        try:
            for chunk in self.response.iter_content(chunk_size=chunk_size):
                if chunk:
                    yield chunk
        finally:
            self.response.close()


def _normalise_status(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return re.sub(r"[\s-]+", "_", value.strip()).upper()


def _extract_status(payload: Dict[str, Any]) -> str:
    for key in ("status", "state"):
        status = _normalise_status(payload.get(key))
        if status:
            return status

    nested = payload.get("data")
    if isinstance(nested, dict):
        return _extract_status(nested)

    return ""


def _extract_video_url(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        for key in (
            "video_url",
            "url",
            "download_url",
            "output_url",
            "result_url",
            "asset_url",
            "video",
            "output",
            "outputs",
            "result",
            "data",
        ):
            if key in payload:
                candidate = _extract_video_url(payload[key])
                if candidate:
                    return candidate
        return None

    if isinstance(payload, (list, tuple)):
        for item in payload:
            candidate = _extract_video_url(item)
            if candidate:
                return candidate
        return None

    if isinstance(payload, str):
        text = payload.strip()
        if text.startswith(("http://", "https://")):
            return text

    return None


def _extract_error(payload: Any) -> str:
    if isinstance(payload, str):
        return payload.strip()[:500]
    if not isinstance(payload, dict):
        return ""

    for key in ("message", "error", "detail", "failure_reason", "reason"):
        value = payload.get(key)
        if isinstance(value, dict):
            value = value.get("message") or value.get("code")
        if isinstance(value, str) and value.strip():
            return value.strip()

    return ""


def classify_payload(
    payload: Dict[str, Any],
    settings: VideoSettings,
    *,
    queue_id: str = "",
    model: str = "",
) -> PollOutcome:
    """Map a JSON retrieve response onto a :class:`PollOutcome`.

    Failure statuses win over everything else, then the processing
    vocabulary, then a direct result URL. Anything left over is a contract
    violation so an unexpected provider change never turns into an endless
    poll.
    """

    status = _extract_status(payload)
    failure = {_normalise_status(item) for item in settings.failure_statuses}
    processing = {_normalise_status(item) for item in settings.processing_statuses}
    common = {"queue_id": queue_id, "model": model, "status": status, "payload": payload}

    if status and status in failure:
        reason = _extract_error(payload) or f"Video generation ended with status {status}"
        return PollOutcome(JobState.FAILED, reason=reason, **common)

    if status and status in processing:
        return PollOutcome(JobState.PROCESSING, **common)

    url = _extract_video_url(payload)
    if url:
        return PollOutcome(JobState.COMPLETED_URL, url=url, **common)

    if status:
        reason = f"Unrecognised status from video provider: {status}"
    else:
        reason = "Video provider response has neither a status nor a result URL"
    return PollOutcome(JobState.CONTRACT_VIOLATION, reason=reason, **common)


# ----------------------------------------------------------------------
# Request validation
# ----------------------------------------------------------------------
def normalise_image(image: Any) -> str:
    if not isinstance(image, str) or not image.strip():
        raise VideoValidationError("image", "image is required and must be a base64 image data URL")

    cleaned = image.strip()
    match = _DATA_URL_RE.match(cleaned)
    if not match:
        raise VideoValidationError("image", "image must be a data:image/...;base64 URL")

    encoded = match.group(3)
    if not encoded:
        raise VideoValidationError("image", "image data URL has an empty payload")
    try:
        base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise VideoValidationError("image", "image payload is not valid base64") from None

    return cleaned


def normalise_duration(duration: Any, settings: VideoSettings) -> str:
    value: Optional[int] = None
    if isinstance(duration, bool):
        value = None
    elif isinstance(duration, int):
        value = duration
    elif isinstance(duration, str) and duration.strip().isdigit():
        value = int(duration.strip())

    token = settings.duration_tokens.get(value) if value is not None else None
    if token is None:
        supported = settings.supported_durations
        raise VideoValidationError(
            "duration",
            f"duration must be one of {supported}",
            supported=supported,
        )
    return token


def normalise_resolution(resolution: Any, settings: VideoSettings) -> str:
    if isinstance(resolution, str):
        candidate = resolution.strip().lower()
        if candidate in settings.resolutions:
            return candidate
    return settings.default_resolution


def normalise_prompt(prompt: Any, settings: VideoSettings) -> str:
    text = prompt.strip() if isinstance(prompt, str) else ""
    if not text:
        return settings.default_prompt
    return text[: settings.prompt_max_length]


def build_submission(
    image: Any,
    duration: Any,
    prompt: Any = None,
    resolution: Any = None,
    *,
    settings: VideoSettings,
) -> Dict[str, Any]:
    """Validate the caller's fields and return the provider queue payload."""

    image_url = normalise_image(image)
    duration_token = normalise_duration(duration, settings)

    return {
        "model": settings.model,
        "prompt": normalise_prompt(prompt, settings),
        "duration": duration_token,
        "image_url": image_url,
        "aspect_ratio": settings.aspect_ratio,
        "resolution": normalise_resolution(resolution, settings),
        "audio": settings.audio,
        "negative_prompt": settings.negative_prompt,
    }


# ----------------------------------------------------------------------
# Service
# ----------------------------------------------------------------------
class VideoService:
    """Client for the Venice queue-based video API."""

    _USER_AGENT = "roleplay-chat-video/1.0"

    def __init__(
        self,
        settings: Optional[VideoSettings] = None,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = PROVIDER_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        token = api_key or os.getenv("VENICE_API_KEY") or VENICE_API_KEY
        if not token:
            raise VideoConfigurationError("Missing VENICE_API_KEY")

        self.settings = settings or load_settings()
        self._base_url = (base_url or VENICE_API_URL).rstrip("/")
        self._timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "User-Agent": self._USER_AGENT,
            }
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def submit(
        self,
        image: Any,
        duration: Any,
        prompt: Any = None,
        resolution: Any = None,
    ) -> SubmittedJob:
        """Validate the request, queue a new job and return its correlation id."""

        payload = build_submission(image, duration, prompt, resolution, settings=self.settings)

        log_payload = dict(payload)
        log_payload["prompt"] = "<omitted>"
        log_payload["image_url"] = "<omitted>"
        logger.debug("Submitting video generation job", extra={"payload": log_payload})

        response = self._request("/video/queue", payload)
        try:
            data = response.json()
        except ValueError:
            raise UpstreamContractError(
                "Video provider returned a non-JSON queue response",
                upstream_status=response.status_code,
                upstream_body=response.text[:2000],
            ) from None
        finally:
            response.close()

        queue_id = self._extract_queue_id(data)
        if not queue_id:
            logger.error("No queue id in video provider response", extra={"response": data})
            raise UpstreamContractError(
                "Video provider accepted the job but returned no queue_id",
                upstream_status=response.status_code,
                upstream_body=data,
            )

        model = data.get("model") if isinstance(data, dict) else None
        job = SubmittedJob(queue_id=queue_id, model=str(model or payload["model"]))
        logger.info("Video job queued", extra={"queue_id": job.queue_id, "model": job.model})
        return job

    def retrieve(self, queue_id: str, model: Optional[str] = None) -> PollOutcome:
        """Run a single status check for ``queue_id``."""

        if not isinstance(queue_id, str) or not queue_id.strip():
            raise VideoValidationError("queue_id", "queue_id must be a non-empty string")
        queue_id = queue_id.strip()
        model = model or self.settings.model

        payload = {
            "model": model,
            "queue_id": queue_id,
            "delete_media_on_completion": True,
        }
        response = self._request("/video/retrieve", payload, stream=True)

        content_type = response.headers.get("content-type") or ""
        if "json" not in content_type.lower():
            media_type = content_type.strip() if "/" in content_type else self.settings.fallback_media_type
            logger.info(
                "Video job finished with binary artifact",
                extra={"queue_id": queue_id, "media_type": media_type},
            )
            return PollOutcome(
                JobState.COMPLETED_BINARY,
                queue_id=queue_id,
                model=model,
                media_type=media_type,
                response=response,
            )

        try:
            data = response.json()
        except ValueError:
            raise UpstreamContractError(
                "Video provider sent malformed JSON",
                upstream_status=response.status_code,
                upstream_body=response.text[:2000],
            ) from None
        finally:
            response.close()

        if not isinstance(data, dict):
            data = {"data": data}

        outcome = classify_payload(data, self.settings, queue_id=queue_id, model=model)
        logger.debug("Video job %s status: %s (%s)", queue_id, outcome.status, outcome.state.value)
        return outcome

    def poll_until_terminal_or_timeout(
        self,
        queue_id: str,
        model: Optional[str] = None,
        *,
        max_wait: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> PollOutcome:
        """Poll until a terminal state or until the next wait would overrun ``max_wait``.

        A PROCESSING outcome is only ever returned once the budget is spent; it
        carries the queue id so the caller can resume later.
        """

        budget = self.settings.max_wait if max_wait is None else max_wait
        interval = self.settings.poll_interval if poll_interval is None else poll_interval
        interval = max(0.0, float(interval))
        started = self._clock()
        attempts = 0

        while True:
            attempts += 1
            outcome = self.retrieve(queue_id, model)
            if outcome.state.is_terminal:
                logger.info(
                    "Video job reached terminal state",
                    extra={"queue_id": outcome.queue_id, "state": outcome.state.value, "attempts": attempts},
                )
                return outcome

            remaining = budget - (self._clock() - started)
            if remaining <= 0 or remaining < interval:
                logger.info(
                    "Video job still processing when wait budget ran out",
                    extra={"queue_id": outcome.queue_id, "attempts": attempts, "budget": budget},
                )
                return outcome

            self._sleep(interval)

    def generate(
        self,
        image: Any,
        duration: Any,
        prompt: Any = None,
        resolution: Any = None,
    ) -> PollOutcome:
        """Submit a new job and wait for it within the regular budget."""

        job = self.submit(image, duration, prompt, resolution)
        return self.poll_until_terminal_or_timeout(job.queue_id, job.model, max_wait=self.settings.max_wait)

    def resume(self, queue_id: str, model: Optional[str] = None) -> PollOutcome:
        """Continue waiting on an existing job with the shorter resume budget."""

        return self.poll_until_terminal_or_timeout(
            queue_id,
            model,
            max_wait=self.settings.resume_max_wait,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _request(self, path: str, payload: Dict[str, Any], *, stream: bool = False) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.post(url, json=payload, timeout=self._timeout, stream=stream)
        except requests.RequestException as exc:
            logger.warning("Video provider request failed", extra={"url": url, "error": str(exc)})
            raise ProviderConnectionError(f"Could not reach the video provider: {exc}") from exc

        if response.status_code >= 400:
            body = self._read_error_body(response)
            message = _extract_error(body) or f"Video provider returned HTTP {response.status_code}"
            logger.warning(
                "Video provider rejected request",
                extra={"url": url, "status": response.status_code},
            )
            raise UpstreamError(message, upstream_status=response.status_code, upstream_body=body)

        return response

    @staticmethod
    def _read_error_body(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text[:2000]
        finally:
            response.close()

    @staticmethod
    def _extract_queue_id(payload: Any) -> Optional[str]:
        if not isinstance(payload, dict):
            return None

        for key in ("queue_id", "queueId"):
            raw = payload.get(key)
            if raw is not None and str(raw).strip():
                return str(raw).strip()

        nested = payload.get("data")
        if isinstance(nested, dict):
            return VideoService._extract_queue_id(nested)

        return None
