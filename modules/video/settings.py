"""Configuration record for the image-to-video flow."""

from __future__ import annotations

from typing import Dict, Tuple

from pydantic import BaseModel, Field

from config import (
    VIDEO_ASPECT_RATIO,
    VIDEO_AUDIO,
    VIDEO_DEFAULT_PROMPT,
    VIDEO_FAILURE_STATUSES,
    VIDEO_MAX_WAIT,
    VIDEO_MODEL,
    VIDEO_NEGATIVE_PROMPT,
    VIDEO_POLL_INTERVAL,
    VIDEO_PROCESSING_STATUSES,
    VIDEO_RESUME_MAX_WAIT,
    VIDEO_STREAM_CHUNK_SIZE,
)

# Accepted request durations (seconds) and the token the provider expects for each.
DURATION_TOKENS: Dict[int, str] = {5: "5s", 10: "10s"}

# Ordered from the lowest tier up; the first entry is the fallback.
RESOLUTIONS: Tuple[str, ...] = ("480p", "720p", "1080p")


class VideoSettings(BaseModel):
    """Everything the video service needs besides the API key.

    Built from environment defaults by :func:`load_settings`; tests construct
    their own instances to vary timings and vocabularies.
    """

    model: str = VIDEO_MODEL
    default_prompt: str = VIDEO_DEFAULT_PROMPT
    prompt_max_length: int = 2500
    negative_prompt: str = VIDEO_NEGATIVE_PROMPT
    aspect_ratio: str = VIDEO_ASPECT_RATIO
    audio: bool = VIDEO_AUDIO
    resolutions: Tuple[str, ...] = RESOLUTIONS
    duration_tokens: Dict[int, str] = Field(default_factory=lambda: dict(DURATION_TOKENS))
    poll_interval: float = VIDEO_POLL_INTERVAL
    max_wait: float = VIDEO_MAX_WAIT
    resume_max_wait: float = VIDEO_RESUME_MAX_WAIT
    processing_statuses: Tuple[str, ...] = VIDEO_PROCESSING_STATUSES
    failure_statuses: Tuple[str, ...] = VIDEO_FAILURE_STATUSES
    stream_chunk_size: int = VIDEO_STREAM_CHUNK_SIZE
    fallback_media_type: str = "video/mp4"

    @property
    def default_resolution(self) -> str:
        return self.resolutions[0]

    @property
    def supported_durations(self) -> list[int]:
        return sorted(self.duration_tokens)


def load_settings() -> VideoSettings:
    return VideoSettings()
