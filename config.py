import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from a .env file if present.
# load_dotenv runs twice: once with the default search behaviour (current
# working directory) and once pointing at the .env next to this module, so the
# server behaves the same whether it is started from the project root or not.
load_dotenv()
load_dotenv(Path(__file__).resolve().parent / ".env")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = (os.getenv("LOG_LEVEL") or ("DEBUG" if DEBUG else "INFO")).strip().upper()


def _first_non_empty(*values: Optional[str]) -> str:
    for value in values:
        if value is None:
            continue

        candidate = str(value).strip()
        if candidate:
            return candidate

    return ""


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _parse_statuses(value: Optional[str], default: tuple[str, ...]) -> tuple[str, ...]:
    if not value:
        return default
    items = tuple(item.strip().upper() for item in value.split(",") if item.strip())
    return items or default


# ---- Providers ----
VENICE_API_KEY = _first_non_empty(os.getenv("VENICE_API_KEY"), os.getenv("VENICE_API"))
VENICE_API_URL = (os.getenv("VENICE_API_URL") or "https://api.venice.ai/api/v1").strip().rstrip("/")

DEEPSEEK_API_KEY = _first_non_empty(os.getenv("DEEPSEEK_API_KEY"), os.getenv("DEEPSEEK_API"))
DEEPSEEK_API_URL = (
    os.getenv("DEEPSEEK_API_URL") or "https://api.deepseek.com/chat/completions"
).strip()

ONESIGNAL_APP_ID = _first_non_empty(os.getenv("ONESIGNAL_APP_ID"))
ONESIGNAL_REST_API_KEY = _first_non_empty(os.getenv("ONESIGNAL_REST_API_KEY"))
ONESIGNAL_API_URL = (
    os.getenv("ONESIGNAL_API_URL") or "https://api.onesignal.com/notifications?c=push"
).strip()
CRON_TOKEN = _first_non_empty(os.getenv("CRON_TOKEN"))

PROVIDER_TIMEOUT = max(1.0, _parse_float(os.getenv("PROVIDER_TIMEOUT", "60"), 60.0))

# ---- Video generation ----
VIDEO_MODEL = (os.getenv("VIDEO_MODEL") or "wan-2.5-preview-image-to-video").strip()
VIDEO_DEFAULT_PROMPT = (
    os.getenv("VIDEO_DEFAULT_PROMPT")
    or "Animate this image into a short cinematic video. Smooth camera motion, natural movement."
).strip()
VIDEO_NEGATIVE_PROMPT = (
    os.getenv("VIDEO_NEGATIVE_PROMPT")
    or "low resolution, error, worst quality, low quality, defects"
).strip()
VIDEO_ASPECT_RATIO = (os.getenv("VIDEO_ASPECT_RATIO") or "16:9").strip()
VIDEO_AUDIO = os.getenv("VIDEO_AUDIO", "true").lower() == "true"
VIDEO_POLL_INTERVAL = max(0.0, _parse_float(os.getenv("VIDEO_POLL_INTERVAL"), 5.0))
VIDEO_MAX_WAIT = max(0.0, _parse_float(os.getenv("VIDEO_MAX_WAIT"), 25.0))
VIDEO_RESUME_MAX_WAIT = max(0.0, _parse_float(os.getenv("VIDEO_RESUME_MAX_WAIT"), 10.0))
VIDEO_STREAM_CHUNK_SIZE = max(1024, _parse_int(os.getenv("VIDEO_STREAM_CHUNK_SIZE"), 64 * 1024))

VIDEO_PROCESSING_STATUSES = _parse_statuses(
    os.getenv("VIDEO_PROCESSING_STATUSES"),
    ("QUEUED", "PENDING", "STARTING", "RUNNING", "IN_PROGRESS", "PROCESSING"),
)
VIDEO_FAILURE_STATUSES = _parse_statuses(
    os.getenv("VIDEO_FAILURE_STATUSES"),
    ("FAILED", "ERROR", "CANCELLED", "CANCELED"),
)

# ---- Chat ----
DEEPSEEK_CHAT_MODEL = (os.getenv("DEEPSEEK_CHAT_MODEL") or "deepseek-chat").strip()
VENICE_CHAT_MODEL = (os.getenv("VENICE_CHAT_MODEL") or "venice-uncensored").strip()
CHAT_ERROR_BODY_LIMIT = max(0, _parse_int(os.getenv("CHAT_ERROR_BODY_LIMIT", "800"), 800))

# ---- Push ----
PUSH_SEGMENTS = tuple(
    item.strip()
    for item in (os.getenv("PUSH_SEGMENTS") or "Subscribed Users").split(",")
    if item.strip()
)
PUSH_HEADING = (os.getenv("PUSH_HEADING") or "Roleplay-chat").strip()
PUSH_MESSAGE = (os.getenv("PUSH_MESSAGE") or "Your characters are waiting for you 💬").strip()
PUSH_URL = (os.getenv("PUSH_URL") or "https://roleplay-chat.com/").strip()
