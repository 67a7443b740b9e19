"""OneSignal daily reminder dispatch."""

from __future__ import annotations

import hmac
import logging
import os
from typing import Any, Dict, Optional, Tuple

import requests

from config import (
    CRON_TOKEN,
    ONESIGNAL_API_URL,
    ONESIGNAL_APP_ID,
    ONESIGNAL_REST_API_KEY,
    PROVIDER_TIMEOUT,
    PUSH_HEADING,
    PUSH_MESSAGE,
    PUSH_SEGMENTS,
    PUSH_URL,
)

logger = logging.getLogger(__name__)


class PushDispatchError(RuntimeError):
    """Raised when OneSignal cannot be reached."""


def bearer_token(authorization: Optional[str]) -> str:
    auth = authorization or ""
    if not auth.lower().startswith("bearer "):
        return ""
    return auth[7:].strip()


def is_authorized(authorization: Optional[str]) -> bool:
    """Check the cron bearer token against ``CRON_TOKEN`` in constant time."""

    expected = (os.getenv("CRON_TOKEN") or CRON_TOKEN or "").strip()
    received = bearer_token(authorization)
    if not expected or not received:
        return False
    return hmac.compare_digest(received, expected)


def build_notification() -> Dict[str, Any]:
    return {
        "app_id": os.getenv("ONESIGNAL_APP_ID") or ONESIGNAL_APP_ID,
        "included_segments": list(PUSH_SEGMENTS),
        "target_channel": "push",
        "headings": {"en": PUSH_HEADING},
        "contents": {"en": PUSH_MESSAGE},
        "url": PUSH_URL,
    }


def send_daily_notification() -> Tuple[int, str]:
    """Send the daily reminder and return OneSignal's status code and raw body."""

    api_key = os.getenv("ONESIGNAL_REST_API_KEY") or ONESIGNAL_REST_API_KEY
    try:
        response = requests.post(
            ONESIGNAL_API_URL,
            json=build_notification(),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Key {api_key}",
            },
            timeout=PROVIDER_TIMEOUT,
        )
    except requests.RequestException as exc:
        logger.warning("OneSignal request failed", extra={"error": str(exc)})
        raise PushDispatchError(f"Could not reach OneSignal: {exc}") from exc

    logger.info("Daily push dispatched", extra={"status": response.status_code})
    return response.status_code, response.text
