"""HTTP API for the Roleplay-chat front-end.

This module exposes a small FastAPI application that keeps provider API keys
on the server: image-to-video generation through Venice, roleplay chat
through DeepSeek or Venice, and the cron-triggered OneSignal reminder. Every
response carries permissive CORS headers so the static front-end can call it
from any origin.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from config import LOG_LEVEL
from modules.chat.service import (
    ChatServiceError,
    PaymentRequiredError,
    build_messages,
    chat_completion,
    resolve_tier,
    sanitize_character,
)
from modules.push.service import PushDispatchError, is_authorized, send_daily_notification
from modules.video.service import (
    JobState,
    PollOutcome,
    VideoGenerationError,
    VideoService,
    VideoValidationError,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Roleplay-chat API",
    description="Server-side relay for video generation, chat and push notifications.",
    version="1.0.0",
)


class VideoRequest(BaseModel):
    """Either new generation parameters or the ``queue_id`` of a running job."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    image: Any = Field(default=None, validation_alias=AliasChoices("image", "imageDataUrl"))
    duration: Any = None
    prompt: Any = None
    quality: Any = None
    queue_id: Any = None
    model: Any = None


def cors_headers(origin: Optional[str] = None) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin or "*",
        "Access-Control-Allow-Methods": "POST,OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Access-Control-Max-Age": "86400",
        "Vary": "Origin",
    }


@app.middleware("http")
async def _cors(request: Request, call_next):
    origin = request.headers.get("origin")
    if request.method == "OPTIONS":
        return Response(status_code=status.HTTP_204_NO_CONTENT, headers=cors_headers(origin))

    response = await call_next(request)
    response.headers.update(cors_headers(origin))
    return response


@app.exception_handler(RequestValidationError)
async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid JSON body", "detail": errors},
    )


@app.exception_handler(VideoGenerationError)
async def _video_error(request: Request, exc: VideoGenerationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("Video request failed: %s", exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    # Runs outside the middleware stack, so CORS headers are added here.
    logger.exception("Unhandled error on %s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Server error", "detail": str(exc) or type(exc).__name__},
        headers=cors_headers(request.headers.get("origin")),
    )


def get_video_service() -> VideoService:
    return VideoService()


def _video_response(outcome: PollOutcome, service: VideoService) -> Response:
    if outcome.state is JobState.COMPLETED_BINARY:
        return StreamingResponse(
            outcome.iter_bytes(service.settings.stream_chunk_size),
            status_code=status.HTTP_200_OK,
            media_type=outcome.media_type,
            headers={"X-Queue-Id": outcome.queue_id},
        )

    if outcome.state is JobState.COMPLETED_URL:
        return JSONResponse(status_code=status.HTTP_200_OK, content=outcome.payload)

    if outcome.state is JobState.PROCESSING:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"status": "PROCESSING", "queue_id": outcome.queue_id, "model": outcome.model},
        )

    code = "GENERATION_FAILED" if outcome.state is JobState.FAILED else "MALFORMED_UPSTREAM_RESPONSE"
    logger.warning(
        "Video job %s ended with %s: %s",
        outcome.queue_id,
        outcome.state.value,
        outcome.reason,
    )
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={
            "error": outcome.reason,
            "code": code,
            "status": outcome.status,
            "queue_id": outcome.queue_id,
            "upstream": outcome.payload,
        },
    )


@app.post("/api/video")
def generate_video(payload: VideoRequest, service: VideoService = Depends(get_video_service)) -> Response:
    """Start a new image-to-video job or resume waiting on an existing one."""

    if payload.queue_id is not None:
        model = payload.model
        if model is not None and (not isinstance(model, str) or not model.strip()):
            raise VideoValidationError("model", "model must be a non-empty string")
        outcome = service.resume(payload.queue_id, model.strip() if model else None)
    else:
        outcome = service.generate(payload.image, payload.duration, payload.prompt, payload.quality)

    return _video_response(outcome, service)


@app.post("/api/chat")
def chat(payload: Dict[str, Any] = Body(...)) -> Any:
    try:
        tier = resolve_tier(payload.get("tier"), payload.get("paymentStatus"))
    except PaymentRequiredError as exc:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={"error": str(exc), "code": exc.code},
        )

    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing message."})

    character = payload.get("character")
    if not isinstance(character, dict):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing character."})

    history = payload.get("history")
    messages = build_messages(
        sanitize_character(character),
        history if isinstance(history, list) else [],
        message,
    )

    try:
        result = chat_completion(tier, messages)
    except ChatServiceError as exc:
        logger.warning("Chat completion failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": "Chat provider error.", "detail": str(exc)},
        )

    return {"reply": result["reply"], "tier": tier, "model": result["model"]}


@app.post("/api/push/daily")
def push_daily(authorization: Optional[str] = Header(default=None)) -> Response:
    if not is_authorized(authorization):
        return PlainTextResponse("Unauthorized", status_code=status.HTTP_401_UNAUTHORIZED)

    try:
        status_code, body = send_daily_notification()
    except PushDispatchError as exc:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"error": str(exc)})

    return Response(content=body, status_code=status_code, media_type="application/json")


@app.get("/healthz", include_in_schema=False)
def healthz() -> Dict[str, Any]:
    return {"ok": True}


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    import uvicorn

    uvicorn.run("api_server:app", host="0.0.0.0", port=8000, reload=False)
