"""
Webhook Endpoint - Meta handshake, signature check, fast acknowledgement.

Routes:
    GET  /webhook   subscription handshake (echo hub.challenge)
    POST /webhook   event delivery
    GET  /health    liveness plus component status

POST handling:
    ┌─────────────────────────────────────────────────────────────┐
    │  1. Verify X-Hub-Signature-256 (HMAC-SHA256, app secret)    │
    │       invalid → 401                                         │
    │  2. Parse JSON                                              │
    │       malformed → 400                                       │
    │  3. Normalize into typed events                             │
    │  4. Respond 200 "EVENT_RECEIVED"                            │
    │  5. Process events in a background task                     │
    │       failures are logged, never returned to Meta           │
    └─────────────────────────────────────────────────────────────┘

The development signature bypass is decided once, when the app is built.
It is refused outright in production.
"""

import hashlib
import hmac
import json
import logging
from typing import Protocol

from fastapi import APIRouter, BackgroundTasks, FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from config.settings import Settings
from src.events import WebhookEvent, normalize_payload

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="


class EventHandler(Protocol):
    async def handle_events(self, events: list[WebhookEvent]) -> list: ...

    async def health_status(self) -> dict: ...


def verify_signature(body: bytes, header: str | None, app_secret: str) -> bool:
    """
    Check a Meta webhook signature.

    Args:
        body: Raw request body, exactly as received.
        header: Value of X-Hub-Signature-256 ("sha256=<hex>").
        app_secret: Meta app secret.

    Returns:
        True only if the header is present, well-formed and matches.
    """
    if not header or not app_secret or not header.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(app_secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode(), header[len(SIGNATURE_PREFIX):].encode())


def sign_payload(body: bytes, app_secret: str) -> str:
    """Build the header value Meta would send for `body` (useful for testing)."""
    return SIGNATURE_PREFIX + hmac.new(app_secret.encode(), body, hashlib.sha256).hexdigest()


def signature_bypass_enabled(settings: Settings) -> bool:
    """Resolve the development bypass flag once, at build time."""
    if not settings.webhook_signature_bypass:
        return False
    if settings.is_production:
        logger.error("WEBHOOK_SIGNATURE_BYPASS is ignored in production")
        return False
    logger.warning("Webhook signature verification DISABLED (development only)")
    return True


def create_router(settings: Settings, handler: EventHandler) -> APIRouter:
    router = APIRouter()
    bypass = signature_bypass_enabled(settings)

    @router.get("/webhook")
    async def verify_subscription(
        mode: str | None = Query(None, alias="hub.mode"),
        token: str | None = Query(None, alias="hub.verify_token"),
        challenge: str | None = Query(None, alias="hub.challenge"),
    ):
        if (
            mode == "subscribe"
            and settings.webhook_verify_token
            and token is not None
            and hmac.compare_digest(token.encode(), settings.webhook_verify_token.encode())
        ):
            logger.info("Webhook subscription verified")
            return PlainTextResponse(challenge or "")
        logger.warning(f"Webhook verification rejected (mode={mode})")
        return PlainTextResponse("Forbidden", status_code=403)

    @router.post("/webhook")
    async def receive_events(request: Request, background_tasks: BackgroundTasks):
        body = await request.body()

        if not bypass and not verify_signature(
            body, request.headers.get(SIGNATURE_HEADER), settings.app_secret
        ):
            client = request.client.host if request.client else "unknown"
            logger.warning(f"Rejected webhook with invalid signature from {client}")
            return JSONResponse({"error": "invalid signature"}, status_code=401)

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            logger.warning("Rejected webhook with malformed JSON body")
            return JSONResponse({"error": "malformed JSON"}, status_code=400)
        if not isinstance(payload, dict):
            return JSONResponse({"error": "payload must be an object"}, status_code=400)

        events = normalize_payload(payload)
        logger.info(f"Webhook received: {len(events)} event(s) for {payload.get('object')}")
        if events:
            background_tasks.add_task(handler.handle_events, events)
        return PlainTextResponse("EVENT_RECEIVED")

    @router.get("/health")
    async def health():
        return await handler.health_status()

    return router


def create_app(settings: Settings, handler: EventHandler) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (read once here).
        handler: Object that processes normalized events.
    """
    app = FastAPI(title="Instagram Auto-Reply Engine", docs_url=None, redoc_url=None)
    app.include_router(create_router(settings, handler))
    return app
