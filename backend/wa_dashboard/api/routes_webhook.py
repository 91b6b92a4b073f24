import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.dependencies import (
    get_db_session,
    get_media_store,
    get_session_factory_from_app,
    get_whatsapp_gateway,
)
from wa_dashboard.domain.media.service import download_inbound_media
from wa_dashboard.domain.webhooks import service as webhook_service
from wa_dashboard.infra.bot_forwarder import forward_to_bot
from wa_dashboard.infra.metrics import metrics
from wa_dashboard.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_RECEIVED = "EVENT_RECEIVED"


def _app_settings(request: Request):  # noqa: ANN202
    return getattr(request.app.state, "app_settings", None) or settings


def verify_signature(body: bytes, header_value: str | None, app_secret: str) -> None:
    """Check ``sha256=<hex>`` against an HMAC of the raw body; 401 when absent, 403 on mismatch."""
    if not header_value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing signature")
    expected = "sha256=" + hmac.new(app_secret.encode(), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, header_value.strip()):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")


@router.get("/webhook")
async def verify_webhook(
    request: Request,
    mode: str | None = Query(None, alias="hub.mode"),
    token: str | None = Query(None, alias="hub.verify_token"),
    challenge: str | None = Query(None, alias="hub.challenge"),
) -> PlainTextResponse:
    verify_token = _app_settings(request).whatsapp_verify_token
    if mode == "subscribe" and verify_token and token and hmac.compare_digest(token, verify_token):
        logger.info("webhook_verified")
        return PlainTextResponse(challenge or "")
    logger.warning("webhook_verification_failed", extra={"extra": {"mode": mode}})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
) -> PlainTextResponse:
    app_settings = _app_settings(request)
    body = await request.body()
    if app_settings.whatsapp_app_secret:
        try:
            verify_signature(body, request.headers.get(SIGNATURE_HEADER), app_settings.whatsapp_app_secret)
        except HTTPException:
            metrics.record_webhook_event("payload", "bad_signature")
            raise

    if app_settings.bot_webhook_url:
        background_tasks.add_task(
            forward_to_bot,
            app_settings.bot_webhook_url,
            body,
            dict(request.headers),
            timeout=app_settings.bot_webhook_timeout_seconds,
        )

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        metrics.record_webhook_event("payload", "invalid_json")
        logger.warning("webhook_invalid_json")
        return PlainTextResponse(EVENT_RECEIVED)
    if not isinstance(payload, dict):
        return PlainTextResponse(EVENT_RECEIVED)

    result = await webhook_service.process_payload(session, payload)
    if result.media:
        gateway = get_whatsapp_gateway(request)
        store = get_media_store(request)
        session_factory = get_session_factory_from_app(request)
        for item in result.media:
            background_tasks.add_task(
                download_inbound_media,
                session_factory,
                gateway,
                store,
                media_id=item.media_id,
                whatsapp_message_id=item.whatsapp_message_id,
                mime_type=item.mime_type,
            )
    logger.info(
        "webhook_processed",
        extra={
            "extra": {
                "messages": result.messages,
                "duplicates": result.duplicates,
                "statuses": result.statuses,
                "exited_workflows": result.exited_workflows,
                "errors": result.errors,
            }
        },
    )
    return PlainTextResponse(EVENT_RECEIVED)
