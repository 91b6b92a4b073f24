"""Inbound WhatsApp webhook processing.

Each message is handled in its own transaction: insert (a redelivery stops here), upsert
the contact, track button clicks, exit any workflow, commit. Status events are applied
after the messages of the same change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.domain.contacts import service as contact_service
from wa_dashboard.domain.messages import service as message_service
from wa_dashboard.domain.messages.db_models import Message
from wa_dashboard.domain.messages.statuses import MessageDirection
from wa_dashboard.domain.workflows import enrollment
from wa_dashboard.infra.metrics import metrics

logger = logging.getLogger(__name__)

WHATSAPP_OBJECT = "whatsapp_business_account"
_MEDIA_KINDS = ("image", "video", "audio", "document")


@dataclass(frozen=True)
class InboundMessage:
    whatsapp_message_id: str
    from_number: str
    profile_name: str
    message_type: str
    text: str
    timestamp: datetime
    media_id: str | None = None
    media_mime_type: str | None = None
    media_url: str | None = None
    button_text: str | None = None


@dataclass(frozen=True)
class MediaDownload:
    media_id: str
    whatsapp_message_id: str
    mime_type: str | None


@dataclass
class WebhookResult:
    messages: int = 0
    duplicates: int = 0
    statuses: int = 0
    exited_workflows: int = 0
    errors: int = 0
    media: list[MediaDownload] = field(default_factory=list)


def _parse_timestamp(raw: Any, fallback: datetime) -> datetime:
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return fallback


def normalize_message(message: dict, contact: dict | None, *, now: datetime) -> InboundMessage:
    message_type = message.get("type") or "unknown"
    from_number = str(message.get("from") or "")
    profile_name = ((contact or {}).get("profile") or {}).get("name") or from_number
    body = message.get(message_type) or {}
    media_id = None
    media_mime_type = None
    media_url = None
    button_text = None

    if message_type == "text":
        text = body.get("body") or ""
    elif message_type in _MEDIA_KINDS:
        media_id = body.get("id")
        media_mime_type = body.get("mime_type")
        media_url = body.get("url")
        if message_type == "audio":
            text = "[Audio]"
        elif message_type == "document":
            text = body.get("filename") or "[Document]"
        else:
            text = body.get("caption") or f"[{message_type.capitalize()}]"
    elif message_type == "interactive":
        kind = body.get("type")
        if kind == "button_reply":
            button_text = (body.get("button_reply") or {}).get("title") or ""
            text = f'Clicked: "{button_text}"'
        elif kind == "list_reply":
            reply = body.get("list_reply") or {}
            button_text = reply.get("title") or ""
            description = reply.get("description")
            text = f'Selected: "{button_text}"' + (f" - {description}" if description else "")
        else:
            text = f"[Interactive: {kind}]"
    elif message_type == "button":
        text = body.get("text") or "[Button Response]"
        button_text = text
    elif message_type == "sticker":
        text = "[Sticker]"
    elif message_type == "location":
        text = f"[Location: {body.get('latitude')}, {body.get('longitude')}]"
    else:
        text = f"[{message_type}]"

    return InboundMessage(
        whatsapp_message_id=str(message.get("id") or ""),
        from_number=from_number,
        profile_name=profile_name,
        message_type=message_type,
        text=text,
        timestamp=_parse_timestamp(message.get("timestamp"), now),
        media_id=media_id,
        media_mime_type=media_mime_type,
        media_url=media_url,
        button_text=button_text,
    )


def iter_change_values(payload: dict) -> Iterator[dict]:
    for entry in payload.get("entry") or []:
        for change in (entry or {}).get("changes") or []:
            value = (change or {}).get("value")
            if isinstance(value, dict):
                yield value


async def handle_inbound_message(
    session: AsyncSession, inbound: InboundMessage, result: WebhookResult
) -> None:
    row = Message(
        whatsapp_message_id=inbound.whatsapp_message_id or None,
        from_number=inbound.from_number,
        profile_name=inbound.profile_name,
        message_type=inbound.message_type,
        message_text=inbound.text,
        media_id=inbound.media_id,
        media_url=inbound.media_url,
        media_mime_type=inbound.media_mime_type,
        timestamp=inbound.timestamp,
        direction=MessageDirection.incoming,
        is_read=False,
    )
    if not await message_service.insert_unique(session, row):
        result.duplicates += 1
        metrics.record_webhook_event("message", "duplicate")
        logger.info("webhook_duplicate_message")
        return

    contact_id = await contact_service.record_inbound(
        session,
        phone_number=inbound.from_number,
        profile_name=inbound.profile_name,
        at=inbound.timestamp,
    )
    if inbound.button_text is not None:
        await contact_service.track_button_click(
            session,
            contact_id,
            message_id=inbound.whatsapp_message_id,
            button_text=inbound.button_text,
        )
    applied = await enrollment.on_contact_reply(session, contact_id)
    await session.commit()

    result.messages += 1
    if applied.changed:
        result.exited_workflows += 1
    metrics.record_webhook_event("message")
    logger.info(
        "webhook_message_stored",
        extra={"extra": {"contact_id": contact_id, "message_type": inbound.message_type}},
    )
    if inbound.media_id and inbound.whatsapp_message_id:
        result.media.append(
            MediaDownload(
                media_id=inbound.media_id,
                whatsapp_message_id=inbound.whatsapp_message_id,
                mime_type=inbound.media_mime_type,
            )
        )


async def handle_status(session: AsyncSession, status: dict, *, now: datetime, result: WebhookResult) -> None:
    message_id = status.get("id")
    value = status.get("status")
    if not message_id or not value:
        return
    await message_service.apply_status(
        session,
        whatsapp_message_id=str(message_id),
        status=str(value),
        recipient=status.get("recipient_id"),
        at=now,
    )
    await session.commit()
    result.statuses += 1
    metrics.record_webhook_event("status", str(value))


async def process_payload(
    session: AsyncSession, payload: dict, *, now: datetime | None = None
) -> WebhookResult:
    now = now or datetime.now(tz=timezone.utc)
    result = WebhookResult()
    if payload.get("object") != WHATSAPP_OBJECT:
        metrics.record_webhook_event("payload", "ignored")
        return result

    for value in iter_change_values(payload):
        contacts = value.get("contacts") or []
        sender = contacts[0] if contacts else None
        for message in value.get("messages") or []:
            try:
                inbound = normalize_message(message, sender, now=now)
                await handle_inbound_message(session, inbound, result)
            except Exception as exc:  # noqa: BLE001
                await session.rollback()
                result.errors += 1
                metrics.record_webhook_event("message", "error")
                logger.warning(
                    "webhook_message_failed",
                    extra={"extra": {"error": f"webhook_message_error:{type(exc).__name__}"}},
                )
        for status in value.get("statuses") or []:
            try:
                await handle_status(session, status, now=now, result=result)
            except Exception as exc:  # noqa: BLE001
                await session.rollback()
                result.errors += 1
                metrics.record_webhook_event("status", "error")
                logger.warning(
                    "webhook_status_failed",
                    extra={"extra": {"error": f"webhook_status_error:{type(exc).__name__}"}},
                )
    return result
