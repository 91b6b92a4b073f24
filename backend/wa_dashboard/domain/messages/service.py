from __future__ import annotations

import logging
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.domain.contacts import service as contact_service
from wa_dashboard.domain.messages.db_models import Message
from wa_dashboard.domain.messages.statuses import (
    BOT_MESSAGE_PLACEHOLDER,
    MESSAGE_STATUS_DELIVERED,
    MESSAGE_STATUS_SENT,
    OUTGOING_PROFILE_BOT,
    MessageDirection,
)

logger = logging.getLogger(__name__)


async def list_for_phone(session: AsyncSession, phone_number: str) -> list[Message]:
    result = await session.execute(
        sa.select(Message)
        .where(Message.from_number == phone_number)
        .order_by(Message.timestamp.asc(), Message.id.asc())
    )
    return list(result.scalars().all())


async def get_by_whatsapp_id(session: AsyncSession, whatsapp_message_id: str) -> Message | None:
    result = await session.execute(
        sa.select(Message).where(Message.whatsapp_message_id == whatsapp_message_id)
    )
    return result.scalar_one_or_none()


async def insert_unique(session: AsyncSession, message: Message) -> bool:
    """Insert ``message``; False when its ``whatsapp_message_id`` is already stored.

    Must be the first write of the transaction: losing the unique-key race rolls the
    session back.
    """
    if message.whatsapp_message_id and await get_by_whatsapp_id(session, message.whatsapp_message_id):
        return False
    session.add(message)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        return False
    return True


async def store_outgoing(
    session: AsyncSession,
    *,
    to: str,
    text: str | None,
    profile_name: str,
    at: datetime,
    message_type: str = "text",
    whatsapp_message_id: str | None = None,
    media_id: str | None = None,
    media_url: str | None = None,
    media_mime_type: str | None = None,
    status: str | None = MESSAGE_STATUS_SENT,
    touch_contact: bool = True,
) -> Message:
    message = Message(
        whatsapp_message_id=whatsapp_message_id,
        from_number=to,
        profile_name=profile_name,
        message_type=message_type,
        message_text=text,
        media_id=media_id,
        media_url=media_url,
        media_mime_type=media_mime_type,
        timestamp=at,
        direction=MessageDirection.outgoing,
        status=status,
        is_read=True,
    )
    session.add(message)
    await session.flush()
    if touch_contact:
        await contact_service.record_outbound(session, phone_number=to, at=at)
    return message


async def store_bot_message(
    session: AsyncSession,
    *,
    to: str,
    text: str | None,
    at: datetime,
    whatsapp_message_id: str | None = None,
    message_type: str = "text",
    media_url: str | None = None,
) -> tuple[Message, bool]:
    message = Message(
        whatsapp_message_id=whatsapp_message_id,
        from_number=to,
        profile_name=OUTGOING_PROFILE_BOT,
        message_type=message_type,
        message_text=text,
        media_url=media_url,
        timestamp=at,
        direction=MessageDirection.outgoing,
        status=MESSAGE_STATUS_SENT,
        is_read=True,
    )
    if not await insert_unique(session, message):
        existing = await get_by_whatsapp_id(session, whatsapp_message_id or "")
        if existing is None:
            raise RuntimeError("bot_message_insert_conflict")
        return existing, False
    await contact_service.record_outbound(session, phone_number=to, at=at)
    return message, True


async def mark_read(session: AsyncSession, phone_number: str) -> int:
    result = await session.execute(
        sa.update(Message)
        .where(Message.from_number == phone_number, Message.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def apply_status(
    session: AsyncSession,
    *,
    whatsapp_message_id: str,
    status: str,
    recipient: str | None,
    at: datetime,
) -> bool:
    """Record a delivery status. Unknown sent/delivered ids are stored as bot messages first."""
    existing = await get_by_whatsapp_id(session, whatsapp_message_id)
    created = False
    if existing is None and recipient and status in (MESSAGE_STATUS_SENT, MESSAGE_STATUS_DELIVERED):
        _, created = await store_bot_message(
            session,
            to=recipient,
            text=BOT_MESSAGE_PLACEHOLDER,
            at=at,
            whatsapp_message_id=whatsapp_message_id,
        )
    await session.execute(
        sa.update(Message)
        .where(Message.whatsapp_message_id == whatsapp_message_id)
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    return created


async def set_media_url(session: AsyncSession, whatsapp_message_id: str, media_url: str) -> None:
    await session.execute(
        sa.update(Message)
        .where(Message.whatsapp_message_id == whatsapp_message_id)
        .values(media_url=media_url)
        .execution_options(synchronize_session=False)
    )
