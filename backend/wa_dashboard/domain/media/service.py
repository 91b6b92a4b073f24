from __future__ import annotations

import logging
import time

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wa_dashboard.domain.messages import service as message_service
from wa_dashboard.infra.media_store import LocalMediaStore, extension_for
from wa_dashboard.infra.whatsapp import WhatsAppApiError

logger = logging.getLogger(__name__)

MEDIA_LABELS = {
    "image": "[Image]",
    "audio": "[Voice message]",
    "video": "[Video]",
    "document": "[Document]",
}


def outgoing_media_label(media_type: str, caption: str | None, filename: str | None) -> str:
    return caption or filename or MEDIA_LABELS.get(media_type, "[Document]")


async def download_inbound_media(
    session_factory: async_sessionmaker[AsyncSession],
    gateway,  # noqa: ANN001
    store: LocalMediaStore,
    *,
    media_id: str,
    whatsapp_message_id: str,
    mime_type: str | None,
) -> str | None:
    """Fetch an inbound attachment into the local store and point the message at it."""
    try:
        url = await gateway.get_media_url(media_id)
        if not url:
            logger.warning("media_url_missing", extra={"extra": {"media_id": media_id}})
            return None
        content = await gateway.download_media(url)
        if content is None:
            return None
        filename = f"{whatsapp_message_id}_{int(time.time() * 1000)}{extension_for(mime_type)}"
        stored = await store.save(filename=filename, content=content)
        async with session_factory() as session:
            await message_service.set_media_url(session, whatsapp_message_id, stored.url)
            await session.commit()
    except (WhatsAppApiError, OSError, ValueError) as exc:
        logger.warning(
            "media_download_failed",
            extra={"extra": {"media_id": media_id, "reason": type(exc).__name__}},
        )
        return None
    logger.info("media_downloaded", extra={"extra": {"media_id": media_id, "size": stored.size}})
    return stored.url
