import logging
import time
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.api.dashboard_auth import require_dashboard_access
from wa_dashboard.dependencies import get_db_session, get_media_store, get_whatsapp_gateway
from wa_dashboard.domain.media import schemas
from wa_dashboard.domain.media.service import outgoing_media_label
from wa_dashboard.domain.messages import service as message_service
from wa_dashboard.domain.messages.statuses import OUTGOING_PROFILE_DASHBOARD
from wa_dashboard.infra.media_store import ALLOWED_UPLOAD_TYPES, extension_for
from wa_dashboard.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(require_dashboard_access)])

_READ_CHUNK_BYTES = 1024 * 1024


async def _read_bounded(upload: UploadFile, max_bytes: int) -> bytes:
    chunks: list[bytes] = []
    size = 0
    while True:
        chunk = await upload.read(_READ_CHUNK_BYTES)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large")
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/media/upload", response_model=schemas.MediaUploadResponse)
async def upload_media(
    request: Request,
    file: UploadFile = File(...),
) -> schemas.MediaUploadResponse:
    app_settings = getattr(request.app.state, "app_settings", None) or settings
    mime_type = (file.content_type or "").split(";", 1)[0].strip().lower()
    if mime_type not in ALLOWED_UPLOAD_TYPES:
        raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail="Unsupported file type")
    content = await _read_bounded(file, app_settings.media_max_bytes)
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

    original_name = file.filename or "upload"
    stored_name = f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}{extension_for(mime_type)}"
    stored = await get_media_store(request).save(filename=stored_name, content=content)

    gateway = get_whatsapp_gateway(request)
    result = await gateway.upload_media(content=content, filename=original_name, mime_type=mime_type)
    if not result.success:
        logger.warning("media_upload_failed", extra={"extra": {"error": result.error}})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.error or "Upload failed")
    logger.info("media_uploaded", extra={"extra": {"media_id": result.media_id, "size": stored.size}})
    return schemas.MediaUploadResponse(
        success=True,
        media_id=result.media_id,
        filename=original_name,
        url=stored.url,
        mime_type=mime_type,
        size=stored.size,
    )


@router.post("/media/send", response_model=schemas.MediaSendResponse)
async def send_media(
    payload: schemas.MediaSendRequest,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.MediaSendResponse:
    gateway = get_whatsapp_gateway(request)
    result = await gateway.send_media(
        to=payload.to,
        media_type=payload.media_type,
        media_id=payload.media_id,
        caption=payload.caption,
        filename=payload.filename,
    )
    if not result.success:
        logger.warning(
            "media_send_failed",
            extra={"extra": {"media_type": payload.media_type, "error": result.error}},
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.error or "Send failed")
    await message_service.store_outgoing(
        session,
        to=payload.to,
        text=outgoing_media_label(payload.media_type, payload.caption, payload.filename),
        profile_name=OUTGOING_PROFILE_DASHBOARD,
        at=datetime.now(tz=timezone.utc),
        message_type=payload.media_type,
        whatsapp_message_id=result.message_id,
        media_id=payload.media_id,
        media_url=payload.media_url,
        media_mime_type=payload.mime_type,
    )
    await session.commit()
    return schemas.MediaSendResponse(success=True, message_id=result.message_id)
