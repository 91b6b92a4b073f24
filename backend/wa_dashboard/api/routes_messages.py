import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.api.dashboard_auth import require_dashboard_access
from wa_dashboard.dependencies import get_db_session, get_whatsapp_gateway
from wa_dashboard.domain.messages import schemas
from wa_dashboard.domain.messages import service as message_service
from wa_dashboard.domain.messages.statuses import OUTGOING_PROFILE_DASHBOARD

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(require_dashboard_access)])


@router.get("/messages/{phone_number}", response_model=list[schemas.MessageResponse])
async def list_messages(
    phone_number: str, session: AsyncSession = Depends(get_db_session)
) -> list[schemas.MessageResponse]:
    messages = await message_service.list_for_phone(session, phone_number)
    return [schemas.MessageResponse.model_validate(message) for message in messages]


@router.post("/send", response_model=schemas.SendResponse)
async def send_text(
    payload: schemas.SendTextRequest,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.SendResponse:
    gateway = get_whatsapp_gateway(request)
    result = await gateway.send_text(to=payload.to, body=payload.message)
    if not result.success:
        logger.warning("dashboard_send_failed", extra={"extra": {"error": result.error}})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.error or "Send failed")
    await message_service.store_outgoing(
        session,
        to=payload.to,
        text=payload.message,
        profile_name=OUTGOING_PROFILE_DASHBOARD,
        at=datetime.now(tz=timezone.utc),
        whatsapp_message_id=result.message_id,
    )
    await session.commit()
    return schemas.SendResponse(success=True, message_id=result.message_id)


@router.post("/bot-message", response_model=schemas.BotMessageResponse)
async def store_bot_message(
    payload: schemas.BotMessageRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.BotMessageResponse:
    message, created = await message_service.store_bot_message(
        session,
        to=payload.to_number,
        text=payload.message_text,
        at=payload.timestamp or datetime.now(tz=timezone.utc),
        whatsapp_message_id=payload.whatsapp_message_id,
        message_type=payload.message_type,
        media_url=payload.media_url,
    )
    await session.commit()
    return schemas.BotMessageResponse(success=True, created=created, id=message.id)


@router.put("/messages/read/{phone_number}")
async def mark_messages_read(
    phone_number: str, session: AsyncSession = Depends(get_db_session)
) -> dict[str, int | bool]:
    updated = await message_service.mark_read(session, phone_number)
    await session.commit()
    return {"success": True, "updated": updated}
