import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.api.dashboard_auth import require_dashboard_access
from wa_dashboard.dependencies import (
    get_db_session,
    get_pacer,
    get_session_factory_from_app,
    get_whatsapp_gateway,
)
from wa_dashboard.domain.broadcasts import schemas
from wa_dashboard.domain.broadcasts import service as broadcast_service
from wa_dashboard.domain.messages import service as message_service
from wa_dashboard.domain.messages.statuses import OUTGOING_PROFILE_DASHBOARD
from wa_dashboard.infra.whatsapp import WhatsAppApiError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(require_dashboard_access)])


async def _fetch_templates(request: Request) -> list[dict[str, Any]]:
    gateway = get_whatsapp_gateway(request)
    try:
        return await gateway.list_templates()
    except WhatsAppApiError as exc:
        logger.warning("templates_fetch_failed", extra={"extra": {"reason": str(exc)}})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch templates") from exc


@router.get("/templates")
async def list_templates(request: Request) -> dict[str, list[dict[str, Any]]]:
    return {"templates": await _fetch_templates(request)}


@router.get("/templates/{template_name}")
async def get_template(template_name: str, request: Request) -> dict[str, Any]:
    for template in await _fetch_templates(request):
        if template.get("name") == template_name:
            return template
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")


@router.post("/templates/send", response_model=schemas.TemplateSendResponse)
async def send_template(
    payload: schemas.TemplateSendRequest,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.TemplateSendResponse:
    gateway = get_whatsapp_gateway(request)
    result = await gateway.send_template(
        to=payload.to,
        template_name=payload.template_name,
        language_code=payload.language_code,
        components=payload.components,
    )
    if not result.success:
        logger.warning(
            "template_send_failed",
            extra={"extra": {"template": payload.template_name, "error": result.error}},
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.error or "Send failed")
    await message_service.store_outgoing(
        session,
        to=payload.to,
        text=f"[Template: {payload.template_name}]",
        profile_name=OUTGOING_PROFILE_DASHBOARD,
        at=datetime.now(tz=timezone.utc),
        message_type="template",
        whatsapp_message_id=result.message_id,
    )
    await session.commit()
    return schemas.TemplateSendResponse(success=True, message_id=result.message_id)


@router.post("/bulk/send", response_model=schemas.BulkSendResponse, status_code=status.HTTP_202_ACCEPTED)
async def bulk_send(
    payload: schemas.BulkSendRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.BulkSendResponse:
    job = await broadcast_service.create_job(session, payload)
    await session.commit()
    background_tasks.add_task(
        broadcast_service.run_broadcast,
        get_session_factory_from_app(request),
        get_whatsapp_gateway(request),
        job.id,
        pacer=get_pacer(request),
    )
    return schemas.BulkSendResponse(job_id=job.id, total_contacts=job.total_contacts, status=job.status)


@router.get("/bulk/status/{job_id}", response_model=schemas.BroadcastJobResponse)
async def bulk_status(job_id: int, session: AsyncSession = Depends(get_db_session)) -> schemas.BroadcastJobResponse:
    job = await broadcast_service.get_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Broadcast job not found")
    return job


@router.get("/bulk/history", response_model=list[schemas.BroadcastJobResponse])
async def bulk_history(session: AsyncSession = Depends(get_db_session)) -> list[schemas.BroadcastJobResponse]:
    return await broadcast_service.history(session)
