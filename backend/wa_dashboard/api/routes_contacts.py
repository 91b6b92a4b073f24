import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.api.dashboard_auth import require_dashboard_access
from wa_dashboard.dependencies import get_db_session
from wa_dashboard.domain.agents import service as agent_service
from wa_dashboard.domain.agents.db_models import Agent
from wa_dashboard.domain.contacts import schemas
from wa_dashboard.domain.contacts import service as contact_service
from wa_dashboard.domain.contacts.db_models import Contact
from wa_dashboard.domain.contacts.statuses import ContactStatus, LeadTemperature
from wa_dashboard.domain.messages import service as message_service
from wa_dashboard.domain.segments import schemas as segment_schemas
from wa_dashboard.domain.segments import service as segment_service
from wa_dashboard.domain.workflows import enrollment
from wa_dashboard.domain.workflows import schemas as workflow_schemas
from wa_dashboard.domain.workflows import service as workflow_service
from wa_dashboard.domain.workflows.state import Enrolled

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(require_dashboard_access)])


async def _contact_or_404(session: AsyncSession, phone_number: str) -> Contact:
    contact = await contact_service.get_by_phone(session, phone_number)
    if contact is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
    return contact


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def _export_filename(prefix: str) -> str:
    return f"{prefix}_{datetime.now(tz=timezone.utc).strftime('%Y%m%d')}.csv"


@router.get("/contacts", response_model=list[schemas.ContactResponse])
async def list_contacts(
    status_filter: ContactStatus | None = Query(None, alias="status"),
    temperature: LeadTemperature | None = Query(None),
    session: AsyncSession = Depends(get_db_session),
) -> list[schemas.ContactResponse]:
    contacts = await contact_service.list_contacts(session, status=status_filter, temperature=temperature)
    return [schemas.ContactResponse.model_validate(contact) for contact in contacts]


@router.post("/contacts", response_model=schemas.ContactResponse, status_code=status.HTTP_201_CREATED)
async def create_contact(
    payload: schemas.ContactCreateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.ContactResponse:
    if await contact_service.get_by_phone(session, payload.phone_number) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Contact already exists")
    try:
        contact = await contact_service.create_contact(
            session, phone_number=payload.phone_number, profile_name=payload.profile_name
        )
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Contact already exists") from exc
    logger.info("contact_created", extra={"extra": {"contact_id": contact.id}})
    return schemas.ContactResponse.model_validate(contact)


@router.post("/contacts/import", response_model=schemas.ContactImportResponse)
async def import_contacts(
    payload: schemas.ContactImportRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.ContactImportResponse:
    if payload.segment_id is not None and await segment_service.get_segment(session, payload.segment_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment not found")
    result = await contact_service.import_contacts(session, payload)
    await session.commit()
    return result


@router.get("/contacts/export")
async def export_contacts(session: AsyncSession = Depends(get_db_session)) -> Response:
    contacts = await contact_service.list_contacts(session)
    return _csv_response(contact_service.build_export_csv(contacts), _export_filename("contacts"))


@router.get("/contacts/export/filtered")
async def export_filtered_contacts(
    segment: str | None = Query(None),
    temperature: LeadTemperature | None = Query(None),
    status_filter: ContactStatus | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    contacts = await contact_service.list_contacts(
        session, status=status_filter, temperature=temperature, segment_name=segment
    )
    return _csv_response(contact_service.build_export_csv(contacts), _export_filename("contacts_filtered"))


@router.put("/contacts/{phone_number}/read")
async def mark_contact_read(
    phone_number: str, session: AsyncSession = Depends(get_db_session)
) -> dict[str, bool]:
    contact = await _contact_or_404(session, phone_number)
    contact.unread_count = 0
    await message_service.mark_read(session, phone_number)
    await session.commit()
    return {"success": True}


@router.put("/contacts/{phone_number}/status", response_model=schemas.ContactResponse)
async def update_status(
    phone_number: str,
    payload: schemas.StatusUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.ContactResponse:
    contact = await _contact_or_404(session, phone_number)
    contact.status = payload.status
    await session.commit()
    return schemas.ContactResponse.model_validate(contact)


@router.put("/contacts/{phone_number}/temperature", response_model=schemas.ContactResponse)
async def update_temperature(
    phone_number: str,
    payload: schemas.TemperatureUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.ContactResponse:
    contact = await _contact_or_404(session, phone_number)
    contact.lead_temperature = payload.temperature
    await session.commit()
    return schemas.ContactResponse.model_validate(contact)


@router.put("/contacts/{phone_number}/name", response_model=schemas.ContactResponse)
async def update_name(
    phone_number: str,
    payload: schemas.NameUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.ContactResponse:
    contact = await _contact_or_404(session, phone_number)
    contact.profile_name = payload.name
    await session.commit()
    return schemas.ContactResponse.model_validate(contact)


@router.delete("/contacts/{phone_number}")
async def delete_contact(phone_number: str, session: AsyncSession = Depends(get_db_session)) -> dict[str, bool]:
    contact = await _contact_or_404(session, phone_number)
    contact_id = contact.id
    await contact_service.delete_contact(session, contact)
    await session.commit()
    logger.info("contact_deleted", extra={"extra": {"contact_id": contact_id}})
    return {"success": True}


@router.get("/contacts/{phone_number}/segments", response_model=list[segment_schemas.SegmentResponse])
async def list_contact_segments(
    phone_number: str, session: AsyncSession = Depends(get_db_session)
) -> list[segment_schemas.SegmentResponse]:
    contact = await _contact_or_404(session, phone_number)
    segments = await segment_service.contact_segments(session, contact.id)
    return [
        segment_schemas.SegmentResponse(
            id=segment.id, name=segment.name, description=segment.description, created_at=segment.created_at
        )
        for segment in segments
    ]


@router.put("/contacts/{phone_number}/agent", response_model=schemas.ContactResponse)
async def assign_agent(
    phone_number: str,
    payload: schemas.AgentAssignRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.ContactResponse:
    contact = await _contact_or_404(session, phone_number)
    if payload.agent_id is not None and await session.get(Agent, payload.agent_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")
    await agent_service.assign_agent(session, contact, payload.agent_id)
    await session.commit()
    return schemas.ContactResponse.model_validate(contact)


def _enrollment_response(contact_id: int, applied: enrollment.AppliedEvent) -> workflow_schemas.EnrollmentResponse:
    state = applied.state
    if isinstance(state, Enrolled):
        return workflow_schemas.EnrollmentResponse(
            contact_id=contact_id,
            workflow_id=state.workflow_id,
            workflow_step=state.step,
            workflow_paused=state.paused,
            last_workflow_sent_at=state.last_sent_at,
            changed=applied.changed,
        )
    return workflow_schemas.EnrollmentResponse(contact_id=contact_id, changed=applied.changed)


async def _require_enrolled(session: AsyncSession, contact_id: int) -> None:
    loaded = await enrollment.load_state(session, contact_id)
    if loaded is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
    if not isinstance(loaded[0], Enrolled):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Contact is not enrolled in a workflow")


@router.patch("/contacts/{contact_id}/workflow/pause", response_model=workflow_schemas.EnrollmentResponse)
async def pause_contact_workflow(
    contact_id: int, session: AsyncSession = Depends(get_db_session)
) -> workflow_schemas.EnrollmentResponse:
    await _require_enrolled(session, contact_id)
    applied = await enrollment.pause(session, contact_id)
    await session.commit()
    logger.info("workflow_paused", extra={"extra": {"contact_id": contact_id, "changed": applied.changed}})
    return _enrollment_response(contact_id, applied)


@router.patch("/contacts/{contact_id}/workflow/resume", response_model=workflow_schemas.EnrollmentResponse)
async def resume_contact_workflow(
    contact_id: int, session: AsyncSession = Depends(get_db_session)
) -> workflow_schemas.EnrollmentResponse:
    await _require_enrolled(session, contact_id)
    applied = await enrollment.resume(session, contact_id)
    await session.commit()
    logger.info("workflow_resumed", extra={"extra": {"contact_id": contact_id, "changed": applied.changed}})
    return _enrollment_response(contact_id, applied)


@router.patch("/contacts/{contact_id}/workflow/remove", response_model=workflow_schemas.EnrollmentResponse)
async def remove_contact_workflow(
    contact_id: int, session: AsyncSession = Depends(get_db_session)
) -> workflow_schemas.EnrollmentResponse:
    applied = await enrollment.remove(session, contact_id)
    if not applied.found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
    await session.commit()
    logger.info("workflow_removed", extra={"extra": {"contact_id": contact_id, "changed": applied.changed}})
    return _enrollment_response(contact_id, applied)


@router.post("/contacts/{contact_id}/workflow/enroll", response_model=workflow_schemas.EnrollmentResponse)
async def enroll_contact(
    contact_id: int,
    payload: workflow_schemas.EnrollRequest,
    session: AsyncSession = Depends(get_db_session),
) -> workflow_schemas.EnrollmentResponse:
    if await workflow_service.get_workflow(session, payload.workflow_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow not found")
    applied = await enrollment.enroll(session, contact_id, payload.workflow_id)
    if not applied.found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
    if not applied.changed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Contact is already enrolled or in a terminal status",
        )
    await session.commit()
    logger.info(
        "workflow_manual_enroll",
        extra={"extra": {"contact_id": contact_id, "workflow_id": payload.workflow_id}},
    )
    return _enrollment_response(contact_id, applied)


@router.get("/contacts/{contact_id}/workflow/logs", response_model=list[workflow_schemas.WorkflowLogResponse])
async def contact_workflow_logs(
    contact_id: int,
    limit: int = Query(100, ge=1, le=1000),
    session: AsyncSession = Depends(get_db_session),
) -> list[workflow_schemas.WorkflowLogResponse]:
    return await workflow_service.list_logs(session, contact_id=contact_id, limit=limit)
