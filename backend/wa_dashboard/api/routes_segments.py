import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.api.dashboard_auth import require_dashboard_access
from wa_dashboard.dependencies import get_db_session
from wa_dashboard.domain.contacts import schemas as contact_schemas
from wa_dashboard.domain.segments import schemas
from wa_dashboard.domain.segments import service as segment_service
from wa_dashboard.domain.segments.db_models import Segment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(require_dashboard_access)])

DUPLICATE_NAME_DETAIL = "Segment name already exists"


async def _segment_or_404(session: AsyncSession, segment_id: int) -> Segment:
    segment = await session.get(Segment, segment_id)
    if segment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment not found")
    return segment


@router.get("/segments", response_model=list[schemas.SegmentResponse])
async def list_segments(session: AsyncSession = Depends(get_db_session)) -> list[schemas.SegmentResponse]:
    return await segment_service.list_segments(session)


@router.post("/segments", response_model=schemas.SegmentResponse, status_code=status.HTTP_201_CREATED)
async def create_segment(
    payload: schemas.SegmentCreateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.SegmentResponse:
    try:
        segment = await segment_service.create_segment(session, payload)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DUPLICATE_NAME_DETAIL) from exc
    logger.info("segment_created", extra={"extra": {"segment_id": segment.id}})
    return schemas.SegmentResponse(
        id=segment.id,
        name=segment.name,
        description=segment.description,
        created_at=segment.created_at,
    )


@router.get("/segments/{segment_id}", response_model=schemas.SegmentResponse)
async def get_segment(segment_id: int, session: AsyncSession = Depends(get_db_session)) -> schemas.SegmentResponse:
    segment = await segment_service.get_segment(session, segment_id)
    if segment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment not found")
    return segment


@router.put("/segments/{segment_id}", response_model=schemas.SegmentResponse)
async def update_segment(
    segment_id: int,
    payload: schemas.SegmentUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.SegmentResponse:
    segment = await _segment_or_404(session, segment_id)
    try:
        await segment_service.update_segment(session, segment, payload)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DUPLICATE_NAME_DETAIL) from exc
    return await segment_service.get_segment(session, segment_id)


@router.delete("/segments/{segment_id}")
async def delete_segment(segment_id: int, session: AsyncSession = Depends(get_db_session)) -> dict[str, bool]:
    segment = await _segment_or_404(session, segment_id)
    await segment_service.delete_segment(session, segment)
    await session.commit()
    logger.info("segment_deleted", extra={"extra": {"segment_id": segment_id}})
    return {"success": True}


@router.get("/segments/{segment_id}/contacts", response_model=list[contact_schemas.ContactResponse])
async def list_segment_contacts(
    segment_id: int, session: AsyncSession = Depends(get_db_session)
) -> list[contact_schemas.ContactResponse]:
    await _segment_or_404(session, segment_id)
    contacts = await segment_service.segment_contacts(session, segment_id)
    return [contact_schemas.ContactResponse.model_validate(contact) for contact in contacts]


@router.post("/segments/{segment_id}/contacts", response_model=schemas.SegmentMembersResponse)
async def add_segment_contacts(
    segment_id: int,
    payload: schemas.SegmentMembersRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.SegmentMembersResponse:
    await _segment_or_404(session, segment_id)
    result = await segment_service.add_members(session, segment_id, payload)
    await session.commit()
    return result


@router.delete("/segments/{segment_id}/contacts/{contact_id}")
async def remove_segment_contact(
    segment_id: int, contact_id: int, session: AsyncSession = Depends(get_db_session)
) -> dict[str, bool]:
    await _segment_or_404(session, segment_id)
    removed = await segment_service.remove_member(session, segment_id, contact_id)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact is not in this segment")
    await session.commit()
    return {"success": True}
