from __future__ import annotations

import logging
from typing import Iterable

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.domain.contacts.db_models import Contact
from wa_dashboard.domain.segments import schemas
from wa_dashboard.domain.segments.db_models import ContactSegment, Segment

logger = logging.getLogger(__name__)


def _segment_response(segment: Segment, contact_count: int) -> schemas.SegmentResponse:
    return schemas.SegmentResponse(
        id=segment.id,
        name=segment.name,
        description=segment.description,
        created_at=segment.created_at,
        contact_count=int(contact_count or 0),
    )


def _with_counts() -> sa.Select:
    return (
        sa.select(Segment, sa.func.count(sa.distinct(ContactSegment.contact_id)))
        .outerjoin(ContactSegment, ContactSegment.segment_id == Segment.id)
        .group_by(Segment.id)
    )


async def list_segments(session: AsyncSession) -> list[schemas.SegmentResponse]:
    rows = await session.execute(_with_counts().order_by(Segment.created_at.desc(), Segment.id.desc()))
    return [_segment_response(segment, count) for segment, count in rows.all()]


async def get_segment(session: AsyncSession, segment_id: int) -> schemas.SegmentResponse | None:
    row = (await session.execute(_with_counts().where(Segment.id == segment_id))).first()
    if row is None:
        return None
    return _segment_response(row[0], row[1])


async def create_segment(session: AsyncSession, request: schemas.SegmentCreateRequest) -> Segment:
    segment = Segment(name=request.name.strip(), description=request.description)
    session.add(segment)
    await session.flush()
    await session.refresh(segment)
    return segment


async def update_segment(
    session: AsyncSession, segment: Segment, request: schemas.SegmentUpdateRequest
) -> Segment:
    segment.name = request.name.strip()
    segment.description = request.description
    await session.flush()
    return segment


async def delete_segment(session: AsyncSession, segment: Segment) -> None:
    await session.execute(sa.delete(ContactSegment).where(ContactSegment.segment_id == segment.id))
    await session.delete(segment)
    await session.flush()


async def segment_contacts(session: AsyncSession, segment_id: int) -> list[Contact]:
    result = await session.execute(
        sa.select(Contact)
        .join(ContactSegment, ContactSegment.contact_id == Contact.id)
        .where(ContactSegment.segment_id == segment_id)
        .order_by(ContactSegment.added_at.desc(), Contact.id)
    )
    return list(result.scalars().all())


async def segment_contact_ids(session: AsyncSession, segment_id: int) -> list[int]:
    result = await session.execute(
        sa.select(ContactSegment.contact_id)
        .where(ContactSegment.segment_id == segment_id)
        .order_by(ContactSegment.contact_id)
    )
    return list(result.scalars().all())


async def add_contacts_to_segment(session: AsyncSession, segment_id: int, contact_ids: Iterable[int]) -> int:
    """Insert-or-ignore membership rows; returns how many were new."""
    wanted = list(dict.fromkeys(contact_ids))
    if not wanted:
        return 0
    existing = set(
        (
            await session.execute(
                sa.select(ContactSegment.contact_id).where(
                    ContactSegment.segment_id == segment_id,
                    ContactSegment.contact_id.in_(wanted),
                )
            )
        ).scalars()
    )
    added = 0
    for contact_id in wanted:
        if contact_id in existing:
            continue
        session.add(ContactSegment(contact_id=contact_id, segment_id=segment_id))
        added += 1
    await session.flush()
    logger.info("segment_members_added", extra={"extra": {"segment_id": segment_id, "added": added}})
    return added


async def add_members(
    session: AsyncSession, segment_id: int, request: schemas.SegmentMembersRequest
) -> schemas.SegmentMembersResponse:
    contact_ids = list(request.contact_ids)
    not_found: list[str] = []
    if request.contact_ids:
        known = set(
            (await session.execute(sa.select(Contact.id).where(Contact.id.in_(request.contact_ids)))).scalars()
        )
        not_found.extend(str(contact_id) for contact_id in request.contact_ids if contact_id not in known)
        contact_ids = [contact_id for contact_id in request.contact_ids if contact_id in known]
    if request.phone_numbers:
        rows = await session.execute(
            sa.select(Contact.phone_number, Contact.id).where(Contact.phone_number.in_(request.phone_numbers))
        )
        by_phone = {phone: contact_id for phone, contact_id in rows.all()}
        for phone in request.phone_numbers:
            if phone in by_phone:
                contact_ids.append(by_phone[phone])
            else:
                not_found.append(phone)
    added = await add_contacts_to_segment(session, segment_id, contact_ids)
    return schemas.SegmentMembersResponse(segment_id=segment_id, added=added, not_found=not_found)


async def remove_member(session: AsyncSession, segment_id: int, contact_id: int) -> bool:
    result = await session.execute(
        sa.delete(ContactSegment).where(
            ContactSegment.segment_id == segment_id, ContactSegment.contact_id == contact_id
        )
    )
    return bool(result.rowcount)


async def contact_segments(session: AsyncSession, contact_id: int) -> list[Segment]:
    result = await session.execute(
        sa.select(Segment)
        .join(ContactSegment, ContactSegment.segment_id == Segment.id)
        .where(ContactSegment.contact_id == contact_id)
        .order_by(Segment.name)
    )
    return list(result.scalars().all())
