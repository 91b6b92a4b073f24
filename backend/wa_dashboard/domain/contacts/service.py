from __future__ import annotations

import csv
import io
import logging
from datetime import datetime
from typing import Iterable

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.domain.contacts import schemas
from wa_dashboard.domain.contacts.db_models import ButtonInteraction, Contact
from wa_dashboard.domain.contacts.statuses import (
    HOT_LEAD_CLICK_THRESHOLD,
    ContactStatus,
    LeadTemperature,
)
from wa_dashboard.domain.messages.db_models import Message
from wa_dashboard.domain.segments import service as segment_service
from wa_dashboard.domain.segments.db_models import ContactSegment, Segment
from wa_dashboard.domain.workflows.db_models import WorkflowLog

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    "Name",
    "Phone Number",
    "Status",
    "Temperature",
    "Unread Count",
    "Button Clicks",
    "Last Message At",
]


async def get_by_phone(session: AsyncSession, phone_number: str) -> Contact | None:
    result = await session.execute(sa.select(Contact).where(Contact.phone_number == phone_number))
    return result.scalar_one_or_none()


async def list_contacts(
    session: AsyncSession,
    *,
    status: ContactStatus | None = None,
    temperature: LeadTemperature | None = None,
    segment_name: str | None = None,
) -> list[Contact]:
    stmt = sa.select(Contact)
    if segment_name:
        stmt = (
            stmt.join(ContactSegment, ContactSegment.contact_id == Contact.id)
            .join(Segment, Segment.id == ContactSegment.segment_id)
            .where(Segment.name == segment_name)
        )
    if status is not None:
        stmt = stmt.where(Contact.status == status)
    if temperature is not None:
        stmt = stmt.where(Contact.lead_temperature == temperature)
    stmt = stmt.order_by(Contact.last_message_at.is_(None), Contact.last_message_at.desc(), Contact.id.desc())
    result = await session.execute(stmt)
    return list(result.scalars().unique().all())


async def create_contact(
    session: AsyncSession, *, phone_number: str, profile_name: str | None
) -> Contact:
    contact = Contact(phone_number=phone_number, profile_name=profile_name or phone_number)
    session.add(contact)
    await session.flush()
    await session.refresh(contact)
    return contact


async def record_inbound(
    session: AsyncSession, *, phone_number: str, profile_name: str | None, at: datetime
) -> int:
    """Upsert the sender: refresh the profile name and bump unread. Returns the contact id."""
    values = {
        "profile_name": profile_name or phone_number,
        "last_message_at": at,
        "unread_count": Contact.unread_count + 1,
    }
    return await _upsert(session, phone_number, values, insert_unread=1)


async def record_outbound(
    session: AsyncSession, *, phone_number: str, at: datetime, profile_name: str | None = None
) -> int:
    """Touch ``last_message_at`` for an outgoing message without changing unread."""
    values: dict = {"last_message_at": at}
    if profile_name:
        values["profile_name"] = profile_name
    return await _upsert(session, phone_number, values, insert_unread=0, insert_name=profile_name)


async def _upsert(
    session: AsyncSession,
    phone_number: str,
    values: dict,
    *,
    insert_unread: int,
    insert_name: str | None = None,
) -> int:
    contact_id = await session.scalar(
        sa.update(Contact)
        .where(Contact.phone_number == phone_number)
        .values(**values)
        .returning(Contact.id)
        .execution_options(synchronize_session=False)
    )
    if contact_id is not None:
        return contact_id
    contact = Contact(
        phone_number=phone_number,
        profile_name=values.get("profile_name") or insert_name or phone_number,
        last_message_at=values["last_message_at"],
        unread_count=insert_unread,
    )
    session.add(contact)
    await session.flush()
    return contact.id


async def track_button_click(
    session: AsyncSession, contact_id: int, *, message_id: str | None, button_text: str | None
) -> int:
    session.add(ButtonInteraction(contact_id=contact_id, message_id=message_id, button_text=button_text))
    clicks = await session.scalar(
        sa.update(Contact)
        .where(Contact.id == contact_id)
        .values(button_click_count=Contact.button_click_count + 1)
        .returning(Contact.button_click_count)
        .execution_options(synchronize_session=False)
    )
    clicks = int(clicks or 0)
    if clicks >= HOT_LEAD_CLICK_THRESHOLD:
        await session.execute(
            sa.update(Contact)
            .where(Contact.id == contact_id, Contact.lead_temperature != LeadTemperature.hot)
            .values(lead_temperature=LeadTemperature.hot)
            .execution_options(synchronize_session=False)
        )
    logger.info(
        "button_click_tracked",
        extra={"extra": {"contact_id": contact_id, "clicks": clicks}},
    )
    return clicks


async def import_contacts(
    session: AsyncSession, request: schemas.ContactImportRequest
) -> schemas.ContactImportResponse:
    imported = 0
    skipped = 0
    contact_ids: list[int] = []
    seen: set[str] = set()
    for item in request.contacts:
        phone_number = item.phone_number.strip()
        if not phone_number or phone_number in seen:
            skipped += 1
            continue
        seen.add(phone_number)
        existing = await get_by_phone(session, phone_number)
        if existing is not None:
            skipped += 1
            contact_ids.append(existing.id)
            continue
        contact = Contact(phone_number=phone_number, profile_name=item.profile_name or phone_number)
        session.add(contact)
        await session.flush()
        imported += 1
        contact_ids.append(contact.id)

    added = 0
    if request.segment_id is not None:
        added = await segment_service.add_contacts_to_segment(session, request.segment_id, contact_ids)

    logger.info(
        "contacts_imported",
        extra={"extra": {"imported": imported, "skipped": skipped, "segment_id": request.segment_id}},
    )
    return schemas.ContactImportResponse(
        imported=imported, skipped=skipped, added_to_segment=added, total=len(request.contacts)
    )


async def delete_contact(session: AsyncSession, contact: Contact) -> None:
    await session.execute(sa.delete(Message).where(Message.from_number == contact.phone_number))
    await session.execute(sa.delete(ButtonInteraction).where(ButtonInteraction.contact_id == contact.id))
    await session.execute(sa.delete(ContactSegment).where(ContactSegment.contact_id == contact.id))
    await session.execute(sa.delete(WorkflowLog).where(WorkflowLog.contact_id == contact.id))
    await session.delete(contact)
    await session.flush()


def build_export_csv(contacts: Iterable[Contact]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for contact in contacts:
        writer.writerow(
            [
                contact.profile_name or "",
                contact.phone_number,
                _enum_value(contact.status),
                _enum_value(contact.lead_temperature),
                contact.unread_count,
                contact.button_click_count or 0,
                contact.last_message_at.isoformat() if contact.last_message_at else "",
            ]
        )
    return buffer.getvalue()


def _enum_value(value) -> str:  # noqa: ANN001
    return getattr(value, "value", value) or ""


async def stats(session: AsyncSession) -> schemas.StatsResponse:
    total_contacts = await session.scalar(sa.select(sa.func.count(Contact.id)))
    total_messages = await session.scalar(sa.select(sa.func.count(Message.id)))
    unread = await session.scalar(sa.select(sa.func.coalesce(sa.func.sum(Contact.unread_count), 0)))
    return schemas.StatsResponse(
        total_contacts=int(total_contacts or 0),
        total_messages=int(total_messages or 0),
        unread_messages=int(unread or 0),
    )


async def dashboard_stats(session: AsyncSession) -> schemas.DashboardStatsResponse:
    base = await stats(session)
    status_counts = {status.value: 0 for status in ContactStatus}
    rows = await session.execute(sa.select(Contact.status, sa.func.count(Contact.id)).group_by(Contact.status))
    for status, count in rows.all():
        status_counts[_enum_value(status)] = int(count)
    temperature_counts = {temperature.value: 0 for temperature in LeadTemperature}
    rows = await session.execute(
        sa.select(Contact.lead_temperature, sa.func.count(Contact.id)).group_by(Contact.lead_temperature)
    )
    for temperature, count in rows.all():
        temperature_counts[_enum_value(temperature)] = int(count)
    enrolled = await session.scalar(
        sa.select(sa.func.count(Contact.id)).where(Contact.workflow_id.is_not(None))
    )
    segments = await session.scalar(sa.select(sa.func.count(Segment.id)))
    return schemas.DashboardStatsResponse(
        **base.model_dump(),
        status_breakdown=status_counts,
        temperature_breakdown=temperature_counts,
        enrolled_in_workflows=int(enrolled or 0),
        total_segments=int(segments or 0),
    )
