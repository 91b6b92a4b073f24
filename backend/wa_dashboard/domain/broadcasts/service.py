from __future__ import annotations

import logging
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wa_dashboard.domain.broadcasts import schemas
from wa_dashboard.domain.broadcasts.db_models import BroadcastJob, BroadcastStatus
from wa_dashboard.domain.contacts.db_models import Contact
from wa_dashboard.domain.errors import DomainError
from wa_dashboard.domain.messages import service as message_service
from wa_dashboard.domain.segments import service as segment_service
from wa_dashboard.domain.segments.db_models import Segment
from wa_dashboard.infra.metrics import metrics
from wa_dashboard.shared.pacing import NoPacing

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
OUTGOING_PROFILE_BROADCAST = "Broadcast"


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


async def resolve_targets(session: AsyncSession, request: schemas.BulkSendRequest) -> list[int]:
    if not request.template_name or not request.template_name.strip():
        raise DomainError(detail="template_name is required", title="Invalid bulk send")
    if request.segment_id is None and not request.contact_ids:
        raise DomainError(detail="segment_id or contact_ids is required", title="Invalid bulk send")

    if request.segment_id is not None:
        if await session.get(Segment, request.segment_id) is None:
            raise DomainError(detail="Segment not found", title="Invalid bulk send")
        contact_ids = await segment_service.segment_contact_ids(session, request.segment_id)
    else:
        wanted = list(dict.fromkeys(request.contact_ids or []))
        known = set(
            (await session.execute(sa.select(Contact.id).where(Contact.id.in_(wanted)))).scalars()
        )
        contact_ids = [contact_id for contact_id in wanted if contact_id in known]

    if not contact_ids:
        raise DomainError(detail="No contacts found for the selected target", title="Invalid bulk send")
    return contact_ids


async def create_job(session: AsyncSession, request: schemas.BulkSendRequest) -> BroadcastJob:
    contact_ids = await resolve_targets(session, request)
    job = BroadcastJob(
        template_name=request.template_name.strip(),
        language_code=request.language_code,
        components=request.components,
        segment_id=request.segment_id,
        contact_ids=contact_ids,
        total_contacts=len(contact_ids),
        total_sent=0,
        total_failed=0,
        status=BroadcastStatus.pending,
    )
    session.add(job)
    await session.flush()
    await session.refresh(job)
    logger.info(
        "broadcast_created",
        extra={"extra": {"job_id": job.id, "total_contacts": job.total_contacts}},
    )
    return job


async def run_broadcast(
    session_factory: async_sessionmaker[AsyncSession],
    gateway,  # noqa: ANN001
    job_id: int,
    *,
    pacer=None,  # noqa: ANN001
) -> dict[str, int]:
    """Send the job's template to every target, one at a time. Runs detached from the request."""
    pacer = pacer or NoPacing()
    sent = 0
    failed = 0
    async with session_factory() as session:
        job = await session.get(BroadcastJob, job_id)
        if job is None:
            logger.warning("broadcast_missing", extra={"extra": {"job_id": job_id}})
            return {"sent": 0, "failed": 0}
        template_name = job.template_name
        language_code = job.language_code
        components = list(job.components or [])
        contact_ids = list(job.contact_ids or [])
        job.status = BroadcastStatus.running
        await session.commit()

        try:
            phones = dict(
                (
                    await session.execute(
                        sa.select(Contact.id, Contact.phone_number).where(Contact.id.in_(contact_ids))
                    )
                ).all()
            )
            for contact_id in contact_ids:
                phone_number = phones.get(contact_id)
                if phone_number is None:
                    failed += 1
                    continue
                await pacer.wait()
                try:
                    result = await gateway.send_template(
                        to=phone_number,
                        template_name=template_name,
                        language_code=language_code,
                        components=components,
                    )
                except Exception as exc:  # noqa: BLE001
                    failed += 1
                    metrics.record_broadcast_send("error")
                    logger.warning(
                        "broadcast_send_failed",
                        extra={
                            "extra": {
                                "job_id": job_id,
                                "contact_id": contact_id,
                                "error": f"broadcast_send_error:{type(exc).__name__}",
                            }
                        },
                    )
                    continue
                if result.success:
                    sent += 1
                    metrics.record_broadcast_send("sent")
                    await message_service.store_outgoing(
                        session,
                        to=phone_number,
                        text=f"[Template: {template_name}]",
                        profile_name=OUTGOING_PROFILE_BROADCAST,
                        at=_now(),
                        message_type="template",
                        whatsapp_message_id=result.message_id,
                        touch_contact=False,
                    )
                else:
                    failed += 1
                    metrics.record_broadcast_send("failed")
                    logger.warning(
                        "broadcast_send_failed",
                        extra={"extra": {"job_id": job_id, "contact_id": contact_id, "error": result.error}},
                    )
                await session.execute(
                    sa.update(BroadcastJob)
                    .where(BroadcastJob.id == job_id)
                    .values(total_sent=sent, total_failed=failed)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except Exception as exc:  # noqa: BLE001
            await session.rollback()
            await _finish(session, job_id, BroadcastStatus.failed, sent, failed, f"broadcast_error:{type(exc).__name__}")
            logger.warning(
                "broadcast_failed",
                extra={"extra": {"job_id": job_id, "reason": type(exc).__name__, "sent": sent}},
            )
            return {"sent": sent, "failed": failed}

        await _finish(session, job_id, BroadcastStatus.completed, sent, failed, None)
    logger.info(
        "broadcast_completed",
        extra={"extra": {"job_id": job_id, "sent": sent, "failed": failed}},
    )
    return {"sent": sent, "failed": failed}


async def _finish(
    session: AsyncSession,
    job_id: int,
    status: BroadcastStatus,
    sent: int,
    failed: int,
    error: str | None,
) -> None:
    await session.execute(
        sa.update(BroadcastJob)
        .where(BroadcastJob.id == job_id)
        .values(
            status=status,
            total_sent=sent,
            total_failed=failed,
            last_error=error,
            completed_at=_now(),
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()


def _job_response(job: BroadcastJob, segment_name: str | None) -> schemas.BroadcastJobResponse:
    return schemas.BroadcastJobResponse(
        id=job.id,
        template_name=job.template_name,
        language_code=job.language_code,
        segment_id=job.segment_id,
        segment_name=segment_name,
        total_contacts=job.total_contacts,
        total_sent=job.total_sent,
        total_failed=job.total_failed,
        status=job.status,
        last_error=job.last_error,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )


async def get_job(session: AsyncSession, job_id: int) -> schemas.BroadcastJobResponse | None:
    row = (
        await session.execute(
            sa.select(BroadcastJob, Segment.name)
            .outerjoin(Segment, Segment.id == BroadcastJob.segment_id)
            .where(BroadcastJob.id == job_id)
            .execution_options(populate_existing=True)
        )
    ).first()
    if row is None:
        return None
    return _job_response(row[0], row[1])


async def history(session: AsyncSession, *, limit: int = HISTORY_LIMIT) -> list[schemas.BroadcastJobResponse]:
    rows = await session.execute(
        sa.select(BroadcastJob, Segment.name)
        .outerjoin(Segment, Segment.id == BroadcastJob.segment_id)
        .order_by(BroadcastJob.created_at.desc(), BroadcastJob.id.desc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return [_job_response(job, segment_name) for job, segment_name in rows.all()]
