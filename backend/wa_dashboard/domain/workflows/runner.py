"""Workflow engine scans: enrollment of inactive contacts and due step sends."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.domain.contacts.db_models import Contact
from wa_dashboard.domain.contacts.statuses import TERMINAL_STATUSES
from wa_dashboard.domain.messages.db_models import Message
from wa_dashboard.domain.messages.statuses import (
    MESSAGE_STATUS_SENT,
    OUTGOING_PROFILE_WORKFLOW,
    MessageDirection,
)
from wa_dashboard.domain.workflows import enrollment
from wa_dashboard.domain.workflows.db_models import Workflow, WorkflowLog, WorkflowStep
from wa_dashboard.domain.workflows.state import Enrolled
from wa_dashboard.domain.workflows.statuses import WorkflowLogStatus
from wa_dashboard.infra.metrics import metrics
from wa_dashboard.shared.pacing import NoPacing
from wa_dashboard.settings import settings

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


async def run_enrollment_scan(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    delay_seconds: float | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> dict[str, int]:
    now = now or _now()
    budget = batch_size if batch_size is not None else settings.workflow_enrollment_batch_size
    delay = delay_seconds if delay_seconds is not None else settings.workflow_enrollment_delay_seconds
    enrolled = 0
    skipped = 0
    errors = 0

    workflows = (
        await session.execute(
            sa.select(Workflow.id, Workflow.trigger_after_days)
            .where(Workflow.is_active.is_(True))
            .order_by(Workflow.id)
        )
    ).all()

    for workflow_id, trigger_after_days in workflows:
        remaining = budget - (enrolled + skipped + errors)
        if remaining <= 0:
            break
        threshold = now - timedelta(days=trigger_after_days)
        contact_ids = (
            await session.execute(
                sa.select(Contact.id)
                .where(
                    Contact.workflow_id.is_(None),
                    Contact.status.not_in(tuple(TERMINAL_STATUSES)),
                    Contact.last_message_at.is_not(None),
                    Contact.last_message_at < threshold,
                )
                .order_by(Contact.last_message_at.asc(), Contact.id.asc())
                .limit(remaining)
            )
        ).scalars().all()

        for contact_id in contact_ids:
            try:
                applied = await enrollment.enroll(session, contact_id, workflow_id)
                await session.commit()
            except Exception as exc:  # noqa: BLE001
                await session.rollback()
                errors += 1
                logger.warning(
                    "workflow_enroll_failed",
                    extra={
                        "extra": {
                            "contact_id": contact_id,
                            "workflow_id": workflow_id,
                            "error": f"workflow_enroll_error:{type(exc).__name__}",
                        }
                    },
                )
                continue
            if applied.changed:
                enrolled += 1
                metrics.record_workflow_enrollment("inactivity")
                logger.info(
                    "workflow_enrolled",
                    extra={"extra": {"contact_id": contact_id, "workflow_id": workflow_id}},
                )
            else:
                skipped += 1
            if delay > 0:
                await sleep(delay)

    return {"enrolled": enrolled, "skipped": skipped, "errors": errors}


def _due_clause(delays: list[int], now: datetime) -> sa.ColumnElement[bool]:
    """``last_workflow_sent_at + step.delay_hours <= now`` without SQL interval arithmetic.

    SQLite and Postgres share no portable way to add a column number of hours to a
    timestamp, so each distinct delay gets its own branch with the cutoff computed here.
    """
    clauses: list[sa.ColumnElement[bool]] = [Contact.last_workflow_sent_at.is_(None)]
    for delay_hours in delays:
        clauses.append(
            sa.and_(
                WorkflowStep.delay_hours == delay_hours,
                Contact.last_workflow_sent_at <= now - timedelta(hours=delay_hours),
            )
        )
    return sa.or_(*clauses)


async def select_due_steps(
    session: AsyncSession, *, now: datetime, limit: int
) -> list[tuple[Contact, WorkflowStep]]:
    delays = (
        await session.execute(
            sa.select(WorkflowStep.delay_hours)
            .join(Workflow, Workflow.id == WorkflowStep.workflow_id)
            .where(Workflow.is_active.is_(True))
            .distinct()
        )
    ).scalars().all()

    stmt = (
        sa.select(Contact, WorkflowStep)
        .join(Workflow, Workflow.id == Contact.workflow_id)
        .join(
            WorkflowStep,
            sa.and_(
                WorkflowStep.workflow_id == Contact.workflow_id,
                WorkflowStep.step_number == Contact.workflow_step + 1,
            ),
        )
        .where(
            Contact.workflow_id.is_not(None),
            Contact.workflow_paused.is_(False),
            Contact.status.not_in(tuple(TERMINAL_STATUSES)),
            Workflow.is_active.is_(True),
            _due_clause(sorted(delays), now),
        )
        .order_by(
            Contact.last_workflow_sent_at.is_(None).desc(),
            Contact.last_workflow_sent_at.asc(),
            Contact.id.asc(),
        )
        .limit(limit)
    )
    return [(row[0], row[1]) for row in (await session.execute(stmt)).all()]


async def _still_due(session: AsyncSession, item: dict) -> bool:
    loaded = await enrollment.load_state(session, item["contact_id"])
    if loaded is None:
        return False
    state, status = loaded
    return (
        isinstance(state, Enrolled)
        and state.enrollment_id == item["enrollment_id"]
        and state.step == item["step_number"] - 1
        and state.paused is False
        and status not in TERMINAL_STATUSES
    )


async def run_step_scan(
    session: AsyncSession,
    gateway,  # noqa: ANN001
    *,
    now: datetime | None = None,
    pacer=None,  # noqa: ANN001
    batch_size: int | None = None,
) -> dict[str, int]:
    now = now or _now()
    pacer = pacer or NoPacing()
    limit = batch_size if batch_size is not None else settings.workflow_step_batch_size
    candidates = await select_due_steps(session, now=now, limit=limit)

    # Plain values only: the session is committed and rolled back per contact below.
    work = [
        {
            "contact_id": contact.id,
            "phone_number": contact.phone_number,
            "workflow_id": contact.workflow_id,
            "enrollment_id": contact.workflow_enrollment_id,
            "step_number": step.step_number,
            "template_name": step.template_name,
            "template_language": step.template_language,
            "template_components": step.template_components or [],
        }
        for contact, step in candidates
    ]

    sent = 0
    failed = 0
    stale = 0
    errors = 0
    for item in work:
        try:
            await pacer.wait()
            # Replies, pauses and status changes may land while earlier items are sent.
            if not await _still_due(session, item):
                await session.rollback()
                stale += 1
                logger.info(
                    "workflow_step_skipped_stale",
                    extra={
                        "extra": {
                            "contact_id": item["contact_id"],
                            "workflow_id": item["workflow_id"],
                            "step_number": item["step_number"],
                        }
                    },
                )
                continue
            result = await gateway.send_template(
                to=item["phone_number"],
                template_name=item["template_name"],
                language_code=item["template_language"],
                components=item["template_components"],
            )
            if result.success:
                applied = await enrollment.advance(
                    session,
                    item["contact_id"],
                    enrollment_id=item["enrollment_id"],
                    step_number=item["step_number"],
                    sent_at=now,
                )
                session.add(
                    Message(
                        whatsapp_message_id=result.message_id,
                        from_number=item["phone_number"],
                        profile_name=OUTGOING_PROFILE_WORKFLOW,
                        message_type="template",
                        message_text=f"[Template: {item['template_name']}]",
                        timestamp=now,
                        direction=MessageDirection.outgoing,
                        status=MESSAGE_STATUS_SENT,
                        is_read=True,
                    )
                )
                session.add(
                    WorkflowLog(
                        contact_id=item["contact_id"],
                        workflow_id=item["workflow_id"],
                        step_number=item["step_number"],
                        status=WorkflowLogStatus.sent,
                        sent_at=now,
                    )
                )
                await session.commit()
                sent += 1
                metrics.record_workflow_send("sent")
                if not applied.changed:
                    stale += 1
                    logger.info(
                        "workflow_advance_stale",
                        extra={
                            "extra": {
                                "contact_id": item["contact_id"],
                                "workflow_id": item["workflow_id"],
                                "step_number": item["step_number"],
                            }
                        },
                    )
            else:
                session.add(
                    WorkflowLog(
                        contact_id=item["contact_id"],
                        workflow_id=item["workflow_id"],
                        step_number=item["step_number"],
                        status=WorkflowLogStatus.failed,
                        error_message=result.error or "send_failed",
                        sent_at=now,
                    )
                )
                await session.commit()
                failed += 1
                metrics.record_workflow_send("failed")
                logger.warning(
                    "workflow_step_send_failed",
                    extra={
                        "extra": {
                            "contact_id": item["contact_id"],
                            "workflow_id": item["workflow_id"],
                            "step_number": item["step_number"],
                            "error": result.error,
                        }
                    },
                )
        except Exception as exc:  # noqa: BLE001
            await session.rollback()
            errors += 1
            metrics.record_workflow_send("error")
            logger.warning(
                "workflow_step_failed",
                extra={
                    "extra": {
                        "contact_id": item["contact_id"],
                        "workflow_id": item["workflow_id"],
                        "error": f"workflow_step_error:{type(exc).__name__}",
                    }
                },
            )

    return {"sent": sent, "failed": failed, "stale": stale, "errors": errors}


async def run_workflow_engine(
    session: AsyncSession,
    gateway,  # noqa: ANN001
    *,
    now: datetime | None = None,
    pacer=None,  # noqa: ANN001
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> dict[str, int]:
    """One scheduler pass: enrollment first, then due step sends."""
    enrolled = await run_enrollment_scan(session, now=now, sleep=sleep)
    steps = await run_step_scan(session, gateway, now=now, pacer=pacer)
    return {
        "enrolled": enrolled["enrolled"],
        "enroll_errors": enrolled["errors"],
        "sent": steps["sent"],
        "failed": steps["failed"],
        "stale": steps["stale"],
        "errors": steps["errors"],
    }
