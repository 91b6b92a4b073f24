"""Persistence for the enrollment state machine.

Each event is applied with compare-and-set: read the contact's workflow columns, compute
the target with ``state.transition``, then UPDATE only if the row still holds the state
that was read. On a lost race the row is re-read and the event re-evaluated, which is
what makes a reply win over an in-flight advance: once the reply has cleared the row,
the advance re-evaluates against ``Unenrolled`` and becomes a no-op.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.domain.contacts.db_models import Contact
from wa_dashboard.domain.contacts.statuses import TERMINAL_STATUSES, ContactStatus
from wa_dashboard.domain.errors import EnrollmentConflictError
from wa_dashboard.domain.workflows.state import (
    UNENROLLED,
    Advance,
    Enroll,
    Enrolled,
    EnrollmentEvent,
    EnrollmentState,
    Pause,
    Remove,
    Reply,
    Resume,
    from_columns,
    to_columns,
    transition,
)

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 5


@dataclass(frozen=True)
class AppliedEvent:
    previous: EnrollmentState
    state: EnrollmentState
    changed: bool
    found: bool = True


async def load_state(
    session: AsyncSession, contact_id: int
) -> tuple[EnrollmentState, ContactStatus] | None:
    row = (
        await session.execute(
            sa.select(
                Contact.workflow_id,
                Contact.workflow_enrollment_id,
                Contact.workflow_step,
                Contact.workflow_paused,
                Contact.last_workflow_sent_at,
                Contact.status,
            ).where(Contact.id == contact_id)
        )
    ).first()
    if row is None:
        return None
    state = from_columns(
        workflow_id=row.workflow_id,
        workflow_enrollment_id=row.workflow_enrollment_id,
        workflow_step=row.workflow_step,
        workflow_paused=row.workflow_paused,
        last_workflow_sent_at=row.last_workflow_sent_at,
    )
    return state, row.status


def _matches(state: EnrollmentState) -> list[sa.ColumnElement[bool]]:
    if not isinstance(state, Enrolled):
        return [Contact.workflow_id.is_(None)]
    if state.enrollment_id is None:
        enrollment_clause = Contact.workflow_enrollment_id.is_(None)
    else:
        enrollment_clause = Contact.workflow_enrollment_id == state.enrollment_id
    return [
        Contact.workflow_id == state.workflow_id,
        enrollment_clause,
        Contact.workflow_step == state.step,
        Contact.workflow_paused == state.paused,
    ]


async def apply_event(session: AsyncSession, contact_id: int, event: EnrollmentEvent) -> AppliedEvent:
    """Apply ``event`` to one contact. The caller owns the transaction."""
    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        loaded = await load_state(session, contact_id)
        if loaded is None:
            return AppliedEvent(previous=UNENROLLED, state=UNENROLLED, changed=False, found=False)
        current, status = loaded
        if isinstance(event, Enroll) and status in TERMINAL_STATUSES:
            return AppliedEvent(previous=current, state=current, changed=False)

        target = transition(current, event)
        if target == current:
            return AppliedEvent(previous=current, state=current, changed=False)

        stmt = sa.update(Contact).where(Contact.id == contact_id, *_matches(current))
        if isinstance(event, Enroll):
            stmt = stmt.where(Contact.status.not_in(tuple(TERMINAL_STATUSES)))
        result = await session.execute(
            stmt.values(**to_columns(target)).execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return AppliedEvent(previous=current, state=target, changed=True)

        logger.info(
            "enrollment_cas_retry",
            extra={
                "extra": {
                    "contact_id": contact_id,
                    "event": type(event).__name__,
                    "attempt": attempt,
                }
            },
        )

    raise EnrollmentConflictError(f"enrollment_conflict:{contact_id}:{type(event).__name__}")


async def enroll(session: AsyncSession, contact_id: int, workflow_id: int) -> AppliedEvent:
    return await apply_event(
        session, contact_id, Enroll(workflow_id=workflow_id, enrollment_id=uuid.uuid4())
    )


async def advance(
    session: AsyncSession,
    contact_id: int,
    *,
    enrollment_id: uuid.UUID | None,
    step_number: int,
    sent_at: datetime,
) -> AppliedEvent:
    return await apply_event(
        session,
        contact_id,
        Advance(enrollment_id=enrollment_id, step_number=step_number, sent_at=sent_at),
    )


async def on_contact_reply(session: AsyncSession, contact_id: int) -> AppliedEvent:
    applied = await apply_event(session, contact_id, Reply())
    if applied.changed:
        logger.info(
            "workflow_exit_on_reply",
            extra={
                "extra": {
                    "contact_id": contact_id,
                    "workflow_id": getattr(applied.previous, "workflow_id", None),
                }
            },
        )
    return applied


async def pause(session: AsyncSession, contact_id: int) -> AppliedEvent:
    return await apply_event(session, contact_id, Pause())


async def resume(session: AsyncSession, contact_id: int) -> AppliedEvent:
    return await apply_event(session, contact_id, Resume())


async def remove(session: AsyncSession, contact_id: int) -> AppliedEvent:
    return await apply_event(session, contact_id, Remove())


async def clear_workflow(session: AsyncSession, workflow_id: int) -> int:
    """Unenroll every contact in ``workflow_id``; used before the workflow is deleted."""
    result = await session.execute(
        sa.update(Contact)
        .where(Contact.workflow_id == workflow_id)
        .values(**to_columns(UNENROLLED))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
