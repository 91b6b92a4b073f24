from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.domain.contacts.db_models import Contact
from wa_dashboard.domain.workflows import enrollment, schemas
from wa_dashboard.domain.workflows.db_models import Workflow, WorkflowLog, WorkflowStep
from wa_dashboard.domain.workflows.statuses import WorkflowLogStatus

logger = logging.getLogger(__name__)


def _build_steps(steps: list[schemas.WorkflowStepInput]) -> list[WorkflowStep]:
    return [
        WorkflowStep(
            step_number=index + 1,
            delay_hours=step.delay_hours,
            template_name=step.template_name,
            template_language=step.template_language,
            template_components=step.template_components,
        )
        for index, step in enumerate(steps)
    ]


async def enrolled_counts(session: AsyncSession) -> dict[int, int]:
    rows = await session.execute(
        sa.select(Contact.workflow_id, sa.func.count(Contact.id))
        .where(Contact.workflow_id.is_not(None))
        .group_by(Contact.workflow_id)
    )
    return {workflow_id: count for workflow_id, count in rows.all()}


async def list_workflows(session: AsyncSession) -> list[Workflow]:
    result = await session.execute(sa.select(Workflow).order_by(Workflow.created_at.desc(), Workflow.id.desc()))
    return list(result.scalars().all())


async def get_workflow(session: AsyncSession, workflow_id: int) -> Workflow | None:
    return await session.get(Workflow, workflow_id)


async def create_workflow(session: AsyncSession, request: schemas.WorkflowCreateRequest) -> Workflow:
    workflow = Workflow(
        name=request.name.strip(),
        description=request.description,
        trigger_after_days=request.trigger_after_days,
        is_active=request.is_active,
        steps=_build_steps(request.steps),
    )
    session.add(workflow)
    await session.flush()
    await session.refresh(workflow)
    logger.info(
        "workflow_created",
        extra={"extra": {"workflow_id": workflow.id, "steps": len(request.steps)}},
    )
    return workflow


async def update_workflow(
    session: AsyncSession, workflow: Workflow, request: schemas.WorkflowUpdateRequest
) -> Workflow:
    if request.name is not None:
        workflow.name = request.name.strip()
    if request.description is not None:
        workflow.description = request.description
    if request.trigger_after_days is not None:
        workflow.trigger_after_days = request.trigger_after_days
    if request.is_active is not None:
        workflow.is_active = request.is_active
    if request.steps is not None:
        # Orphans must be flushed before the replacements: (workflow_id, step_number) is unique.
        workflow.steps = []
        await session.flush()
        workflow.steps = _build_steps(request.steps)
    await session.flush()
    await session.refresh(workflow)
    return workflow


async def toggle_workflow(session: AsyncSession, workflow: Workflow) -> Workflow:
    workflow.is_active = not workflow.is_active
    await session.flush()
    await session.refresh(workflow)
    logger.info(
        "workflow_toggled",
        extra={"extra": {"workflow_id": workflow.id, "is_active": workflow.is_active}},
    )
    return workflow


async def delete_workflow(session: AsyncSession, workflow: Workflow) -> int:
    cleared = await enrollment.clear_workflow(session, workflow.id)
    await session.execute(sa.delete(WorkflowLog).where(WorkflowLog.workflow_id == workflow.id))
    await session.delete(workflow)
    await session.flush()
    logger.info(
        "workflow_deleted",
        extra={"extra": {"workflow_id": workflow.id, "cleared_contacts": cleared}},
    )
    return cleared


async def workflow_stats(session: AsyncSession, workflow: Workflow) -> schemas.WorkflowStatsResponse:
    sent_case = sa.case((WorkflowLog.status == WorkflowLogStatus.sent, 1), else_=0)
    failed_case = sa.case((WorkflowLog.status == WorkflowLogStatus.failed, 1), else_=0)
    rows = await session.execute(
        sa.select(
            WorkflowStep.step_number,
            WorkflowStep.template_name,
            sa.func.count(WorkflowLog.id),
            sa.func.coalesce(sa.func.sum(sent_case), 0),
            sa.func.coalesce(sa.func.sum(failed_case), 0),
        )
        .select_from(WorkflowStep)
        .outerjoin(
            WorkflowLog,
            sa.and_(
                WorkflowLog.workflow_id == WorkflowStep.workflow_id,
                WorkflowLog.step_number == WorkflowStep.step_number,
            ),
        )
        .where(WorkflowStep.workflow_id == workflow.id)
        .group_by(WorkflowStep.id, WorkflowStep.step_number, WorkflowStep.template_name)
        .order_by(WorkflowStep.step_number)
    )
    steps = [
        schemas.WorkflowStepStats(
            step_number=step_number,
            template_name=template_name,
            total_sent=int(total),
            successful=int(successful),
            failed=int(failed),
        )
        for step_number, template_name, total, successful, failed in rows.all()
    ]
    enrolled = await session.scalar(
        sa.select(sa.func.count(Contact.id)).where(Contact.workflow_id == workflow.id)
    )
    completed = await session.scalar(
        sa.select(sa.func.count(sa.distinct(WorkflowLog.contact_id))).where(
            WorkflowLog.workflow_id == workflow.id
        )
    )
    return schemas.WorkflowStatsResponse(
        workflow_id=workflow.id,
        enrolled=int(enrolled or 0),
        completed=int(completed or 0),
        steps=steps,
    )


async def list_logs(
    session: AsyncSession,
    *,
    workflow_id: int | None = None,
    contact_id: int | None = None,
    limit: int = 100,
) -> list[schemas.WorkflowLogResponse]:
    stmt = (
        sa.select(WorkflowLog, Contact.phone_number, Contact.profile_name)
        .join(Contact, Contact.id == WorkflowLog.contact_id)
        .order_by(WorkflowLog.sent_at.desc(), WorkflowLog.id.desc())
        .limit(limit)
    )
    if workflow_id is not None:
        stmt = stmt.where(WorkflowLog.workflow_id == workflow_id)
    if contact_id is not None:
        stmt = stmt.where(WorkflowLog.contact_id == contact_id)
    rows = await session.execute(stmt)
    return [
        schemas.WorkflowLogResponse(
            id=log.id,
            contact_id=log.contact_id,
            phone_number=phone_number,
            profile_name=profile_name,
            workflow_id=log.workflow_id,
            step_number=log.step_number,
            status=log.status,
            error_message=log.error_message,
            sent_at=log.sent_at,
        )
        for log, phone_number, profile_name in rows.all()
    ]
