import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.api.dashboard_auth import require_dashboard_access
from wa_dashboard.dependencies import get_db_session
from wa_dashboard.domain.workflows import schemas
from wa_dashboard.domain.workflows import service as workflow_service
from wa_dashboard.domain.workflows.db_models import Workflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(require_dashboard_access)])


def _workflow_response(workflow: Workflow, enrolled_count: int = 0) -> schemas.WorkflowResponse:
    response = schemas.WorkflowResponse.model_validate(workflow)
    return response.model_copy(update={"enrolled_count": enrolled_count})


async def _workflow_or_404(session: AsyncSession, workflow_id: int) -> Workflow:
    workflow = await workflow_service.get_workflow(session, workflow_id)
    if workflow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow not found")
    return workflow


@router.get("/workflows", response_model=list[schemas.WorkflowResponse])
async def list_workflows(session: AsyncSession = Depends(get_db_session)) -> list[schemas.WorkflowResponse]:
    workflows = await workflow_service.list_workflows(session)
    counts = await workflow_service.enrolled_counts(session)
    return [_workflow_response(workflow, counts.get(workflow.id, 0)) for workflow in workflows]


@router.post("/workflows", response_model=schemas.WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    payload: schemas.WorkflowCreateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.WorkflowResponse:
    workflow = await workflow_service.create_workflow(session, payload)
    await session.commit()
    return _workflow_response(workflow)


@router.get("/workflows/{workflow_id}", response_model=schemas.WorkflowResponse)
async def get_workflow(workflow_id: int, session: AsyncSession = Depends(get_db_session)) -> schemas.WorkflowResponse:
    workflow = await _workflow_or_404(session, workflow_id)
    counts = await workflow_service.enrolled_counts(session)
    return _workflow_response(workflow, counts.get(workflow.id, 0))


@router.put("/workflows/{workflow_id}", response_model=schemas.WorkflowResponse)
async def update_workflow(
    workflow_id: int,
    payload: schemas.WorkflowUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.WorkflowResponse:
    workflow = await _workflow_or_404(session, workflow_id)
    workflow = await workflow_service.update_workflow(session, workflow, payload)
    await session.commit()
    logger.info("workflow_updated", extra={"extra": {"workflow_id": workflow_id}})
    counts = await workflow_service.enrolled_counts(session)
    return _workflow_response(workflow, counts.get(workflow_id, 0))


@router.delete("/workflows/{workflow_id}")
async def delete_workflow(workflow_id: int, session: AsyncSession = Depends(get_db_session)) -> dict[str, int | bool]:
    workflow = await _workflow_or_404(session, workflow_id)
    cleared = await workflow_service.delete_workflow(session, workflow)
    await session.commit()
    return {"success": True, "cleared_contacts": cleared}


@router.patch("/workflows/{workflow_id}/toggle", response_model=schemas.WorkflowResponse)
async def toggle_workflow(
    workflow_id: int, session: AsyncSession = Depends(get_db_session)
) -> schemas.WorkflowResponse:
    workflow = await _workflow_or_404(session, workflow_id)
    workflow = await workflow_service.toggle_workflow(session, workflow)
    await session.commit()
    counts = await workflow_service.enrolled_counts(session)
    return _workflow_response(workflow, counts.get(workflow_id, 0))


@router.get("/workflows/{workflow_id}/stats", response_model=schemas.WorkflowStatsResponse)
async def workflow_stats(
    workflow_id: int, session: AsyncSession = Depends(get_db_session)
) -> schemas.WorkflowStatsResponse:
    workflow = await _workflow_or_404(session, workflow_id)
    return await workflow_service.workflow_stats(session, workflow)


@router.get("/workflows/{workflow_id}/logs", response_model=list[schemas.WorkflowLogResponse])
async def workflow_logs(
    workflow_id: int,
    limit: int = Query(100, ge=1, le=1000),
    session: AsyncSession = Depends(get_db_session),
) -> list[schemas.WorkflowLogResponse]:
    await _workflow_or_404(session, workflow_id)
    return await workflow_service.list_logs(session, workflow_id=workflow_id, limit=limit)
