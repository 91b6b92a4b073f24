import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.api.dashboard_auth import require_dashboard_access
from wa_dashboard.dependencies import get_db_session
from wa_dashboard.domain.agents import schemas
from wa_dashboard.domain.agents import service as agent_service
from wa_dashboard.domain.agents.db_models import Agent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(require_dashboard_access)])


@router.get("/agents", response_model=list[schemas.AgentResponse])
async def list_agents(session: AsyncSession = Depends(get_db_session)) -> list[schemas.AgentResponse]:
    return await agent_service.list_agents(session)


@router.post("/agents", response_model=schemas.AgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(
    payload: schemas.AgentCreateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.AgentResponse:
    try:
        agent = await agent_service.create_agent(session, payload)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Agent email already exists") from exc
    logger.info("agent_created", extra={"extra": {"agent_id": agent.id}})
    return agent


@router.get("/agents/{agent_id}/stats", response_model=schemas.AgentStatsResponse)
async def agent_stats(agent_id: int, session: AsyncSession = Depends(get_db_session)) -> schemas.AgentStatsResponse:
    agent = await session.get(Agent, agent_id)
    if agent is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")
    return await agent_service.agent_stats(session, agent)
