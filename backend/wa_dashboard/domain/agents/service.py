from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.domain.agents import schemas
from wa_dashboard.domain.agents.db_models import Agent
from wa_dashboard.domain.contacts.db_models import Contact
from wa_dashboard.domain.contacts.statuses import ContactStatus

logger = logging.getLogger(__name__)


def _agent_response(agent: Agent, active_chats: int) -> schemas.AgentResponse:
    return schemas.AgentResponse(
        id=agent.id,
        name=agent.name,
        email=agent.email,
        role=agent.role,
        avatar_url=agent.avatar_url,
        created_at=agent.created_at,
        active_chats=int(active_chats or 0),
    )


async def list_agents(session: AsyncSession) -> list[schemas.AgentResponse]:
    rows = await session.execute(
        sa.select(Agent, sa.func.count(Contact.id))
        .outerjoin(Contact, Contact.assigned_agent_id == Agent.id)
        .group_by(Agent.id)
        .order_by(Agent.name, Agent.id)
    )
    return [_agent_response(agent, count) for agent, count in rows.all()]


async def create_agent(session: AsyncSession, request: schemas.AgentCreateRequest) -> schemas.AgentResponse:
    agent = Agent(
        name=request.name.strip(),
        email=str(request.email).lower(),
        role=request.role,
        avatar_url=request.avatar_url,
    )
    session.add(agent)
    await session.flush()
    await session.refresh(agent)
    return _agent_response(agent, 0)


async def agent_stats(session: AsyncSession, agent: Agent) -> schemas.AgentStatsResponse:
    active = await session.scalar(
        sa.select(sa.func.count(Contact.id)).where(Contact.assigned_agent_id == agent.id)
    )
    takeover = await session.scalar(
        sa.select(sa.func.count(Contact.id)).where(
            Contact.assigned_agent_id == agent.id,
            Contact.status == ContactStatus.human_takeover,
        )
    )
    unread = await session.scalar(
        sa.select(sa.func.coalesce(sa.func.sum(Contact.unread_count), 0)).where(
            Contact.assigned_agent_id == agent.id
        )
    )
    return schemas.AgentStatsResponse(
        agent_id=agent.id,
        active_chats=int(active or 0),
        human_takeover_chats=int(takeover or 0),
        unread_messages=int(unread or 0),
    )


async def assign_agent(session: AsyncSession, contact: Contact, agent_id: int | None) -> Contact:
    """Hand the conversation to ``agent_id``, or back to the bot when None."""
    contact.assigned_agent_id = agent_id
    contact.status = ContactStatus.human_takeover if agent_id is not None else ContactStatus.ongoing
    await session.flush()
    logger.info(
        "agent_assigned",
        extra={"extra": {"contact_id": contact.id, "agent_id": agent_id}},
    )
    return contact
