from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from wa_dashboard.api.dashboard_auth import require_dashboard_access
from wa_dashboard.dependencies import get_db_session
from wa_dashboard.domain.contacts import schemas
from wa_dashboard.domain.contacts import service as contact_service

router = APIRouter(prefix="/api", dependencies=[Depends(require_dashboard_access)])


@router.get("/stats", response_model=schemas.StatsResponse)
async def get_stats(session: AsyncSession = Depends(get_db_session)) -> schemas.StatsResponse:
    return await contact_service.stats(session)


@router.get("/dashboard/stats", response_model=schemas.DashboardStatsResponse)
async def get_dashboard_stats(session: AsyncSession = Depends(get_db_session)) -> schemas.DashboardStatsResponse:
    return await contact_service.dashboard_stats(session)
