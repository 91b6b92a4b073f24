import socket
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import async_sessionmaker

from wa_dashboard.domain.ops.db_models import JobHeartbeat
from wa_dashboard.infra.metrics import metrics


async def record_job_result(
    session_factory: async_sessionmaker,
    job: str,
    *,
    success: bool,
    stats: dict[str, Any] | None = None,
    error_reason: str | None = None,
) -> JobHeartbeat:
    """Upsert the job's heartbeat row after a pass and mirror it into the job gauges.

    A failed pass keeps the previous ``last_run_stats`` so the dashboard still shows the
    last good numbers while ``consecutive_failures`` climbs.
    """
    now = datetime.now(tz=timezone.utc)
    async with session_factory() as session:
        record = await session.get(JobHeartbeat, job)
        if record is None:
            record = JobHeartbeat(name=job, runs_total=0, consecutive_failures=0)
            session.add(record)
        record.host = socket.gethostname()
        record.last_heartbeat = now
        record.runs_total = (record.runs_total or 0) + 1
        if success:
            record.last_success_at = now
            record.last_run_stats = dict(stats) if stats is not None else None
            record.consecutive_failures = 0
            record.last_error = None
            record.last_error_at = None
        else:
            record.consecutive_failures = (record.consecutive_failures or 0) + 1
            record.last_error = (error_reason or "unknown")[:128]
            record.last_error_at = now
        await session.commit()

    metrics.record_job_heartbeat(job, now.timestamp())
    if success:
        metrics.record_job_success(job, now.timestamp())
    else:
        metrics.record_job_error(job, error_reason or "unknown")
    return record
