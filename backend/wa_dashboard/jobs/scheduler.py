"""In-process workflow scheduler: a warm-up run after startup plus a fixed-interval loop.

Both triggers go through one ``SingleFlight``; a trigger that fires while a pass is
running is skipped and counted, never queued.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wa_dashboard.domain.workflows.runner import run_workflow_engine
from wa_dashboard.infra.logging import clear_log_context
from wa_dashboard.infra.metrics import metrics
from wa_dashboard.jobs.heartbeat import record_job_result
from wa_dashboard.shared.single_flight import FlightOutcome, SingleFlight

logger = logging.getLogger(__name__)

WORKFLOW_ENGINE_JOB = "workflow-engine"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class WorkflowScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway,  # noqa: ANN001
        *,
        pacer=None,  # noqa: ANN001
        interval_seconds: float = 3600,
        startup_delay_seconds: float = 30,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.pacer = pacer
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self._now = now
        self.flight = SingleFlight(WORKFLOW_ENGINE_JOB)
        self._tasks: list[asyncio.Task] = []

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    async def run_once(self) -> FlightOutcome[dict[str, Any]]:
        outcome = await self.flight.run(self._run)
        if not outcome.ran:
            metrics.record_scheduler_run("skipped")
        return outcome

    async def _run(self) -> dict[str, Any] | None:
        try:
            async with self.session_factory() as session:
                result = await run_workflow_engine(
                    session, self.gateway, now=self._now(), pacer=self.pacer
                )
        except Exception as exc:  # noqa: BLE001
            metrics.record_scheduler_run("failed")
            logger.warning(
                "workflow_engine_failed",
                extra={"extra": {"job": WORKFLOW_ENGINE_JOB, "reason": type(exc).__name__}},
            )
            await record_job_result(
                self.session_factory, WORKFLOW_ENGINE_JOB, success=False, error_reason=type(exc).__name__
            )
            return None
        finally:
            clear_log_context()
        metrics.record_scheduler_run("completed")
        logger.info("workflow_engine_complete", extra={"extra": {"job": WORKFLOW_ENGINE_JOB, **result}})
        await record_job_result(self.session_factory, WORKFLOW_ENGINE_JOB, success=True, stats=result)
        return result

    async def _trigger(self, reason: str) -> None:
        try:
            await self.run_once()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "workflow_scheduler_trigger_failed",
                extra={"extra": {"trigger": reason, "reason": type(exc).__name__}},
            )

    async def _startup_run(self) -> None:
        await asyncio.sleep(max(self.startup_delay_seconds, 0))
        await self._trigger("startup")

    async def _interval_loop(self) -> None:
        while True:
            await asyncio.sleep(max(self.interval_seconds, 1))
            await self._trigger("interval")

    def start(self) -> None:
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._startup_run(), name="workflow-scheduler-startup"),
            loop.create_task(self._interval_loop(), name="workflow-scheduler-interval"),
        ]
        logger.info(
            "workflow_scheduler_started",
            extra={
                "extra": {
                    "interval_seconds": self.interval_seconds,
                    "startup_delay_seconds": self.startup_delay_seconds,
                }
            },
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("workflow_scheduler_stopped")


def build_scheduler(app_settings, session_factory, gateway, *, pacer=None) -> WorkflowScheduler:  # noqa: ANN001
    return WorkflowScheduler(
        session_factory,
        gateway,
        pacer=pacer,
        interval_seconds=app_settings.workflow_scan_interval_seconds,
        startup_delay_seconds=app_settings.workflow_startup_delay_seconds,
    )
