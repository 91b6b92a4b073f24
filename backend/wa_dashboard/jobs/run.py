"""Run scheduled jobs outside the web process.

    python -m wa_dashboard.jobs.run --job workflow-engine --once

Use this with ``WORKFLOW_SCHEDULER_ENABLED=false`` on the API so only one process sends.
"""

import argparse
import asyncio
import logging
from typing import Awaitable, Callable

from wa_dashboard.infra.db import get_session_factory
from wa_dashboard.infra.logging import configure_logging
from wa_dashboard.infra.metrics import configure_metrics
from wa_dashboard.infra.whatsapp import resolve_whatsapp_gateway
from wa_dashboard.jobs.scheduler import WORKFLOW_ENGINE_JOB, WorkflowScheduler, build_scheduler
from wa_dashboard.shared.pacing import build_pacer
from wa_dashboard.settings import settings

logger = logging.getLogger(__name__)

JOB_NAMES = (WORKFLOW_ENGINE_JOB,)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run scheduled jobs")
    parser.add_argument("--job", action="append", dest="jobs", choices=JOB_NAMES, help="Job name to run")
    parser.add_argument("--once", action="store_true", help="Run jobs once and exit")
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between loops (default: WORKFLOW_SCAN_INTERVAL_SECONDS)",
    )
    return parser.parse_args(argv)


def _job_runner(name: str, scheduler: WorkflowScheduler) -> Callable[[], Awaitable]:
    if name == WORKFLOW_ENGINE_JOB:
        return scheduler.run_once
    raise ValueError(f"unknown_job:{name}")


async def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    configure_logging()
    configure_metrics(settings.metrics_enabled)
    scheduler = build_scheduler(
        settings,
        get_session_factory(),
        resolve_whatsapp_gateway(settings),
        pacer=build_pacer(settings),
    )
    job_names = args.jobs or list(JOB_NAMES)
    runners = [_job_runner(name, scheduler) for name in job_names]
    interval = args.interval if args.interval is not None else settings.workflow_scan_interval_seconds

    while True:
        for name, runner in zip(job_names, runners):
            outcome = await runner()
            logger.info(
                "job_pass_complete",
                extra={"extra": {"job": name, "ran": outcome.ran, "result": outcome.result}},
            )
        if args.once:
            break
        await asyncio.sleep(max(interval, 1))


if __name__ == "__main__":
    asyncio.run(main())
