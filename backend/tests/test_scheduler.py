from datetime import datetime, timedelta, timezone

import pytest

from wa_dashboard.domain.contacts.db_models import Contact
from wa_dashboard.domain.ops.db_models import JobHeartbeat
from wa_dashboard.domain.workflows.db_models import Workflow, WorkflowStep
from wa_dashboard.jobs import scheduler as scheduler_module
from wa_dashboard.jobs.scheduler import WORKFLOW_ENGINE_JOB, WorkflowScheduler, build_scheduler
from wa_dashboard.settings import settings

from tests.fakes import FakeWhatsAppGateway

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


async def _seed_due_contact(session_maker) -> None:
    async with session_maker() as session:
        session.add(
            Workflow(
                name="Nudge",
                trigger_after_days=2,
                steps=[WorkflowStep(step_number=1, delay_hours=0, template_name="nudge")],
            )
        )
        session.add(Contact(phone_number="15551230", last_message_at=NOW - timedelta(days=3)))
        await session.commit()


@pytest.mark.anyio
async def test_run_once_runs_engine_and_records_heartbeat(async_session_maker):
    await _seed_due_contact(async_session_maker)
    gateway = FakeWhatsAppGateway()
    scheduler = WorkflowScheduler(async_session_maker, gateway, now=lambda: NOW)

    outcome = await scheduler.run_once()

    assert outcome.ran is True
    assert outcome.result["enrolled"] == 1
    assert outcome.result["sent"] == 1
    async with async_session_maker() as session:
        heartbeat = await session.get(JobHeartbeat, WORKFLOW_ENGINE_JOB)
    assert heartbeat is not None
    assert heartbeat.consecutive_failures == 0
    assert heartbeat.last_success_at is not None
    assert heartbeat.runs_total == 1
    assert heartbeat.last_run_stats["sent"] == 1


@pytest.mark.anyio
async def test_trigger_during_running_pass_is_skipped(async_session_maker):
    await _seed_due_contact(async_session_maker)
    gateway = FakeWhatsAppGateway()
    scheduler = WorkflowScheduler(async_session_maker, gateway, now=lambda: NOW)
    nested = []

    async def overlap(_: str) -> None:
        nested.append(await scheduler.run_once())

    gateway.before_send = overlap

    outcome = await scheduler.run_once()

    assert outcome.ran is True
    assert [item.ran for item in nested] == [False]
    assert scheduler.flight.skipped == 1
    assert len(gateway.template_calls) == 1


@pytest.mark.anyio
async def test_failed_pass_records_failure_heartbeat(async_session_maker, monkeypatch):
    async def broken_engine(*args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(scheduler_module, "run_workflow_engine", broken_engine)
    scheduler = WorkflowScheduler(async_session_maker, FakeWhatsAppGateway(), now=lambda: NOW)

    outcome = await scheduler.run_once()
    await scheduler.run_once()

    assert outcome.ran is True
    assert outcome.result is None
    async with async_session_maker() as session:
        heartbeat = await session.get(JobHeartbeat, WORKFLOW_ENGINE_JOB)
    assert heartbeat.consecutive_failures == 2
    assert heartbeat.last_error == "RuntimeError"
    assert heartbeat.runs_total == 2
    assert heartbeat.last_run_stats is None


@pytest.mark.anyio
async def test_start_and_stop_manage_background_tasks(async_session_maker):
    scheduler = build_scheduler(settings, async_session_maker, FakeWhatsAppGateway())
    scheduler.startup_delay_seconds = 3600

    scheduler.start()
    scheduler.start()
    assert scheduler.started is True
    assert len(scheduler._tasks) == 2

    await scheduler.stop()
    assert scheduler.started is False
