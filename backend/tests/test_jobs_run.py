import pytest

from wa_dashboard.jobs import run
from wa_dashboard.jobs.scheduler import WORKFLOW_ENGINE_JOB


def test_job_flag_selects_workflow_engine():
    args = run._parse_args(["--job", "workflow-engine", "--once"])

    assert args.jobs == [WORKFLOW_ENGINE_JOB]
    assert args.once is True
    assert args.interval is None


def test_jobs_default_to_all_when_not_named():
    args = run._parse_args(["--interval", "30"])

    assert args.jobs is None
    assert args.once is False
    assert args.interval == 30


def test_unknown_job_is_rejected_by_the_parser():
    with pytest.raises(SystemExit):
        run._parse_args(["--job", "nightly-report"])


def test_job_runner_dispatches_to_scheduler():
    class Scheduler:
        async def run_once(self):
            return None

    scheduler = Scheduler()

    assert run._job_runner(WORKFLOW_ENGINE_JOB, scheduler) == scheduler.run_once
    with pytest.raises(ValueError):
        run._job_runner("nightly-report", scheduler)
