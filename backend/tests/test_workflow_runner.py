from datetime import datetime, timedelta, timezone

import pytest
import sqlalchemy as sa

from wa_dashboard.domain.contacts.db_models import Contact
from wa_dashboard.domain.contacts.statuses import ContactStatus
from wa_dashboard.domain.messages.db_models import Message
from wa_dashboard.domain.workflows import enrollment, runner
from wa_dashboard.domain.workflows.db_models import Workflow, WorkflowLog, WorkflowStep
from wa_dashboard.domain.workflows.statuses import WorkflowLogStatus

from tests.fakes import FakeWhatsAppGateway

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


async def _no_sleep(_: float) -> None:
    return None


async def _seed_workflow(session, *, trigger_after_days=3, steps=((0, "welcome_back"), (24, "still_there")), is_active=True):
    workflow = Workflow(
        name="Re-engage",
        trigger_after_days=trigger_after_days,
        is_active=is_active,
        steps=[
            WorkflowStep(step_number=index, delay_hours=delay, template_name=name, template_language="en_US")
            for index, (delay, name) in enumerate(steps, start=1)
        ],
    )
    session.add(workflow)
    await session.commit()
    return workflow.id


async def _seed_contact(session, phone_number, *, inactive_for=timedelta(days=4), status=ContactStatus.ongoing):
    contact = Contact(
        phone_number=phone_number,
        profile_name=f"Lead {phone_number}",
        last_message_at=NOW - inactive_for,
        status=status,
    )
    session.add(contact)
    await session.commit()
    return contact.id


async def _contact(session_maker, contact_id):
    async with session_maker() as session:
        return await session.get(Contact, contact_id)


@pytest.mark.anyio
async def test_timeline_sends_steps_in_order_after_delays(async_session_maker):
    gateway = FakeWhatsAppGateway()
    async with async_session_maker() as session:
        workflow_id = await _seed_workflow(session)
        contact_id = await _seed_contact(session, "15550001")

        enrolled = await runner.run_enrollment_scan(session, now=NOW, sleep=_no_sleep)
        assert enrolled == {"enrolled": 1, "skipped": 0, "errors": 0}

        first = await runner.run_step_scan(session, gateway, now=NOW)
        assert first["sent"] == 1
        assert gateway.template_calls[-1]["template_name"] == "welcome_back"

        early = await runner.run_step_scan(session, gateway, now=NOW + timedelta(hours=23))
        assert early["sent"] == 0
        assert len(gateway.template_calls) == 1

        second = await runner.run_step_scan(session, gateway, now=NOW + timedelta(hours=25))
        assert second["sent"] == 1
        assert gateway.template_calls[-1]["template_name"] == "still_there"

        exhausted = await runner.run_step_scan(session, gateway, now=NOW + timedelta(days=10))
        assert exhausted["sent"] == 0

    contact = await _contact(async_session_maker, contact_id)
    assert contact.workflow_id == workflow_id
    assert contact.workflow_step == 2
    assert _utc(contact.last_workflow_sent_at) == NOW + timedelta(hours=25)
    # Workflow sends do not count as conversation activity.
    assert _utc(contact.last_message_at) == NOW - timedelta(days=4)
    assert contact.unread_count == 0

    async with async_session_maker() as session:
        logs = (await session.execute(sa.select(WorkflowLog).order_by(WorkflowLog.id))).scalars().all()
        messages = (await session.execute(sa.select(Message))).scalars().all()
    assert [(log.step_number, log.status) for log in logs] == [
        (1, WorkflowLogStatus.sent),
        (2, WorkflowLogStatus.sent),
    ]
    assert {message.profile_name for message in messages} == {"Workflow"}
    assert all(message.from_number == "15550001" for message in messages)


@pytest.mark.anyio
async def test_enrollment_respects_inactivity_threshold_and_is_idempotent(async_session_maker):
    async with async_session_maker() as session:
        await _seed_workflow(session, trigger_after_days=3)
        stale_id = await _seed_contact(session, "15550010", inactive_for=timedelta(days=5))
        fresh_id = await _seed_contact(session, "15550011", inactive_for=timedelta(days=1))

        first = await runner.run_enrollment_scan(session, now=NOW, sleep=_no_sleep)
        second = await runner.run_enrollment_scan(session, now=NOW, sleep=_no_sleep)

    assert first["enrolled"] == 1
    assert second == {"enrolled": 0, "skipped": 0, "errors": 0}
    assert (await _contact(async_session_maker, stale_id)).workflow_id is not None
    assert (await _contact(async_session_maker, fresh_id)).workflow_id is None


@pytest.mark.anyio
async def test_enroll_twice_keeps_original_enrollment(async_session_maker):
    async with async_session_maker() as session:
        first_workflow = await _seed_workflow(session)
        second_workflow = await _seed_workflow(session)
        contact_id = await _seed_contact(session, "15550020")

        applied = await enrollment.enroll(session, contact_id, first_workflow)
        await session.commit()
        again = await enrollment.enroll(session, contact_id, second_workflow)
        await session.commit()

    assert applied.changed is True
    assert again.changed is False
    contact = await _contact(async_session_maker, contact_id)
    assert contact.workflow_id == first_workflow
    assert contact.workflow_enrollment_id == applied.state.enrollment_id


@pytest.mark.anyio
async def test_terminal_contacts_are_never_enrolled(async_session_maker):
    async with async_session_maker() as session:
        workflow_id = await _seed_workflow(session)
        converted_id = await _seed_contact(session, "15550030", status=ContactStatus.converted)
        rejected_id = await _seed_contact(session, "15550031", status=ContactStatus.rejected)

        result = await runner.run_enrollment_scan(session, now=NOW, sleep=_no_sleep)
        direct = await enrollment.enroll(session, converted_id, workflow_id)
        await session.commit()

    assert result["enrolled"] == 0
    assert direct.changed is False
    assert (await _contact(async_session_maker, converted_id)).workflow_id is None
    assert (await _contact(async_session_maker, rejected_id)).workflow_id is None


@pytest.mark.anyio
async def test_paused_and_terminal_contacts_receive_no_steps(async_session_maker):
    gateway = FakeWhatsAppGateway()
    async with async_session_maker() as session:
        await _seed_workflow(session)
        paused_id = await _seed_contact(session, "15550040")
        converted_id = await _seed_contact(session, "15550041")
        await runner.run_enrollment_scan(session, now=NOW, sleep=_no_sleep)

        await enrollment.pause(session, paused_id)
        await session.execute(
            sa.update(Contact).where(Contact.id == converted_id).values(status=ContactStatus.converted)
        )
        await session.commit()

        result = await runner.run_step_scan(session, gateway, now=NOW)

    assert result["sent"] == 0
    assert gateway.calls == []
    paused = await _contact(async_session_maker, paused_id)
    assert paused.workflow_paused is True
    assert paused.workflow_step == 0


@pytest.mark.anyio
async def test_resume_continues_from_current_step(async_session_maker):
    gateway = FakeWhatsAppGateway()
    async with async_session_maker() as session:
        await _seed_workflow(session)
        contact_id = await _seed_contact(session, "15550045")
        await runner.run_enrollment_scan(session, now=NOW, sleep=_no_sleep)
        await enrollment.pause(session, contact_id)
        await session.commit()
        await runner.run_step_scan(session, gateway, now=NOW)

        await enrollment.resume(session, contact_id)
        await session.commit()
        result = await runner.run_step_scan(session, gateway, now=NOW + timedelta(hours=1))

    assert result["sent"] == 1
    assert [call["template_name"] for call in gateway.template_calls] == ["welcome_back"]
    assert (await _contact(async_session_maker, contact_id)).workflow_step == 1


@pytest.mark.anyio
async def test_failed_send_logs_failure_and_keeps_step(async_session_maker):
    gateway = FakeWhatsAppGateway()
    gateway.fail_for.add("15550050")
    async with async_session_maker() as session:
        await _seed_workflow(session)
        contact_id = await _seed_contact(session, "15550050")
        await runner.run_enrollment_scan(session, now=NOW, sleep=_no_sleep)

        result = await runner.run_step_scan(session, gateway, now=NOW)
        retry = await runner.run_step_scan(session, gateway, now=NOW + timedelta(minutes=5))

    assert result == {"sent": 0, "failed": 1, "stale": 0, "errors": 0}
    assert retry["failed"] == 1
    contact = await _contact(async_session_maker, contact_id)
    assert contact.workflow_step == 0
    assert contact.last_workflow_sent_at is None

    async with async_session_maker() as session:
        logs = (await session.execute(sa.select(WorkflowLog))).scalars().all()
        messages = (await session.execute(sa.select(Message))).scalars().all()
    assert [log.status for log in logs] == [WorkflowLogStatus.failed, WorkflowLogStatus.failed]
    assert logs[0].error_message == "whatsapp_status_400"
    assert messages == []


@pytest.mark.anyio
async def test_reply_during_send_wins_over_advance(async_session_maker):
    gateway = FakeWhatsAppGateway()
    async with async_session_maker() as session:
        await _seed_workflow(session)
        contact_id = await _seed_contact(session, "15550060")
        await runner.run_enrollment_scan(session, now=NOW, sleep=_no_sleep)

    async def reply_arrives(_: str) -> None:
        async with async_session_maker() as other:
            await enrollment.on_contact_reply(other, contact_id)
            await other.commit()

    gateway.before_send = reply_arrives

    async with async_session_maker() as session:
        result = await runner.run_step_scan(session, gateway, now=NOW)

    assert result["sent"] == 1
    assert result["stale"] == 1
    contact = await _contact(async_session_maker, contact_id)
    assert contact.workflow_id is None
    assert contact.workflow_enrollment_id is None
    assert contact.workflow_step == 0
    assert contact.last_workflow_sent_at is None

    async with async_session_maker() as session:
        statuses = (await session.execute(sa.select(WorkflowLog.status))).scalars().all()
    assert statuses == [WorkflowLogStatus.sent]


@pytest.mark.anyio
async def test_advance_with_old_enrollment_token_is_ignored(async_session_maker):
    async with async_session_maker() as session:
        workflow_id = await _seed_workflow(session)
        contact_id = await _seed_contact(session, "15550065")
        first = await enrollment.enroll(session, contact_id, workflow_id)
        await enrollment.remove(session, contact_id)
        await enrollment.enroll(session, contact_id, workflow_id)
        await session.commit()

        applied = await enrollment.advance(
            session,
            contact_id,
            enrollment_id=first.state.enrollment_id,
            step_number=1,
            sent_at=NOW,
        )
        await session.commit()

    assert applied.changed is False
    assert (await _contact(async_session_maker, contact_id)).workflow_step == 0


@pytest.mark.anyio
async def test_inactive_workflow_neither_enrolls_nor_sends(async_session_maker):
    gateway = FakeWhatsAppGateway()
    async with async_session_maker() as session:
        workflow_id = await _seed_workflow(session, is_active=False)
        idle_id = await _seed_contact(session, "15550070")
        enrolled_id = await _seed_contact(session, "15550071")
        await enrollment.enroll(session, enrolled_id, workflow_id)
        await session.commit()

        result = await runner.run_workflow_engine(session, gateway, now=NOW, sleep=_no_sleep)

    assert result["enrolled"] == 0
    assert result["sent"] == 0
    assert gateway.calls == []
    assert (await _contact(async_session_maker, idle_id)).workflow_id is None


@pytest.mark.anyio
async def test_gateway_exception_is_isolated_per_contact(async_session_maker):
    gateway = FakeWhatsAppGateway()
    gateway.raise_for.add("15550080")
    async with async_session_maker() as session:
        await _seed_workflow(session)
        broken_id = await _seed_contact(session, "15550080", inactive_for=timedelta(days=6))
        healthy_id = await _seed_contact(session, "15550081", inactive_for=timedelta(days=5))

        result = await runner.run_workflow_engine(session, gateway, now=NOW, sleep=_no_sleep)

    assert result["enrolled"] == 2
    assert result["sent"] == 1
    assert result["errors"] == 1
    assert (await _contact(async_session_maker, broken_id)).workflow_step == 0
    assert (await _contact(async_session_maker, healthy_id)).workflow_step == 1


@pytest.mark.anyio
async def test_enrollment_batch_size_limits_one_pass(async_session_maker):
    async with async_session_maker() as session:
        await _seed_workflow(session)
        for index in range(3):
            await _seed_contact(session, f"1555009{index}", inactive_for=timedelta(days=4 + index))

        first = await runner.run_enrollment_scan(session, now=NOW, batch_size=2, sleep=_no_sleep)
        second = await runner.run_enrollment_scan(session, now=NOW, batch_size=2, sleep=_no_sleep)

    assert first["enrolled"] == 2
    assert second["enrolled"] == 1


@pytest.mark.anyio
async def test_enrollment_delay_sleeps_between_contacts(async_session_maker):
    slept: list[float] = []

    async def record_sleep(seconds: float) -> None:
        slept.append(seconds)

    async with async_session_maker() as session:
        await _seed_workflow(session)
        await _seed_contact(session, "15550100")
        await _seed_contact(session, "15550101")

        await runner.run_enrollment_scan(session, now=NOW, delay_seconds=2.5, sleep=record_sleep)

    assert slept == [2.5, 2.5]


async def _enroll_two_due_contacts(session_maker):
    async with session_maker() as session:
        await _seed_workflow(session)
        first_id = await _seed_contact(session, "15559001")
        second_id = await _seed_contact(session, "15559002")
        await runner.run_enrollment_scan(session, now=NOW, sleep=_no_sleep)
    return first_id, second_id


@pytest.mark.anyio
async def test_contact_paused_mid_pass_is_not_sent(async_session_maker):
    gateway = FakeWhatsAppGateway()
    first_id, second_id = await _enroll_two_due_contacts(async_session_maker)

    async def pause_second(to: str) -> None:
        if to != "15559001":
            return
        async with async_session_maker() as other:
            await enrollment.pause(other, second_id)
            await other.commit()

    gateway.before_send = pause_second

    async with async_session_maker() as session:
        result = await runner.run_step_scan(session, gateway, now=NOW)

    assert [call["to"] for call in gateway.template_calls] == ["15559001"]
    assert result["sent"] == 1
    assert result["stale"] == 1
    assert (await _contact(async_session_maker, first_id)).workflow_step == 1
    second = await _contact(async_session_maker, second_id)
    assert second.workflow_paused is True
    assert second.workflow_step == 0


@pytest.mark.anyio
async def test_contact_replying_mid_pass_is_not_sent(async_session_maker):
    gateway = FakeWhatsAppGateway()
    _, second_id = await _enroll_two_due_contacts(async_session_maker)

    async def second_replies(to: str) -> None:
        if to != "15559001":
            return
        async with async_session_maker() as other:
            await enrollment.on_contact_reply(other, second_id)
            await other.commit()

    gateway.before_send = second_replies

    async with async_session_maker() as session:
        result = await runner.run_step_scan(session, gateway, now=NOW)

    assert "15559002" not in [call["to"] for call in gateway.calls]
    assert result["sent"] == 1
    assert result["stale"] == 1
    assert (await _contact(async_session_maker, second_id)).workflow_id is None

    async with async_session_maker() as session:
        logged = (await session.execute(sa.select(WorkflowLog.contact_id))).scalars().all()
    assert second_id not in logged


@pytest.mark.anyio
async def test_contact_matching_several_workflows_joins_the_first_only(async_session_maker):
    async with async_session_maker() as session:
        first_workflow = await _seed_workflow(session, trigger_after_days=3)
        await _seed_workflow(session, trigger_after_days=1)
        contact_id = await _seed_contact(session, "15559010", inactive_for=timedelta(days=4))

        result = await runner.run_enrollment_scan(session, now=NOW, sleep=_no_sleep)

    assert result["enrolled"] == 1
    assert (await _contact(async_session_maker, contact_id)).workflow_id == first_workflow
