import uuid
from datetime import datetime, timezone

import pytest

from wa_dashboard.domain.workflows.state import (
    UNENROLLED,
    Advance,
    Enroll,
    Enrolled,
    Pause,
    Remove,
    Reply,
    Resume,
    from_columns,
    to_columns,
    transition,
)

SENT_AT = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
TOKEN = uuid.UUID("00000000-0000-0000-0000-000000000001")


def _enrolled(**overrides):
    values = {"workflow_id": 7, "enrollment_id": TOKEN}
    values.update(overrides)
    return Enrolled(**values)


def test_enroll_from_unenrolled_starts_at_step_zero():
    state = transition(UNENROLLED, Enroll(workflow_id=7, enrollment_id=TOKEN))

    assert state == Enrolled(workflow_id=7, enrollment_id=TOKEN, step=0, paused=False, last_sent_at=None)


def test_enroll_is_noop_when_already_enrolled():
    current = _enrolled(step=2)

    assert transition(current, Enroll(workflow_id=9, enrollment_id=uuid.uuid4())) == current


def test_advance_moves_to_next_step_and_records_send_time():
    state = transition(_enrolled(), Advance(enrollment_id=TOKEN, step_number=1, sent_at=SENT_AT))

    assert state.step == 1
    assert state.last_sent_at == SENT_AT


@pytest.mark.parametrize(
    "event",
    [
        Advance(enrollment_id=uuid.uuid4(), step_number=1, sent_at=SENT_AT),
        Advance(enrollment_id=TOKEN, step_number=3, sent_at=SENT_AT),
        Advance(enrollment_id=TOKEN, step_number=0, sent_at=SENT_AT),
    ],
)
def test_stale_advance_changes_nothing(event):
    current = _enrolled()

    assert transition(current, event) == current


def test_advance_while_paused_changes_nothing():
    current = _enrolled(paused=True)

    assert transition(current, Advance(enrollment_id=TOKEN, step_number=1, sent_at=SENT_AT)) == current


def test_advance_on_unenrolled_is_ignored():
    event = Advance(enrollment_id=TOKEN, step_number=1, sent_at=SENT_AT)

    assert transition(UNENROLLED, event) is UNENROLLED


@pytest.mark.parametrize("event", [Reply(), Remove()])
def test_reply_and_remove_always_unenroll(event):
    assert transition(_enrolled(step=3, paused=True), event) == UNENROLLED
    assert transition(UNENROLLED, event) == UNENROLLED


def test_pause_and_resume_are_idempotent():
    paused = transition(_enrolled(), Pause())

    assert paused.paused is True
    assert transition(paused, Pause()) == paused
    resumed = transition(paused, Resume())
    assert resumed == _enrolled()
    assert transition(resumed, Resume()) == resumed


def test_pause_on_unenrolled_is_ignored():
    assert transition(UNENROLLED, Pause()) is UNENROLLED
    assert transition(UNENROLLED, Resume()) is UNENROLLED


def test_unknown_event_is_rejected():
    with pytest.raises(TypeError):
        transition(_enrolled(), object())


def test_unenrolled_maps_to_zero_columns():
    assert to_columns(UNENROLLED) == {
        "workflow_id": None,
        "workflow_enrollment_id": None,
        "workflow_step": 0,
        "workflow_paused": False,
        "last_workflow_sent_at": None,
    }


def test_columns_round_trip_for_enrolled_state():
    state = _enrolled(step=2, paused=True, last_sent_at=SENT_AT)

    assert from_columns(**to_columns(state)) == state


def test_missing_workflow_id_reads_as_unenrolled():
    state = from_columns(
        workflow_id=None,
        workflow_enrollment_id=TOKEN,
        workflow_step=3,
        workflow_paused=True,
        last_workflow_sent_at=SENT_AT,
    )

    assert state is UNENROLLED
