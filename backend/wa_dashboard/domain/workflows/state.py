"""Per-contact workflow enrollment state machine.

A contact is either ``Unenrolled`` or ``Enrolled`` in exactly one workflow. Every change
to the five workflow columns on ``contacts`` is expressed as an event and goes through
``transition``; persistence (``enrollment.apply_event``) only writes what this module
returns.

Rules:

* ``Enroll`` applies only to an unenrolled contact. A second enroll is a no-op.
* ``Advance`` carries the enrollment token it was computed against and the step number
  it just sent. It only applies to an unpaused enrollment whose token still matches and
  whose next step is the one sent, so an advance issued after a reply, a pause, or a
  re-enrollment is stale and changes nothing.
* ``Reply`` and ``Remove`` always end ``Unenrolled``.
* ``Pause`` and ``Resume`` are idempotent and only meaningful while enrolled.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Union


@dataclass(frozen=True)
class Unenrolled:
    pass


@dataclass(frozen=True)
class Enrolled:
    workflow_id: int
    enrollment_id: uuid.UUID | None
    step: int = 0
    paused: bool = False
    last_sent_at: datetime | None = None


EnrollmentState = Union[Unenrolled, Enrolled]

UNENROLLED = Unenrolled()


@dataclass(frozen=True)
class Enroll:
    workflow_id: int
    enrollment_id: uuid.UUID


@dataclass(frozen=True)
class Advance:
    enrollment_id: uuid.UUID | None
    step_number: int
    sent_at: datetime


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class Remove:
    pass


@dataclass(frozen=True)
class Reply:
    pass


EnrollmentEvent = Union[Enroll, Advance, Pause, Resume, Remove, Reply]


def transition(state: EnrollmentState, event: EnrollmentEvent) -> EnrollmentState:
    if isinstance(event, (Reply, Remove)):
        return UNENROLLED

    if isinstance(event, Enroll):
        if isinstance(state, Enrolled):
            return state
        return Enrolled(workflow_id=event.workflow_id, enrollment_id=event.enrollment_id)

    if not isinstance(state, Enrolled):
        return state

    if isinstance(event, Advance):
        if state.paused:
            return state
        if event.enrollment_id != state.enrollment_id:
            return state
        if event.step_number != state.step + 1:
            return state
        return replace(state, step=event.step_number, last_sent_at=event.sent_at)

    if isinstance(event, Pause):
        return replace(state, paused=True)

    if isinstance(event, Resume):
        return replace(state, paused=False)

    raise TypeError(f"unknown_enrollment_event:{type(event).__name__}")


def to_columns(state: EnrollmentState) -> dict[str, Any]:
    """Column values for ``contacts``; unenrolled always maps to the zero defaults."""
    if isinstance(state, Enrolled):
        return {
            "workflow_id": state.workflow_id,
            "workflow_enrollment_id": state.enrollment_id,
            "workflow_step": state.step,
            "workflow_paused": state.paused,
            "last_workflow_sent_at": state.last_sent_at,
        }
    return {
        "workflow_id": None,
        "workflow_enrollment_id": None,
        "workflow_step": 0,
        "workflow_paused": False,
        "last_workflow_sent_at": None,
    }


def from_columns(
    *,
    workflow_id: int | None,
    workflow_enrollment_id: uuid.UUID | None,
    workflow_step: int | None,
    workflow_paused: bool | None,
    last_workflow_sent_at: datetime | None,
) -> EnrollmentState:
    if workflow_id is None:
        return UNENROLLED
    return Enrolled(
        workflow_id=workflow_id,
        enrollment_id=workflow_enrollment_id,
        step=workflow_step or 0,
        paused=bool(workflow_paused),
        last_sent_at=last_workflow_sent_at,
    )
