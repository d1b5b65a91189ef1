"""Explicit step order, status transitions and the checkpoint ledger.

All functions here are pure: they take a `Session` and return an updated
copy. Persistence is the caller's job and only happens at checkpoints and
status transitions.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from discovery_orchestrator.errors import (
    IllegalTransitionError,
    InvariantViolation,
    ValidationError,
)
from discovery_orchestrator.state.session import (
    STEP_ORDER,
    Checkpoint,
    Session,
    SessionStatus,
    WorkflowStep,
    step_index,
    utc_now,
)

NEXT_STEP: dict[WorkflowStep, WorkflowStep | None] = {
    step: (STEP_ORDER[i + 1] if i + 1 < len(STEP_ORDER) else None)
    for i, step in enumerate(STEP_ORDER)
}

ALLOWED_STATUS_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.IN_PROGRESS: {
        SessionStatus.PAUSED,
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
    },
    SessionStatus.PAUSED: {SessionStatus.IN_PROGRESS, SessionStatus.FAILED},
    # Only reachable through an explicit reopen, never through a plain resume.
    SessionStatus.FAILED: {SessionStatus.IN_PROGRESS},
    SessionStatus.COMPLETED: set(),
}


def _evolve(session: Session, **changes: Any) -> Session:
    # model_copy() skips validation; rebuild so the record invariants are re-checked.
    data = session.model_dump()
    data.update(changes)
    try:
        return Session.model_validate(data)
    except PydanticValidationError as e:
        raise InvariantViolation(
            f"Session {session.session_id} would become invalid: {e.errors(include_url=False)}"
        ) from e


def has_checkpoint(session: Session, step: WorkflowStep) -> bool:
    return any(cp.step == step for cp in session.checkpoints)


def next_pending_step(session: Session) -> WorkflowStep | None:
    """First step without a checkpoint, or None when everything is done."""

    done = len(session.checkpoints)
    return STEP_ORDER[done] if done < len(STEP_ORDER) else None


def pending_steps(session: Session) -> list[WorkflowStep]:
    return [step for step in STEP_ORDER if not has_checkpoint(session, step)]


def is_complete(session: Session) -> bool:
    return next_pending_step(session) is None


def append_checkpoint(
    session: Session,
    step: WorkflowStep,
    output_refs: Sequence[str],
    duration_ms: int,
    *,
    timestamp: datetime | None = None,
    provider_used: str | None = None,
    estimated_cost: float | None = None,
) -> tuple[Session, Checkpoint]:
    """Record completion of `step`.

    Raises:
        InvariantViolation: `step` is already checkpointed, or it is not the
            next step in order.
        ValidationError: The output refs or metadata do not fit a checkpoint.
    """

    if has_checkpoint(session, step):
        raise InvariantViolation(
            f"Session {session.session_id} already has a checkpoint for {step.value!r}"
        )
    expected = next_pending_step(session)
    if expected is None or step_index(step) != step_index(expected):
        raise InvariantViolation(
            f"Checkpoint {step.value!r} out of order for session {session.session_id}; "
            f"next expected step is {expected.value if expected else 'none'!r}"
        )
    if duration_ms < 0:
        raise InvariantViolation(f"Negative duration for {step.value!r}: {duration_ms}")

    now = timestamp or utc_now()
    try:
        checkpoint = Checkpoint(
            step=step,
            timestamp=now,
            output_refs=tuple(output_refs),
            duration_ms=duration_ms,
            provider_used=provider_used,
            estimated_cost=estimated_cost,
        )
    except PydanticValidationError as e:
        raise ValidationError(
            f"{e.error_count()} invalid field(s) for step {step.value!r}",
            schema_name="Checkpoint",
            errors=[dict(err) for err in e.errors(include_url=False)],
        ) from e
    updated = _evolve(
        session,
        checkpoints=(*session.checkpoints, checkpoint),
        current_step=step,
        updated_at=now,
    )
    return updated, checkpoint


def transition_status(session: Session, to: SessionStatus) -> Session:
    """Move `session` to status `to`, refreshing `updated_at`.

    A transition to the current status is a no-op apart from the timestamp.
    """

    if to is not session.status:
        allowed = ALLOWED_STATUS_TRANSITIONS.get(session.status, set())
        if to not in allowed:
            raise IllegalTransitionError(
                f"Illegal transition: {session.status.value} -> {to.value}"
            )
    return _evolve(session, status=to, updated_at=utc_now())
