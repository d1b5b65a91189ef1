"""Run a single named step: skip if done, invoke, time, checkpoint, persist."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from discovery_orchestrator.core.logging import session_logger
from discovery_orchestrator.errors import StepFailure, ValidationError
from discovery_orchestrator.state.session import Checkpoint, Session, WorkflowStep
from discovery_orchestrator.state.store import SessionStore
from discovery_orchestrator.workflow.state_machine import append_checkpoint, has_checkpoint
from discovery_orchestrator.workflow.steps import StepCollaborator, StepResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StepOutcome:
    session: Session
    step: WorkflowStep
    skipped: bool
    checkpoint: Checkpoint | None = None


def _as_step_failure(error: Exception, *, step: WorkflowStep, session_id: str) -> StepFailure:
    if isinstance(error, StepFailure):
        if not error.session_id:
            error.session_id = session_id
        return error
    retryable = bool(getattr(error, "retryable", getattr(error, "recoverable", False)))
    return StepFailure(
        str(error) or type(error).__name__,
        step=step.value,
        session_id=session_id,
        retryable=retryable,
    )


class StepExecutor:
    """Executes exactly one step against a session and persists the result.

    On failure nothing is appended and nothing is written: the session stays
    resumable at the same step.
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    async def execute(
        self, session: Session, step: WorkflowStep, collaborator: StepCollaborator
    ) -> StepOutcome:
        log = session_logger(logger, session.session_id, step=step.value)
        if has_checkpoint(session, step):
            log.info("Step already completed; skipping")
            return StepOutcome(session=session, step=step, skipped=True)

        log.info("Step started")
        started = time.monotonic()
        try:
            result = await collaborator(session)
        except Exception as e:
            failure = _as_step_failure(e, step=step, session_id=session.session_id)
            log.error(
                "Step failed",
                extra={"error": failure.message, "retryable": failure.retryable},
            )
            if failure is e:
                raise
            raise failure from e

        if not isinstance(result, StepResult):
            raise StepFailure(
                f"collaborator returned {type(result).__name__}, expected StepResult",
                step=step.value,
                session_id=session.session_id,
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        try:
            updated, checkpoint = append_checkpoint(
                session,
                step,
                result.output_refs,
                duration_ms,
                provider_used=result.provider_used,
                estimated_cost=result.estimated_cost,
            )
        except ValidationError as e:
            log.error("Step returned an invalid result", extra={"error": str(e)})
            raise StepFailure(
                f"collaborator returned an invalid result: {e}",
                step=step.value,
                session_id=session.session_id,
            ) from e
        self._store.save(updated)

        log.info(
            "Step completed",
            extra={"duration_ms": duration_ms, "outputs": len(checkpoint.output_refs)},
        )
        return StepOutcome(session=updated, step=step, skipped=False, checkpoint=checkpoint)
