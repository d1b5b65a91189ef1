"""Workflow orchestrator.

Drives the five discovery steps, in fixed order, against one durable session:

    init -> prd-analysis -> figma-analysis -> validation -> clarification
         -> tdd-generation -> completed

with a side exit to `paused` whenever the deadline is observed expired
before the next step starts, and an exception whenever a step fails.
Step failures are surfaced to the caller untouched; whether a session is
marked `failed` or left resumable is the caller's call (see `fail`).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from functools import partial

from pydantic import BaseModel, Field, model_validator

from discovery_orchestrator.core.config import WorkflowSettings
from discovery_orchestrator.core.logging import session_logger
from discovery_orchestrator.errors import SessionError, StepFailure
from discovery_orchestrator.state.session import (
    STEP_ORDER,
    Session,
    SessionStatus,
    SourceRefs,
    WorkflowStep,
)
from discovery_orchestrator.state.store import SessionStore
from discovery_orchestrator.workflow.deadline import DeadlineController
from discovery_orchestrator.workflow.executor import StepExecutor
from discovery_orchestrator.workflow.state_machine import (
    has_checkpoint,
    is_complete,
    transition_status,
)
from discovery_orchestrator.workflow.steps import StepCollaborators

logger = logging.getLogger(__name__)


class RunOptions(BaseModel):
    """Inputs of a single `run()` call."""

    source_refs: SourceRefs | None = Field(default=None)
    resume_id: str | None = Field(default=None)
    deadline_minutes: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _require_source_or_resume(self) -> RunOptions:
        if self.resume_id is None and self.source_refs is None:
            raise ValueError("source_refs is required unless resume_id is given")
        return self


class WorkflowSummary(BaseModel):
    session_id: str
    status: SessionStatus
    completed_steps: list[WorkflowStep]
    executed_steps: list[WorkflowStep] = Field(default_factory=list)
    elapsed_ms: int


@dataclass
class _RunState:
    """The session as of the latest persisted transition of this run."""

    session: Session
    executed: list[WorkflowStep] = field(default_factory=list)
    started: float = field(default_factory=time.monotonic)

    def summary(self) -> WorkflowSummary:
        return WorkflowSummary(
            session_id=self.session.session_id,
            status=self.session.status,
            completed_steps=self.session.completed_steps,
            executed_steps=list(self.executed),
            elapsed_ms=int((time.monotonic() - self.started) * 1000),
        )


class WorkflowOrchestrator:
    """Create or resume a session and run it to completion, pause or failure."""

    def __init__(
        self,
        collaborators: StepCollaborators,
        settings: WorkflowSettings | None = None,
        *,
        store: SessionStore | None = None,
    ) -> None:
        self.settings = settings or WorkflowSettings()
        self.store = store or SessionStore(self.settings.session_storage_path)
        self._collaborators = collaborators
        self._executor = StepExecutor(self.store)

    async def run(
        self, options: RunOptions, *, deadline: DeadlineController | None = None
    ) -> WorkflowSummary:
        """Run the workflow until it completes or the deadline pauses it.

        Raises:
            StepFailure: A step collaborator rejected. Carries the session id;
                the failed step has no checkpoint.
            SessionError: The session to resume is unknown or not resumable.
            ValidationError: The session to resume is corrupted on disk.
        """

        state = _RunState(session=self._resolve_session(options))
        session_id = state.session.session_id
        log = session_logger(logger, session_id)
        self.store.mark_active(session_id)

        deadline = deadline or DeadlineController()
        minutes = (
            options.deadline_minutes
            if options.deadline_minutes is not None
            else state.session.config.workflow_timeout_minutes
        )
        deadline.start(minutes * 60, on_expire=partial(self._pause_on_expiry, state))

        log.info(
            "Workflow started",
            extra={
                "deadline_minutes": minutes,
                "completed_steps": [s.value for s in state.session.completed_steps],
            },
        )

        try:
            for step in STEP_ORDER:
                # Finished steps never wait on the deadline.
                if not has_checkpoint(state.session, step) and deadline.is_expired():
                    await deadline.expire()
                    return self._pause(state)

                try:
                    outcome = await self._executor.execute(
                        state.session, step, self._collaborators.for_step(step)
                    )
                except StepFailure as e:
                    log.for_step(step.value).error(
                        "Workflow stopped at failed step", extra={"error": e.message}
                    )
                    raise

                state.session = outcome.session
                if not outcome.skipped:
                    state.executed.append(step)

            await deadline.close()
            state.session = transition_status(state.session, SessionStatus.COMPLETED)
            self.store.save(state.session)
            self.store.clear_active(session_id)
        finally:
            await deadline.close()

        summary = state.summary()
        log.info("Workflow completed", extra={"elapsed_ms": summary.elapsed_ms})
        return summary

    def reopen(self, session_id: str) -> Session:
        """Move a failed session back to in-progress so it can be resumed."""

        session = self.store.load(session_id)
        if session.status is not SessionStatus.FAILED:
            raise SessionError(
                f"only failed sessions can be reopened (status is {session.status.value})",
                session_id=session_id,
            )
        session = transition_status(session, SessionStatus.IN_PROGRESS)
        self.store.save(session)
        session_logger(logger, session_id).info("Session reopened")
        return session

    def fail(self, session_id: str, error: BaseException, *, step: str | None = None) -> Session:
        """Mark a session failed, record the error and release its active marker."""

        session = transition_status(self.store.load(session_id), SessionStatus.FAILED)
        self.store.save(session)
        self.store.write_error_report(session_id, error, step=step or getattr(error, "step", None))
        self.store.clear_active(session_id)
        session_logger(logger, session_id).warning(
            "Session marked failed", extra={"error": str(error)}
        )
        return session

    def _resolve_session(self, options: RunOptions) -> Session:
        if options.resume_id is None:
            assert options.source_refs is not None
            # A per-run deadline override is not part of the session config;
            # later resumes fall back to the configured timeout.
            return self.store.create(options.source_refs, self.settings.session_config())

        session = self.store.load(options.resume_id)
        if session.status is SessionStatus.COMPLETED:
            raise SessionError("cannot resume completed session", session_id=session.session_id)
        if session.status is SessionStatus.FAILED:
            raise SessionError(
                "session failed; reopen it before resuming", session_id=session.session_id
            )
        if session.status is SessionStatus.PAUSED:
            session = transition_status(session, SessionStatus.IN_PROGRESS)
            self.store.save(session)

        session_logger(logger, session.session_id).info(
            "Session resumed", extra={"checkpoints": len(session.checkpoints)}
        )
        return session

    async def _pause_on_expiry(self, state: _RunState) -> None:
        # Early save while a step may still be in flight; the run loop pauses
        # again with the latest checkpoints once it observes expiry.
        if state.session.status is not SessionStatus.IN_PROGRESS or is_complete(state.session):
            return
        paused = transition_status(state.session, SessionStatus.PAUSED)
        self.store.save(paused)
        state.session = paused
        session_logger(logger, paused.session_id).info("Session state saved at deadline")

    def _pause(self, state: _RunState) -> WorkflowSummary:
        state.session = transition_status(state.session, SessionStatus.PAUSED)
        self.store.save(state.session)
        summary = state.summary()
        session_logger(logger, summary.session_id).warning(
            "Workflow paused at deadline; resume with the session id",
            extra={
                "completed_steps": [s.value for s in summary.completed_steps],
                "elapsed_ms": summary.elapsed_ms,
            },
        )
        return summary
