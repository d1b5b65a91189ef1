"""Session record models.

A session is the durable record of one end-to-end discovery run. It is
persisted as a `SessionState` envelope and validated on every read and
write, so the invariants below hold for anything that reaches disk:

- at most one checkpoint per step, at most one per defined step in total
- checkpoints form a prefix of the step order (no gaps, no reordering)
- `current_step` is the first step until something completes, then the
  step of the last checkpoint
- `completed` implies all steps are checkpointed, `paused` implies not
"""

from __future__ import annotations

import re
import time
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SESSION_ID_PATTERN = re.compile(r"^sess-\d{13}$")
SESSION_STATE_VERSION = "1.0"


class WorkflowStep(str, Enum):
    PRD_ANALYSIS = "prd-analysis"
    FIGMA_ANALYSIS = "figma-analysis"
    VALIDATION = "validation"
    CLARIFICATION = "clarification"
    TDD_GENERATION = "tdd-generation"


STEP_ORDER: tuple[WorkflowStep, ...] = tuple(WorkflowStep)

STEP_OUTPUT_DIRS: dict[WorkflowStep, str] = {
    WorkflowStep.PRD_ANALYSIS: "01-prd-analysis",
    WorkflowStep.FIGMA_ANALYSIS: "02-figma-analysis",
    WorkflowStep.VALIDATION: "03-validation",
    WorkflowStep.CLARIFICATION: "04-clarification",
    WorkflowStep.TDD_GENERATION: "05-tdd",
}


def step_index(step: WorkflowStep) -> int:
    return STEP_ORDER.index(step)


class SessionStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def generate_session_id() -> str:
    """Time-based session id: `sess-{epoch milliseconds}`."""

    return f"sess-{time.time_ns() // 1_000_000}"


class Checkpoint(BaseModel):
    """Immutable proof that a step completed."""

    model_config = ConfigDict(frozen=True)

    step: WorkflowStep
    timestamp: datetime
    output_refs: tuple[str, ...] = Field(default_factory=tuple)
    duration_ms: int = Field(ge=0)

    provider_used: str | None = Field(default=None)
    estimated_cost: float | None = Field(default=None, ge=0)


class SourceRefs(BaseModel):
    """External inputs of a session. Opaque to the orchestrator."""

    model_config = ConfigDict(frozen=True)

    document: str = Field(min_length=1, description="Requirements document source")
    design: str | None = Field(default=None, description="Optional design file source")


class SessionConfig(BaseModel):
    """Execution parameters captured when the session was created."""

    model_config = ConfigDict(frozen=True)

    ai_provider: str
    workflow_timeout_minutes: float = Field(ge=0)
    max_clarification_iterations: int = Field(ge=1)


class Session(BaseModel):
    """The durable state of one workflow run.

    Instances are never mutated in place; transitions return updated copies
    (see `discovery_orchestrator.workflow.state_machine`).
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    current_step: WorkflowStep = WorkflowStep.PRD_ANALYSIS
    status: SessionStatus = SessionStatus.IN_PROGRESS
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    source_refs: SourceRefs
    checkpoints: tuple[Checkpoint, ...] = Field(default_factory=tuple, max_length=len(STEP_ORDER))
    config: SessionConfig

    @field_validator("session_id")
    @classmethod
    def _check_session_id(cls, value: str) -> str:
        if not SESSION_ID_PATTERN.match(value):
            raise ValueError("Session ID must match pattern sess-{timestamp}")
        return value

    @model_validator(mode="after")
    def _check_checkpoints(self) -> Session:
        for expected, checkpoint in zip(STEP_ORDER, self.checkpoints):
            if checkpoint.step != expected:
                raise ValueError(
                    f"checkpoint {checkpoint.step.value!r} out of order, expected {expected.value!r}"
                )

        expected_current = (
            self.checkpoints[-1].step if self.checkpoints else STEP_ORDER[0]
        )
        if self.current_step != expected_current:
            raise ValueError(
                f"current_step {self.current_step.value!r} does not match checkpoints "
                f"(expected {expected_current.value!r})"
            )

        done = len(self.checkpoints) == len(STEP_ORDER)
        if self.status is SessionStatus.COMPLETED and not done:
            raise ValueError("completed session must have a checkpoint for every step")
        if self.status is SessionStatus.PAUSED and done:
            raise ValueError("paused session must have at least one pending step")
        return self

    @property
    def completed_steps(self) -> list[WorkflowStep]:
        return [cp.step for cp in self.checkpoints]

    @property
    def last_checkpoint(self) -> Checkpoint | None:
        return self.checkpoints[-1] if self.checkpoints else None


class SessionState(BaseModel):
    """On-disk envelope of a session record."""

    session: Session
    version: str = Field(default=SESSION_STATE_VERSION)
    last_checkpoint: Checkpoint | None = Field(default=None)

    @model_validator(mode="after")
    def _check_last_checkpoint(self) -> SessionState:
        if self.last_checkpoint != self.session.last_checkpoint:
            raise ValueError("last_checkpoint does not match the session's checkpoint list")
        return self

    @classmethod
    def wrap(cls, session: Session) -> SessionState:
        return cls(session=session, last_checkpoint=session.last_checkpoint)
