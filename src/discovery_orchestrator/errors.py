"""Error taxonomy for the discovery workflow.

Every error raised by the orchestrator core derives from `OrchestratorError`
and carries a stable `code` plus a `recoverable` flag so callers can decide
between retrying, resuming later, or marking a session failed.

Deadline expiry is deliberately absent: a paused run is a normal outcome.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""

    code = "ORCHESTRATOR_ERROR"
    recoverable = False


class ValidationError(OrchestratorError):
    """A persisted record does not conform to its schema.

    Raised on read (hand-edited or corrupted files) and on write when the
    serialized bytes fail re-validation. Never repaired automatically.
    """

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        schema_name: str = "",
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        self.path = path
        self.schema_name = schema_name
        self.errors = errors or []
        location = f" ({path})" if path is not None else ""
        super().__init__(f"Validation failed for {schema_name or 'record'}{location}: {message}")


class InvariantViolation(OrchestratorError):
    """Checkpoint ordering or uniqueness was violated."""

    code = "INVARIANT_VIOLATION"


class IllegalTransitionError(InvariantViolation):
    """A session status change is not permitted by the transition table."""

    code = "ILLEGAL_TRANSITION"


class StorageFailure(OrchestratorError):
    """The atomic store could not write or rename a record."""

    code = "STORAGE_FAILURE"

    def __init__(self, message: str, *, path: Path) -> None:
        self.path = path
        super().__init__(f"{message}: {path}")


class SessionError(OrchestratorError):
    """The requested session does not exist or cannot be resumed."""

    code = "SESSION_ERROR"

    def __init__(self, message: str, *, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id}: {message}")


class StepFailure(OrchestratorError):
    """A step collaborator rejected.

    The collaborator's own message is kept verbatim; it is expected to carry
    the actionable detail.
    """

    code = "STEP_FAILURE"

    def __init__(
        self,
        message: str,
        *,
        step: str,
        session_id: str = "",
        retryable: bool = False,
    ) -> None:
        self.step = step
        self.session_id = session_id
        self.retryable = retryable
        self.message = message
        super().__init__(message)

    @property
    def recoverable(self) -> bool:  # type: ignore[override]
        return self.retryable

    def __str__(self) -> str:
        return f"Step {self.step} failed: {self.message}"


def is_recoverable(error: BaseException) -> bool:
    """Whether a caller may retry the operation that raised `error`."""

    if isinstance(error, OrchestratorError):
        return bool(error.recoverable)
    return False
