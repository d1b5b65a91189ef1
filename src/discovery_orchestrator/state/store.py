"""File-backed session storage.

Layout under the storage root::

    <root>/<session_id>/session_state.json   the session record
    <root>/<session_id>/.running             active-session marker
    <root>/<session_id>/error.json           failure report (failed sessions)
    <root>/<session_id>/01-prd-analysis/     step outputs, one dir per step
    ...

Every file written here goes through the atomic store. Step output
directories belong to the step collaborators and are never read.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

from discovery_orchestrator.errors import SessionError
from discovery_orchestrator.state.atomic import AtomicStore
from discovery_orchestrator.state.session import (
    SESSION_ID_PATTERN,
    STEP_OUTPUT_DIRS,
    Session,
    SessionConfig,
    SessionState,
    SourceRefs,
    WorkflowStep,
    generate_session_id,
    utc_now,
)

logger = logging.getLogger(__name__)

SESSION_STATE_FILE = "session_state.json"
ACTIVE_MARKER_FILE = ".running"
ERROR_REPORT_FILE = "error.json"


class ActiveMarker(BaseModel):
    pid: int
    started_at: str


class ErrorReport(BaseModel):
    session_id: str
    step: str | None = Field(default=None)
    error_type: str
    message: str
    timestamp: str


class SessionStore:
    """Create, load and persist session records under a storage root."""

    def __init__(self, root: Path, *, atomic: AtomicStore | None = None) -> None:
        self.root = root
        self._atomic = atomic or AtomicStore()

    def session_dir(self, session_id: str) -> Path:
        return self.root / session_id

    def state_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / SESSION_STATE_FILE

    def output_dir(self, session_id: str, step: WorkflowStep) -> Path:
        return self.session_dir(session_id) / STEP_OUTPUT_DIRS[step]

    def marker_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / ACTIVE_MARKER_FILE

    def _new_session_id(self) -> str:
        session_id = generate_session_id()
        # Ids are millisecond timestamps; step past any id already on disk.
        while self.session_dir(session_id).exists():
            session_id = f"sess-{int(session_id.removeprefix('sess-')) + 1}"
        return session_id

    def create(self, source_refs: SourceRefs, config: SessionConfig) -> Session:
        now = utc_now()
        session = Session(
            session_id=self._new_session_id(),
            created_at=now,
            updated_at=now,
            source_refs=source_refs,
            config=config,
        )

        session_dir = self.session_dir(session.session_id)
        for step in STEP_OUTPUT_DIRS:
            self.output_dir(session.session_id, step).mkdir(parents=True, exist_ok=True)

        self.save(session)
        logger.info(
            "Session created",
            extra={"session_id": session.session_id, "path": str(session_dir)},
        )
        return session

    def save(self, session: Session) -> None:
        self._atomic.write(
            self.state_path(session.session_id), SessionState.wrap(session), SessionState
        )
        logger.debug(
            "Session saved",
            extra={
                "session_id": session.session_id,
                "status": session.status.value,
                "checkpoints": len(session.checkpoints),
            },
        )

    def load(self, session_id: str) -> Session:
        """Load a session record.

        Raises:
            SessionError: The id is malformed or no record exists for it.
            ValidationError: The record on disk fails validation.
        """

        if not SESSION_ID_PATTERN.match(session_id):
            raise SessionError("malformed session id", session_id=session_id)
        path = self.state_path(session_id)
        try:
            state = self._atomic.read(path, SessionState)
        except FileNotFoundError as e:
            raise SessionError(f"session file not found at {path}", session_id=session_id) from e
        if state.session.session_id != session_id:
            raise SessionError(
                f"record at {path} belongs to {state.session.session_id}",
                session_id=session_id,
            )
        return state.session

    def list_sessions(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir() and entry.name.startswith("sess-")
        )

    # ------------------------------------------------------------------
    # Active-session marker
    # ------------------------------------------------------------------

    def mark_active(self, session_id: str) -> None:
        marker = ActiveMarker(pid=os.getpid(), started_at=utc_now().isoformat())
        self._atomic.write(self.marker_path(session_id), marker, ActiveMarker)

    def clear_active(self, session_id: str) -> None:
        self.marker_path(session_id).unlink(missing_ok=True)

    def is_active(self, session_id: str) -> bool:
        return self.marker_path(session_id).exists()

    # ------------------------------------------------------------------
    # Failure report
    # ------------------------------------------------------------------

    def write_error_report(
        self, session_id: str, error: BaseException, *, step: str | None = None
    ) -> ErrorReport:
        report = ErrorReport(
            session_id=session_id,
            step=step,
            error_type=type(error).__name__,
            message=str(error),
            timestamp=utc_now().isoformat(),
        )
        self._atomic.write(
            self.session_dir(session_id) / ERROR_REPORT_FILE, report, ErrorReport
        )
        return report

    def read_error_report(self, session_id: str) -> ErrorReport | None:
        path = self.session_dir(session_id) / ERROR_REPORT_FILE
        if not path.exists():
            return None
        return self._atomic.read(path, ErrorReport)
