"""Retention sweep of old session directories.

Runs independently of the orchestrator. A session directory is deleted when
its session record (or, lacking one, the directory itself) has not been
modified for longer than the retention window, unless it carries an
active-session marker. Only directories named like a session id are
considered; anything else under the root is left alone. Per-session problems are logged and collected, never
raised, so one bad directory cannot block the rest of the sweep.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel

from discovery_orchestrator.errors import ValidationError
from discovery_orchestrator.state.atomic import AtomicStore
from discovery_orchestrator.state.session import SESSION_ID_PATTERN, utc_now
from discovery_orchestrator.state.store import ACTIVE_MARKER_FILE, SESSION_STATE_FILE

logger = logging.getLogger(__name__)

LAST_SWEEP_FILE = ".last-sweep.json"


class SweepRecord(BaseModel):
    last_run_at: datetime


@dataclass
class SweepResult:
    deleted_count: int = 0
    freed_bytes: int = 0
    deleted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _as_utc(moment: datetime | None) -> datetime:
    if moment is None:
        return utc_now()
    # Naive datetimes are taken to be UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


def directory_size(path: Path) -> int:
    size = 0
    for entry in path.rglob("*"):
        try:
            if entry.is_file() and not entry.is_symlink():
                size += entry.stat().st_size
        except OSError:
            # Vanished or unreadable entries do not count toward freed space.
            continue
    return size


class RetentionSweeper:
    def __init__(
        self,
        root: Path,
        retention: timedelta,
        *,
        throttle: timedelta = timedelta(days=7),
        atomic: AtomicStore | None = None,
    ) -> None:
        self.root = root
        self.retention = retention
        self.throttle = throttle
        self._atomic = atomic or AtomicStore()

    @property
    def last_run_path(self) -> Path:
        return self.root / LAST_SWEEP_FILE

    def sweep(self, now: datetime | None = None) -> SweepResult:
        now = _as_utc(now)
        result = SweepResult()

        if not self.root.is_dir():
            return result

        try:
            entries = sorted(
                p
                for p in self.root.iterdir()
                if p.is_dir() and SESSION_ID_PATTERN.match(p.name)
            )
        except OSError as e:
            logger.error("Cannot list session root", extra={"path": str(self.root), "error": str(e)})
            result.errors.append(f"{self.root}: {e}")
            return result

        for session_dir in entries:
            try:
                if (session_dir / ACTIVE_MARKER_FILE).exists():
                    logger.debug("Skipping active session", extra={"path": str(session_dir)})
                    continue

                state_file = session_dir / SESSION_STATE_FILE
                reference = state_file if state_file.exists() else session_dir
                modified = datetime.fromtimestamp(reference.stat().st_mtime, tz=now.tzinfo)
                if now - modified <= self.retention:
                    continue

                size = directory_size(session_dir)
                shutil.rmtree(session_dir)
            except OSError as e:
                logger.warning(
                    "Failed to sweep session directory",
                    extra={"path": str(session_dir), "error": str(e)},
                )
                result.errors.append(f"{session_dir.name}: {e}")
                continue

            result.deleted_count += 1
            result.freed_bytes += size
            result.deleted.append(session_dir.name)
            logger.info(
                "Session directory deleted",
                extra={"session_id": session_dir.name, "freed_bytes": size},
            )

        return result

    def last_run(self) -> datetime | None:
        if not self.last_run_path.exists():
            return None
        try:
            return self._atomic.read(self.last_run_path, SweepRecord).last_run_at
        except ValidationError as e:
            logger.warning("Ignoring unreadable sweep record", extra={"error": str(e)})
            return None

    def maybe_sweep(self, now: datetime | None = None) -> SweepResult | None:
        """Sweep unless the last sweep is more recent than the throttle window."""

        now = _as_utc(now)
        last = self.last_run()
        if last is not None and now - last < self.throttle:
            logger.debug("Retention sweep throttled", extra={"last_run_at": last.isoformat()})
            return None

        result = self.sweep(now)
        self._atomic.write(self.last_run_path, SweepRecord(last_run_at=now), SweepRecord)
        logger.info(
            "Retention sweep finished",
            extra={
                "deleted_count": result.deleted_count,
                "freed_bytes": result.freed_bytes,
                "errors": len(result.errors),
            },
        )
        return result
