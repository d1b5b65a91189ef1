"""Crash-safe persistence of single JSON records.

Writes go to a hidden temporary sibling, are read back and re-validated
against the record's schema, fsynced, and only then renamed over the target.
A reader of the target path therefore sees either the previous complete
record or the new complete record, never a mix.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from discovery_orchestrator.errors import StorageFailure, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

TEMP_MARKER = ".tmp."


def temp_path_for(path: Path) -> Path:
    return path.with_name(f".{path.name}{TEMP_MARKER}{os.getpid()}")


def _fsync_directory(directory: Path) -> None:
    try:
        dir_fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        logger.debug("Directory fsync not supported", extra={"path": str(directory)})
    finally:
        os.close(dir_fd)


def _validate_bytes(content: str, schema: type[ModelT], path: Path) -> ModelT:
    try:
        raw = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValidationError(
            f"not valid JSON ({e.msg} at line {e.lineno})",
            path=path,
            schema_name=schema.__name__,
        ) from e
    try:
        return schema.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"{e.error_count()} schema error(s)",
            path=path,
            schema_name=schema.__name__,
            errors=[dict(err) for err in e.errors(include_url=False)],
        ) from e


class AtomicStore:
    """Atomic write/read of pydantic records to a JSON file."""

    def write(self, path: Path, record: BaseModel, schema: type[ModelT]) -> None:
        """Persist `record` at `path` atomically.

        Raises:
            ValidationError: The serialized record does not round-trip through `schema`.
            StorageFailure: The temporary file could not be written or renamed.
        """

        content = json.dumps(record.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"
        tmp_path = temp_path_for(path)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._discard_stale(path)
            with tmp_path.open("w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())

            _validate_bytes(tmp_path.read_text(encoding="utf-8"), schema, path)

            os.replace(tmp_path, path)
        except ValidationError:
            self._discard(tmp_path)
            raise
        except OSError as e:
            self._discard(tmp_path)
            logger.error(
                "Atomic write failed",
                extra={"path": str(path), "error": str(e)},
            )
            raise StorageFailure(f"Failed to write record ({e.strerror or e})", path=path) from e

        _fsync_directory(path.parent)
        logger.debug("Record written", extra={"path": str(path), "schema": schema.__name__})

    def read(self, path: Path, schema: type[ModelT]) -> ModelT:
        """Load and validate the record at `path`.

        Raises:
            FileNotFoundError: Nothing has been written at `path` yet.
            ValidationError: The stored bytes do not conform to `schema`.
        """

        content = path.read_text(encoding="utf-8")
        return _validate_bytes(content, schema, path)

    def _discard_stale(self, path: Path) -> None:
        """Remove temporaries left behind by a writer that died before renaming."""

        for stale in path.parent.glob(f".{path.name}{TEMP_MARKER}*"):
            logger.info("Removing stale temporary file", extra={"path": str(stale)})
            self._discard(stale)

    @staticmethod
    def _discard(tmp_path: Path) -> None:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(
                "Could not remove temporary file",
                extra={"path": str(tmp_path), "error": str(e)},
            )
