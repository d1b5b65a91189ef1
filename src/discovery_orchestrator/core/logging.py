"""Structured logging configuration.

Every line is one JSON object. Records about a session carry its id, and
the step they concern, as top-level `session_id` and `step` keys so a run
can be followed with a plain filter on the log stream. Any other field
passed through `extra=` lands under the `extra` key.

Modules bind the session context once with `session_logger()` instead of
repeating it on every call.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping, MutableMapping
from datetime import UTC, datetime
from typing import Any, TextIO

# Attribute names every LogRecord carries; taskName only exists from 3.12.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}

CONTEXT_FIELDS = ("session_id", "step")


class JsonFormatter(logging.Formatter):
    """Render a record as JSON with session context promoted to the top level."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        fields = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        for key in CONTEXT_FIELDS:
            if fields.get(key) is not None:
                payload[key] = fields.pop(key)
            else:
                fields.pop(key, None)
        if fields:
            payload["extra"] = fields

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class SessionLogger(logging.LoggerAdapter):
    """Logger bound to one session (and optionally one step).

    Per-call `extra=` fields are merged over the bound context.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs

    def for_step(self, step: str) -> SessionLogger:
        return SessionLogger(self.logger, {**(self.extra or {}), "step": step})


def session_logger(
    logger: logging.Logger, session_id: str, *, step: str | None = None
) -> SessionLogger:
    context: Mapping[str, Any] = {"session_id": session_id}
    if step is not None:
        context = {**context, "step": step}
    return SessionLogger(logger, context)


def configure_logging(level: str, *, stream: TextIO | None = None) -> None:
    """Send every record to `stream` (stdout by default) as JSON lines."""

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    # Calling this twice must not duplicate lines.
    root.handlers[:] = [handler]
    root.setLevel(level.upper())

    # Deadline timers run on the event loop; keep its own debug output out.
    logging.getLogger("asyncio").setLevel(max(root.level, logging.WARNING))
