"""Security/audit event logging for cancelflow.

Every validation failure, store error and lifecycle milestone of a
cancellation session is recorded as an ``AuditEvent``. Events go to the
``cancelflow.audit`` logger and, when configured, are appended to a JSONL
file. I/O errors are caught internally; audit failures must never break
the cancellation flow.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

audit_logger = logging.getLogger("cancelflow.audit")


@dataclass
class AuditEvent:
    """A single structured audit record.

    Attributes:
        timestamp: ISO 8601 timestamp (UTC).
        event: Event name, e.g. ``cancellation_step_updated``.
        user_id: The user the event concerns, ``anonymous`` if unknown.
        details: Free-form context for the event.
    """

    timestamp: str
    event: str
    user_id: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict suitable for JSON serialization."""
        return asdict(self)


class AuditLogger:
    """Writes audit events to the logging system and an optional JSONL file.

    Attributes:
        events: The most recent events, newest last.
    """

    def __init__(
        self,
        log_file: Path | None = None,
        history: int = 500,
        level: int = logging.WARNING,
    ) -> None:
        """Initialize the audit logger.

        Args:
            log_file: Optional JSONL file that every event is appended to.
            history: How many recent events to keep in memory.
            level: Logging level used for emitted events.
        """
        self._log_file = log_file
        self._level = level
        self.events: deque[AuditEvent] = deque(maxlen=history)

    def log_security_event(
        self,
        event: str,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Record an audit event.

        Args:
            event: Event name.
            user_id: The user concerned, if known.
            details: Extra context; exceptions are rendered as strings.

        Returns:
            The recorded event.
        """
        entry = AuditEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            user_id=user_id or "anonymous",
            details=dict(details or {}),
        )
        self.events.append(entry)

        data = entry.to_dict()
        audit_logger.log(
            self._level,
            "[SECURITY] %s",
            json.dumps(data, default=str),
            extra={"audit_event": event, "user_id": entry.user_id},
        )
        if self._log_file is not None:
            self._write_file(data)
        return entry

    def find(self, event: str) -> list[AuditEvent]:
        """Return the recorded events with the given name."""
        return [entry for entry in self.events if entry.event == event]

    def _write_file(self, data: dict[str, Any]) -> None:
        """Append a JSONL line to the log file, catching errors."""
        try:
            with open(self._log_file, "a", encoding="utf-8") as f:  # type: ignore[arg-type]
                f.write(json.dumps(data, default=str) + "\n")
        except OSError as exc:
            audit_logger.error("Error writing audit event to file: %s", exc)
