"""Tests for the audit logger."""

import json
import logging
from pathlib import Path

import pytest

from cancelflow.utils.audit import AuditEvent, AuditLogger


class TestAuditLogger:
    """Tests for AuditLogger.log_security_event."""

    def test_records_event(self) -> None:
        audit = AuditLogger()
        entry = audit.log_security_event("cancellation_step_updated", "user-1", {"step": "survey"})

        assert isinstance(entry, AuditEvent)
        assert entry.user_id == "user-1"
        assert entry.details == {"step": "survey"}
        assert audit.find("cancellation_step_updated") == [entry]

    def test_anonymous_when_user_unknown(self) -> None:
        entry = AuditLogger().log_security_event("ab_variant_error")
        assert entry.user_id == "anonymous"
        assert entry.details == {}

    def test_emits_to_audit_logger(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="cancelflow.audit"):
            AuditLogger().log_security_event("cancellation_validation_failed", "user-2")

        assert "[SECURITY]" in caplog.text
        assert "cancellation_validation_failed" in caplog.text

    def test_appends_jsonl_file(self, tmp_path: Path) -> None:
        log_file = tmp_path / "audit.jsonl"
        audit = AuditLogger(log_file=log_file)

        audit.log_security_event("first", "user-1")
        audit.log_security_event("second", "user-1", {"n": 2})

        lines = log_file.read_text().splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["first", "second"]
        assert json.loads(lines[1])["details"] == {"n": 2}

    def test_file_errors_do_not_propagate(self, tmp_path: Path) -> None:
        audit = AuditLogger(log_file=tmp_path / "missing" / "audit.jsonl")

        entry = audit.log_security_event("still_recorded", "user-1")

        assert audit.find("still_recorded") == [entry]

    def test_history_is_bounded(self) -> None:
        audit = AuditLogger(history=2)
        for n in range(3):
            audit.log_security_event(f"event-{n}")
        assert [entry.event for entry in audit.events] == ["event-1", "event-2"]
