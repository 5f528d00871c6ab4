"""
Rewind core. Do not implement beyond this file's responsibilities.
Tests for structured operation logging.
"""

import logging
from unittest.mock import patch

from util.logging import StructuredLogger, audit_event, logger


class TestStructuredLogger:
    """Test message shape and levels."""

    def test_log_operation_format(self, caplog):
        """Test operations are logged with status and details."""
        with caplog.at_level(logging.INFO, logger="dbrewind"):
            logger.log_operation("index.scan", "success", {"backups": 3})

        assert "Operation: index.scan, Status: success, Details: {'backups': 3}" in caplog.text

    def test_skip_outcome_is_warning(self, caplog):
        """Test skipped files are logged as warnings."""
        with caplog.at_level(logging.INFO, logger="dbrewind"):
            logger.log_restore_outcome("/d/a.edb", "skip_error", "boom", applied=False)
            logger.log_restore_outcome("/d/b.edb", "restore", "restore from backup", applied=True)

        levels = [(r.levelno, r.getMessage()) for r in caplog.records]
        assert levels[0][0] == logging.WARNING
        assert "restore.skip_error" in levels[0][1]
        assert levels[1][0] == logging.INFO
        assert "Status: applied" in levels[1][1]

    def test_preview_status(self, caplog):
        """Test preview outcomes are labelled as such."""
        with caplog.at_level(logging.INFO, logger="dbrewind"):
            logger.log_restore_outcome("/d/a.edb", "keep_pre_event", "unchanged", applied=False, preview=True)

        assert "Status: preview" in caplog.text

    def test_rollback_levels(self, caplog):
        """Test incomplete rollbacks are errors."""
        with caplog.at_level(logging.INFO, logger="dbrewind"):
            logger.log_swap_rollback("/d/a.edb", "secured", "disk full")
            logger.log_swap_rollback("/d/a.edb", "secured", "disk full", ["remove temp copy: denied"])

        assert [r.levelno for r in caplog.records] == [logging.WARNING, logging.ERROR]
        assert "incomplete" in caplog.records[1].getMessage()

    def test_level_from_config(self):
        """Test the logger level follows the configured REWIND_LOG_LEVEL."""
        with patch('dbrewind.core.config.LOG_LEVEL', "DEBUG"):
            debug_logger = StructuredLogger("dbrewind.level_test")

        assert debug_logger.logger.level == logging.DEBUG

    def test_single_handler(self):
        """Test repeated construction does not duplicate handlers."""
        first = StructuredLogger("dbrewind.handler_test")
        second = StructuredLogger("dbrewind.handler_test")
        assert len(second.logger.handlers) == 1
        assert first.logger is second.logger


class TestAuditEvent:
    """Test run-level audit records."""

    def test_audit_event_truncates(self, caplog):
        """Test long payload values are truncated."""
        with caplog.at_level(logging.INFO, logger="dbrewind"):
            audit_event("restore.started", {"reference": "20240301_120000"}, {"note": "x" * 200})

        message = caplog.records[-1].getMessage()
        assert "Operation: restore_started, Status: audit" in message
        assert "x" * 97 + "..." in message
        assert "x" * 98 not in message
