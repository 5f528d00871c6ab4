"""
Rewind core. Do not implement beyond this file's responsibilities.
Structured operation logging and run audit trail.
"""

import logging
from typing import Any, Dict, List

from dbrewind.core import config


class StructuredLogger:
    """Structured logger for scan, detection and restore operations."""

    def __init__(self, name: str = "dbrewind"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(config.LOG_LEVEL)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_scan_summary(self, root: str, backup_count: int, bucket_count: int, database_count: int):
        """Log the result of a backup index scan."""
        self.log_operation("index.scan", "success", {
            "root": root,
            "backups": backup_count,
            "logical_files": bucket_count,
            "databases": database_count
        })

    def log_migration_candidate(self, trigger: str, sentinel_count: int, threshold: int):
        """Log an event-log backup evaluated as a migration candidate."""
        status = "confirmed" if sentinel_count >= threshold else "rejected"
        self.log_operation("detect.candidate", status, {
            "trigger": trigger,
            "sentinel_count": sentinel_count,
            "threshold": threshold
        }, level=logging.DEBUG)

    def log_migration_event(self, trigger: str, reference: str, sentinel_count: int, earliest_sentinel: str):
        """Log a confirmed migration event."""
        self.log_operation("detect.event", "confirmed", {
            "trigger": trigger,
            "reference": reference,
            "sentinel_count": sentinel_count,
            "earliest_sentinel": earliest_sentinel
        })

    def log_reference_selected(self, reference: str, source: str):
        """Log the selected reference timepoint and where it came from."""
        self.log_operation("detect.reference", "selected", {"reference": reference, "source": source})

    def log_restore_outcome(self, path: str, outcome: str, reason: str, applied: bool, preview: bool = False):
        """Log the classification and result for one tracked file."""
        status = "preview" if preview else ("applied" if applied else "noop")
        level = logging.WARNING if outcome == "skip_error" else logging.INFO
        self.log_operation(f"restore.{outcome}", status, {"path": path, "reason": reason}, level=level)

    def log_swap_step(self, path: str, state: str):
        """Log a completed swap state transition."""
        self.log_operation("swap.step", state, {"path": path}, level=logging.DEBUG)

    def log_swap_rollback(self, path: str, failed_state: str, error: str, rollback_errors: List[str] = None):
        """Log a swap rollback, including any rollback failures."""
        details = {"path": path, "failed_after": failed_state, "error": error}
        if rollback_errors:
            details["rollback_errors"] = rollback_errors
            self.log_operation("swap.rollback", "incomplete", details, level=logging.ERROR)
        else:
            self.log_operation("swap.rollback", "success", details, level=logging.WARNING)

    def log_owner_stop(self, name: str, pid: int, status: str):
        """Log the owning application being stopped."""
        self.log_operation("owner.stop", status, {"name": name, "pid": pid})

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None):
    """Run-level audit record (run started, run completed, ...)."""
    log_details = identifiers.copy() if identifiers else {}

    if payload:
        sanitized_payload = {}
        for k, v in payload.items():
            # Truncate long values
            if isinstance(v, str) and len(v) > 100:
                sanitized_payload[k] = v[:97] + "..."
            else:
                sanitized_payload[k] = v
        log_details["payload"] = sanitized_payload

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)
