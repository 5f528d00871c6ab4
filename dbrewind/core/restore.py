"""
Rewind core. Do not implement beyond this file's responsibilities.
Migration rollback - restores database files to their pre-migration state.

Restore executor: classifies every tracked database file against the selected
reference timepoint and applies a crash-safe swap, archive or delete.
"""

import filecmp
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .backup_index import BackupIndex, BackupRecord
from .config import DB_EXT, NON_RECOVERABLE_NAMES
from .timepoint import Timepoint
from util.logging import logger, audit_event

COMPANION_SUFFIXES = ("-wal", "-shm")
COPY_SUFFIX = ".rewind-copy"
ORIGINAL_SUFFIX = ".rewind-orig"
POST_MIGRATION_TAG = "_post_migration_"


class PlanOutcome(str, Enum):
    RESTORE = "restore"
    KEEP = "keep_pre_event"
    ARCHIVE = "archive_post_event"
    DELETE = "delete_non_recoverable"
    SKIP = "skip_error"


class SwapState(str, Enum):
    PENDING = "pending"
    COPIED = "copied"
    SECURED = "secured"
    PROMOTED = "promoted"
    ARCHIVED = "archived"
    ROLLED_BACK = "rolled_back"


class NoPostReferenceBackupError(Exception):
    """A file changed after the reference but has no backup at or after it."""
    pass


class SwapError(Exception):
    """A swap step failed; the swap was rolled back."""

    def __init__(self, message: str, failed_after: SwapState, rollback_errors: List[str]):
        self.failed_after = failed_after
        self.rollback_errors = rollback_errors
        super().__init__(message)


def companion_paths(path: str) -> List[str]:
    """Write-ahead and shared-memory side files of a database file."""
    return [path + suffix for suffix in COMPANION_SUFFIXES]


def split_database_name(path: str):
    """Return (directory, logical name, ext) for a database file path."""
    directory, filename = os.path.split(path)
    logical_name, _, ext = filename.rpartition(".")
    return directory, logical_name, ext


@dataclass
class RestorePlanItem:
    """Classification and result for one tracked database file."""
    path: str
    logical_name: str
    outcome: PlanOutcome
    reason: str
    backup: Optional[BackupRecord] = None
    applied: bool = False
    error: Optional[str] = None
    rollback_errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "logical_name": self.logical_name,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "backup": self.backup.path if self.backup else None,
            "backup_timepoint": self.backup.token if self.backup else None,
            "applied": self.applied,
            "error": self.error,
            "rollback_errors": self.rollback_errors
        }


@dataclass
class RestoreReport:
    """Outcome of one executor run."""
    reference: Timepoint
    run_timepoint: Timepoint
    preview: bool
    started_at: datetime
    completed_at: Optional[datetime] = None
    items: List[RestorePlanItem] = field(default_factory=list)

    def count(self, outcome: PlanOutcome) -> int:
        return sum(1 for item in self.items if item.outcome == outcome)

    @property
    def counters(self) -> Dict[str, int]:
        return {
            "restored": self.count(PlanOutcome.RESTORE),
            "deleted": self.count(PlanOutcome.DELETE),
            "archived": self.count(PlanOutcome.ARCHIVE),
            "kept": self.count(PlanOutcome.KEEP),
            "skipped": self.count(PlanOutcome.SKIP)
        }

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "reference": self.reference.token,
            "run_timepoint": self.run_timepoint.token,
            "preview": self.preview,
            "started_at": self.started_at.isoformat(),
            "counters": self.counters,
            "items": [item.to_dict() for item in self.items]
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


class AtomicSwap:
    """
    Four-step swap of a live file with a backup, every step a single copy or
    same-directory rename:

        PENDING -> COPIED -> SECURED -> PROMOTED -> ARCHIVED

    A failure in any state moves to ROLLED_BACK, which puts the secured
    original back on the live name and removes the temp copy and any archive
    this swap created. `history` records every state entered.
    """

    def __init__(self, live_path: str, backup_path: str, archive_path: str):
        self.live_path = live_path
        self.backup_path = backup_path
        self.archive_path = archive_path
        self.copy_path = live_path + COPY_SUFFIX
        self.original_path = live_path + ORIGINAL_SUFFIX
        self.state = SwapState.PENDING
        self.history: List[SwapState] = [SwapState.PENDING]

    def _enter(self, state: SwapState):
        self.state = state
        self.history.append(state)
        logger.log_swap_step(self.live_path, state.value)

    def check_clear(self):
        """Refuse to start if any name this swap writes is already taken."""
        for path in (self.copy_path, self.original_path, self.archive_path):
            if os.path.lexists(path):
                raise FileExistsError(f"Refusing to overwrite existing file: {path}")

    def run(self):
        """Perform the swap, rolling back on failure."""
        self.check_clear()
        steps = (
            (SwapState.COPIED, lambda: shutil.copy2(self.backup_path, self.copy_path)),
            (SwapState.SECURED, lambda: os.replace(self.live_path, self.original_path)),
            (SwapState.PROMOTED, lambda: os.replace(self.copy_path, self.live_path)),
            (SwapState.ARCHIVED, lambda: os.replace(self.original_path, self.archive_path)),
        )
        for state, step in steps:
            try:
                step()
            except OSError as e:
                failed_after = self.state
                rollback_errors = self.rollback()
                logger.log_swap_rollback(self.live_path, failed_after.value, str(e), rollback_errors)
                raise SwapError(
                    f"Swap failed before '{state.value}': {e}", failed_after, rollback_errors
                ) from e
            self._enter(state)

    def rollback(self) -> List[str]:
        """Undo a partial swap in reverse order; returns rollback failures."""
        errors = []
        secured = self.state in (SwapState.SECURED, SwapState.PROMOTED)
        if os.path.lexists(self.original_path):
            try:
                os.replace(self.original_path, self.live_path)
            except OSError as e:
                errors.append(f"restore original {self.original_path}: {e}")
        elif secured and os.path.lexists(self.archive_path):
            # the original already reached the archive name
            try:
                os.replace(self.archive_path, self.live_path)
            except OSError as e:
                errors.append(f"restore original {self.archive_path}: {e}")
        if os.path.lexists(self.copy_path):
            try:
                os.remove(self.copy_path)
            except OSError as e:
                errors.append(f"remove temp copy {self.copy_path}: {e}")
        if os.path.lexists(self.archive_path) and not errors:
            try:
                os.remove(self.archive_path)
            except OSError as e:
                errors.append(f"remove archive {self.archive_path}: {e}")
        self._enter(SwapState.ROLLED_BACK)
        return errors


class RestoreExecutor:
    """Applies (or previews) the restore plan for every tracked database file."""

    def __init__(self, reference: Timepoint, index: BackupIndex,
                 non_recoverable: Iterable[str] = NON_RECOVERABLE_NAMES,
                 preview: bool = False, run_timepoint: Optional[Timepoint] = None,
                 db_ext: str = DB_EXT):
        self.reference = reference
        self.index = index
        self.non_recoverable = set(non_recoverable)
        self.preview = preview
        self.run_timepoint = run_timepoint or Timepoint.now()
        self.db_ext = db_ext

    def execute(self, files: Optional[Iterable[str]] = None) -> RestoreReport:
        """
        Classify and process every tracked file independently.

        Args:
            files: Database files to process; defaults to the index's tracked files

        Returns:
            RestoreReport: Per-file items and aggregate counters
        """
        files = list(self.index.database_files if files is None else files)
        report = RestoreReport(
            reference=self.reference,
            run_timepoint=self.run_timepoint,
            preview=self.preview,
            started_at=datetime.now()
        )
        audit_event(
            event_type="restore.started",
            identifiers={"reference": self.reference.token, "run": self.run_timepoint.token},
            payload={"files": len(files), "preview": self.preview}
        )

        for path in files:
            item = self.process(path)
            logger.log_restore_outcome(item.path, item.outcome.value, item.reason, item.applied, self.preview)
            report.items.append(item)

        report.completed_at = datetime.now()
        audit_event(
            event_type="restore.completed",
            identifiers={"reference": self.reference.token, "run": self.run_timepoint.token},
            payload={"counters": report.counters, "preview": self.preview}
        )
        return report

    def process(self, path: str) -> RestorePlanItem:
        """Classify one file and, outside preview, apply the result."""
        _directory, logical_name, _ext = split_database_name(path)
        try:
            item = self.classify(path)
        except NoPostReferenceBackupError as e:
            return RestorePlanItem(path, logical_name, PlanOutcome.SKIP, str(e), error=str(e))
        except Exception as e:
            return RestorePlanItem(path, logical_name, PlanOutcome.SKIP, f"classification failed: {e}", error=str(e))

        if self.preview or item.outcome in (PlanOutcome.KEEP, PlanOutcome.SKIP):
            return item

        try:
            self.apply(item)
            item.applied = True
        except SwapError as e:
            item.outcome = PlanOutcome.SKIP
            item.reason = f"restore failed and was rolled back: {e}"
            item.error = str(e)
            item.rollback_errors = e.rollback_errors
        except OSError as e:
            item.reason = f"{item.outcome.value} failed: {e}"
            item.outcome = PlanOutcome.SKIP
            item.error = str(e)
        return item

    def classify(self, path: str) -> RestorePlanItem:
        """
        Decide the outcome for one file without touching the filesystem.

        Raises:
            NoPostReferenceBackupError: File changed after the reference and
                every backup of it is older
        """
        directory, logical_name, ext = split_database_name(path)

        if logical_name in self.non_recoverable:
            return RestorePlanItem(path, logical_name, PlanOutcome.DELETE,
                                   "non-recoverable database, regenerated by the application")

        # the index keys directories by their resolved path
        backups = self.index.lookup(os.path.realpath(directory), logical_name, ext=ext)
        candidates = [b for b in backups if b.timepoint >= self.reference]
        modified = Timepoint.from_timestamp(os.stat(path).st_mtime)

        if candidates:
            chosen = candidates[0]
            if filecmp.cmp(chosen.path, path, shallow=False):
                return RestorePlanItem(path, logical_name, PlanOutcome.KEEP,
                                       f"already restored from {chosen.token}", backup=chosen)
            return RestorePlanItem(path, logical_name, PlanOutcome.RESTORE,
                                   f"restore from backup {chosen.token}", backup=chosen)

        if modified <= self.reference:
            return RestorePlanItem(path, logical_name, PlanOutcome.KEEP,
                                   f"last modified {modified.token}, not after reference")

        if backups:
            raise NoPostReferenceBackupError(
                f"modified {modified.token} but newest backup {backups[-1].token} precedes reference"
            )

        return RestorePlanItem(path, logical_name, PlanOutcome.ARCHIVE,
                               f"no backup and modified {modified.token} after reference")

    def archive_name(self, path: str) -> str:
        """Name for the original file displaced by a restore."""
        directory, logical_name, ext = split_database_name(path)
        return os.path.join(directory, f"{logical_name}.{ext}_{self.run_timepoint.token}.backup.new")

    def post_migration_name(self, path: str) -> str:
        return f"{path}{POST_MIGRATION_TAG}{self.run_timepoint.token}"

    def apply(self, item: RestorePlanItem):
        if item.outcome == PlanOutcome.DELETE:
            self._delete(item.path)
        elif item.outcome == PlanOutcome.ARCHIVE:
            self._archive(item.path)
        elif item.outcome == PlanOutcome.RESTORE:
            self._restore(item)

    def _delete(self, path: str):
        os.remove(path)
        for companion in companion_paths(path):
            if os.path.lexists(companion):
                os.remove(companion)

    def _archive(self, path: str):
        moves = [(source, self.post_migration_name(source))
                 for source in [path] + companion_paths(path) if os.path.lexists(source)]
        # All targets are checked before the first rename
        for _source, target in moves:
            if os.path.lexists(target):
                raise FileExistsError(f"Refusing to overwrite existing file: {target}")
        for source, target in moves:
            os.replace(source, target)

    def _restore(self, item: RestorePlanItem):
        swap = AtomicSwap(item.path, item.backup.path, self.archive_name(item.path))
        swap.run()

        # Side files belong to the replaced database and must not be replayed
        for companion in companion_paths(item.path):
            try:
                if os.path.lexists(companion):
                    os.remove(companion)
            except OSError as e:
                logger.warning(f"Could not remove companion file {companion}: {e}")
