"""
Rewind core. Do not implement beyond this file's responsibilities.
Migration rollback - restores database files to their pre-migration state.

Migration detection by correlating event-log backups with sentinel backups.

A migration rewrites the event log and then every database the application
opens at start-up (the sentinels). Each rewrite is preceded by an automatic
backup, so a burst of sentinel backups shortly after an event-log backup is
the signature of a migration. The earliest sentinel backup in the burst is
the best estimate of when the corruption began.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Sequence, Tuple

from .backup_index import BackupIndex, BackupRecord
from .config import MARGIN_SEC, MIN_SENTINELS, WINDOW_DAYS
from .timepoint import Timepoint, TimepointError, parse_timepoint
from util.logging import logger


class NoMigrationDetectedError(Exception):
    """No confirmed migration event and no manual reference timepoint."""
    pass


class MigrationSelectionError(Exception):
    """The operator's event choice cannot be resolved to a single event."""
    pass


@dataclass(frozen=True)
class MigrationEvent:
    """A confirmed migration event."""
    trigger: Timepoint
    reference: Timepoint
    sentinel_count: int
    earliest_sentinel: str  # path of the sentinel backup that set the reference
    sentinel_names: Tuple[str, ...] = ()

    def to_dict(self):
        return {
            "trigger": self.trigger.token,
            "reference": self.reference.token,
            "sentinel_count": self.sentinel_count,
            "earliest_sentinel": self.earliest_sentinel,
            "sentinel_names": list(self.sentinel_names)
        }


def _decoded(record: BackupRecord) -> Optional[Timepoint]:
    try:
        return record.timepoint
    except TimepointError as e:
        logger.warning(f"Ignoring backup with invalid timestamp: {e}")
        return None


def event_log_timepoints(index: BackupIndex, event_log_name: str) -> List[Timepoint]:
    """Distinct backup timepoints of the event-log file, most recent first."""
    timepoints = set()
    for bucket in index.lookup_name(event_log_name):
        for record in bucket:
            tp = _decoded(record)
            if tp is not None:
                timepoints.add(tp)
    return sorted(timepoints, reverse=True)


class MigrationDetector:
    """Finds confirmed migration events in a backup index."""

    def __init__(self, index: BackupIndex, sentinel_names: Sequence[str],
                 window_days: int = WINDOW_DAYS, margin_sec: int = MARGIN_SEC,
                 min_sentinels: int = MIN_SENTINELS):
        if min_sentinels < 1:
            raise ValueError(f"min_sentinels must be >= 1: {min_sentinels}")
        self.index = index
        # a name listed twice must not count its backups twice
        self.sentinel_names = list(dict.fromkeys(sentinel_names))
        self.window = timedelta(days=window_days)
        self.margin = timedelta(seconds=margin_sec)
        self.min_sentinels = min_sentinels

    def _sentinels_in_window(self, start: Timepoint, end: Timepoint) -> List[Tuple[Timepoint, BackupRecord]]:
        retained = []
        for name in self.sentinel_names:
            for bucket in self.index.lookup_name(name):
                for record in bucket:
                    tp = _decoded(record)
                    if tp is not None and start <= tp <= end:
                        retained.append((tp, record))
        return retained

    def evaluate(self, trigger: Timepoint) -> Optional[MigrationEvent]:
        """
        Evaluate one event-log backup as a migration candidate.

        Returns:
            MigrationEvent if enough sentinel backups fall inside
            [trigger - margin, trigger + window], otherwise None
        """
        start = Timepoint(trigger.value - self.margin)
        end = Timepoint(trigger.value + self.window)
        retained = self._sentinels_in_window(start, end)

        logger.log_migration_candidate(trigger.token, len(retained), self.min_sentinels)
        if len(retained) < self.min_sentinels:
            return None

        reference, earliest = min(retained, key=lambda item: (item[0], item[1].path))
        names = tuple(sorted({record.logical_name for _, record in retained}))
        return MigrationEvent(
            trigger=trigger,
            reference=reference,
            sentinel_count=len(retained),
            earliest_sentinel=earliest.path,
            sentinel_names=names
        )

    def detect(self, candidates: Sequence[Timepoint]) -> List[MigrationEvent]:
        """Evaluate every candidate, most recent first, and return the confirmed events."""
        events = []
        for trigger in sorted(candidates, reverse=True):
            event = self.evaluate(trigger)
            if event is not None:
                logger.log_migration_event(
                    event.trigger.token, event.reference.token,
                    event.sentinel_count, event.earliest_sentinel
                )
                events.append(event)

        if not events:
            logger.info(f"No confirmed migration among {len(candidates)} event-log backups")
        return events


def select_reference(events: Sequence[MigrationEvent], choice: Optional[int] = None,
                     manual: Optional[str] = None) -> Timepoint:
    """
    Resolve the selected reference timepoint for the run.

    Args:
        events: Confirmed migration events, as returned by detect()
        choice: 1-based index of the operator's chosen event
        manual: Operator-supplied token; bypasses detection entirely

    Raises:
        NoMigrationDetectedError: No events and no manual token
        MigrationSelectionError: Several events and no valid choice
        TimepointError: Manual token is malformed or out of range
    """
    if manual is not None:
        reference = parse_timepoint(manual.strip(), context="manual reference")
        logger.log_reference_selected(reference.token, "manual")
        return reference

    if not events:
        raise NoMigrationDetectedError(
            "No confirmed migration found; supply a reference timepoint manually"
        )

    if choice is None:
        if len(events) > 1:
            raise MigrationSelectionError(
                f"{len(events)} migration events found; choose one (1-{len(events)})"
            )
        choice = 1

    if not 1 <= choice <= len(events):
        raise MigrationSelectionError(f"Event choice {choice} out of range 1-{len(events)}")

    reference = events[choice - 1].reference
    logger.log_reference_selected(reference.token, f"event {choice}")
    return reference
