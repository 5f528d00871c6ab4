"""
Rewind core. Do not implement beyond this file's responsibilities.
Tests for migration detection and reference selection.
"""

import pytest

from dbrewind.core.backup_index import BackupIndex
from dbrewind.core.detector import (
    MigrationDetector,
    MigrationEvent,
    MigrationSelectionError,
    NoMigrationDetectedError,
    event_log_timepoints,
    select_reference
)
from dbrewind.core.timepoint import TimepointError, parse_timepoint

T0 = parse_timepoint("20240301_120000")
SENTINELS = ["accounts", "folders", "settings"]


def _backup(directory, name, tp):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.edb_{tp.token}.backup"
    path.write_bytes(b"backup")
    return path


def _detector(root, **kwargs):
    index = BackupIndex.build(root)
    return index, MigrationDetector(index, SENTINELS, **kwargs)


class TestEventLogTimepoints:
    """Test gathering candidate triggers."""

    def test_descending_and_distinct(self, tmp_path):
        """Test candidates come most recent first, without duplicates."""
        _backup(tmp_path / "a", "event_log", T0)
        _backup(tmp_path / "b", "event_log", T0)
        _backup(tmp_path / "a", "event_log", T0.shifted(days=5))
        _backup(tmp_path / "a", "event_log", T0.shifted(days=-5))

        index = BackupIndex.build(tmp_path)
        tokens = [tp.token for tp in event_log_timepoints(index, "event_log")]

        assert tokens == ["20240306_120000", "20240301_120000", "20240225_120000"]

    def test_malformed_skipped(self, tmp_path):
        """Test invalid tokens are ignored rather than fatal."""
        _backup(tmp_path, "event_log", T0)
        (tmp_path / "event_log.edb_20241399_000000.backup").write_bytes(b"x")

        index = BackupIndex.build(tmp_path)
        assert event_log_timepoints(index, "event_log") == [T0]

    def test_no_event_log(self, tmp_path):
        """Test an empty tree has no candidates."""
        index = BackupIndex.build(tmp_path)
        assert event_log_timepoints(index, "event_log") == []


class TestMigrationDetector:
    """Test sentinel correlation."""

    def test_confirms_with_two_sentinels(self, tmp_path):
        """Test two in-window sentinel backups confirm an event at the earliest one."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "accounts", T0.shifted(seconds=1))
        _backup(tmp_path / "sub", "folders", T0.shifted(hours=2))

        index, detector = _detector(tmp_path)
        events = detector.detect(event_log_timepoints(index, "event_log"))

        assert len(events) == 1
        event = events[0]
        assert event.trigger == T0
        assert event.reference == T0.shifted(seconds=1)
        assert event.sentinel_count == 2
        assert event.earliest_sentinel.endswith("accounts.edb_20240301_120001.backup")
        assert event.sentinel_names == ("accounts", "folders")

    def test_reference_is_earliest_sentinel_not_trigger(self, tmp_path):
        """Test the reference comes from the sentinels, even if found later in the scan."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "settings", T0.shifted(minutes=30))
        _backup(tmp_path, "accounts", T0.shifted(hours=5))
        _backup(tmp_path, "folders", T0.shifted(minutes=10))

        index, detector = _detector(tmp_path)
        event = detector.evaluate(T0)

        assert event.reference == T0.shifted(minutes=10)
        assert event.sentinel_count == 3

    def test_rejects_single_sentinel(self, tmp_path):
        """Test one sentinel backup is below the threshold."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "accounts", T0.shifted(seconds=1))

        index, detector = _detector(tmp_path)
        assert detector.detect(event_log_timepoints(index, "event_log")) == []

    def test_duplicate_sentinel_names_counted_once(self, tmp_path):
        """Test a repeated sentinel name does not double its backups."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "accounts", T0.shifted(seconds=1))

        index = BackupIndex.build(tmp_path)
        detector = MigrationDetector(index, ["accounts", "accounts"])

        assert detector.sentinel_names == ["accounts"]
        assert detector.evaluate(T0) is None

    def test_non_sentinel_backups_ignored(self, tmp_path):
        """Test backups of other databases do not corroborate."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "accounts", T0.shifted(seconds=1))
        _backup(tmp_path, "mail", T0.shifted(seconds=2))

        index, detector = _detector(tmp_path)
        assert detector.evaluate(T0) is None

    def test_backward_margin(self, tmp_path):
        """Test sentinels slightly before the trigger count, earlier ones do not."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "accounts", T0.shifted(seconds=-3))
        _backup(tmp_path, "folders", T0.shifted(seconds=-4))
        _backup(tmp_path, "settings", T0.shifted(seconds=1))

        index, detector = _detector(tmp_path)
        event = detector.evaluate(T0)

        assert event.sentinel_count == 2
        assert event.reference == T0.shifted(seconds=-3)

    def test_configurable_margin(self, tmp_path):
        """Test a zero margin excludes earlier sentinels."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "accounts", T0.shifted(seconds=-1))
        _backup(tmp_path, "settings", T0.shifted(seconds=1))

        index, detector = _detector(tmp_path, margin_sec=0)
        assert detector.evaluate(T0) is None

    def test_forward_window_inclusive(self, tmp_path):
        """Test the window ends exactly window_days after the trigger."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "accounts", T0.shifted(days=3))
        _backup(tmp_path, "folders", T0.shifted(days=3, seconds=1))
        _backup(tmp_path, "settings", T0.shifted(days=1))

        index, detector = _detector(tmp_path)
        event = detector.evaluate(T0)

        assert event.sentinel_count == 2
        assert event.reference == T0.shifted(days=1)

    def test_threshold_configurable(self, tmp_path):
        """Test a higher threshold needs more sentinel backups."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "accounts", T0.shifted(seconds=1))
        _backup(tmp_path, "folders", T0.shifted(seconds=2))

        index, detector = _detector(tmp_path, min_sentinels=3)
        assert detector.evaluate(T0) is None

    def test_invalid_threshold(self, tmp_path):
        """Test a zero threshold is refused."""
        with pytest.raises(ValueError, match="min_sentinels"):
            _detector(tmp_path, min_sentinels=0)

    def test_multiple_events_surfaced(self, tmp_path):
        """Test each confirmed candidate yields its own event, most recent first."""
        later = T0.shifted(days=10)
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "event_log", later)
        _backup(tmp_path, "event_log", T0.shifted(hours=1))
        for tp in (T0.shifted(seconds=5), T0.shifted(seconds=6), later.shifted(seconds=1), later.shifted(seconds=2)):
            _backup(tmp_path / tp.token, "accounts", tp)

        index, detector = _detector(tmp_path)
        events = detector.detect(event_log_timepoints(index, "event_log"))

        # the 13:00 log backup has no sentinel backups in its window
        assert [e.trigger for e in events] == [later, T0]
        assert events[0].reference == later.shifted(seconds=1)
        assert events[1].reference == T0.shifted(seconds=5)

    def test_nearby_duplicates_not_merged(self, tmp_path):
        """Test overlapping windows produce separate events."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "event_log", T0.shifted(seconds=2))
        _backup(tmp_path, "accounts", T0.shifted(seconds=3))
        _backup(tmp_path, "folders", T0.shifted(seconds=4))

        index, detector = _detector(tmp_path)
        events = detector.detect(event_log_timepoints(index, "event_log"))

        assert len(events) == 2
        assert all(e.reference == T0.shifted(seconds=3) for e in events)

    def test_malformed_sentinel_skipped(self, tmp_path):
        """Test a sentinel backup with a bad token is ignored."""
        _backup(tmp_path, "event_log", T0)
        _backup(tmp_path, "accounts", T0.shifted(seconds=1))
        (tmp_path / "folders.edb_20240399_000000.backup").write_bytes(b"x")

        index, detector = _detector(tmp_path)
        assert detector.evaluate(T0) is None


class TestSelectReference:
    """Test resolving the selected reference."""

    def _event(self, reference):
        return MigrationEvent(
            trigger=T0,
            reference=reference,
            sentinel_count=2,
            earliest_sentinel="/data/accounts.edb_x.backup"
        )

    def test_manual_bypasses_detection(self):
        """Test a manual token wins over detected events."""
        events = [self._event(T0.shifted(seconds=1))]
        reference = select_reference(events, manual="20240215_080000")
        assert reference.token == "20240215_080000"

    def test_manual_validated(self):
        """Test a manual token goes through the codec."""
        with pytest.raises(TimepointError):
            select_reference([], manual="20241301_000000")

    def test_no_events(self):
        """Test nothing to select halts the run."""
        with pytest.raises(NoMigrationDetectedError):
            select_reference([])

    def test_single_event_selected(self):
        """Test a single event needs no choice."""
        reference = select_reference([self._event(T0.shifted(seconds=1))])
        assert reference == T0.shifted(seconds=1)

    def test_multiple_events_need_choice(self):
        """Test ambiguity is left to the operator."""
        events = [self._event(T0.shifted(seconds=1)), self._event(T0.shifted(days=1))]

        with pytest.raises(MigrationSelectionError, match="choose one"):
            select_reference(events)

        assert select_reference(events, choice=2) == T0.shifted(days=1)

    def test_choice_out_of_range(self):
        """Test invalid choices are rejected."""
        events = [self._event(T0)]
        with pytest.raises(MigrationSelectionError, match="out of range"):
            select_reference(events, choice=2)
        with pytest.raises(MigrationSelectionError):
            select_reference(events, choice=0)

    def test_event_to_dict(self):
        """Test event serialization."""
        data = self._event(T0.shifted(seconds=1)).to_dict()
        assert data["trigger"] == "20240301_120000"
        assert data["reference"] == "20240301_120001"
        assert data["sentinel_names"] == []
