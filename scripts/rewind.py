#!/usr/bin/env python3
"""
Rewind core. Do not implement beyond this file's responsibilities.
Migration rollback - restores database files to their pre-migration state.

Command-line rollback utility with migration detection and confirmation.
"""

import argparse
import sys
from pathlib import Path

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dbrewind.core import config
from dbrewind.core.backup_index import BackupIndex, BackupIndexError
from dbrewind.core.detector import (
    MigrationDetector,
    MigrationSelectionError,
    NoMigrationDetectedError,
    event_log_timepoints,
    select_reference
)
from dbrewind.core.owner import OwnerProcessError, stop_owner_processes
from dbrewind.core.restore import PlanOutcome, RestoreExecutor
from dbrewind.core.schemas import RunReportModel
from dbrewind.core.timepoint import TimepointError


def _prompt_event_choice(count):
    response = input(f"Select migration event to roll back to (1-{count}, empty to cancel): ").strip()
    if not response.isdigit():
        return None
    return int(response)


def build_parser():
    parser = argparse.ArgumentParser(
        description="Roll database files back to their state before a failed migration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ./data                           # Detect migration and restore
  %(prog)s ./data --dry-run                 # Show what would be restored
  %(prog)s ./data --timepoint 20240301_093000  # Use a known reference time
  %(prog)s ./data --event 2 --force         # Pick event 2, no confirmation

The rollback process:
1. Scans the tree for <name>.<ext>_<YYYYMMDD_HHMMSS>.backup files
2. Detects migration events from event-log and sentinel backups
3. Restores each database from its first backup at or after the reference
4. Archives files changed after the reference that have no backup
5. Deletes non-recoverable databases (caches, credential stores)

Environment variables:
- REWIND_ROOT, REWIND_DB_EXT, REWIND_EVENT_LOG, REWIND_SENTINELS
- REWIND_WINDOW_DAYS, REWIND_MARGIN_SEC, REWIND_MIN_SENTINELS
- REWIND_NON_RECOVERABLE, REWIND_OWNER_PROCESS
        """
    )

    parser.add_argument(
        "root",
        nargs="?",
        default=config.REWIND_ROOT,
        help="Working tree containing the databases (default: REWIND_ROOT)"
    )

    parser.add_argument(
        "--timepoint", "-t",
        help="Reference timepoint YYYYMMDD_HHMMSS; skips migration detection"
    )

    parser.add_argument(
        "--event", "-e",
        type=int,
        help="Number of the detected migration event to use"
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Classify every file without changing anything"
    )

    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Skip the confirmation prompt (use with caution)"
    )

    parser.add_argument(
        "--stop-owner",
        action="store_true",
        help="Stop the owning application (REWIND_OWNER_PROCESS) before restoring"
    )

    parser.add_argument(
        "--report",
        help="Write a JSON run report to this path"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show the outcome for every file"
    )

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    issues = config.validate_rewind_config()
    if issues:
        for issue in issues:
            print(f"ERROR: {issue}")
        return 1

    try:
        index = BackupIndex.build(args.root, db_ext=config.DB_EXT)
    except BackupIndexError as e:
        print(f"ERROR: {e}")
        return 1

    print(f"Scanned {index.root}: {index.backup_count} backups, "
          f"{len(index.database_files)} databases")

    events = []
    choice = args.event
    if args.timepoint:
        reference_source = "manual"
    else:
        detector = MigrationDetector(
            index,
            config.SENTINEL_NAMES,
            window_days=config.get_window_days(),
            margin_sec=config.get_margin_sec(),
            min_sentinels=config.get_min_sentinels()
        )
        events = detector.detect(event_log_timepoints(index, config.EVENT_LOG_NAME))

        if events:
            print("Confirmed migration events:")
            for number, event in enumerate(events, start=1):
                print(f"  {number}. migration at {event.trigger} -> reference {event.reference} "
                      f"({event.sentinel_count} sentinel backups)")

        if choice is None and len(events) > 1:
            choice = _prompt_event_choice(len(events))
            if choice is None:
                print("Operation cancelled by user.")
                return 0
        reference_source = f"event {choice or 1}"

    try:
        reference = select_reference(events, choice=choice,
                                     manual=args.timepoint)
    except NoMigrationDetectedError as e:
        print(f"ERROR: {e}")
        print("Use --timepoint YYYYMMDD_HHMMSS to restore to a known time.")
        return 1
    except (MigrationSelectionError, TimepointError) as e:
        print(f"ERROR: {e}")
        return 1

    print(f"Reference timepoint: {reference} ({reference_source})")

    if not args.dry_run and not args.force:
        print("WARNING: This will replace, archive and delete database files under the tree!")
        response = input("Are you sure you want to proceed? (type 'yes' to continue): ")
        if response.lower() != 'yes':
            print("Operation cancelled by user.")
            return 0

    if args.stop_owner and config.OWNER_PROCESS_NAMES:
        try:
            pids = stop_owner_processes(config.OWNER_PROCESS_NAMES, config.OWNER_TIMEOUT_SEC,
                                        preview=args.dry_run)
            if pids:
                print(f"Stopped owning processes: {pids}")
        except OwnerProcessError as e:
            print(f"ERROR: {e}")
            return 1

    executor = RestoreExecutor(
        reference,
        index,
        non_recoverable=config.NON_RECOVERABLE_NAMES,
        preview=args.dry_run,
        db_ext=config.DB_EXT
    )
    report = executor.execute()

    if args.verbose or args.dry_run:
        for item in report.items:
            marker = "would" if args.dry_run else ("done" if item.applied else "-")
            print(f"  [{item.outcome.value}] {marker}: {item.path} ({item.reason})")

    if args.dry_run:
        print("DRY RUN - no files were changed")
    counters = report.counters
    print(f"Restored: {counters['restored']}, Deleted: {counters['deleted']}, "
          f"Archived: {counters['archived']}, Kept: {counters['kept']}, "
          f"Skipped: {counters['skipped']}")

    if args.report:
        model = RunReportModel.from_report(report, index.root, reference_source, events)
        Path(args.report).write_text(model.model_dump_json(indent=2))
        print(f"Report written to {args.report}")

    if report.count(PlanOutcome.SKIP):
        for item in report.items:
            if item.outcome == PlanOutcome.SKIP:
                print(f"ERROR: {item.path}: {item.reason}")
                for rollback_error in item.rollback_errors:
                    print(f"  rollback: {rollback_error}")
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
