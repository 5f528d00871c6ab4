"""
Rewind core. Do not implement beyond this file's responsibilities.
Migration rollback - restores database files to their pre-migration state.

Backup index built from a single walk of the working tree.
"""

import os
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .timepoint import Timepoint, parse_timepoint
from util.logging import logger

# <logical-name>.<ext>_<YYYYMMDD_HHMMSS>.backup
BACKUP_NAME_PATTERN = re.compile(
    r"(?P<name>.+)\.(?P<ext>[A-Za-z0-9]+)_(?P<token>[0-9]{8}_[0-9]{6})\.backup"
)

BucketKey = Tuple[str, str]  # (directory, logical name)


class BackupIndexError(Exception):
    """Custom exception for backup index operations."""
    pass


@dataclass
class BackupRecord:
    """One backup file. The timepoint is decoded on first access."""
    directory: str
    logical_name: str
    ext: str
    token: str
    path: str
    _timepoint: Optional[Timepoint] = field(default=None, repr=False, compare=False)

    @property
    def timepoint(self) -> Timepoint:
        if self._timepoint is None:
            self._timepoint = parse_timepoint(self.token, context=f"backup {self.path}")
        return self._timepoint

    @property
    def key(self) -> BucketKey:
        return (self.directory, self.logical_name)


def parse_backup_name(directory: str, filename: str) -> Optional[BackupRecord]:
    """Decompose a backup file name, or return None if it is not one."""
    match = BACKUP_NAME_PATTERN.fullmatch(filename)
    if not match:
        return None
    return BackupRecord(
        directory=directory,
        logical_name=match.group("name"),
        ext=match.group("ext"),
        token=match.group("token"),
        path=os.path.join(directory, filename)
    )


class BackupIndex:
    """Read-only map from (directory, logical name) to backup records."""

    def __init__(self, root: str, buckets: Dict[BucketKey, List[BackupRecord]], database_files: List[str]):
        self.root = root
        self._buckets = dict(buckets)
        self.database_files = sorted(database_files)

    @classmethod
    def build(cls, root, db_ext: str = "edb") -> "BackupIndex":
        """
        Scan the tree under root once.

        Args:
            root: Directory to walk recursively
            db_ext: Extension (without dot) of live database files to track

        Returns:
            BackupIndex: Buckets of backup records plus the tracked database files

        Raises:
            BackupIndexError: If root does not exist or is not a directory
        """
        root_path = Path(root).resolve()
        if not root_path.is_dir():
            raise BackupIndexError(f"Working tree not found: {root}")

        buckets: Dict[BucketKey, List[BackupRecord]] = defaultdict(list)
        database_files: List[str] = []
        db_suffix = f".{db_ext}"
        backup_count = 0

        def _on_walk_error(error: OSError):
            logger.warning(f"Skipping unreadable directory during scan: {error}")

        for dirpath, _dirnames, filenames in os.walk(root_path, onerror=_on_walk_error):
            for filename in filenames:
                record = parse_backup_name(dirpath, filename)
                if record is not None:
                    buckets[record.key].append(record)
                    backup_count += 1
                elif filename.endswith(db_suffix) and len(filename) > len(db_suffix):
                    database_files.append(os.path.join(dirpath, filename))

        logger.log_scan_summary(str(root_path), backup_count, len(buckets), len(database_files))
        return cls(str(root_path), buckets, database_files)

    def lookup_name(self, logical_name: str) -> List[List[BackupRecord]]:
        """All buckets for a logical name, whichever directory they live in."""
        return [
            records for (directory, name), records in sorted(self._buckets.items())
            if name == logical_name
        ]

    def lookup(self, directory: str, logical_name: str, ext: Optional[str] = None) -> List[BackupRecord]:
        """
        Backups of one logical file, ascending by timepoint.

        Decoding happens here, so a malformed token raises TimepointError.
        """
        records = self._buckets.get((str(directory), logical_name), [])
        if ext is not None:
            records = [r for r in records if r.ext == ext]
        return sorted(records, key=lambda r: r.timepoint)

    @property
    def backup_count(self) -> int:
        return sum(len(records) for records in self._buckets.values())

    def __len__(self) -> int:
        return len(self._buckets)
