"""
Rewind core. Do not implement beyond this file's responsibilities.
Migration rollback - restores database files to their pre-migration state.

Configuration from environment variables (and an optional .env file).
"""

import os
import re
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _split_names(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


# Working tree
REWIND_ROOT = os.getenv("REWIND_ROOT", "./data")
DB_EXT = os.getenv("REWIND_DB_EXT", "edb")

# Detection (event log + sentinel correlation)
EVENT_LOG_NAME = os.getenv("REWIND_EVENT_LOG", "event_log")
SENTINEL_NAMES = _split_names(os.getenv("REWIND_SENTINELS", "accounts,folders,settings,contacts"))
WINDOW_DAYS = int(os.getenv("REWIND_WINDOW_DAYS", "3"))
MARGIN_SEC = int(os.getenv("REWIND_MARGIN_SEC", "3"))  # sentinel backups written just before the log backup
MIN_SENTINELS = int(os.getenv("REWIND_MIN_SENTINELS", "2"))

# Restore
NON_RECOVERABLE_NAMES = _split_names(os.getenv("REWIND_NON_RECOVERABLE", "cache,credentials"))

# Owning application
OWNER_PROCESS_NAMES = _split_names(os.getenv("REWIND_OWNER_PROCESS", ""))
OWNER_TIMEOUT_SEC = int(os.getenv("REWIND_OWNER_TIMEOUT_SEC", "10"))

LOG_LEVEL = os.getenv("REWIND_LOG_LEVEL", "INFO").upper()


class ConfigError(Exception):
    """Raised when the rewind configuration cannot be used."""
    pass


def get_window_days():
    """Get correlation window length in days."""
    return WINDOW_DAYS


def get_margin_sec():
    """Get backward margin in seconds."""
    return MARGIN_SEC


def get_min_sentinels():
    """Get minimum corroborating sentinel backups."""
    return MIN_SENTINELS


def validate_rewind_config():
    """Validate rewind configuration and return any issues."""
    issues = []

    if WINDOW_DAYS < 1:
        issues.append("REWIND_WINDOW_DAYS must be >= 1")

    if MARGIN_SEC < 0:
        issues.append("REWIND_MARGIN_SEC must be >= 0")

    if MIN_SENTINELS < 1:
        issues.append("REWIND_MIN_SENTINELS must be >= 1")

    if not DB_EXT or not re.fullmatch(r"[A-Za-z0-9]+", DB_EXT):
        issues.append(f"Invalid REWIND_DB_EXT: {DB_EXT!r}")

    if not SENTINEL_NAMES:
        issues.append("REWIND_SENTINELS must name at least one file")

    if EVENT_LOG_NAME in SENTINEL_NAMES:
        issues.append(f"REWIND_EVENT_LOG '{EVENT_LOG_NAME}' cannot also be a sentinel")

    if OWNER_TIMEOUT_SEC < 1:
        issues.append("REWIND_OWNER_TIMEOUT_SEC must be >= 1")

    return issues


def require_valid_config():
    """Raise ConfigError if the configuration has issues."""
    issues = validate_rewind_config()
    if issues:
        raise ConfigError(f"Rewind configuration invalid: {issues}")
