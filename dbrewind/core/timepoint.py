"""
Rewind core. Do not implement beyond this file's responsibilities.
Migration rollback - restores database files to their pre-migration state.

Timepoint codec for the YYYYMMDD_HHMMSS tokens embedded in backup file names.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

TOKEN_FORMAT = "%Y%m%d_%H%M%S"
TOKEN_PATTERN = re.compile(r"[0-9]{8}_[0-9]{6}")

MIN_YEAR = 2000
MAX_YEAR = 2100
FUTURE_TOLERANCE = timedelta(days=1)


class TimepointError(ValueError):
    """Base class for timepoint token errors."""

    def __init__(self, message: str, token: str, context: str):
        self.token = token
        self.context = context
        super().__init__(f"[{context}] {message}")


class TimepointFormatError(TimepointError):
    """Token does not have the YYYYMMDD_HHMMSS shape."""
    pass


class TimepointRangeError(TimepointError):
    """Token has the right shape but an impossible or future value."""
    pass


@dataclass(frozen=True, order=True)
class Timepoint:
    """A seconds-resolution instant."""
    value: datetime

    @property
    def token(self) -> str:
        return self.value.strftime(TOKEN_FORMAT)

    def __str__(self) -> str:
        return self.token

    def shifted(self, **delta) -> "Timepoint":
        """Return a new timepoint offset by timedelta keyword arguments."""
        return Timepoint(self.value + timedelta(**delta))

    @classmethod
    def from_datetime(cls, value: datetime) -> "Timepoint":
        return cls(value.replace(microsecond=0))

    @classmethod
    def from_timestamp(cls, ts: float) -> "Timepoint":
        """Local-time timepoint for a POSIX timestamp such as st_mtime."""
        return cls.from_datetime(datetime.fromtimestamp(ts))

    @classmethod
    def now(cls) -> "Timepoint":
        return cls.from_datetime(datetime.now())


def _check_range(field: str, value: int, low: int, high: int, token: str, context: str):
    if not low <= value <= high:
        raise TimepointRangeError(
            f"{field} {value} out of range [{low}, {high}] in '{token}'", token, context
        )


def parse_timepoint(token: str, context: str = "timepoint") -> Timepoint:
    """
    Parse a YYYYMMDD_HHMMSS token.

    Args:
        token: Raw token text
        context: Label naming the call site, included in error messages

    Returns:
        Timepoint: The decoded instant

    Raises:
        TimepointFormatError: Token is not 8 digits, underscore, 6 digits
        TimepointRangeError: A calendar field is out of bounds or the
            instant is more than one day in the future
    """
    if not isinstance(token, str) or not TOKEN_PATTERN.fullmatch(token):
        raise TimepointFormatError(
            f"Invalid timepoint token {token!r}, expected YYYYMMDD_HHMMSS", str(token), context
        )

    year, month, day = int(token[0:4]), int(token[4:6]), int(token[6:8])
    hour, minute, second = int(token[9:11]), int(token[11:13]), int(token[13:15])

    _check_range("year", year, MIN_YEAR, MAX_YEAR, token, context)
    _check_range("month", month, 1, 12, token, context)
    _check_range("day", day, 1, calendar.monthrange(year, month)[1], token, context)
    _check_range("hour", hour, 0, 23, token, context)
    _check_range("minute", minute, 0, 59, token, context)
    _check_range("second", second, 0, 59, token, context)

    value = datetime(year, month, day, hour, minute, second)
    if value > datetime.now() + FUTURE_TOLERANCE:
        raise TimepointRangeError(f"Timepoint '{token}' is in the future", token, context)

    return Timepoint(value)


def render(timepoint: Timepoint) -> str:
    """Render a timepoint back to its canonical token."""
    return timepoint.token
