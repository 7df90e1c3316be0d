"""Date parsing utilities."""

import re
from datetime import datetime
from typing import Callable, Optional

from dateutil import parser as date_parser

from txflow.domain.errors import FieldAnomaly

_DATE_SEPARATORS = re.compile(r"[/\-.]")
_TIMEZONE_BRACKET = re.compile(r"\[.*\]")

# dateutil fills missing parts from its default; a date that differs between
# these two defaults was incomplete in the input
_SENTINEL_DEFAULTS = (datetime(2000, 1, 1), datetime(2004, 3, 3))


def parse_transaction_date(date_str: str) -> datetime:
    """Parse a date string from an export row.

    Fallback chain:
    1. dateutil parsing of the raw string ("2024-01-15", "01/15/2024",
       "January 15, 2024", ...); fragments missing a day, month or year
       such as "7" or "Jan" are not accepted
    2. split on "/", "-" or "." and read YYYY-MM-DD when the first segment
       has four digits, MM/DD/YYYY otherwise

    The second step assumes US month-first ordering for ambiguous dates.

    Args:
        date_str: Date string in various formats

    Returns:
        Naive datetime

    Raises:
        FieldAnomaly: If no step of the chain yields a valid date
    """
    if date_str is None or not date_str.strip():
        raise FieldAnomaly("date", date_str, "empty date string")

    raw = date_str.strip()

    try:
        first, second = (date_parser.parse(raw, default=d) for d in _SENTINEL_DEFAULTS)
        if first.date() == second.date():
            return first.replace(tzinfo=None)
    except (ValueError, OverflowError):
        pass

    parts = [p.strip() for p in _DATE_SEPARATORS.split(raw)]
    if len(parts) == 3 and all(p.isdigit() for p in parts):
        if len(parts[0]) == 4:
            year, month, day = parts
        else:
            month, day, year = parts
        try:
            return datetime(int(year), int(month), int(day))
        except ValueError:
            pass

    raise FieldAnomaly("date", date_str, "unrecognized date format")


def read_statement_date(date_str: Optional[str]) -> datetime:
    """Parse a compact statement date.

    Accepts "YYYYMMDD" and "YYYYMMDDHHMMSS" with optional fractional seconds
    (".XXX") and timezone bracket ("[-5:EST]") suffixes.

    Args:
        date_str: Raw statement date value

    Returns:
        Naive datetime

    Raises:
        FieldAnomaly: If the value is missing or not a valid compact date
    """
    if not date_str:
        raise FieldAnomaly("date", date_str, "empty date string")

    cleaned = _TIMEZONE_BRACKET.sub("", date_str).strip().split(".")[0]
    if not cleaned.isdigit() or (len(cleaned) != 8 and len(cleaned) < 14):
        raise FieldAnomaly("date", date_str, "unrecognized statement date format")

    try:
        if len(cleaned) == 8:
            return datetime(int(cleaned[0:4]), int(cleaned[4:6]), int(cleaned[6:8]))
        return datetime(
            int(cleaned[0:4]),
            int(cleaned[4:6]),
            int(cleaned[6:8]),
            int(cleaned[8:10]),
            int(cleaned[10:12]),
            int(cleaned[12:14]),
        )
    except ValueError as e:
        raise FieldAnomaly("date", date_str, str(e))


def parse_statement_date(
    date_str: Optional[str], clock: Callable[[], datetime] = datetime.now
) -> datetime:
    """Parse a compact statement date, falling back to ``clock()``.

    Used for dates whose loss does not degrade a transaction: server date,
    balance dates and the statement period.
    """
    try:
        return read_statement_date(date_str)
    except FieldAnomaly:
        return clock()
