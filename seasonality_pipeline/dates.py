"""Lenient date parsing for uploaded price files.

Dates arrive in whatever format the data vendor used. ``parse_date`` walks a fixed,
ordered list of patterns and commits to the first one that produces a real calendar
day. Ambiguous numeric dates are read day-first; ``MM/DD/YYYY`` is only accepted when
the day part is above 12.
"""
import datetime as dt
import re
import warnings
from typing import NamedTuple, Optional, Tuple

import pandas as pd

MONTH_NAMES = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

MIN_YEAR = 1900
MAX_YEAR = 2100


class _Strategy(NamedTuple):
    pattern: "re.Pattern[str]"
    # Meaning of each capture group: d=day, m=month, mon=month name, y=4-digit year, yy=2-digit year
    fields: Tuple[str, ...]
    day_over_12: bool = False


def _s(regex: str, *fields: str, day_over_12: bool = False) -> _Strategy:
    return _Strategy(re.compile(regex), fields, day_over_12)


_STRATEGIES = (
    _s(r"^(\d{1,2})-(\d{1,2})-(\d{4})$", "d", "m", "y"),
    _s(r"^(\d{1,2})/(\d{1,2})/(\d{4})$", "d", "m", "y"),
    _s(r"^(\d{4})-(\d{1,2})-(\d{1,2})$", "y", "m", "d"),
    _s(r"^(\d{1,2})-([a-zA-Z]+)-(\d{2})$", "d", "mon", "yy"),
    _s(r"^(\d{1,2})\s+([a-zA-Z]+)\s+(\d{2})$", "d", "mon", "yy"),
    _s(r"^(\d{1,2})/(\d{1,2})/(\d{2})$", "d", "m", "yy"),
    _s(r"^(\d{1,2})-(\d{1,2})-(\d{2})$", "d", "m", "yy"),
    _s(r"^(\d{1,2})-([a-zA-Z]+)-(\d{4})$", "d", "mon", "y"),
    _s(r"^(\d{1,2})\s+([a-zA-Z]+)\s+(\d{4})$", "d", "mon", "y"),
    _s(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$", "d", "m", "y"),
    _s(r"^(\d{4})/(\d{1,2})/(\d{1,2})$", "y", "m", "d"),
    _s(r"^([a-zA-Z]+)\s+(\d{1,2}),?\s+(\d{4})$", "mon", "d", "y"),
    _s(r"^(\d{4})(\d{2})(\d{2})$", "y", "m", "d"),
    _s(r"^(\d{1,2})/(\d{1,2})/(\d{4})$", "m", "d", "y", day_over_12=True),
)


def expand_two_digit_year(year: int) -> int:
    """00-49 -> 2000-2049, 50-99 -> 1950-1999."""
    return year + 2000 if year <= 49 else year + 1900


def _make_date(year: int, month: int, day: int) -> Optional[dt.date]:
    if not (1 <= day <= 31 and 1 <= month <= 12 and MIN_YEAR <= year <= MAX_YEAR):
        return None
    try:
        return dt.date(year, month, day)
    except ValueError:
        # e.g. 31-02-2024: in range field by field but not a calendar day
        return None


def _apply(strategy: _Strategy, text: str) -> Optional[dt.date]:
    match = strategy.pattern.match(text)
    if not match:
        return None
    parts = {}
    for name, value in zip(strategy.fields, match.groups()):
        if name == "mon":
            month = MONTH_NAMES.get(value.lower())
            if month is None:
                return None
            parts["m"] = month
        elif name == "yy":
            parts["y"] = expand_two_digit_year(int(value))
        else:
            parts[name] = int(value)
    if strategy.day_over_12 and parts["d"] <= 12:
        return None
    return _make_date(parts["y"], parts["m"], parts["d"])


def _fallback(text: str) -> Optional[dt.date]:
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            ts = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC")
    if not (MIN_YEAR <= ts.year <= MAX_YEAR):
        return None
    return dt.date(ts.year, ts.month, ts.day)


def parse_date(value) -> Optional[dt.date]:
    """Parse a textual date into a calendar day, or return None."""
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    text = str(value).strip()
    if not text:
        return None
    for strategy in _STRATEGIES:
        parsed = _apply(strategy, text)
        if parsed is not None:
            return parsed
    return _fallback(text)


def format_date(value: dt.date) -> str:
    return value.isoformat()


def format_ddmmyyyy(value: Optional[dt.date]) -> str:
    if value is None:
        return ""
    return f"{value.day:02d}-{value.month:02d}-{value.year}"
