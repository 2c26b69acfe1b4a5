"""
Derived seasonality fields for each timeframe.

Timeframes are processed yearly -> monthly -> weekly -> daily so that every row can
copy the already-computed returns of the periods that enclose it. Counters
(week numbers, trading days) are tri-state: an integer, or missing when the chain
has no known starting point yet. A missing counter is never read as zero.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Hashable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .aggregation import (
    DAILY,
    EXPIRY_WEEKLY,
    MONDAY_WEEKLY,
    MONTHLY,
    YEARLY,
    expiry_anchor,
    monday_anchor,
    month_anchor,
    year_anchor,
)

logger = logging.getLogger(__name__)


def round_half_up(value, places: int = 2) -> float:
    """Round half away from zero (2.345 -> 2.35); missing stays NaN."""
    if value is None or pd.isna(value):
        return np.nan
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def _flags(values, predicate: Callable) -> pd.arrays.BooleanArray:
    return pd.array([None if pd.isna(v) else bool(predicate(v)) for v in values], dtype="boolean")


def _even(values) -> pd.arrays.BooleanArray:
    return _flags(values, lambda v: v % 2 == 0)


def period_counter(keys: Sequence[Hashable]) -> List[Optional[int]]:
    """Running position of each row inside its period.

    Resets to 1 when the period key changes, increments a known previous value and
    otherwise stays unknown. The first row is always unknown.
    """
    counts: List[Optional[int]] = []
    previous_key = None
    for i, key in enumerate(keys):
        if i == 0:
            counts.append(None)
        elif key != previous_key:
            counts.append(1)
        elif counts[-1] is not None:
            counts.append(counts[-1] + 1)
        else:
            counts.append(None)
        previous_key = key
    return counts


def _month_keys(index: pd.DatetimeIndex) -> list:
    return list(zip(index.year, index.month))


def _add_returns(out: pd.DataFrame, positive_col: str) -> None:
    previous = out["close"].shift(1)
    points = out["close"] - previous
    out["return_points"] = points
    out["return_percentage"] = [
        round_half_up(p / c * 100) if pd.notna(p) else np.nan for p, c in zip(points, previous)
    ]
    out[positive_col] = _flags(points, lambda p: p > 0)


def _add_week_numbers(out: pd.DataFrame) -> None:
    monthly = period_counter(_month_keys(out.index))
    yearly = period_counter(list(out.index.year))
    out["week_number_monthly"] = pd.array(monthly, dtype="Int64")
    out["week_number_yearly"] = pd.array(yearly, dtype="Int64")
    out["even_week_number_monthly"] = _even(out["week_number_monthly"])
    out["even_week_number_yearly"] = _even(out["week_number_yearly"])


def _lookup(source: pd.DataFrame, anchors: pd.DatetimeIndex, column: str, index: pd.Index) -> pd.Series:
    """Values of ``source[column]`` at each anchor date, aligned to ``index``."""
    return source[column].reindex(anchors).set_axis(index)


def _link_returns(out: pd.DataFrame, source: pd.DataFrame, anchors: pd.DatetimeIndex,
                  prefix: str, positive_col: str) -> None:
    points = _lookup(source, anchors, "return_points", out.index)
    out[f"{prefix}_return_points"] = points
    out[f"{prefix}_return_percentage"] = _lookup(source, anchors, "return_percentage", out.index)
    out[positive_col] = _flags(points, lambda p: p > 0)


def _link_week_numbers(out: pd.DataFrame, source: pd.DataFrame, anchors: pd.DatetimeIndex, prefix: str) -> None:
    for scope in ("monthly", "yearly"):
        numbers = _lookup(source, anchors, f"week_number_{scope}", out.index)
        out[f"{prefix}_number_{scope}"] = numbers
        out[f"even_{prefix}_number_{scope}"] = _even(numbers)


def calculate_yearly(yearly: pd.DataFrame) -> pd.DataFrame:
    out = yearly.copy()
    out["even_year"] = _even(out.index.year)
    _add_returns(out, "positive_year")
    return out


def calculate_monthly(monthly: pd.DataFrame, yearly: pd.DataFrame) -> pd.DataFrame:
    out = monthly.copy()
    out["even_month"] = _even(out.index.month)
    _add_returns(out, "positive_month")
    out["even_year"] = _even(out.index.year)
    _link_returns(out, yearly, year_anchor(out.index), "yearly", "positive_year")
    return out


def calculate_weekly(weekly: pd.DataFrame, monthly: pd.DataFrame, yearly: pd.DataFrame) -> pd.DataFrame:
    """Fields shared by Monday and expiry weeks; the enclosing month/year is the anchor's."""
    out = weekly.copy()
    _add_week_numbers(out)
    _add_returns(out, "positive_week")
    out["even_month"] = _even(out.index.month)
    _link_returns(out, monthly, month_anchor(out.index), "monthly", "positive_month")
    out["even_year"] = _even(out.index.year)
    _link_returns(out, yearly, year_anchor(out.index), "yearly", "positive_year")
    return out


def calculate_daily(daily: pd.DataFrame, monday_weekly: pd.DataFrame, expiry_weekly: pd.DataFrame,
                    monthly: pd.DataFrame, yearly: pd.DataFrame) -> pd.DataFrame:
    out = daily.copy()
    index = out.index

    out["calendar_month_day"] = pd.array(index.day, dtype="Int64")
    out["calendar_year_day"] = pd.array(index.dayofyear, dtype="Int64")
    out["trading_month_day"] = pd.array(period_counter(_month_keys(index)), dtype="Int64")
    out["trading_year_day"] = pd.array(period_counter(list(index.year)), dtype="Int64")
    for col in ("calendar_month_day", "calendar_year_day", "trading_month_day", "trading_year_day"):
        out[f"even_{col}"] = _even(out[col])

    _add_returns(out, "positive_day")

    mondays = monday_anchor(index)
    out["monday_weekly_date"] = mondays
    _link_week_numbers(out, monday_weekly, mondays, "monday_week")
    _link_returns(out, monday_weekly, mondays, "monday_weekly", "positive_monday_week")

    thursdays = expiry_anchor(index)
    out["expiry_weekly_date"] = thursdays
    _link_week_numbers(out, expiry_weekly, thursdays, "expiry_week")
    _link_returns(out, expiry_weekly, thursdays, "expiry_weekly", "positive_expiry_week")

    out["even_month"] = _even(index.month)
    _link_returns(out, monthly, month_anchor(index), "monthly", "positive_month")
    out["even_year"] = _even(index.year)
    _link_returns(out, yearly, year_anchor(index), "yearly", "positive_year")
    return out


def calculate_all(frames: Dict[str, pd.DataFrame]) -> Dict[str, pd.DataFrame]:
    """Derive every timeframe from the output of ``aggregation.aggregate``."""
    yearly = calculate_yearly(frames[YEARLY])
    monthly = calculate_monthly(frames[MONTHLY], yearly)
    monday_weekly = calculate_weekly(frames[MONDAY_WEEKLY], monthly, yearly)
    expiry_weekly = calculate_weekly(frames[EXPIRY_WEEKLY], monthly, yearly)
    daily = calculate_daily(frames[DAILY], monday_weekly, expiry_weekly, monthly, yearly)
    return {
        YEARLY: yearly,
        MONTHLY: monthly,
        MONDAY_WEEKLY: monday_weekly,
        EXPIRY_WEEKLY: expiry_weekly,
        DAILY: daily,
    }
