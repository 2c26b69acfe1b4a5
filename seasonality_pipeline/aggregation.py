import logging
from typing import Dict

import pandas as pd

from .exceptions import ComputationError

logger = logging.getLogger(__name__)

DAILY = "daily"
MONDAY_WEEKLY = "monday_weekly"
EXPIRY_WEEKLY = "expiry_weekly"
MONTHLY = "monthly"
YEARLY = "yearly"

# Derived fields must be computed in this order: daily rows read their enclosing periods
TIMEFRAMES = (YEARLY, MONTHLY, MONDAY_WEEKLY, EXPIRY_WEEKLY, DAILY)
AGGREGATE_TIMEFRAMES = (MONDAY_WEEKLY, EXPIRY_WEEKLY, MONTHLY, YEARLY)

THURSDAY = 3


def monday_anchor(index: pd.DatetimeIndex) -> pd.DatetimeIndex:
    """Monday of the ISO week containing each date."""
    return index - pd.to_timedelta(index.weekday, unit="D")


def expiry_anchor(index: pd.DatetimeIndex) -> pd.DatetimeIndex:
    """Thursday on or after each date; a Friday rolls forward six days to the next Thursday."""
    return index + pd.to_timedelta((THURSDAY - index.weekday) % 7, unit="D")


def month_anchor(index: pd.DatetimeIndex) -> pd.DatetimeIndex:
    return index.to_period("M").to_timestamp()


def year_anchor(index: pd.DatetimeIndex) -> pd.DatetimeIndex:
    return index.to_period("Y").to_timestamp()


ANCHORS = {
    MONDAY_WEEKLY: monday_anchor,
    EXPIRY_WEEKLY: expiry_anchor,
    MONTHLY: month_anchor,
    YEARLY: year_anchor,
}


def _agg_ohlcv(df: pd.DataFrame, anchors: pd.DatetimeIndex) -> pd.DataFrame:
    out = df.groupby(anchors, sort=True).agg(
        open=("open", "first"),
        high=("high", "max"),
        low=("low", "min"),
        close=("close", "last"),
        volume=("volume", "sum"),
        open_interest=("open_interest", "last"),
    )
    out.index = pd.DatetimeIndex(out.index, name="date")
    return out


def aggregate(daily: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    """Roll a date-indexed daily OHLCV frame up into every timeframe.

    Periods without any bar produce no row; nothing is interpolated.
    """
    if daily is None or daily.empty:
        raise ComputationError("Cannot aggregate an empty daily series")
    daily = daily.sort_index()
    daily.index = pd.DatetimeIndex(daily.index, name="date").normalize()
    if daily.index.has_duplicates:
        raise ComputationError("Daily series has duplicate dates; deduplicate before aggregating")

    frames = {DAILY: daily.copy()}
    frames[DAILY]["weekday"] = daily.index.day_name()
    for timeframe, anchor in ANCHORS.items():
        agg = _agg_ohlcv(daily, anchor(daily.index))
        agg["weekday"] = agg.index.day_name()
        if timeframe == EXPIRY_WEEKLY:
            agg["start_date"] = agg.index - pd.Timedelta(days=6)
        frames[timeframe] = agg
    counts = {tf: len(frames[tf]) for tf in AGGREGATE_TIMEFRAMES}
    logger.debug(f"Aggregated {len(daily)} daily bars into {counts}")
    return frames
