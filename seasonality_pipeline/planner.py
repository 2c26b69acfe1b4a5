"""
Choose how much derived data to rebuild when a batch arrives for a symbol.

full         no derived data can be trusted (new symbol, empty calculated tables, forced)
incremental  rebuild from one year before the last stored bar, or before the last
             derived row when an earlier run stopped part way
skip         nothing new and the calculated tables are populated
"""
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from . import config

logger = logging.getLogger(__name__)

FULL = "full"
INCREMENTAL = "incremental"
SKIP = "skip"


@dataclass(frozen=True)
class RecalculationPlan:
    mode: str
    from_date: Optional[dt.date] = None
    reason: str = ""

    @property
    def context_start(self) -> Optional[dt.date]:
        """First stored bar date to read for an incremental rebuild.

        Starting on Jan 1 of the year before ``from_date`` keeps every bucket anchored
        on or after ``from_date`` complete, and puts a month and year boundary before
        the first persisted row so counters restart exactly as in a full rebuild.
        """
        if self.mode != INCREMENTAL or self.from_date is None:
            return None
        return dt.date(self.from_date.year - 1, 1, 1)


def subtract_years(value: dt.date, years: int) -> dt.date:
    try:
        return value.replace(year=value.year - years)
    except ValueError:
        # Feb 29 -> Feb 28
        return value.replace(year=value.year - years, day=28)


def plan(symbol: str, last_persisted_date: Optional[dt.date], new_dates: Iterable[dt.date],
         aggregate_tables_empty: bool, force: bool = False,
         lookback_years: Optional[int] = None,
         last_derived_date: Optional[dt.date] = None) -> RecalculationPlan:
    """Decide the rebuild for ``symbol``.

    ``last_derived_date`` is the latest daily derived row; when it trails
    ``last_persisted_date`` the previous run did not finish persisting.
    """
    lookback_years = config.LOOKBACK_YEARS if lookback_years is None else lookback_years
    behind = (
        last_persisted_date is not None
        and last_derived_date is not None
        and last_derived_date < last_persisted_date
    )

    if last_persisted_date is None:
        result = RecalculationPlan(FULL, None, "no existing data")
    elif any(d > last_persisted_date for d in new_dates):
        anchor = last_derived_date if behind else last_persisted_date
        result = RecalculationPlan(
            INCREMENTAL,
            subtract_years(anchor, lookback_years),
            f"new rows after {last_persisted_date.isoformat()}",
        )
    elif aggregate_tables_empty:
        result = RecalculationPlan(FULL, None, "calculated tables empty")
    elif force:
        result = RecalculationPlan(FULL, None, "forced")
    elif behind:
        result = RecalculationPlan(
            INCREMENTAL,
            subtract_years(last_derived_date, lookback_years),
            f"derived rows end {last_derived_date.isoformat()}, stored bars end {last_persisted_date.isoformat()}",
        )
    else:
        result = RecalculationPlan(SKIP, None, "no new rows")

    logger.info(f"Recalculation plan for {symbol}: {result.mode} ({result.reason})")
    return result
