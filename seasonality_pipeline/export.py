import logging
import os
from pathlib import Path
from typing import Dict, Optional

import pandas as pd

from .aggregation import DAILY, EXPIRY_WEEKLY, MONDAY_WEEKLY, MONTHLY, YEARLY
from .db import SeasonalityStore

logger = logging.getLogger(__name__)

EXPORT_FILES = {
    DAILY: "1_Daily.csv",
    MONDAY_WEEKLY: "2_MondayWeekly.csv",
    EXPIRY_WEEKLY: "3_ExpiryWeekly.csv",
    MONTHLY: "4_Monthly.csv",
    YEARLY: "5_Yearly.csv",
}


def timeframe_frame(store: SeasonalityStore, symbol: str, timeframe: str) -> pd.DataFrame:
    """Stored rows for one timeframe as a flat frame with ISO date strings."""
    df = store.fetch_timeframe(symbol, timeframe)
    if df.empty:
        return df
    out = df.reset_index()
    out["date"] = out["date"].dt.strftime("%Y-%m-%d")
    return out


def export_timeframes(symbol: str, out_dir: str, store: Optional[SeasonalityStore] = None) -> Dict[str, str]:
    """Write the five derived tables of ``symbol`` under ``out_dir/<symbol>/``.

    Returns timeframe -> written path; timeframes without rows are skipped.
    """
    store = store or SeasonalityStore()
    target = Path(out_dir) / symbol
    target.mkdir(parents=True, exist_ok=True)
    written = {}
    for timeframe, filename in EXPORT_FILES.items():
        df = timeframe_frame(store, symbol, timeframe)
        if df.empty:
            logger.info(f"No {timeframe} rows for {symbol}; {filename} not written")
            continue
        path = os.path.join(target, filename)
        df.to_csv(path, index=False)
        written[timeframe] = path
    logger.info(f"Exported {len(written)} file(s) for {symbol} to {target}")
    return written
