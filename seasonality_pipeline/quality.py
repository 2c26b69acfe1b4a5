import logging
from typing import List

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

SIGMA_THRESHOLD = 5


def _flag_anomalies(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    # Price jumps: log close-to-close move away from the average move
    ret = np.log(out["close"]).diff()
    thr = SIGMA_THRESHOLD * ret.std(skipna=True)
    out["price_jump_flag"] = ((ret - ret.mean()).abs() > thr).astype(int).values
    # Volume anomaly: log delta volume; zero volume carries no information
    lv = np.log(out["volume"].where(out["volume"] > 0)).replace([-np.inf, np.inf], np.nan)
    d_lv = lv.diff()
    thr_v = SIGMA_THRESHOLD * d_lv.std(skipna=True)
    out["vol_anom_flag"] = ((d_lv - d_lv.mean()).abs() > thr_v).astype(int).values
    # OHLC consistency
    body_low = out[["open", "close"]].min(axis=1)
    body_high = out[["open", "close"]].max(axis=1)
    out["ohlc_inconsistent"] = ((out["low"] > body_low) | (out["high"] < body_high)).astype(int)
    return out


def quality_warnings(symbol: str, daily: pd.DataFrame) -> List[str]:
    """Non-fatal data-quality messages for a symbol's daily bars."""
    if daily.empty:
        return []
    flagged = _flag_anomalies(daily)
    warnings = []
    for column, label in (
        ("ohlc_inconsistent", "OHLC inconsistency"),
        ("price_jump_flag", "price jump"),
        ("vol_anom_flag", "volume anomaly"),
    ):
        dates = flagged.index[flagged[column] == 1]
        if len(dates):
            sample = ", ".join(d.date().isoformat() for d in dates[:5])
            more = f" (+{len(dates) - 5} more)" if len(dates) > 5 else ""
            warnings.append(f"{symbol}: {label} on {len(dates)} day(s): {sample}{more}")
    for message in warnings:
        logger.warning(message)
    return warnings
