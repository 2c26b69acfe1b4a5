import datetime as dt
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from . import config
from .aggregation import AGGREGATE_TIMEFRAMES, DAILY, EXPIRY_WEEKLY, MONDAY_WEEKLY, MONTHLY, YEARLY
from .exceptions import PersistenceError
from .transform import OHLCV_COLUMNS, CanonicalRecord

logger = logging.getLogger(__name__)

KEY_COLUMNS = ("symbol", "date")
BAR_COLUMNS = ["open", "high", "low", "close", "volume", "open_interest", "weekday"]

_RETURNS = ["return_points", "return_percentage"]
_MONTH_LINK = ["even_month", "monthly_return_points", "monthly_return_percentage", "positive_month"]
_YEAR_LINK = ["even_year", "yearly_return_points", "yearly_return_percentage", "positive_year"]
_WEEK_NUMBERS = ["week_number_monthly", "week_number_yearly", "even_week_number_monthly", "even_week_number_yearly"]


def _daily_week_link(prefix: str, date_col: str, returns_prefix: str, positive: str) -> List[str]:
    return [
        date_col,
        f"{prefix}_number_monthly", f"even_{prefix}_number_monthly",
        f"{prefix}_number_yearly", f"even_{prefix}_number_yearly",
        f"{returns_prefix}_return_points", f"{returns_prefix}_return_percentage", positive,
    ]


TIMEFRAME_TABLES = {
    DAILY: "daily_seasonality",
    MONDAY_WEEKLY: "monday_weekly",
    EXPIRY_WEEKLY: "expiry_weekly",
    MONTHLY: "monthly_seasonality",
    YEARLY: "yearly_seasonality",
}

# Derived columns per timeframe, in table order (after symbol, date and BAR_COLUMNS)
TIMEFRAME_COLUMNS: Dict[str, List[str]] = {
    YEARLY: ["even_year", *_RETURNS, "positive_year"],
    MONTHLY: ["even_month", *_RETURNS, "positive_month", *_YEAR_LINK],
    MONDAY_WEEKLY: [*_WEEK_NUMBERS, *_RETURNS, "positive_week", *_MONTH_LINK, *_YEAR_LINK],
    EXPIRY_WEEKLY: ["start_date", *_WEEK_NUMBERS, *_RETURNS, "positive_week", *_MONTH_LINK, *_YEAR_LINK],
    DAILY: [
        "calendar_month_day", "calendar_year_day", "trading_month_day", "trading_year_day",
        "even_calendar_month_day", "even_calendar_year_day", "even_trading_month_day", "even_trading_year_day",
        *_RETURNS, "positive_day",
        *_daily_week_link("monday_week", "monday_weekly_date", "monday_weekly", "positive_monday_week"),
        *_daily_week_link("expiry_week", "expiry_weekly_date", "expiry_weekly", "positive_expiry_week"),
        *_MONTH_LINK, *_YEAR_LINK,
    ],
}


def _sql_type(column: str) -> str:
    if column.startswith(("even_", "positive_")) or "number" in column or column.endswith("_day"):
        return "INTEGER"
    if column.endswith("date") or column == "weekday":
        return "TEXT"
    return "REAL"


def table_columns(timeframe: str) -> List[str]:
    return [*KEY_COLUMNS, *BAR_COLUMNS, *TIMEFRAME_COLUMNS[timeframe]]


def init_db(db_path: Optional[str] = None):
    path = db_path or config.DB_PATH
    Path(os.path.dirname(path) or ".").mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(path) as conn:
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS tickers (
                symbol TEXT PRIMARY KEY,
                total_records INTEGER DEFAULT 0,
                first_date TEXT,
                last_date TEXT,
                last_updated TEXT
            )
            """
        )
        # Canonical daily bars as uploaded
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS raw_prices (
                symbol TEXT NOT NULL,
                date TEXT NOT NULL,
                open REAL,
                high REAL,
                low REAL,
                close REAL NOT NULL,
                volume REAL DEFAULT 0,
                open_interest REAL DEFAULT 0,
                PRIMARY KEY (symbol, date)
            )
            """
        )
        # One table per derived timeframe
        for timeframe, table in TIMEFRAME_TABLES.items():
            cols = ",\n".join(
                f"{c} {_sql_type(c)}" for c in [*BAR_COLUMNS, *TIMEFRAME_COLUMNS[timeframe]]
            )
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    symbol TEXT NOT NULL,
                    date TEXT NOT NULL,
                    {cols},
                    PRIMARY KEY (symbol, date)
                )
                """
            )
        conn.commit()


@contextmanager
def get_conn(db_path: Optional[str] = None):
    path = db_path or config.DB_PATH
    conn = sqlite3.connect(path, timeout=30)
    try:
        yield conn
    finally:
        conn.close()


def _chunks(rows: Sequence, size: int) -> Iterable[Sequence]:
    size = max(1, size)
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def upsert_many(table: str, columns: Iterable[str], rows: Sequence[Sequence], db_path: Optional[str] = None,
                chunk_size: Optional[int] = None) -> int:
    """Upsert rows keyed by (symbol, date); every chunk is its own transaction."""
    cols = list(columns)
    placeholders = ",".join(["?"] * len(cols))
    updates = ",".join([f"{c}=excluded.{c}" for c in cols if c not in KEY_COLUMNS])
    sql = f"INSERT INTO {table} ({','.join(cols)}) VALUES ({placeholders}) ON CONFLICT DO UPDATE SET {updates}"
    written = 0
    with get_conn(db_path) as conn:
        for chunk in _chunks(rows, chunk_size or len(rows) or 1):
            with conn:
                conn.executemany(sql, chunk)
            written += len(chunk)
    return written


def fetch_df(query: str, params: tuple = (), db_path: Optional[str] = None):
    with get_conn(db_path) as conn:
        df = pd.read_sql_query(query, conn, params=params, parse_dates=["date"])  # type: ignore
    if not df.empty:
        df = df.sort_values("date").set_index("date")
    return df


def to_sql_value(value):
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, (pd.Timestamp, dt.datetime)):
        return None if pd.isna(value) else value.date().isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, (bool, np.bool_)):
        return int(value)
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        return None if np.isnan(value) else float(value)
    return value


def frame_rows(symbol: str, frame: pd.DataFrame, columns: Sequence[str]) -> List[Tuple]:
    """Flatten a date-indexed frame into tuples in ``columns`` order (symbol first)."""
    data = frame.reset_index()
    data["symbol"] = symbol
    return [tuple(to_sql_value(v) for v in row) for row in data[list(columns)].itertuples(index=False)]


def _empty_daily() -> pd.DataFrame:
    empty = pd.DataFrame(columns=OHLCV_COLUMNS, dtype=float)
    empty.index = pd.DatetimeIndex([], name="date")
    return empty


class SeasonalityStore:
    """SQLite implementation of the keyed store the pipeline writes through."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.DB_PATH

    @contextmanager
    def _errors(self, action: str):
        try:
            yield
        except sqlite3.Error as e:
            logger.error(f"Store failure while trying to {action}: {e}")
            raise PersistenceError(f"Failed to {action}: {e}") from e

    def initialize(self):
        with self._errors("initialise database"):
            init_db(self.db_path)

    def upsert_raw(self, symbol: str, records: Sequence[CanonicalRecord],
                   chunk_size: Optional[int] = None) -> Tuple[int, int]:
        """Write canonical bars; returns (inserted, updated)."""
        chunk_size = chunk_size or config.RAW_BATCH_SIZE
        cols = ["symbol", "date", *OHLCV_COLUMNS]
        updates = ",".join(f"{c}=excluded.{c}" for c in OHLCV_COLUMNS)
        sql = (
            f"INSERT INTO raw_prices ({','.join(cols)}) VALUES ({','.join(['?'] * len(cols))}) "
            f"ON CONFLICT DO UPDATE SET {updates}"
        )
        inserted = updated = 0
        with self._errors(f"upsert raw prices for {symbol}"), get_conn(self.db_path) as conn:
            for chunk in _chunks(list(records), chunk_size):
                dates = [r.date.isoformat() for r in chunk]
                with conn:
                    existing = {
                        row[0] for row in conn.execute(
                            "SELECT date FROM raw_prices WHERE symbol=? AND date>=? AND date<=?",
                            (symbol, min(dates), max(dates)),
                        )
                    }
                    conn.executemany(
                        sql,
                        [
                            (symbol, r.date.isoformat(), r.open, r.high, r.low, r.close, r.volume, r.open_interest)
                            for r in chunk
                        ],
                    )
                hits = sum(1 for d in dates if d in existing)
                updated += hits
                inserted += len(dates) - hits
        return inserted, updated

    def find_latest_date(self, symbol: str, timeframe: Optional[str] = None) -> Optional[dt.date]:
        """Latest stored raw bar, or latest derived row of ``timeframe`` when given."""
        table = "raw_prices" if timeframe is None else TIMEFRAME_TABLES[timeframe]
        with self._errors(f"read latest date for {symbol}"), get_conn(self.db_path) as conn:
            row = conn.execute(f"SELECT MAX(date) FROM {table} WHERE symbol=?", (symbol,)).fetchone()
        return dt.date.fromisoformat(row[0]) if row and row[0] else None

    def count_rows(self, symbol: str, timeframe: str) -> int:
        table = TIMEFRAME_TABLES[timeframe]
        with self._errors(f"count {timeframe} rows for {symbol}"), get_conn(self.db_path) as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table} WHERE symbol=?", (symbol,)).fetchone()[0]

    def calculated_tables_empty(self, symbol: str) -> bool:
        """True when any derived table has no rows; every stored bar yields a row in all five."""
        counts = {tf: self.count_rows(symbol, tf) for tf in (*AGGREGATE_TIMEFRAMES, DAILY)}
        logger.info(f"Calculated table counts for {symbol}: {counts}")
        return min(counts.values()) == 0

    def delete_range(self, symbol: str, timeframe: str, from_date: Optional[dt.date] = None) -> int:
        """Delete derived rows dated on/after ``from_date`` (all rows when None)."""
        table = TIMEFRAME_TABLES[timeframe]
        with self._errors(f"delete {timeframe} rows for {symbol}"), get_conn(self.db_path) as conn:
            with conn:
                if from_date is None:
                    cur = conn.execute(f"DELETE FROM {table} WHERE symbol=?", (symbol,))
                else:
                    cur = conn.execute(
                        f"DELETE FROM {table} WHERE symbol=? AND date>=?", (symbol, from_date.isoformat())
                    )
            return cur.rowcount

    def upsert_timeframe(self, symbol: str, timeframe: str, frame: pd.DataFrame,
                         chunk_size: Optional[int] = None) -> int:
        if frame.empty:
            return 0
        if chunk_size is None:
            chunk_size = config.DAILY_BATCH_SIZE if timeframe == DAILY else config.AGG_BATCH_SIZE
        columns = table_columns(timeframe)
        rows = frame_rows(symbol, frame, columns)
        with self._errors(f"upsert {timeframe} rows for {symbol}"):
            return upsert_many(TIMEFRAME_TABLES[timeframe], columns, rows, db_path=self.db_path, chunk_size=chunk_size)

    def load_daily(self, symbol: str, start: Optional[dt.date] = None, include_prior: bool = False) -> pd.DataFrame:
        """Stored bars from ``start`` on; with ``include_prior`` also the last bar before it."""
        select = "SELECT date, open, high, low, close, volume, open_interest FROM raw_prices"
        with self._errors(f"load daily bars for {symbol}"):
            if start is None:
                df = fetch_df(f"{select} WHERE symbol=?", (symbol,), db_path=self.db_path)
            else:
                df = fetch_df(f"{select} WHERE symbol=? AND date>=?", (symbol, start.isoformat()), db_path=self.db_path)
                if include_prior:
                    prior = fetch_df(
                        f"{select} WHERE symbol=? AND date<? ORDER BY date DESC LIMIT 1",
                        (symbol, start.isoformat()),
                        db_path=self.db_path,
                    )
                    if not prior.empty:
                        df = prior if df.empty else pd.concat([prior, df]).sort_index()
        if df.empty:
            return _empty_daily()
        df.index = pd.DatetimeIndex(df.index, name="date").normalize()
        return df[OHLCV_COLUMNS].astype(float)

    def update_ticker_stats(self, symbol: str):
        with self._errors(f"update ticker stats for {symbol}"), get_conn(self.db_path) as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO tickers (symbol, total_records, first_date, last_date, last_updated)
                    SELECT ?, COUNT(*), MIN(date), MAX(date), ? FROM raw_prices WHERE symbol=?
                    ON CONFLICT(symbol) DO UPDATE SET
                        total_records=excluded.total_records,
                        first_date=excluded.first_date,
                        last_date=excluded.last_date,
                        last_updated=excluded.last_updated
                    """,
                    (symbol, dt.datetime.now(dt.timezone.utc).isoformat(), symbol),
                )

    def fetch_timeframe(self, symbol: str, timeframe: str, start: Optional[dt.date] = None,
                        end: Optional[dt.date] = None) -> pd.DataFrame:
        query = f"SELECT * FROM {TIMEFRAME_TABLES[timeframe]} WHERE symbol=?"
        params: list = [symbol]
        if start is not None:
            query += " AND date>=?"
            params.append(start.isoformat())
        if end is not None:
            query += " AND date<=?"
            params.append(end.isoformat())
        with self._errors(f"fetch {timeframe} rows for {symbol}"):
            return fetch_df(query, tuple(params), db_path=self.db_path)
