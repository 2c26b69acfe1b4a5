"""
Turn raw tabular rows into canonical daily bars.

- normalize_column_name: case/spacing-insensitive header lookup with synonyms
- validate_rows / prevalidate_rows: scan every row for date/close/symbol before anything is written
- transform_row / transform_dataset: build CanonicalRecord objects, repairing OHLC
- deduplicate_by_date / group_by_symbol / records_to_frame: series normalisation
"""
import datetime as dt
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from . import config
from .dates import parse_date
from .exceptions import ParseError, ValidationError

logger = logging.getLogger(__name__)

UNKNOWN_SYMBOL = "UNKNOWN"
REQUIRED_COLUMNS = ("date", "close")
OHLCV_COLUMNS = ["open", "high", "low", "close", "volume", "open_interest"]

COLUMN_SYNONYMS = {
    "date": "date",
    "tradedate": "date",
    "tradingdate": "date",
    "timestamp": "date",
    "datetime": "date",
    "symbol": "symbol",
    "ticker": "symbol",
    "tickersymbol": "symbol",
    "open": "open",
    "openprice": "open",
    "high": "high",
    "highprice": "high",
    "low": "low",
    "lowprice": "low",
    "close": "close",
    "closeprice": "close",
    "volume": "volume",
    "vol": "volume",
    "openinterest": "open_interest",
    "oi": "open_interest",
}

_SEPARATORS = re.compile(r"[\s_\-.]+")


def normalize_column_name(header: str) -> str:
    """'Open Interest', 'open_interest' and 'OI' all map to 'open_interest'."""
    key = _SEPARATORS.sub("", str(header).strip().lower())
    return COLUMN_SYNONYMS.get(key, key)


def header_map(headers: Sequence[str]) -> Dict[str, str]:
    """Canonical column name -> original header (first match wins)."""
    mapping: Dict[str, str] = {}
    for header in headers:
        mapping.setdefault(normalize_column_name(header), header)
    return mapping


def parse_number(value) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return None if pd.isna(value) else float(value)
    cleaned = str(value).replace(",", "").strip()
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return None if pd.isna(number) else number


@dataclass(frozen=True)
class CanonicalRecord:
    date: dt.date
    symbol: str
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    open_interest: float = 0.0


@dataclass
class TransformResult:
    records: List[CanonicalRecord] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total: int = 0
    skipped: int = 0


def validate_required_columns(headers: Sequence[str]) -> None:
    found = set(header_map(headers))
    missing = [c for c in REQUIRED_COLUMNS if c not in found]
    if missing:
        raise ValidationError(
            f"Missing required columns: {', '.join(missing)}. "
            f"Found columns: {', '.join(headers)}. "
            "Required: Date, Close. Optional: Ticker/Symbol, Open, High, Low, Volume, OpenInterest",
            errors=[f"missing column {c}" for c in missing],
        )


def _cell(row: Mapping, columns: Dict[str, str], name: str):
    header = columns.get(name)
    return None if header is None else row.get(header)


def _blank(value) -> bool:
    return value is None or str(value).strip() == ""


@dataclass
class RowValidation:
    """Pre-validation outcome: ``error_count`` counts every problem, ``errors`` only the reported ones."""
    errors: List[str] = field(default_factory=list)
    error_count: int = 0


def _row_problems(row: Mapping, columns: Dict[str, str], line: int, default_symbol: Optional[str]) -> List[str]:
    date_value = _cell(row, columns, "date")
    close_value = _cell(row, columns, "close")
    symbol_value = _cell(row, columns, "symbol")
    problems = []

    if _blank(date_value):
        problems.append(f"Row {line}: Missing date value")
    elif parse_date(date_value) is None:
        problems.append(f"Row {line}: Invalid date format \"{date_value}\"")

    if _blank(close_value):
        problems.append(f"Row {line}: Missing close price")
    else:
        close = parse_number(close_value)
        if close is None or close <= 0:
            problems.append(f"Row {line}: Invalid close price \"{close_value}\" (must be a positive number)")

    if _blank(symbol_value) and not default_symbol:
        problems.append(f"Row {line}: Missing ticker/symbol")
    return problems


def validate_rows(rows: Sequence[Mapping], headers: Sequence[str],
                  default_symbol: Optional[str] = None,
                  max_errors: Optional[int] = None) -> RowValidation:
    """Scan every row for a usable date, close and symbol.

    Row numbers are 1-based file lines (the header is line 1). All rows are counted;
    only the first ``max_errors`` messages are kept, followed by a summary line.
    """
    max_errors = config.MAX_REPORTED_ERRORS if max_errors is None else max_errors
    columns = header_map(headers)
    result = RowValidation()
    for i, row in enumerate(rows):
        problems = _row_problems(row, columns, i + 2, default_symbol)
        result.error_count += len(problems)
        if not max_errors:
            result.errors.extend(problems)
        elif len(result.errors) < max_errors:
            result.errors.extend(problems[:max_errors - len(result.errors)])
    if max_errors and result.error_count > max_errors:
        result.errors.append(f"... {result.error_count - max_errors} more error(s) not shown")
    return result


def prevalidate_rows(rows: Sequence[Mapping], headers: Sequence[str],
                     default_symbol: Optional[str] = None,
                     max_errors: Optional[int] = None) -> List[str]:
    """Reported error messages of ``validate_rows``."""
    return validate_rows(rows, headers, default_symbol, max_errors).errors


def transform_row(raw_row: Mapping, headers: Sequence[str],
                  default_symbol: Optional[str] = None, row_number: Optional[int] = None) -> CanonicalRecord:
    columns = header_map(headers)
    date = parse_date(_cell(raw_row, columns, "date"))
    if date is None:
        raise ParseError("Invalid or missing date", row=row_number)
    close = parse_number(_cell(raw_row, columns, "close"))
    if close is None or close <= 0:
        raise ParseError("Invalid or missing close price", row=row_number)

    symbol = str(_cell(raw_row, columns, "symbol") or "").strip().upper()
    if not symbol:
        symbol = (default_symbol or UNKNOWN_SYMBOL).strip().upper()

    def price(name):
        # Missing or zero prices fall back to close so close-only feeds still give a bar
        value = parse_number(_cell(raw_row, columns, name))
        return value if value else close

    return CanonicalRecord(
        date=date,
        symbol=symbol,
        open=price("open"),
        high=price("high"),
        low=price("low"),
        close=close,
        volume=parse_number(_cell(raw_row, columns, "volume")) or 0.0,
        open_interest=parse_number(_cell(raw_row, columns, "open_interest")) or 0.0,
    )


def transform_dataset(rows: Sequence[Mapping], headers: Sequence[str],
                      default_symbol: Optional[str] = None, skip_invalid: bool = True,
                      max_errors: Optional[int] = None) -> TransformResult:
    max_errors = config.MAX_REPORTED_ERRORS if max_errors is None else max_errors
    result = TransformResult(total=len(rows))
    for i, raw in enumerate(rows):
        try:
            result.records.append(transform_row(raw, headers, default_symbol, row_number=i + 2))
        except ParseError as e:
            if not skip_invalid:
                raise
            result.skipped += 1
            if len(result.errors) < max_errors:
                result.errors.append(str(e))
    if result.skipped:
        logger.info(f"Skipped {result.skipped} of {result.total} rows during transform")
    return result


def deduplicate_by_date(records: Iterable[CanonicalRecord]) -> List[CanonicalRecord]:
    """Keep the last record for each date, sorted ascending."""
    latest: Dict[dt.date, CanonicalRecord] = {}
    for record in records:
        latest[record.date] = record
    return [latest[d] for d in sorted(latest)]


def group_by_symbol(records: Iterable[CanonicalRecord]) -> Dict[str, List[CanonicalRecord]]:
    groups: Dict[str, List[CanonicalRecord]] = {}
    for record in records:
        groups.setdefault(record.symbol or UNKNOWN_SYMBOL, []).append(record)
    return {symbol: deduplicate_by_date(rows) for symbol, rows in groups.items()}


def records_to_frame(records: Sequence[CanonicalRecord]) -> pd.DataFrame:
    """Daily OHLCV frame indexed by date (tz-naive midnight timestamps)."""
    if not records:
        empty = pd.DataFrame(columns=OHLCV_COLUMNS, dtype=float)
        empty.index = pd.DatetimeIndex([], name="date")
        return empty
    df = pd.DataFrame(
        {c: [float(getattr(r, c)) for r in records] for c in OHLCV_COLUMNS},
        index=pd.DatetimeIndex([pd.Timestamp(r.date) for r in records], name="date"),
    )
    return df.sort_index()


def read_csv(source) -> tuple:
    """Return (headers, rows) from a CSV path or buffer; every value stays a string."""
    df = pd.read_csv(source, dtype=str, keep_default_na=False, skipinitialspace=True)
    df.columns = [str(c).strip() for c in df.columns]
    headers = list(df.columns)
    return headers, df.to_dict(orient="records")
