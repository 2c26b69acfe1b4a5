"""
Run the seasonality pipeline for a batch of rows.

Per symbol the stages are strictly sequential:

    plan -> store raw bars -> load window -> aggregate -> derive -> replace derived rows

Symbols of one batch are independent and may run on a thread pool. Cancellation is
checked only before a symbol starts. A symbol whose writes fail part way leaves its
daily rows behind its stored bars, and the next run plans a rebuild from there.
"""
import datetime as dt
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from . import aggregation, config, derived, planner
from .aggregation import AGGREGATE_TIMEFRAMES, DAILY, EXPIRY_WEEKLY, MONDAY_WEEKLY, MONTHLY, TIMEFRAMES, YEARLY
from .db import SeasonalityStore
from .exceptions import ComputationError, ValidationError
from .quality import quality_warnings
from .transform import (
    CanonicalRecord,
    group_by_symbol,
    read_csv,
    records_to_frame,
    transform_dataset,
    validate_required_columns,
    validate_rows,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

# Progress inside one symbol, in percent of that symbol's share
_STAGE_RAW = 10
_STAGE_COMPUTED = 15
_STAGE_CLEANUP = 18
_STAGE_PROGRESS = {YEARLY: 30, MONTHLY: 40, MONDAY_WEEKLY: 50, EXPIRY_WEEKLY: 55}
_DAILY_END = 95


class ProgressReporter:
    """Forward progress to a callback; clamped to 0-100 and never moving backwards."""

    def __init__(self, callback: Optional[ProgressCallback] = None, start: float = 0, end: float = 100,
                 parent: Optional["ProgressReporter"] = None):
        self.callback = callback
        self.start = start
        self.end = end
        self.parent = parent
        self.percent = 0
        self._lock = threading.RLock()

    def report(self, percent: float, message: str = ""):
        percent = min(100, max(0, percent))
        if self.parent is not None:
            self.parent.report(self.start + (self.end - self.start) * percent / 100, message)
            return
        with self._lock:
            percent = max(self.percent, int(round(percent)))
            self.percent = percent
            if self.callback is None:
                return
            try:
                self.callback(percent, message)
            except Exception:
                logger.exception(f"Progress callback failed at {percent}%")

    def span(self, start: float, end: float) -> "ProgressReporter":
        """Child reporter mapping its own 0-100 onto [start, end] of this one."""
        return ProgressReporter(start=start, end=end, parent=self)


@dataclass
class ProcessingOptions:
    default_symbol: Optional[str] = None
    force_recalculate: bool = False
    max_row_errors: Optional[int] = None
    lookback_years: Optional[int] = None
    check_quality: bool = True
    max_workers: Optional[int] = None


@dataclass
class SymbolResult:
    symbol: str
    mode: Optional[str] = None
    reason: str = ""
    from_date: Optional[dt.date] = None
    inserted: int = 0
    updated: int = 0
    derived_counts: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FileResult:
    total_rows: int = 0
    skipped_rows: int = 0
    symbols: List[SymbolResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def inserted_count(self) -> int:
        return sum(s.inserted for s in self.symbols)

    @property
    def updated_count(self) -> int:
        return sum(s.updated for s in self.symbols)

    @property
    def derived_counts(self) -> Dict[str, int]:
        counts = {tf: 0 for tf in TIMEFRAMES}
        for s in self.symbols:
            for tf, n in s.derived_counts.items():
                counts[tf] += n
        return counts

    @property
    def failed_symbols(self) -> List[str]:
        return [s.symbol for s in self.symbols if not s.ok]

    def add(self, symbol_result: SymbolResult):
        self.symbols.append(symbol_result)
        self.warnings.extend(symbol_result.warnings)
        if symbol_result.error:
            self.errors.append(f"{symbol_result.symbol}: {symbol_result.error}")

    def merge(self, other: "FileResult") -> "FileResult":
        """Combine two results (e.g. of several files) into a new one."""
        return FileResult(
            total_rows=self.total_rows + other.total_rows,
            skipped_rows=self.skipped_rows + other.skipped_rows,
            symbols=self.symbols + other.symbols,
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
            cancelled=self.cancelled or other.cancelled,
        )


@dataclass
class WorkUnit:
    symbol: str
    rows: Sequence[Mapping]
    options: ProcessingOptions = field(default_factory=ProcessingOptions)


@dataclass
class WorkResult:
    inserted_count: int
    updated_count: int
    derived_counts: Dict[str, int]
    recalculation_mode: Optional[str]


def _persist_order(frames: Dict[str, pd.DataFrame]):
    return [(tf, frames[tf]) for tf in (YEARLY, MONTHLY, MONDAY_WEEKLY, EXPIRY_WEEKLY)]


class SeasonalityProcessor:
    def __init__(self, store: Optional[SeasonalityStore] = None, cancel_event: Optional[threading.Event] = None):
        self.store = store or SeasonalityStore()
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self):
        self.cancel_event.set()

    def process_file(self, source, options: Optional[ProcessingOptions] = None,
                     progress_callback: Optional[ProgressCallback] = None) -> FileResult:
        headers, rows = read_csv(source)
        logger.info(f"Read {len(rows)} rows from {source}")
        return self.process_rows(headers, rows, options, progress_callback)

    def process_rows(self, headers: Sequence[str], rows: Sequence[Mapping],
                     options: Optional[ProcessingOptions] = None,
                     progress_callback: Optional[ProgressCallback] = None) -> FileResult:
        options = options or ProcessingOptions()
        reporter = ProgressReporter(progress_callback)
        max_row_errors = config.MAX_ROW_ERRORS if options.max_row_errors is None else options.max_row_errors

        # Nothing is written unless the whole batch passes validation
        validate_required_columns(headers)
        validation = validate_rows(rows, headers, options.default_symbol)
        reporter.report(5, f"Validated {len(rows)} rows")
        if validation.error_count > max_row_errors:
            raise ValidationError(
                f"Validation failed with {validation.error_count} row error(s); nothing was written",
                errors=validation.errors,
            )

        transformed = transform_dataset(rows, headers, options.default_symbol, skip_invalid=True)
        groups = group_by_symbol(transformed.records)
        reporter.report(15, f"Transformed {len(transformed.records)} rows for {len(groups)} symbol(s)")

        result = FileResult(total_rows=transformed.total, skipped_rows=transformed.skipped,
                            errors=list(transformed.errors))
        self.store.initialize()

        symbols = sorted(groups)
        share = 75 / max(1, len(symbols))
        spans = {s: reporter.span(20 + i * share, 20 + (i + 1) * share) for i, s in enumerate(symbols)}
        workers = options.max_workers or config.MAX_WORKERS
        # Set on the first unexpected failure so queued symbols are not started
        stop = threading.Event()
        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            futures = [
                pool.submit(self._run_symbol, symbol, groups[symbol], options, spans[symbol], stop)
                for symbol in symbols
            ]
            for future in futures:
                symbol_result = future.result()
                if symbol_result is None:
                    result.cancelled = True
                else:
                    result.add(symbol_result)

        if result.cancelled:
            logger.warning(f"Processing cancelled after {len(result.symbols)} of {len(symbols)} symbol(s)")
            reporter.report(reporter.percent, "Cancelled")
        else:
            reporter.report(100, "Completed")
        return result

    def process_work_unit(self, unit: WorkUnit,
                          progress_callback: Optional[ProgressCallback] = None) -> WorkResult:
        options = unit.options
        if not options.default_symbol:
            options = replace(options, default_symbol=unit.symbol)
        headers = list(unit.rows[0].keys()) if unit.rows else []
        result = self.process_rows(headers, unit.rows, options, progress_callback)
        mode = next((s.mode for s in result.symbols if s.symbol == unit.symbol.upper()), None)
        return WorkResult(
            inserted_count=result.inserted_count,
            updated_count=result.updated_count,
            derived_counts=result.derived_counts,
            recalculation_mode=mode,
        )

    def recalculate(self, symbol: str, force: bool = True,
                    progress_callback: Optional[ProgressCallback] = None) -> SymbolResult:
        """Rebuild derived tables from the stored bars of ``symbol``."""
        self.store.initialize()
        options = ProcessingOptions(force_recalculate=force, check_quality=False)
        reporter = ProgressReporter(progress_callback)
        result = self.process_symbol(symbol.upper(), [], options, reporter)
        reporter.report(100, "Completed")
        return result

    def _run_symbol(self, symbol: str, records: List[CanonicalRecord], options: ProcessingOptions,
                    progress: ProgressReporter, stop: threading.Event) -> Optional[SymbolResult]:
        if self.cancel_event.is_set() or stop.is_set():
            return None
        try:
            return self.process_symbol(symbol, records, options, progress)
        except ComputationError as e:
            logger.error(f"Computation failed for {symbol}: {e}")
            return SymbolResult(symbol=symbol, error=str(e))
        except Exception:
            logger.exception(f"Processing {symbol} failed; remaining symbols are not started")
            stop.set()
            raise

    def process_symbol(self, symbol: str, records: Sequence[CanonicalRecord],
                       options: ProcessingOptions, progress: Optional[ProgressReporter] = None) -> SymbolResult:
        progress = progress or ProgressReporter()
        store = self.store

        last_date = store.find_latest_date(symbol)
        tables_empty = True if last_date is None else store.calculated_tables_empty(symbol)
        derived_date = None if last_date is None else store.find_latest_date(symbol, DAILY)
        plan = planner.plan(
            symbol,
            last_date,
            [r.date for r in records],
            tables_empty,
            force=options.force_recalculate,
            lookback_years=options.lookback_years,
            last_derived_date=derived_date,
        )
        result = SymbolResult(symbol=symbol, mode=plan.mode, reason=plan.reason, from_date=plan.from_date)

        if options.check_quality and records:
            result.warnings = quality_warnings(symbol, records_to_frame(records))

        if plan.mode == planner.SKIP:
            progress.report(100, f"{symbol}: up to date")
            return result

        if plan.mode == planner.INCREMENTAL:
            to_store = [r for r in records if r.date > last_date]
        else:
            to_store = list(records)
        if to_store:
            result.inserted, result.updated = store.upsert_raw(symbol, to_store)
        progress.report(_STAGE_RAW, f"{symbol}: stored {len(to_store)} raw rows")

        if plan.mode == planner.INCREMENTAL:
            daily = store.load_daily(symbol, plan.context_start, include_prior=True)
        else:
            daily = store.load_daily(symbol)
        frames = derived.calculate_all(aggregation.aggregate(daily))
        if plan.from_date is not None:
            cutoff = pd.Timestamp(plan.from_date)
            frames = {tf: frame[frame.index >= cutoff] for tf, frame in frames.items()}
        progress.report(_STAGE_COMPUTED, f"{symbol}: computed derived fields")

        # Daily first: a run stopped after this point leaves daily rows behind the stored bars
        for timeframe in (DAILY, *AGGREGATE_TIMEFRAMES):
            store.delete_range(symbol, timeframe, plan.from_date)
        progress.report(_STAGE_CLEANUP, f"{symbol}: cleared derived rows ({plan.mode})")

        for timeframe, frame in _persist_order(frames):
            result.derived_counts[timeframe] = store.upsert_timeframe(symbol, timeframe, frame)
            progress.report(_STAGE_PROGRESS[timeframe], f"{symbol}: {len(frame)} {timeframe} rows")

        result.derived_counts[DAILY] = self._persist_daily(symbol, frames[DAILY], progress)
        store.update_ticker_stats(symbol)
        progress.report(100, f"{symbol}: done")
        logger.info(
            f"{symbol}: {plan.mode} recalculation, {result.inserted} inserted, "
            f"{result.updated} updated, derived {result.derived_counts}"
        )
        return result

    def _persist_daily(self, symbol: str, daily: pd.DataFrame, progress: ProgressReporter) -> int:
        size = max(1, config.DAILY_BATCH_SIZE)
        start = _STAGE_PROGRESS[EXPIRY_WEEKLY]
        written = 0
        for offset in range(0, len(daily), size):
            written += self.store.upsert_timeframe(symbol, DAILY, daily.iloc[offset:offset + size], chunk_size=size)
            progress.report(
                start + (_DAILY_END - start) * written / len(daily),
                f"{symbol}: {written}/{len(daily)} daily rows",
            )
        return written
