import datetime as dt
import logging
from typing import Dict, Optional

import pandas as pd

from .db import SeasonalityStore
from .export import export_timeframes
from .processor import FileResult, ProcessingOptions, ProgressCallback, SeasonalityProcessor, SymbolResult

logger = logging.getLogger(__name__)


class DataService:
    """
    Facade for seasonality operations.
    - ingest_csv: validate, store and recalculate a CSV upload
    - recalculate: rebuild derived tables from stored bars
    - get_timeframe / export: read derived rows back out
    """

    @staticmethod
    def initialize(db_path: Optional[str] = None):
        SeasonalityStore(db_path).initialize()

    @staticmethod
    def ingest_csv(source, default_symbol: Optional[str] = None, force: bool = False,
                   progress_callback: Optional[ProgressCallback] = None,
                   db_path: Optional[str] = None) -> FileResult:
        processor = SeasonalityProcessor(SeasonalityStore(db_path))
        options = ProcessingOptions(default_symbol=default_symbol, force_recalculate=force)
        return processor.process_file(source, options, progress_callback)

    @staticmethod
    def recalculate(symbol: str, force: bool = True, progress_callback: Optional[ProgressCallback] = None,
                    db_path: Optional[str] = None) -> SymbolResult:
        processor = SeasonalityProcessor(SeasonalityStore(db_path))
        return processor.recalculate(symbol, force=force, progress_callback=progress_callback)

    @staticmethod
    def latest_date(symbol: str, db_path: Optional[str] = None) -> Optional[dt.date]:
        store = SeasonalityStore(db_path)
        store.initialize()
        return store.find_latest_date(symbol.upper())

    @staticmethod
    def get_timeframe(symbol: str, timeframe: str, start: Optional[dt.date] = None,
                      end: Optional[dt.date] = None, db_path: Optional[str] = None) -> pd.DataFrame:
        store = SeasonalityStore(db_path)
        store.initialize()
        return store.fetch_timeframe(symbol.upper(), timeframe, start, end)

    @staticmethod
    def export(symbol: str, out_dir: str, db_path: Optional[str] = None) -> Dict[str, str]:
        store = SeasonalityStore(db_path)
        store.initialize()
        return export_timeframes(symbol.upper(), out_dir, store)
