#!/usr/bin/env python3
"""Small CLI to load a seasonality CSV into the pipeline DB and recalculate.

Usage: python scripts/ingest_csv.py prices.csv [SYMBOL] [--force]
"""
import sys
import logging

from seasonality_pipeline.data_service import DataService
from seasonality_pipeline.exceptions import ValidationError

logging.basicConfig(level=logging.INFO)


def _print_progress(percent, message):
    print(f"[{percent:3d}%] {message}")


def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    if not args:
        print("Usage: ingest_csv.py <CSV_PATH> [SYMBOL] [--force]")
        sys.exit(2)
    path = args[0]
    symbol = args[1] if len(args) > 1 else None
    force = "--force" in sys.argv
    try:
        result = DataService.ingest_csv(path, default_symbol=symbol, force=force, progress_callback=_print_progress)
    except ValidationError as e:
        print(e)
        for err in e.errors:
            print(f"  {err}")
        sys.exit(1)
    for s in result.symbols:
        status = s.error or f"{s.mode} ({s.reason})"
        print(f"{s.symbol}: {status}; inserted={s.inserted} updated={s.updated} derived={s.derived_counts}")
    for warning in result.warnings:
        print(f"warning: {warning}")
    print(f"Done: {result.total_rows} rows, {result.skipped_rows} skipped")
    if result.failed_symbols:
        sys.exit(1)


if __name__ == '__main__':
    main()
