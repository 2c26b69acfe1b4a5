#!/usr/bin/env python3
"""Export the five derived tables of a symbol as CSV files.

Usage: python scripts/export_timeframes.py NIFTY ./out
"""
import sys
import logging

from seasonality_pipeline.data_service import DataService

logging.basicConfig(level=logging.INFO)

def main():
    if len(sys.argv) < 2:
        print("Usage: export_timeframes.py <SYMBOL> [OUT_DIR]")
        sys.exit(2)
    symbol = sys.argv[1]
    out_dir = sys.argv[2] if len(sys.argv) > 2 else "exports"
    written = DataService.export(symbol, out_dir)
    for path in written.values():
        print(path)
    print("Done")

if __name__ == '__main__':
    main()
