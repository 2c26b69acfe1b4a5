#!/usr/bin/env python3
"""Rebuild the derived seasonality tables of a symbol from its stored bars.

Usage: python scripts/recalculate.py NIFTY
"""
import sys
import logging

from seasonality_pipeline.data_service import DataService

logging.basicConfig(level=logging.INFO)

def main():
    if len(sys.argv) < 2:
        print("Usage: recalculate.py <SYMBOL>")
        sys.exit(2)
    symbol = sys.argv[1]
    print(f"Recalculating {symbol}...")
    result = DataService.recalculate(symbol)
    print(f"{result.mode} ({result.reason}): {result.derived_counts}")
    print("Done")

if __name__ == '__main__':
    main()
