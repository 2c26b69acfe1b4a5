"""
Seasonality pipeline package: turns uploaded daily OHLCV rows into daily,
Monday-week, expiry-week, monthly and yearly seasonality tables stored in a
local SQLite database.

Modules:
- dates: Lenient multi-format date parsing
- transform: Header mapping, pre-validation, canonical records, dedup/grouping
- aggregation: Period anchors and OHLCV roll-ups per timeframe
- derived: Returns, parity flags, counters and cross-timeframe links
- planner: Full / incremental / skip decision for a symbol
- db: DB initialization and keyed store for raw and derived tables
- quality: Non-fatal data-quality warnings (anomaly flags)
- processor: Batch orchestration, progress reporting, cancellation
- export: Write the five derived tables as CSV files
- data_service: Facade used by scripts
"""
