import os
import sys
import datetime as dt

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from seasonality_pipeline.planner import FULL, INCREMENTAL, SKIP, RecalculationPlan, plan, subtract_years

LAST = dt.date(2024, 6, 14)


def test_new_symbol_is_full():
    result = plan('NIFTY', None, [dt.date(2024, 1, 1)], aggregate_tables_empty=True)
    assert result == RecalculationPlan(FULL, None, 'no existing data')


def test_newer_rows_are_incremental_with_one_year_lookback():
    result = plan('NIFTY', LAST, [dt.date(2024, 6, 13), dt.date(2024, 6, 17)], aggregate_tables_empty=False)
    assert result.mode == INCREMENTAL
    assert result.from_date == dt.date(2023, 6, 14)
    assert result.context_start == dt.date(2022, 1, 1)


def test_newer_rows_win_over_empty_tables_and_force():
    result = plan('NIFTY', LAST, [dt.date(2024, 6, 17)], aggregate_tables_empty=True, force=True)
    assert result.mode == INCREMENTAL


def test_empty_calculated_tables_trigger_full():
    result = plan('NIFTY', LAST, [LAST], aggregate_tables_empty=True)
    assert result == RecalculationPlan(FULL, None, 'calculated tables empty')


def test_force_without_new_rows_is_full():
    result = plan('NIFTY', LAST, [], aggregate_tables_empty=False, force=True)
    assert result == RecalculationPlan(FULL, None, 'forced')


def test_nothing_new_is_skip():
    result = plan('NIFTY', LAST, [dt.date(2024, 1, 2), LAST], aggregate_tables_empty=False)
    assert result.mode == SKIP
    assert result.context_start is None


def test_custom_lookback():
    result = plan('NIFTY', LAST, [dt.date(2024, 7, 1)], aggregate_tables_empty=False, lookback_years=3)
    assert result.from_date == dt.date(2021, 6, 14)


def test_subtract_years_leap_day():
    assert subtract_years(dt.date(2024, 2, 29), 1) == dt.date(2023, 2, 28)
    assert subtract_years(dt.date(2024, 3, 1), 1) == dt.date(2023, 3, 1)


def test_derived_rows_behind_stored_bars_rebuild_from_derived_date():
    result = plan('NIFTY', LAST, [LAST], aggregate_tables_empty=False, last_derived_date=dt.date(2024, 3, 28))
    assert result.mode == INCREMENTAL
    assert result.from_date == dt.date(2023, 3, 28)
    assert result.reason == 'derived rows end 2024-03-28, stored bars end 2024-06-14'


def test_new_rows_with_lagging_derived_rows_start_earlier():
    result = plan('NIFTY', LAST, [dt.date(2024, 6, 17)], aggregate_tables_empty=False,
                  last_derived_date=dt.date(2024, 3, 28))
    assert result.mode == INCREMENTAL
    assert result.from_date == dt.date(2023, 3, 28)


def test_derived_rows_in_sync_still_skip():
    result = plan('NIFTY', LAST, [LAST], aggregate_tables_empty=False, last_derived_date=LAST)
    assert result.mode == SKIP


def test_force_wins_over_lagging_derived_rows():
    result = plan('NIFTY', LAST, [], aggregate_tables_empty=False, force=True, last_derived_date=dt.date(2024, 1, 2))
    assert result == RecalculationPlan(FULL, None, 'forced')
