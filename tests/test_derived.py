import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import numpy as np
import pandas as pd

from seasonality_pipeline.aggregation import DAILY, EXPIRY_WEEKLY, MONDAY_WEEKLY, MONTHLY, YEARLY, aggregate
from seasonality_pipeline.derived import calculate_all, period_counter, round_half_up


def _values(series):
    return [None if pd.isna(v) else v for v in series]


def _frames(dates, closes):
    df = pd.DataFrame(
        {
            'open': closes,
            'high': closes,
            'low': closes,
            'close': closes,
            'volume': [1.0] * len(closes),
            'open_interest': [0.0] * len(closes),
        },
        index=pd.DatetimeIndex(pd.to_datetime(dates), name='date'),
    )
    return calculate_all(aggregate(df))


def test_round_half_up():
    assert round_half_up(2.345) == 2.35
    assert round_half_up(-0.985) == -0.99
    assert round_half_up(1.0) == 1.0
    assert np.isnan(round_half_up(None))
    assert np.isnan(round_half_up(float('nan')))


def test_period_counter_tri_state():
    keys = [(2024, 1), (2024, 1), (2024, 2), (2024, 2), (2024, 3)]
    assert period_counter(keys) == [None, None, 1, 2, 1]
    assert period_counter([]) == []


def test_daily_returns():
    daily = _frames(['2024-01-01', '2024-01-02', '2024-01-03'], [100.0, 102.0, 101.0])[DAILY]
    assert _values(daily['return_points']) == [None, 2.0, -1.0]
    assert _values(daily['return_percentage']) == [None, 2.0, -0.98]
    assert _values(daily['positive_day']) == [None, True, False]


def test_trading_and_calendar_day_counters():
    daily = _frames(['2024-01-30', '2024-01-31', '2024-02-01', '2024-02-02'], [1.0, 2.0, 3.0, 4.0])[DAILY]
    assert _values(daily['calendar_month_day']) == [30, 31, 1, 2]
    assert _values(daily['trading_month_day']) == [None, None, 1, 2]
    assert _values(daily['even_trading_month_day']) == [None, None, False, True]
    assert _values(daily['trading_year_day']) == [None, None, None, None]
    assert _values(daily['calendar_year_day']) == [30, 31, 32, 33]


def test_trading_year_day_resets_on_year_change():
    daily = _frames(['2023-12-28', '2023-12-29', '2024-01-02', '2024-01-03'], [1.0, 2.0, 3.0, 4.0])[DAILY]
    assert _values(daily['trading_year_day']) == [None, None, 1, 2]
    assert _values(daily['trading_month_day']) == [None, None, 1, 2]


def test_week_numbers_chain():
    dates = pd.bdate_range('2024-01-22', '2024-02-16')
    frames = _frames(dates, [float(i + 1) for i in range(len(dates))])
    weekly = frames[MONDAY_WEEKLY]
    assert list(weekly.index.strftime('%Y-%m-%d')) == [
        '2024-01-22', '2024-01-29', '2024-02-05', '2024-02-12',
    ]
    assert _values(weekly['week_number_monthly']) == [None, None, 1, 2]
    assert _values(weekly['even_week_number_monthly']) == [None, None, False, True]
    assert _values(weekly['week_number_yearly']) == [None, None, None, None]


def test_weekly_rows_link_enclosing_month_and_year():
    dates = pd.bdate_range('2023-11-01', '2024-02-29')
    frames = _frames(dates, [100.0 + i for i in range(len(dates))])
    weekly = frames[MONDAY_WEEKLY]
    monthly = frames[MONTHLY]
    row = weekly.loc[pd.Timestamp('2024-02-05')]
    feb = monthly.loc[pd.Timestamp('2024-02-01')]
    assert row['monthly_return_points'] == feb['return_points']
    assert row['monthly_return_percentage'] == feb['return_percentage']
    assert bool(row['positive_month']) is True
    assert bool(row['even_month']) is True
    year = frames[YEARLY].loc[pd.Timestamp('2024-01-01')]
    assert row['yearly_return_points'] == year['return_points']


def test_daily_rows_link_weeks_by_anchor():
    dates = pd.bdate_range('2024-01-01', '2024-01-31')
    frames = _frames(dates, [100.0 + (i % 4) for i in range(len(dates))])
    daily = frames[DAILY]

    friday = daily.loc[pd.Timestamp('2024-01-12')]
    assert friday['monday_weekly_date'] == pd.Timestamp('2024-01-08')
    assert friday['expiry_weekly_date'] == pd.Timestamp('2024-01-18')

    monday_week = frames[MONDAY_WEEKLY].loc[pd.Timestamp('2024-01-08')]
    assert friday['monday_weekly_return_points'] == monday_week['return_points']
    assert _values([friday['monday_week_number_monthly']]) == _values([monday_week['week_number_monthly']])

    expiry_week = frames[EXPIRY_WEEKLY].loc[pd.Timestamp('2024-01-18')]
    assert friday['expiry_weekly_return_points'] == expiry_week['return_points']


def test_missing_links_stay_missing():
    daily = _frames(['2024-01-01', '2024-01-02'], [100.0, 101.0])[DAILY]
    assert _values(daily['monthly_return_points']) == [None, None]
    assert _values(daily['positive_month']) == [None, None]
    assert _values(daily['yearly_return_percentage']) == [None, None]


def test_yearly_parity_and_returns():
    yearly = _frames(['2022-06-01', '2023-06-01', '2024-06-03'], [100.0, 110.0, 99.0])[YEARLY]
    assert _values(yearly['even_year']) == [True, False, True]
    assert _values(yearly['return_points']) == [None, 10.0, -11.0]
    assert _values(yearly['return_percentage']) == [None, 10.0, -10.0]
    assert _values(yearly['positive_year']) == [None, True, False]
