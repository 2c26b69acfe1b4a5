import io
import os
import sys
import datetime as dt

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import pytest

from seasonality_pipeline.exceptions import ParseError, ValidationError
from seasonality_pipeline.transform import (
    CanonicalRecord,
    deduplicate_by_date,
    group_by_symbol,
    normalize_column_name,
    parse_number,
    prevalidate_rows,
    read_csv,
    records_to_frame,
    transform_dataset,
    transform_row,
    validate_required_columns,
    validate_rows,
)

HEADERS = ['Date', 'Ticker', 'Open', 'High', 'Low', 'Close', 'Volume', 'OI']


def _row(date='02-01-2024', ticker='nifty', open_='100', high='105', low='99', close='104', volume='1,000', oi='5'):
    return dict(zip(HEADERS, [date, ticker, open_, high, low, close, volume, oi]))


def test_normalize_column_name_synonyms():
    assert normalize_column_name('Open Interest') == 'open_interest'
    assert normalize_column_name('open_interest') == 'open_interest'
    assert normalize_column_name('OI') == 'open_interest'
    assert normalize_column_name(' Ticker ') == 'symbol'
    assert normalize_column_name('Trade Date') == 'date'
    assert normalize_column_name('CLOSE') == 'close'


def test_parse_number():
    assert parse_number('1,234.50') == 1234.5
    assert parse_number(' 7 ') == 7.0
    assert parse_number('') is None
    assert parse_number('abc') is None
    assert parse_number(None) is None


def test_missing_required_columns():
    with pytest.raises(ValidationError) as exc:
        validate_required_columns(['Date', 'Open'])
    assert exc.value.errors == ['missing column close']


def test_prevalidate_reports_row_numbers():
    rows = [
        _row(),
        _row(close='-3'),
        _row(date='garbage'),
        _row(ticker=''),
    ]
    errors = prevalidate_rows(rows, HEADERS)
    assert errors == [
        'Row 3: Invalid close price "-3" (must be a positive number)',
        'Row 4: Invalid date format "garbage"',
        'Row 5: Missing ticker/symbol',
    ]


def test_prevalidate_default_symbol_covers_missing_ticker():
    assert prevalidate_rows([_row(ticker='')], HEADERS, default_symbol='NIFTY') == []


def test_prevalidate_caps_reported_messages():
    rows = [_row(date='') for _ in range(60)]
    errors = prevalidate_rows(rows, HEADERS, max_errors=50)
    assert len(errors) == 51
    assert errors[49] == 'Row 51: Missing date value'
    assert errors[-1] == '... 10 more error(s) not shown'


def test_validate_rows_counts_past_the_message_cap():
    rows = [_row(close='') for _ in range(500)]
    validation = validate_rows(rows, HEADERS, max_errors=50)
    assert validation.error_count == 500
    assert len(validation.errors) == 51


def test_validate_rows_exactly_at_cap_has_no_summary_line():
    rows = [_row(close='') for _ in range(50)]
    validation = validate_rows(rows, HEADERS, max_errors=50)
    assert validation.error_count == 50
    assert len(validation.errors) == 50


def test_transform_row_repairs_missing_prices():
    record = transform_row(_row(open_='0', high='', low='n/a', close='250'), HEADERS)
    assert record == CanonicalRecord(
        date=dt.date(2024, 1, 2), symbol='NIFTY', open=250.0, high=250.0, low=250.0,
        close=250.0, volume=1000.0, open_interest=5.0,
    )


def test_transform_row_uses_default_symbol():
    record = transform_row(_row(ticker=''), HEADERS, default_symbol='banknifty')
    assert record.symbol == 'BANKNIFTY'


def test_transform_row_raises_parse_error():
    with pytest.raises(ParseError) as exc:
        transform_row(_row(close=''), HEADERS, row_number=7)
    assert exc.value.row == 7
    assert str(exc.value).startswith('Row 7:')


def test_transform_dataset_skips_invalid_rows():
    result = transform_dataset([_row(), _row(date='bad'), _row(date='03-01-2024')], HEADERS)
    assert result.total == 3
    assert result.skipped == 1
    assert len(result.records) == 2
    assert result.errors == ['Row 3: Invalid or missing date']


def test_transform_dataset_strict_mode_raises():
    with pytest.raises(ParseError):
        transform_dataset([_row(date='bad')], HEADERS, skip_invalid=False)


def test_deduplicate_keeps_last_and_sorts():
    first = CanonicalRecord(dt.date(2024, 1, 3), 'X', 1, 1, 1, 1)
    second = CanonicalRecord(dt.date(2024, 1, 2), 'X', 2, 2, 2, 2)
    replacement = CanonicalRecord(dt.date(2024, 1, 3), 'X', 3, 3, 3, 3)
    assert deduplicate_by_date([first, second, replacement]) == [second, replacement]


def test_group_by_symbol():
    records = transform_dataset(
        [_row(ticker='a'), _row(ticker='b'), _row(ticker='a', date='03-01-2024')], HEADERS
    ).records
    groups = group_by_symbol(records)
    assert sorted(groups) == ['A', 'B']
    assert [r.date for r in groups['A']] == [dt.date(2024, 1, 2), dt.date(2024, 1, 3)]


def test_records_to_frame():
    records = transform_dataset([_row(date='03-01-2024'), _row()], HEADERS).records
    df = records_to_frame(records)
    assert list(df.columns) == ['open', 'high', 'low', 'close', 'volume', 'open_interest']
    assert df.index.is_monotonic_increasing
    assert df.index.name == 'date'
    assert records_to_frame([]).empty


def test_read_csv_keeps_strings():
    buf = io.StringIO('Date, Close ,Ticker\n02-01-2024,"1,234.5",abc\n')
    headers, rows = read_csv(buf)
    assert headers == ['Date', 'Close', 'Ticker']
    assert rows == [{'Date': '02-01-2024', 'Close': '1,234.5', 'Ticker': 'abc'}]
