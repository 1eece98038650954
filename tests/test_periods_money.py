from datetime import date

import pytest

from money import format_currency, parse_amount
from periods import add_months, month_end, parse_iso_date, resolve_period


@pytest.mark.parametrize(
    "raw,cents",
    [
        ("1 234,50", 123450),
        ("99.9 kr", 9990),
        (12.345, 1235),
        ("0,005", 1),
        (100, 10000),
    ],
)
def test_parse_amount_to_cents(raw, cents):
    assert parse_amount(raw) == cents


def test_parse_amount_rejects_garbage_and_negatives():
    with pytest.raises(ValueError):
        parse_amount("twelve")
    with pytest.raises(ValueError):
        parse_amount("-5")
    assert parse_amount("-5", allow_negative=True) == -500


def test_format_currency_swedish_style():
    assert format_currency(1234.56) == "1 234,56 kr"
    assert format_currency(1234.56, include_cents=False) == "1 235 kr"


def test_month_helpers():
    assert month_end(2024, 2) == date(2024, 2, 29)
    assert month_end(2025, 12) == date(2025, 12, 31)
    assert add_months(date(2025, 1, 31), -1) == date(2024, 12, 1)
    assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 1)


@pytest.mark.parametrize("value", ["2025-1-01", "01/02/2025", "", "2025-02-30"])
def test_parse_iso_date_rejects_bad_input(value):
    with pytest.raises(ValueError, match="YYYY-MM-DD"):
        parse_iso_date(value)


def test_resolve_period_slugs():
    today = date(2025, 6, 18)
    assert resolve_period(None, None, None, today=today) is None

    last = resolve_period("last_month", None, None, today=today)
    assert (last.start, last.end) == (date(2025, 5, 1), date(2025, 5, 31))

    this = resolve_period("this_month", None, None, today=today)
    assert (this.start, this.end) == (date(2025, 6, 1), date(2025, 6, 30))

    year = resolve_period("last_12_months", None, None, today=today)
    assert year.start == date(2024, 7, 1)

    with pytest.raises(ValueError):
        resolve_period("custom", "2025-06-01", None, today=today)
