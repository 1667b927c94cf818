from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from statement_intake.modules.extraction.normalize import clean_text, normalize_date, parse_amount


@pytest.mark.parametrize(
    "raw",
    ["2024-03-05T10:00:00Z", "03/05/2024", "2024-03-05", "March 5, 2024"],
)
def test_normalize_date_variants(raw):
    assert normalize_date(raw) == "2024-03-05"


def test_normalize_date_unparseable_is_none():
    assert normalize_date("not a date") is None
    assert normalize_date("") is None
    assert normalize_date(None) is None
    assert normalize_date("2024-02-30") is None


def test_normalize_date_swaps_impossible_month():
    assert normalize_date("25/12/2024") == "2024-12-25"
    assert normalize_date("1/2/24") == "2024-01-02"


def test_normalize_date_native_and_serial_values():
    assert normalize_date(datetime(2024, 3, 5, 14, 30)) == "2024-03-05"
    assert normalize_date(date(2024, 3, 5)) == "2024-03-05"
    assert normalize_date(45356, allow_serial=True) == "2024-03-05"
    assert normalize_date("45356", allow_serial=True) == "2024-03-05"
    # Bare numbers from model output are not dates.
    assert normalize_date(45356) is None
    assert normalize_date("20240305") == "2024-03-05"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (25.99, Decimal("25.99")),
        (-25.99, Decimal("-25.99")),
        (1000, Decimal("1000")),
        ("$1,234.56", Decimal("1234.56")),
        ("1.234,56 €", Decimal("1234.56")),
        ("(45.00)", Decimal("-45.00")),
        ("45.00-", Decimal("-45.00")),
        ("-B/. 12.50", Decimal("-12.50")),
        ("12,5", Decimal("12.5")),
        ("1.5e3", Decimal("1500")),
        ("1E3", Decimal("1000")),
        ("-2.5E-1", Decimal("-0.25")),
        ("$ 1.5e3", Decimal("1500")),
        ("USD 12.50", Decimal("12.50")),
        ("12.50 pab", Decimal("12.50")),
    ],
)
def test_parse_amount_accepts_numbers_and_strings(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "abc",
        "",
        None,
        True,
        float("nan"),
        float("inf"),
        "-12,000,000,000",
        1_000_000_000.01,
        [1],
        "1e10",
        "12x5",
        "1.5 e 3 units",
    ],
)
def test_parse_amount_rejects_garbage_and_absurd_magnitudes(raw):
    assert parse_amount(raw) is None


def test_parse_amount_limit_is_inclusive():
    assert parse_amount("1000000000") == Decimal("1000000000")


def test_clean_text_collapses_whitespace_and_truncates():
    assert clean_text("  Super   99 \n Panama ") == "Super 99 Panama"
    assert clean_text("   ") is None
    assert clean_text("x" * 20, max_len=5) == "xxxxx"
