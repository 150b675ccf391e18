"""Unit tests for invoice date normalization."""

from datetime import date

import pytest

from invoice_ingest.accounting.dates import normalize_date, parse_date


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2024-03-07", "2024/03/07"),
        ("2024/3/7", "2024/03/07"),
        ("2024-03-07T10:15:00Z", "2024/03/07"),
        ("03/07/2024", "2024/03/07"),
        ("3-7-2024", "2024/03/07"),
        ("21/03/2024", "2024/03/21"),
        ("03/21/2024", "2024/03/21"),
        ("07.03.2024", "2024/03/07"),
        ("March 7, 2024", "2024/03/07"),
        ("7 March 2024", "2024/03/07"),
        ("Mar 7 2024", "2024/03/07"),
        ("  2024-03-07  ", "2024/03/07"),
    ],
)
def test_normalize_date_formats(raw: str, expected: str) -> None:
    assert normalize_date(raw) == expected


def test_ambiguous_date_reads_month_first() -> None:
    """05/06/2024 is May 6th, not June 5th."""
    assert normalize_date("05/06/2024") == "2024/05/06"


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_missing_date_is_empty(raw: str | None) -> None:
    assert normalize_date(raw) == ""


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("n/a", "n/a"),
        ("  upon receipt ", "upon receipt"),
        ("2024-02-30", "2024-02-30"),
        ("13/13/2024", "13/13/2024"),
        ("30", "30"),
        ("12", "12"),
        ("March 7", "March 7"),
        (" Mar 7 ", "Mar 7"),
    ],
)
def test_unparseable_date_is_returned_trimmed(raw: str, expected: str) -> None:
    assert normalize_date(raw) == expected


def test_parse_date_returns_calendar_date() -> None:
    assert parse_date("2024-12-31") == date(2024, 12, 31)
    assert parse_date("no date here") is None
    assert parse_date("March 7") is None
    assert parse_date("March 2024") == date(2024, 3, 1)
