"""Normalization of free-form invoice dates to the accounting format ``yyyy/mm/dd``.

Disambiguation order:
1. ``yyyy-mm-dd`` / ``yyyy/mm/dd`` (anything after the day is ignored, so ISO
   timestamps work)
2. ``mm/dd/yyyy`` or ``dd/mm/yyyy``: a first component above 12 must be the
   day, a second component above 12 must be the day; when both are 12 or
   less the American month-first reading wins
3. ``dd.mm.yyyy`` is always day-month-year
4. anything else that contains a four-digit year goes to dateutil's generic
   parser; yearless text such as ``March 7`` or ``30`` is not a date

Unparseable input is returned trimmed rather than dropped.
"""

import logging
import re
from datetime import date, datetime

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

_YEAR_FIRST = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})")
_YEAR_LAST = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})")
_DOTTED = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})")
_YEAR_TOKEN = re.compile(r"(?<!\d)\d{4}(?!\d)")

# Fills a missing day or month only; text without a four-digit year is rejected.
_PARSE_DEFAULT = datetime(2000, 1, 1)


def _calendar_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(text: str) -> date | None:
    """Parse a trimmed date string using the disambiguation rules above.

    Args:
        text: Date text as extracted by OCR

    Returns:
        Calendar date, or None when the text is not a valid date
    """
    match = _YEAR_FIRST.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _calendar_date(year, month, day)

    match = _YEAR_LAST.match(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        if first > 12:
            day, month = first, second
        else:
            # second > 12 or genuinely ambiguous: month-first
            month, day = first, second
        return _calendar_date(year, month, day)

    match = _DOTTED.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        return _calendar_date(year, month, day)

    if not _YEAR_TOKEN.search(text):
        return None

    try:
        return date_parser.parse(text, default=_PARSE_DEFAULT).date()
    except (ValueError, OverflowError):
        return None


def normalize_date(value: str | None) -> str:
    """Normalize a date string to ``yyyy/mm/dd``.

    Args:
        value: Free-form date string (None and blank allowed)

    Returns:
        ``yyyy/mm/dd``; empty string for missing input; the trimmed input
        when it cannot be parsed
    """
    if value is None:
        return ""
    trimmed = str(value).strip()
    if not trimmed:
        return ""

    parsed = parse_date(trimmed)
    if parsed is None:
        logger.warning(f'Unable to parse date: "{trimmed}". Returning original value.')
        return trimmed

    return f"{parsed.year:04d}/{parsed.month:02d}/{parsed.day:02d}"
