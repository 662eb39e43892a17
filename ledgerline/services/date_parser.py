"""
Date parser service for bank-statement transaction dates.

Recognizes the date layouts banks print in the date column:
- ISO: 2025-01-15
- Numeric: 15/01/2025, 15-01-25, 15.01.2025 (day-first by default)
- Written month: 15 Jan 2025, 15-Jan-25, Jan 15, 2025
- Year-less: 15/01, 15 Jan (year taken from the statement period)
"""
import re
from datetime import date
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class DateParser:
    """
    Service for parsing statement dates into `datetime.date`.

    Ambiguous numeric dates follow `day_first`; a component above 12 forces
    the other reading.
    """

    ISO_PATTERN = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})$")
    NUMERIC_PATTERN = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4}|\d{2})$")
    DAY_MONTH_NAME_PATTERN = re.compile(
        r"^(\d{1,2})(?:st|nd|rd|th)?[\s\-]+([A-Za-z]{3,9})\.?(?:[\s\-,]+(\d{4}|\d{2}))?$"
    )
    MONTH_NAME_DAY_PATTERN = re.compile(r"^([A-Za-z]{3,9})\.?\s+(\d{1,2}),?(?:\s+(\d{4}))?$")
    SHORT_NUMERIC_PATTERN = re.compile(r"^(\d{1,2})[/\-](\d{1,2})$")

    MONTH_MAP = {
        "jan": 1, "january": 1,
        "feb": 2, "february": 2,
        "mar": 3, "march": 3,
        "apr": 4, "april": 4,
        "may": 5,
        "jun": 6, "june": 6,
        "jul": 7, "july": 7,
        "aug": 8, "august": 8,
        "sep": 9, "sept": 9, "september": 9,
        "oct": 10, "october": 10,
        "nov": 11, "november": 11,
        "dec": 12, "december": 12,
    }

    MIN_YEAR = 1900
    MAX_YEAR = 2100

    def parse(
        self,
        text: str,
        day_first: bool = True,
        default_year: Optional[int] = None,
    ) -> Optional[date]:
        """
        Parse a date string.

        Args:
            text: Raw date text from the statement.
            day_first: Read 01/02/2025 as 1 February when True.
            default_year: Year for year-less dates such as "15 Jan".

        Returns:
            The parsed date, or None when the text is not a valid date.
        """
        if not text:
            return None
        cleaned = " ".join(text.strip().split())

        match = self.ISO_PATTERN.match(cleaned)
        if match:
            return self._build(int(match.group(1)), int(match.group(2)), int(match.group(3)))

        match = self.NUMERIC_PATTERN.match(cleaned)
        if match:
            first, second = int(match.group(1)), int(match.group(2))
            year = self._expand_year(match.group(3))
            day, month = self._order_day_month(first, second, day_first)
            return self._build(year, month, day)

        match = self.DAY_MONTH_NAME_PATTERN.match(cleaned)
        if match:
            month = self.MONTH_MAP.get(match.group(2).lower())
            year = self._expand_year(match.group(3)) if match.group(3) else default_year
            if month is None or year is None:
                return None
            return self._build(year, month, int(match.group(1)))

        match = self.MONTH_NAME_DAY_PATTERN.match(cleaned)
        if match:
            month = self.MONTH_MAP.get(match.group(1).lower())
            year = int(match.group(3)) if match.group(3) else default_year
            if month is None or year is None:
                return None
            return self._build(year, month, int(match.group(2)))

        match = self.SHORT_NUMERIC_PATTERN.match(cleaned)
        if match and default_year is not None:
            day, month = self._order_day_month(int(match.group(1)), int(match.group(2)), day_first)
            return self._build(default_year, month, day)

        return None

    def looks_like_date(self, text: str) -> bool:
        """True when the text has a date shape, even without a known year."""
        if not text:
            return False
        cleaned = " ".join(text.strip().split())
        return self.parse(cleaned, default_year=2000) is not None

    def _order_day_month(self, first: int, second: int, day_first: bool):
        if day_first:
            if first <= 12 < second:
                return second, first
            return first, second
        if second <= 12 < first:
            return first, second
        return second, first

    def _expand_year(self, year_str: str) -> int:
        year = int(year_str)
        if len(year_str) == 2:
            year += 2000
        return year

    def _build(self, year: int, month: int, day: int) -> Optional[date]:
        if not self.MIN_YEAR <= year <= self.MAX_YEAR:
            return None
        try:
            return date(year, month, day)
        except ValueError:
            return None


# Singleton instance
_date_parser_instance: Optional[DateParser] = None


def get_date_parser() -> DateParser:
    """Get singleton DateParser instance."""
    global _date_parser_instance
    if _date_parser_instance is None:
        _date_parser_instance = DateParser()
    return _date_parser_instance
