"""
Statement header extraction.

Reads the account block printed above the transaction table: bank name,
account holder, account number, statement period, currency and the
regional branch identifiers (IFSC, sort code, BSB, routing number).
Account numbers never leave this module unmasked.
"""
import re
from datetime import date
from typing import Iterable, List, Optional, Pattern, Tuple

import structlog

from ledgerline.pipeline.models import StatementHeader
from ledgerline.services.date_parser import get_date_parser

logger = structlog.get_logger(__name__)

_STOP = r"(?=\s{2,}|\s+(?:Account|A/C|Branch|IFSC|Customer|CIF|Period|Statement)\b|$)"

ACCOUNT_HOLDER_PATTERNS: List[Pattern] = [
    re.compile(r"Account\s*Holder\s*(?:Name)?\s*:?\s*(.+?)" + _STOP, re.I),
    re.compile(r"Customer\s*Name\s*:?\s*(.+?)" + _STOP, re.I),
    re.compile(r"A/C\s*Name\s*:?\s*(.+?)" + _STOP, re.I),
    re.compile(r"^Name\s*:-?\s*(.+?)" + _STOP, re.I),
    re.compile(r"Account\s+in\s+the\s+name\s+of\s+(.+?)" + _STOP, re.I),
]

ACCOUNT_NUMBER_PATTERNS: List[Pattern] = [
    re.compile(r"(?:Account|A/C)\s*(?:Number|No\.?|#)\s*:?\s*([\dXx*\- ]{6,24}\d)", re.I),
    re.compile(r"Account\s*:?\s*(\d{8,20})", re.I),
]

PERIOD_PATTERNS: List[Pattern] = [
    re.compile(
        r"From\s*:?\s*(\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4})\s*(?:To|[-–])\s*:?\s*(\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4})",
        re.I,
    ),
    re.compile(
        r"Period\s*:?\s*(\d{1,2}[-\s]\w{3,9}[-\s]\d{2,4})\s*(?:to|[-–])\s*(\d{1,2}[-\s]\w{3,9}[-\s]\d{2,4})",
        re.I,
    ),
    re.compile(
        r"(?:Statement\s+)?(?:from|for|period)\s+(\d{1,2}\s+\w{3,9}\s+\d{4})\s+(?:to|-)\s+(\d{1,2}\s+\w{3,9}\s+\d{4})",
        re.I,
    ),
    re.compile(r"(\w{3,9}\s+\d{1,2},\s+\d{4})\s*(?:to|through|[-–])\s*(\w{3,9}\s+\d{1,2},\s+\d{4})", re.I),
    re.compile(r"(\d{4}-\d{2}-\d{2})\s*(?:to|[-–])\s*(\d{4}-\d{2}-\d{2})", re.I),
]

IFSC_PATTERN = re.compile(r"IFS(?:C)?\s*(?:Code)?\s*:?\s*([A-Z]{4}0[A-Z0-9]{6})", re.I)
BRANCH_PATTERN = re.compile(r"(?:Home\s+)?Branch\s*(?:Name)?\s*:\s*(.+?)" + _STOP, re.I)
CUSTOMER_ID_PATTERN = re.compile(r"(?:Customer\s*ID|CIF\s*(?:No\.?|Number)?|Client\s*(?:ID|No\.?))\s*:?\s*(\w+)", re.I)
BSB_PATTERN = re.compile(r"BSB\s*(?:Number|No\.?)?\s*:?\s*(\d{3}[-\s]?\d{3})", re.I)
SORT_CODE_PATTERN = re.compile(r"Sort\s*Code\s*:?\s*(\d{2}[-\s]?\d{2}[-\s]?\d{2})", re.I)
ROUTING_PATTERN = re.compile(r"(?:Routing|ABA)\s*(?:Number|No\.?)?\s*:?\s*(\d{9})", re.I)

CURRENCY_CODE_PATTERNS: List[Pattern] = [
    re.compile(r"Currency\s*:?\s*([A-Z]{3})\b", re.I),
    re.compile(r"(?:all\s+)?amounts?\s+(?:are\s+)?in\s+([A-Z]{3})\b", re.I),
]
CURRENCY_SYMBOLS = {"₹": "INR", "$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}
KNOWN_CURRENCIES = {"INR", "USD", "EUR", "GBP", "JPY", "AUD", "CAD", "SGD", "CHF",
                    "AED", "KRW", "IDR", "VND", "NZD", "HKD", "ZAR"}

BANK_NAME_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"ICICI\s*Bank", re.I), "ICICI Bank"),
    (re.compile(r"HDFC\s*Bank", re.I), "HDFC Bank"),
    (re.compile(r"State\s*Bank\s*of\s*India", re.I), "State Bank of India"),
    (re.compile(r"Axis\s*Bank", re.I), "Axis Bank"),
    (re.compile(r"Kotak\s*Mahindra", re.I), "Kotak Mahindra Bank"),
    (re.compile(r"Punjab\s*National\s*Bank", re.I), "Punjab National Bank"),
    (re.compile(r"Bank\s*of\s*Baroda", re.I), "Bank of Baroda"),
    (re.compile(r"\bHSBC\b", re.I), "HSBC"),
    (re.compile(r"Barclays", re.I), "Barclays"),
    (re.compile(r"Lloyds", re.I), "Lloyds Bank"),
    (re.compile(r"NatWest", re.I), "NatWest"),
    (re.compile(r"Commonwealth\s*Bank", re.I), "Commonwealth Bank"),
    (re.compile(r"\bANZ\b", re.I), "ANZ Bank"),
    (re.compile(r"Westpac", re.I), "Westpac"),
    (re.compile(r"National\s*Australia\s*Bank", re.I), "NAB"),
    (re.compile(r"\bChase\b", re.I), "Chase"),
    (re.compile(r"Bank\s*of\s*America", re.I), "Bank of America"),
    (re.compile(r"Wells\s*Fargo", re.I), "Wells Fargo"),
    (re.compile(r"Citibank", re.I), "Citibank"),
    (re.compile(r"DBS\s*Bank", re.I), "DBS Bank"),
    (re.compile(r"Standard\s*Chartered", re.I), "Standard Chartered"),
]


def mask_account_number(account_number: Optional[str]) -> Optional[str]:
    """Keep only the last four digits of an account number."""
    if not account_number:
        return None
    digits = re.sub(r"\D", "", account_number)
    if len(digits) < 4:
        return None
    return "****" + digits[-4:]


class HeaderExtractor:
    """Extract a StatementHeader from the text lines of a statement's first page."""

    def __init__(self, day_first: bool = True):
        self._date_parser = get_date_parser()
        self._day_first = day_first

    def extract(self, lines: Iterable[str]) -> StatementHeader:
        """
        Extract header fields.

        Args:
            lines: Text lines, in reading order, from the top of the statement.

        Returns:
            StatementHeader with every field that could be found.
        """
        lines = [" ".join(line.split()) for line in lines if line and line.strip()]
        text = "\n".join(lines)

        period_from, period_to = self._extract_period(lines)
        header = StatementHeader(
            bank_name=self._extract_bank_name(text),
            account_holder=self._first_match(ACCOUNT_HOLDER_PATTERNS, lines, clean=True),
            account_number_masked=mask_account_number(self._first_match(ACCOUNT_NUMBER_PATTERNS, lines)),
            statement_period_from=period_from,
            statement_period_to=period_to,
            currency=self._extract_currency(lines),
            ifsc=self._search(IFSC_PATTERN, lines, upper=True),
            branch=self._search(BRANCH_PATTERN, lines, clean=True),
            customer_id=self._search(CUSTOMER_ID_PATTERN, lines),
            sort_code=self._search(SORT_CODE_PATTERN, lines),
            bsb=self._search(BSB_PATTERN, lines),
            routing_number=self._search(ROUTING_PATTERN, lines),
        )

        logger.debug(
            "Header extracted",
            bank=header.bank_name,
            has_holder=header.account_holder is not None,
            has_account=header.account_number_masked is not None,
            currency=header.currency,
        )
        return header

    def _extract_bank_name(self, text: str) -> Optional[str]:
        for pattern, name in BANK_NAME_PATTERNS:
            if pattern.search(text):
                return name
        return None

    def _extract_period(self, lines: List[str]) -> Tuple[Optional[date], Optional[date]]:
        for pattern in PERIOD_PATTERNS:
            for line in lines:
                match = pattern.search(line)
                if not match:
                    continue
                start = self._date_parser.parse(match.group(1), day_first=self._day_first)
                end = self._date_parser.parse(match.group(2), day_first=self._day_first)
                if start and end:
                    return (start, end) if start <= end else (end, start)
        return None, None

    def _extract_currency(self, lines: List[str]) -> Optional[str]:
        for pattern in CURRENCY_CODE_PATTERNS:
            for line in lines:
                match = pattern.search(line)
                if match and match.group(1).upper() in KNOWN_CURRENCIES:
                    return match.group(1).upper()
        for line in lines:
            if re.search(r"balance", line, re.I):
                for symbol, code in CURRENCY_SYMBOLS.items():
                    if symbol in line:
                        return code
        return None

    def _first_match(self, patterns: List[Pattern], lines: List[str], clean: bool = False) -> Optional[str]:
        for pattern in patterns:
            value = self._search(pattern, lines, clean=clean)
            if value:
                return value
        return None

    def _search(self, pattern: Pattern, lines: List[str], clean: bool = False, upper: bool = False) -> Optional[str]:
        for line in lines:
            match = pattern.search(line)
            if match:
                value = match.group(1).strip()
                if clean:
                    value = re.sub(r"[:\-]+$", "", value).strip()
                if upper:
                    value = value.upper()
                if value:
                    return value
        return None


def get_header_extractor(day_first: bool = True) -> HeaderExtractor:
    """Get HeaderExtractor instance."""
    return HeaderExtractor(day_first=day_first)
