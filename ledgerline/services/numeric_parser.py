"""
Numeric parser service for bank-statement amounts.

Handles parsing of amount strings in the formats banks print:
- Currency: $1,234.56, €1.234,56, Rs. 1,00,000.00, 1'234.50 CHF
- Negative: (123.45), -123.45, 123.45-
- Direction markers: 123.45 CR, 123.45 DR, DR 123.45
- Regional grouping: US/UK, European, Indian lakh/crore, Swiss, space
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


class NumberFormat(str, Enum):
    """Thousands/decimal separator convention."""
    US = "us"                # 1,234,567.89
    EUROPEAN = "european"    # 1.234.567,89
    INDIAN = "indian"        # 12,34,567.89
    SWISS = "swiss"          # 1'234'567.89
    SPACE = "space"          # 1 234 567,89


class AmountDirection(str, Enum):
    """Explicit direction marker printed next to an amount."""
    CREDIT = "CR"
    DEBIT = "DR"


@dataclass
class ParsedNumber:
    """Result of parsing a numeric string."""

    value: Optional[Decimal]
    raw_value: str
    confidence: float
    is_negative: bool = False
    currency: Optional[str] = None
    direction: Optional[AmountDirection] = None
    has_decimal: bool = False


class NumericParser:
    """
    Parser for statement amount values.

    The parser never decides debit versus credit on its own. It reports the
    sign and any CR/DR marker it saw; the stitcher applies the sign policy.
    """

    CURRENCY_SYMBOLS = ("Rs.", "Rs", "INR", "USD", "EUR", "GBP", "AUD", "CAD",
                        "CHF", "SGD", "JPY", "$", "€", "£", "¥", "₹")

    PARENTHESES_PATTERN = re.compile(r"^\s*\(([^)]+)\)\s*$")
    DIRECTION_SUFFIX_PATTERN = re.compile(r"\s*(?<![A-Za-z])(CR|DR|Cr|Dr|cr|dr)\.?\s*$")
    DIRECTION_PREFIX_PATTERN = re.compile(r"^\s*(CR|DR|Cr|Dr)\.?\s+")
    DIGITS_PATTERN = re.compile(r"^[\d.,]+$")
    INDIAN_PATTERN = re.compile(r"^\d{1,2}(,\d{2})+,\d{3}(\.\d{1,2})?$")
    AMOUNT_PATTERN = re.compile(
        r"^[\(\-+]?\s*(?:[\$€£¥₹]|Rs\.?\s?)?\s*\d{1,3}(?:[,.'\s]?\d{2,3})*[.,]\d{2}\s*\)?-?"
        r"(?:\s*(?:CR|DR|Cr|Dr))?$"
    )

    def parse(self, value_str: str, number_format: Optional[NumberFormat] = None) -> ParsedNumber:
        """
        Parse a string value into a numeric result.

        Args:
            value_str: The string to parse.
            number_format: Known separator convention, or None to infer it.

        Returns:
            ParsedNumber with parsed value and metadata.
        """
        if not value_str or not value_str.strip():
            return ParsedNumber(value=None, raw_value=value_str or "", confidence=0.0)

        original = value_str
        value_str = value_str.strip()

        # Direction markers
        direction = None
        suffix = self.DIRECTION_SUFFIX_PATTERN.search(value_str)
        if suffix:
            direction = AmountDirection(suffix.group(1).upper())
            value_str = value_str[:suffix.start()].strip()
        else:
            prefix = self.DIRECTION_PREFIX_PATTERN.match(value_str)
            if prefix:
                direction = AmountDirection(prefix.group(1).upper())
                value_str = value_str[prefix.end():].strip()

        # Parentheses notation
        is_negative = False
        paren_match = self.PARENTHESES_PATTERN.match(value_str)
        if paren_match:
            value_str = paren_match.group(1).strip()
            is_negative = True

        # Leading or trailing sign
        if value_str.startswith("-"):
            is_negative = True
            value_str = value_str[1:].strip()
        elif value_str.startswith("+"):
            value_str = value_str[1:].strip()
        if value_str.endswith("-"):
            is_negative = True
            value_str = value_str[:-1].strip()

        currency = None
        value_str, currency = self._strip_currency(value_str)
        if value_str.startswith("-"):
            is_negative = True
            value_str = value_str[1:].strip()

        parsed_value, confidence = self._parse_number(value_str, number_format)

        if parsed_value is not None and is_negative:
            parsed_value = -parsed_value

        return ParsedNumber(
            value=parsed_value,
            raw_value=original,
            confidence=confidence,
            is_negative=is_negative,
            currency=currency,
            direction=direction,
            has_decimal=bool(re.search(r"[.,]\d{1,2}$", value_str)),
        )

    def looks_like_amount(self, text: str) -> bool:
        """True for money-shaped text: digits with a two-digit decimal part."""
        return bool(self.AMOUNT_PATTERN.match(text.strip()))

    def _strip_currency(self, value_str: str) -> Tuple[str, Optional[str]]:
        for symbol in self.CURRENCY_SYMBOLS:
            if value_str.startswith(symbol):
                return value_str[len(symbol):].strip(), symbol.rstrip(".")
            if value_str.endswith(symbol):
                return value_str[:-len(symbol)].strip(), symbol.rstrip(".")
        return value_str, None

    def _parse_number(
        self,
        value_str: str,
        number_format: Optional[NumberFormat] = None,
    ) -> Tuple[Optional[Decimal], float]:
        """
        Parse a cleaned numeric string into a Decimal.

        Args:
            value_str: Cleaned string containing only the number.
            number_format: Separator convention, inferred when None.

        Returns:
            Tuple of (parsed Decimal or None, confidence score).
        """
        if not value_str:
            return None, 0.0

        value_str = value_str.replace(" ", "").replace("\u00a0", "").replace("'", "")
        if not self.DIGITS_PATTERN.match(value_str):
            return None, 0.0

        try:
            if number_format in (NumberFormat.EUROPEAN, NumberFormat.SPACE):
                return Decimal(value_str.replace(".", "").replace(",", ".")), 1.0
            if number_format in (NumberFormat.US, NumberFormat.INDIAN, NumberFormat.SWISS):
                return Decimal(value_str.replace(",", "")), 1.0

            comma_count = value_str.count(",")
            period_count = value_str.count(".")

            if comma_count == 0 and period_count <= 1:
                return Decimal(value_str), 1.0

            if self.INDIAN_PATTERN.match(value_str):
                return Decimal(value_str.replace(",", "")), 0.95

            if comma_count >= 1 and period_count == 0:
                if self._is_thousand_separator(value_str, ","):
                    return Decimal(value_str.replace(",", "")), 0.95
                # European decimal comma
                return Decimal(value_str.replace(",", ".")), 0.85

            if comma_count >= 1 and period_count >= 1:
                if value_str.rfind(".") > value_str.rfind(","):
                    return Decimal(value_str.replace(",", "")), 0.95
                return Decimal(value_str.replace(".", "").replace(",", ".")), 0.9

            # Multiple periods: European thousands without decimals, or noise
            if self._is_thousand_separator(value_str, "."):
                return Decimal(value_str.replace(".", "")), 0.8
            return None, 0.0

        except (InvalidOperation, ValueError) as e:
            logger.warning("Failed to parse number", value=value_str, error=str(e))
            return None, 0.0

    def _is_thousand_separator(self, value_str: str, separator: str) -> bool:
        parts = value_str.split(separator)
        if len(parts) < 2:
            return False
        return all(len(part) == 3 and part.isdigit() for part in parts[1:])

    def detect_number_format(self, samples: List[str]) -> NumberFormat:
        """
        Detect the separator convention from a sample of amount strings.

        Indian grouping wins when it covers more than 30% of the samples;
        otherwise decimal-comma samples have to outnumber decimal-point ones.
        """
        cleaned = [re.sub(r"[^\d,.\s']", "", s).strip() for s in samples]
        cleaned = [s for s in cleaned if s]
        if not cleaned:
            return NumberFormat.US

        indian = comma_decimal = dot_decimal = 0
        apostrophe = space = 0
        for sample in cleaned:
            if re.match(r"^\d{1,2}(,\d{2})+,\d{3}\.\d{1,2}$", sample):
                indian += 1
                dot_decimal += 1
            elif re.match(r"^\d{1,3}('\d{3})+\.\d{2}$", sample):
                apostrophe += 1
                dot_decimal += 1
            elif re.match(r"^\d{1,3}(\s\d{3})+,\d{2}$", sample):
                space += 1
                comma_decimal += 1
            elif re.match(r"^\d{1,3}(\.\d{3})*,\d{2}$", sample) or re.match(r"^\d+,\d{2}$", sample):
                comma_decimal += 1
            elif re.match(r"^\d{1,3}(,\d{3})*\.\d{2}$", sample) or re.match(r"^\d+\.\d{2}$", sample):
                dot_decimal += 1

        if indian > len(cleaned) * 0.3:
            return NumberFormat.INDIAN
        if comma_decimal > dot_decimal:
            return NumberFormat.SPACE if space > comma_decimal / 2 else NumberFormat.EUROPEAN
        if apostrophe > dot_decimal / 2:
            return NumberFormat.SWISS
        return NumberFormat.US


# Singleton instance
_parser_instance: Optional[NumericParser] = None


def get_numeric_parser() -> NumericParser:
    """Get singleton NumericParser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = NumericParser()
    return _parser_instance
