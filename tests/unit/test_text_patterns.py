"""
Unit tests for statement line classification patterns.
"""
import pytest

from ledgerline.services.text_patterns import (
    clean_description,
    is_boilerplate,
    is_closing_balance,
    is_column_header_line,
    is_opening_balance,
    keyword_direction,
    match_header_keyword,
)


class TestBoilerplate:
    """Tests for page furniture detection."""

    @pytest.mark.parametrize("line", [
        "Page 2 of 5",
        "Statement Period: From 01/01/2025 To 31/01/2025",
        "Account Number: 50100123456789",
        "Member FDIC",
        "Total Withdrawals 1,234.00",
        "This is a computer generated statement",
        "For any queries call our toll free number",
        "-------------",
        "",
    ])
    def test_skipped_lines(self, line):
        """Test non-transaction lines are recognized."""
        assert is_boilerplate(line) is True

    @pytest.mark.parametrize("line", [
        "02/01/2025 Salary ACME Corp 200.00 1,200.00",
        "ATM Withdrawal",
        "Opening Balance",
    ])
    def test_data_lines(self, line):
        """Test transaction lines are kept."""
        assert is_boilerplate(line) is False


class TestBalanceMarkers:
    """Tests for opening and closing balance markers."""

    def test_opening_markers(self):
        """Test opening balance wording."""
        assert is_opening_balance("Opening Balance")
        assert is_opening_balance("Balance Brought Forward")
        assert is_opening_balance("Balance B/F")
        assert not is_opening_balance("Closing Balance")

    def test_closing_markers(self):
        """Test closing balance wording."""
        assert is_closing_balance("Closing Balance")
        assert is_closing_balance("Balance carried forward")
        assert not is_closing_balance("Grocery Store")


class TestHeaderKeywords:
    """Tests for column header vocabulary."""

    @pytest.mark.parametrize("cell,role", [
        ("Date", "date"),
        ("Txn Date", "date"),
        ("Value Date", "value_date"),
        ("Particulars", "description"),
        ("Withdrawals", "debit"),
        ("Dr", "debit"),
        ("Deposits", "credit"),
        ("Amount", "amount"),
        ("Balance", "balance"),
        ("Chq No.", "reference"),
    ])
    def test_known_headers(self, cell, role):
        """Test header cells map to roles."""
        assert match_header_keyword(cell) == role

    def test_phrase_must_match_whole_cell(self):
        """Test description text containing a keyword is not a header."""
        assert match_header_keyword("Credit Card Payment") is None
        assert match_header_keyword("12.50") is None

    def test_column_header_line(self):
        """Test a full header row needs a date and two more roles."""
        assert is_column_header_line("Date Description Debit Credit Balance")
        assert is_column_header_line("Txn Date Narration Withdrawals Deposits Balance")
        assert not is_column_header_line("Date Amount")
        assert not is_column_header_line("Salary ACME Corp")


class TestDescriptions:
    """Tests for description clean-up and direction wording."""

    def test_clean_description(self):
        """Test whitespace collapse and abbreviation expansion."""
        assert clean_description("TRF   to  savings") == "Transfer to savings"
        assert clean_description("chq dep") == "Cheque Deposit"

    def test_keyword_direction(self):
        """Test credit wording wins over debit wording."""
        assert keyword_direction("ATM deposit") == "credit"
        assert keyword_direction("ATM Withdrawal") == "debit"
        assert keyword_direction("Salary ACME Corp") == "credit"
        assert keyword_direction("Misc adjustment") is None
