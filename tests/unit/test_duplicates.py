"""
Unit tests for duplicate transaction detection.
"""
from datetime import date
from decimal import Decimal

import pytest

from ledgerline.pipeline.duplicates import DuplicateOptions, detect_duplicates, flag_duplicates
from ledgerline.pipeline.models import ParsedTransaction, ValidationStatus
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG


def _payment(description: str, day: int = 5, amount: str = "250.00", source=None, **kwargs) -> ParsedTransaction:
    return ParsedTransaction(
        date=date(2025, 1, day),
        description=description,
        debit=Decimal(amount),
        source_file_name=source,
        **kwargs,
    )


class TestDetectDuplicates:
    """Tests for detect_duplicates."""

    def test_matches_are_transitive(self):
        """Test A~B and B~C put A, B and C in one group."""
        rows = [
            _payment("UPI Payment Swiggy"),
            _payment("UPI Payment Swiggy Ltd"),
            _payment("UPI Payment Swiggy Ltd Bangalore"),
        ]

        result = detect_duplicates(rows)

        assert len(result.groups) == 1
        assert result.groups[0].transaction_indices == (0, 1, 2)
        assert result.total_flagged == 3

    def test_different_amounts_not_matched(self):
        rows = [_payment("Grocery Store"), _payment("Grocery Store", amount="251.00")]

        assert detect_duplicates(rows).groups == []

    def test_debit_and_credit_not_matched(self):
        """Test a refund of the same amount is not a duplicate."""
        rows = [
            _payment("Grocery Store"),
            ParsedTransaction(date=date(2025, 1, 5), description="Grocery Store", credit=Decimal("250.00")),
        ]

        assert detect_duplicates(rows).groups == []

    def test_dissimilar_descriptions_not_matched(self):
        rows = [_payment("Grocery Store"), _payment("Electricity Bill")]

        assert detect_duplicates(rows).groups == []

    def test_date_tolerance(self):
        """Test rows a day apart match only with a tolerance."""
        rows = [_payment("Grocery Store", day=5), _payment("Grocery Store", day=6)]

        assert detect_duplicates(rows).groups == []

        result = detect_duplicates(rows, DuplicateOptions(date_tolerance_days=1))
        assert result.groups[0].transaction_indices == (0, 1)
        assert "dates within 1 day(s)" in result.groups[0].reason

    def test_undated_rows_ignored(self):
        rows = [
            ParsedTransaction(date=None, description="Fee", debit=Decimal("5.00")),
            ParsedTransaction(date=None, description="Fee", debit=Decimal("5.00")),
        ]

        assert detect_duplicates(rows).groups == []

    def test_cross_file_identical_rows(self):
        """Test an exact repeat across two files is high confidence."""
        rows = [_payment("Grocery Store", source="january.pdf"), _payment("Grocery Store", source="february.pdf")]

        group = detect_duplicates(rows).groups[0]

        assert group.confidence == 1.0
        assert group.source_files == ("february.pdf", "january.pdf")
        assert "across 2 files" in group.reason
        assert "same date" in group.reason

    def test_same_file_repeat_discounted(self):
        """Test repeats inside one file score lower."""
        rows = [_payment("Grocery Store", source="january.pdf"), _payment("Grocery Store", source="january.pdf")]

        group = detect_duplicates(rows).groups[0]

        assert group.confidence == 0.8
        assert "within one file" in group.reason

    def test_disabled(self):
        rows = [_payment("Grocery Store"), _payment("Grocery Store")]

        result = detect_duplicates(rows, DuplicateOptions(enabled=False))

        assert result.groups == []
        assert result.total_flagged == 0

    def test_options_from_config(self):
        config = DEFAULT_CONFIG.with_overrides(duplicate_similarity_threshold=0.9, duplicate_date_tolerance_days=2)

        options = DuplicateOptions.from_config(config, enabled=False)

        assert options.similarity_threshold == 0.9
        assert options.date_tolerance_days == 2
        assert options.enabled is False


class TestFlagDuplicates:
    """Tests for flag_duplicates."""

    @pytest.fixture
    def rows(self):
        return [
            _payment("Grocery Store"),
            _payment("Grocery Store", validation_status=ValidationStatus.ERROR),
            _payment("Electricity Bill", amount="80.00"),
        ]

    def test_members_noted_and_warned(self, rows):
        """Test grouped rows get a note and a warning status."""
        groups = detect_duplicates(rows).groups

        flagged = flag_duplicates(rows, groups)

        assert len(flagged) == 3
        assert "Duplicate group #1" in flagged[0].notes
        assert flagged[0].validation_status == ValidationStatus.WARNING
        assert flagged[1].validation_status == ValidationStatus.ERROR
        assert flagged[2].notes == ()
