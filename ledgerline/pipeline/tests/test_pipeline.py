"""
Tests for the Ledgerline pipeline.

Covers:
- A balanced statement runs through every stage
- Same input, same output
- Unbalanced statements are reported, not rejected
- Pages without a table still produce a document
- Extractor failures are the only unsuccessful runs
- Progress reporting never breaks a run
"""

import dataclasses
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from ledgerline.exceptions import TokenExtractionError
from ledgerline.pipeline.models import (
    ColumnType,
    OverallValidation,
    StageName,
    ValidationStatus,
)
from ledgerline.pipeline.orchestrator import (
    NO_COLUMNS_WARNING,
    PipelineOptions,
    process_document,
    process_tokens,
)


def _without_timing(result) -> dict:
    data = result.to_dict()
    data.pop("total_duration_ms")
    return data


# =============================================================================
# End-to-End Tests
# =============================================================================

class TestBalancedStatement:
    """The January sample: opening 1,000.00, four rows, closing 1,100.00."""

    @pytest.fixture
    def result(self, sample_statement):
        return process_tokens(sample_statement)

    def test_success(self, result):
        assert result.success is True
        assert result.errors == []
        assert result.file_name == "january.pdf"
        assert result.page_count == 1

    def test_transactions(self, result):
        rows = result.document.raw_transactions
        assert [t.description for t in rows] == ["Salary ACME Corp", "ATM Withdrawal", "Grocery Store", "Card Payment"]
        assert [t.signed_amount for t in rows] == [
            Decimal("200.00"), Decimal("-50.00"), Decimal("-30.00"), Decimal("-20.00"),
        ]
        assert rows[0].date == date(2025, 1, 2)
        assert all(t.validation_status == ValidationStatus.VALID for t in rows)
        assert all(t.confidence_score == 100 for t in rows)

    def test_single_valid_segment(self, result):
        document = result.document
        assert document.overall_validation == OverallValidation.VALID
        assert len(document.segments) == 1
        segment = document.segments[0]
        assert segment.opening_balance == Decimal("1000.00")
        assert segment.closing_balance == Decimal("1100.00")
        assert segment.computed_closing == Decimal("1100.00")
        assert document.audit_flags == []

    def test_header(self, result):
        header = result.document.extracted_header
        assert header.bank_name == "HDFC Bank"
        assert header.account_holder == "Jane Doe"
        assert header.account_number_masked == "****6789"
        assert header.statement_period_from == date(2025, 1, 1)
        assert header.statement_period_to == date(2025, 1, 31)

    def test_layout(self, result):
        document = result.document
        assert [c.inferred_type for c in document.column_layout] == [
            ColumnType.DATE, ColumnType.DESCRIPTION, ColumnType.DEBIT, ColumnType.CREDIT, ColumnType.BALANCE,
        ]
        assert document.conflict_report.conflicts == []
        assert len(document.table_metrics) == 1

    def test_stage_sequence(self, result):
        assert [s.stage for s in result.stages] == [
            StageName.UPLOAD,
            StageName.EXTRACT,
            StageName.ANCHOR,
            StageName.STITCH,
            StageName.VALIDATE,
            StageName.OUTPUT,
            StageName.OUTPUT,
        ]
        assert [s.progress for s in result.stages] == [10, 50, 60, 70, 85, 95, 100]

    def test_confidence_summary(self, result):
        summary = result.document.confidence_summary
        assert summary.average == 100.0
        assert summary.grade_distribution["A"] == 4


class TestDeterminism:
    """Same tokens, same document."""

    def test_repeat_runs_identical(self, sample_statement):
        first = process_tokens(sample_statement)
        second = process_tokens(sample_statement)

        assert _without_timing(first) == _without_timing(second)


# =============================================================================
# Reported Problems
# =============================================================================

class TestUnbalancedStatement:
    """A printed balance that disagrees with the rows above it."""

    @pytest.fixture
    def result(self, statement_builder):
        builder = (
            statement_builder
            .text_line("HDFC Bank")
            .header_row()
            .row("01/01/2025", "Opening Balance", balance="1,000.00")
            .row("02/01/2025", "Salary ACME Corp", credit="200.00", balance="1,200.00")
            .row("05/01/2025", "ATM Withdrawal", debit="50.00", balance="1,150.00")
            .row("10/01/2025", "Grocery Store", debit="30.00", balance="1,120.00")
            .row("15/01/2025", "Card Payment", debit="20.00", balance="1,090.00")
            .row("31/01/2025", "Closing Balance", balance="1,090.00")
        )
        return process_tokens(builder.build())

    def test_still_successful(self, result):
        assert result.success is True
        assert result.document.overall_validation == OverallValidation.INVALID

    def test_row_in_error(self, result):
        rows = result.document.raw_transactions
        assert rows[3].validation_status == ValidationStatus.ERROR
        assert result.document.error_transactions == 1

    def test_warnings_and_flags(self, result):
        document = result.document
        assert "Balance check failed for segment(s) 0" in document.warnings
        assert [f.flag_type for f in document.audit_flags] == ["BALANCE_MISMATCH", "SEGMENT_DISCREPANCY"]
        assert document.segments[0].discrepancy == Decimal("10.00")


class TestNoTable:
    """Pages of prose."""

    def test_document_without_rows(self, statement_builder):
        builder = statement_builder.text_line("HDFC Bank").text_line("Thank you for banking with us")

        result = process_tokens(builder.build())

        assert result.success is True
        assert result.document.raw_transactions == []
        assert NO_COLUMNS_WARNING in result.warnings
        assert result.document.extracted_header.bank_name == "HDFC Bank"
        assert result.stages[-1].progress == 100


class TestOcrPages:

    def test_ocr_pages_reported(self, sample_statement):
        pages = [dataclasses.replace(page, used_ocr=True) for page in sample_statement.pages]

        result = process_tokens(dataclasses.replace(sample_statement, pages=pages))

        assert "Pages 1 were read with OCR" in result.warnings


# =============================================================================
# Extraction and Progress
# =============================================================================

class TestProcessDocument:
    """Tests for process_document with the token extractor replaced."""

    @pytest.fixture
    def extractor(self):
        mock = MagicMock()
        with patch("ledgerline.pipeline.orchestrator.get_token_extractor", return_value=mock) as factory:
            mock.factory = factory
            yield mock

    def test_runs_extracted_tokens(self, extractor, sample_statement):
        extractor.extract.return_value = sample_statement

        result = process_document("january.pdf", PipelineOptions(page_workers=2))

        assert result.success is True
        assert result.document.total_transactions == 4
        extractor.factory.assert_called_once_with(ocr_source=None, page_workers=2)

    def test_extractor_failure(self, extractor):
        extractor.extract.side_effect = TokenExtractionError("Could not open PDF", details={"file_name": "x.pdf"})

        result = process_document("x.pdf")

        assert result.success is False
        assert result.document is None
        assert result.errors[0].code == "LDG-200"
        assert result.errors[0].message == "Could not open PDF"
        assert [s.stage for s in result.stages] == [StageName.UPLOAD]

    def test_progress_callback(self, extractor, sample_statement):
        extractor.extract.return_value = sample_statement
        seen = []

        process_document("january.pdf", on_progress=lambda stage: seen.append(stage.progress))

        assert seen == [10, 50, 60, 70, 85, 95, 100]

    def test_failing_callback_ignored(self, extractor, sample_statement):
        extractor.extract.return_value = sample_statement

        def explode(stage):
            raise RuntimeError("listener gone")

        result = process_document("january.pdf", on_progress=explode)

        assert result.success is True
        assert len(result.stages) == 7
