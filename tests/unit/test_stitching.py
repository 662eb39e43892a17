"""
Unit tests for transaction stitching.
"""
from datetime import date
from decimal import Decimal

import pytest

from ledgerline.pipeline.column_reconciler import reconcile_columns
from ledgerline.pipeline.models import (
    AmountSignPolicy,
    ColumnBoundary,
    ColumnType,
    PositionedToken,
    StatementHeader,
)
from ledgerline.pipeline.stitching import (
    BOTH_AMOUNTS_NOTE,
    TransactionStitcher,
    assign_tokens_to_columns,
    split_signed_amount,
)
from ledgerline.pipeline.table_detection import TableDetector, group_tokens_into_lines
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG
from ledgerline.services.numeric_parser import NumericParser

FIVE_COLUMNS = [
    ColumnBoundary(center_x=66, left_edge=40, right_edge=92, inferred_type=ColumnType.DATE),
    ColumnBoundary(center_x=150, left_edge=110, right_edge=190, inferred_type=ColumnType.DESCRIPTION),
    ColumnBoundary(center_x=358, left_edge=344, right_edge=372, inferred_type=ColumnType.DEBIT),
    ColumnBoundary(center_x=436, left_edge=420, right_edge=452, inferred_type=ColumnType.CREDIT),
    ColumnBoundary(center_x=511, left_edge=490, right_edge=532, inferred_type=ColumnType.BALANCE),
]

# Builder's debit edge doubles as the signed amount column
AMOUNT_COLUMNS = [
    FIVE_COLUMNS[0],
    FIVE_COLUMNS[1],
    ColumnBoundary(center_x=358, left_edge=330, right_edge=372, inferred_type=ColumnType.AMOUNT),
    FIVE_COLUMNS[4],
]


def _lines(builder):
    return group_tokens_into_lines(builder.build().all_tokens())


class TestStitchSampleStatement:
    """Tests stitching the detected layout of a full statement."""

    def test_transactions_and_segment(self, sample_statement):
        """Test four rows between the opening and closing markers."""
        detection = TableDetector().detect_tables(sample_statement.pages)
        outcome = reconcile_columns(detection.tables)

        result = TransactionStitcher().stitch(detection.lines, outcome.columns)

        assert len(result.transactions) == 4
        salary = result.transactions[0]
        assert salary.date == date(2025, 1, 2)
        assert salary.description == "Salary ACME Corp"
        assert salary.credit == Decimal("200.00")
        assert salary.debit is None
        assert salary.balance == Decimal("1200.00")
        assert [t.row_index for t in result.transactions] == [0, 1, 2, 3]

        assert len(result.segments) == 1
        segment = result.segments[0]
        assert segment.opening_balance == Decimal("1000.00")
        assert segment.closing_balance == Decimal("1100.00")
        assert segment.opening_inferred is False
        assert segment.closing_inferred is False
        assert segment.pages == (1,)

    def test_boilerplate_lines_skipped(self, sample_statement):
        """Test account block lines never become transactions."""
        detection = TableDetector().detect_tables(sample_statement.pages)
        outcome = reconcile_columns(detection.tables)

        result = TransactionStitcher().stitch(detection.lines, outcome.columns)

        descriptions = " ".join(t.description for t in result.transactions)
        assert "Account" not in descriptions
        assert result.skipped_lines > 0


class TestRowHandling:
    """Tests for continuation lines, cleanup and netting."""

    @pytest.fixture
    def stitcher(self) -> TransactionStitcher:
        return TransactionStitcher()

    def test_continuation_joined(self, stitcher, statement_builder):
        """Test a wrapped description joins the row above."""
        statement_builder.row("03/01/2025", "UPI Payment", debit="250.00", balance="750.00")
        statement_builder.continuation("Swiggy Bangalore")
        statement_builder.row("04/01/2025", "Grocery Store", debit="50.00", balance="700.00")

        result = stitcher.stitch(_lines(statement_builder), FIVE_COLUMNS)

        assert [t.description for t in result.transactions] == [
            "UPI Payment Swiggy Bangalore",
            "Grocery Store",
        ]

    def test_continuation_not_carried_across_pages(self, stitcher, statement_builder):
        """Test a text line at the top of the next page is not joined."""
        statement_builder.row("03/01/2025", "UPI Payment", debit="250.00", balance="750.00")
        statement_builder.new_page().continuation("Swiggy Bangalore")

        result = stitcher.stitch(_lines(statement_builder), FIVE_COLUMNS)

        assert result.transactions[0].description == "UPI Payment"
        assert result.warnings == ["Unattached description text on page 2: 'Swiggy Bangalore'"]

    def test_continuation_after_tall_gap(self, stitcher, statement_builder):
        """Test a wrapped line set well below its row is still joined."""
        statement_builder.row("03/01/2025", "UPI Payment", debit="250.00", balance="750.00")
        statement_builder.space(25).continuation("Swiggy Bangalore")
        statement_builder.row("04/01/2025", "Grocery Store", debit="50.00", balance="700.00")

        result = stitcher.stitch(_lines(statement_builder), FIVE_COLUMNS)

        assert [t.description for t in result.transactions] == [
            "UPI Payment Swiggy Bangalore",
            "Grocery Store",
        ]
        assert result.warnings == []

    def test_undated_row_with_amount(self, stitcher, statement_builder):
        """Test a row printed under the previous date is kept, undated."""
        statement_builder.row("03/01/2025", "UPI Payment", debit="250.00", balance="750.00")
        statement_builder.row(None, "Bank Charges", debit="5.00", balance="745.00")

        result = stitcher.stitch(_lines(statement_builder), FIVE_COLUMNS)

        assert [t.description for t in result.transactions] == ["UPI Payment", "Bank Charges"]
        assert result.transactions[1].date is None
        assert result.transactions[1].debit == Decimal("5.00")

    def test_abbreviations_expanded(self, stitcher, statement_builder):
        """Test bank abbreviations in descriptions."""
        statement_builder.row("03/01/2025", "NEFT TRF ACME", credit="100.00", balance="1,100.00")

        result = stitcher.stitch(_lines(statement_builder), FIVE_COLUMNS)

        assert result.transactions[0].description == "NEFT Transfer ACME"

    def test_both_sides_netted(self, stitcher, statement_builder):
        """Test a row printing debit and credit keeps only the net."""
        statement_builder.row("03/01/2025", "Reversal", debit="50.00", credit="20.00", balance="970.00")

        transaction = stitcher.stitch(_lines(statement_builder), FIVE_COLUMNS).transactions[0]

        assert transaction.debit == Decimal("30.00")
        assert transaction.credit is None
        assert BOTH_AMOUNTS_NOTE in transaction.notes

    def test_inferred_balances_without_markers(self, stitcher, statement_builder):
        """Test opening and closing come from the first and last balances."""
        statement_builder.row("02/01/2025", "Salary", credit="200.00", balance="1,200.00")
        statement_builder.row("05/01/2025", "ATM Withdrawal", debit="50.00", balance="1,150.00")

        segment = stitcher.stitch(_lines(statement_builder), FIVE_COLUMNS).segments[0]

        assert segment.opening_balance == Decimal("1000.00")
        assert segment.opening_inferred is True
        assert segment.closing_balance == Decimal("1150.00")
        assert segment.closing_inferred is True

    def test_markers_split_segments(self, stitcher, statement_builder):
        """Test each opening/closing pair becomes its own segment."""
        (
            statement_builder
            .row("01/01/2025", "Opening Balance", balance="1,000.00")
            .row("02/01/2025", "Salary", credit="100.00", balance="1,100.00")
            .row("31/01/2025", "Closing Balance", balance="1,100.00")
            .row("01/01/2025", "Opening Balance", balance="500.00")
            .row("03/01/2025", "ATM Withdrawal", debit="50.00", balance="450.00")
            .row("31/01/2025", "Closing Balance", balance="450.00")
        )

        result = stitcher.stitch(_lines(statement_builder), FIVE_COLUMNS)

        assert len(result.segments) == 2
        assert result.segments[1].opening_balance == Decimal("500.00")
        assert result.segments[1].closing_balance == Decimal("450.00")
        assert [t.row_index for t in result.transactions] == [0, 1]

    def test_yearless_dates_across_new_year(self, stitcher, statement_builder):
        """Test the statement period supplies the right year."""
        header = StatementHeader(
            statement_period_from=date(2024, 12, 1),
            statement_period_to=date(2025, 1, 31),
        )
        statement_builder.row("28 Dec", "Grocery Store", debit="50.00", balance="950.00")
        statement_builder.row("02 Jan", "Salary", credit="500.00", balance="1,450.00")

        result = stitcher.stitch(_lines(statement_builder), FIVE_COLUMNS, header)

        assert [t.date for t in result.transactions] == [date(2024, 12, 28), date(2025, 1, 2)]

    def test_no_columns(self, stitcher, statement_builder):
        """Test nothing to stitch against."""
        statement_builder.row("02/01/2025", "Salary", credit="200.00", balance="1,200.00")

        result = stitcher.stitch(_lines(statement_builder), [])

        assert result.transactions == []
        assert result.warnings == ["No column layout to stitch against"]


class TestSignedAmountColumn:
    """Tests for single amount columns."""

    def test_sign_decides_side_in_signed_column(self, statement_builder):
        """Test negatives are debits and positives credits when the column is signed."""
        statement_builder.row("03/01/2025", "ATM Withdrawal", debit="-50.00", balance="950.00")
        statement_builder.row("04/01/2025", "Transfer In", debit="200.00", balance="1,150.00")

        transactions = TransactionStitcher().stitch(_lines(statement_builder), AMOUNT_COLUMNS).transactions

        assert transactions[0].debit == Decimal("50.00")
        assert transactions[0].credit is None
        assert transactions[1].credit == Decimal("200.00")
        assert transactions[1].debit is None
        assert transactions[0].raw_amount == "-50.00"

    def test_amounts_never_negative(self, statement_builder):
        """Test every stitched row has at most one non-negative side."""
        statement_builder.row("03/01/2025", "Card Purchase", debit="(75.00)", balance="925.00")
        statement_builder.row("04/01/2025", "Refund", debit="25.00", balance="950.00")
        statement_builder.row("05/01/2025", "Fee", debit="5.00-", balance="945.00")

        transactions = TransactionStitcher().stitch(_lines(statement_builder), AMOUNT_COLUMNS).transactions

        assert len(transactions) == 3
        for transaction in transactions:
            assert not (transaction.debit is not None and transaction.credit is not None)
            assert (transaction.debit or Decimal("0")) >= 0
            assert (transaction.credit or Decimal("0")) >= 0

    def test_negative_is_credit_policy(self, statement_builder):
        """Test card statements where negatives are refunds."""
        config = DEFAULT_CONFIG.with_overrides(amount_sign_policy=AmountSignPolicy.NEGATIVE_IS_CREDIT)
        statement_builder.row("03/01/2025", "Amazon Refund", debit="-40.00", balance="60.00")

        transaction = TransactionStitcher(config).stitch(_lines(statement_builder), AMOUNT_COLUMNS).transactions[0]

        assert transaction.credit == Decimal("40.00")


class TestSplitSignedAmount:
    """Tests for split_signed_amount policies."""

    @pytest.fixture
    def parser(self) -> NumericParser:
        return NumericParser()

    def test_auto_uses_markers_first(self, parser):
        """Test CR/DR markers beat the description."""
        assert split_signed_amount(parser.parse("45.00 CR"), "ATM Withdrawal", AmountSignPolicy.AUTO) == (
            None, Decimal("45.00"),
        )
        assert split_signed_amount(parser.parse("45.00 DR"), "Salary", AmountSignPolicy.AUTO) == (
            Decimal("45.00"), None,
        )

    def test_auto_uses_sign(self, parser):
        """Test an explicit minus is a debit."""
        assert split_signed_amount(parser.parse("-45.00"), "Salary", AmountSignPolicy.AUTO) == (
            Decimal("45.00"), None,
        )

    def test_auto_falls_back_to_keywords(self, parser):
        """Test unsigned amounts in an unsigned column use description words."""
        assert split_signed_amount(parser.parse("45.00"), "Salary", AmountSignPolicy.AUTO) == (
            None, Decimal("45.00"),
        )
        assert split_signed_amount(parser.parse("45.00"), "Misc", AmountSignPolicy.AUTO) == (
            Decimal("45.00"), None,
        )

    def test_fixed_policies(self, parser):
        """Test the non-automatic policies."""
        negative = parser.parse("(45.00)")
        plain = parser.parse("45.00")

        assert split_signed_amount(negative, "", AmountSignPolicy.NEGATIVE_IS_DEBIT) == (Decimal("45.00"), None)
        assert split_signed_amount(plain, "", AmountSignPolicy.NEGATIVE_IS_DEBIT) == (None, Decimal("45.00"))
        assert split_signed_amount(negative, "", AmountSignPolicy.NEGATIVE_IS_CREDIT) == (None, Decimal("45.00"))
        assert split_signed_amount(plain, "", AmountSignPolicy.SUFFIX_MARKERS) == (Decimal("45.00"), None)
        assert split_signed_amount(plain, "Salary", AmountSignPolicy.KEYWORDS) == (None, Decimal("45.00"))

    def test_zero_and_empty(self, parser):
        """Test no amount means neither side."""
        assert split_signed_amount(parser.parse("0.00"), "", AmountSignPolicy.AUTO) == (None, None)
        assert split_signed_amount(parser.parse(""), "", AmountSignPolicy.AUTO) == (None, None)


class TestAssignTokens:
    """Tests for assign_tokens_to_columns."""

    def test_nearest_column_for_stray_token(self):
        """Test a token between columns goes to the nearest center."""
        token = PositionedToken(text="Ltd", x0=192, x1=207, top=0, bottom=10, page=1)

        cells = assign_tokens_to_columns([token], FIVE_COLUMNS)

        assert cells[1] == [token]
        assert sum(len(c) for c in cells) == 1
