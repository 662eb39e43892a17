"""
Transaction stitching.

Turns grouped text lines plus the canonical column layout into ledger rows:
assigns tokens to columns, classifies each line (transaction, continuation,
balance marker, noise), folds the lines into transactions and splits them
into balance segments.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from functools import reduce
from typing import Dict, List, Optional, Tuple

import structlog

from ledgerline.pipeline.models import (
    NUMERIC_COLUMN_TYPES,
    AmountSignPolicy,
    ColumnBoundary,
    ColumnType,
    ParsedTransaction,
    PositionedToken,
    Segment,
    StatementHeader,
)
from ledgerline.pipeline.table_detection import TextLine
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG, PipelineConfig
from ledgerline.services.date_parser import get_date_parser
from ledgerline.services.numeric_parser import (
    AmountDirection,
    NumberFormat,
    ParsedNumber,
    get_numeric_parser,
)
from ledgerline.services.text_patterns import (
    clean_description,
    is_boilerplate,
    is_closing_balance,
    is_column_header_line,
    is_opening_balance,
    keyword_direction,
)

logger = structlog.get_logger(__name__)

BOTH_AMOUNTS_NOTE = "Both debit and credit printed; netted"


class RowKind(str, Enum):
    TRANSACTION = "transaction"
    CONTINUATION = "continuation"
    OPENING = "opening"
    CLOSING = "closing"
    SKIP = "skip"


@dataclass(frozen=True)
class ClassifiedRow:
    """One line after column assignment and parsing."""
    kind: RowKind
    line: TextLine
    row_date: Optional[date] = None
    value_date: Optional[date] = None
    description: str = ""
    reference: Optional[str] = None
    debit: Optional[Decimal] = None
    credit: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    raw_amount: Optional[str] = None
    marker_amount: Optional[Decimal] = None
    notes: Tuple[str, ...] = ()
    from_ocr: bool = False
    token_confidence: float = 1.0
    balance_confidence: float = 1.0


@dataclass(frozen=True)
class _SegmentDraft:
    opening: Optional[Decimal] = None
    closing: Optional[Decimal] = None
    transactions: Tuple[ParsedTransaction, ...] = ()


@dataclass(frozen=True)
class _FoldState:
    """Accumulator: the transaction still receiving continuation lines plus finished segments."""
    open_transaction: Optional[ParsedTransaction] = None
    open_line: Optional[TextLine] = None
    segments: Tuple[_SegmentDraft, ...] = (_SegmentDraft(),)
    finalized_count: int = 0
    unattached: Tuple[TextLine, ...] = ()


@dataclass
class StitchResult:
    """Stitcher output."""
    transactions: List[ParsedTransaction]
    segments: List[Segment]
    warnings: List[str] = field(default_factory=list)
    skipped_lines: int = 0
    number_format: NumberFormat = NumberFormat.US


def assign_tokens_to_columns(
    tokens: List[PositionedToken],
    columns: List[ColumnBoundary],
) -> List[List[PositionedToken]]:
    """
    Bucket tokens into canonical columns.

    A token goes to the column containing its center; when several (or
    none) contain it, the column with the nearest center wins.
    """
    cells: List[List[PositionedToken]] = [[] for _ in columns]
    if not columns:
        return cells
    for token in tokens:
        x = token.center_x
        containing = [i for i, c in enumerate(columns) if c.contains(x)]
        candidates = containing or list(range(len(columns)))
        best = min(candidates, key=lambda i: (abs(columns[i].center_x - x), i))
        cells[best].append(token)
    return cells


def split_signed_amount(
    parsed: ParsedNumber,
    description: str,
    policy: AmountSignPolicy,
    column_is_signed: bool = False,
) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    """
    Split one amount-column value into (debit, credit).

    AUTO tries, in order: CR/DR markers, the sign (when the column carries
    signed values), description keywords, and finally treats it as a debit.
    """
    if parsed.value is None or parsed.value == 0:
        return None, None
    magnitude = abs(parsed.value)

    def by_marker() -> Optional[str]:
        if parsed.direction == AmountDirection.CREDIT:
            return "credit"
        if parsed.direction == AmountDirection.DEBIT:
            return "debit"
        return None

    if policy == AmountSignPolicy.SUFFIX_MARKERS:
        side = by_marker() or "debit"
    elif policy == AmountSignPolicy.NEGATIVE_IS_DEBIT:
        side = "debit" if parsed.is_negative else "credit"
    elif policy == AmountSignPolicy.NEGATIVE_IS_CREDIT:
        side = "credit" if parsed.is_negative else "debit"
    elif policy == AmountSignPolicy.KEYWORDS:
        side = keyword_direction(description) or "debit"
    else:
        side = by_marker()
        if side is None and (parsed.is_negative or column_is_signed):
            side = "debit" if parsed.is_negative else "credit"
        if side is None:
            side = keyword_direction(description) or "debit"

    return (magnitude, None) if side == "debit" else (None, magnitude)


class TransactionStitcher:
    """
    Builds ParsedTransaction rows and balance segments from text lines.

    Wrapped descriptions are joined onto the transaction above; opening and
    closing balance markers delimit segments.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self._config = config or DEFAULT_CONFIG
        self._date_parser = get_date_parser()
        self._numeric_parser = get_numeric_parser()

    def stitch(
        self,
        lines: List[TextLine],
        columns: List[ColumnBoundary],
        header: Optional[StatementHeader] = None,
    ) -> StitchResult:
        """
        Stitch lines into transactions and segments.

        Args:
            lines: Text lines of every page, in reading order.
            columns: Canonical column layout from the reconciler.
            header: Statement header; its period supplies missing years.

        Returns:
            StitchResult with transactions in document order.
        """
        header = header or StatementHeader()
        if not columns:
            return StitchResult(transactions=[], segments=[], warnings=["No column layout to stitch against"])

        cell_rows = [self._cells(line, columns) for line in lines]
        number_format = self._numeric_parser.detect_number_format(
            [text for cells in cell_rows for role, text in cells.items() if role in NUMERIC_COLUMN_TYPES and text]
        )
        amount_signed = any(
            self._numeric_parser.parse(cells.get(ColumnType.AMOUNT, ""), number_format).is_negative
            for cells in cell_rows
            if cells.get(ColumnType.AMOUNT)
        )

        rows = [
            self._classify(line, columns, cells, header, number_format, amount_signed)
            for line, cells in zip(lines, cell_rows)
        ]
        state = reduce(self._step, rows, _FoldState())
        state = self._finalize_open(state)

        segments = self._build_segments(state.segments)
        transactions = [t for segment in segments for t in segment.transactions]
        skipped = sum(1 for row in rows if row.kind == RowKind.SKIP)

        warnings: List[str] = []
        if not transactions:
            warnings.append("No transactions found in table rows")
        for line in state.unattached:
            warnings.append(f"Unattached description text on page {line.page}: '{line.text}'")

        logger.info(
            "Stitching complete",
            lines=len(lines),
            transactions=len(transactions),
            segments=len(segments),
            skipped_lines=skipped,
            number_format=number_format.value,
            unattached_lines=len(state.unattached),
        )
        return StitchResult(
            transactions=transactions,
            segments=segments,
            warnings=warnings,
            skipped_lines=skipped,
            number_format=number_format,
        )

    # =========================================================================
    # Row Classification
    # =========================================================================

    def _cells(self, line: TextLine, columns: List[ColumnBoundary]) -> Dict[ColumnType, str]:
        cells: Dict[ColumnType, List[str]] = {}
        for column, tokens in zip(columns, assign_tokens_to_columns(line.tokens, columns)):
            if tokens:
                words = [t.text for t in sorted(tokens, key=lambda t: t.x0)]
                cells.setdefault(column.inferred_type, []).extend(words)
        return {role: " ".join(words) for role, words in cells.items()}

    def _classify(
        self,
        line: TextLine,
        columns: List[ColumnBoundary],
        cells: Dict[ColumnType, str],
        header: StatementHeader,
        number_format: NumberFormat,
        amount_signed: bool,
    ) -> ClassifiedRow:
        text = line.text
        opening = is_opening_balance(text)
        closing = is_closing_balance(text)
        if opening != closing:
            kind = RowKind.OPENING if opening else RowKind.CLOSING
            return ClassifiedRow(kind=kind, line=line, marker_amount=self._marker_amount(cells, text, number_format))
        if opening or is_column_header_line(text):
            return ClassifiedRow(kind=RowKind.SKIP, line=line)

        row_date = self._parse_date(cells.get(ColumnType.DATE, ""), header)
        if row_date is None and is_boilerplate(text):
            return ClassifiedRow(kind=RowKind.SKIP, line=line)

        description = cells.get(ColumnType.DESCRIPTION, "")
        balance_parsed = self._numeric_parser.parse(cells.get(ColumnType.BALANCE, ""), number_format)
        balance = self._signed_balance(balance_parsed)

        debit, credit, raw_amount, notes = self._resolve_amounts(cells, description, number_format, amount_signed)
        has_amount = debit is not None or credit is not None

        balance_tokens = [
            t for column, tokens in zip(columns, assign_tokens_to_columns(line.tokens, columns))
            if column.inferred_type == ColumnType.BALANCE for t in tokens
        ]

        if (row_date is not None and (has_amount or balance is not None)) or (row_date is None and has_amount):
            return ClassifiedRow(
                kind=RowKind.TRANSACTION,
                line=line,
                row_date=row_date,
                value_date=self._parse_date(cells.get(ColumnType.VALUE_DATE, ""), header),
                description=description,
                reference=cells.get(ColumnType.REFERENCE) or None,
                debit=debit,
                credit=credit,
                balance=balance,
                raw_amount=raw_amount,
                notes=notes,
                from_ocr=any(t.from_ocr for t in line.tokens),
                token_confidence=min(t.confidence for t in line.tokens),
                balance_confidence=min((t.confidence for t in balance_tokens), default=1.0),
            )

        other_text = any(cells.get(role) for role in NUMERIC_COLUMN_TYPES | {ColumnType.DATE, ColumnType.VALUE_DATE})
        if description and row_date is None and balance is None and not other_text:
            return ClassifiedRow(kind=RowKind.CONTINUATION, line=line, description=description)

        return ClassifiedRow(kind=RowKind.SKIP, line=line)

    def _parse_date(self, text: str, header: StatementHeader) -> Optional[date]:
        if not text:
            return None
        period_from = header.statement_period_from
        period_to = header.statement_period_to
        default_year = period_from.year if period_from else (period_to.year if period_to else None)
        parsed = self._date_parser.parse(text, day_first=self._config.day_first, default_year=default_year)
        if parsed is not None and period_from and period_to and period_to.year != period_from.year:
            # Year-less dates in a period spanning new year
            if parsed < period_from:
                parsed = self._date_parser.parse(text, day_first=self._config.day_first, default_year=period_to.year)
        return parsed

    def _signed_balance(self, parsed: ParsedNumber) -> Optional[Decimal]:
        if parsed.value is None:
            return None
        if parsed.direction == AmountDirection.DEBIT:
            return -abs(parsed.value)
        return parsed.value

    def _resolve_amounts(
        self,
        cells: Dict[ColumnType, str],
        description: str,
        number_format: NumberFormat,
        amount_signed: bool,
    ) -> Tuple[Optional[Decimal], Optional[Decimal], Optional[str], Tuple[str, ...]]:
        """Return (debit, credit, raw text, notes) with both amounts non-negative."""
        policy = self._config.amount_sign_policy
        amount_text = cells.get(ColumnType.AMOUNT, "")
        if amount_text:
            parsed = self._numeric_parser.parse(amount_text, number_format)
            debit, credit = split_signed_amount(parsed, description, policy, amount_signed)
            if debit is not None or credit is not None:
                return debit, credit, amount_text, ()

        debit_text = cells.get(ColumnType.DEBIT, "")
        credit_text = cells.get(ColumnType.CREDIT, "")
        debit_total = Decimal("0")
        credit_total = Decimal("0")
        seen = False

        for text, column_side in ((debit_text, "debit"), (credit_text, "credit")):
            if not text:
                continue
            parsed = self._numeric_parser.parse(text, number_format)
            if parsed.value is None or parsed.value == 0:
                continue
            seen = True
            side = column_side
            if parsed.direction == AmountDirection.CREDIT:
                side = "credit"
            elif parsed.direction == AmountDirection.DEBIT:
                side = "debit"
            elif column_side == "credit" and parsed.is_negative and policy != AmountSignPolicy.NEGATIVE_IS_CREDIT:
                side = "debit"
            if side == "debit":
                debit_total += abs(parsed.value)
            else:
                credit_total += abs(parsed.value)

        if not seen:
            return None, None, None, ()

        raw = " / ".join(t for t in (debit_text, credit_text) if t)
        notes: Tuple[str, ...] = ()
        if debit_total and credit_total:
            notes = (BOTH_AMOUNTS_NOTE,)
        net = credit_total - debit_total
        if net > 0:
            return None, net, raw, notes
        if net < 0:
            return -net, None, raw, notes
        return None, None, raw, notes

    def _marker_amount(self, cells: Dict[ColumnType, str], text: str, number_format: NumberFormat) -> Optional[Decimal]:
        """Balance carried on a marker line: the balance cell, else the last amount on the line."""
        balance_text = cells.get(ColumnType.BALANCE, "")
        if balance_text:
            value = self._signed_balance(self._numeric_parser.parse(balance_text, number_format))
            if value is not None:
                return value
        for word in reversed(text.split()):
            parsed = self._numeric_parser.parse(word, number_format)
            if parsed.value is not None and parsed.has_decimal:
                return self._signed_balance(parsed)
        return None

    # =========================================================================
    # Fold
    # =========================================================================

    def _step(self, state: _FoldState, row: ClassifiedRow) -> _FoldState:
        if row.kind == RowKind.TRANSACTION:
            state = self._finalize_open(state)
            transaction = ParsedTransaction(
                date=row.row_date,
                description=row.description,
                debit=row.debit,
                credit=row.credit,
                balance=row.balance,
                reference=row.reference,
                value_date=row.value_date,
                notes=row.notes,
                page=row.line.page,
                from_ocr=row.from_ocr,
                token_confidence=row.token_confidence,
                balance_confidence=row.balance_confidence,
                raw_amount=row.raw_amount,
            )
            return dataclasses.replace(state, open_transaction=transaction, open_line=row.line)

        if row.kind == RowKind.CONTINUATION:
            if state.open_transaction is None or not self._same_page(state.open_line, row.line):
                return dataclasses.replace(state, unattached=state.unattached + (row.line,))
            joined = f"{state.open_transaction.description} {row.description}".strip()
            return dataclasses.replace(
                state,
                open_transaction=state.open_transaction.with_updates(description=joined),
                open_line=row.line,
            )

        if row.kind == RowKind.OPENING:
            state = self._finalize_open(state)
            current = state.segments[-1]
            if current.transactions or current.opening is not None:
                segments = state.segments + (_SegmentDraft(opening=row.marker_amount),)
            else:
                segments = state.segments[:-1] + (dataclasses.replace(current, opening=row.marker_amount),)
            return dataclasses.replace(state, segments=segments)

        if row.kind == RowKind.CLOSING:
            state = self._finalize_open(state)
            current = state.segments[-1]
            closed = dataclasses.replace(current, closing=row.marker_amount)
            return dataclasses.replace(state, segments=state.segments[:-1] + (closed, _SegmentDraft()))

        return state

    def _same_page(self, previous: Optional[TextLine], line: TextLine) -> bool:
        return previous is not None and previous.page == line.page

    def _finalize_open(self, state: _FoldState) -> _FoldState:
        if state.open_transaction is None:
            return state
        transaction = state.open_transaction.with_updates(
            description=clean_description(state.open_transaction.description),
            row_index=state.finalized_count,
        )
        current = state.segments[-1]
        updated = dataclasses.replace(current, transactions=current.transactions + (transaction,))
        return _FoldState(
            open_transaction=None,
            open_line=None,
            segments=state.segments[:-1] + (updated,),
            finalized_count=state.finalized_count + 1,
            unattached=state.unattached,
        )

    # =========================================================================
    # Segments
    # =========================================================================

    def _build_segments(self, drafts: Tuple[_SegmentDraft, ...]) -> List[Segment]:
        segments: List[Segment] = []
        for draft in drafts:
            if not draft.transactions:
                continue
            opening = draft.opening
            opening_inferred = False
            if opening is None:
                first = draft.transactions[0]
                if first.balance is not None:
                    opening = first.balance - (first.credit or Decimal("0")) + (first.debit or Decimal("0"))
                    opening_inferred = True
            closing = draft.closing
            closing_inferred = False
            if closing is None:
                last_balance = draft.transactions[-1].balance
                if last_balance is not None:
                    closing = last_balance
                    closing_inferred = True
            segments.append(
                Segment(
                    index=len(segments),
                    transactions=draft.transactions,
                    opening_balance=opening,
                    closing_balance=closing,
                    opening_inferred=opening_inferred,
                    closing_inferred=closing_inferred,
                    pages=tuple(sorted({t.page for t in draft.transactions if t.page is not None})),
                )
            )
        return segments


def get_transaction_stitcher(config: Optional[PipelineConfig] = None) -> TransactionStitcher:
    """Get TransactionStitcher instance."""
    return TransactionStitcher(config=config)
