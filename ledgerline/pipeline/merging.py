"""
Merging of several processed statements into one document.

Used by batch mode: segments keep their own balance chains, transactions
are optionally tagged with their source file and sorted by date, and the
date sequence is checked for gaps between statements.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import structlog

from ledgerline.pipeline.balance import generate_audit_flags
from ledgerline.pipeline.confidence import aggregate_confidence
from ledgerline.pipeline.models import (
    ConflictReport,
    OverallValidation,
    ParsedTransaction,
    Segment,
    StandardizedDocument,
    StatementHeader,
    ValidationStatus,
)
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG, PipelineConfig

logger = structlog.get_logger(__name__)


class GapHandling(str, Enum):
    WARN = "warn"
    IGNORE = "ignore"
    FLAG = "flag"


@dataclass
class MergeOptions:
    """How to combine documents."""
    sort_by_date: bool = True
    add_source_column: bool = True
    check_continuity: bool = True
    handle_gaps: GapHandling = GapHandling.WARN


@dataclass(frozen=True)
class DateGap:
    start: date
    end: date
    days: int

    @property
    def message(self) -> str:
        return f"{self.days} day gap detected between {self.start.isoformat()} and {self.end.isoformat()}"


@dataclass
class MergeResult:
    document: StandardizedDocument
    warnings: List[str] = field(default_factory=list)
    gaps: List[DateGap] = field(default_factory=list)
    date_range: Optional[Tuple[date, date]] = None


def _sort_key(position: int, transaction: ParsedTransaction) -> Tuple:
    # Undated rows go last; ties keep file order
    if transaction.date is None:
        return (1, date.max, position)
    return (0, transaction.date, position)


def find_date_gaps(transactions: Sequence[ParsedTransaction], threshold_days: int) -> List[DateGap]:
    """Report gaps longer than `threshold_days` between consecutive distinct dates."""
    dates = sorted({t.date for t in transactions if t.date is not None})
    gaps: List[DateGap] = []
    for previous, current in zip(dates, dates[1:]):
        days = (current - previous).days
        if days > threshold_days:
            gaps.append(DateGap(start=previous, end=current, days=days))
    return gaps


def merge_documents(
    documents: Sequence[StandardizedDocument],
    options: Optional[MergeOptions] = None,
    config: Optional[PipelineConfig] = None,
) -> MergeResult:
    """
    Merge processed statements into one StandardizedDocument.

    Args:
        documents: Documents in file order.
        options: Sorting, tagging and continuity options.
        config: Pipeline thresholds (uses `gap_threshold_days`).

    Returns:
        MergeResult with the merged document, warnings, gaps and date range.
    """
    options = options or MergeOptions()
    config = config or DEFAULT_CONFIG
    warnings: List[str] = []

    # Transactions in file order, segment by segment
    entries: List[ParsedTransaction] = []
    source_segments: List[Segment] = []
    for doc_index, document in enumerate(documents):
        for segment in document.segments:
            source_segments.append(segment)
            for transaction in segment.transactions:
                if options.add_source_column and document.source_file_name:
                    transaction = transaction.with_updates(source_file_name=document.source_file_name)
                entries.append(transaction)
        for warning in document.warnings:
            warnings.append(f"{document.source_file_name or f'File {doc_index + 1}'}: {warning}")

    order = list(range(len(entries)))
    if options.sort_by_date:
        order.sort(key=lambda position: _sort_key(position, entries[position]))

    gaps: List[DateGap] = []
    flagged_dates = set()
    if options.check_continuity and options.handle_gaps != GapHandling.IGNORE:
        gaps = find_date_gaps(entries, config.gap_threshold_days)
        for gap in gaps:
            warnings.append(gap.message)
        if options.handle_gaps == GapHandling.FLAG:
            flagged_dates = {gap.end for gap in gaps}

    renumbered = {}
    for new_index, position in enumerate(order):
        transaction = entries[position].with_updates(row_index=new_index)
        if transaction.date in flagged_dates:
            transaction = transaction.with_note("Follows a gap in statement dates")
            if transaction.validation_status != ValidationStatus.ERROR:
                transaction = transaction.with_updates(validation_status=ValidationStatus.WARNING)
        renumbered[position] = transaction

    merged_transactions = [renumbered[position] for position in order]

    segments: List[Segment] = []
    position = 0
    for segment in source_segments:
        count = len(segment.transactions)
        rows = tuple(renumbered[p] for p in range(position, position + count))
        position += count
        segments.append(dataclasses.replace(segment, index=len(segments), transactions=rows))

    dates = [t.date for t in merged_transactions if t.date is not None]
    date_range = (min(dates), max(dates)) if dates else None

    merged = StandardizedDocument(
        segments=segments,
        raw_transactions=merged_transactions,
        extracted_header=_merge_headers(documents, date_range),
        total_pages=sum(d.total_pages for d in documents),
        overall_validation=_merge_validation([d.overall_validation for d in documents]),
        table_metrics=[m for d in documents for m in d.table_metrics],
        column_layout=list(documents[0].column_layout) if documents else [],
        conflict_report=ConflictReport(
            conflicts=[c for d in documents for c in d.conflict_report.conflicts],
            missing_roles=sorted({r for d in documents for r in d.conflict_report.missing_roles}),
            warnings=[w for d in documents for w in d.conflict_report.warnings],
        ),
        confidence_summary=aggregate_confidence(merged_transactions, config),
        audit_flags=generate_audit_flags(segments),
        warnings=list(warnings),
    )

    logger.info(
        "Documents merged",
        documents=len(documents),
        transactions=len(merged_transactions),
        segments=len(segments),
        gaps=len(gaps),
    )
    return MergeResult(document=merged, warnings=warnings, gaps=gaps, date_range=date_range)


def _merge_headers(
    documents: Sequence[StandardizedDocument],
    date_range: Optional[Tuple[date, date]],
) -> StatementHeader:
    if not documents:
        return StatementHeader()
    header = documents[0].extracted_header
    starts = [d.extracted_header.statement_period_from for d in documents if d.extracted_header.statement_period_from]
    ends = [d.extracted_header.statement_period_to for d in documents if d.extracted_header.statement_period_to]
    period_from = min(starts) if starts else (date_range[0] if date_range else None)
    period_to = max(ends) if ends else (date_range[1] if date_range else None)
    return dataclasses.replace(header, statement_period_from=period_from, statement_period_to=period_to)


def _merge_validation(verdicts: List[OverallValidation]) -> OverallValidation:
    if any(v == OverallValidation.INVALID for v in verdicts):
        return OverallValidation.INVALID
    if verdicts and all(v == OverallValidation.VALID for v in verdicts):
        return OverallValidation.VALID
    return OverallValidation.UNCHECKED
