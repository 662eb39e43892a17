"""
Column reconciliation across table regions.

Different pages (or regions of one page) can disagree on what a column
holds. Columns are grouped by horizontal position and each group's role is
decided by a vote, one vote per region, with a fixed tie-break chain so the
same input always gives the same layout.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog

from ledgerline.pipeline.models import (
    UNIQUE_COLUMN_TYPES,
    ColumnBoundary,
    ColumnConflict,
    ColumnType,
    ConflictReport,
    TableMetrics,
)
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG, PipelineConfig

logger = structlog.get_logger(__name__)


@dataclass
class ReconciliationOutcome:
    """Canonical layout plus the diagnostics that produced it."""
    columns: List[ColumnBoundary]
    report: ConflictReport = field(default_factory=ConflictReport)

    @property
    def column_types(self) -> List[ColumnType]:
        return [c.inferred_type for c in self.columns]


@dataclass
class _Member:
    region_index: int
    region_size: int
    column: ColumnBoundary


@dataclass
class _PositionGroup:
    members: List[_Member] = field(default_factory=list)

    @property
    def center(self) -> float:
        return sum(m.column.center_x for m in self.members) / len(self.members)

    def has_region(self, region_index: int) -> bool:
        return any(m.region_index == region_index for m in self.members)


def reconcile_columns(
    tables: List[TableMetrics],
    config: Optional[PipelineConfig] = None,
) -> ReconciliationOutcome:
    """
    Produce one canonical column layout from all detected tables.

    Args:
        tables: Detector output, one entry per region.
        config: Pipeline thresholds (uses `column_merge_tolerance`).

    Returns:
        ReconciliationOutcome with left-to-right columns and a ConflictReport.
    """
    config = config or DEFAULT_CONFIG
    report = ConflictReport()

    groups = _group_by_position(tables, config.column_merge_tolerance)
    if not groups:
        report.missing_roles = ["date", "balance", "debit", "credit"]
        report.warnings.append("No columns to reconcile")
        return ReconciliationOutcome(columns=[], report=report)

    columns: List[ColumnBoundary] = []
    taken_unique = set()

    for group in groups:
        ranking = _rank_types(group)
        winner = ranking[0]

        if len(ranking) > 1:
            report.conflicts.append(
                ColumnConflict(
                    position=round(group.center, 2),
                    competing_types=tuple((t, _votes(group, t)) for t in ranking),
                    region_indices=tuple(sorted({m.region_index for m in group.members})),
                    resolved_type=winner,
                    resolution=_describe_resolution(group, ranking),
                )
            )

        resolved = winner
        if winner in UNIQUE_COLUMN_TYPES and winner in taken_unique:
            resolved = next(
                (t for t in ranking[1:] if not (t in UNIQUE_COLUMN_TYPES and t in taken_unique)),
                ColumnType.UNKNOWN,
            )
            report.warnings.append(
                f"Column at x={group.center:.1f} also reads as {winner.value}, "
                f"which is already assigned; using {resolved.value}"
            )
        if resolved in UNIQUE_COLUMN_TYPES:
            taken_unique.add(resolved)

        columns.append(_canonical_column(group, resolved))

    columns = _promote_description(columns, report)
    report.missing_roles = _missing_roles(columns)
    for role in report.missing_roles:
        report.warnings.append(f"No {role} column detected")

    logger.info(
        "Column reconciliation complete",
        regions=len(tables),
        columns=[c.inferred_type.value for c in columns],
        conflicts=len(report.conflicts),
        missing_roles=report.missing_roles,
    )
    return ReconciliationOutcome(columns=columns, report=report)


def _group_by_position(tables: List[TableMetrics], tolerance: float) -> List[_PositionGroup]:
    """Group columns whose centers fall within tolerance; one member per region."""
    members = [
        _Member(region_index=index, region_size=len(table.columns), column=column)
        for index, table in enumerate(tables)
        for column in table.columns
    ]
    members.sort(key=lambda m: (m.column.center_x, m.region_index))

    groups: List[_PositionGroup] = []
    for member in members:
        if groups:
            current = groups[-1]
            close = abs(member.column.center_x - current.center) <= tolerance
            if close and not current.has_region(member.region_index):
                current.members.append(member)
                continue
        groups.append(_PositionGroup(members=[member]))
    return groups


def _votes(group: _PositionGroup, column_type: ColumnType) -> int:
    return sum(1 for m in group.members if m.column.inferred_type == column_type)


def _rank_key(group: _PositionGroup, column_type: ColumnType) -> Tuple:
    proposers = [m for m in group.members if m.column.inferred_type == column_type]
    return (
        -len(proposers),
        -max(m.region_size for m in proposers),
        -max(m.column.confidence for m in proposers),
        min(m.region_index for m in proposers),
        column_type.value,
    )


def _rank_types(group: _PositionGroup) -> List[ColumnType]:
    """Order proposed types: votes, region size, confidence, region index, name."""
    proposed = {m.column.inferred_type for m in group.members}
    return sorted(proposed, key=lambda t: _rank_key(group, t))


def _describe_resolution(group: _PositionGroup, ranking: List[ColumnType]) -> str:
    first = _rank_key(group, ranking[0])
    second = _rank_key(group, ranking[1])
    reasons = (
        "majority vote",
        "tie broken by region with most columns",
        "tie broken by higher confidence",
        "tie broken by earlier region",
        "tie broken by type name",
    )
    for position, reason in enumerate(reasons):
        if first[position] != second[position]:
            return reason
    return reasons[-1]


def _canonical_column(group: _PositionGroup, resolved: ColumnType) -> ColumnBoundary:
    supporters = [m for m in group.members if m.column.inferred_type == resolved]
    if supporters:
        confidence = sum(m.column.confidence for m in supporters) / len(supporters)
        header = next((m.column.header_text for m in supporters if m.column.header_text), None)
    else:
        confidence = 0.3
        header = None
    return ColumnBoundary(
        center_x=round(group.center, 2),
        left_edge=min(m.column.left_edge for m in group.members),
        right_edge=max(m.column.right_edge for m in group.members),
        inferred_type=resolved,
        confidence=round(confidence, 3),
        header_text=header,
    )


def _promote_description(columns: List[ColumnBoundary], report: ConflictReport) -> List[ColumnBoundary]:
    if any(c.inferred_type == ColumnType.DESCRIPTION for c in columns):
        return columns
    unknown = [i for i, c in enumerate(columns) if c.inferred_type == ColumnType.UNKNOWN]
    if not unknown:
        return columns
    widest = max(unknown, key=lambda i: (columns[i].width, -i))
    report.warnings.append(
        f"No description column detected; using unknown column at x={columns[widest].center_x:.1f}"
    )
    promoted = list(columns)
    promoted[widest] = columns[widest].with_type(ColumnType.DESCRIPTION, 0.5)
    return promoted


def _missing_roles(columns: List[ColumnBoundary]) -> List[str]:
    types = {c.inferred_type for c in columns}
    missing: List[str] = []
    for role in (ColumnType.DATE, ColumnType.BALANCE):
        if role not in types:
            missing.append(role.value)
    if ColumnType.AMOUNT not in types:
        for role in (ColumnType.DEBIT, ColumnType.CREDIT):
            if role not in types:
                missing.append(role.value)
    return missing
