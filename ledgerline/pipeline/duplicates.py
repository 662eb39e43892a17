"""
Duplicate transaction detection for merged statements.

Overlapping statement periods put the same transaction into two files.
Candidates are found through a (date, signed amount) bucket index,
confirmed by description similarity and closed transitively with
union-find. Rows are only flagged; nothing is ever removed.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from ledgerline.pipeline.models import DuplicateGroup, ParsedTransaction, ValidationStatus
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG, PipelineConfig
from ledgerline.services.text_similarity import description_similarity

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


@dataclass
class DuplicateOptions:
    enabled: bool = True
    similarity_threshold: float = DEFAULT_CONFIG.duplicate_similarity_threshold
    date_tolerance_days: int = DEFAULT_CONFIG.duplicate_date_tolerance_days

    @classmethod
    def from_config(cls, config: PipelineConfig, enabled: bool = True) -> "DuplicateOptions":
        return cls(
            enabled=enabled,
            similarity_threshold=config.duplicate_similarity_threshold,
            date_tolerance_days=config.duplicate_date_tolerance_days,
        )


@dataclass
class DuplicateResult:
    groups: List[DuplicateGroup] = field(default_factory=list)
    total_flagged: int = 0


@dataclass(frozen=True)
class _Match:
    first: int
    second: int
    day_difference: int
    similarity: float


class _UnionFind:
    def __init__(self, size: int):
        self._parent = list(range(size))

    def find(self, item: int) -> int:
        while self._parent[item] != item:
            self._parent[item] = self._parent[self._parent[item]]
            item = self._parent[item]
        return item

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            # Smaller index becomes the root so group order is stable
            self._parent[max(root_a, root_b)] = min(root_a, root_b)


def _bucket_key(day: date, amount: Decimal) -> Tuple[date, Decimal]:
    return day, amount.quantize(CENT)


def detect_duplicates(
    transactions: Sequence[ParsedTransaction],
    options: Optional[DuplicateOptions] = None,
) -> DuplicateResult:
    """
    Find groups of transactions that look like the same money movement.

    Two rows match when their signed amounts agree to the cent, their dates
    are within `date_tolerance_days`, and their descriptions are at least
    `similarity_threshold` alike. Matches are merged transitively.

    Args:
        transactions: Merged transaction list; group indices refer to it.
        options: Detection options.

    Returns:
        DuplicateResult with groups ordered by their first index.
    """
    options = options or DuplicateOptions()
    if not options.enabled:
        return DuplicateResult()

    index: Dict[Tuple[date, Decimal], List[int]] = defaultdict(list)
    matches: List[_Match] = []
    union_find = _UnionFind(len(transactions))
    tolerance = max(0, options.date_tolerance_days)

    for position, transaction in enumerate(transactions):
        amount = transaction.signed_amount
        if transaction.date is None or amount is None:
            continue
        for offset in range(-tolerance, tolerance + 1):
            key = _bucket_key(transaction.date + timedelta(days=offset), amount)
            for earlier in index.get(key, ()):
                similarity = description_similarity(transactions[earlier].description, transaction.description)
                if similarity >= options.similarity_threshold:
                    matches.append(_Match(earlier, position, abs(offset), similarity))
                    union_find.union(earlier, position)
        index[_bucket_key(transaction.date, amount)].append(position)

    members: Dict[int, List[int]] = defaultdict(list)
    matched = {m.first for m in matches} | {m.second for m in matches}
    for position in sorted(matched):
        members[union_find.find(position)].append(position)

    groups: List[DuplicateGroup] = []
    for root in sorted(members):
        indices = members[root]
        group_matches = [m for m in matches if union_find.find(m.first) == root]
        groups.append(_build_group(transactions, indices, group_matches, tolerance))

    total = sum(len(g.transaction_indices) for g in groups)
    logger.info(
        "Duplicate detection complete",
        transactions=len(transactions),
        groups=len(groups),
        flagged=total,
    )
    return DuplicateResult(groups=groups, total_flagged=total)


def _build_group(
    transactions: Sequence[ParsedTransaction],
    indices: List[int],
    matches: List[_Match],
    tolerance: int,
) -> DuplicateGroup:
    rows = [transactions[i] for i in indices]
    sources = tuple(sorted({t.source_file_name for t in rows if t.source_file_name}))
    similarity = min(m.similarity for m in matches)
    max_days = max(m.day_difference for m in matches)

    date_score = 1.0 if max_days == 0 else max(0.0, 1.0 - max_days / (tolerance + 1))
    confidence = 0.3 * date_score + 0.3 + 0.4 * similarity
    if len(sources) > 1 and similarity >= 0.999:
        confidence += 0.1
    elif len(sources) <= 1:
        # Same-file repeats are often genuine (two identical card payments)
        confidence *= 0.8
    confidence = round(min(1.0, confidence), 2)

    amount = rows[0].signed_amount
    parts = ["same date" if max_days == 0 else f"dates within {max_days} day(s)"]
    parts.append(f"amount {amount:.2f}")
    parts.append(f"{similarity * 100:.0f}% description match")
    if len(sources) > 1:
        parts.append(f"across {len(sources)} files")
    else:
        parts.append("within one file")

    return DuplicateGroup(
        transaction_indices=tuple(indices),
        confidence=confidence,
        reason=", ".join(parts),
        source_files=sources,
    )


def flag_duplicates(
    transactions: Sequence[ParsedTransaction],
    groups: Sequence[DuplicateGroup],
) -> List[ParsedTransaction]:
    """
    Mark grouped rows for review.

    Each member gets the note "Duplicate group #N" (1-based) and a warning
    status unless it is already in error. The list keeps every row.
    """
    flagged = list(transactions)
    for number, group in enumerate(groups, start=1):
        for position in group.transaction_indices:
            transaction = flagged[position].with_note(f"Duplicate group #{number}")
            if transaction.validation_status != ValidationStatus.ERROR:
                transaction = transaction.with_updates(validation_status=ValidationStatus.WARNING)
            flagged[position] = transaction
    return flagged
