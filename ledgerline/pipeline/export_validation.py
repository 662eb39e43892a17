"""
Export validation.

Cross-checks an exported ledger (CSV/Excel rows) against the transactions
the pipeline extracted, to prove the export lost nothing. Rows are matched
exactly first, then tolerantly; what is left over is missing, corrupted or
duplicated.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog

from ledgerline.pipeline.models import (
    CorruptedTransaction,
    CorruptionType,
    ExportDuplicate,
    ExportedRow,
    ExportValidationResult,
    ExportVerdict,
    MissingTransaction,
    ParsedTransaction,
    StandardizedDocument,
    ValidationStatus,
)
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG, PipelineConfig
from ledgerline.services.text_similarity import levenshtein_ratio, normalize_text

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class _Candidate:
    export_index: int
    similarity: float
    day_difference: int
    amount_difference: Decimal
    column_shift: bool
    amount_truncated: bool = False


def export_description_similarity(source: str, exported: str) -> float:
    """Prefix containment (a truncated export) scores 0.85, otherwise Levenshtein."""
    a = normalize_text(source)
    b = normalize_text(exported)
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if a.startswith(b) or b.startswith(a):
        return max(0.85, levenshtein_ratio(a, b))
    return levenshtein_ratio(a, b)


def _close(a: Optional[Decimal], b: Optional[Decimal], tolerance: Decimal) -> bool:
    return abs((a or ZERO) - (b or ZERO)) <= tolerance


def _digits(value: Decimal) -> str:
    return format(abs(value).normalize(), "f")


def is_truncated_amount(source: Decimal, exported: Decimal) -> bool:
    """True when one amount is the other with trailing digits cut off (3249.00 vs 324.00)."""
    if source == ZERO or exported == ZERO or (source < ZERO) != (exported < ZERO):
        return False
    a, b = _digits(source), _digits(exported)
    return a != b and (a.startswith(b) or b.startswith(a))


def _signed(transaction: ParsedTransaction) -> Decimal:
    return transaction.signed_amount or ZERO


def _duplicate_key(row_date: Optional[date], amount: Decimal, description: str) -> str:
    day = row_date.isoformat() if row_date else ""
    return f"{day}|{amount:.2f}|{normalize_text(description)[:30]}"


class ExportValidator:
    """
    Reconciles an export against its source transactions.

    Confidence is (exact + 0.9 * tolerant) / N minus 0.1 per missing row,
    0.05 per corrupted field and 0.02 per duplicate, clamped to [0, 1].
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self._config = config or DEFAULT_CONFIG

    def validate(
        self,
        source: Sequence[ParsedTransaction],
        exported: Sequence[ExportedRow],
        pdf_pages: int = 0,
    ) -> ExportValidationResult:
        """
        Validate an export.

        Args:
            source: Transactions from the processed document.
            exported: Rows read back from the export file.
            pdf_pages: Page count of the source PDF, for the summary.

        Returns:
            ExportValidationResult with matches, failures and a verdict.
        """
        used: Set[int] = set()
        matched: Dict[int, int] = {}

        by_date: Dict[Optional[date], List[int]] = defaultdict(list)
        for export_index, row in enumerate(exported):
            by_date[row.date].append(export_index)

        for source_index, transaction in enumerate(source):
            for export_index in by_date.get(transaction.date, ()):
                if export_index not in used and self._is_exact(transaction, exported[export_index]):
                    used.add(export_index)
                    matched[source_index] = export_index
                    break
        exact = len(matched)

        corrupted: List[CorruptedTransaction] = []
        tolerant = 0
        for source_index, transaction in enumerate(source):
            if source_index in matched:
                continue
            candidate = self._best_tolerant(transaction, exported, used)
            if candidate is None:
                continue
            used.add(candidate.export_index)
            matched[source_index] = candidate.export_index
            tolerant += 1
            corrupted.extend(self._corruptions(source_index, transaction, candidate, exported[candidate.export_index]))

        missing = [
            MissingTransaction(
                source_index=index,
                date=transaction.date,
                description=transaction.description,
                amount=transaction.signed_amount,
            )
            for index, transaction in enumerate(source)
            if index not in matched
        ]
        duplicates = self._duplicates(source, exported, used)

        total = len(source)
        if total:
            score = (exact + 0.9 * tolerant) / total
        else:
            score = 1.0 if not exported else 0.0
        score -= 0.1 * len(missing) + 0.05 * len(corrupted) + 0.02 * len(duplicates)
        score = round(max(0.0, min(1.0, score)), 2)

        result = ExportValidationResult(
            pdf_transactions=total,
            exported_rows=len(exported),
            missing_transactions=missing,
            corrupted_transactions=corrupted,
            duplicates_in_csv=duplicates,
            confidence_score=score,
            verdict=ExportVerdict.EXPORT_COMPLETE if not missing else ExportVerdict.EXPORT_INCOMPLETE,
            exact_matches=exact,
            tolerant_matches=tolerant,
            source_total=sum((_signed(t) for t in source), ZERO),
            export_total=sum((r.signed_amount or ZERO for r in exported), ZERO),
            pdf_pages=pdf_pages,
        )
        logger.info(
            "Export validation complete",
            source=total,
            exported=len(exported),
            exact=exact,
            tolerant=tolerant,
            missing=len(missing),
            corrupted=len(corrupted),
            duplicates=len(duplicates),
            verdict=result.verdict.value,
        )
        return result

    # =========================================================================
    # Matching
    # =========================================================================

    def _is_exact(self, transaction: ParsedTransaction, row: ExportedRow) -> bool:
        tolerance = self._config.export_amount_tolerance
        if row.date != transaction.date:
            return False
        if normalize_text(row.description) != normalize_text(transaction.description):
            return False
        if not _close(transaction.debit, row.debit, tolerance) or not _close(transaction.credit, row.credit, tolerance):
            return False
        if transaction.balance is None or row.balance is None:
            return transaction.balance is None and row.balance is None
        return abs(transaction.balance - row.balance) <= tolerance

    def _best_tolerant(
        self,
        transaction: ParsedTransaction,
        exported: Sequence[ExportedRow],
        used: Set[int],
    ) -> Optional[_Candidate]:
        config = self._config
        candidates: List[_Candidate] = []
        amount = _signed(transaction)

        for export_index, row in enumerate(exported):
            if export_index in used:
                continue
            if transaction.date is not None and row.date is not None:
                days = abs((row.date - transaction.date).days)
                if days > config.export_date_tolerance_days:
                    continue
            elif transaction.date != row.date:
                continue
            else:
                days = 0

            row_amount = row.signed_amount or ZERO
            difference = abs(row_amount - amount)
            shifted = (
                amount != ZERO
                and difference > config.export_fuzzy_amount_tolerance
                and abs(abs(row_amount) - abs(amount)) <= config.export_amount_tolerance
            )
            truncated = (
                difference > config.export_fuzzy_amount_tolerance
                and not shifted
                and is_truncated_amount(amount, row_amount)
            )
            if difference > config.export_fuzzy_amount_tolerance and not (shifted or truncated):
                continue

            similarity = export_description_similarity(transaction.description, row.description)
            # all fields but the description agree
            same_fields = (
                days == 0
                and difference <= config.export_amount_tolerance
                and _close(transaction.balance, row.balance, config.export_amount_tolerance)
            )
            if similarity < config.export_description_threshold and not same_fields:
                continue
            candidates.append(_Candidate(export_index, similarity, days, difference, shifted, truncated))

        if not candidates:
            return None
        return min(
            candidates,
            key=lambda c: (
                c.column_shift,
                c.amount_truncated,
                -c.similarity,
                c.day_difference,
                c.amount_difference,
                c.export_index,
            ),
        )

    def _corruptions(
        self,
        source_index: int,
        transaction: ParsedTransaction,
        candidate: _Candidate,
        row: ExportedRow,
    ) -> List[CorruptedTransaction]:
        found: List[CorruptedTransaction] = []

        def add(kind: CorruptionType, field_name: str, expected: object, actual: object) -> None:
            found.append(
                CorruptedTransaction(
                    source_index=source_index,
                    export_index=candidate.export_index,
                    corruption_type=kind,
                    field_name=field_name,
                    expected=str(expected),
                    actual=str(actual),
                )
            )

        source_text = normalize_text(transaction.description)
        export_text = normalize_text(row.description)
        if export_text != source_text:
            if export_text and source_text.startswith(export_text):
                add(CorruptionType.TRUNCATION, "description", transaction.description, row.description)
            else:
                add(CorruptionType.DESCRIPTION_MISMATCH, "description", transaction.description, row.description)

        if candidate.column_shift:
            add(CorruptionType.COLUMN_SHIFT, "debit/credit", transaction.signed_amount, row.signed_amount)
        elif candidate.amount_truncated:
            add(CorruptionType.TRUNCATION, "amount", transaction.signed_amount, row.signed_amount)
        elif candidate.amount_difference > self._config.export_amount_tolerance:
            add(CorruptionType.AMOUNT_MISMATCH, "amount", transaction.signed_amount, row.signed_amount)

        if transaction.balance is not None and not _close(
            transaction.balance, row.balance, self._config.export_amount_tolerance
        ):
            add(CorruptionType.AMOUNT_MISMATCH, "balance", transaction.balance, row.balance)

        if transaction.date != row.date:
            add(CorruptionType.DATE_MISMATCH, "date", transaction.date, row.date)
        return found

    def _duplicates(
        self,
        source: Sequence[ParsedTransaction],
        exported: Sequence[ExportedRow],
        used: Set[int],
    ) -> List[ExportDuplicate]:
        source_counts = Counter(_duplicate_key(t.date, _signed(t), t.description) for t in source)
        export_keys: Dict[str, List[int]] = defaultdict(list)
        for index, row in enumerate(exported):
            export_keys[_duplicate_key(row.date, row.signed_amount or ZERO, row.description)].append(index)

        duplicates: List[ExportDuplicate] = []
        reported: Set[int] = set()
        for key, indices in export_keys.items():
            if len(indices) > 1 and len(indices) > source_counts.get(key, 0):
                duplicates.append(
                    ExportDuplicate(
                        export_indices=tuple(indices),
                        key=key,
                        reason=f"Appears {len(indices)} times in export, {source_counts.get(key, 0)} in source",
                    )
                )
                reported.update(indices)

        for index, row in enumerate(exported):
            if index in used or index in reported:
                continue
            duplicates.append(
                ExportDuplicate(
                    export_indices=(index,),
                    key=_duplicate_key(row.date, row.signed_amount or ZERO, row.description),
                    reason="Exported row has no matching source transaction",
                )
            )
        return duplicates


def validate_export(
    source: Sequence[ParsedTransaction],
    exported: Sequence[ExportedRow],
    config: Optional[PipelineConfig] = None,
    pdf_pages: int = 0,
) -> ExportValidationResult:
    """Validate an export against its source transactions."""
    return ExportValidator(config).validate(source, exported, pdf_pages=pdf_pages)


def pre_export_check(document: StandardizedDocument) -> List[str]:
    """
    Reasons the document may not be exported yet.

    An empty list means export may proceed; any row in error blocks it.
    """
    reasons: List[str] = []
    errors = [t for t in document.raw_transactions if t.validation_status == ValidationStatus.ERROR]
    if errors:
        rows = ", ".join(str(t.row_index) for t in errors[:10])
        reasons.append(f"{len(errors)} transaction(s) failed balance validation (rows {rows})")
    return reasons


def should_block_export(
    result: ExportValidationResult,
    config: Optional[PipelineConfig] = None,
) -> Tuple[bool, List[str]]:
    """Block on missing rows, a total discrepancy over the limit, or low confidence."""
    config = config or DEFAULT_CONFIG
    reasons: List[str] = []
    if result.missing_transactions:
        reasons.append(f"{len(result.missing_transactions)} transaction(s) missing from export")
    if result.total_discrepancy > config.export_total_discrepancy_limit:
        reasons.append(f"Export totals differ from source by {result.total_discrepancy:.2f}")
    if result.confidence_score < config.export_min_confidence:
        reasons.append(f"Export confidence {result.confidence_score:.2f} is below {config.export_min_confidence:.2f}")
    return bool(reasons), reasons


def validation_summary(result: ExportValidationResult) -> str:
    """One-line description of an export validation."""
    return (
        f"{result.fully_exported}/{result.pdf_transactions} transactions exported "
        f"({result.exact_matches} exact, {result.tolerant_matches} tolerant); "
        f"{len(result.missing_transactions)} missing, {len(result.corrupted_transactions)} corrupted, "
        f"{len(result.duplicates_in_csv)} duplicate; confidence {result.confidence_score:.2f}: "
        f"{result.verdict.value}"
    )


def get_export_validator(config: Optional[PipelineConfig] = None) -> ExportValidator:
    """Get ExportValidator instance."""
    return ExportValidator(config=config)
