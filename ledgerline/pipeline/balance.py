"""
Running-balance validation.

Walks each segment from its opening balance, comparing the projected
balance with every stated balance. Rows get a validation status, segments
get a closure verdict, and the findings become audit flags.
"""

import dataclasses
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

import structlog

from ledgerline.pipeline.models import (
    AuditFlag,
    OverallValidation,
    ParsedTransaction,
    Segment,
    StandardizedDocument,
    ValidationStatus,
)
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG, PipelineConfig

logger = structlog.get_logger(__name__)

SWAP_NOTE = "Possible debit/credit swap"
ZERO = Decimal("0")


def _mismatch_note(expected: Decimal, actual: Decimal) -> str:
    return f"Balance mismatch: expected {expected:.2f}, statement shows {actual:.2f}"


class BalanceValidator:
    """
    Validates the running-balance invariant per segment.

    `running = running - debit + credit`; after each stated balance the
    chain continues from the statement's figure, so one bad row does not
    cascade into every row after it.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self._config = config or DEFAULT_CONFIG

    def validate_segment(self, segment: Segment, currency: Optional[str] = None) -> Segment:
        """
        Validate one segment.

        Rows with a stated balance become valid, warning or error. Rows
        without one are settled by the next stated balance (or the closing
        balance): valid when it agrees, warning when it does not; with no
        later anchor they stay unchecked.

        Args:
            segment: Segment to validate.
            currency: ISO code selecting the rounding tolerance.

        Returns:
            New Segment with row statuses and the closure verdict.
        """
        if segment.opening_balance is None:
            return dataclasses.replace(segment, overall_validation=OverallValidation.UNCHECKED)

        tolerance = self._config.balance_tolerance(currency)
        rows = list(segment.transactions)
        running = segment.opening_balance
        pending: List[int] = []

        for index, transaction in enumerate(rows):
            debit = transaction.debit or ZERO
            credit = transaction.credit or ZERO
            previous = running
            running = previous - debit + credit

            if transaction.balance is None:
                pending.append(index)
                continue

            stated = transaction.balance
            if abs(running - stated) <= tolerance:
                rows[index] = transaction.with_updates(validation_status=ValidationStatus.VALID)
                self._settle(rows, pending, ValidationStatus.VALID)
            else:
                swapped = previous + debit - credit
                if transaction.has_amount and abs(swapped - stated) <= tolerance:
                    rows[index] = transaction.with_updates(
                        validation_status=ValidationStatus.WARNING
                    ).with_note(SWAP_NOTE)
                    self._settle(rows, pending, ValidationStatus.VALID)
                else:
                    confident = transaction.balance_confidence >= self._config.low_balance_confidence
                    status = ValidationStatus.ERROR if confident else ValidationStatus.WARNING
                    rows[index] = transaction.with_updates(validation_status=status).with_note(
                        _mismatch_note(running, stated)
                    )
                    self._settle(rows, pending, ValidationStatus.WARNING)
            pending = []
            running = stated

        computed = segment.opening_balance + segment.total_credits - segment.total_debits
        closing = segment.closing_balance
        if closing is None:
            return dataclasses.replace(
                segment,
                transactions=tuple(rows),
                computed_closing=computed,
                overall_validation=OverallValidation.UNCHECKED,
            )

        discrepancy = abs(computed - closing)
        closes = discrepancy <= tolerance
        if pending and not segment.closing_inferred:
            self._settle(rows, pending, ValidationStatus.VALID if closes else ValidationStatus.WARNING)

        has_errors = any(t.validation_status == ValidationStatus.ERROR for t in rows)
        verdict = OverallValidation.VALID if closes and not has_errors else OverallValidation.INVALID
        return dataclasses.replace(
            segment,
            transactions=tuple(rows),
            computed_closing=computed,
            discrepancy=discrepancy,
            overall_validation=verdict,
        )

    def validate_segments(
        self,
        segments: Sequence[Segment],
        currency: Optional[str] = None,
    ) -> Tuple[List[Segment], OverallValidation]:
        """
        Validate all segments of a document.

        Returns:
            Tuple of (validated segments, document verdict). The document is
            valid only when every segment is; unchecked when none could be
            checked.
        """
        validated = [self.validate_segment(segment, currency) for segment in segments]
        verdicts = [s.overall_validation for s in validated]

        if not verdicts or all(v == OverallValidation.UNCHECKED for v in verdicts):
            overall = OverallValidation.UNCHECKED
        elif all(v == OverallValidation.VALID for v in verdicts):
            overall = OverallValidation.VALID
        else:
            overall = OverallValidation.INVALID

        rows = [t for s in validated for t in s.transactions]
        logger.info(
            "Balance validation complete",
            segments=len(validated),
            overall=overall.value,
            errors=sum(1 for t in rows if t.validation_status == ValidationStatus.ERROR),
            warnings=sum(1 for t in rows if t.validation_status == ValidationStatus.WARNING),
        )
        return validated, overall

    def _settle(self, rows: List[ParsedTransaction], indices: List[int], status: ValidationStatus) -> None:
        for index in indices:
            rows[index] = rows[index].with_updates(validation_status=status)


def generate_audit_flags(segments: Sequence[Segment]) -> List[AuditFlag]:
    """
    Turn validation findings into reviewable audit flags.

    BALANCE_MISMATCH for rows in error, POSSIBLE_SWAP for suspected
    debit/credit swaps, SEGMENT_DISCREPANCY for segments that do not close.
    """
    flags: List[AuditFlag] = []
    for segment in segments:
        running = segment.opening_balance
        for transaction in segment.transactions:
            expected = None
            if running is not None:
                expected = running - (transaction.debit or ZERO) + (transaction.credit or ZERO)
                running = transaction.balance if transaction.balance is not None else expected
            if transaction.validation_status == ValidationStatus.ERROR:
                flags.append(
                    AuditFlag(
                        flag_type="BALANCE_MISMATCH",
                        row_index=transaction.row_index,
                        message=next(
                            (n for n in transaction.notes if n.startswith("Balance mismatch")),
                            "Balance mismatch",
                        ),
                        severity="error",
                        expected=expected,
                        actual=transaction.balance,
                    )
                )
            if SWAP_NOTE in transaction.notes:
                flags.append(
                    AuditFlag(
                        flag_type="POSSIBLE_SWAP",
                        row_index=transaction.row_index,
                        message=f"Row {transaction.row_index}: debit and credit may be swapped",
                        severity="warning",
                        expected=expected,
                        actual=transaction.balance,
                    )
                )
        if segment.overall_validation == OverallValidation.INVALID and segment.discrepancy:
            flags.append(
                AuditFlag(
                    flag_type="SEGMENT_DISCREPANCY",
                    row_index=None,
                    message=(
                        f"Segment {segment.index} does not close: computed {segment.computed_closing:.2f}, "
                        f"statement shows {segment.closing_balance:.2f}"
                    ),
                    severity="error",
                    expected=segment.computed_closing,
                    actual=segment.closing_balance,
                )
            )
    return flags


def is_export_blocked(document: StandardizedDocument) -> bool:
    """Export is blocked while any row is in error."""
    return any(t.validation_status == ValidationStatus.ERROR for t in document.raw_transactions)


def get_balance_validator(config: Optional[PipelineConfig] = None) -> BalanceValidator:
    """Get BalanceValidator instance."""
    return BalanceValidator(config=config)
