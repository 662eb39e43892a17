"""
Per-transaction confidence scoring.

A score from 0 to 100 built from field completeness, source reliability
and local balance consistency, plus a letter grade and human-readable
flags. Scores describe a row; they never stop the pipeline.
"""

import dataclasses
import re
from collections import Counter
from decimal import Decimal
from typing import List, Optional, Sequence

import structlog

from ledgerline.pipeline.models import ConfidenceSummary, Grade, ParsedTransaction, Segment
from ledgerline.pipeline.stitching import BOTH_AMOUNTS_NOTE
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG, PipelineConfig

logger = structlog.get_logger(__name__)

FLAG_MISSING_DATE = "Missing date"
FLAG_NO_AMOUNT = "No amount detected"
FLAG_BOTH_AMOUNTS = "Both debit and credit"
FLAG_BALANCE_MISMATCH = "Balance mismatch"
FLAG_GIBBERISH = "Possible OCR gibberish"
FLAG_LOW_OCR = "Low OCR confidence"

CONSONANT_RUN = re.compile(r"[bcdfghjklmnpqrstvwxz]{5,}", re.I)
DIGIT_LETTER_ALTERNATION = re.compile(r"(?:[a-z]\d){3,}|(?:\d[a-z]){3,}", re.I)


def looks_like_gibberish(text: str) -> bool:
    """Heuristics for OCR noise: consonant runs, digit/letter churn, symbol soup."""
    stripped = text.strip()
    if not stripped:
        return False
    if CONSONANT_RUN.search(stripped) or DIGIT_LETTER_ALTERNATION.search(stripped):
        return True
    compact = stripped.replace(" ", "")
    special = sum(1 for c in compact if not c.isalnum())
    return special / len(compact) > 0.3


class ConfidenceScorer:
    """Scores transactions and summarizes the scores of a document."""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self._config = config or DEFAULT_CONFIG

    def score_transaction(
        self,
        transaction: ParsedTransaction,
        previous_balance: Optional[Decimal] = None,
    ) -> ParsedTransaction:
        """
        Score one transaction.

        Args:
            transaction: Row to score.
            previous_balance: Stated (or opening) balance of the row above.

        Returns:
            Copy of the transaction with score, grade and flags set.
        """
        config = self._config
        flags: List[str] = []

        has_description = sum(c.isalnum() for c in transaction.description) >= 3
        completeness = (
            config.weight_date * (transaction.date is not None)
            + config.weight_description * has_description
            + config.weight_amount * transaction.has_amount
            + config.weight_balance * (transaction.balance is not None)
        )
        score = completeness * 100

        if transaction.date is None:
            flags.append(FLAG_MISSING_DATE)
        if not transaction.has_amount:
            flags.append(FLAG_NO_AMOUNT)
        if BOTH_AMOUNTS_NOTE in transaction.notes:
            flags.append(FLAG_BOTH_AMOUNTS)

        if transaction.from_ocr:
            score *= config.ocr_reliability_factor * transaction.token_confidence
            if transaction.token_confidence < config.low_ocr_confidence:
                flags.append(FLAG_LOW_OCR)
            if looks_like_gibberish(transaction.description):
                flags.append(FLAG_GIBBERISH)

        if previous_balance is not None and transaction.balance is not None:
            expected = (
                previous_balance
                - (transaction.debit or Decimal("0"))
                + (transaction.credit or Decimal("0"))
            )
            if abs(expected - transaction.balance) > config.balance_epsilon:
                score -= config.consistency_penalty
                flags.append(FLAG_BALANCE_MISMATCH)

        final_score = int(round(max(0.0, min(100.0, float(score)))))
        return transaction.with_updates(
            confidence_score=final_score,
            grade=config.grade_for(final_score),
            confidence_flags=tuple(flags),
        )

    def score_transactions(
        self,
        transactions: Sequence[ParsedTransaction],
        opening_balance: Optional[Decimal] = None,
    ) -> List[ParsedTransaction]:
        """Score rows in order, checking each against the stated balance above it."""
        scored: List[ParsedTransaction] = []
        previous = opening_balance
        for transaction in transactions:
            scored.append(self.score_transaction(transaction, previous))
            if transaction.balance is not None:
                previous = transaction.balance
        return scored

    def score_segments(self, segments: Sequence[Segment]) -> List[Segment]:
        """Score every segment's rows, seeding the chain with its opening balance."""
        rescored = [
            self._replace_transactions(segment, self.score_transactions(segment.transactions, segment.opening_balance))
            for segment in segments
        ]
        logger.info(
            "Confidence scoring complete",
            transactions=sum(len(s.transactions) for s in rescored),
        )
        return rescored

    def _replace_transactions(self, segment: Segment, transactions: List[ParsedTransaction]) -> Segment:
        return dataclasses.replace(segment, transactions=tuple(transactions))


def aggregate_confidence(
    transactions: Sequence[ParsedTransaction],
    config: Optional[PipelineConfig] = None,
) -> ConfidenceSummary:
    """
    Summarize scores across a document.

    Returns the average score, the count per grade, how many rows fall
    below the low-confidence line and the ten most common flags.
    """
    config = config or DEFAULT_CONFIG
    distribution = {grade.value: 0 for grade in Grade}
    if not transactions:
        return ConfidenceSummary(grade_distribution=distribution)

    flag_counts: Counter = Counter()
    for transaction in transactions:
        distribution[transaction.grade.value] += 1
        flag_counts.update(transaction.confidence_flags)

    average = sum(t.confidence_score for t in transactions) / len(transactions)
    return ConfidenceSummary(
        average=round(average, 1),
        grade_distribution=distribution,
        low_confidence_count=sum(1 for t in transactions if t.confidence_score < config.low_confidence_score),
        common_flags=flag_counts.most_common(10),
    )


def get_confidence_scorer(config: Optional[PipelineConfig] = None) -> ConfidenceScorer:
    """Get ConfidenceScorer instance."""
    return ConfidenceScorer(config=config)
