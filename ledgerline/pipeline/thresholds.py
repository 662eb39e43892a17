"""
Pipeline thresholds.

Every tunable constant used by the pipeline stages lives on PipelineConfig.
A config instance is passed into each stage explicitly; stages never read
settings or globals on their own.
"""

import dataclasses
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Tuple

from ledgerline.pipeline.models import AmountSignPolicy, Grade, StageName

if TYPE_CHECKING:
    from ledgerline.config import Settings


@dataclass(frozen=True)
class PipelineConfig:
    """Named constants for detection, scoring, validation and matching."""

    # Line grouping / region detection
    line_y_tolerance: float = 3.0
    min_tokens_per_line: int = 3
    min_table_lines: int = 3
    max_line_token_spread: int = 3
    region_gap_threshold: float = 150.0
    region_merge_token_diff: float = 2.0

    # Column boundaries (dense, normal, sparse)
    gutter_resolution: float = 2.0
    dense_tokens_per_line: float = 8.0
    normal_tokens_per_line: float = 4.0
    gutter_ratios: Tuple[float, float, float] = (0.03, 0.08, 0.15)
    min_gutter_buckets: Tuple[int, int, int] = (2, 3, 5)
    min_column_widths: Tuple[float, float, float] = (15.0, 20.0, 20.0)

    # Column typing
    date_share_threshold: float = 0.5
    numeric_share_threshold: float = 0.3
    max_regions_before_penalty: int = 5
    fragmentation_penalty: float = 0.02

    # Reconciliation
    column_merge_tolerance: float = 20.0

    # Stitching
    amount_sign_policy: AmountSignPolicy = AmountSignPolicy.AUTO
    day_first: bool = True

    # Confidence scoring
    grade_thresholds: Tuple[Tuple[Grade, int], ...] = (
        (Grade.A, 90),
        (Grade.B, 75),
        (Grade.C, 60),
        (Grade.D, 40),
    )
    weight_date: float = 0.25
    weight_description: float = 0.15
    weight_amount: float = 0.35
    weight_balance: float = 0.25
    ocr_reliability_factor: float = 0.9
    low_ocr_confidence: float = 0.6
    consistency_penalty: int = 15
    low_confidence_score: int = 70

    # Balance validation
    balance_epsilon: Decimal = Decimal("0.01")
    currency_tolerances: Tuple[Tuple[str, Decimal], ...] = (
        ("JPY", Decimal("1.00")),
        ("KRW", Decimal("1.00")),
        ("IDR", Decimal("1.00")),
        ("VND", Decimal("1.00")),
        ("INR", Decimal("0.50")),
    )
    unknown_currency_tolerance: Decimal = Decimal("0.05")
    lenient_unknown_currency: bool = False
    low_balance_confidence: float = 0.6

    # Duplicate detection
    duplicate_similarity_threshold: float = 0.7
    duplicate_date_tolerance_days: int = 0
    duplicate_amount_tolerance: Decimal = Decimal("0.01")

    # Merging
    gap_threshold_days: int = 7

    # Export validation
    export_amount_tolerance: Decimal = Decimal("0.01")
    export_fuzzy_amount_tolerance: Decimal = Decimal("1.00")
    export_date_tolerance_days: int = 1
    export_description_threshold: float = 0.7
    export_total_discrepancy_limit: Decimal = Decimal("1.00")
    export_min_confidence: float = 0.5

    # Progress
    stage_progress: Tuple[Tuple[StageName, int], ...] = (
        (StageName.UPLOAD, 10),
        (StageName.EXTRACT, 50),
        (StageName.ANCHOR, 60),
        (StageName.STITCH, 70),
        (StageName.VALIDATE, 85),
        (StageName.OUTPUT, 95),
    )

    def grade_for(self, score: float) -> Grade:
        for grade, threshold in self.grade_thresholds:
            if score >= threshold:
                return grade
        return Grade.F

    def balance_tolerance(self, currency: Optional[str]) -> Decimal:
        """Rounding tolerance for balance comparisons in a currency."""
        if currency:
            for code, tolerance in self.currency_tolerances:
                if code == currency.upper():
                    return tolerance
            return self.balance_epsilon
        if self.lenient_unknown_currency:
            return self.unknown_currency_tolerance
        return self.balance_epsilon

    def progress_for(self, stage: StageName) -> int:
        return dict(self.stage_progress).get(stage, 0)

    def with_overrides(self, **changes) -> "PipelineConfig":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PipelineConfig":
        """Build a config with the environment-tunable values applied."""
        return cls(
            line_y_tolerance=settings.line_y_tolerance,
            column_merge_tolerance=settings.column_merge_tolerance,
            amount_sign_policy=AmountSignPolicy(settings.amount_sign_policy),
            day_first=settings.day_first,
            duplicate_similarity_threshold=settings.duplicate_similarity_threshold,
            duplicate_date_tolerance_days=settings.duplicate_date_tolerance_days,
        )


DEFAULT_CONFIG = PipelineConfig()
