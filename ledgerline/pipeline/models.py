"""
Data model for the Ledgerline statement pipeline.

Covers every record that flows between stages:
- PositionedToken / PageTokens / ExtractedDocument (extractor output)
- ColumnBoundary, TableMetrics, ConflictReport (detector and reconciler)
- ParsedTransaction, Segment, StandardizedDocument (stitcher onwards)
- DuplicateGroup (batch mode)
- ExportValidationResult (export reconciliation)
- ProcessingStage / ProcessingResult / BatchProcessingResult (API surface)

Amounts are Decimal. Transactions, segments and column boundaries are
frozen; stages build new instances instead of mutating earlier output.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ColumnType(str, Enum):
    """Semantic role of a table column."""
    DATE = "date"
    VALUE_DATE = "value_date"
    DESCRIPTION = "description"
    DEBIT = "debit"
    CREDIT = "credit"
    BALANCE = "balance"
    AMOUNT = "amount"
    REFERENCE = "reference"
    UNKNOWN = "unknown"


# Roles a canonical layout may hold only once
UNIQUE_COLUMN_TYPES = frozenset({ColumnType.DATE, ColumnType.DESCRIPTION, ColumnType.BALANCE})
AMOUNT_COLUMN_TYPES = frozenset({ColumnType.DEBIT, ColumnType.CREDIT, ColumnType.AMOUNT})
NUMERIC_COLUMN_TYPES = AMOUNT_COLUMN_TYPES | {ColumnType.BALANCE}


class ValidationStatus(str, Enum):
    """Row-level validation outcome."""
    VALID = "valid"
    WARNING = "warning"
    ERROR = "error"
    UNCHECKED = "unchecked"


class OverallValidation(str, Enum):
    """Segment/document-level balance verdict."""
    VALID = "valid"
    INVALID = "invalid"
    UNCHECKED = "unchecked"


class Grade(str, Enum):
    """Letter bucket for a confidence score."""
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class AmountSignPolicy(str, Enum):
    """How a single signed amount column splits into debit/credit."""
    AUTO = "auto"                              # markers, then sign, then keywords
    SUFFIX_MARKERS = "suffix_markers"          # CR/DR printed next to the amount
    NEGATIVE_IS_DEBIT = "negative_is_debit"    # -12.00 / (12.00) / 12.00- are debits
    NEGATIVE_IS_CREDIT = "negative_is_credit"  # card statements: negatives are refunds
    KEYWORDS = "keywords"                      # description words decide


class StageName(str, Enum):
    """Progress stage vocabulary shared with the UI."""
    UPLOAD = "upload"
    EXTRACT = "extract"
    ANCHOR = "anchor"
    STITCH = "stitch"
    VALIDATE = "validate"
    OUTPUT = "output"


class ExportVerdict(str, Enum):
    EXPORT_COMPLETE = "EXPORT_COMPLETE"
    EXPORT_INCOMPLETE = "EXPORT_INCOMPLETE"


class CorruptionType(str, Enum):
    TRUNCATION = "truncation"
    AMOUNT_MISMATCH = "amount_mismatch"
    DATE_MISMATCH = "date_mismatch"
    COLUMN_SHIFT = "column_shift"
    DESCRIPTION_MISMATCH = "description_mismatch"


class FileState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


def to_jsonable(value: Any) -> Any:
    """Convert pipeline records into JSON-safe primitives."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, date):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return value.to_dict()
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {str(to_jsonable(k)): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def _fields_dict(obj: Any) -> Dict[str, Any]:
    return {f.name: to_jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}


# =============================================================================
# Extractor Output
# =============================================================================

@dataclass(frozen=True)
class PositionedToken:
    """A word with its page position, in PDF points from the top-left."""
    text: str
    x0: float
    x1: float
    top: float
    bottom: float
    page: int
    font_size: Optional[float] = None
    confidence: float = 1.0
    from_ocr: bool = False

    @property
    def center_x(self) -> float:
        return (self.x0 + self.x1) / 2

    @property
    def width(self) -> float:
        return self.x1 - self.x0


@dataclass
class PageTokens:
    """All tokens of one page, plus whether OCR produced them."""
    page: int
    tokens: List[PositionedToken]
    used_ocr: bool = False
    width: Optional[float] = None
    height: Optional[float] = None


@dataclass
class ExtractedDocument:
    """Token extractor output for one file."""
    file_name: str
    pages: List[PageTokens]

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def all_tokens(self) -> List[PositionedToken]:
        return [t for p in self.pages for t in p.tokens]

    def ocr_pages(self) -> List[int]:
        return [p.page for p in self.pages if p.used_ocr]


# =============================================================================
# Column Layout
# =============================================================================

@dataclass(frozen=True)
class ColumnBoundary:
    """A vertical band of a table with its inferred role."""
    center_x: float
    left_edge: float
    right_edge: float
    inferred_type: ColumnType = ColumnType.UNKNOWN
    confidence: float = 0.5
    header_text: Optional[str] = None

    @property
    def width(self) -> float:
        return self.right_edge - self.left_edge

    def contains(self, x: float) -> bool:
        return self.left_edge <= x <= self.right_edge

    def with_type(self, inferred_type: ColumnType, confidence: float) -> "ColumnBoundary":
        return dataclasses.replace(self, inferred_type=inferred_type, confidence=confidence)

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass
class TableMetrics:
    """One detected table region and its columns."""
    table_index: int
    columns: List[ColumnBoundary]
    page_numbers: List[int] = field(default_factory=list)
    line_count: int = 0
    rows_extracted: int = 0

    @property
    def column_types(self) -> List[ColumnType]:
        return [c.inferred_type for c in self.columns]

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass(frozen=True)
class ColumnConflict:
    """Regions disagreeing about one column position."""
    position: float
    competing_types: Tuple[Tuple[ColumnType, int], ...]
    region_indices: Tuple[int, ...]
    resolved_type: ColumnType
    resolution: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "competing_types": {t.value: votes for t, votes in self.competing_types},
            "region_indices": list(self.region_indices),
            "resolved_type": self.resolved_type.value,
            "resolution": self.resolution,
        }


@dataclass
class ConflictReport:
    """Diagnostics produced by column reconciliation."""
    conflicts: List[ColumnConflict] = field(default_factory=list)
    missing_roles: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


# =============================================================================
# Transactions
# =============================================================================

@dataclass(frozen=True)
class ParsedTransaction:
    """
    One ledger row.

    `debit` and `credit` are non-negative and mutually exclusive; the
    constructor rejects anything else.
    """
    date: Optional[date]
    description: str
    debit: Optional[Decimal] = None
    credit: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    reference: Optional[str] = None
    value_date: Optional[date] = None
    validation_status: ValidationStatus = ValidationStatus.UNCHECKED
    confidence_score: int = 0
    grade: Grade = Grade.F
    confidence_flags: Tuple[str, ...] = ()
    notes: Tuple[str, ...] = ()
    source_file_name: Optional[str] = None
    page: Optional[int] = None
    row_index: int = 0
    from_ocr: bool = False
    token_confidence: float = 1.0
    balance_confidence: float = 1.0
    raw_amount: Optional[str] = None

    def __post_init__(self):
        if self.debit is not None and self.credit is not None:
            raise ValueError("A transaction cannot carry both debit and credit")
        for name in ("debit", "credit"):
            amount = getattr(self, name)
            if amount is not None and amount < 0:
                raise ValueError(f"{name} must be non-negative, got {amount}")

    @property
    def signed_amount(self) -> Optional[Decimal]:
        """Credit as positive, debit as negative."""
        if self.credit is not None:
            return self.credit
        if self.debit is not None:
            return -self.debit
        return None

    @property
    def has_amount(self) -> bool:
        return self.debit is not None or self.credit is not None

    def with_updates(self, **changes: Any) -> "ParsedTransaction":
        return dataclasses.replace(self, **changes)

    def with_note(self, note: str) -> "ParsedTransaction":
        if note in self.notes:
            return self
        return dataclasses.replace(self, notes=self.notes + (note,))

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass(frozen=True)
class Segment:
    """Transactions sharing one opening/closing balance pair."""
    index: int
    transactions: Tuple[ParsedTransaction, ...]
    opening_balance: Optional[Decimal] = None
    closing_balance: Optional[Decimal] = None
    opening_inferred: bool = False
    closing_inferred: bool = False
    pages: Tuple[int, ...] = ()
    overall_validation: OverallValidation = OverallValidation.UNCHECKED
    computed_closing: Optional[Decimal] = None
    discrepancy: Optional[Decimal] = None

    @property
    def total_credits(self) -> Decimal:
        return sum((t.credit for t in self.transactions if t.credit is not None), Decimal("0"))

    @property
    def total_debits(self) -> Decimal:
        return sum((t.debit for t in self.transactions if t.debit is not None), Decimal("0"))

    def to_dict(self) -> Dict[str, Any]:
        data = _fields_dict(self)
        data["total_credits"] = float(self.total_credits)
        data["total_debits"] = float(self.total_debits)
        return data


@dataclass(frozen=True)
class StatementHeader:
    """Account details printed above the transaction table."""
    bank_name: Optional[str] = None
    account_holder: Optional[str] = None
    account_number_masked: Optional[str] = None
    statement_period_from: Optional[date] = None
    statement_period_to: Optional[date] = None
    currency: Optional[str] = None
    ifsc: Optional[str] = None
    branch: Optional[str] = None
    customer_id: Optional[str] = None
    sort_code: Optional[str] = None
    bsb: Optional[str] = None
    routing_number: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass(frozen=True)
class AuditFlag:
    """A reviewable finding attached to a document."""
    flag_type: str
    row_index: Optional[int]
    message: str
    severity: str = "warning"
    expected: Optional[Decimal] = None
    actual: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass
class ConfidenceSummary:
    """Aggregate view of per-transaction confidence."""
    average: float = 0.0
    grade_distribution: Dict[str, int] = field(default_factory=dict)
    low_confidence_count: int = 0
    common_flags: List[Tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "average": self.average,
            "grade_distribution": dict(self.grade_distribution),
            "low_confidence_count": self.low_confidence_count,
            "common_flags": [{"flag": f, "count": c} for f, c in self.common_flags],
        }


@dataclass
class StandardizedDocument:
    """Pipeline output for one statement (or a merged batch)."""
    segments: List[Segment]
    raw_transactions: List[ParsedTransaction]
    extracted_header: StatementHeader = field(default_factory=StatementHeader)
    total_pages: int = 0
    overall_validation: OverallValidation = OverallValidation.UNCHECKED
    table_metrics: List[TableMetrics] = field(default_factory=list)
    column_layout: List[ColumnBoundary] = field(default_factory=list)
    conflict_report: ConflictReport = field(default_factory=ConflictReport)
    confidence_summary: ConfidenceSummary = field(default_factory=ConfidenceSummary)
    audit_flags: List[AuditFlag] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    source_file_name: Optional[str] = None

    @property
    def total_transactions(self) -> int:
        return len(self.raw_transactions)

    @property
    def error_transactions(self) -> int:
        return sum(1 for t in self.raw_transactions if t.validation_status == ValidationStatus.ERROR)

    @property
    def warning_transactions(self) -> int:
        return sum(1 for t in self.raw_transactions if t.validation_status == ValidationStatus.WARNING)

    def to_dict(self) -> Dict[str, Any]:
        data = _fields_dict(self)
        data["total_transactions"] = self.total_transactions
        data["error_transactions"] = self.error_transactions
        data["warning_transactions"] = self.warning_transactions
        return data


# =============================================================================
# Batch Mode
# =============================================================================

@dataclass(frozen=True)
class DuplicateGroup:
    """Indices into the merged transaction list that look like one transaction."""
    transaction_indices: Tuple[int, ...]
    confidence: float
    reason: str
    source_files: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass
class DuplicateSummary:
    detected: bool = False
    total_flagged: int = 0
    groups: List[DuplicateGroup] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass
class BatchFileStatus:
    """Progress and outcome for one file of a batch."""
    file_name: str
    status: FileState = FileState.PENDING
    progress: int = 0
    page_count: int = 0
    transaction_count: int = 0
    error: Optional[str] = None
    processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


# =============================================================================
# Export Reconciliation
# =============================================================================

@dataclass(frozen=True)
class ExportedRow:
    """A row as written to the export file."""
    date: Optional[date]
    description: str
    debit: Optional[Decimal] = None
    credit: Optional[Decimal] = None
    balance: Optional[Decimal] = None

    @property
    def signed_amount(self) -> Optional[Decimal]:
        if self.credit is not None and self.credit != 0:
            return self.credit
        if self.debit is not None and self.debit != 0:
            return -self.debit
        return None


@dataclass(frozen=True)
class MissingTransaction:
    source_index: int
    date: Optional[date]
    description: str
    amount: Optional[Decimal]
    reason: str = "No matching row in export"

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass(frozen=True)
class CorruptedTransaction:
    source_index: int
    export_index: int
    corruption_type: CorruptionType
    field_name: str
    expected: str
    actual: str

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass(frozen=True)
class ExportDuplicate:
    export_indices: Tuple[int, ...]
    key: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass
class ExportValidationResult:
    """Outcome of reconciling an export against the extracted transactions."""
    pdf_transactions: int
    exported_rows: int
    missing_transactions: List[MissingTransaction] = field(default_factory=list)
    corrupted_transactions: List[CorruptedTransaction] = field(default_factory=list)
    duplicates_in_csv: List[ExportDuplicate] = field(default_factory=list)
    confidence_score: float = 0.0
    verdict: ExportVerdict = ExportVerdict.EXPORT_INCOMPLETE
    exact_matches: int = 0
    tolerant_matches: int = 0
    source_total: Decimal = Decimal("0")
    export_total: Decimal = Decimal("0")
    pdf_pages: int = 0

    @property
    def fully_exported(self) -> int:
        return self.exact_matches + self.tolerant_matches

    @property
    def total_discrepancy(self) -> Decimal:
        return abs(self.source_total - self.export_total)

    @property
    def export_validation(self) -> Dict[str, int]:
        return {
            "pdf_pages": self.pdf_pages,
            "pdf_transactions": self.pdf_transactions,
            "exported_rows": self.exported_rows,
            "fully_exported": self.fully_exported,
            "missing_rows": len(self.missing_transactions),
            "duplicate_rows": len(self.duplicates_in_csv),
            "corrupted_rows": len(self.corrupted_transactions),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "export_validation": self.export_validation,
            "missing_transactions": to_jsonable(self.missing_transactions),
            "corrupted_transactions": to_jsonable(self.corrupted_transactions),
            "duplicates_in_csv": to_jsonable(self.duplicates_in_csv),
            "confidence_score": self.confidence_score,
            "verdict": self.verdict.value,
            "total_discrepancy": float(self.total_discrepancy),
        }


# =============================================================================
# Processing Results
# =============================================================================

@dataclass(frozen=True)
class ProcessingStage:
    """One progress event."""
    stage: StageName
    progress: int
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass(frozen=True)
class ProcessingError:
    code: str
    message: str
    recoverable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass
class ProcessingResult:
    """Result of processing one statement."""
    success: bool
    document: Optional[StandardizedDocument] = None
    errors: List[ProcessingError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stages: List[ProcessingStage] = field(default_factory=list)
    total_duration_ms: float = 0.0
    file_name: Optional[str] = None
    page_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)


@dataclass
class BatchProcessingResult:
    """Result of processing and merging several statements."""
    success: bool
    merged_document: Optional[StandardizedDocument] = None
    total_transactions: int = 0
    duplicates: DuplicateSummary = field(default_factory=DuplicateSummary)
    file_statuses: List[BatchFileStatus] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    total_processing_time_ms: float = 0.0
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return _fields_dict(self)
