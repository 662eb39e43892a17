"""
Orchestrator for the Ledgerline pipeline.

Main entry point that coordinates the stages:
upload:   accept the file
extract:  positioned tokens per page (pdfplumber, optional OCR source)
anchor:   table regions, column bands, cross-region reconciliation
stitch:   ledger rows, continuation lines, balance segments
validate: confidence scores and running-balance checks
output:   StandardizedDocument assembly

Only extractor failures make a run unsuccessful. Layout, arithmetic and
conflict problems become warnings and row statuses on the document.
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import structlog

from ledgerline.exceptions import DocumentProcessingError
from ledgerline.pipeline.balance import generate_audit_flags, get_balance_validator
from ledgerline.pipeline.column_reconciler import reconcile_columns
from ledgerline.pipeline.confidence import aggregate_confidence, get_confidence_scorer
from ledgerline.pipeline.extraction import OCRTokenSource, get_token_extractor
from ledgerline.pipeline.models import (
    ExtractedDocument,
    OverallValidation,
    ProcessingError,
    ProcessingResult,
    ProcessingStage,
    StageName,
    StandardizedDocument,
)
from ledgerline.pipeline.stitching import get_transaction_stitcher
from ledgerline.pipeline.table_detection import get_table_detector
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG, PipelineConfig
from ledgerline.services.header_extractor import get_header_extractor

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[ProcessingStage], None]

NO_COLUMNS_WARNING = "No column structure detected"


@dataclass
class PipelineOptions:
    """Configuration options for a pipeline run."""
    config: PipelineConfig = DEFAULT_CONFIG
    # Token source for pages without a text layer
    ocr_source: Optional[OCRTokenSource] = None
    page_workers: int = 1
    # Overrides the currency found in the statement header
    currency: Optional[str] = None


class _StageReporter:
    """Records progress events and forwards them to an optional callback."""

    def __init__(self, config: PipelineConfig, callback: Optional[ProgressCallback]):
        self._config = config
        self._callback = callback
        self.stages: List[ProcessingStage] = []

    def emit(self, stage: StageName, message: Optional[str] = None, progress: Optional[int] = None) -> None:
        event = ProcessingStage(
            stage=stage,
            progress=self._config.progress_for(stage) if progress is None else progress,
            message=message,
        )
        self.stages.append(event)
        if self._callback is None:
            return
        try:
            self._callback(event)
        except Exception as e:
            # Progress reporting is advisory
            logger.warning("Progress callback failed", stage=stage.value, error=str(e))


def process_document(
    pdf_path: str | Path,
    options: Optional[PipelineOptions] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> ProcessingResult:
    """
    Run the full pipeline on one PDF statement.

    Args:
        pdf_path: Path to the statement PDF.
        options: Pipeline options.
        on_progress: Called with each ProcessingStage as it completes.

    Returns:
        ProcessingResult. On extractor failure `success` is False, there is
        no document and `errors` holds the extractor error.
    """
    options = options or PipelineOptions()
    pdf_path = Path(pdf_path)
    reporter = _StageReporter(options.config, on_progress)
    start_time = time.time()

    reporter.emit(StageName.UPLOAD, f"Received {pdf_path.name}")

    extractor = get_token_extractor(ocr_source=options.ocr_source, page_workers=options.page_workers)
    try:
        extracted = extractor.extract(pdf_path)
    except DocumentProcessingError as e:
        logger.error(
            "Statement processing failed",
            file=pdf_path.name,
            error_code=e.error_code,
            error=e.message,
        )
        return ProcessingResult(
            success=False,
            errors=[ProcessingError(code=e.error_code, message=e.message, recoverable=e.recoverable)],
            stages=reporter.stages,
            total_duration_ms=(time.time() - start_time) * 1000,
            file_name=pdf_path.name,
        )

    result = _run_stages(extracted, options, reporter)
    result.total_duration_ms = (time.time() - start_time) * 1000
    return result


def process_tokens(
    extracted: ExtractedDocument,
    options: Optional[PipelineOptions] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> ProcessingResult:
    """
    Run the pipeline on tokens that were already extracted.

    Same stages and result as `process_document`, minus the PDF read.
    """
    options = options or PipelineOptions()
    reporter = _StageReporter(options.config, on_progress)
    start_time = time.time()
    reporter.emit(StageName.UPLOAD, f"Received {extracted.file_name}")
    result = _run_stages(extracted, options, reporter)
    result.total_duration_ms = (time.time() - start_time) * 1000
    return result


def _run_stages(
    extracted: ExtractedDocument,
    options: PipelineOptions,
    reporter: _StageReporter,
) -> ProcessingResult:
    config = options.config
    warnings: List[str] = []

    # =================================================================
    # EXTRACT
    # =================================================================
    token_count = sum(len(p.tokens) for p in extracted.pages)
    reporter.emit(StageName.EXTRACT, f"Extracted {token_count} tokens from {extracted.page_count} page(s)")
    ocr_pages = extracted.ocr_pages()
    if ocr_pages:
        warnings.append(f"Pages {', '.join(str(p) for p in ocr_pages)} were read with OCR")

    # =================================================================
    # ANCHOR
    # =================================================================
    detection = get_table_detector(config).detect_tables(extracted.pages)
    warnings.extend(detection.warnings)

    first_page = extracted.pages[0].page if extracted.pages else None
    header = get_header_extractor(day_first=config.day_first).extract(
        line.text for line in detection.lines if line.page == first_page
    )
    currency = options.currency or header.currency

    if not detection.tables:
        warnings.append(NO_COLUMNS_WARNING)
        reporter.emit(StageName.ANCHOR, NO_COLUMNS_WARNING)
        document = StandardizedDocument(
            segments=[],
            raw_transactions=[],
            extracted_header=header,
            total_pages=extracted.page_count,
            confidence_summary=aggregate_confidence([], config),
            warnings=_unique(warnings),
            source_file_name=extracted.file_name,
        )
        return _finish(document, extracted, reporter)

    outcome = reconcile_columns(detection.tables, config)
    warnings.extend(outcome.report.warnings)
    reporter.emit(
        StageName.ANCHOR,
        f"Detected {len(detection.tables)} table region(s), {len(outcome.columns)} column(s)",
    )

    # =================================================================
    # STITCH
    # =================================================================
    stitched = get_transaction_stitcher(config).stitch(detection.lines, outcome.columns, header)
    warnings.extend(stitched.warnings)
    reporter.emit(StageName.STITCH, f"Stitched {len(stitched.transactions)} transaction(s)")

    # =================================================================
    # VALIDATE
    # =================================================================
    scored = get_confidence_scorer(config).score_segments(stitched.segments)
    segments, overall = get_balance_validator(config).validate_segments(scored, currency)
    transactions = [t for segment in segments for t in segment.transactions]

    invalid = [s.index for s in segments if s.overall_validation == OverallValidation.INVALID]
    if invalid:
        warnings.append(f"Balance check failed for segment(s) {', '.join(str(i) for i in invalid)}")
    reporter.emit(StageName.VALIDATE, f"Balance check: {overall.value}")

    document = StandardizedDocument(
        segments=segments,
        raw_transactions=transactions,
        extracted_header=header,
        total_pages=extracted.page_count,
        overall_validation=overall,
        table_metrics=detection.tables,
        column_layout=outcome.columns,
        conflict_report=outcome.report,
        confidence_summary=aggregate_confidence(transactions, config),
        audit_flags=generate_audit_flags(segments),
        warnings=_unique(warnings),
        source_file_name=extracted.file_name,
    )
    return _finish(document, extracted, reporter)


def _finish(
    document: StandardizedDocument,
    extracted: ExtractedDocument,
    reporter: _StageReporter,
) -> ProcessingResult:
    reporter.emit(StageName.OUTPUT, "Assembling document")
    logger.info(
        "Statement processed",
        file=extracted.file_name,
        pages=extracted.page_count,
        transactions=document.total_transactions,
        overall_validation=document.overall_validation.value,
        warnings=len(document.warnings),
    )
    reporter.emit(StageName.OUTPUT, "Processing complete", progress=100)
    return ProcessingResult(
        success=True,
        document=document,
        warnings=list(document.warnings),
        stages=reporter.stages,
        file_name=extracted.file_name,
        page_count=extracted.page_count,
    )


def _unique(items: List[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered
