"""
Batch processor service for Ledgerline.

Handles parallel processing of multiple PDF bank statements, then merges
the results into one document and flags duplicate transactions.
"""
import asyncio
import dataclasses
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

import structlog

from ledgerline.config import Settings, get_settings
from ledgerline.pipeline.duplicates import DuplicateOptions, detect_duplicates, flag_duplicates
from ledgerline.pipeline.merging import MergeOptions, merge_documents
from ledgerline.pipeline.models import (
    BatchFileStatus,
    BatchProcessingResult,
    DuplicateSummary,
    FileState,
    ProcessingResult,
    ProcessingStage,
)
from ledgerline.pipeline.orchestrator import PipelineOptions, process_document

logger = structlog.get_logger(__name__)

ALLOWED_EXTENSIONS = {".pdf"}


class CancellationToken:
    """Cooperative cancellation: files not yet started are skipped."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class BatchOptions:
    """Options for a batch run."""
    merge: MergeOptions = field(default_factory=MergeOptions)
    detect_duplicates: bool = True
    # Called from worker threads
    on_file_progress: Optional[Callable[[str, ProcessingStage], None]] = None
    on_file_complete: Optional[Callable[[str, ProcessingResult], None]] = None
    on_file_error: Optional[Callable[[str, str], None]] = None
    cancellation: Optional[CancellationToken] = None


def validate_batch_files(paths: Sequence[Path], settings: Optional[Settings] = None) -> List[str]:
    """
    Check a batch before any file is processed.

    Returns:
        One message per problem; an empty list means the batch is acceptable.
    """
    settings = settings or get_settings()
    errors: List[str] = []

    if not paths:
        errors.append("No files provided")
    if len(paths) > settings.max_batch_files:
        errors.append(f"Too many files: {len(paths)} (maximum {settings.max_batch_files})")

    for path in paths:
        path = Path(path)
        if path.suffix.lower() not in ALLOWED_EXTENSIONS:
            errors.append(f"{path.name}: not a PDF file")
            continue
        if not path.exists():
            errors.append(f"{path.name}: file not found")
            continue
        size = path.stat().st_size
        if size > settings.max_upload_size_bytes:
            errors.append(f"{path.name}: exceeds {settings.max_upload_size_mb}MB limit")
    return errors


def _safe_call(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception as e:
        logger.warning("Batch callback failed", error=str(e))


class BatchProcessor:
    """
    Service for batch processing multiple statement PDFs.

    Features:
    - Parallel processing with configurable concurrency
    - Progress callbacks per file
    - Error isolation (one failure doesn't stop batch)
    - Merge and duplicate flagging across files
    """

    DEFAULT_CONCURRENCY = 3

    def __init__(
        self,
        max_concurrency: int = DEFAULT_CONCURRENCY,
        pipeline_options: Optional[PipelineOptions] = None,
    ):
        """Initialize batch processor."""
        self._max_concurrency = max(1, max_concurrency)
        self._pipeline_options = pipeline_options or PipelineOptions()

    async def process_batch_pdfs(
        self,
        files: Sequence[Path],
        options: Optional[BatchOptions] = None,
    ) -> BatchProcessingResult:
        """
        Process statements concurrently and merge the successful ones.

        Args:
            files: PDF paths; merge order follows this order.
            options: Merge, duplicate and callback options.

        Returns:
            BatchProcessingResult with per-file statuses and the merged document.
        """
        options = options or BatchOptions()
        start_time = time.time()
        files = [Path(f) for f in files]
        statuses = [BatchFileStatus(file_name=f.name) for f in files]
        results: List[Optional[ProcessingResult]] = [None] * len(files)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def process_file(index: int, file_path: Path) -> None:
            async with semaphore:
                status = statuses[index]
                if options.cancellation is not None and options.cancellation.cancelled:
                    return
                status.status = FileState.PROCESSING
                file_start = time.time()
                try:
                    # Run extraction in thread pool (CPU-bound)
                    loop = asyncio.get_running_loop()
                    result = await loop.run_in_executor(
                        None,
                        self._process_file,
                        file_path,
                        status,
                        options,
                    )
                    results[index] = result
                    if result.success:
                        status.status = FileState.COMPLETE
                        status.progress = 100
                        status.page_count = result.page_count
                        status.transaction_count = result.document.total_transactions
                        _safe_call(options.on_file_complete, file_path.name, result)
                    else:
                        status.status = FileState.ERROR
                        status.error = "; ".join(e.message for e in result.errors)
                        _safe_call(options.on_file_error, file_path.name, status.error)

                except Exception as e:
                    status.status = FileState.ERROR
                    status.error = str(e)
                    logger.warning(
                        "Batch file processing failed",
                        file=str(file_path),
                        error=str(e),
                    )
                    _safe_call(options.on_file_error, file_path.name, str(e))
                finally:
                    status.processing_time_ms = (time.time() - file_start) * 1000

        await asyncio.gather(*(process_file(i, f) for i, f in enumerate(files)))

        cancelled = options.cancellation is not None and options.cancellation.cancelled
        errors = [f"{s.file_name}: {s.error}" for s in statuses if s.status == FileState.ERROR]
        warnings: List[str] = []
        if cancelled:
            skipped = [s.file_name for s in statuses if s.status == FileState.PENDING]
            if skipped:
                warnings.append(f"Batch cancelled; skipped {', '.join(skipped)}")

        documents = [r.document for r in results if r is not None and r.success and r.document is not None]
        if not documents:
            logger.warning("Batch produced no documents", files=len(files), failed=len(errors))
            return BatchProcessingResult(
                success=False,
                file_statuses=statuses,
                errors=["No files were successfully processed"] + errors,
                warnings=warnings,
                total_processing_time_ms=(time.time() - start_time) * 1000,
                cancelled=cancelled,
            )

        config = self._pipeline_options.config
        merged = merge_documents(documents, options.merge, config)
        document = merged.document
        warnings.extend(merged.warnings)

        duplicates = detect_duplicates(
            document.raw_transactions,
            DuplicateOptions.from_config(config, enabled=options.detect_duplicates),
        )
        if duplicates.groups:
            flagged = flag_duplicates(document.raw_transactions, duplicates.groups)
            by_row = {t.row_index: t for t in flagged}
            document.raw_transactions = flagged
            document.segments = [
                dataclasses.replace(segment, transactions=tuple(by_row[t.row_index] for t in segment.transactions))
                for segment in document.segments
            ]
            warnings.append(f"{duplicates.total_flagged} possible duplicate transaction(s) flagged")
        document.warnings = list(warnings)

        processing_time = (time.time() - start_time) * 1000
        result = BatchProcessingResult(
            success=True,
            merged_document=document,
            total_transactions=document.total_transactions,
            duplicates=DuplicateSummary(
                detected=bool(duplicates.groups),
                total_flagged=duplicates.total_flagged,
                groups=duplicates.groups,
            ),
            file_statuses=statuses,
            errors=errors,
            warnings=warnings,
            total_processing_time_ms=processing_time,
            cancelled=cancelled,
        )

        logger.info(
            "Batch completed",
            files=len(files),
            successful=len(documents),
            failed=len(errors),
            transactions=result.total_transactions,
            duplicates=duplicates.total_flagged,
            time_ms=processing_time,
        )
        return result

    def _process_file(self, file_path: Path, status: BatchFileStatus, options: BatchOptions) -> ProcessingResult:
        """Run the pipeline on a single file."""

        def on_progress(stage: ProcessingStage) -> None:
            status.progress = stage.progress
            _safe_call(options.on_file_progress, file_path.name, stage)

        return process_document(file_path, self._pipeline_options, on_progress)


def process_batch_pdfs_sync(
    files: Sequence[Path],
    options: Optional[BatchOptions] = None,
    processor: Optional["BatchProcessor"] = None,
) -> BatchProcessingResult:
    """Blocking wrapper around BatchProcessor.process_batch_pdfs."""
    processor = processor or get_batch_processor()
    return asyncio.run(processor.process_batch_pdfs(files, options))


def get_batch_processor(
    max_concurrency: Optional[int] = None,
    pipeline_options: Optional[PipelineOptions] = None,
) -> BatchProcessor:
    """Get BatchProcessor instance."""
    if max_concurrency is None:
        max_concurrency = get_settings().batch_concurrency
    return BatchProcessor(max_concurrency=max_concurrency, pipeline_options=pipeline_options)
