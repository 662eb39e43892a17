"""
Statement processing API routes.

Provides endpoints for single and batch statement processing.
"""
import shutil
import uuid
from pathlib import Path
from typing import List

import structlog
from fastapi import APIRouter, File, Form, UploadFile
from starlette.concurrency import run_in_threadpool

from ledgerline.config import get_settings
from ledgerline.exceptions import BatchValidationError, FileTooLargeError, InvalidFileTypeError, ValidationError
from ledgerline.middleware.logging import log_performance
from ledgerline.pipeline.merging import MergeOptions
from ledgerline.pipeline.orchestrator import PipelineOptions, process_document
from ledgerline.pipeline.thresholds import PipelineConfig
from ledgerline.services.batch_processor import BatchOptions, get_batch_processor, validate_batch_files

logger = structlog.get_logger(__name__)

router = APIRouter()

PDF_CONTENT_TYPES = {"application/pdf", "application/x-pdf"}


def _pipeline_options() -> PipelineOptions:
    settings = get_settings()
    return PipelineOptions(
        config=PipelineConfig.from_settings(settings),
        page_workers=settings.page_workers,
    )


def validate_pdf_upload(file: UploadFile, size: int) -> None:
    """
    Validate that an uploaded file is a PDF within the size limit.

    Raises:
        InvalidFileTypeError: Wrong extension or content type.
        FileTooLargeError: Over `max_upload_size_mb`.
        ValidationError: Empty upload.
    """
    settings = get_settings()
    filename = file.filename or ""
    if not filename.lower().endswith(".pdf") or (
        file.content_type and file.content_type not in PDF_CONTENT_TYPES
    ):
        raise InvalidFileTypeError(filename=filename, expected_types=[".pdf"])
    if size > settings.max_upload_size_bytes:
        raise FileTooLargeError(size=size, max_size=settings.max_upload_size_bytes, filename=filename)
    if size == 0:
        raise ValidationError(f"{filename} is empty", field="file")


async def save_upload(file: UploadFile, directory: Path) -> Path:
    """Validate an upload and write it under `directory`, keeping its name."""
    content = await file.read()
    validate_pdf_upload(file, len(content))
    directory.mkdir(parents=True, exist_ok=True)
    file_path = directory / Path(file.filename).name
    file_path.write_bytes(content)
    return file_path


@router.post(
    "/statements/process",
    summary="Process one statement PDF",
    description="Extract, reconcile and balance-check the transactions of one bank statement.",
)
@log_performance("statement_processing")
async def process_statement(file: UploadFile = File(...)) -> dict:
    """
    Process a single statement.

    Returns:
        ProcessingResult as JSON. Extractor failures come back with
        `success: false` and an error entry rather than an HTTP error.
    """
    work_dir = get_settings().upload_dir / str(uuid.uuid4())
    try:
        file_path = await save_upload(file, work_dir)
        logger.info("Statement received", filename=file_path.name)
        result = await run_in_threadpool(process_document, file_path, _pipeline_options())
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)
    return result.to_dict()


@router.post(
    "/statements/batch",
    summary="Process several statement PDFs",
    description="Process statements concurrently, merge them and flag duplicate transactions.",
)
@log_performance("batch_processing")
async def process_batch(
    files: List[UploadFile] = File(...),
    sort_by_date: bool = Form(True),
    add_source_column: bool = Form(True),
    detect_duplicates: bool = Form(True),
) -> dict:
    """
    Process a batch of statements.

    Returns:
        BatchProcessingResult as JSON.
    """
    settings = get_settings()
    if len(files) > settings.max_batch_files:
        raise BatchValidationError([f"Too many files: {len(files)} (maximum {settings.max_batch_files})"])

    batch_dir = settings.upload_dir / str(uuid.uuid4())
    try:
        # Names are kept for source tagging; a per-file folder keeps duplicates apart
        file_paths = [await save_upload(file, batch_dir / str(index)) for index, file in enumerate(files)]
        errors = validate_batch_files(file_paths, settings)
        if errors:
            raise BatchValidationError(errors)

        logger.info("Batch received", file_count=len(file_paths))
        processor = get_batch_processor(settings.batch_concurrency, _pipeline_options())
        result = await processor.process_batch_pdfs(
            file_paths,
            BatchOptions(
                merge=MergeOptions(sort_by_date=sort_by_date, add_source_column=add_source_column),
                detect_duplicates=detect_duplicates,
            ),
        )
    finally:
        shutil.rmtree(batch_dir, ignore_errors=True)
    return result.to_dict()
