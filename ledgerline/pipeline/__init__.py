"""
Ledgerline Pipeline - Bank Statement Extraction and Reconciliation.

Turns bank statement PDFs into a standardized, balance-checked ledger.

Key Principles:
1. Geometry first - columns come from token positions, not from text guesses
2. Never invent - every amount is read from the statement
3. Every row is checked against the running balance
4. Problems are reported on rows and documents, never silently dropped
5. Same input, same output
"""

from ledgerline.pipeline.orchestrator import (
    PipelineOptions,
    process_document,
    process_tokens,
)
from ledgerline.pipeline.models import (
    ExtractedDocument,
    ParsedTransaction,
    ProcessingResult,
    StandardizedDocument,
)
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG, PipelineConfig

__version__ = "1.0.0"
__all__ = [
    "process_document",
    "process_tokens",
    "PipelineOptions",
    "PipelineConfig",
    "DEFAULT_CONFIG",
    "ExtractedDocument",
    "ParsedTransaction",
    "ProcessingResult",
    "StandardizedDocument",
]
