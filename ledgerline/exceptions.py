"""
Custom exceptions for Ledgerline.

Provides a hierarchy of exceptions with error codes for consistent error handling.
Only extractor failures and malformed input are raised; structural, arithmetic
and column-conflict issues travel as warnings on the pipeline results.
"""
from typing import Any, Dict, List, Optional


class LedgerlineError(Exception):
    """
    Base exception for all Ledgerline errors.

    Attributes:
        error_code: Unique error code (e.g., LDG-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "LDG-000"
    http_status: int = 500
    recoverable: bool = False

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Document Errors (LDG-1XX)
class DocumentProcessingError(LedgerlineError):
    """Error during document processing."""
    error_code = "LDG-100"
    http_status = 422

    def __init__(self, message: str = "Failed to process document", **kwargs):
        super().__init__(message, **kwargs)


class InvalidFileTypeError(LedgerlineError):
    """Invalid file type uploaded."""
    error_code = "LDG-102"
    http_status = 400

    def __init__(self, filename: str, expected_types: List[str], **kwargs):
        message = f"Invalid file type. Expected: {', '.join(expected_types)}"
        super().__init__(message, details={"filename": filename, "expected_types": expected_types}, **kwargs)


class FileTooLargeError(LedgerlineError):
    """File exceeds maximum size limit."""
    error_code = "LDG-103"
    http_status = 413

    def __init__(self, size: int, max_size: int, filename: Optional[str] = None, **kwargs):
        message = f"File too large. Maximum size: {max_size // (1024 * 1024)}MB"
        super().__init__(
            message,
            details={"size": size, "max_size": max_size, "filename": filename},
            **kwargs,
        )


# Extraction Errors (LDG-2XX)
class TokenExtractionError(DocumentProcessingError):
    """Token extraction failed (corrupt PDF, unsupported encoding)."""
    error_code = "LDG-200"
    http_status = 422

    def __init__(self, message: str = "Failed to extract text from document", **kwargs):
        super().__init__(message, **kwargs)


class OCRError(DocumentProcessingError):
    """The plugged-in OCR token source failed."""
    error_code = "LDG-202"
    http_status = 422

    def __init__(self, message: str = "OCR processing failed", **kwargs):
        super().__init__(message, **kwargs)


# Batch Errors (LDG-4XX)
class BatchValidationError(LedgerlineError):
    """Batch input rejected before processing."""
    error_code = "LDG-400"
    http_status = 400

    def __init__(self, errors: List[str], **kwargs):
        message = "; ".join(errors) if errors else "Invalid batch"
        super().__init__(message, details={"errors": errors}, **kwargs)


# Export Errors (LDG-5XX)
class ExportBlockedError(LedgerlineError):
    """Export failed integrity checks and must not be downloaded."""
    error_code = "LDG-500"
    http_status = 409

    def __init__(self, reasons: List[str], **kwargs):
        message = "Export blocked: " + "; ".join(reasons)
        super().__init__(message, details={"reasons": reasons}, **kwargs)


# Input Validation Errors (LDG-6XX)
class ValidationError(LedgerlineError):
    """Malformed request input."""
    error_code = "LDG-600"
    http_status = 400

    def __init__(self, message: str = "Validation failed", field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {}) or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)
