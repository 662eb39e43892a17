"""
Middleware module initialization.
"""
from ledgerline.middleware.logging import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    add_correlation_id_processor,
    configure_logging,
    get_correlation_id,
    log_performance,
    mask_account_numbers,
    redact_sensitive_data,
    redact_sensitive_processor,
)

__all__ = [
    "CorrelationIdMiddleware",
    "configure_logging",
    "RequestLoggingMiddleware",
    "get_correlation_id",
    "redact_sensitive_data",
    "mask_account_numbers",
    "log_performance",
    "add_correlation_id_processor",
    "redact_sensitive_processor",
]
