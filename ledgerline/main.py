"""
FastAPI application entry point.

Wires logging, error tracking, middleware and the statement routes together.
"""
import os
import traceback

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from ledgerline.api.routes import exports, monitoring, statements
from ledgerline.config import Settings, get_settings
from ledgerline.exceptions import LedgerlineError
from ledgerline.middleware.logging import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    configure_logging,
    redact_sensitive_data,
)
from ledgerline.pipeline import __version__

settings = get_settings()


def scrub_event(event: dict, hint: dict) -> dict:
    """Sentry before_send hook: strip account details from uploads and extras."""
    request = event.get("request") or {}
    if "data" in request:
        request["data"] = redact_sensitive_data(request["data"])
    if "extra" in event:
        event["extra"] = redact_sensitive_data(event["extra"])
    return event


def init_error_tracking(config: Settings) -> bool:
    """Start Sentry when a DSN is configured. Returns whether it was started."""
    if not config.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=config.sentry_dsn,
        environment=os.getenv("ENVIRONMENT", "development"),
        release=f"ledgerline@{__version__}",
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            LoggingIntegration(level=None, event_level="ERROR"),
        ],
        send_default_pii=False,
        before_send=scrub_event,
    )
    return True


configure_logging(settings.log_level)
error_tracking_enabled = init_error_tracking(settings)

logger = structlog.get_logger(__name__)

app = FastAPI(
    title="Ledgerline API",
    description="""
## Bank Statement Extraction and Reconciliation API

Ledgerline turns bank statement PDFs into a standardized ledger and proves
the result adds up.

### Key Features

- **Column detection** from token geometry, reconciled across pages
- **Transaction stitching** with multi-line descriptions and CR/DR handling
- **Running-balance validation** per statement segment
- **Batch merging** with gap and duplicate detection
- **Export validation** against the extracted transactions
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Statements", "description": "Statement processing, single and batch"},
        {"name": "Exports", "description": "Export reconciliation"},
        {"name": "Monitoring", "description": "Health checks"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)

# Order matters: correlation ID first
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(statements.router, prefix="/api/v1", tags=["Statements"])
app.include_router(exports.router, prefix="/api/v1", tags=["Exports"])
app.include_router(monitoring.router, tags=["Monitoring"])


@app.exception_handler(LedgerlineError)
async def ledgerline_exception_handler(request: Request, exc: LedgerlineError):
    """Handle all Ledgerline custom exceptions."""
    logger.error(
        "ledgerline_error",
        error_code=exc.error_code,
        message=exc.message,
        details=exc.details,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions with consistent format."""
    sentry_sdk.capture_exception(exc)

    logger.error(
        "unhandled_error",
        error_type=type(exc).__name__,
        message=str(exc),
        path=str(request.url.path),
        traceback=traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "error_code": "LDG-999",
            "message": "An unexpected error occurred. Please try again.",
            "details": {"error_type": type(exc).__name__} if settings.debug else {},
        },
    )


@app.on_event("startup")
async def startup_event() -> None:
    """Initialize application on startup."""
    logger.info("Starting Ledgerline API", debug=settings.debug, version=__version__)
    if not error_tracking_enabled:
        logger.warning("Sentry error tracking not configured (LEDGERLINE_SENTRY_DSN not set)")
    settings.upload_dir.mkdir(parents=True, exist_ok=True)
