"""
Export validation API routes.
"""
import structlog
from fastapi import APIRouter, Query

from ledgerline.config import get_settings
from ledgerline.exceptions import ExportBlockedError
from ledgerline.pipeline.export_validation import get_export_validator, should_block_export, validation_summary
from ledgerline.pipeline.thresholds import PipelineConfig
from ledgerline.schemas.exports import ExportValidationRequest

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/exports/validate",
    summary="Validate an export against its source transactions",
)
async def validate_export_rows(
    request: ExportValidationRequest,
    enforce: bool = Query(False, description="Respond 409 instead of reporting when the export is blocked"),
) -> dict:
    """
    Reconcile exported rows with the extracted transactions.

    Returns:
        ExportValidationResult as JSON plus `blocked` and `block_reasons`.

    Raises:
        ExportBlockedError: `enforce` is set and the export is blocked.
    """
    config = PipelineConfig.from_settings(get_settings())
    result = get_export_validator(config).validate(
        request.source_transactions(),
        request.exported(),
        pdf_pages=request.pdf_pages,
    )
    blocked, reasons = should_block_export(result, config)
    if blocked:
        logger.warning("Export blocked", reasons=reasons)
        if enforce:
            raise ExportBlockedError(reasons)

    response = result.to_dict()
    response["summary"] = validation_summary(result)
    response["blocked"] = blocked
    response["block_reasons"] = reasons
    return response
