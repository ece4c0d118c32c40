import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from truthchain.deps import get_error_log_service
from truthchain.schemas.health import HealthCheckResponse
from truthchain.services.error_log_service import ErrorLogService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthCheckResponse)
def health_check(
    error_log_service: ErrorLogService = Depends(get_error_log_service),
) -> HealthCheckResponse:
    """Health check endpoint."""
    try:
        error_log_service.db.execute(text("SELECT 1"))
        open_reconciliations = error_log_service.count_open_reconciliations()
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {e}")
        return HealthCheckResponse(
            status="degraded",
            database="unavailable",
            system_operational=False,
            error=type(e).__name__,
        )
    return HealthCheckResponse(open_reconciliations=open_reconciliations)
