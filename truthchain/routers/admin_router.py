"""
운영자 API 라우터

- GET /admin/error-logs: 운영자 확인이 필요한 실패 기록 (환불 실패 등)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from truthchain.core.auth_middleware import require_admin
from truthchain.deps import get_error_log_service
from truthchain.schemas.auth import BaseResponse
from truthchain.schemas.error_log import ErrorTypeEnum
from truthchain.schemas.user import User as UserSchema
from truthchain.services.error_log_service import ErrorLogService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/error-logs", response_model=BaseResponse)
def list_error_logs(
    check_type: Optional[ErrorTypeEnum] = Query(None, description="에러 타입 필터"),
    limit: int = Query(50, ge=1, le=200),
    admin_user: UserSchema = Depends(require_admin),
    service: ErrorLogService = Depends(get_error_log_service),
) -> BaseResponse:
    logs = service.get_recent_errors(limit=limit, check_type=check_type)
    return BaseResponse(
        success=True,
        data={
            "open_reconciliations": service.count_open_reconciliations(),
            "error_logs": [log.model_dump(mode="json") for log in logs],
        },
    )
