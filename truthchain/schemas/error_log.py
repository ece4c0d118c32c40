"""
ErrorLog 관련 Pydantic 스키마

운영자가 수동으로 확인해야 하는 실패 상황 기록
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorTypeEnum(str, Enum):
    """에러 타입 정의"""
    RECONCILIATION_REQUIRED = "RECONCILIATION_REQUIRED"


class ErrorLogResponse(BaseModel):
    """에러 로그 응답 스키마"""
    id: int
    check_type: str
    status: str
    details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
