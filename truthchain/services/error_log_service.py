"""
ErrorLog Service

운영자가 수동으로 처리해야 하는 실패 상황 기록
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from truthchain.repositories.error_log_repository import ErrorLogRepository
from truthchain.schemas.error_log import ErrorLogResponse, ErrorTypeEnum

logger = logging.getLogger(__name__)


class ErrorLogService:
    """ErrorLog 통합 관리 서비스"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ErrorLogRepository(db)

    def log_reconciliation_required(
        self,
        user_id: int,
        amount: Decimal,
        ref_id: str,
        reason: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorLogResponse:
        """보상 트랜잭션(환불) 실패 기록 - 운영자가 잔액을 직접 맞춰야 함"""
        details: Dict[str, Any] = {
            "user_id": user_id,
            "amount": str(amount),
            "ref_id": ref_id,
            "reason": reason,
        }
        if context:
            details.update(context)
        return self.repo.create_error_log(
            check_type=ErrorTypeEnum.RECONCILIATION_REQUIRED.value, details=details
        )

    def get_recent_errors(
        self, limit: int = 50, check_type: Optional[ErrorTypeEnum] = None
    ) -> List[ErrorLogResponse]:
        return self.repo.get_recent_errors(
            limit=limit, check_type=check_type.value if check_type else None
        )

    def count_open_reconciliations(self) -> int:
        return self.repo.count_open(ErrorTypeEnum.RECONCILIATION_REQUIRED.value)
