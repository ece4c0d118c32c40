"""
ErrorLog Repository

운영자 확인이 필요한 실패 상황 기록
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from truthchain.models.internal import ErrorLog
from truthchain.repositories.base import BaseRepository
from truthchain.schemas.error_log import ErrorLogResponse


class ErrorLogRepository(BaseRepository[ErrorLog, ErrorLogResponse]):
    """ErrorLog 전용 Repository"""

    def __init__(self, db: Session):
        super().__init__(ErrorLog, ErrorLogResponse, db)

    def create_error_log(
        self, check_type: str, details: Dict[str, Any], status: str = "OPEN"
    ) -> ErrorLogResponse:
        """에러 로그 생성"""
        self._ensure_clean_session()
        error_log = ErrorLog(check_type=check_type, status=status, details=details)
        try:
            self.db.add(error_log)
            self.db.flush()
            self.db.refresh(error_log)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return ErrorLogResponse.model_validate(error_log)

    def get_recent_errors(
        self, limit: int = 50, check_type: Optional[str] = None
    ) -> List[ErrorLogResponse]:
        """최근 에러 로그 조회"""
        self._ensure_clean_session()
        query = self.db.query(ErrorLog).order_by(desc(ErrorLog.id))
        if check_type:
            query = query.filter(ErrorLog.check_type == check_type)
        return [ErrorLogResponse.model_validate(log) for log in query.limit(limit).all()]

    def count_open(self, check_type: Optional[str] = None) -> int:
        filters: Dict[str, Any] = {"status": "OPEN"}
        if check_type:
            filters["check_type"] = check_type
        return self.count(filters=filters)
