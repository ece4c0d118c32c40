from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from truthchain.models.base import Base, BigIntPK


class ErrorLog(Base):
    """
    운영자 확인이 필요한 실패 상황 추적용 모델

    스테이크 보상 트랜잭션(환불) 실패처럼 자동으로 복구할 수 없는 상황을
    기록합니다. 운영자는 이 테이블을 보고 잔액을 수동으로 맞춥니다.
    """

    __tablename__ = "error_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    check_type: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="에러 타입 (RECONCILIATION_REQUIRED, STAKE_FAILED 등)",
    )
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default="OPEN", comment="상태 (OPEN | RESOLVED)"
    )
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True, comment="에러 상세 정보 (사용자, 금액, 원인 등)"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), comment="에러 발생 시각"
    )
