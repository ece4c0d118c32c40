from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class BalanceResponse(BaseModel):
    """잔액 응답"""

    user_id: int = Field(..., description="사용자 ID")
    balance: Decimal = Field(..., description="현재 잔액 (ALGO)")

    class Config:
        from_attributes = True


class CanStakeResponse(BaseModel):
    """스테이크 가능 여부 사전 확인 (읽기 전용)"""

    can_stake: bool = Field(..., description="스테이크 가능 여부")
    current_balance: Decimal = Field(..., description="현재 잔액")
    required: Decimal = Field(..., description="요청 금액")


class LedgerEntry(BaseModel):
    """잔액 거래 내역 항목"""

    id: int = Field(..., description="거래 ID")
    type: str = Field(..., description="거래 타입")
    amount: Decimal = Field(..., description="변동량 (차감은 음수)")
    balance_after: Decimal = Field(..., description="거래 후 잔액")
    description: str = Field(..., description="거래 설명")
    ref_id: str = Field(..., description="참조 ID")
    related_post_id: Optional[int] = Field(None, description="관련 게시물 ID")
    created_at: Optional[datetime] = Field(None, description="생성 시간")

    class Config:
        from_attributes = True


class LedgerResponse(BaseModel):
    """거래 내역 조회 응답"""

    balance: Decimal = Field(..., description="현재 잔액")
    entries: List[LedgerEntry] = Field(..., description="거래 내역 목록")
    total_count: int = Field(..., description="전체 항목 수")
    has_next: bool = Field(..., description="다음 페이지 존재 여부")


class LedgerResult(BaseModel):
    """차감/적립 결과

    applied가 False이면 같은 ref_id로 이미 처리된 거래를 돌려준 것이며
    이번 호출에서는 잔액이 변하지 않았습니다.
    """

    transaction_id: int
    user_id: int
    amount: Decimal = Field(..., description="부호 있는 변동량")
    balance_after: Decimal
    ref_id: str
    applied: bool = True

    class Config:
        from_attributes = True


class BalanceIntegrityResponse(BaseModel):
    """원장 정합성 검증 응답"""

    status: str = Field(..., description="검증 상태 (OK, MISMATCH)")
    user_id: int
    opening_balance: Decimal
    total_deltas: Decimal
    calculated_balance: Decimal
    recorded_balance: Decimal
    entry_count: int
