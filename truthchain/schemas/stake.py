from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from truthchain.models.stake import StakeKindEnum, StakeStatusEnum


class StakeRequest(BaseModel):
    """검증/챌린지 스테이크 요청"""

    post_id: int = Field(..., gt=0, description="게시물 ID")
    amount: Decimal = Field(..., description="스테이크 금액 (ALGO)")
    kind: StakeKindEnum = Field(..., description="verification | challenge")
    idempotency_key: Optional[str] = Field(
        None, min_length=1, max_length=128, description="재시도 식별 키"
    )
    reason: Optional[str] = Field(None, description="챌린지 사유 (challenge일 때 필수)")


class StakeRecordResponse(BaseModel):
    id: int
    post_id: int
    staker_id: int
    amount: Decimal
    kind: StakeKindEnum
    status: StakeStatusEnum
    idempotency_key: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None

    class Config:
        from_attributes = True


class StakeResult(BaseModel):
    """스테이크 결과 - 확정된 서버 상태"""

    new_balance: Decimal = Field(..., description="차감 후 잔액")
    record_id: int
    record: StakeRecordResponse
    replayed: bool = Field(False, description="같은 키로 이미 처리된 요청이면 True")


class ReverseStakeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255, description="환불 사유")


class ReverseStakeResult(BaseModel):
    record: StakeRecordResponse
    refunded_amount: Decimal
    new_balance: Decimal
