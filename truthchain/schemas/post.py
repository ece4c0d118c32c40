from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from truthchain.models.post import PostStatusEnum


class PostCreate(BaseModel):
    """게시물 생성 요청 (작성자 스테이크 포함)"""

    content: str = Field(..., description="주장 내용")
    stake_amount: Decimal = Field(Decimal("0"), ge=0, description="작성자 스테이크")
    category: str = Field("general", min_length=1, max_length=50)
    truth_confidence: int = Field(50, ge=0, le=100, description="작성자 확신도 (%)")
    time_frame_days: Optional[int] = Field(None, description="검증 기간 (일)")


class PostResponse(BaseModel):
    id: int
    author_id: int
    content: str
    category: str
    truth_confidence: int
    expires_at: Optional[datetime] = None
    author_stake: Decimal
    stake_amount: Decimal
    challenge_pool: Decimal
    verifications: int
    challenges: int
    status: PostStatusEnum = PostStatusEnum.OPEN
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[int] = None
    resolution_notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PostCreateResult(BaseModel):
    post: PostResponse
    new_balance: Optional[Decimal] = Field(None, description="작성자 스테이크 차감 후 잔액")


class AggregateCounters(BaseModel):
    stake_amount: Decimal
    challenge_pool: Decimal
    verifications: int
    challenges: int


class AggregateCheckResponse(BaseModel):
    """게시물 집계 정합성 결과"""

    post_id: int
    status: str = Field(..., description="OK | MISMATCH | REBUILT")
    stored: AggregateCounters
    computed: AggregateCounters


class ResolvePostRequest(BaseModel):
    """관리자 판정 요청"""

    verdict: PostStatusEnum = Field(..., description="verified | false")
    notes: Optional[str] = Field(None, max_length=1000, description="판정 메모")


class SettlementPayout(BaseModel):
    """판정 후 한 참여자에게 돌아가는 금액"""

    user_id: int
    record_id: Optional[int] = Field(None, description="작성자 스테이크면 None")
    side: str = Field(..., description="author | verification | challenge")
    stake: Decimal
    payout: Decimal = Field(..., description="원금 + 패자 풀 배분액")
    ref_id: str
    applied: bool = Field(..., description="이번 호출에서 적립됐으면 True, 이미 적립돼 있었으면 False")


class SettlementResult(BaseModel):
    post_id: int
    verdict: PostStatusEnum
    total_pool: Decimal
    winning_stake: Decimal
    losing_pool: Decimal
    voided: bool = Field(False, description="승자가 없어 모든 스테이크를 환불했으면 True")
    payouts: List[SettlementPayout]
