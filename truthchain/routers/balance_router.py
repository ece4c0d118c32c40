"""
잔액 API 라우터

- GET /balance: 내 잔액
- GET /balance/can-stake: 스테이크 가능 여부 사전 확인
- GET /balance/ledger: 내 거래 내역 (페이징)
- GET /balance/integrity: 내 원장 정합성 검증

모든 엔드포인트는 Bearer 토큰 인증이 필요합니다.
"""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from truthchain.core.auth_middleware import get_current_active_user
from truthchain.deps import get_balance_service
from truthchain.schemas.auth import BaseResponse
from truthchain.schemas.pagination import PaginationLimits, PaginationMeta
from truthchain.schemas.user import User as UserSchema
from truthchain.services.balance_service import BalanceService

router = APIRouter(prefix="/balance", tags=["balance"])
logger = logging.getLogger(__name__)


@router.get("", response_model=BaseResponse)
def get_my_balance(
    current_user: UserSchema = Depends(get_current_active_user),
    service: BalanceService = Depends(get_balance_service),
) -> BaseResponse:
    balance = service.get_balance_response(current_user.id)
    return BaseResponse(success=True, data=balance.model_dump(mode="json"))


@router.get("/can-stake", response_model=BaseResponse)
def can_stake(
    amount: Decimal = Query(..., description="스테이크하려는 금액 (ALGO)"),
    current_user: UserSchema = Depends(get_current_active_user),
    service: BalanceService = Depends(get_balance_service),
) -> BaseResponse:
    """읽기 전용 사전 확인 - 실제 차감 시 잔액은 다시 원자적으로 검증됩니다."""
    result = service.can_stake(current_user.id, amount)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.get("/ledger", response_model=BaseResponse)
def get_my_ledger(
    limit: int = Query(
        PaginationLimits.BALANCE_LEDGER["default"],
        ge=PaginationLimits.BALANCE_LEDGER["min"],
        le=PaginationLimits.BALANCE_LEDGER["max"],
        description="페이지 크기",
    ),
    offset: int = Query(0, ge=0, description="오프셋"),
    current_user: UserSchema = Depends(get_current_active_user),
    service: BalanceService = Depends(get_balance_service),
) -> BaseResponse:
    ledger = service.get_ledger(current_user.id, limit=limit, offset=offset)
    meta = PaginationMeta(
        limit=limit, offset=offset, total_count=ledger.total_count, has_next=ledger.has_next
    )
    return BaseResponse(
        success=True, data=ledger.model_dump(mode="json"), meta=meta.model_dump()
    )


@router.get("/integrity", response_model=BaseResponse)
def verify_my_integrity(
    current_user: UserSchema = Depends(get_current_active_user),
    service: BalanceService = Depends(get_balance_service),
) -> BaseResponse:
    result = service.verify_user_integrity(current_user.id)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))
