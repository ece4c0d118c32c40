"""
스테이크 API 라우터

- POST /stakes: 검증/챌린지 스테이크 (Idempotency-Key 헤더 지원)
- GET /stakes/posts/{post_id}: 게시물의 활성 스테이크 목록
- GET /stakes/me: 내 스테이크 목록
- POST /stakes/{record_id}/reverse: 관리자 환불
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Query

from truthchain.core.auth_middleware import get_current_active_user, require_admin
from truthchain.core.exceptions import ValidationError
from truthchain.deps import get_stake_service
from truthchain.models.stake import StakeKindEnum
from truthchain.schemas.auth import BaseResponse
from truthchain.schemas.pagination import PaginationLimits
from truthchain.schemas.stake import ReverseStakeRequest, StakeRequest
from truthchain.schemas.user import User as UserSchema
from truthchain.services.stake_service import StakeService

router = APIRouter(prefix="/stakes", tags=["stakes"])
logger = logging.getLogger(__name__)


@router.post("", response_model=BaseResponse)
def create_stake(
    payload: StakeRequest,
    idempotency_key: Optional[str] = Header(
        None, alias="Idempotency-Key", max_length=128
    ),
    current_user: UserSchema = Depends(get_current_active_user),
    service: StakeService = Depends(get_stake_service),
) -> BaseResponse:
    """
    게시물 검증/챌린지 스테이크

    스테이커는 항상 인증된 사용자이며 챌린지에는 reason이 필요합니다.
    같은 Idempotency-Key로 재시도하면 저장된 결과가 replayed=true로 반환되고
    다시 차감되지 않습니다.
    """
    if (
        idempotency_key
        and payload.idempotency_key
        and idempotency_key != payload.idempotency_key
    ):
        raise ValidationError(
            "Idempotency-Key header and body idempotency_key differ",
            details={"header": idempotency_key, "body": payload.idempotency_key},
        )

    result = service.stake(
        post_id=payload.post_id,
        staker_id=current_user.id,
        amount=payload.amount,
        kind=payload.kind,
        idempotency_key=idempotency_key or payload.idempotency_key,
        reason=payload.reason,
    )
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.get("/posts/{post_id}", response_model=BaseResponse)
def list_post_stakes(
    post_id: int = Path(..., gt=0),
    kind: Optional[StakeKindEnum] = Query(None, description="verification | challenge"),
    current_user: UserSchema = Depends(get_current_active_user),
    service: StakeService = Depends(get_stake_service),
) -> BaseResponse:
    records = service.list_post_stakes(post_id, kind=kind)
    return BaseResponse(
        success=True,
        data={"records": [r.model_dump(mode="json") for r in records]},
    )


@router.get("/me", response_model=BaseResponse)
def list_my_stakes(
    limit: int = Query(
        PaginationLimits.STAKE_RECORDS["default"],
        ge=PaginationLimits.STAKE_RECORDS["min"],
        le=PaginationLimits.STAKE_RECORDS["max"],
    ),
    offset: int = Query(0, ge=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: StakeService = Depends(get_stake_service),
) -> BaseResponse:
    records = service.list_user_stakes(current_user.id, limit=limit, offset=offset)
    return BaseResponse(
        success=True,
        data={"records": [r.model_dump(mode="json") for r in records]},
    )


@router.post("/{record_id}/reverse", response_model=BaseResponse)
def reverse_stake(
    payload: ReverseStakeRequest,
    record_id: int = Path(..., gt=0),
    admin_user: UserSchema = Depends(require_admin),
    service: StakeService = Depends(get_stake_service),
) -> BaseResponse:
    """관리자 환불 - 레코드를 reversed로 표시하고 스테이커에게 환불"""
    logger.info(f"Admin {admin_user.id} reversing stake {record_id}: {payload.reason}")
    result = service.reverse_stake(record_id, payload.reason)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))
