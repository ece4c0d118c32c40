import logging

from fastapi import APIRouter, Depends, Path

from truthchain.core.auth_middleware import get_current_active_user, require_admin
from truthchain.deps import get_post_service, get_settlement_service
from truthchain.schemas.auth import BaseResponse
from truthchain.schemas.post import PostCreate, ResolvePostRequest
from truthchain.schemas.user import User as UserSchema
from truthchain.services.post_service import PostService
from truthchain.services.settlement_service import SettlementService

router = APIRouter(prefix="/posts", tags=["posts"])
logger = logging.getLogger(__name__)


@router.post("", response_model=BaseResponse)
def create_post(
    payload: PostCreate,
    current_user: UserSchema = Depends(get_current_active_user),
    service: PostService = Depends(get_post_service),
) -> BaseResponse:
    """게시물 생성 (작성자 스테이크가 있으면 잔액에서 차감)"""
    result = service.create_post(current_user.id, payload)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.get("/{post_id}", response_model=BaseResponse)
def get_post(
    post_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: PostService = Depends(get_post_service),
) -> BaseResponse:
    post = service.get_post(post_id)
    return BaseResponse(success=True, data={"post": post.model_dump(mode="json")})


@router.get("/{post_id}/integrity", response_model=BaseResponse)
def verify_post_aggregate(
    post_id: int = Path(..., gt=0),
    admin_user: UserSchema = Depends(require_admin),
    service: PostService = Depends(get_post_service),
) -> BaseResponse:
    result = service.verify_aggregate(post_id)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.post("/{post_id}/integrity/rebuild", response_model=BaseResponse)
def rebuild_post_aggregate(
    post_id: int = Path(..., gt=0),
    admin_user: UserSchema = Depends(require_admin),
    service: PostService = Depends(get_post_service),
) -> BaseResponse:
    logger.info(f"Admin {admin_user.id} rebuilding aggregates for post {post_id}")
    result = service.rebuild_aggregate(post_id)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.post("/{post_id}/resolve", response_model=BaseResponse)
def resolve_post(
    payload: ResolvePostRequest,
    post_id: int = Path(..., gt=0),
    admin_user: UserSchema = Depends(require_admin),
    service: SettlementService = Depends(get_settlement_service),
) -> BaseResponse:
    """
    관리자 판정 - 게시물을 verified/false로 확정하고 승자에게 정산

    같은 판정으로 다시 호출하면 이미 적립된 지급은 applied=false로 돌아옵니다.
    """
    logger.info(
        f"Admin {admin_user.id} resolving post {post_id} as {payload.verdict.value}"
    )
    result = service.resolve(
        post_id, payload.verdict, resolved_by=admin_user.id, notes=payload.notes
    )
    return BaseResponse(success=True, data=result.model_dump(mode="json"))
