import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from truthchain.config import Settings, settings as default_settings
from truthchain.core.exceptions import (
    PostNotFoundError,
    UnknownUserError,
    ValidationError,
    WalletNotConnectedError,
)
from truthchain.models.balance import TransactionTypeEnum
from truthchain.repositories.post_repository import PostRepository
from truthchain.repositories.user_repository import UserRepository
from truthchain.schemas.post import (
    AggregateCheckResponse,
    PostCreate,
    PostCreateResult,
    PostResponse,
)
from truthchain.services.balance_service import BalanceService
from truthchain.utils.amounts import validate_stake_amount

logger = logging.getLogger(__name__)


class PostService:
    """게시물 생성(작성자 스테이크 포함)과 집계 정합성 관리"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        balance_service: Optional[BalanceService] = None,
    ):
        self.db = db
        self.settings = settings
        self.balance_service = balance_service or BalanceService(db)
        self.post_repo = PostRepository(db)
        self.user_repo = UserRepository(db)

    def _validate_content(self, content: str) -> str:
        content = content.strip()
        if len(content) < self.settings.POST_MIN_CONTENT_LENGTH:
            raise ValidationError(
                f"Post content must be at least {self.settings.POST_MIN_CONTENT_LENGTH} characters"
            )
        if len(content) > self.settings.POST_MAX_CONTENT_LENGTH:
            raise ValidationError(
                f"Post content must be at most {self.settings.POST_MAX_CONTENT_LENGTH} characters"
            )
        return content

    def _resolve_time_frame(self, time_frame_days: Optional[int]) -> int:
        days = (
            self.settings.POST_DEFAULT_TIME_FRAME_DAYS
            if time_frame_days is None
            else time_frame_days
        )
        if days < 1 or days > self.settings.POST_MAX_TIME_FRAME_DAYS:
            raise ValidationError(
                f"Time frame must be between 1 and {self.settings.POST_MAX_TIME_FRAME_DAYS} days",
                details={"time_frame_days": time_frame_days},
            )
        return days

    def create_post(self, author_id: int, request: PostCreate) -> PostCreateResult:
        """게시물 생성

        작성자 스테이크가 있으면 먼저 차감하고 게시물을 저장합니다. 저장이 실패하면
        차감을 환불하며, 환불마저 실패하면 ReconciliationRequiredError가 발생합니다.
        """
        author = self.user_repo.get_by_id(author_id)
        if author is None:
            raise UnknownUserError(author_id)

        content = self._validate_content(request.content)
        days = self._resolve_time_frame(request.time_frame_days)
        expires_at = datetime.now(timezone.utc) + timedelta(days=days)

        stake_amount = request.stake_amount
        debit = None
        refund_ref = None
        if stake_amount > 0:
            if self.settings.REQUIRE_CONNECTED_WALLET and not author.wallet_connected:
                raise WalletNotConnectedError()
            stake_amount = validate_stake_amount(
                stake_amount, self.settings.MIN_STAKE_AMOUNT, self.settings.MAX_STAKE_AMOUNT
            )
            attempt = uuid.uuid4().hex
            refund_ref = f"post_stake:{author_id}:{attempt}:refund"
            debit = self.balance_service.debit_with_recovery(
                author_id,
                stake_amount,
                TransactionTypeEnum.POST_STAKE,
                "Author stake for new post",
                ref_id=f"post_stake:{author_id}:{attempt}:debit",
                refund_ref_id=refund_ref,
                refund_description="Refund: post creation failed",
            )

        try:
            post = self.post_repo.create_post(
                author_id=author_id,
                content=content,
                category=request.category,
                truth_confidence=request.truth_confidence,
                expires_at=expires_at,
                author_stake=stake_amount,
            )
        except Exception as exc:
            if debit is not None:
                self.balance_service.compensate(
                    author_id,
                    stake_amount,
                    refund_ref,
                    "Refund: post creation failed",
                    cause=exc,
                )
            raise

        logger.info(f"User {author_id} created post {post.id} with stake {stake_amount}")
        return PostCreateResult(
            post=post, new_balance=debit.balance_after if debit else None
        )

    def get_post(self, post_id: int) -> PostResponse:
        post = self.post_repo.get_by_id(post_id)
        if post is None:
            raise PostNotFoundError(post_id)
        return post

    def verify_aggregate(self, post_id: int) -> AggregateCheckResponse:
        """집계 캐시와 활성 레코드 기준 재계산값 비교"""
        stored = self.post_repo.stored_counters(post_id)
        if stored is None:
            raise PostNotFoundError(post_id)
        computed = self.post_repo.compute_counters(post_id)

        status = "OK" if stored == computed else "MISMATCH"
        if status == "MISMATCH":
            logger.warning(
                f"Aggregate mismatch on post {post_id}: stored={stored.model_dump()} computed={computed.model_dump()}"
            )
        return AggregateCheckResponse(
            post_id=post_id, status=status, stored=stored, computed=computed
        )

    def rebuild_aggregate(self, post_id: int) -> AggregateCheckResponse:
        """관리자 복구 - 불일치하면 재계산값으로 덮어씀"""
        check = self.verify_aggregate(post_id)
        if check.status == "OK":
            return check

        self.post_repo.overwrite_counters(post_id, check.computed)
        logger.warning(f"Rebuilt aggregate counters for post {post_id}")
        return AggregateCheckResponse(
            post_id=post_id,
            status="REBUILT",
            stored=self.post_repo.stored_counters(post_id),
            computed=check.computed,
        )
