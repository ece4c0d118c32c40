"""
게시물 판정 정산

관리자가 게시물을 verified(참) 또는 false(거짓)로 판정하면 활성 스테이크를 정산합니다.

- verified: 작성자 스테이크와 검증 스테이크가 승자, 챌린지 스테이크가 패자 풀
- false: 챌린지 스테이크가 승자, 작성자/검증 스테이크가 패자 풀
- 승자는 원금 + (패자 풀 x 자기 스테이크 / 승자 스테이크 합)을 받습니다.
  배분액은 microALGO 단위로 내림하고 남는 단수는 가장 큰 스테이크에 붙입니다.
- 승자 쪽 스테이크가 없으면 정산하지 않고 모든 스테이크를 환불합니다.

지급 거래의 ref_id는 게시물/레코드 ID로만 정해지므로 정산을 다시 실행하면
이미 적립된 항목은 건너뛰고 빠진 항목만 적립합니다.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from truthchain.config import Settings, settings as default_settings
from truthchain.core.exceptions import (
    PostNotFoundError,
    PostResolvedError,
    ReconciliationRequiredError,
    StorageUnavailableError,
    ValidationError,
)
from truthchain.models.balance import TransactionTypeEnum
from truthchain.models.post import PostStatusEnum
from truthchain.models.stake import StakeKindEnum
from truthchain.repositories.post_repository import PostRepository
from truthchain.repositories.stake_repository import StakeRecordRepository
from truthchain.schemas.post import PostResponse, SettlementPayout, SettlementResult
from truthchain.services.balance_service import BalanceService
from truthchain.services.error_log_service import ErrorLogService

logger = logging.getLogger(__name__)

_MICRO = Decimal("0.000001")


@dataclass
class _Share:
    user_id: int
    record_id: Optional[int]
    side: str
    stake: Decimal
    payout: Decimal = Decimal("0")

    def ref_id(self, post_id: int) -> str:
        if self.record_id is None:
            return f"settlement:{post_id}:author"
        return f"settlement:{post_id}:stake:{self.record_id}"


class SettlementService:
    """게시물 판정 및 스테이크 정산 서비스"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        balance_service: Optional[BalanceService] = None,
        error_log_service: Optional[ErrorLogService] = None,
    ):
        self.db = db
        self.settings = settings
        self.balance_service = balance_service or BalanceService(
            db, error_log_service=error_log_service
        )
        self.error_log_service = (
            error_log_service or self.balance_service.error_log_service
        )
        self.post_repo = PostRepository(db)
        self.stake_repo = StakeRecordRepository(db)

    def resolve(
        self,
        post_id: int,
        verdict: PostStatusEnum,
        resolved_by: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> SettlementResult:
        """
        게시물 판정 후 정산

        같은 판정으로 다시 호출하면 빠진 지급만 적립합니다 (StorageUnavailableError 후 재시도).

        Raises:
            ValidationError: verdict가 verified/false가 아님
            PostNotFoundError: 게시물이 없음
            PostResolvedError: 이미 다른 판정으로 확정됨
            ReconciliationRequiredError: 일부 지급이 실패해 운영자 확인이 필요함
        """
        verdict = PostStatusEnum(verdict)
        if verdict == PostStatusEnum.OPEN:
            raise ValidationError(
                "Verdict must be 'verified' or 'false'", details={"verdict": verdict.value}
            )

        post = self.post_repo.get_by_id(post_id)
        if post is None:
            raise PostNotFoundError(post_id)

        if post.status == PostStatusEnum.OPEN and self.post_repo.mark_resolved(
            post_id, verdict, resolved_by, notes
        ):
            logger.info(f"Post {post_id} resolved as {verdict.value} by {resolved_by}")
        else:
            current = self.post_repo.get_by_id(post_id)
            if current.status != verdict:
                raise PostResolvedError(
                    post_id, f"Post was already resolved as {current.status.value}"
                )
            logger.info(
                f"Post {post_id} already resolved as {verdict.value}; completing payouts"
            )

        shares, winning, losing, voided = self._compute_shares(post, verdict)
        tx_type = TransactionTypeEnum.REFUND if voided else TransactionTypeEnum.REWARD

        payouts: List[SettlementPayout] = []
        failed_refs: List[str] = []
        for share in shares:
            ref_id = share.ref_id(post_id)
            description = (
                f"Refund: post {post_id} resolved with no winning side"
                if voided
                else f"Settlement reward for post {post_id} ({verdict.value})"
            )
            try:
                result = self.balance_service.credit(
                    share.user_id,
                    share.payout,
                    tx_type,
                    description,
                    ref_id=ref_id,
                    related_post_id=post_id,
                )
            except StorageUnavailableError:
                raise
            except Exception as exc:
                logger.critical(
                    f"Settlement payout failed for user {share.user_id} amount={share.payout} ref={ref_id}: {exc}"
                )
                self.error_log_service.log_reconciliation_required(
                    share.user_id,
                    share.payout,
                    ref_id,
                    reason=f"settlement payout failed: {exc}",
                    context={"post_id": post_id, "verdict": verdict.value},
                )
                failed_refs.append(ref_id)
                continue

            payouts.append(
                SettlementPayout(
                    user_id=share.user_id,
                    record_id=share.record_id,
                    side=share.side,
                    stake=share.stake,
                    payout=share.payout,
                    ref_id=ref_id,
                    applied=result.applied,
                )
            )

        if failed_refs:
            raise ReconciliationRequiredError(
                details={"post_id": post_id, "failed_refs": failed_refs}
            )

        return SettlementResult(
            post_id=post_id,
            verdict=verdict,
            total_pool=winning + losing,
            winning_stake=winning,
            losing_pool=losing,
            voided=voided,
            payouts=payouts,
        )

    def _compute_shares(self, post: PostResponse, verdict: PostStatusEnum):
        supporters: List[_Share] = []
        if post.author_stake > 0:
            supporters.append(
                _Share(post.author_id, None, "author", post.author_stake)
            )
        challengers: List[_Share] = []
        for record in self.stake_repo.list_for_post(post.id):
            share = _Share(record.staker_id, record.id, record.kind.value, record.amount)
            if record.kind == StakeKindEnum.CHALLENGE:
                challengers.append(share)
            else:
                supporters.append(share)

        if verdict == PostStatusEnum.VERIFIED:
            winners, losers = supporters, challengers
        else:
            winners, losers = challengers, supporters

        winning = sum((s.stake for s in winners), Decimal("0"))
        losing = sum((s.stake for s in losers), Decimal("0"))

        if winning == 0:
            everyone = supporters + challengers
            for share in everyone:
                share.payout = share.stake
            return everyone, winning, losing, True

        distributed = Decimal("0")
        for share in winners:
            bonus = (share.stake * losing / winning).quantize(_MICRO, rounding=ROUND_DOWN)
            share.payout = share.stake + bonus
            distributed += bonus

        # 내림으로 남은 단수는 가장 큰 스테이크(동률이면 먼저 들어온 쪽)에
        largest = max(winners, key=lambda s: s.stake)
        largest.payout += losing - distributed
        return winners, winning, losing, False
