"""
스테이크 오케스트레이터

검증(verification)/챌린지(challenge) 요청을 처리합니다.

처리 순서
1. 사전 조건 확인 (게시물/사용자 존재, 판정 전 게시물, 본인 글 아님, 지갑 연결,
   챌린지 사유, 금액 범위, 챌린지 최소 금액, 중복 아님, 잔액 충분).
   처음 실패한 조건의 오류를 돌려줍니다.
2. 잔액 원장에서 차감
3. 스테이크 레코드 생성 (게시물 집계 증가와 같은 트랜잭션)
4. 3이 실패하면 차감을 환불하고 원래 오류를 그대로 발생. 환불도 실패하면
   ReconciliationRequiredError

멱등성 키가 있으면 차감/환불 거래의 ref_id가 키에서 결정되므로 같은 키로
재시도해도 한 번만 차감됩니다.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_UP, Decimal
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from truthchain.config import Settings, settings as default_settings
from truthchain.core.exceptions import (
    DuplicateStakeError,
    IdempotencyKeyReusedError,
    InsufficientBalanceError,
    InvalidAmountError,
    PostNotFoundError,
    PostResolvedError,
    SelfStakeForbiddenError,
    StorageUnavailableError,
    UnknownUserError,
    ValidationError,
    WalletNotConnectedError,
)
from truthchain.models.balance import TransactionTypeEnum
from truthchain.models.post import PostStatusEnum
from truthchain.models.stake import StakeKindEnum, StakeStatusEnum
from truthchain.repositories.post_repository import PostRepository
from truthchain.repositories.stake_repository import StakeRecordRepository
from truthchain.repositories.user_repository import UserRepository
from truthchain.schemas.stake import ReverseStakeResult, StakeRecordResponse, StakeResult
from truthchain.services.balance_service import BalanceService
from truthchain.utils.amounts import to_amount, validate_stake_amount

logger = logging.getLogger(__name__)

_STAKE_TX_TYPES = {
    StakeKindEnum.VERIFICATION: TransactionTypeEnum.VERIFICATION_STAKE,
    StakeKindEnum.CHALLENGE: TransactionTypeEnum.CHALLENGE_STAKE,
}


@dataclass(frozen=True)
class _AttemptRefs:
    """한 번의 스테이크 시도에 쓰이는 원장 ref_id 쌍"""

    debit: str
    refund: str


class StakeService:
    """검증/챌린지 스테이크 비즈니스 로직"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        balance_service: Optional[BalanceService] = None,
    ):
        self.db = db
        self.settings = settings
        self.balance_service = balance_service or BalanceService(db)
        self.stake_repo = StakeRecordRepository(db)
        self.post_repo = PostRepository(db)
        self.user_repo = UserRepository(db)

    @staticmethod
    def _attempt_refs(staker_id: int, idempotency_key: Optional[str]) -> _AttemptRefs:
        token = idempotency_key or uuid.uuid4().hex
        prefix = f"stake:{staker_id}:{token}"
        return _AttemptRefs(debit=f"{prefix}:debit", refund=f"{prefix}:refund")

    def stake(
        self,
        post_id: int,
        staker_id: int,
        amount: Union[Decimal, str, float],
        kind: Union[StakeKindEnum, str],
        idempotency_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> StakeResult:
        """게시물에 스테이크 (검증 또는 챌린지)

        Args:
            post_id: 대상 게시물
            staker_id: 인증된 사용자 ID (호출자가 명시적으로 전달)
            amount: ALGO 금액
            kind: verification | challenge
            idempotency_key: 재시도 식별 키 (선택)
            reason: 챌린지 사유 (challenge일 때 필수)

        Returns:
            StakeResult: 확정된 잔액과 레코드. 같은 키로 이미 처리된 요청이면 replayed=True
        """
        kind = StakeKindEnum(kind)

        if idempotency_key:
            replay = self._replay(idempotency_key, post_id, staker_id, kind, amount)
            if replay is not None:
                return replay

        post = self.post_repo.get_by_id(post_id)
        if post is None:
            raise PostNotFoundError(post_id)
        if post.status != PostStatusEnum.OPEN:
            raise PostResolvedError(post_id)
        staker = self.user_repo.get_by_id(staker_id)
        if staker is None:
            raise UnknownUserError(staker_id)

        if staker_id == post.author_id:
            raise SelfStakeForbiddenError(
                "You cannot verify your own post"
                if kind == StakeKindEnum.VERIFICATION
                else "You cannot challenge your own post"
            )
        if self.settings.REQUIRE_CONNECTED_WALLET and not staker.wallet_connected:
            raise WalletNotConnectedError()

        if kind == StakeKindEnum.CHALLENGE:
            reason = self._validate_challenge_reason(reason)
        else:
            reason = None

        amount = validate_stake_amount(
            amount, self.settings.MIN_STAKE_AMOUNT, self.settings.MAX_STAKE_AMOUNT
        )
        if kind == StakeKindEnum.CHALLENGE:
            minimum = self.minimum_challenge(post.stake_amount)
            if amount < minimum:
                raise InvalidAmountError(
                    f"Minimum challenge amount is {format(minimum.normalize(), 'f')} ALGO",
                    details={"minimum": str(minimum), "post_stake": str(post.stake_amount)},
                )
        refs = self._attempt_refs(staker_id, idempotency_key)

        pending_debit = None
        if idempotency_key:
            pending_debit = self._pending_debit(idempotency_key, refs, amount)

        if pending_debit is None:
            if self.stake_repo.has_active_stake(post_id, staker_id, kind):
                raise DuplicateStakeError(
                    kind.value, details={"post_id": post_id, "kind": kind.value}
                )
            current = self.balance_service.get_balance(staker_id)
            if current < amount:
                raise InsufficientBalanceError(available=current, required=amount)
            debit = self._debit(staker_id, amount, kind, post_id, refs)
        else:
            logger.info(
                f"Resuming stake for key {idempotency_key}: debit {refs.debit} already applied"
            )
            debit = pending_debit

        try:
            record = self.stake_repo.create(
                post_id,
                staker_id,
                amount,
                kind,
                idempotency_key=idempotency_key,
                reason=reason,
            )
        except Exception as exc:
            record = self._recover_committed_record(
                exc, post_id, staker_id, kind, amount, idempotency_key, refs
            )
            if record is None:
                self.balance_service.compensate(
                    staker_id,
                    amount,
                    refs.refund,
                    f"Refund: {kind.value} stake on post {post_id} failed",
                    cause=exc,
                    related_post_id=post_id,
                )
                raise

        logger.info(
            f"User {staker_id} staked {amount} ({kind.value}) on post {post_id}; record {record.id}"
        )
        return StakeResult(
            new_balance=debit.balance_after,
            record_id=record.id,
            record=record,
            replayed=False,
        )

    def minimum_challenge(self, post_stake: Decimal) -> Decimal:
        """챌린지 최소 금액 = max(게시물 스테이크 x 1.1, 최소 스테이크)"""
        scaled = (Decimal(post_stake) * self.settings.CHALLENGE_MIN_RATIO).quantize(
            Decimal("0.000001"), rounding=ROUND_UP
        )
        return max(scaled, self.settings.MIN_STAKE_AMOUNT)

    def _validate_challenge_reason(self, reason: Optional[str]) -> str:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Please provide a reason for your challenge")
        if len(reason) > self.settings.CHALLENGE_REASON_MAX_LENGTH:
            raise ValidationError(
                f"Challenge reason must be at most {self.settings.CHALLENGE_REASON_MAX_LENGTH} characters"
            )
        return reason

    def _replay(
        self,
        idempotency_key: str,
        post_id: int,
        staker_id: int,
        kind: StakeKindEnum,
        amount,
    ) -> Optional[StakeResult]:
        """같은 키로 이미 만들어진 레코드가 있으면 저장된 결과를 반환"""
        existing = self.stake_repo.get_by_idempotency_key(staker_id, idempotency_key)
        if existing is None:
            return None
        if (
            existing.post_id != post_id
            or existing.kind != kind
            or existing.amount != to_amount(amount)
        ):
            raise IdempotencyKeyReusedError(
                idempotency_key, "This request key was already used for a different stake"
            )
        if existing.status != StakeStatusEnum.ACTIVE:
            raise IdempotencyKeyReusedError(
                idempotency_key, "This request key belongs to a stake that was reversed"
            )
        logger.info(f"Replaying stake record {existing.id} for key {idempotency_key}")
        return StakeResult(
            new_balance=self.balance_service.get_balance(staker_id),
            record_id=existing.id,
            record=existing,
            replayed=True,
        )

    def _pending_debit(self, idempotency_key: str, refs: _AttemptRefs, amount: Decimal):
        """키에 해당하는 차감이 이미 있으면 반환 (환불까지 됐으면 키 재사용 오류)"""
        debit = self.balance_service.find_transaction(refs.debit)
        if debit is None:
            return None
        if self.balance_service.find_transaction(refs.refund) is not None:
            raise IdempotencyKeyReusedError(idempotency_key)
        if -debit.amount != amount:
            raise IdempotencyKeyReusedError(
                idempotency_key, "This request key was already used for a different stake"
            )
        return debit

    def _debit(
        self,
        staker_id: int,
        amount: Decimal,
        kind: StakeKindEnum,
        post_id: int,
        refs: _AttemptRefs,
    ):
        return self.balance_service.debit_with_recovery(
            staker_id,
            amount,
            _STAKE_TX_TYPES[kind],
            f"{kind.value.capitalize()} stake on post {post_id}",
            ref_id=refs.debit,
            refund_ref_id=refs.refund,
            refund_description=f"Refund: {kind.value} stake on post {post_id} failed",
            related_post_id=post_id,
        )

    def _recover_committed_record(
        self,
        exc: Exception,
        post_id: int,
        staker_id: int,
        kind: StakeKindEnum,
        amount: Decimal,
        idempotency_key: Optional[str],
        refs: _AttemptRefs,
    ) -> Optional[StakeRecordResponse]:
        """
        레코드 생성 실패 후, 실제로는 커밋됐는지 다시 확인

        - 저장소 오류(타임아웃 등)는 응답만 유실됐을 수 있음
        - 같은 키의 동시 요청이 먼저 레코드를 만들었을 수 있음
        """
        if not idempotency_key and not isinstance(exc, StorageUnavailableError):
            return None
        try:
            if idempotency_key:
                record = self.stake_repo.get_by_idempotency_key(staker_id, idempotency_key)
                if record is not None and record.status == StakeStatusEnum.ACTIVE:
                    return record
                return None
            return self.stake_repo.get_active(post_id, staker_id, kind)
        except StorageUnavailableError as lookup_exc:
            self.balance_service.require_reconciliation(
                staker_id,
                amount,
                refs.debit,
                reason="stake record outcome unknown after storage failure",
                cause=lookup_exc,
                context={"post_id": post_id, "kind": kind.value},
            )

    def reverse_stake(self, record_id: int, reason: str) -> ReverseStakeResult:
        """관리자 환불 - 레코드를 reversed로 바꾸고(집계 감소) 스테이커에게 환불"""
        record = self.stake_repo.reverse(record_id, reason)
        refund_ref = f"stake_reversal:{record_id}"
        try:
            refund = self.balance_service.reverse(
                record.staker_id,
                record.amount,
                ref_id=refund_ref,
                description=f"Refund: stake {record_id} reversed ({reason})",
                related_post_id=record.post_id,
            )
        except Exception as exc:
            self.balance_service.require_reconciliation(
                record.staker_id,
                record.amount,
                refund_ref,
                reason=f"refund for reversed stake {record_id} failed: {exc}",
                cause=exc,
                context={"record_id": record_id, "post_id": record.post_id},
            )
        logger.info(f"Reversed stake {record_id}; refunded {record.amount} to user {record.staker_id}")
        return ReverseStakeResult(
            record=record, refunded_amount=record.amount, new_balance=refund.balance_after
        )

    def can_stake(self, user_id: int, amount: Decimal):
        return self.balance_service.can_stake(user_id, amount)

    def list_post_stakes(
        self, post_id: int, kind: Optional[StakeKindEnum] = None
    ) -> List[StakeRecordResponse]:
        if self.post_repo.get_author_id(post_id) is None:
            raise PostNotFoundError(post_id)
        return self.stake_repo.list_for_post(post_id, kind=kind)

    def list_user_stakes(
        self, staker_id: int, limit: int = 100, offset: int = 0
    ) -> List[StakeRecordResponse]:
        return self.stake_repo.list_for_staker(staker_id, limit=limit, offset=offset)
