"""
스테이크 레코드 리포지토리

검증/챌린지 레코드를 저장하고, 같은 트랜잭션 안에서 게시물 집계 카운터를
서버 측 증감 UPDATE로 맞춥니다. (post_id, staker_id, kind)당 활성 레코드 하나라는
규칙은 부분 유니크 인덱스가 보장하며, 위반 시 DuplicateStakeError가 발생합니다.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from truthchain.core.exceptions import (
    DuplicateStakeError,
    IdempotencyKeyReusedError,
    NotFoundError,
    PostNotFoundError,
    PostResolvedError,
    StakeAlreadyReversedError,
)
from truthchain.models.post import Post, PostStatusEnum
from truthchain.models.stake import StakeKindEnum, StakeRecord, StakeStatusEnum
from truthchain.repositories.base import TRANSIENT_DB_ERRORS, BaseRepository
from truthchain.schemas.stake import StakeRecordResponse


def _aggregate_delta(kind: StakeKindEnum, amount: Decimal, sign: int) -> dict:
    """레코드 종류별 게시물 카운터 증감식"""
    if kind == StakeKindEnum.VERIFICATION:
        return {
            Post.stake_amount: Post.stake_amount + sign * amount,
            Post.verifications: Post.verifications + sign,
        }
    return {
        Post.challenge_pool: Post.challenge_pool + sign * amount,
        Post.challenges: Post.challenges + sign,
    }


class StakeRecordRepository(BaseRepository[StakeRecord, StakeRecordResponse]):
    """스테이크 레코드 저장소"""

    def __init__(self, db: Session):
        super().__init__(StakeRecord, StakeRecordResponse, db)

    def has_active_stake(
        self, post_id: int, staker_id: int, kind: StakeKindEnum
    ) -> bool:
        return self.get_active(post_id, staker_id, kind) is not None

    def get_active(
        self, post_id: int, staker_id: int, kind: StakeKindEnum
    ) -> Optional[StakeRecordResponse]:
        self._ensure_clean_session()
        try:
            record = (
                self.db.query(StakeRecord)
                .populate_existing()
                .filter(
                    StakeRecord.post_id == post_id,
                    StakeRecord.staker_id == staker_id,
                    StakeRecord.kind == kind,
                    StakeRecord.status == StakeStatusEnum.ACTIVE,
                )
                .first()
            )
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "get_active_stake")
        return self._to_schema(record)

    def get_by_idempotency_key(
        self, staker_id: int, key: str
    ) -> Optional[StakeRecordResponse]:
        """멱등성 키는 스테이커별로 고유"""
        self._ensure_clean_session()
        try:
            record = (
                self.db.query(StakeRecord)
                .populate_existing()
                .filter(
                    StakeRecord.staker_id == staker_id,
                    StakeRecord.idempotency_key == key,
                )
                .first()
            )
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "get_by_idempotency_key")
        return self._to_schema(record)

    def create(
        self,
        post_id: int,
        staker_id: int,
        amount: Decimal,
        kind: StakeKindEnum,
        idempotency_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> StakeRecordResponse:
        """
        레코드 생성 + 게시물 집계 증가 (단일 트랜잭션)

        집계 UPDATE는 판정 전(open) 게시물에만 적용되므로 판정과 동시에 들어온
        스테이크는 커밋되지 않습니다.

        Raises:
            DuplicateStakeError: 같은 (post, staker, kind)의 활성 레코드가 이미 있음
            IdempotencyKeyReusedError: 멱등성 키가 이 스테이커의 다른 레코드에 이미 사용됨
            PostNotFoundError: 게시물이 없음
            PostResolvedError: 게시물이 이미 판정됨
            StorageUnavailableError: 일시적 DB 오류 (커밋 여부 불명)
        """
        self._ensure_clean_session()
        record = StakeRecord(
            post_id=post_id,
            staker_id=staker_id,
            amount=amount,
            kind=kind,
            status=StakeStatusEnum.ACTIVE,
            idempotency_key=idempotency_key,
            reason=reason,
        )
        try:
            self.db.add(record)
            self.db.flush()

            updated = (
                self.db.query(Post)
                .filter(Post.id == post_id, Post.status == PostStatusEnum.OPEN)
                .update(_aggregate_delta(kind, amount, 1), synchronize_session=False)
            )
            if updated == 0:
                self.db.rollback()
                if self.db.query(Post.id).filter(Post.id == post_id).scalar() is None:
                    raise PostNotFoundError(post_id)
                raise PostResolvedError(post_id)

            self.db.refresh(record)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            message = str(e.orig)
            if "idempotency_key" in message:
                raise IdempotencyKeyReusedError(idempotency_key or "")
            if "uq_stake_records_active" in message or "stake_records.post_id" in message:
                raise DuplicateStakeError(
                    kind.value, details={"post_id": post_id, "kind": kind.value}
                )
            raise
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "create_stake_record")
        return self._to_schema(record)

    def reverse(self, record_id: int, reason: str) -> StakeRecordResponse:
        """활성 레코드를 reversed로 전환하고 게시물 집계를 감소 (단일 트랜잭션)

        판정된 게시물의 레코드는 취소할 수 없습니다 (PostResolvedError).
        """
        self._ensure_clean_session()
        try:
            record = (
                self.db.query(StakeRecord)
                .populate_existing()
                .filter(StakeRecord.id == record_id)
                .first()
            )
            if record is None:
                raise NotFoundError(
                    "Stake record not found", details={"record_id": record_id}
                )

            updated = (
                self.db.query(StakeRecord)
                .filter(
                    StakeRecord.id == record_id,
                    StakeRecord.status == StakeStatusEnum.ACTIVE,
                )
                .update(
                    {
                        StakeRecord.status: StakeStatusEnum.REVERSED,
                        StakeRecord.reversed_at: datetime.now(timezone.utc),
                        StakeRecord.reversal_reason: reason,
                    },
                    synchronize_session=False,
                )
            )
            if updated == 0:
                self.db.rollback()
                raise StakeAlreadyReversedError(record_id)

            post_updated = (
                self.db.query(Post)
                .filter(Post.id == record.post_id, Post.status == PostStatusEnum.OPEN)
                .update(
                    _aggregate_delta(record.kind, record.amount, -1),
                    synchronize_session=False,
                )
            )
            if post_updated == 0:
                post_id = record.post_id
                self.db.rollback()
                raise PostResolvedError(
                    post_id, "Stakes on a resolved post cannot be reversed"
                )
            self.db.commit()
            self.db.refresh(record)
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "reverse_stake_record")
        return self._to_schema(record)

    def list_for_post(
        self,
        post_id: int,
        kind: Optional[StakeKindEnum] = None,
        include_reversed: bool = False,
    ) -> List[StakeRecordResponse]:
        self._ensure_clean_session()
        query = (
            self.db.query(StakeRecord)
            .populate_existing()
            .filter(StakeRecord.post_id == post_id)
        )
        if kind is not None:
            query = query.filter(StakeRecord.kind == kind)
        if not include_reversed:
            query = query.filter(StakeRecord.status == StakeStatusEnum.ACTIVE)
        return [self._to_schema(r) for r in query.order_by(StakeRecord.id).all()]

    def list_for_staker(
        self, staker_id: int, limit: int = 100, offset: int = 0
    ) -> List[StakeRecordResponse]:
        self._ensure_clean_session()
        records = (
            self.db.query(StakeRecord)
            .populate_existing()
            .filter(StakeRecord.staker_id == staker_id)
            .order_by(desc(StakeRecord.id))
            .limit(limit)
            .offset(offset)
            .all()
        )
        return [self._to_schema(r) for r in records]
