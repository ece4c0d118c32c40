from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from truthchain.models.post import Post, PostStatusEnum
from truthchain.models.stake import StakeKindEnum, StakeRecord, StakeStatusEnum
from truthchain.repositories.base import TRANSIENT_DB_ERRORS, BaseRepository
from truthchain.schemas.post import AggregateCounters, PostResponse


class PostRepository(BaseRepository[Post, PostResponse]):
    """게시물 및 집계 카운터 리포지토리"""

    def __init__(self, db: Session):
        super().__init__(Post, PostResponse, db)

    def create_post(
        self,
        author_id: int,
        content: str,
        category: str,
        truth_confidence: int,
        expires_at: Optional[datetime],
        author_stake: Decimal,
    ) -> PostResponse:
        """게시물 생성 - 작성자 스테이크가 stake_amount의 시작값"""
        self._ensure_clean_session()
        post = Post(
            author_id=author_id,
            content=content,
            category=category,
            truth_confidence=truth_confidence,
            expires_at=expires_at,
            author_stake=author_stake,
            stake_amount=author_stake,
            challenge_pool=Decimal("0"),
            verifications=0,
            challenges=0,
        )
        try:
            self.db.add(post)
            self.db.flush()
            self.db.refresh(post)
            self.db.commit()
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "create_post")
        except Exception:
            self.db.rollback()
            raise
        return self._to_schema(post)

    def get_author_id(self, post_id: int) -> Optional[int]:
        self._ensure_clean_session()
        try:
            return self.db.query(Post.author_id).filter(Post.id == post_id).scalar()
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "get_author_id")

    def stored_counters(self, post_id: int) -> Optional[AggregateCounters]:
        post = self.get_by_id(post_id)
        if post is None:
            return None
        return AggregateCounters(
            stake_amount=post.stake_amount,
            challenge_pool=post.challenge_pool,
            verifications=post.verifications,
            challenges=post.challenges,
        )

    def compute_counters(self, post_id: int) -> Optional[AggregateCounters]:
        """활성 스테이크 레코드로부터 집계값을 다시 계산"""
        self._ensure_clean_session()
        author_stake = (
            self.db.query(Post.author_stake).filter(Post.id == post_id).scalar()
        )
        if author_stake is None:
            return None

        rows = (
            self.db.query(
                StakeRecord.kind,
                func.coalesce(func.sum(StakeRecord.amount), 0),
                func.count(StakeRecord.id),
            )
            .filter(
                StakeRecord.post_id == post_id,
                StakeRecord.status == StakeStatusEnum.ACTIVE,
            )
            .group_by(StakeRecord.kind)
            .all()
        )
        totals = {kind: (Decimal(str(total)), count) for kind, total, count in rows}
        verify_sum, verify_count = totals.get(StakeKindEnum.VERIFICATION, (Decimal("0"), 0))
        challenge_sum, challenge_count = totals.get(StakeKindEnum.CHALLENGE, (Decimal("0"), 0))

        quantum = Decimal("0.000001")
        return AggregateCounters(
            stake_amount=(author_stake + verify_sum).quantize(quantum),
            challenge_pool=challenge_sum.quantize(quantum),
            verifications=verify_count,
            challenges=challenge_count,
        )

    def overwrite_counters(self, post_id: int, counters: AggregateCounters) -> None:
        """관리자 복구용 - 집계 캐시를 계산값으로 덮어쓰기"""
        self._ensure_clean_session()
        try:
            self.db.query(Post).filter(Post.id == post_id).update(
                {
                    Post.stake_amount: counters.stake_amount,
                    Post.challenge_pool: counters.challenge_pool,
                    Post.verifications: counters.verifications,
                    Post.challenges: counters.challenges,
                },
                synchronize_session=False,
            )
            self.db.commit()
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "overwrite_counters")

    def mark_resolved(
        self,
        post_id: int,
        verdict: PostStatusEnum,
        resolved_by: Optional[int],
        notes: Optional[str],
    ) -> bool:
        """open 게시물만 판정 상태로 전환. 전환했으면 True"""
        self._ensure_clean_session()
        try:
            updated = (
                self.db.query(Post)
                .filter(Post.id == post_id, Post.status == PostStatusEnum.OPEN)
                .update(
                    {
                        Post.status: verdict,
                        Post.resolved_at: datetime.now(timezone.utc),
                        Post.resolved_by: resolved_by,
                        Post.resolution_notes: notes,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "mark_post_resolved")
        return updated > 0
