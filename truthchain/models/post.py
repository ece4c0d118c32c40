import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    SmallInteger,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from truthchain.models.balance import AMOUNT
from truthchain.models.base import BaseModel, BigIntPK


class PostStatusEnum(str, enum.Enum):
    OPEN = "open"
    VERIFIED = "verified"  # 게시물 주장이 참으로 판정 (작성자/검증자 승)
    FALSE = "false"  # 거짓으로 판정 (챌린저 승)


class Post(BaseModel):
    """
    진실성 주장 게시물

    stake_amount, challenge_pool, verifications, challenges는 활성 StakeRecord의
    합계/개수를 캐시한 값입니다. 레코드 생성/취소와 같은 트랜잭션에서
    서버 측 증감 UPDATE로만 변경됩니다.

    판정(resolve) 후에는 status가 verified/false로 바뀌며 더 이상 스테이크를
    받거나 취소하지 않습니다.
    """

    __tablename__ = "posts"
    __table_args__ = (
        CheckConstraint("stake_amount >= 0", name="ck_posts_stake_amount"),
        CheckConstraint("challenge_pool >= 0", name="ck_posts_challenge_pool"),
        CheckConstraint("verifications >= 0", name="ck_posts_verifications"),
        CheckConstraint("challenges >= 0", name="ck_posts_challenges"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    author_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False, index=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), default="general", nullable=False)
    truth_confidence: Mapped[int] = mapped_column(SmallInteger, default=50, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # 작성자 본인 스테이크 (StakeRecord가 아님 - 작성자는 자기 글에 스테이크 불가)
    author_stake: Mapped[Decimal] = mapped_column(AMOUNT, default=0, nullable=False)

    # 집계 캐시
    stake_amount: Mapped[Decimal] = mapped_column(AMOUNT, default=0, nullable=False)
    challenge_pool: Mapped[Decimal] = mapped_column(AMOUNT, default=0, nullable=False)
    verifications: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    challenges: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # 판정
    status: Mapped[PostStatusEnum] = mapped_column(
        Enum(
            PostStatusEnum,
            native_enum=False,
            length=16,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            validate_strings=True,
        ),
        default=PostStatusEnum.OPEN,
        nullable=False,
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
