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
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from truthchain.models.balance import AMOUNT
from truthchain.models.base import BaseModel, BigIntPK


class StakeKindEnum(str, enum.Enum):
    VERIFICATION = "verification"
    CHALLENGE = "challenge"


class StakeStatusEnum(str, enum.Enum):
    ACTIVE = "active"
    REVERSED = "reversed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class StakeRecord(BaseModel):
    """
    게시물 하나에 대한 사용자 한 명의 스테이크 (검증 또는 챌린지)

    (post_id, staker_id, kind) 조합당 활성 레코드는 최대 하나이며,
    이는 status = 'active' 부분 유니크 인덱스로 저장소 레벨에서 보장됩니다.
    레코드는 삭제되지 않고 환불 시 reversed 상태로 전환됩니다.
    """

    __tablename__ = "stake_records"
    __table_args__ = (
        Index(
            "uq_stake_records_active",
            "post_id",
            "staker_id",
            "kind",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        UniqueConstraint(
            "staker_id", "idempotency_key", name="uq_stake_records_idempotency_key"
        ),
        CheckConstraint("amount > 0", name="ck_stake_records_amount_positive"),
        Index("idx_stake_records_staker", "staker_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("posts.id"), nullable=False, index=True
    )
    staker_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    kind: Mapped[StakeKindEnum] = mapped_column(
        Enum(
            StakeKindEnum,
            native_enum=False,
            length=16,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    status: Mapped[StakeStatusEnum] = mapped_column(
        Enum(
            StakeStatusEnum,
            native_enum=False,
            length=16,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        default=StakeStatusEnum.ACTIVE,
        nullable=False,
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    # 챌린지 사유 (검증 레코드는 None)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reversed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reversal_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
