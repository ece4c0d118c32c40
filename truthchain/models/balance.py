"""
잔액 원장 데이터 모델

user_balances는 사용자별 현재 잔액 한 행을, balance_transactions는 잔액을 바꾼
모든 거래를 저장합니다. 잔액은 이 두 테이블을 통해서만 변경됩니다.
"""

import enum
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from truthchain.models.base import BaseModel, BigIntPK

# microALGO 단위까지 표현 (소수점 6자리)
AMOUNT = Numeric(20, 6)


class TransactionTypeEnum(str, enum.Enum):
    VERIFICATION_STAKE = "verification_stake"
    CHALLENGE_STAKE = "challenge_stake"
    POST_STAKE = "post_stake"
    REFUND = "refund"
    REWARD = "reward"
    SIGNUP_BONUS = "signup_bonus"
    CHAIN_SYNC = "chain_sync"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class UserBalance(BaseModel):
    """
    사용자 잔액 테이블 - 사용자당 한 행

    잔액은 음수가 될 수 없으며(CHECK 제약), 모든 변경은 서버 측
    `balance = balance +/- :amount` UPDATE로만 수행됩니다.
    """

    __tablename__ = "user_balances"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_user_balances_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), primary_key=True
    )
    balance: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=0)

    # 프로필 생성 시 잔액 (정합성 검증의 시작점)
    opening_balance: Mapped[Decimal] = mapped_column(
        AMOUNT, nullable=False, default=0
    )


class BalanceTransaction(BaseModel):
    """
    잔액 거래 내역 - 추가만 가능한(append-only) 감사 로그

    - amount: 부호 있는 변동량 (차감은 음수)
    - balance_after: 거래 직후 잔액
    - ref_id: 중복 처리 방지용 고유 참조 ID (멱등성 보장)
    """

    __tablename__ = "balance_transactions"
    __table_args__ = (
        UniqueConstraint("ref_id", name="uq_balance_transactions_ref_id"),
        Index("idx_balance_transactions_user", "user_id", "id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    type: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    ref_id: Mapped[str] = mapped_column(Text, nullable=False)
    related_post_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
