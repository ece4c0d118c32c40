from enum import Enum
from typing import Optional, Union

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from truthchain.models.base import BaseModel, BigIntPK


class UserRole(str, Enum):
    """사용자 역할 정의"""

    USER = "user"  # 일반 사용자
    ADMIN = "admin"  # 관리자 (스테이크 환불, 집계 재계산)

    @classmethod
    def is_admin(cls, role: Union[str, "UserRole"]) -> bool:
        if isinstance(role, cls):
            role = role.value
        return role == cls.ADMIN.value


class User(BaseModel):
    __tablename__ = "users"
    __table_args__ = (Index("idx_users_wallet_address", "wallet_address"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    nickname: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), default=UserRole.USER.value, nullable=False
    )

    # Algorand 지갑 - 연결 여부와 주소만 저장 (잔액은 user_balances가 소유)
    wallet_address: Mapped[Optional[str]] = mapped_column(String(58), nullable=True)
    wallet_connected: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, wallet={self.wallet_address})>"

    @property
    def is_admin(self) -> bool:
        return UserRole.is_admin(str(self.role))
