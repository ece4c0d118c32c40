from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from truthchain.core.exceptions import ConflictError
from truthchain.models.balance import UserBalance
from truthchain.models.user import User as UserModel, UserRole
from truthchain.repositories.base import TRANSIENT_DB_ERRORS, BaseRepository
from truthchain.schemas.user import User as UserSchema


class UserRepository(BaseRepository[UserModel, UserSchema]):
    """사용자 리포지토리 - 프로필과 지갑 연결 상태"""

    def __init__(self, db: Session):
        super().__init__(UserModel, UserSchema, db)

    def get_by_email(self, email: str) -> Optional[UserSchema]:
        """이메일로 사용자 조회"""
        return self.get_by_field("email", email)

    def create_user(
        self,
        email: str,
        nickname: str,
        role: UserRole = UserRole.USER,
        opening_balance: Decimal = Decimal("0"),
    ) -> UserSchema:
        """사용자와 잔액 행을 같은 트랜잭션에서 생성"""
        self._ensure_clean_session()
        user = UserModel(
            email=email, nickname=nickname, role=role.value, is_active=True
        )
        try:
            self.db.add(user)
            self.db.flush()
            self.db.add(
                UserBalance(
                    user_id=user.id,
                    balance=opening_balance,
                    opening_balance=opening_balance,
                )
            )
            self.db.flush()
            self.db.refresh(user)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(
                "User already exists with this email", details={"email": email}
            )
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "create_user")
        return self._to_schema(user)

    def set_wallet(
        self, user_id: int, wallet_address: Optional[str], connected: bool
    ) -> Optional[UserSchema]:
        """지갑 주소/연결 상태 변경 (잔액은 변경하지 않음)"""
        return self.update(
            user_id, wallet_address=wallet_address, wallet_connected=connected
        )
