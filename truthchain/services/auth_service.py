import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from truthchain.config import Settings
from truthchain.core.security import create_access_token, decode_access_token
from truthchain.models.balance import TransactionTypeEnum
from truthchain.repositories.user_repository import UserRepository
from truthchain.schemas.auth import Token, TokenData
from truthchain.schemas.user import User as UserSchema, UserCreate
from truthchain.services.balance_service import BalanceService

logger = logging.getLogger(__name__)


class AuthService:
    """인증 관련 비즈니스 로직을 담당하는 서비스"""

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.user_repo = UserRepository(db)
        self.settings = settings

    def register_user(self, request: UserCreate) -> UserSchema:
        """사용자 생성 - 잔액 행을 함께 만들고 가입 보너스가 있으면 적립"""
        user = self.user_repo.create_user(
            email=request.email, nickname=request.nickname, role=request.role
        )

        bonus = self.settings.SIGNUP_BONUS_AMOUNT
        if bonus > 0:
            BalanceService(self.db).credit(
                user.id,
                bonus,
                TransactionTypeEnum.SIGNUP_BONUS,
                "Welcome bonus for new user",
                ref_id=f"signup_bonus:{user.id}",
            )
            logger.info(f"Awarded signup bonus {bonus} to new user {user.id}")
        return user

    def issue_token(self, user: UserSchema) -> Token:
        access_token = create_access_token(data={"sub": user.email, "user_id": user.id})
        return Token(access_token=access_token, token_type="bearer")

    def verify_token(self, token: str) -> Optional[TokenData]:
        """JWT 토큰 검증"""
        payload = decode_access_token(token)
        if payload is None:
            return None

        email_val = payload.get("sub")
        user_id_val = payload.get("user_id")
        if not isinstance(email_val, str) or not isinstance(user_id_val, int):
            return None
        try:
            return TokenData(email=email_val, user_id=user_id_val)
        except PydanticValidationError:
            return None

    def get_current_user(self, token: str) -> Optional[UserSchema]:
        """토큰으로 현재 사용자 조회"""
        token_data = self.verify_token(token)
        if not token_data or not token_data.user_id:
            return None

        user = self.user_repo.get_by_id(token_data.user_id)
        if not user or not user.is_active:
            return None
        return user
