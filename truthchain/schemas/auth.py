from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr


class ErrorCode(str, Enum):
    # Auth related
    UNAUTHORIZED = "AUTH_001"
    FORBIDDEN = "AUTH_002"

    # User related
    USER_ALREADY_EXISTS = "USER_001"
    USER_NOT_FOUND = "USER_002"

    # Staking
    SELF_STAKE_FORBIDDEN = "STAKE_001"
    INVALID_AMOUNT = "STAKE_002"
    DUPLICATE_STAKE = "STAKE_003"
    IDEMPOTENCY_KEY_REUSED = "STAKE_004"
    STAKE_ALREADY_REVERSED = "STAKE_005"

    # Balance / wallet / post
    INSUFFICIENT_BALANCE = "BALANCE_001"
    WALLET_NOT_CONNECTED = "WALLET_001"
    INVALID_WALLET_ADDRESS = "WALLET_002"
    POST_NOT_FOUND = "POST_001"

    # Infra
    RECONCILIATION_REQUIRED = "RECON_001"
    STORAGE_UNAVAILABLE = "STORAGE_001"
    VALIDATION_FAILED = "VALIDATION_001"
    INTERNAL_ERROR = "INTERNAL_001"


class Error(BaseModel):
    code: ErrorCode
    message: str
    details: Optional[dict] = None


class BaseResponse(BaseModel):
    success: bool = True
    data: Optional[dict] = None
    error: Optional[Error] = None
    meta: Optional[dict] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    email: Optional[EmailStr] = None
    user_id: Optional[int] = None
