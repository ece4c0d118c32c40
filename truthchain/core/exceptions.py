from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base exception for API errors"""
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": error_code,
                    "message": message,
                    "details": self.details
                }
            }
        )

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message

class ValidationError(BaseAPIException):
    """Validation errors"""
    def __init__(self, message: str = "Validation failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_001",
            message=message,
            details=details
        )

class NotFoundError(BaseAPIException):
    """Resource not found errors"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND_001",
            message=message,
            details=details
        )

class ConflictError(BaseAPIException):
    """Resource conflict errors"""
    def __init__(self, message: str = "Resource conflict", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT_001",
            message=message,
            details=details
        )

class InternalServerError(BaseAPIException):
    """Internal server errors"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_001",
            message=message,
            details=details
        )


# ============================================================================
# Staking ledger errors
# ============================================================================


class SelfStakeForbiddenError(BaseAPIException):
    """Staker is the author of the post"""
    def __init__(self, message: str = "You cannot stake on your own post", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="STAKE_001",
            message=message,
            details=details
        )

class InvalidAmountError(BaseAPIException):
    """Stake amount outside platform bounds"""
    def __init__(self, message: str = "Invalid stake amount", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="STAKE_002",
            message=message,
            details=details
        )

class DuplicateStakeError(BaseAPIException):
    """An active stake of the same kind already exists"""
    def __init__(self, kind: str, details: Optional[Dict] = None):
        action = "verified" if kind == "verification" else "challenged"
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="STAKE_003",
            message=f"You have already {action} this post",
            details=details
        )

class IdempotencyKeyReusedError(BaseAPIException):
    """Idempotency key cannot be replayed for this request"""
    def __init__(self, idempotency_key: str, message: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="STAKE_004",
            message=message or "This request key belongs to a stake that was rolled back. Retry with a new key.",
            details={"idempotency_key": idempotency_key}
        )

class StakeAlreadyReversedError(BaseAPIException):
    """Stake record is not active"""
    def __init__(self, record_id: int):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="STAKE_005",
            message="Stake has already been reversed",
            details={"record_id": record_id}
        )

class InsufficientBalanceError(BaseAPIException):
    """Insufficient balance errors"""
    def __init__(
        self,
        available: Optional[Decimal] = None,
        required: Optional[Decimal] = None,
        message: Optional[str] = None,
    ):
        if message is None:
            if available is not None and required is not None:
                message = f"Insufficient balance. You have {available:.3f} ALGO but need {format(Decimal(required).normalize(), 'f')} ALGO"
            else:
                message = "Insufficient balance"
        details = {}
        if available is not None:
            details["available"] = str(available)
        if required is not None:
            details["required"] = str(required)
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="BALANCE_001",
            message=message,
            details=details
        )

class UnknownUserError(BaseAPIException):
    """User (or their balance row) does not exist"""
    def __init__(self, user_id: Optional[int] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="USER_002",
            message="User not found",
            details={"user_id": user_id} if user_id is not None else None
        )

class PostNotFoundError(BaseAPIException):
    """Post does not exist"""
    def __init__(self, post_id: int):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="POST_001",
            message="Post not found",
            details={"post_id": post_id}
        )

class WalletNotConnectedError(BaseAPIException):
    """Staking requires a connected wallet"""
    def __init__(self, message: str = "Please connect your Algorand wallet first"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="WALLET_001",
            message=message,
        )

class InvalidWalletAddressError(BaseAPIException):
    """Wallet address is not a valid Algorand address"""
    def __init__(self, message: str = "Invalid Algorand address format"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="WALLET_002",
            message=message,
        )

class ReconciliationRequiredError(BaseAPIException):
    """Compensating credit failed; balance must be fixed by an operator"""
    def __init__(self, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="RECON_001",
            message="Stake could not be rolled back. An operator will review your balance.",
            details=details
        )

class StorageUnavailableError(BaseAPIException):
    """Transient storage failure; safe to retry"""
    def __init__(self, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="STORAGE_001",
            message="Service temporarily unavailable, please try again",
            details=details
        )

class PostResolvedError(BaseAPIException):
    """Post has been resolved; its stakes are closed"""
    def __init__(self, post_id: int, message: str = "This post has already been resolved"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="POST_002",
            message=message,
            details={"post_id": post_id}
        )
