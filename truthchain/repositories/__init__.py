# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .user_repository import UserRepository
from .balance_repository import BalanceRepository
from .stake_repository import StakeRecordRepository
from .post_repository import PostRepository
from .error_log_repository import ErrorLogRepository

__all__ = [
    "BaseRepository",
    "UserRepository",
    "BalanceRepository",
    "StakeRecordRepository",
    "PostRepository",
    "ErrorLogRepository",
]
