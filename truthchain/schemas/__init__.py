from .auth import BaseResponse, Token, TokenData
from .user import User
from .balance import BalanceResponse, LedgerResult
from .stake import StakeRequest, StakeResult
from .post import PostCreate, PostResponse
