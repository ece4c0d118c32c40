from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class WalletConnectRequest(BaseModel):
    address: str = Field(..., description="Algorand 주소 (58자)")


class WalletResponse(BaseModel):
    user_id: int
    wallet_address: Optional[str] = None
    wallet_connected: bool

    class Config:
        from_attributes = True


class BalanceSyncResult(BaseModel):
    """온체인 잔액 동기화 결과

    status
    - UPDATED: 온체인 값으로 잔액을 맞춤
    - UNCHANGED: 이미 같은 값
    - SKIPPED: 오라클 값이 없거나 0이어서 DB 잔액 유지
    """

    user_id: int
    status: str
    balance: Decimal
    previous_balance: Decimal
    chain_balance: Optional[Decimal] = None
    reason: Optional[str] = None
