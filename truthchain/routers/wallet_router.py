from fastapi import APIRouter, Depends

from truthchain.core.auth_middleware import get_current_active_user
from truthchain.deps import get_wallet_service
from truthchain.schemas.auth import BaseResponse
from truthchain.schemas.user import User as UserSchema
from truthchain.schemas.wallet import WalletConnectRequest
from truthchain.services.wallet_service import WalletService

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.post("/connect", response_model=BaseResponse)
def connect_wallet(
    payload: WalletConnectRequest,
    current_user: UserSchema = Depends(get_current_active_user),
    service: WalletService = Depends(get_wallet_service),
) -> BaseResponse:
    wallet = service.connect_wallet(current_user.id, payload.address)
    return BaseResponse(success=True, data=wallet.model_dump(mode="json"))


@router.delete("", response_model=BaseResponse)
def disconnect_wallet(
    current_user: UserSchema = Depends(get_current_active_user),
    service: WalletService = Depends(get_wallet_service),
) -> BaseResponse:
    wallet = service.disconnect_wallet(current_user.id)
    return BaseResponse(success=True, data=wallet.model_dump(mode="json"))


@router.post("/sync", response_model=BaseResponse)
async def sync_balance(
    current_user: UserSchema = Depends(get_current_active_user),
    service: WalletService = Depends(get_wallet_service),
) -> BaseResponse:
    """온체인 잔액 동기화 (best effort - 실패하거나 0이면 DB 잔액 유지)"""
    result = await service.sync_balance(current_user.id)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))
