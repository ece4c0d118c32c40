import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from truthchain.config import Settings, settings as default_settings
from truthchain.core.exceptions import (
    InvalidWalletAddressError,
    UnknownUserError,
    WalletNotConnectedError,
)
from truthchain.providers.algorand import AlgorandBalanceOracle, BalanceOracleError
from truthchain.repositories.user_repository import UserRepository
from truthchain.schemas.wallet import BalanceSyncResult, WalletResponse
from truthchain.services.balance_service import BalanceService
from truthchain.utils.amounts import is_valid_algorand_address

logger = logging.getLogger(__name__)

# 동기화 도중 잔액이 바뀌면(동시 스테이크) 다시 읽고 재시도
_SYNC_ATTEMPTS = 3


class WalletService:
    """지갑 연결 및 온체인 잔액 동기화"""

    def __init__(
        self,
        db: Session,
        oracle: AlgorandBalanceOracle,
        settings: Settings = default_settings,
    ):
        self.db = db
        self.oracle = oracle
        self.settings = settings
        self.user_repo = UserRepository(db)
        self.balance_service = BalanceService(db)

    def _get_user(self, user_id: int):
        user = self.user_repo.get_by_id(user_id)
        if user is None:
            raise UnknownUserError(user_id)
        return user

    def connect_wallet(self, user_id: int, address: str) -> WalletResponse:
        """주소 형식 확인 후 연결. 잔액은 바꾸지 않음"""
        address = (address or "").strip()
        if not is_valid_algorand_address(address):
            raise InvalidWalletAddressError()
        self._get_user(user_id)

        user = self.user_repo.set_wallet(user_id, address, connected=True)
        logger.info(f"User {user_id} connected wallet {address[:8]}...")
        return WalletResponse(
            user_id=user.id,
            wallet_address=user.wallet_address,
            wallet_connected=user.wallet_connected,
        )

    def disconnect_wallet(self, user_id: int) -> WalletResponse:
        self._get_user(user_id)
        user = self.user_repo.set_wallet(user_id, None, connected=False)
        logger.info(f"User {user_id} disconnected wallet")
        return WalletResponse(
            user_id=user.id, wallet_address=None, wallet_connected=False
        )

    async def sync_balance(self, user_id: int) -> BalanceSyncResult:
        """
        온체인 잔액으로 DB 잔액 맞추기 (best effort)

        오라클이 꺼져 있거나, 실패하거나, 0 이하를 돌려주면 DB 잔액을 그대로 둡니다.
        양수면 차이를 chain_sync 거래로 기록하며 compare-and-set으로 반영합니다.
        """
        user = self._get_user(user_id)
        if not user.wallet_connected or not user.wallet_address:
            raise WalletNotConnectedError()

        current = self.balance_service.get_balance(user_id)

        def skipped(reason: str, chain_balance=None) -> BalanceSyncResult:
            logger.info(f"Balance sync skipped for user {user_id}: {reason}")
            return BalanceSyncResult(
                user_id=user_id,
                status="SKIPPED",
                balance=current,
                previous_balance=current,
                chain_balance=chain_balance,
                reason=reason,
            )

        if not self.oracle.enabled:
            return skipped("balance oracle is disabled")

        try:
            chain_balance = await self.oracle.get_balance(user.wallet_address)
        except BalanceOracleError as e:
            logger.warning(f"Balance oracle failed for user {user_id}: {e.message}")
            return skipped(f"balance oracle unavailable: {e.message}")

        if chain_balance is None or chain_balance <= Decimal("0"):
            return skipped("on-chain balance is zero; keeping stored balance", chain_balance)

        previous = current
        for _ in range(_SYNC_ATTEMPTS):
            if chain_balance == current:
                return BalanceSyncResult(
                    user_id=user_id,
                    status="UNCHANGED",
                    balance=current,
                    previous_balance=previous,
                    chain_balance=chain_balance,
                )
            result = self.balance_service.sync_to(
                user_id,
                expected_balance=current,
                target_balance=chain_balance,
                description=f"Synced with on-chain balance of {user.wallet_address[:8]}...",
            )
            if result is not None:
                logger.info(
                    f"Synced balance for user {user_id}: {current} -> {result.balance_after}"
                )
                return BalanceSyncResult(
                    user_id=user_id,
                    status="UPDATED",
                    balance=result.balance_after,
                    previous_balance=current,
                    chain_balance=chain_balance,
                )
            current = self.balance_service.get_balance(user_id)

        return skipped("balance kept changing during sync; try again", chain_balance)
