import logging
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from truthchain.core.exceptions import (
    InvalidAmountError,
    ReconciliationRequiredError,
    StorageUnavailableError,
    UnknownUserError,
)
from truthchain.models.balance import TransactionTypeEnum
from truthchain.repositories.balance_repository import BalanceRepository
from truthchain.schemas.balance import (
    BalanceIntegrityResponse,
    BalanceResponse,
    CanStakeResponse,
    LedgerResponse,
    LedgerResult,
)
from truthchain.services.error_log_service import ErrorLogService
from truthchain.utils.amounts import to_amount

logger = logging.getLogger(__name__)


class BalanceService:
    """잔액 원장 서비스 - 잔액을 차감/적립할 수 있는 유일한 진입점"""

    def __init__(self, db: Session, error_log_service: Optional[ErrorLogService] = None):
        self.db = db
        self.balance_repo = BalanceRepository(db)
        self.error_log_service = error_log_service or ErrorLogService(db)

    @staticmethod
    def _require_positive(amount: Decimal) -> Decimal:
        amount = to_amount(amount)
        if amount <= 0:
            raise InvalidAmountError("Amount must be greater than 0")
        return amount

    def get_balance(self, user_id: int) -> Decimal:
        balance = self.balance_repo.get_balance(user_id)
        if balance is None:
            raise UnknownUserError(user_id)
        return balance

    def get_balance_response(self, user_id: int) -> BalanceResponse:
        return BalanceResponse(user_id=user_id, balance=self.get_balance(user_id))

    def can_stake(self, user_id: int, amount: Decimal) -> CanStakeResponse:
        """읽기 전용 사전 확인. 실제 차감 시 다시 원자적으로 검증됨"""
        amount = to_amount(amount)
        current = self.get_balance(user_id)
        return CanStakeResponse(
            can_stake=amount > 0 and current >= amount,
            current_balance=current,
            required=amount,
        )

    def find_transaction(self, ref_id: str) -> Optional[LedgerResult]:
        return self.balance_repo.get_transaction_by_ref(ref_id)

    def debit(
        self,
        user_id: int,
        amount: Decimal,
        tx_type: TransactionTypeEnum,
        description: str,
        ref_id: Optional[str] = None,
        related_post_id: Optional[int] = None,
    ) -> LedgerResult:
        """잔액 차감

        Raises:
            InvalidAmountError: amount <= 0
            InsufficientBalanceError: 잔액 < amount
            UnknownUserError: 잔액 행 없음
        """
        amount = self._require_positive(amount)
        ref_id = ref_id or f"{tx_type.value}:{uuid.uuid4().hex}"
        result = self.balance_repo.debit(
            user_id, amount, tx_type, description, ref_id, related_post_id
        )
        if result.applied:
            logger.info(
                f"Debited {amount} from user {user_id} ({tx_type.value}, ref={ref_id}); balance {result.balance_after}"
            )
        else:
            logger.info(f"Debit ref={ref_id} already applied; returning stored result")
        return result

    def debit_with_recovery(
        self,
        user_id: int,
        amount: Decimal,
        tx_type: TransactionTypeEnum,
        description: str,
        ref_id: str,
        refund_ref_id: str,
        refund_description: str,
        related_post_id: Optional[int] = None,
    ) -> LedgerResult:
        """
        차감 후 저장소 오류가 나면 실제 반영 여부를 ref_id로 다시 확인

        커밋 응답만 유실된 경우 차감이 남아 있으므로 refund_ref_id로 환불한 뒤
        원래 StorageUnavailableError를 그대로 올립니다. 확인 조회마저 실패하면
        결과를 알 수 없으므로 CRITICAL 로그를 남기고 원래 오류를 올립니다.
        """
        try:
            return self.debit(
                user_id,
                amount,
                tx_type,
                description,
                ref_id=ref_id,
                related_post_id=related_post_id,
            )
        except StorageUnavailableError as exc:
            try:
                committed = self.find_transaction(ref_id)
            except StorageUnavailableError:
                logger.critical(
                    f"Debit outcome unknown for user {user_id} amount={amount} ref={ref_id}"
                )
                raise exc
            if committed is not None:
                self.compensate(
                    user_id,
                    amount,
                    refund_ref_id,
                    refund_description,
                    cause=exc,
                    related_post_id=related_post_id,
                )
            raise

    def credit(
        self,
        user_id: int,
        amount: Decimal,
        tx_type: TransactionTypeEnum,
        description: str,
        ref_id: Optional[str] = None,
        related_post_id: Optional[int] = None,
    ) -> LedgerResult:
        """잔액 적립. 실패 사유는 UnknownUserError(또는 저장소 오류)뿐"""
        amount = self._require_positive(amount)
        ref_id = ref_id or f"{tx_type.value}:{uuid.uuid4().hex}"
        result = self.balance_repo.credit(
            user_id, amount, tx_type, description, ref_id, related_post_id
        )
        if result.applied:
            logger.info(
                f"Credited {amount} to user {user_id} ({tx_type.value}, ref={ref_id}); balance {result.balance_after}"
            )
        return result

    def reverse(
        self,
        user_id: int,
        amount: Decimal,
        ref_id: str,
        description: str,
        related_post_id: Optional[int] = None,
    ) -> LedgerResult:
        """환불 - 이전 차감을 되돌리는 적립"""
        return self.credit(
            user_id,
            amount,
            TransactionTypeEnum.REFUND,
            description,
            ref_id=ref_id,
            related_post_id=related_post_id,
        )

    def compensate(
        self,
        user_id: int,
        amount: Decimal,
        ref_id: str,
        description: str,
        cause: Exception,
        related_post_id: Optional[int] = None,
    ) -> LedgerResult:
        """
        보상 트랜잭션 - 후속 단계가 실패했을 때 차감을 되돌림

        환불마저 실패하면 error_logs에 RECONCILIATION_REQUIRED를 남기고
        ReconciliationRequiredError를 발생시킵니다.
        """
        try:
            refund = self.reverse(
                user_id, amount, ref_id, description, related_post_id=related_post_id
            )
        except Exception as refund_exc:
            self.require_reconciliation(
                user_id,
                amount,
                ref_id,
                reason=f"refund failed after {type(cause).__name__}: {refund_exc}",
                cause=refund_exc,
                context={"related_post_id": related_post_id},
            )
        logger.warning(
            f"Rolled back debit for user {user_id}: refunded {amount} after {type(cause).__name__} (ref={ref_id})"
        )
        return refund

    def require_reconciliation(
        self,
        user_id: int,
        amount: Decimal,
        ref_id: str,
        reason: str,
        cause: Exception,
        context: Optional[dict] = None,
    ) -> None:
        """운영자 확인이 필요한 상태를 기록하고 ReconciliationRequiredError 발생"""
        details = {"user_id": user_id, "amount": str(amount), "ref_id": ref_id}
        logger.critical(
            f"RECONCILIATION REQUIRED user={user_id} amount={amount} ref={ref_id}: {reason}"
        )
        try:
            entry = self.error_log_service.log_reconciliation_required(
                user_id, amount, ref_id, reason, context=context
            )
            details["error_log_id"] = entry.id
        except Exception:
            logger.exception(
                f"Could not persist reconciliation record for user {user_id} ref={ref_id}"
            )
        raise ReconciliationRequiredError(details=details) from cause

    def sync_to(
        self, user_id: int, expected_balance: Decimal, target_balance: Decimal, description: str
    ) -> Optional[LedgerResult]:
        """compare-and-set 잔액 동기화. 그 사이 잔액이 바뀌었으면 None"""
        ref_id = f"{TransactionTypeEnum.CHAIN_SYNC.value}:{user_id}:{uuid.uuid4().hex}"
        return self.balance_repo.sync_balance(
            user_id, expected_balance, target_balance, description, ref_id
        )

    def get_ledger(self, user_id: int, limit: int = 50, offset: int = 0) -> LedgerResponse:
        self.get_balance(user_id)
        return self.balance_repo.get_user_ledger(user_id, limit=limit, offset=offset)

    def verify_user_integrity(self, user_id: int) -> BalanceIntegrityResponse:
        result = self.balance_repo.verify_integrity_for_user(user_id)
        if result is None:
            raise UnknownUserError(user_id)
        if result.status != "OK":
            logger.warning(
                f"Balance integrity mismatch for user {user_id}: recorded={result.recorded_balance} calculated={result.calculated_balance}"
            )
        return result
