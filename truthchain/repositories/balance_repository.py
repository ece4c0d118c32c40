"""
잔액 원장 리포지토리

잔액을 바꾸는 유일한 데이터 접근 계층입니다.

- 차감은 `balance >= :amount` 조건이 붙은 단일 UPDATE로 처리되어 확인과 차감이
  원자적으로 일어납니다. 같은 사용자의 동시 차감은 행 잠금으로 직렬화됩니다.
- 모든 차감/적립은 같은 커밋 안에서 balance_transactions에 한 행을 남깁니다.
- ref_id가 유니크하므로 같은 ref_id로 재시도하면 한 번만 반영됩니다.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from truthchain.core.exceptions import InsufficientBalanceError, UnknownUserError
from truthchain.models.balance import BalanceTransaction, TransactionTypeEnum, UserBalance
from truthchain.repositories.base import TRANSIENT_DB_ERRORS, BaseRepository
from truthchain.schemas.balance import (
    BalanceIntegrityResponse,
    LedgerEntry,
    LedgerResponse,
    LedgerResult,
)


class BalanceRepository(BaseRepository[BalanceTransaction, LedgerEntry]):
    """잔액/거래 내역 리포지토리"""

    def __init__(self, db: Session):
        super().__init__(BalanceTransaction, LedgerEntry, db)

    @staticmethod
    def _to_result(entry: BalanceTransaction, applied: bool) -> LedgerResult:
        return LedgerResult(
            transaction_id=entry.id,
            user_id=entry.user_id,
            amount=entry.amount,
            balance_after=entry.balance_after,
            ref_id=entry.ref_id,
            applied=applied,
        )

    def _find_by_ref(self, ref_id: str) -> Optional[BalanceTransaction]:
        return (
            self.db.query(BalanceTransaction)
            .filter(BalanceTransaction.ref_id == ref_id)
            .first()
        )

    def get_balance(self, user_id: int) -> Optional[Decimal]:
        """현재 잔액 조회. 잔액 행이 없으면 None"""
        self._ensure_clean_session()
        try:
            return (
                self.db.query(UserBalance.balance)
                .filter(UserBalance.user_id == user_id)
                .scalar()
            )
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "get_balance")

    def get_transaction_by_ref(self, ref_id: str) -> Optional[LedgerResult]:
        """ref_id로 기존 거래 조회 (멱등성 확인용)"""
        self._ensure_clean_session()
        try:
            entry = self._find_by_ref(ref_id)
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, "get_transaction_by_ref")
        return self._to_result(entry, applied=False) if entry else None

    def debit(
        self,
        user_id: int,
        amount: Decimal,
        tx_type: TransactionTypeEnum,
        description: str,
        ref_id: str,
        related_post_id: Optional[int] = None,
    ) -> LedgerResult:
        """잔액 차감. 잔액이 부족하면 아무것도 바꾸지 않고 실패"""
        return self._apply_delta(
            user_id, -amount, tx_type, description, ref_id, related_post_id
        )

    def credit(
        self,
        user_id: int,
        amount: Decimal,
        tx_type: TransactionTypeEnum,
        description: str,
        ref_id: str,
        related_post_id: Optional[int] = None,
    ) -> LedgerResult:
        """잔액 적립"""
        return self._apply_delta(
            user_id, amount, tx_type, description, ref_id, related_post_id
        )

    def _apply_delta(
        self,
        user_id: int,
        delta: Decimal,
        tx_type: TransactionTypeEnum,
        description: str,
        ref_id: str,
        related_post_id: Optional[int],
    ) -> LedgerResult:
        """
        잔액 변경의 핵심 로직

        1. ref_id로 이미 처리된 거래인지 확인 (처리됐으면 applied=False로 반환)
        2. 조건부 UPDATE로 잔액 변경 (차감 시 잔액 >= 금액 조건)
        3. 변경된 행이 없으면 사용자 없음/잔액 부족을 구분해 실패
        4. 거래 내역 추가 후 커밋
        5. ref_id 유니크 위반이면 동시에 처리된 기존 거래 반환
        """
        self._ensure_clean_session()
        try:
            existing = self._find_by_ref(ref_id)
            if existing:
                return self._to_result(existing, applied=False)

            query = self.db.query(UserBalance).filter(UserBalance.user_id == user_id)
            if delta < 0:
                query = query.filter(UserBalance.balance >= -delta)
            updated = query.update(
                {UserBalance.balance: UserBalance.balance + delta},
                synchronize_session=False,
            )

            if updated == 0:
                self.db.rollback()
                current = self.get_balance(user_id)
                if current is None:
                    raise UnknownUserError(user_id)
                raise InsufficientBalanceError(available=current, required=-delta)

            balance_after = (
                self.db.query(UserBalance.balance)
                .filter(UserBalance.user_id == user_id)
                .scalar()
            )
            entry = BalanceTransaction(
                user_id=user_id,
                type=tx_type.value,
                amount=delta,
                balance_after=balance_after,
                description=description,
                ref_id=ref_id,
                related_post_id=related_post_id,
            )
            self.db.add(entry)
            self.db.flush()
            self.db.commit()
            return self._to_result(entry, applied=True)

        except IntegrityError:
            self.db.rollback()
            existing = self._find_by_ref(ref_id)
            if existing:
                return self._to_result(existing, applied=False)
            raise
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, f"{tx_type.value}:{ref_id}")

    def sync_balance(
        self,
        user_id: int,
        expected_balance: Decimal,
        target_balance: Decimal,
        description: str,
        ref_id: str,
    ) -> Optional[LedgerResult]:
        """
        외부 값(온체인 잔액)으로 잔액 맞추기 - compare-and-set

        읽은 뒤 잔액이 바뀌었으면(동시 스테이크 등) None을 반환하며 아무것도 쓰지
        않습니다. 호출자는 다시 읽고 재시도할 수 있습니다.
        """
        self._ensure_clean_session()
        delta = target_balance - expected_balance
        try:
            updated = (
                self.db.query(UserBalance)
                .filter(
                    UserBalance.user_id == user_id,
                    UserBalance.balance == expected_balance,
                )
                .update({UserBalance.balance: target_balance}, synchronize_session=False)
            )
            if updated == 0:
                self.db.rollback()
                return None

            entry = BalanceTransaction(
                user_id=user_id,
                type=TransactionTypeEnum.CHAIN_SYNC.value,
                amount=delta,
                balance_after=target_balance,
                description=description,
                ref_id=ref_id,
            )
            self.db.add(entry)
            self.db.flush()
            self.db.commit()
            return self._to_result(entry, applied=True)
        except TRANSIENT_DB_ERRORS as e:
            raise self._storage_unavailable(e, f"chain_sync:{ref_id}")

    def get_user_ledger(
        self, user_id: int, limit: int = 50, offset: int = 0
    ) -> LedgerResponse:
        """사용자 거래 내역 조회 (최신순 페이징)"""
        self._ensure_clean_session()
        base = self.db.query(BalanceTransaction).filter(
            BalanceTransaction.user_id == user_id
        )
        total_count = base.count()
        entries = (
            base.order_by(desc(BalanceTransaction.id)).limit(limit).offset(offset).all()
        )
        return LedgerResponse(
            balance=self.get_balance(user_id) or Decimal("0"),
            entries=[self._to_schema(entry) for entry in entries],
            total_count=total_count,
            has_next=offset + limit < total_count,
        )

    def verify_integrity_for_user(self, user_id: int) -> Optional[BalanceIntegrityResponse]:
        """
        사용자 잔액 정합성 검증

        opening_balance + 모든 거래 변동량 합계 == 저장된 잔액 이어야 합니다.
        최신 거래의 balance_after도 저장된 잔액과 같아야 합니다.
        """
        self._ensure_clean_session()
        account = (
            self.db.query(UserBalance)
            .populate_existing()
            .filter(UserBalance.user_id == user_id)
            .first()
        )
        if account is None:
            return None

        total_deltas, entry_count = (
            self.db.query(
                func.coalesce(func.sum(BalanceTransaction.amount), 0),
                func.count(BalanceTransaction.id),
            )
            .filter(BalanceTransaction.user_id == user_id)
            .one()
        )
        total_deltas = Decimal(str(total_deltas)).quantize(Decimal("0.000001"))
        calculated = account.opening_balance + total_deltas

        latest = (
            self.db.query(BalanceTransaction.balance_after)
            .filter(BalanceTransaction.user_id == user_id)
            .order_by(desc(BalanceTransaction.id))
            .first()
        )
        latest_ok = latest is None or latest[0] == account.balance

        status = "OK" if calculated == account.balance and latest_ok else "MISMATCH"
        return BalanceIntegrityResponse(
            status=status,
            user_id=user_id,
            opening_balance=account.opening_balance,
            total_deltas=total_deltas,
            calculated_balance=calculated,
            recorded_balance=account.balance,
            entry_count=entry_count,
        )
