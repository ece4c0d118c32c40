from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from truthchain.core.exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    StorageUnavailableError,
    UnknownUserError,
)
from truthchain.models.balance import BalanceTransaction, TransactionTypeEnum, UserBalance
from truthchain.services.balance_service import BalanceService


@pytest.fixture
def balance_service(db):
    return BalanceService(db)


class TestDebitAndCredit:
    """원장 차감/적립 테스트"""

    def test_debit_reduces_balance_and_appends_entry(self, db, balance_service, make_user):
        """차감 성공 시 잔액 감소 + 음수 거래 기록"""
        # Arrange
        user = make_user(balance="5")

        # Act
        result = balance_service.debit(
            user.id,
            Decimal("3"),
            TransactionTypeEnum.VERIFICATION_STAKE,
            "Verification stake on post 1",
            ref_id="stake:test:debit",
        )

        # Assert
        assert result.applied is True
        assert result.amount == Decimal("-3")
        assert result.balance_after == Decimal("2")
        assert balance_service.get_balance(user.id) == Decimal("2")

        entry = db.query(BalanceTransaction).filter_by(ref_id="stake:test:debit").one()
        assert entry.type == TransactionTypeEnum.VERIFICATION_STAKE.value
        assert entry.balance_after == Decimal("2")

    def test_debit_insufficient_balance(self, balance_service, make_user):
        """잔액 부족이면 InsufficientBalanceError, 잔액 변화 없음"""
        user = make_user(balance="1")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            balance_service.debit(
                user.id, Decimal("3"), TransactionTypeEnum.CHALLENGE_STAKE, "Challenge"
            )

        assert exc_info.value.message == (
            "Insufficient balance. You have 1.000 ALGO but need 3 ALGO"
        )
        assert exc_info.value.error_code == "BALANCE_001"
        assert balance_service.get_balance(user.id) == Decimal("1")

    def test_debit_exact_balance_reaches_zero(self, balance_service, make_user):
        user = make_user(balance="2")

        result = balance_service.debit(
            user.id, Decimal("2"), TransactionTypeEnum.POST_STAKE, "Author stake"
        )

        assert result.balance_after == Decimal("0")

    def test_debit_unknown_user(self, balance_service):
        with pytest.raises(UnknownUserError):
            balance_service.debit(
                999, Decimal("1"), TransactionTypeEnum.VERIFICATION_STAKE, "Stake"
            )

    @pytest.mark.parametrize("amount", ["0", "-1"])
    def test_non_positive_amount_rejected(self, balance_service, make_user, amount):
        user = make_user(balance="5")

        with pytest.raises(InvalidAmountError):
            balance_service.debit(
                user.id, Decimal(amount), TransactionTypeEnum.VERIFICATION_STAKE, "Stake"
            )
        with pytest.raises(InvalidAmountError):
            balance_service.credit(
                user.id, Decimal(amount), TransactionTypeEnum.REWARD, "Reward"
            )

    def test_credit_increases_balance(self, balance_service, make_user):
        user = make_user(balance="1")

        result = balance_service.credit(
            user.id, Decimal("2"), TransactionTypeEnum.REWARD, "Reward"
        )

        assert result.balance_after == Decimal("3")
        assert balance_service.get_balance(user.id) == Decimal("3")

    def test_same_ref_id_applies_once(self, db, balance_service, make_user):
        """같은 ref_id로 두 번 차감해도 한 번만 반영"""
        user = make_user(balance="5")

        first = balance_service.debit(
            user.id, Decimal("1"), TransactionTypeEnum.VERIFICATION_STAKE, "Stake", ref_id="dup-ref"
        )
        second = balance_service.debit(
            user.id, Decimal("1"), TransactionTypeEnum.VERIFICATION_STAKE, "Stake", ref_id="dup-ref"
        )

        assert first.applied is True
        assert second.applied is False
        assert second.transaction_id == first.transaction_id
        assert balance_service.get_balance(user.id) == Decimal("4")
        assert db.query(BalanceTransaction).filter_by(ref_id="dup-ref").count() == 1

    def test_reverse_credits_refund(self, balance_service, make_user):
        user = make_user(balance="5")
        balance_service.debit(
            user.id, Decimal("3"), TransactionTypeEnum.VERIFICATION_STAKE, "Stake"
        )

        refund = balance_service.reverse(user.id, Decimal("3"), "refund-ref", "Refund")

        assert refund.balance_after == Decimal("5")
        assert balance_service.find_transaction("refund-ref").amount == Decimal("3")

    def test_storage_error_maps_to_unavailable(self, balance_service, make_user):
        """연결 끊김 등 일시적 DB 오류는 StorageUnavailableError"""
        user = make_user(balance="5")
        lost = OperationalError("SELECT balance", {}, Exception("connection lost"))

        with patch.object(balance_service.balance_repo.db, "query", side_effect=lost):
            with pytest.raises(StorageUnavailableError) as exc_info:
                balance_service.get_balance(user.id)

        assert exc_info.value.status_code == 503


class TestBalanceQueries:
    """잔액 조회/원장/정합성 테스트"""

    def test_can_stake(self, balance_service, make_user):
        user = make_user(balance="2")

        assert balance_service.can_stake(user.id, Decimal("2")).can_stake is True
        response = balance_service.can_stake(user.id, Decimal("3"))
        assert response.can_stake is False
        assert response.current_balance == Decimal("2")
        assert response.required == Decimal("3")

    def test_get_balance_unknown_user(self, balance_service):
        with pytest.raises(UnknownUserError):
            balance_service.get_balance(12345)

    def test_ledger_is_newest_first_and_paged(self, balance_service, make_user):
        user = make_user(balance="5")
        for _ in range(3):
            balance_service.debit(
                user.id, Decimal("1"), TransactionTypeEnum.VERIFICATION_STAKE, "Stake"
            )

        page = balance_service.get_ledger(user.id, limit=2, offset=0)

        assert page.total_count == 4
        assert page.has_next is True
        assert len(page.entries) == 2
        assert page.entries[0].balance_after == Decimal("2")
        assert page.balance == Decimal("2")

        last_page = balance_service.get_ledger(user.id, limit=2, offset=2)
        assert last_page.has_next is False
        assert last_page.entries[-1].type == TransactionTypeEnum.ADMIN_ADJUSTMENT

    def test_integrity_ok_after_operations(self, balance_service, make_user):
        user = make_user(balance="5")
        balance_service.debit(
            user.id, Decimal("3"), TransactionTypeEnum.VERIFICATION_STAKE, "Stake"
        )
        balance_service.reverse(user.id, Decimal("3"), "refund-1", "Refund")

        result = balance_service.verify_user_integrity(user.id)

        assert result.status == "OK"
        assert result.recorded_balance == Decimal("5")
        assert result.entry_count == 3

    def test_integrity_detects_untracked_change(self, db, balance_service, make_user):
        """원장을 거치지 않은 잔액 변경은 MISMATCH"""
        user = make_user(balance="5")
        db.query(UserBalance).filter(UserBalance.user_id == user.id).update(
            {UserBalance.balance: Decimal("50")}, synchronize_session=False
        )
        db.commit()

        result = balance_service.verify_user_integrity(user.id)

        assert result.status == "MISMATCH"
        assert result.calculated_balance == Decimal("5")
        assert result.recorded_balance == Decimal("50")

    def test_sync_to_compare_and_set(self, balance_service, make_user):
        user = make_user(balance="5")

        stale = balance_service.sync_to(
            user.id, expected_balance=Decimal("4"), target_balance=Decimal("8"), description="sync"
        )
        applied = balance_service.sync_to(
            user.id, expected_balance=Decimal("5"), target_balance=Decimal("8"), description="sync"
        )

        assert stale is None
        assert applied.amount == Decimal("3")
        assert applied.balance_after == Decimal("8")
        assert balance_service.verify_user_integrity(user.id).status == "OK"
