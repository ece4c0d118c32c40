from decimal import Decimal
from unittest.mock import patch

import pytest

from truthchain.core.exceptions import (
    PostNotFoundError,
    PostResolvedError,
    ReconciliationRequiredError,
    StorageUnavailableError,
    UnknownUserError,
    ValidationError,
)
from truthchain.models.balance import BalanceTransaction, TransactionTypeEnum
from truthchain.models.internal import ErrorLog
from truthchain.models.post import PostStatusEnum
from truthchain.models.stake import StakeStatusEnum
from truthchain.schemas.post import PostCreate
from truthchain.services.post_service import PostService
from truthchain.services.settlement_service import SettlementService
from truthchain.services.stake_service import StakeService


@pytest.fixture
def settlement_service(db, test_settings):
    return SettlementService(db, settings=test_settings)


@pytest.fixture
def stake_service(db, test_settings):
    return StakeService(db, settings=test_settings)


@pytest.fixture
def contested_post(db, test_settings, make_user, stake_service):
    """작성자 2 + 검증 3, 1 vs 챌린지 3 (모두 잔액 10에서 시작)"""
    author = make_user(balance="10")
    verifier_a = make_user(balance="10")
    verifier_b = make_user(balance="10")
    challenger = make_user(balance="10")
    post = PostService(db, settings=test_settings).create_post(
        author.id, PostCreate(content="The bridge opened in 1932", stake_amount="2")
    ).post
    stake_service.stake(post.id, challenger.id, "3", "challenge", reason="It opened in 1937")
    stake_service.stake(post.id, verifier_a.id, "3", "verification")
    stake_service.stake(post.id, verifier_b.id, "1", "verification")
    return {
        "post": post,
        "author": author,
        "verifier_a": verifier_a,
        "verifier_b": verifier_b,
        "challenger": challenger,
    }


def _balance(service, user):
    return service.balance_service.get_balance(user.id)


def _payouts(result):
    return {p.user_id: p.payout for p in result.payouts}


class TestResolveVerified:
    """참 판정 - 작성자와 검증자가 챌린지 풀을 나눠 가짐"""

    def test_pays_supporters_pro_rata(self, settlement_service, contested_post):
        c = contested_post

        result = settlement_service.resolve(
            c["post"].id, PostStatusEnum.VERIFIED, resolved_by=99, notes="Archive photo"
        )

        assert result.voided is False
        assert result.winning_stake == Decimal("6")
        assert result.losing_pool == Decimal("3")
        assert result.total_pool == Decimal("9")
        assert _payouts(result) == {
            c["author"].id: Decimal("3"),
            c["verifier_a"].id: Decimal("4.5"),
            c["verifier_b"].id: Decimal("1.5"),
        }
        assert _balance(settlement_service, c["author"]) == Decimal("11")
        assert _balance(settlement_service, c["verifier_a"]) == Decimal("11.5")
        assert _balance(settlement_service, c["verifier_b"]) == Decimal("10.5")
        assert _balance(settlement_service, c["challenger"]) == Decimal("7")

    def test_records_resolution(self, db, test_settings, settlement_service, contested_post):
        post_id = contested_post["post"].id

        settlement_service.resolve(post_id, "verified", resolved_by=99, notes="Archive photo")

        post = PostService(db, settings=test_settings).get_post(post_id)
        assert post.status == PostStatusEnum.VERIFIED
        assert post.resolved_by == 99
        assert post.resolution_notes == "Archive photo"
        assert post.resolved_at is not None

    def test_rewards_are_ledger_entries(self, db, settlement_service, contested_post):
        c = contested_post

        settlement_service.resolve(c["post"].id, PostStatusEnum.VERIFIED)

        rewards = db.query(BalanceTransaction).filter_by(
            type=TransactionTypeEnum.REWARD.value
        ).all()
        assert len(rewards) == 3
        assert {r.related_post_id for r in rewards} == {c["post"].id}
        assert f"settlement:{c['post'].id}:author" in {r.ref_id for r in rewards}
        for key in ("author", "verifier_a", "verifier_b", "challenger"):
            user = c[key]
            integrity = settlement_service.balance_service.verify_user_integrity(user.id)
            assert integrity.status == "OK"


class TestResolveFalse:
    """거짓 판정 - 챌린저가 작성자/검증 스테이크를 가져감"""

    def test_pays_challengers(self, settlement_service, contested_post):
        c = contested_post

        result = settlement_service.resolve(c["post"].id, PostStatusEnum.FALSE)

        assert result.winning_stake == Decimal("3")
        assert result.losing_pool == Decimal("6")
        assert _payouts(result) == {c["challenger"].id: Decimal("9")}
        assert result.payouts[0].side == "challenge"
        assert _balance(settlement_service, c["challenger"]) == Decimal("16")
        assert _balance(settlement_service, c["author"]) == Decimal("8")
        assert _balance(settlement_service, c["verifier_a"]) == Decimal("7")

    def test_rounding_remainder_goes_to_largest_stake(
        self, db, settlement_service, stake_service, make_user, make_post
    ):
        """microALGO 단위로 내림한 나머지는 가장 큰(동률이면 먼저 들어온) 스테이크에"""
        author = make_user()
        post = make_post(author.id)
        challengers = [make_user(balance="5") for _ in range(3)]
        verifier = make_user(balance="5")
        stake_service.stake(post.id, verifier.id, "1", "verification")
        for challenger in challengers:
            stake_service.stake(post.id, challenger.id, "1.1", "challenge", reason="Wrong")

        result = settlement_service.resolve(post.id, PostStatusEnum.FALSE)

        payouts = [p.payout for p in result.payouts]
        assert payouts == [Decimal("1.433334"), Decimal("1.433333"), Decimal("1.433333")]
        assert sum(payouts) == result.total_pool


class TestResolveVoid:
    def test_no_winning_side_refunds_everyone(
        self, db, settlement_service, stake_service, make_user, make_post
    ):
        """챌린지 없이 거짓 판정이면 모든 스테이크 환불"""
        author = make_user()
        post = make_post(author.id)
        verifier = make_user(balance="10")
        stake_service.stake(post.id, verifier.id, "2", "verification")

        result = settlement_service.resolve(post.id, PostStatusEnum.FALSE)

        assert result.voided is True
        assert _payouts(result) == {verifier.id: Decimal("2")}
        assert _balance(settlement_service, verifier) == Decimal("10")
        refund = db.query(BalanceTransaction).filter_by(
            type=TransactionTypeEnum.REFUND.value
        ).one()
        assert refund.related_post_id == post.id

    def test_post_without_stakes(self, settlement_service, make_user, make_post):
        post = make_post(make_user().id)

        result = settlement_service.resolve(post.id, PostStatusEnum.VERIFIED)

        assert result.payouts == []
        assert result.total_pool == Decimal("0")


class TestResolveRetry:
    """재실행해도 한 번만 지급"""

    def test_repeat_pays_once(self, db, settlement_service, contested_post):
        c = contested_post
        settlement_service.resolve(c["post"].id, PostStatusEnum.VERIFIED)

        again = settlement_service.resolve(c["post"].id, PostStatusEnum.VERIFIED)

        assert all(p.applied is False for p in again.payouts)
        assert _balance(settlement_service, c["verifier_a"]) == Decimal("11.5")
        assert db.query(BalanceTransaction).filter_by(
            type=TransactionTypeEnum.REWARD.value
        ).count() == 3

    def test_retry_after_storage_failure_completes(self, db, settlement_service, contested_post):
        """중간에 저장소 오류가 나면 재시도가 빠진 지급만 적립"""
        c = contested_post
        real_credit = settlement_service.balance_service.credit
        calls = []

        def fail_second_credit(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise StorageUnavailableError(details={"operation": "credit_balance"})
            return real_credit(*args, **kwargs)

        with patch.object(
            settlement_service.balance_service, "credit", side_effect=fail_second_credit
        ):
            with pytest.raises(StorageUnavailableError):
                settlement_service.resolve(c["post"].id, PostStatusEnum.VERIFIED)

        result = settlement_service.resolve(c["post"].id, PostStatusEnum.VERIFIED)

        assert [p.applied for p in result.payouts] == [False, True, True]
        assert _balance(settlement_service, c["author"]) == Decimal("11")
        assert _balance(settlement_service, c["verifier_a"]) == Decimal("11.5")
        assert _balance(settlement_service, c["verifier_b"]) == Decimal("10.5")

    def test_other_verdict_rejected(self, settlement_service, contested_post):
        post_id = contested_post["post"].id
        settlement_service.resolve(post_id, PostStatusEnum.VERIFIED)

        with pytest.raises(PostResolvedError) as exc_info:
            settlement_service.resolve(post_id, PostStatusEnum.FALSE)

        assert exc_info.value.message == "Post was already resolved as verified"
        assert _balance(settlement_service, contested_post["challenger"]) == Decimal("7")

    def test_failed_payout_requires_reconciliation(self, db, settlement_service, contested_post):
        c = contested_post
        real_credit = settlement_service.balance_service.credit

        def reject_author(user_id, *args, **kwargs):
            if user_id == c["author"].id:
                raise UnknownUserError(user_id)
            return real_credit(user_id, *args, **kwargs)

        with patch.object(
            settlement_service.balance_service, "credit", side_effect=reject_author
        ):
            with pytest.raises(ReconciliationRequiredError) as exc_info:
                settlement_service.resolve(c["post"].id, PostStatusEnum.VERIFIED)

        author_ref = f"settlement:{c['post'].id}:author"
        assert exc_info.value.details["failed_refs"] == [author_ref]
        entry = db.query(ErrorLog).one()
        assert entry.check_type == "RECONCILIATION_REQUIRED"
        assert entry.details["ref_id"] == author_ref
        assert _balance(settlement_service, c["verifier_a"]) == Decimal("11.5")


class TestResolveValidation:
    def test_open_is_not_a_verdict(self, settlement_service, contested_post):
        with pytest.raises(ValidationError):
            settlement_service.resolve(contested_post["post"].id, PostStatusEnum.OPEN)

    def test_missing_post(self, settlement_service):
        with pytest.raises(PostNotFoundError):
            settlement_service.resolve(404, PostStatusEnum.VERIFIED)


class TestResolvedPostIsClosed:
    """판정 후에는 새 스테이크와 환불(reverse)이 막힘"""

    def test_new_stake_rejected(self, settlement_service, stake_service, make_user, contested_post):
        settlement_service.resolve(contested_post["post"].id, PostStatusEnum.VERIFIED)
        late = make_user(balance="5")

        with pytest.raises(PostResolvedError):
            stake_service.stake(contested_post["post"].id, late.id, "1", "verification")

        assert stake_service.balance_service.get_balance(late.id) == Decimal("5")

    def test_reverse_rejected(self, settlement_service, stake_service, contested_post):
        post_id = contested_post["post"].id
        record = stake_service.list_post_stakes(post_id)[0]
        settlement_service.resolve(post_id, PostStatusEnum.VERIFIED)

        with pytest.raises(PostResolvedError):
            stake_service.reverse_stake(record.id, "too late")

        records = stake_service.list_post_stakes(post_id)
        assert all(r.status == StakeStatusEnum.ACTIVE for r in records)
        assert stake_service.balance_service.get_balance(record.staker_id) == Decimal("7")
