import asyncio
from decimal import Decimal

import httpx
import pytest

from truthchain.core.exceptions import (
    InvalidWalletAddressError,
    UnknownUserError,
    WalletNotConnectedError,
)
from truthchain.providers.algorand import AlgorandBalanceOracle, BalanceOracleError
from truthchain.services.wallet_service import WalletService

WALLET_A = "A" * 58
WALLET_B = "B" * 58


def _oracle(settings, handler):
    return AlgorandBalanceOracle(settings, transport=httpx.MockTransport(handler))


def _amount_handler(micro_algos, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"address": WALLET_A, "amount": micro_algos})

    return handler


@pytest.fixture
def wallet_service_factory(db, test_settings):
    def _make(handler):
        return WalletService(db, oracle=_oracle(test_settings, handler), settings=test_settings)

    return _make


class TestAlgorandBalanceOracle:
    """algod 잔액 조회 테스트"""

    def test_converts_micro_algos(self, test_settings):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            return httpx.Response(200, json={"amount": 12_500_000})

        balance = asyncio.run(_oracle(test_settings, handler).get_balance(WALLET_A))

        assert balance == Decimal("12.5")
        assert seen["path"] == f"/v2/accounts/{WALLET_A}"

    def test_sends_api_token(self, test_settings):
        test_settings.ALGORAND_API_TOKEN = "secret-token"
        seen = {}

        def handler(request):
            seen["token"] = request.headers.get("X-Algo-API-Token")
            return httpx.Response(200, json={"amount": 0})

        asyncio.run(_oracle(test_settings, handler).get_balance(WALLET_A))

        assert seen["token"] == "secret-token"

    def test_unknown_account_is_zero(self, test_settings):
        balance = asyncio.run(
            _oracle(test_settings, _amount_handler(0, status_code=404)).get_balance(WALLET_A)
        )

        assert balance == Decimal("0")

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, json={"message": "boom"}),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"amount": "12"}),
            httpx.Response(200, json={}),
        ],
    )
    def test_bad_responses_raise(self, test_settings, response):
        oracle = _oracle(test_settings, lambda request: response)

        with pytest.raises(BalanceOracleError):
            asyncio.run(oracle.get_balance(WALLET_A))

    def test_connection_error_raises(self, test_settings):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(BalanceOracleError):
            asyncio.run(_oracle(test_settings, handler).get_balance(WALLET_A))


class TestWalletConnection:
    """지갑 연결/해제"""

    def test_connect_valid_address(self, wallet_service_factory, make_user):
        user = make_user(wallet=False, balance="3")
        service = wallet_service_factory(_amount_handler(0))

        result = service.connect_wallet(user.id, WALLET_B)

        assert result.wallet_connected is True
        assert result.wallet_address == WALLET_B
        assert service.balance_service.get_balance(user.id) == Decimal("3")

    @pytest.mark.parametrize("address", ["", "abc", "a" * 58, "A" * 57, "0" * 58])
    def test_connect_invalid_address(self, wallet_service_factory, make_user, address):
        user = make_user(wallet=False)
        service = wallet_service_factory(_amount_handler(0))

        with pytest.raises(InvalidWalletAddressError):
            service.connect_wallet(user.id, address)

    def test_connect_unknown_user(self, wallet_service_factory):
        with pytest.raises(UnknownUserError):
            wallet_service_factory(_amount_handler(0)).connect_wallet(999, WALLET_A)

    def test_disconnect(self, wallet_service_factory, make_user):
        user = make_user()
        service = wallet_service_factory(_amount_handler(0))

        result = service.disconnect_wallet(user.id)

        assert result.wallet_connected is False
        assert result.wallet_address is None


class TestBalanceSync:
    """온체인 잔액 동기화"""

    def test_positive_reading_updates_balance(self, wallet_service_factory, make_user):
        user = make_user(balance="5")
        service = wallet_service_factory(_amount_handler(8_000_000))

        result = asyncio.run(service.sync_balance(user.id))

        assert result.status == "UPDATED"
        assert result.balance == Decimal("8")
        assert result.previous_balance == Decimal("5")
        assert service.balance_service.get_balance(user.id) == Decimal("8")
        assert service.balance_service.verify_user_integrity(user.id).status == "OK"

    def test_zero_reading_keeps_balance(self, wallet_service_factory, make_user):
        """체인 잔액 0은 DB 잔액을 덮어쓰지 않음"""
        user = make_user(balance="5")
        service = wallet_service_factory(_amount_handler(0))

        result = asyncio.run(service.sync_balance(user.id))

        assert result.status == "SKIPPED"
        assert result.chain_balance == Decimal("0")
        assert service.balance_service.get_balance(user.id) == Decimal("5")

    def test_oracle_failure_keeps_balance(self, wallet_service_factory, make_user):
        user = make_user(balance="5")
        service = wallet_service_factory(_amount_handler(0, status_code=503))

        result = asyncio.run(service.sync_balance(user.id))

        assert result.status == "SKIPPED"
        assert service.balance_service.get_balance(user.id) == Decimal("5")

    def test_same_reading_unchanged(self, wallet_service_factory, make_user):
        user = make_user(balance="5")
        service = wallet_service_factory(_amount_handler(5_000_000))

        result = asyncio.run(service.sync_balance(user.id))

        assert result.status == "UNCHANGED"

    def test_disabled_oracle_skips(self, db, test_settings, make_user):
        test_settings.BALANCE_ORACLE_ENABLED = False
        user = make_user(balance="5")
        service = WalletService(
            db, oracle=_oracle(test_settings, _amount_handler(9_000_000)), settings=test_settings
        )

        result = asyncio.run(service.sync_balance(user.id))

        assert result.status == "SKIPPED"
        assert service.balance_service.get_balance(user.id) == Decimal("5")

    def test_sync_requires_wallet(self, wallet_service_factory, make_user):
        user = make_user(wallet=False)
        service = wallet_service_factory(_amount_handler(1_000_000))

        with pytest.raises(WalletNotConnectedError):
            asyncio.run(service.sync_balance(user.id))
