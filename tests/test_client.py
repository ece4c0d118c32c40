import json
from decimal import Decimal

import httpx
import pytest

from truthchain.client import (
    ApiError,
    LocalStakeView,
    StakeOutcomeUnknown,
    TruthChainClient,
)
from truthchain.utils.optimistic import OptimisticValue


class TestOptimisticValue:
    """낙관적 값 apply/confirm/rollback"""

    def test_apply_then_rollback(self):
        value = OptimisticValue(Decimal("5"))

        token = value.apply(Decimal("-3"))
        assert value.value == Decimal("2")
        assert value.has_pending is True

        value.rollback(token)
        assert value.value == Decimal("5")
        assert value.has_pending is False

    def test_confirm_replaces_with_server_value(self):
        value = OptimisticValue(Decimal("5"))
        token = value.apply(Decimal("-3"))

        value.confirm(token, Decimal("1.5"))

        assert value.value == Decimal("1.5")

    def test_commit_keeps_local_delta(self):
        value = OptimisticValue(3)
        token = value.apply(1)

        value.commit(token)

        assert value.value == 4
        assert value.has_pending is False

    def test_independent_pending_changes(self):
        value = OptimisticValue(10)
        first = value.apply(-2)
        second = value.apply(-3)

        value.rollback(first)

        assert value.value == 7
        value.confirm(second, 7)
        assert value.value == 7


class FakeServer:
    """MockTransport용 가짜 API (잔액 5, 게시물 1개)

    lose_responses: 처리 후 응답이 유실되는(ReadTimeout) 스테이크 호출 수
    drop_requests: 처리 전에 연결이 끊기는(ConnectError) 스테이크 호출 수
    """

    def __init__(self, fail_stake=None, fail_post=False, lose_responses=0, drop_requests=0):
        self.balance = Decimal("5")
        self.post = {
            "id": 1,
            "stake_amount": "2.000000",
            "challenge_pool": "0.000000",
            "verifications": 0,
            "challenges": 0,
        }
        self.fail_stake = fail_stake
        self.fail_post = fail_post
        self.fail_balance = False
        self.lose_responses = lose_responses
        self.drop_requests = drop_requests
        self.stake_requests = []
        self.results = {}

    def _apply_stake(self, body, key):
        if key in self.results:
            return dict(self.results[key], replayed=True)
        amount = Decimal(body["amount"])
        self.balance -= amount
        if body["kind"] == "verification":
            self.post["stake_amount"] = str(Decimal(self.post["stake_amount"]) + amount)
            self.post["verifications"] += 1
        else:
            self.post["challenge_pool"] = str(Decimal(self.post["challenge_pool"]) + amount)
            self.post["challenges"] += 1
        result = {"new_balance": str(self.balance), "record_id": 10, "replayed": False}
        if key:
            self.results[key] = result
        return result

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/api/v1/stakes":
            body = json.loads(request.content)
            key = request.headers.get("Idempotency-Key")
            self.stake_requests.append((body, key))
            if self.drop_requests:
                self.drop_requests -= 1
                raise httpx.ConnectError("connection refused", request=request)
            if self.fail_stake:
                status_code, code, message = self.fail_stake
                return httpx.Response(
                    status_code,
                    json={"success": False, "error": {"code": code, "message": message, "details": {}}},
                )
            result = self._apply_stake(body, key)
            if self.lose_responses:
                self.lose_responses -= 1
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"success": True, "data": result})
        if request.method == "GET" and request.url.path == "/api/v1/posts/1":
            if self.fail_post:
                return httpx.Response(503, json={"success": False, "error": {"code": "STORAGE_001", "message": "down"}})
            return httpx.Response(200, json={"success": True, "data": {"post": self.post}})
        if request.method == "GET" and request.url.path == "/api/v1/balance":
            if self.fail_balance:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"success": True, "data": {"user_id": 1, "balance": str(self.balance)}})
        return httpx.Response(404, json={"success": False, "error": {"code": "HTTP_ERROR", "message": "Not Found"}})


def _view(server):
    client = TruthChainClient("http://api.test", token="t", transport=httpx.MockTransport(server))
    view = LocalStakeView(client, client.get_balance())
    view.track_post(client.get_post(1))
    return view


class TestTruthChainClient:
    def test_error_envelope_raises_api_error(self):
        server = FakeServer(fail_stake=(400, "BALANCE_001", "Insufficient balance"))
        client = TruthChainClient("http://api.test", token="t", transport=httpx.MockTransport(server))

        with pytest.raises(ApiError) as exc_info:
            client.stake(1, Decimal("9"), "verification")

        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "BALANCE_001"

    def test_stake_sends_idempotency_header(self):
        server = FakeServer()
        client = TruthChainClient("http://api.test", token="t", transport=httpx.MockTransport(server))

        client.stake(1, Decimal("1"), "challenge", idempotency_key="abc")

        body, key = server.stake_requests[0]
        assert key == "abc"
        assert body == {"post_id": 1, "amount": "1", "kind": "challenge"}

    def test_stake_sends_reason_when_given(self):
        server = FakeServer()
        client = TruthChainClient("http://api.test", token="t", transport=httpx.MockTransport(server))

        client.stake(1, Decimal("3"), "challenge", reason="Source is outdated")

        body, _ = server.stake_requests[0]
        assert body["reason"] == "Source is outdated"


class TestLocalStakeView:
    """로컬 캐시는 서버 확정값으로 교체됨"""

    def test_success_confirms_server_values(self):
        server = FakeServer()
        view = _view(server)

        view.stake(1, Decimal("3"), "verification")

        assert view.balance.value == Decimal("2")
        assert view.posts[1]["stake_amount"].value == Decimal("5")
        assert view.posts[1]["verifications"].value == 1
        assert view.balance.has_pending is False
        assert server.stake_requests[0][1] is not None

    def test_failure_rolls_back(self):
        server = FakeServer(fail_stake=(409, "STAKE_003", "You have already verified this post"))
        view = _view(server)

        with pytest.raises(ApiError):
            view.stake(1, Decimal("3"), "verification")

        assert view.balance.value == Decimal("5")
        assert view.posts[1]["stake_amount"].value == Decimal("2")
        assert view.posts[1]["verifications"].value == 0

    def test_post_refresh_failure_keeps_local_counters(self):
        server = FakeServer(fail_post=False)
        view = _view(server)
        server.fail_post = True

        view.stake(1, Decimal("1"), "challenge")

        assert view.balance.value == Decimal("4")
        assert view.posts[1]["challenge_pool"].value == Decimal("1")
        assert view.posts[1]["challenges"].value == 1
        assert view.posts[1]["challenges"].has_pending is False

    def test_lost_response_retried_with_same_key(self):
        server = FakeServer()
        view = _view(server)
        server.lose_responses = 1

        result = view.stake(1, Decimal("3"), "verification", idempotency_key="k-1")

        assert result["replayed"] is True
        assert [key for _, key in server.stake_requests] == ["k-1", "k-1"]
        assert server.balance == Decimal("2")
        assert view.balance.value == Decimal("2")
        assert view.posts[1]["verifications"].value == 1

    def test_unknown_outcome_confirms_balance_from_server(self):
        server = FakeServer()
        view = _view(server)
        server.lose_responses = 2

        with pytest.raises(StakeOutcomeUnknown) as exc_info:
            view.stake(1, Decimal("3"), "verification", idempotency_key="k-2")

        # 서버에는 한 번 반영됐으므로 되돌리지 않고 서버 값으로 맞춤
        assert exc_info.value.idempotency_key == "k-2"
        assert server.balance == Decimal("2")
        assert view.balance.value == Decimal("2")
        assert view.balance.has_pending is False
        assert view.posts[1]["stake_amount"].value == Decimal("5")
        assert view.posts[1]["verifications"].value == 1

    def test_unknown_outcome_not_applied_restores_balance(self):
        server = FakeServer(drop_requests=2)
        view = _view(server)

        with pytest.raises(StakeOutcomeUnknown):
            view.stake(1, Decimal("3"), "challenge")

        keys = [key for _, key in server.stake_requests]
        assert len(keys) == 2 and keys[0] == keys[1]
        assert view.balance.value == Decimal("5")
        assert view.posts[1]["challenge_pool"].value == Decimal("0")
        assert view.posts[1]["challenges"].value == 0

    def test_unknown_outcome_without_balance_read_rolls_back(self):
        server = FakeServer(drop_requests=2)
        view = _view(server)
        server.fail_balance = True

        with pytest.raises(StakeOutcomeUnknown):
            view.stake(1, Decimal("3"), "verification")

        assert view.balance.value == Decimal("5")
        assert view.balance.has_pending is False
        assert view.posts[1]["verifications"].value == 0
