"""
TruthChain API 클라이언트

LocalStakeView는 화면용 캐시(잔액, 게시물 카운터)를 낙관적으로 갱신한 뒤
서버가 확정한 값으로 교체합니다. 잔액을 클라이언트가 계산해서 서버에 쓰는
경로는 없습니다.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from truthchain.utils.optimistic import OptimisticValue

logger = logging.getLogger(__name__)

_COUNTER_FIELDS = {
    "verification": ("stake_amount", "verifications"),
    "challenge": ("challenge_pool", "challenges"),
}


class ApiError(Exception):
    """API가 success=false 응답을 돌려줌"""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"{code}: {message}")


class StakeOutcomeUnknown(Exception):
    """재시도 후에도 스테이크가 반영됐는지 알 수 없음

    같은 idempotency_key로 다시 보내면 이미 반영된 경우 replayed=true로 돌아옵니다.
    """

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Stake outcome unknown; retry with idempotency key {idempotency_key}")


class TruthChainClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 10.0,
    ):
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> "TruthChainClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = self._client.request(method, path, **kwargs)
        try:
            payload = response.json()
        except ValueError:
            raise ApiError(response.status_code, "HTTP_ERROR", response.text or "Invalid response")

        if response.status_code >= 400 or not payload.get("success", False):
            error = payload.get("error") or {}
            raise ApiError(
                response.status_code,
                error.get("code", "HTTP_ERROR"),
                error.get("message", "Request failed"),
                error.get("details"),
            )
        return payload.get("data") or {}

    def get_balance(self) -> Decimal:
        return Decimal(self._request("GET", "/api/v1/balance")["balance"])

    def can_stake(self, amount: Decimal) -> bool:
        data = self._request("GET", "/api/v1/balance/can-stake", params={"amount": str(amount)})
        return bool(data["can_stake"])

    def get_post(self, post_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/api/v1/posts/{post_id}")["post"]

    def stake(
        self,
        post_id: int,
        amount: Decimal,
        kind: str,
        idempotency_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        body: Dict[str, Any] = {"post_id": post_id, "amount": str(amount), "kind": kind}
        if reason is not None:
            body["reason"] = reason
        return self._request(
            "POST",
            "/api/v1/stakes",
            json=body,
            headers=headers,
        )


class LocalStakeView:
    """클라이언트 측 캐시 - 낙관적 갱신 후 서버 확정값으로 교체"""

    def __init__(self, client: TruthChainClient, balance: Decimal):
        self.client = client
        self.balance = OptimisticValue(Decimal(balance))
        self.posts: Dict[int, Dict[str, OptimisticValue]] = {}

    def track_post(self, post: Dict[str, Any]) -> None:
        self.posts[post["id"]] = {
            "stake_amount": OptimisticValue(Decimal(post["stake_amount"])),
            "challenge_pool": OptimisticValue(Decimal(post["challenge_pool"])),
            "verifications": OptimisticValue(int(post["verifications"])),
            "challenges": OptimisticValue(int(post["challenges"])),
        }

    def stake(
        self,
        post_id: int,
        amount: Decimal,
        kind: str,
        idempotency_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        스테이크 요청

        잔액과 카운터를 먼저 바꾸고 서버를 호출합니다. 서버가 거절하면 되돌린 뒤
        예외를 그대로 올리고, 성공하면 서버가 돌려준 잔액과 게시물 값으로 교체합니다.

        타임아웃이나 연결 오류는 같은 멱등성 키로 한 번 재시도합니다. 재시도도
        결과를 모르면 서버 잔액을 다시 읽어 캐시를 맞추고 StakeOutcomeUnknown을
        올립니다. 호출자는 그 예외의 idempotency_key로 나중에 다시 보낼 수 있습니다.
        """
        amount = Decimal(amount)
        key = idempotency_key or uuid.uuid4().hex
        amount_field, count_field = _COUNTER_FIELDS[kind]
        applied = [(self.balance, self.balance.apply(-amount))]
        counters = self.posts.get(post_id)
        if counters is not None:
            applied.append((counters[amount_field], counters[amount_field].apply(amount)))
            applied.append((counters[count_field], counters[count_field].apply(1)))

        try:
            result = self._send_with_retry(post_id, amount, kind, key, reason)
        except ApiError as e:
            if e.status_code < 500:
                self._rollback(applied)
                raise
            self._reconcile_unknown(post_id, key, applied, e)
        except httpx.TransportError as e:
            self._reconcile_unknown(post_id, key, applied, e)
        except Exception:
            self._rollback(applied)
            raise

        balance_token = applied[0][1]
        self.balance.confirm(balance_token, Decimal(result["new_balance"]))
        if counters is not None:
            self._confirm_counters(post_id, applied[1:])
        return result

    def _send_with_retry(
        self,
        post_id: int,
        amount: Decimal,
        kind: str,
        key: str,
        reason: Optional[str],
    ) -> Dict[str, Any]:
        try:
            return self.client.stake(
                post_id, amount, kind, idempotency_key=key, reason=reason
            )
        except httpx.TransportError as e:
            logger.warning(f"Stake on post {post_id} did not complete ({e!r}); retrying with key {key}")
        return self.client.stake(post_id, amount, kind, idempotency_key=key, reason=reason)

    @staticmethod
    def _rollback(applied) -> None:
        for value, token in applied:
            value.rollback(token)

    def _reconcile_unknown(self, post_id: int, key: str, applied, cause: Exception) -> None:
        """결과를 모르는 스테이크 - 서버 잔액으로 캐시를 맞춘 뒤 StakeOutcomeUnknown"""
        try:
            server_balance = self.client.get_balance()
        except (ApiError, httpx.HTTPError) as e:
            logger.error(f"Could not confirm balance after failed stake on post {post_id}: {e}")
            self._rollback(applied)
            raise StakeOutcomeUnknown(key) from cause

        self.balance.confirm(applied[0][1], server_balance)
        if len(applied) > 1:
            self._confirm_counters(post_id, applied[1:], keep_local=False)
        logger.warning(
            f"Stake on post {post_id} outcome unknown (key={key}); balance confirmed as {server_balance}"
        )
        raise StakeOutcomeUnknown(key) from cause

    def _confirm_counters(self, post_id: int, applied, keep_local: bool = True) -> None:
        try:
            post = self.client.get_post(post_id)
        except (ApiError, httpx.HTTPError) as e:
            # keep_local이면 로컬 변경분을 확정, 아니면 되돌림
            logger.warning(f"Could not refresh post {post_id} after stake: {e}")
            for value, token in applied:
                if keep_local:
                    value.commit(token)
                else:
                    value.rollback(token)
            return

        counters = self.posts[post_id]
        for value, token in applied:
            field = next(name for name, v in counters.items() if v is value)
            raw = post[field]
            value.confirm(token, int(raw) if field in ("verifications", "challenges") else Decimal(raw))
