from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Optional

import httpx

from truthchain.config import Settings
from truthchain.utils.amounts import micro_algos_to_algo

logger = logging.getLogger(__name__)


class BalanceOracleError(Exception):
    """온체인 잔액 조회 실패"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AlgorandBalanceOracle:
    """algod REST API로 계정 잔액(microALGO)을 조회해 ALGO로 돌려줍니다."""

    _ACCOUNT_PATH = "/v2/accounts/{address}"

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = settings.ALGORAND_API_URL.rstrip("/")
        self._timeout = httpx.Timeout(settings.ALGORAND_TIMEOUT_SECONDS, connect=5.0)
        self._api_token = settings.ALGORAND_API_TOKEN
        self._transport = transport
        self.enabled = settings.BALANCE_ORACLE_ENABLED

    async def get_balance(self, address: str) -> Decimal:
        """주소의 온체인 잔액 (ALGO). 계정이 체인에 없으면 0"""
        headers = {}
        if self._api_token:
            headers["X-Algo-API-Token"] = self._api_token

        started_at = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(
                    self._ACCOUNT_PATH.format(address=address), headers=headers
                )
        except httpx.TimeoutException as exc:
            raise BalanceOracleError("algod request timed out") from exc
        except httpx.RequestError as exc:
            logger.warning("algod request error: %s", exc)
            raise BalanceOracleError("algod is unreachable") from exc

        elapsed_ms = int((time.perf_counter() - started_at) * 1000)
        logger.debug(f"algod account lookup {address[:8]}... -> {response.status_code} in {elapsed_ms}ms")

        if response.status_code == 404:
            return Decimal("0")
        if response.status_code >= 400:
            raise BalanceOracleError(
                f"algod returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise BalanceOracleError("algod returned a non-JSON body") from exc

        micro_algos = payload.get("amount") if isinstance(payload, dict) else None
        if not isinstance(micro_algos, int) or isinstance(micro_algos, bool):
            raise BalanceOracleError("algod response has no integer 'amount'")
        return micro_algos_to_algo(micro_algos)
