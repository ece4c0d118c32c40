"""ALGO 금액/주소 유틸리티"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from truthchain.core.exceptions import InvalidAmountError

# 1 ALGO = 1,000,000 microALGO
MICROALGOS_PER_ALGO = Decimal(1_000_000)
AMOUNT_QUANTUM = Decimal("0.000001")

# Algorand 주소: base32(A-Z, 2-7) 58자
ALGORAND_ADDRESS_RE = re.compile(r"^[A-Z2-7]{58}$")


def to_amount(value: Any) -> Decimal:
    """입력값을 Decimal로 변환. 숫자가 아니면 InvalidAmountError"""
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmountError("Amount must be a number", details={"amount": str(value)})
    if not amount.is_finite():
        raise InvalidAmountError("Amount must be a number", details={"amount": str(value)})
    return amount


def validate_stake_amount(value: Any, min_amount: Decimal, max_amount: Decimal) -> Decimal:
    """스테이크 금액 범위 검증 후 microALGO 단위로 정규화"""
    amount = to_amount(value)
    if amount <= 0:
        raise InvalidAmountError("Amount must be greater than 0")
    if amount < min_amount:
        raise InvalidAmountError(
            f"Minimum stake is {min_amount} ALGO", details={"min": str(min_amount)}
        )
    if amount > max_amount:
        raise InvalidAmountError(
            f"Maximum stake is {max_amount} ALGO", details={"max": str(max_amount)}
        )
    if amount != amount.quantize(AMOUNT_QUANTUM):
        raise InvalidAmountError("Amount supports at most 6 decimal places")
    return amount.quantize(AMOUNT_QUANTUM)


def micro_algos_to_algo(micro_algos: int) -> Decimal:
    return (Decimal(micro_algos) / MICROALGOS_PER_ALGO).quantize(AMOUNT_QUANTUM)


def is_valid_algorand_address(address: str) -> bool:
    return bool(address) and ALGORAND_ADDRESS_RE.match(address) is not None
