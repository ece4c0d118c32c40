"""낙관적 UI 상태 - apply / confirm / rollback

화면에 보이는 값(잔액, 게시물 카운터)을 서버 응답 전에 먼저 바꾸고,
응답이 오면 서버 확정값으로 교체하거나 실패 시 되돌립니다.
"""

from decimal import Decimal
from typing import Dict, Optional, Union

Number = Union[int, Decimal]


class OptimisticValue:
    """서버 확정값 + 아직 확정되지 않은 로컬 변경분"""

    def __init__(self, confirmed: Number):
        self.confirmed = confirmed
        self._pending: Dict[int, Number] = {}
        self._next_token = 0

    @property
    def value(self) -> Number:
        total = self.confirmed
        for delta in self._pending.values():
            total += delta
        return total

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def apply(self, delta: Number) -> int:
        """로컬 변경 적용. confirm/rollback에 넘길 토큰 반환"""
        self._next_token += 1
        self._pending[self._next_token] = delta
        return self._next_token

    def confirm(self, token: int, confirmed_value: Optional[Number] = None) -> None:
        """서버가 반영을 확인함. 확정값이 오면 그것으로 교체"""
        self._pending.pop(token, None)
        if confirmed_value is not None:
            self.confirmed = confirmed_value

    def commit(self, token: int) -> None:
        """서버 확정값 없이 성공 - 변경분을 확정값에 합침"""
        delta = self._pending.pop(token, None)
        if delta is not None:
            self.confirmed += delta

    def rollback(self, token: int) -> None:
        """서버 호출 실패 - 해당 변경분을 되돌림"""
        self._pending.pop(token, None)

    def __repr__(self) -> str:
        return f"OptimisticValue(value={self.value}, pending={len(self._pending)})"
