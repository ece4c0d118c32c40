from typing import Optional

from pydantic import BaseModel


class PaginationMeta(BaseModel):
    """페이지네이션 메타 정보"""
    limit: int
    offset: int
    total_count: Optional[int] = None
    has_next: Optional[bool] = None


# 엔드포인트별 페이지네이션 제한
class PaginationLimits:
    BALANCE_LEDGER = {"min": 1, "max": 100, "default": 50}
    STAKE_RECORDS = {"min": 1, "max": 200, "default": 100}
