from typing import Callable

from dependency_injector.wiring import Provide, inject
from fastapi import Depends
from sqlalchemy.orm import Session

from truthchain.containers import Container
from truthchain.database.session import get_db
from truthchain.services.balance_service import BalanceService
from truthchain.services.error_log_service import ErrorLogService
from truthchain.services.post_service import PostService
from truthchain.services.settlement_service import SettlementService
from truthchain.services.stake_service import StakeService
from truthchain.services.wallet_service import WalletService

# 컨테이너의 Factory provider를 주입받아 요청별 세션으로 서비스를 생성


@inject
def get_balance_service(
    db: Session = Depends(get_db),
    factory: Callable[..., BalanceService] = Depends(
        Provide[Container.services.balance_service.provider]
    ),
) -> BalanceService:
    return factory(db=db)


@inject
def get_stake_service(
    db: Session = Depends(get_db),
    factory: Callable[..., StakeService] = Depends(
        Provide[Container.services.stake_service.provider]
    ),
) -> StakeService:
    return factory(db=db)


@inject
def get_post_service(
    db: Session = Depends(get_db),
    factory: Callable[..., PostService] = Depends(
        Provide[Container.services.post_service.provider]
    ),
) -> PostService:
    return factory(db=db)


@inject
def get_wallet_service(
    db: Session = Depends(get_db),
    factory: Callable[..., WalletService] = Depends(
        Provide[Container.services.wallet_service.provider]
    ),
) -> WalletService:
    return factory(db=db)


@inject
def get_error_log_service(
    db: Session = Depends(get_db),
    factory: Callable[..., ErrorLogService] = Depends(
        Provide[Container.services.error_log_service.provider]
    ),
) -> ErrorLogService:
    return factory(db=db)


@inject
def get_settlement_service(
    db: Session = Depends(get_db),
    factory: Callable[..., SettlementService] = Depends(
        Provide[Container.services.settlement_service.provider]
    ),
) -> SettlementService:
    return factory(db=db)
