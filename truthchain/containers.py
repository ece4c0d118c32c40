from dependency_injector import containers, providers

from truthchain.config import Settings
from truthchain.providers.algorand import AlgorandBalanceOracle
from truthchain.services.auth_service import AuthService
from truthchain.services.balance_service import BalanceService
from truthchain.services.error_log_service import ErrorLogService
from truthchain.services.post_service import PostService
from truthchain.services.settlement_service import SettlementService
from truthchain.services.stake_service import StakeService
from truthchain.services.wallet_service import WalletService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class ProviderModule(containers.DeclarativeContainer):
    """External API clients."""

    config = providers.DependenciesContainer()

    balance_oracle = providers.Singleton(AlgorandBalanceOracle, settings=config.config)


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies.

    서비스는 요청마다 새 DB 세션과 함께 만들어지므로 db는 deps.py에서 넘깁니다.
    """

    config = providers.DependenciesContainer()
    external = providers.DependenciesContainer()

    auth_service = providers.Factory(AuthService, settings=config.config)
    balance_service = providers.Factory(BalanceService)
    error_log_service = providers.Factory(ErrorLogService)
    stake_service = providers.Factory(StakeService, settings=config.config)
    post_service = providers.Factory(PostService, settings=config.config)
    settlement_service = providers.Factory(SettlementService, settings=config.config)
    wallet_service = providers.Factory(
        WalletService, oracle=external.balance_oracle, settings=config.config
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=["truthchain.deps"],
    )

    config = providers.Container(ConfigModule)
    external = providers.Container(ProviderModule, config=config)
    services = providers.Container(ServiceModule, config=config, external=external)
