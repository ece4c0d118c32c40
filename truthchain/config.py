from decimal import Decimal
from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="truthchain/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "TruthChain Staking API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LIBRARY_LOG_LEVEL: str = "WARNING"  # sqlalchemy.engine, httpx

    # Server (truthchain-api 실행 시)
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = "truthchain"
    POSTGRES_SCHEMA: str = "public"

    # 설정되면 POSTGRES_* 조합보다 우선 (테스트에서는 sqlite URL 사용)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Security
    SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Staking rules
    MIN_STAKE_AMOUNT: Decimal = Decimal("0.1")  # 최소 스테이크 (ALGO)
    MAX_STAKE_AMOUNT: Decimal = Decimal("1000")  # 최대 스테이크 (ALGO)
    SIGNUP_BONUS_AMOUNT: Decimal = Decimal("0")  # 프로필 생성 시 지급 잔액
    REQUIRE_CONNECTED_WALLET: bool = True  # 지갑 연결 없이 스테이크 금지

    # Challenges
    CHALLENGE_MIN_RATIO: Decimal = Decimal("1.1")  # 게시물 스테이크 대비 최소 챌린지 비율
    CHALLENGE_REASON_MAX_LENGTH: int = 500

    # Posts
    POST_MIN_CONTENT_LENGTH: int = 10
    POST_MAX_CONTENT_LENGTH: int = 5000
    POST_DEFAULT_TIME_FRAME_DAYS: int = 7
    POST_MAX_TIME_FRAME_DAYS: int = 30

    # Algorand balance oracle
    ALGORAND_NETWORK: str = "testnet"  # testnet | mainnet
    ALGORAND_API_URL: str = "https://testnet-api.4160.nodely.io"
    ALGORAND_API_TOKEN: str = ""
    ALGORAND_TIMEOUT_SECONDS: float = 10.0
    BALANCE_ORACLE_ENABLED: bool = True


settings = Settings()
