import itertools
import os
import sys
from decimal import Decimal
from pathlib import Path

# truthchain.config / database.connection 이 import 시점에 엔진을 만들므로 먼저 지정
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BALANCE_ORACLE_ENABLED", "false")

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from truthchain.config import Settings  # noqa: E402
from truthchain.models import balance, internal, post, stake, user  # noqa: E402,F401
from truthchain.models.balance import TransactionTypeEnum  # noqa: E402
from truthchain.models.base import Base  # noqa: E402
from truthchain.models.user import UserRole  # noqa: E402
from truthchain.repositories.post_repository import PostRepository  # noqa: E402
from truthchain.repositories.user_repository import UserRepository  # noqa: E402
from truthchain.services.balance_service import BalanceService  # noqa: E402

WALLET_A = "A" * 58
WALLET_B = "B" * 58


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(
        bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def test_settings():
    return Settings(
        DATABASE_URL="sqlite://",
        MIN_STAKE_AMOUNT=Decimal("0.1"),
        MAX_STAKE_AMOUNT=Decimal("1000"),
        SIGNUP_BONUS_AMOUNT=Decimal("0"),
        REQUIRE_CONNECTED_WALLET=True,
        POST_MIN_CONTENT_LENGTH=10,
        POST_MAX_CONTENT_LENGTH=5000,
        POST_DEFAULT_TIME_FRAME_DAYS=7,
        POST_MAX_TIME_FRAME_DAYS=30,
        ALGORAND_API_URL="https://algod.test",
        BALANCE_ORACLE_ENABLED=True,
    )


@pytest.fixture
def make_user(db):
    """잔액/지갑 상태를 지정해 사용자 생성 (잔액은 원장 거래로 적립)"""
    counter = itertools.count(1)

    def _make(balance="0", wallet=True, role=UserRole.USER):
        n = next(counter)
        repo = UserRepository(db)
        created = repo.create_user(
            email=f"user{n}@example.com", nickname=f"user{n}", role=role
        )
        if wallet:
            repo.set_wallet(created.id, WALLET_A, connected=True)
        if Decimal(balance) > 0:
            BalanceService(db).credit(
                created.id,
                Decimal(balance),
                TransactionTypeEnum.ADMIN_ADJUSTMENT,
                "Test funds",
                ref_id=f"test_funds:{created.id}",
            )
        return repo.get_by_id(created.id)

    return _make


@pytest.fixture
def make_post(db):
    def _make(author_id, author_stake="0", content="The moon landing happened in 1969"):
        return PostRepository(db).create_post(
            author_id=author_id,
            content=content,
            category="general",
            truth_confidence=50,
            expires_at=None,
            author_stake=Decimal(author_stake),
        )

    return _make
