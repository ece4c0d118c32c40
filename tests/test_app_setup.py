import logging
from unittest.mock import patch

import pytest
from sqlalchemy.orm import sessionmaker

from truthchain.config import settings
from truthchain.database import session as session_module
from truthchain.logging_config import setup_logging
from truthchain.models.user import User as UserModel


@pytest.fixture
def local_sessions(engine, monkeypatch):
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    monkeypatch.setattr(session_module, "SessionLocal", factory)
    return factory


def _user_count(factory):
    db = factory()
    try:
        return db.query(UserModel).count()
    finally:
        db.close()


def _pending_user():
    return UserModel(email="pending@example.com", nickname="pending", role="user", is_active=True)


class TestSessions:
    """세션은 커밋되지 않은 변경을 남기지 않음"""

    def test_context_discards_uncommitted_changes(self, local_sessions):
        with session_module.get_db_context() as db:
            db.add(_pending_user())
            db.flush()

        assert _user_count(local_sessions) == 0

    def test_context_keeps_committed_work(self, local_sessions):
        with session_module.get_db_context() as db:
            db.add(_pending_user())
            db.commit()

        assert _user_count(local_sessions) == 1

    def test_request_session_rolled_back_on_error(self, local_sessions):
        dependency = session_module.get_db()
        db = next(dependency)
        db.add(_pending_user())
        db.flush()

        with pytest.raises(RuntimeError):
            dependency.throw(RuntimeError("handler failed"))

        assert db.in_transaction() is False
        assert _user_count(local_sessions) == 0


class TestLogging:
    def test_library_loggers_quieted(self):
        try:
            setup_logging("DEBUG")

            assert logging.getLogger("truthchain").level == logging.DEBUG
            assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            setup_logging(settings.LOG_LEVEL, settings.LIBRARY_LOG_LEVEL)


class TestServerEntryPoint:
    def test_run_starts_uvicorn(self):
        from truthchain import main

        with patch("uvicorn.run") as uvicorn_run:
            main.run()

        uvicorn_run.assert_called_once_with(
            "truthchain.main:app",
            host=settings.HOST,
            port=settings.PORT,
            log_config=None,
        )
