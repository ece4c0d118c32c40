import logging
from contextlib import contextmanager

from sqlalchemy.orm import Session

from truthchain.database.connection import SessionLocal

logger = logging.getLogger(__name__)


def _release(db: Session) -> None:
    """열린 트랜잭션을 버리고 세션을 풀에 반납

    리포지토리가 작업 단위마다 직접 커밋하므로 여기까지 남은 트랜잭션은
    조회뿐이거나 중간에 실패한 작업입니다.
    """
    try:
        if db.in_transaction():
            db.rollback()
    finally:
        db.close()


def get_db():
    """요청 단위 세션 (FastAPI 의존성)"""
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.debug(f"Discarding session after {type(e).__name__}")
        raise
    finally:
        _release(db)


@contextmanager
def get_db_context():
    """스크립트/배치용 세션. 커밋하지 않은 변경은 종료 시 버려짐"""
    db = SessionLocal()
    try:
        yield db
    finally:
        _release(db)
