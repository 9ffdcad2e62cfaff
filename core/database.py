"""
Engine and session factory.

Postgres in every deployed environment. sqlite URLs are accepted for local
runs and the test suite, where pool options do not apply.
"""
import logging
from typing import Generator

from fastapi import HTTPException
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from core.config import settings

logger = logging.getLogger(__name__)

IS_SQLITE = settings.database_url.startswith("sqlite")


def _engine_options() -> dict:
    if IS_SQLITE:
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
    }


engine = create_engine(settings.database_url, echo=settings.DEBUG, **_engine_options())

# expire_on_commit=False: routers serialize ORM rows after the service commits
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base = declarative_base()


if IS_SQLITE:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session. Commits when the handler returns, rolls back if it raises."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Rolled back request transaction: {e}")
        raise
    finally:
        db.close()


def get_db_sync() -> Session:
    """Session for Celery tasks. The caller commits and closes."""
    return SessionLocal()


def check_db_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False
    return True
