"""
Engine, session factory and the request-scoped session dependency.

PostgreSQL in production (pooled, with a per-statement timeout); SQLite is
accepted through DATABASE_URL for local runs and the test suite.
"""
from typing import Iterator
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from core.config import settings
from core.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=settings.DEBUG)
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        echo=settings.DEBUG,
        connect_args={"options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}"},
    )


engine = _build_engine(DATABASE_URL)

# expire_on_commit=False: services hand committed rows back to routers and
# side effects after the transaction has ended.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base = declarative_base()


@event.listens_for(engine, "connect")
def on_connect(dbapi_conn, connection_record):
    if engine.dialect.name == "sqlite":
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _open_session() -> Session:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        db.close()
        raise
    return db


def get_db() -> Iterator[Session]:
    """
    FastAPI dependency: one verified session per request.

    Acquiring the connection is retried with backoff on transient failures.
    Whatever the handler left pending is committed on success and rolled
    back on error.
    """
    db = retry_with_backoff(_open_session, attempts=3, base_delay_s=0.1, max_delay_s=0.4,
                            description="acquire database connection")
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        from fastapi import HTTPException
        if not isinstance(e, HTTPException):
            logger.error(f"Database transaction error: {e}")
        raise
    finally:
        db.close()


def get_db_sync() -> Session:
    """Session for Celery tasks and scripts. The caller owns commit/rollback/close."""
    return SessionLocal()


def init_db() -> None:
    """Create all tables from the ORM metadata (local runs and tests)."""
    import models  # noqa: F401  (registers mappers)

    Base.metadata.create_all(bind=engine)


def check_db_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
