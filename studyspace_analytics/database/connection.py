"""
Database Connection Management

SQLAlchemy 2.0 engine and session management for the relational DataStore.
Implements session scoping, health checks, and graceful shutdown.
"""

import time
from contextlib import contextmanager
from typing import Generator, Optional

import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from studyspace_analytics.config import get_settings
from studyspace_analytics.database.models import Base

logger = structlog.get_logger(__name__)
settings = get_settings()

# Global engine and session factory
_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def init_database(url: Optional[str] = None, create_tables: bool = True) -> Engine:
    """
    Initialize the database engine.

    Args:
        url: Override SQLAlchemy URL (defaults to settings.database.url)
        create_tables: Create missing tables

    Returns:
        Engine: The initialized database engine
    """
    global _engine, _session_factory

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    database_url = url or settings.database.url
    _engine = create_engine(
        database_url,
        echo=settings.database.echo,
        pool_pre_ping=settings.database.pool_pre_ping,
    )

    _session_factory = sessionmaker(
        bind=_engine,
        expire_on_commit=False,
        autoflush=False,
    )

    # Verify connection
    try:
        with _engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        _engine.dispose()
        _engine = None
        _session_factory = None
        raise

    if create_tables:
        Base.metadata.create_all(_engine)

    logger.info("Database connection established", dialect=_engine.dialect.name)
    return _engine


def close_database() -> None:
    """
    Close the database engine.

    Disposes all pooled connections.
    """
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection pool closed")


def get_engine() -> Engine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


def get_session_factory() -> sessionmaker:
    """
    Get the session factory bound to the active engine.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _session_factory


@contextmanager
def get_db() -> Generator[Session, None, None]:
    """
    Get a database session.

    Context manager that provides a session and handles
    commit/rollback/close automatically.

    Yields:
        Session: Database session

    Example:
        with get_db() as db:
            db.add(branch)
    """
    if _session_factory is None:
        logger.error("Database not initialized when get_db() called")
        raise RuntimeError("Database not initialized. Call init_database() first.")

    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        logger.error("Database session error, rolling back", error=str(e), error_type=type(e).__name__)
        session.rollback()
        raise
    finally:
        session.close()


def check_database_health() -> dict:
    """
    Check database health status.

    Returns:
        dict: Health status with latency information
    """
    try:
        start = time.perf_counter()
        with get_db() as db:
            db.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
        }
