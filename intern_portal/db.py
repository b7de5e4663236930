"""
Database configuration with lazy initialization.

The engine is created on first access so the app can start and answer
health checks even if the database is temporarily unavailable.
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from .core.config import settings
from .core.env import is_production_env

logger = logging.getLogger(__name__)

# Global engine instance (lazily initialized)
_engine = None
_SessionLocal = None

Base = declarative_base()


def get_engine():
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        database_url = settings.DATABASE_URL
        if is_production_env() and database_url.startswith("sqlite"):
            raise ValueError(
                "CRITICAL: SQLite database is not supported in production. "
                "Please use PostgreSQL."
            )

        db_url_safe = database_url[:30] + "..." if len(database_url) > 30 else database_url
        logger.info(f"[DB] Creating database engine for: {db_url_safe}")

        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every session sees an empty database
                _engine = create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
            else:
                _engine = create_engine(database_url, connect_args=connect_args)
        else:
            _engine = create_engine(
                database_url,
                pool_size=10,
                max_overflow=10,
                pool_pre_ping=True,
                pool_recycle=3600,
            )
    return _engine


def get_session_local():
    """Get or create the SessionLocal class."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def init_db():
    """Create tables for all registered models."""
    from . import models  # noqa: F401  registers models on Base

    Base.metadata.create_all(bind=get_engine())


def get_db():
    """
    Dependency that provides a database session.
    Used by FastAPI's dependency injection.
    """
    session_class = get_session_local()
    db = session_class()
    try:
        yield db
    finally:
        db.close()
