"""
Database configuration and session management for the Session Core service.

This module provides SQLAlchemy setup, session management with an explicit
per-call timeout, and database initialization functionality.
"""
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from session_core.config import settings

# Create SQLAlchemy base class for models
Base = declarative_base()

_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Database connection and session management."""

    def __init__(self, db_url: Optional[str] = None, echo: Optional[bool] = None,
                 timeout_seconds: Optional[float] = None):
        """
        Initialize the database connection.

        Args:
            db_url: Database URL. If None, uses the URL from settings.
            echo: Whether to log SQL statements. If None, uses settings.
            timeout_seconds: Upper bound for acquiring a connection and for
                a single statement. If None, uses settings.
        """
        if db_url is None:
            db_url = settings.DATABASE_URL
        if echo is None:
            echo = settings.DATABASE_ECHO
        if timeout_seconds is None:
            timeout_seconds = settings.DATABASE_TIMEOUT_SECONDS

        self.url = db_url
        self.timeout_seconds = timeout_seconds

        engine_kwargs: Dict[str, Any] = {"echo": echo}
        connect_args: Dict[str, Any] = {}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False
            # Busy timeout for locked database files
            connect_args["timeout"] = timeout_seconds
            if db_url in _MEMORY_URLS:
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_timeout"] = timeout_seconds
            engine_kwargs["pool_pre_ping"] = True
            if db_url.startswith("postgresql"):
                connect_args["connect_timeout"] = max(1, int(timeout_seconds))
                connect_args["options"] = f"-c statement_timeout={int(timeout_seconds * 1000)}"
            elif db_url.startswith("mysql"):
                connect_args["connect_timeout"] = max(1, int(timeout_seconds))

        self.engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        # Rows handed back to callers must stay readable after the session closes
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    @property
    def dialect_name(self) -> str:
        """Name of the SQL dialect behind the engine."""
        return self.engine.dialect.name

    def create_all(self) -> None:
        """Create all tables defined in the models."""
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        """Drop all tables. Use with caution, primarily for testing."""
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            A new SQLAlchemy session.
        """
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, Any, None]:
        """
        Context manager for database sessions.

        Provides automatic commit/rollback and session closing.

        Yields:
            An active SQLAlchemy session.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
