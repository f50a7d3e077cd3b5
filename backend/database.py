"""
SQLite database setup for playlists and user profiles.
Uses SQLAlchemy with a single shared connection (StaticPool).
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

IN_MEMORY_URL = "sqlite:///:memory:"

# SQLAlchemy Base for model declarations
Base = declarative_base()


def _configure_sqlite(engine: Engine) -> None:
    """
    Enable foreign keys and let SQLAlchemy own transaction boundaries.

    pysqlite does not emit BEGIN before DDL, so CREATE/ALTER statements would
    otherwise run outside the surrounding transaction and survive a rollback.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """
    Owns the engine and session factory for one SQLite database.

    Lifecycle: init() once, then session()/transaction(), then dispose().
    """

    def __init__(self, url: str = IN_MEMORY_URL, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @classmethod
    def in_memory(cls) -> "Database":
        """A fresh, migrated in-memory database (one per test)."""
        database = cls(IN_MEMORY_URL)
        database.init()
        return database

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def init(self, run_migrations: bool = True) -> None:
        """Create the engine and bring the schema up to date."""
        if self._engine is not None:
            return

        try:
            logger.info(f"[DB] Initializing database at {self.url}")
            self._engine = create_engine(
                self.url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=self.echo,  # Set to True for SQL debugging
            )
            _configure_sqlite(self._engine)
            self._session_factory = sessionmaker(
                bind=self._engine,
                autoflush=False,
                expire_on_commit=False,
            )
            logger.debug("[DB] Engine and session factory created")

            if run_migrations:
                from migrations import run_migrations as _run_migrations
                _run_migrations(self._engine)

            logger.info("[DB] Database initialized successfully")
        except Exception as e:
            logger.exception(f"[DB] Failed to initialize database: {e}")
            self.dispose()
            raise

    @property
    def engine(self) -> Engine:
        """Get the database engine."""
        if self._engine is None:
            logger.error("[DB] Attempted to get database engine before initialization")
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    def session(self) -> Session:
        """Get a database session. Use as context manager or close manually."""
        if self._session_factory is None:
            logger.error("[DB] Attempted to get database session before initialization")
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_factory()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session whose work is committed together or rolled back on any error."""
        session = self.session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release the connection. The object may be init()ed again afterwards."""
        if self._engine is not None:
            self._engine.dispose()
            logger.debug("[DB] Engine disposed")
        self._engine = None
        self._session_factory = None
