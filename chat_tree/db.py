# chat_tree/db.py
"""Database connection, locking and session management."""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from loguru import logger

from chat_tree.config import get_lock_timeout
from chat_tree.errors import ChatTreeError, StorageError
from chat_tree.models import Base


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_url: str) -> Engine:
    """
    Create database engine.

    SQLite gets a single shared connection with foreign keys enforced;
    the Store lock serializes access to it.
    """
    if db_url.startswith("sqlite"):
        if db_url.startswith("sqlite:///") and ":memory:" not in db_url:
            Path(db_url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            db_url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(db_url, echo=False)


def get_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory."""
    return sessionmaker(bind=engine)


def init_schema(engine: Engine):
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)
    logger.info("Schema initialization complete")


def reset_schema(engine: Engine):
    """Drop and recreate all tables (destructive!)."""
    Base.metadata.drop_all(engine)
    logger.info("Tables dropped")
    init_schema(engine)


class Store:
    """
    Owner of the one database connection.

    Every unit of work runs inside `transaction()`, which holds the store
    lock for its whole duration and commits or rolls back atomically.
    Repositories only ever see the session handed out here.
    """

    def __init__(self, db_url: str, lock_timeout: float | None = None):
        self.db_url = db_url
        self.engine = get_engine(db_url)
        self.session_factory = get_session_factory(self.engine)
        self.lock_timeout = get_lock_timeout() if lock_timeout is None else lock_timeout
        self._lock = threading.RLock()

    def init_schema(self):
        with self._locked():
            init_schema(self.engine)

    def reset_schema(self):
        with self._locked():
            reset_schema(self.engine)

    def close(self):
        self.engine.dispose()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise StorageError(
                f"Timed out after {self.lock_timeout}s waiting for the store lock",
                rolled_back=True,
            )
        try:
            yield
        finally:
            self._lock.release()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Context manager for one atomic unit of work.

        Domain errors propagate unchanged after rollback. Store failures and
        anything unexpected are wrapped in StorageError(rolled_back=True).
        """
        with self._locked():
            session = self.session_factory()
            try:
                yield session
                session.commit()
            except ChatTreeError:
                session.rollback()
                raise
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Transaction rolled back: {e}")
                raise StorageError(f"Database error: {e}", rolled_back=True) from e
            except Exception as e:
                session.rollback()
                logger.error(f"Transaction rolled back after unexpected error: {e!r}")
                raise StorageError(
                    f"Operation failed and was rolled back: {e!r}", rolled_back=True
                ) from e
            finally:
                session.close()
