"""Registry database engine and session management."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ledgee.config import get_settings
from ledgee.db.models import Base

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None
_engine_lock = threading.Lock()
logger = logging.getLogger(__name__)


def _enable_sqlite_wal(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def get_engine(database_path: Path | None = None) -> Engine:
    """Return the shared registry engine, creating tables on first use."""
    global _engine, _session_factory

    with _engine_lock:
        if _engine is not None:
            return _engine

        db_path = database_path or get_settings().database_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Opening registry database at %s", db_path)

        # Registry lookups run in worker threads off the event loop.
        engine = create_engine(
            f"sqlite:///{db_path}",
            future=True,
            connect_args={"check_same_thread": False},
        )
        event.listen(engine, "connect", _enable_sqlite_wal)
        Base.metadata.create_all(engine)

        _engine = engine
        _session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        return _engine


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Yield a session that commits on success and rolls back on error."""
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None  # for mypy
    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def reset_repository_state() -> None:
    """Dispose the cached engine so the next call re-reads settings (tests)."""

    global _engine, _session_factory
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _session_factory = None


__all__ = ["get_engine", "session_scope", "reset_repository_state"]
