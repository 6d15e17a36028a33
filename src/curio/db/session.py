"""Engine and session factories for the SQLite store.

Curation and batch runs execute on separate scheduler threads, each with
its own session. File databases therefore use pooled per-thread
connections in WAL mode with a busy timeout, so a reader never blocks on
the other run's write transaction.
"""

from __future__ import annotations

import threading
from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker

from curio.db.schema import Base

DEFAULT_DB_PATH = Path("data/curio.db")

# Seconds a connection waits on a locked database before failing
BUSY_TIMEOUT_SECONDS = 30

# resolved path -> (engine, session factory)
_cache: dict[str, tuple[Engine, sessionmaker]] = {}
_cache_lock = threading.Lock()


def _enable_wal(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _build(db_path: Path) -> tuple[Engine, sessionmaker]:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": BUSY_TIMEOUT_SECONDS},
    )
    event.listen(engine, "connect", _enable_wal)
    return engine, sessionmaker(bind=engine)


def _cached(db_path: Path | None) -> tuple[Engine, sessionmaker]:
    db_path = Path(db_path or DEFAULT_DB_PATH)
    key = str(db_path.resolve())
    with _cache_lock:
        if key not in _cache:
            _cache[key] = _build(db_path)
        return _cache[key]


def get_engine(db_path: Path | None = None) -> Engine:
    """Engine for db_path (default data/curio.db), created once per path."""
    return _cached(db_path)[0]


def get_session_factory(db_path: Path | None = None) -> sessionmaker:
    """Session factory bound to the cached engine for db_path.

    Callers own the sessions they open and must close them.
    """
    return _cached(db_path)[1]


def init_db(db_path: Path | None = None) -> None:
    """Create any missing tables."""
    Base.metadata.create_all(get_engine(db_path))
