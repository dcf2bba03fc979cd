"""
Engine and session setup for Shiai.

The store is PostgreSQL in production and SQLite for local runs and tests.
Both backends must support SAVEPOINT: score upserts, level claims and
inline progression all run inside session.begin_nested().

Usage:
    from shiai.db import get_session

    with get_session() as session:
        CompetitionService(session).resolve_match(match_id)

    # FastAPI handlers take a request-scoped session
    from shiai.db.session import get_db
"""

from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from shiai.config import settings


def _use_driver_savepoints(engine: Engine) -> None:
    """
    Make pysqlite emit BEGIN itself so SAVEPOINT works.

    pysqlite defers BEGIN until the first write, which breaks nested
    transactions. Disabling its transaction handling and issuing BEGIN
    from the engine's begin event restores them.
    """
    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def engine_options(database_url: str) -> dict[str, Any]:
    """Keyword arguments for create_engine, by backend."""
    options: dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if make_url(database_url).get_backend_name() == "sqlite":
        # Progression jobs use the engine from worker threads
        options["connect_args"] = {"check_same_thread": False}
        return options

    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )
    return options


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine for ``database_url`` (defaults to settings.database_url).

    SQLite engines get the savepoint fix applied.
    """
    url = database_url or settings.database_url
    engine = create_engine(url, **engine_options(url))
    if engine.dialect.name == "sqlite":
        _use_driver_savepoints(engine)
    return engine


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """The process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


SessionLocal = sessionmaker(autoflush=False, bind=get_engine())


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Session that commits on a clean exit and rolls back on error.

    Scripts use it directly, and threaded progression jobs use it as their
    session factory.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency. Handlers commit explicitly once their operation succeeds."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
