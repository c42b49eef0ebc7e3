"""Engine construction and transaction scoping for the backing store."""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from objectstore.config import DatabaseSettings, get_settings
from objectstore.logging import get_logger

logger = get_logger("database")


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_memory_sqlite(url: str) -> bool:
    return _is_sqlite(url) and (url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url)


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:
    # Let SQLAlchemy emit BEGIN itself instead of pysqlite's deferred one
    dbapi_connection.isolation_level = None
    # SQLite ships with FK enforcement off; ON DELETE CASCADE needs it per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_immediate(conn) -> None:
    # Take the write lock up front so concurrent writers queue on the busy
    # timeout instead of failing mid-transaction
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(settings: Optional[DatabaseSettings] = None) -> Engine:
    settings = settings or get_settings().database
    kwargs: dict = {"echo": settings.echo}

    if _is_sqlite(settings.url):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": settings.sqlite_busy_timeout}
        if _is_memory_sqlite(settings.url):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = settings.pool_pre_ping

    engine = create_engine(settings.url, **kwargs)
    if _is_sqlite(settings.url):
        event.listen(engine, "connect", _configure_sqlite_connection)
        event.listen(engine, "begin", _begin_immediate)

    logger.info("engine_created", dialect=engine.dialect.name)
    return engine


def create_db_and_tables(engine: Engine) -> None:
    # Register the table classes on SQLModel.metadata before create_all
    from objectstore import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """
    One unit of work: commits when the block exits cleanly, rolls back otherwise.
    Loaded rows stay readable after the session closes.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
