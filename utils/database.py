"""Database helpers for the custom tables service.

Utilities provided:
- initialize and dispose of the process-wide SQLAlchemy engine
- create sessions bound to that engine
- create the catalog tables

The engine URL comes from ``DATABASE_URL``; when it is unset a local SQLite
file is used (``SQLITE_FILE``, default ``database/database.db``). The module
ensures the parent directory exists before creating the engine so the
database can be created on first use.

SQLite connections are switched to foreign-key enforcement (catalog deletes
cascade) and to explicit BEGIN handling so that CREATE/ALTER/DROP TABLE take
part in the surrounding transaction like they do on PostgreSQL.

Copyright (c) Bryn Gwalad 2025
"""

import logging
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from utils import config

# Import models so they are registered on SQLModel metadata (absolute import
# so this works when scripts run from different CWDs).
from api import models  # noqa: F401

logger = logging.getLogger("custom_tables.db")

_engine: Optional[Engine] = None


def database_url() -> str:
    """Return the configured database URL, falling back to the SQLite file."""
    if config.DATABASE_URL:
        return config.DATABASE_URL
    db_path = Path(config.SQLITE_FILE)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path}"


def _configure_sqlite(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # let SQLAlchemy (not pysqlite) decide where transactions start
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine(url: Optional[str] = None) -> Engine:
    """Create the process-wide engine if it does not exist yet and return it."""
    global _engine
    if _engine is None:
        url = url or database_url()
        if url.startswith("sqlite"):
            _engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})
            _configure_sqlite(_engine)
        else:
            _engine = create_engine(url, echo=False, pool_pre_ping=True)
        logger.info("Database engine created for %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_engine() -> Engine:
    return init_engine()


def dispose_engine() -> None:
    """Close pooled connections and forget the engine (shutdown hook)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


def init_db() -> None:
    """Create the catalog tables from SQLModel metadata."""
    SQLModel.metadata.create_all(get_engine())


def get_session() -> Session:
    return Session(get_engine())


def session_dependency() -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session."""
    with get_session() as session:
        yield session
