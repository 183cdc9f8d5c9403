"""SQLite engine for the task store."""

from pathlib import Path
from typing import Any

from sqlalchemy import Engine, event
from sqlmodel import SQLModel, create_engine

DB_FILE = "tunelink.db"

# Milliseconds a writer waits on a locked database before failing
BUSY_TIMEOUT_MS = 5_000


def _configure_connection(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    # Readers don't block the pipeline threads writing task progress
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
    cursor.close()


def create_db_engine(db_path: Path) -> Engine:
    """Create the SQLite engine, creating the parent directory if needed.

    Connections are shared across the worker threads that run conversions,
    so SQLite's same-thread check is disabled.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _configure_connection)
    return engine


def init_db(engine: Engine) -> None:
    """Create the task table if it doesn't exist."""
    from tunelink_api.db import models  # noqa: F401

    SQLModel.metadata.create_all(engine)
