"""Task persistence."""

from tunelink_api.db.engine import DB_FILE, create_db_engine, init_db
from tunelink_api.db.models import TaskRecord
from tunelink_api.db.repository import SqlTaskStore

__all__ = [
    "DB_FILE",
    "SqlTaskStore",
    "TaskRecord",
    "create_db_engine",
    "init_db",
]
