"""SQL-backed task store."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select
from tunelink import TaskStatus, TaskStoreError

from tunelink_api.core.models import Task
from tunelink_api.db.models import TaskRecord

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate database failures into TaskStoreError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("Task store %s failed: %s", operation, e)
        raise TaskStoreError(f"Task store {operation} failed") from e


class SqlTaskStore:
    """TaskStore persisted through SQLModel.

    Updates are compare-and-set: the row is only written when its status
    and retry count still hold the values the caller read.
    """

    def __init__(self, engine: Engine) -> None:
        """Initialize store with database engine."""
        self._engine = engine

    def insert(self, task: Task) -> tuple[Task, bool]:
        """Insert a task, or return the existing one with its checksum."""
        with _store_errors("insert"):
            try:
                with Session(self._engine) as session:
                    session.add(TaskRecord.from_task(task))
                    session.commit()
                    return task.model_copy(), True
            except IntegrityError:
                existing = self.get_by_checksum(task.checksum)
                if existing is None:
                    raise
                return existing, False

    def get(self, task_id: str) -> Task | None:
        with _store_errors("read"), Session(self._engine) as session:
            record = session.get(TaskRecord, task_id)
            return record.to_task() if record else None

    def get_by_checksum(self, checksum: str) -> Task | None:
        with _store_errors("read"), Session(self._engine) as session:
            stmt = select(TaskRecord).where(TaskRecord.checksum == checksum)
            record = session.exec(stmt).first()
            return record.to_task() if record else None

    def list_by_status(self, *statuses: TaskStatus) -> list[Task]:
        stmt = (
            select(TaskRecord)
            .where(col(TaskRecord.status).in_([s.value for s in statuses]))
            .order_by(col(TaskRecord.created_at))
        )
        with _store_errors("read"), Session(self._engine) as session:
            return [record.to_task() for record in session.exec(stmt)]

    def compare_and_set(
        self,
        task: Task,
        *,
        expected_status: TaskStatus,
        expected_retry_count: int,
    ) -> bool:
        values = TaskRecord.from_task(task).model_dump(exclude={"id", "checksum"})
        stmt = (
            update(TaskRecord)
            .where(col(TaskRecord.id) == task.id)
            .where(col(TaskRecord.status) == expected_status.value)
            .where(col(TaskRecord.retry_count) == expected_retry_count)
            .values(**values)
        )
        with _store_errors("update"), self._engine.begin() as conn:
            return conn.execute(stmt).rowcount == 1

