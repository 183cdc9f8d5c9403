"""Service protocols for dependency injection."""

from typing import Protocol

from tunelink import TaskStatus

from tunelink_api.core.models import Task
from tunelink_api.schemas.events import ConversionEvent


class TaskStore(Protocol):
    """Durable task storage with compare-and-set updates.

    The store is the source of truth for task state. Implementations raise
    TaskStoreError when the backing storage fails.
    """

    def insert(self, task: Task) -> tuple[Task, bool]:
        """Insert a task unless one with the same checksum exists.

        Returns:
            Tuple of (stored task, created). When a task with the checksum
            already exists it is returned with created=False.
        """
        ...

    def get(self, task_id: str) -> Task | None: ...

    def get_by_checksum(self, checksum: str) -> Task | None: ...

    def list_by_status(self, *statuses: TaskStatus) -> list[Task]:
        """Tasks in any of the given statuses, oldest first."""
        ...

    def compare_and_set(
        self,
        task: Task,
        *,
        expected_status: TaskStatus,
        expected_retry_count: int,
    ) -> bool:
        """Replace the stored task if its status and retry count still match.

        Returns:
            True if the task was written, False if it changed concurrently
            or does not exist.
        """
        ...


class Delivery(Protocol):
    """Transport for conversion events.

    deliver() is called from the event loop thread and must not block.
    Delivery guarantees (at-least-once, buffering) are up to the transport.
    """

    def deliver(self, event: ConversionEvent) -> None: ...
