"""In-memory task store."""

import threading

from tunelink import TaskStatus

from tunelink_api.core.models import Task


class InMemoryTaskStore:
    """Thread-safe TaskStore kept in process memory.

    Tasks are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._by_checksum: dict[str, str] = {}
        self._lock = threading.Lock()

    def insert(self, task: Task) -> tuple[Task, bool]:
        with self._lock:
            if existing_id := self._by_checksum.get(task.checksum):
                return self._tasks[existing_id].model_copy(), False
            self._tasks[task.id] = task.model_copy()
            self._by_checksum[task.checksum] = task.id
            return task.model_copy(), True

    def get(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy() if task else None

    def get_by_checksum(self, checksum: str) -> Task | None:
        with self._lock:
            task_id = self._by_checksum.get(checksum)
            return self._tasks[task_id].model_copy() if task_id else None

    def list_by_status(self, *statuses: TaskStatus) -> list[Task]:
        with self._lock:
            matching = [t for t in self._tasks.values() if t.status in statuses]
        matching.sort(key=lambda t: t.created_at)
        return [t.model_copy() for t in matching]

    def compare_and_set(
        self,
        task: Task,
        *,
        expected_status: TaskStatus,
        expected_retry_count: int,
    ) -> bool:
        with self._lock:
            current = self._tasks.get(task.id)
            if current is None:
                return False
            if (
                current.status != expected_status
                or current.retry_count != expected_retry_count
            ):
                return False
            self._tasks[task.id] = task.model_copy()
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
