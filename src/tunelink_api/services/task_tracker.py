"""Task state machine over a TaskStore."""

from __future__ import annotations

import logging
import threading
import zlib
from collections import OrderedDict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from tunelink import (
    InvalidTransitionError,
    PlaylistConversion,
    TaskNotFoundError,
    TaskStatus,
)
from tunelink.models.enums import ErrorKind, TaskType

from tunelink_api.core.models import Task, TaskError
from tunelink_api.services.protocols import TaskStore

logger = logging.getLogger(__name__)

INTERRUPTED_REASON = "Interrupted"

type Clock = Callable[[], datetime]
type IdGenerator = Callable[[], str]

# Allowed status transitions. Retries re-enter PROCESSING from a failed or
# cancelled task.
TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset(
        {TaskStatus.PROCESSING, TaskStatus.FAILED, TaskStatus.CANCELLED}
    ),
    TaskStatus.PROCESSING: frozenset(
        {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
    ),
    TaskStatus.FAILED: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.CANCELLED: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.COMPLETED: frozenset(),
}


class TaskTracker:
    """Durable task state machine with idempotent creation.

    Thread-Safety:
        Transitions on one task are serialized by a striped per-task lock;
        creation is serialized by a separate lock. The store's
        compare-and-set rejects writes that raced with another process.

    Responsibilities:
        - Idempotent task creation keyed by checksum
        - Transition validation and retry accounting
        - Cancellation flags

    Non-Responsibilities:
        - Running conversions (ConversionEngine)
        - Signalling running pipelines (CancelToken in ConversionEngine)

    Caching:
        Reads go through an LRU cache that every write refreshes. The store
        stays the source of truth: transitions always re-read it.
    """

    CACHE_SIZE = 256
    LOCK_STRIPES = 64

    def __init__(
        self,
        store: TaskStore,
        clock: Clock,
        id_generator: IdGenerator,
        max_retries: int = 3,
    ) -> None:
        """Initialize the tracker.

        Args:
            store: Backing task store.
            clock: Function returning current datetime (enables testing).
            id_generator: Function generating unique task IDs.
            max_retries: Restarts allowed for a failed or cancelled task.
        """
        self._store = store
        self._clock = clock
        self._id_generator = id_generator
        self._max_retries = max_retries
        self._cache: OrderedDict[str, Task] = OrderedDict()
        self._cache_lock = threading.Lock()
        self._create_lock = threading.Lock()
        self._stripes = [threading.Lock() for _ in range(self.LOCK_STRIPES)]

    @property
    def max_retries(self) -> int:
        return self._max_retries

    # -------------------------------------------------------------------------
    # Public API: Creation and lookup
    # -------------------------------------------------------------------------

    def get_or_create(
        self,
        checksum: str,
        *,
        entity_id: str,
        type: TaskType = TaskType.PLAYLIST_CONVERSION,
        app: str | None = None,
        short_url: str | None = None,
    ) -> tuple[Task, bool]:
        """Return the task for a checksum, creating it if needed.

        Concurrent calls for the same checksum yield exactly one creator.

        Returns:
            Tuple of (task, existed).
        """
        with self._create_lock:
            if existing := self._store.get_by_checksum(checksum):
                self._remember(existing)
                return existing, True

            now = self._clock()
            task = Task(
                id=self._id_generator(),
                checksum=checksum,
                entity_id=entity_id,
                type=type,
                app=app,
                short_url=short_url,
                created_at=now,
                updated_at=now,
            )
            stored, created = self._store.insert(task)
            self._remember(stored)
            if created:
                logger.debug("Task created: %s (%s)", stored.id[:8], entity_id)
            return stored, not created

    def get(self, task_id: str) -> Task:
        """Get a task by ID.

        Raises:
            TaskNotFoundError: If no task has the ID.
        """
        with self._cache_lock:
            if task := self._cache.get(task_id):
                self._cache.move_to_end(task_id)
                return task
        return self._load(task_id)

    def get_by_checksum(self, checksum: str) -> Task | None:
        task = self._store.get_by_checksum(checksum)
        if task:
            self._remember(task)
        return task

    def is_cancel_requested(self, task_id: str) -> bool:
        """Read the cancellation flag from the store."""
        return self._load(task_id).cancel_requested

    # -------------------------------------------------------------------------
    # Public API: State transitions
    # -------------------------------------------------------------------------

    def advance(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        result: PlaylistConversion | None = None,
        error: TaskError | None = None,
    ) -> Task:
        """Move a task to a new status.

        Re-entering PROCESSING from a failed or cancelled task clears its
        error and cancellation flag.

        Args:
            task_id: The task identifier.
            status: New status.
            result: Result to store with the transition, if any.
            error: Failure details for FAILED or CANCELLED transitions.

        Returns:
            The updated task.

        Raises:
            TaskNotFoundError: If no task has the ID.
            InvalidTransitionError: If the transition is not allowed, the
                task has exhausted its retries, or it changed concurrently.
        """
        with self._task_lock(task_id):
            task = self._load(task_id)
            self._check_transition(task, status)

            updates: dict[str, object] = {
                "status": status,
                "updated_at": self._clock(),
            }
            if result is not None:
                updates["result"] = result
            if error is not None:
                updates["error"] = error
            if status == TaskStatus.PROCESSING and task.status.is_retryable:
                updates["error"] = None
                updates["cancel_requested"] = False

            updated = self._write(task, updates)
            logger.debug(
                "Task %s: %s -> %s", task_id[:8], task.status, updated.status
            )
            return updated

    def restart(self, task_id: str) -> tuple[Task, bool]:
        """Count a retry and move a failed or cancelled task to PROCESSING.

        Both happen in one compare-and-set, so of several concurrent
        restarts only the first spends a retry; the others find the task
        already processing.

        Returns:
            Tuple of (task, restarted). restarted is False when the task is
            no longer failed or cancelled, or when this retry exhausted it.

        Raises:
            TaskNotFoundError: If no task has the ID.
            InvalidTransitionError: If the task changed concurrently.
        """
        with self._task_lock(task_id):
            task = self._load(task_id)
            if not task.status.is_retryable or task.retry_count > self._max_retries:
                return task, False

            count = task.retry_count + 1
            if count > self._max_retries:
                logger.info(
                    "Task %s exhausted its %d retries", task_id[:8], self._max_retries
                )
                exhausted = self._write(
                    task, {"retry_count": count, "updated_at": self._clock()}
                )
                return exhausted, False

            restarted = self._write(
                task,
                {
                    "status": TaskStatus.PROCESSING,
                    "retry_count": count,
                    "error": None,
                    "cancel_requested": False,
                    "updated_at": self._clock(),
                },
            )
            logger.info("Task %s restarted (retry %d)", task_id[:8], count)
            return restarted, True

    def fail_interrupted(self) -> list[Task]:
        """Fail every pending or processing task.

        Meant for startup, before any pipeline runs: such tasks were left
        behind by a process that stopped without shutting down, and nothing
        will ever finish them. Failed, they restart on resubmission.

        Returns:
            The tasks that were failed.
        """
        error = TaskError(kind=ErrorKind.INTERNAL, reason=INTERRUPTED_REASON)
        failed = []
        for task in self._store.list_by_status(
            TaskStatus.PENDING, TaskStatus.PROCESSING
        ):
            try:
                failed.append(self.advance(task.id, TaskStatus.FAILED, error=error))
            except InvalidTransitionError:
                logger.debug("Task %s changed during recovery", task.id[:8])
        if failed:
            logger.warning("Marked %d interrupted task(s) as failed", len(failed))
        return failed

    def request_cancel(self, task_id: str) -> bool:
        """Flag a task for cancellation.

        Returns:
            True if the flag was set, False if the task already finished.

        Raises:
            TaskNotFoundError: If no task has the ID.
        """
        with self._task_lock(task_id):
            task = self._load(task_id)
            if task.status.is_finished:
                return False
            if not task.cancel_requested:
                self._write(
                    task, {"cancel_requested": True, "updated_at": self._clock()}
                )
            logger.info("Task cancellation requested: %s", task_id[:8])
            return True

    # -------------------------------------------------------------------------
    # Private: Locking and caching
    # -------------------------------------------------------------------------

    @contextmanager
    def _task_lock(self, task_id: str) -> Iterator[None]:
        """Serialize updates of one task within this process."""
        stripe = zlib.crc32(task_id.encode()) % self.LOCK_STRIPES
        with self._stripes[stripe]:
            yield

    def _remember(self, task: Task) -> None:
        with self._cache_lock:
            self._cache[task.id] = task
            self._cache.move_to_end(task.id)
            if len(self._cache) > self.CACHE_SIZE:
                self._cache.popitem(last=False)

    # -------------------------------------------------------------------------
    # Private: Store access (require task lock held)
    # -------------------------------------------------------------------------

    def _load(self, task_id: str) -> Task:
        task = self._store.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        self._remember(task)
        return task

    def _check_transition(self, task: Task, status: TaskStatus) -> None:
        if status not in TRANSITIONS[task.status]:
            raise InvalidTransitionError(task.id, task.status, status)
        if (
            status == TaskStatus.PROCESSING
            and task.status.is_retryable
            and task.retry_count > self._max_retries
        ):
            raise InvalidTransitionError(task.id, task.status, status)

    def _write(self, task: Task, updates: dict[str, object]) -> Task:
        """Compare-and-set the task with updates applied.

        Note:
            Must be called with the task lock held.
        """
        updated = task.model_copy(update=updates)
        written = self._store.compare_and_set(
            updated,
            expected_status=task.status,
            expected_retry_count=task.retry_count,
        )
        if not written:
            # Another writer got there first; drop the stale cache entry
            with self._cache_lock:
                self._cache.pop(task.id, None)
            raise InvalidTransitionError(
                task.id, task.status, str(updates.get("status", task.status))
            )
        self._remember(updated)
        return updated
