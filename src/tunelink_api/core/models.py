"""Core domain models for the API."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from tunelink import PlaylistConversion, TaskStatus
from tunelink.models.enums import ErrorKind, TaskType


class TaskError(BaseModel):
    """Why a task failed."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    reason: str


class Task(BaseModel):
    """A tracked conversion.

    The task tracker is the only writer of status and retry_count.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str
    checksum: str
    entity_id: str
    type: TaskType = TaskType.PLAYLIST_CONVERSION
    status: TaskStatus = TaskStatus.PENDING
    result: PlaylistConversion | None = None
    error: TaskError | None = None
    retry_count: int = 0
    app: str | None = None
    short_url: str | None = None
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
