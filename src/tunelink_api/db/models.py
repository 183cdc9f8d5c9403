"""Database models."""

from datetime import UTC, datetime

from sqlalchemy import Text
from sqlmodel import Field, SQLModel
from tunelink import PlaylistConversion, TaskStatus
from tunelink.models.enums import ErrorKind, TaskType

from tunelink_api.core.models import Task, TaskError


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo; stored values are always UTC
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class TaskRecord(SQLModel, table=True):
    """A persisted conversion task."""

    __tablename__ = "tasks"

    id: str = Field(primary_key=True)
    checksum: str = Field(unique=True, index=True)
    entity_id: str
    type: str = Field(default=TaskType.PLAYLIST_CONVERSION.value)
    status: str = Field(default=TaskStatus.PENDING.value, index=True)
    result_json: str | None = Field(default=None, sa_type=Text)
    error_kind: str | None = Field(default=None)
    error_reason: str | None = Field(default=None)
    retry_count: int = Field(default=0)
    app: str | None = Field(default=None)
    short_url: str | None = Field(default=None)
    cancel_requested: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_task(cls, task: Task) -> "TaskRecord":
        return cls(
            id=task.id,
            checksum=task.checksum,
            entity_id=task.entity_id,
            type=task.type.value,
            status=task.status.value,
            result_json=task.result.model_dump_json() if task.result else None,
            error_kind=task.error.kind.value if task.error else None,
            error_reason=task.error.reason if task.error else None,
            retry_count=task.retry_count,
            app=task.app,
            short_url=task.short_url,
            cancel_requested=task.cancel_requested,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )

    def to_task(self) -> Task:
        error = None
        if self.error_kind:
            error = TaskError(kind=ErrorKind(self.error_kind), reason=self.error_reason or "")
        return Task(
            id=self.id,
            checksum=self.checksum,
            entity_id=self.entity_id,
            type=TaskType(self.type),
            status=TaskStatus(self.status),
            result=(
                PlaylistConversion.model_validate_json(self.result_json)
                if self.result_json
                else None
            ),
            error=error,
            retry_count=self.retry_count,
            app=self.app,
            short_url=self.short_url,
            cancel_requested=self.cancel_requested,
            created_at=_as_utc(self.created_at),
            updated_at=_as_utc(self.updated_at),
        )
