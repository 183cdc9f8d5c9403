"""Conversion event schemas.

Events form a closed union discriminated by event_type. Consumers decode
them with conversion_event_adapter and deduplicate by event_id.
"""

import uuid
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from tunelink import (
    CandidateTrack,
    Omitted,
    Platform,
    PlaylistConversion,
    PlaylistMetadata,
    TaskStatus,
)
from tunelink.models.enums import ErrorKind, EventType

# Namespace for deterministic event IDs
_EVENT_NAMESPACE = uuid.UUID("6f1c8f0e-5b0a-4a57-9a53-2f3c7e7d1b42")


def make_event_id(
    task_id: str,
    event_type: EventType,
    platform: Platform | None = None,
    track_id: str | None = None,
    index: int | None = None,
) -> str:
    """Derive a stable event ID so redelivered events can be deduplicated."""
    parts = [task_id, str(event_type), str(platform or ""), track_id or ""]
    if index is not None:
        parts.append(str(index))
    return str(uuid.uuid5(_EVENT_NAMESPACE, "|".join(parts)))


class BaseEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    task_id: str


class MetadataEvent(BaseEvent):
    """Source playlist enumerated; sent once before any track event."""

    event_type: Literal[EventType.METADATA] = EventType.METADATA
    platform: Platform
    meta: PlaylistMetadata


class TrackEvent(BaseEvent):
    """One source track matched (or omitted) on one target platform."""

    event_type: Literal[EventType.TRACK] = EventType.TRACK
    platform: Platform
    index: int = Field(ge=1)
    source_track_id: str
    track: CandidateTrack | None = None
    score: float = 0.0
    omitted: Omitted | None = None


class ConversionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: TaskStatus
    total_tracks: int
    matched: dict[Platform, int] = Field(default_factory=dict)
    omitted_count: int = 0


class DoneEvent(BaseEvent):
    """Conversion finished; carries the persisted result."""

    event_type: Literal[EventType.DONE] = EventType.DONE
    summary: ConversionSummary
    result: PlaylistConversion


class ErrorEvent(BaseEvent):
    """Conversion failed or was cancelled."""

    event_type: Literal[EventType.ERROR] = EventType.ERROR
    error_kind: ErrorKind
    message: str


ConversionEvent = Annotated[
    MetadataEvent | TrackEvent | DoneEvent | ErrorEvent,
    Field(discriminator="event_type"),
]

conversion_event_adapter: TypeAdapter[ConversionEvent] = TypeAdapter(ConversionEvent)
