"""Enumerations for tunelink domain models."""

from enum import StrEnum


class Platform(StrEnum):
    """Supported streaming platforms."""

    SPOTIFY = "spotify"
    DEEZER = "deezer"
    TIDAL = "tidal"
    APPLE_MUSIC = "applemusic"
    YTMUSIC = "ytmusic"

    @property
    def label(self) -> str:
        """Human-readable label for display."""
        match self:
            case Platform.SPOTIFY:
                return "Spotify"
            case Platform.DEEZER:
                return "Deezer"
            case Platform.TIDAL:
                return "TIDAL"
            case Platform.APPLE_MUSIC:
                return "Apple Music"
            case Platform.YTMUSIC:
                return "YouTube Music"


class EntityKind(StrEnum):
    """Type of music entity a link points to."""

    TRACK = "track"
    ALBUM = "album"
    PLAYLIST = "playlist"


class TaskStatus(StrEnum):
    """Status of a conversion task."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_finished(self) -> bool:
        return self in (self.COMPLETED, self.FAILED, self.CANCELLED)

    @property
    def is_retryable(self) -> bool:
        """Whether a resubmission may restart the task."""
        return self in (self.FAILED, self.CANCELLED)


class TaskType(StrEnum):
    """Kind of work a task tracks."""

    PLAYLIST_CONVERSION = "playlist_conversion"
    TRACK_CONVERSION = "track_conversion"


class EventType(StrEnum):
    """Event types emitted during a playlist conversion."""

    METADATA = "playlist:conversion:metadata"
    TRACK = "playlist:conversion:track"
    DONE = "playlist:conversion:done"
    ERROR = "playlist:conversion:error"

    @property
    def is_terminal(self) -> bool:
        return self in (self.DONE, self.ERROR)


class ErrorKind(StrEnum):
    """Failure categories recorded on failed tasks and error events."""

    SOURCE_UNAVAILABLE = "source_unavailable"
    NO_CREDENTIALS = "no_credentials"
    STORE = "store"
    INVARIANT = "invariant"
    CANCELLED = "cancelled"
    INTERNAL = "internal"
