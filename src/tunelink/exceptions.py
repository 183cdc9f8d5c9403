"""Custom exceptions for tunelink.

All exceptions include an HTTP status_code and a machine-readable error_code
for easy integration with web frameworks like FastAPI.
"""


class TunelinkError(Exception):
    """Base exception for tunelink.

    Attributes:
        status_code: HTTP status code for API error responses.
        error_code: Machine-readable error identifier.
    """

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# -- Link parsing --


class LinkParseError(TunelinkError):
    """Failed to parse a platform link."""

    status_code: int = 400  # Bad Request
    error_code: str = "invalid_link"


class HostUnsupportedError(LinkParseError):
    """The URL host is not a supported streaming platform."""

    error_code: str = "host_unsupported"


class InvalidLinkError(LinkParseError):
    """The URL is malformed or its path has no recognizable entity.

    Also raised for non-https or over-long URLs.
    """

    status_code: int = 422  # Unprocessable Entity
    error_code: str = "invalid_link"


# -- Platform adapters --


class AdapterError(TunelinkError):
    """A platform adapter call failed.

    Attributes:
        platform: Platform the failing adapter talks to.
        retryable: Whether the same call may succeed if repeated.
    """

    status_code: int = 502  # Bad Gateway (upstream failure)
    error_code: str = "adapter_error"
    retryable: bool = True

    def __init__(self, message: str, platform: str | None = None) -> None:
        self.platform = platform
        super().__init__(message)


class ServiceClosedError(AdapterError):
    """The platform is unreachable or returned a server error."""

    status_code: int = 503  # Service Unavailable
    error_code: str = "service_closed"


class NoCredentialsError(AdapterError):
    """The app has no (or invalid) credentials for the platform."""

    status_code: int = 401  # Unauthorized
    error_code: str = "no_credentials"
    retryable: bool = False


class RateLimitedError(AdapterError):
    """The platform throttled the request.

    Attributes:
        retry_after: Seconds the platform asked us to wait, if provided.
    """

    status_code: int = 429  # Too Many Requests
    error_code: str = "rate_limited"

    def __init__(
        self,
        message: str,
        platform: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, platform)


class EntityNotFoundError(AdapterError):
    """The requested track or playlist does not exist on the platform."""

    status_code: int = 404  # Not Found
    error_code: str = "entity_not_found"
    retryable: bool = False


class SearchFailedError(AdapterError):
    """A search request failed or returned an unreadable response."""

    error_code: str = "search_failed"


# -- Conversion tasks --


class TaskFatalError(TunelinkError):
    """A conversion task cannot continue and must be marked failed."""

    error_code: str = "task_failed"


class TaskStoreError(TaskFatalError):
    """The task store rejected or failed an operation."""

    status_code: int = 503  # Service Unavailable
    error_code: str = "task_store_error"


class SourceUnavailableError(TaskFatalError):
    """The source playlist could not be enumerated."""

    status_code: int = 502  # Bad Gateway
    error_code: str = "source_unavailable"


class TaskNotFoundError(TunelinkError):
    """No task exists with the given identifier."""

    status_code: int = 404  # Not Found
    error_code: str = "task_not_found"

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class InvalidTransitionError(TunelinkError):
    """A task status transition is not allowed from its current status."""

    status_code: int = 409  # Conflict
    error_code: str = "invalid_transition"

    def __init__(self, task_id: str, current: str, requested: str) -> None:
        self.task_id = task_id
        self.current = current
        self.requested = requested
        super().__init__(f"Task {task_id} cannot move from {current} to {requested}")


class InvariantError(TunelinkError):
    """An internal ordering or state invariant was violated.

    Indicates a programming defect rather than an upstream failure.
    """

    error_code: str = "invariant_violation"


class CancellationError(TunelinkError):
    """Operation was cancelled.

    Raised when a conversion is cancelled via a CancelToken.
    """

    status_code: int = 499  # Client Closed Request (nginx convention)
    error_code: str = "cancelled"
