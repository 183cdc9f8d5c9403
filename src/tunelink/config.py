"""Configuration for tunelink."""

from dataclasses import dataclass


@dataclass(frozen=True)
class APIConfig:
    """Platform API configuration.

    Attributes:
        search_limit: Maximum number of search candidates to request.
        timeout_seconds: Per-request timeout for platform calls.
        country: Storefront/market code used where a platform requires one.
    """

    search_limit: int = 5
    timeout_seconds: float = 10.0
    country: str = "US"


@dataclass(frozen=True)
class MatcherConfig:
    """Weights and threshold for scoring search candidates.

    Component scores are each in [0, 1]; the weights are normalized by their
    sum so the final score is in [0, 1] too.

    Attributes:
        title_weight: Weight of normalized title similarity.
        artist_weight: Weight of artist-set overlap.
        duration_weight: Weight of duration proximity.
        threshold: Minimum score for a candidate to be accepted.
        duration_tolerance_ms: Duration difference at which proximity reaches 0.
    """

    title_weight: float = 0.6
    artist_weight: float = 0.35
    duration_weight: float = 0.05
    threshold: float = 0.65
    duration_tolerance_ms: int = 10_000

    def __post_init__(self) -> None:
        weights = (self.title_weight, self.artist_weight, self.duration_weight)
        if any(w < 0 for w in weights) or sum(weights) <= 0:
            raise ValueError("matcher weights must be non-negative with a positive sum")
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError("matcher threshold must be between 0 and 1")
        if self.duration_tolerance_ms <= 0:
            raise ValueError("duration tolerance must be positive")


@dataclass(frozen=True)
class ConversionConfig:
    """Conversion engine configuration.

    Attributes:
        max_concurrency: Tracks of one playlist converted concurrently.
        adapter_max_retries: Retries for a retryable adapter failure.
        retry_backoff_seconds: Base delay for exponential retry backoff.
        max_task_retries: Times a failed task may be restarted by resubmission.
        track_cache_ttl_seconds: How long single-track results stay cached.
        track_cache_size: Maximum number of cached single-track results.
        short_url_base: Base URL for short result links, or None to disable.
    """

    max_concurrency: int = 10
    adapter_max_retries: int = 2
    retry_backoff_seconds: float = 0.5
    max_task_retries: int = 3
    track_cache_ttl_seconds: float = 24 * 60 * 60
    track_cache_size: int = 512
    short_url_base: str | None = None
