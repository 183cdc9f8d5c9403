"""Application settings using pydantic-settings."""

from functools import cache
from pathlib import Path
from typing import Annotated, Literal, Self

from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from tunelink import (
    APIConfig,
    ConversionConfig,
    DeveloperApp,
    MatcherConfig,
    Platform,
    PlatformCredentials,
)

LogLevel = Annotated[
    Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    BeforeValidator(lambda v: v.upper() if isinstance(v, str) else v),
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TUNELINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: LogLevel = Field(default="INFO", description="Log level")

    # Persistence
    db_path: Path = Field(
        default=Path("data/tunelink.db"), description="SQLite task database"
    )

    # Default app, used when a request carries no X-App-Id header
    default_app_id: str = Field(default="default", description="Default app ID")
    webhook_url: str | None = Field(default=None, description="Event webhook URL")
    webhook_secret: str | None = Field(
        default=None, description="Secret used to sign webhook payloads"
    )

    # Platform credentials
    spotify_client_id: str | None = None
    spotify_client_secret: str | None = None
    deezer_access_token: str | None = None
    tidal_client_id: str | None = None
    tidal_client_secret: str | None = None
    applemusic_token: str | None = Field(
        default=None, description="Apple Music developer token"
    )
    country: str = Field(default="US", description="Storefront/market code")

    # Adapter calls
    adapter_timeout_seconds: float = Field(default=10.0, gt=0)
    adapter_max_retries: int = Field(default=2, ge=0)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)
    search_limit: int = Field(default=5, ge=1, le=50)

    # Conversion engine
    max_concurrency: int = Field(
        default=10, ge=1, description="Tracks converted concurrently per playlist"
    )
    max_task_retries: int = Field(
        default=3, ge=0, description="Restarts allowed for a failed task"
    )
    track_cache_ttl_seconds: float = Field(default=86400, ge=0)
    short_url_base: str | None = Field(
        default=None, description="Base URL for short result links"
    )

    # Matcher
    match_title_weight: float = Field(default=0.6, ge=0)
    match_artist_weight: float = Field(default=0.35, ge=0)
    match_duration_weight: float = Field(default=0.05, ge=0)
    match_threshold: float = Field(default=0.65, ge=0, le=1)
    match_duration_tolerance_ms: int = Field(default=10_000, gt=0)

    # CORS settings
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")

    @model_validator(mode="after")
    def check_match_weights(self) -> Self:
        total = (
            self.match_title_weight
            + self.match_artist_weight
            + self.match_duration_weight
        )
        if total <= 0:
            raise ValueError("Matcher weights must sum to a positive number")
        return self

    @property
    def api_config(self) -> APIConfig:
        return APIConfig(
            search_limit=self.search_limit,
            timeout_seconds=self.adapter_timeout_seconds,
            country=self.country,
        )

    @property
    def matcher_config(self) -> MatcherConfig:
        return MatcherConfig(
            title_weight=self.match_title_weight,
            artist_weight=self.match_artist_weight,
            duration_weight=self.match_duration_weight,
            threshold=self.match_threshold,
            duration_tolerance_ms=self.match_duration_tolerance_ms,
        )

    @property
    def conversion_config(self) -> ConversionConfig:
        return ConversionConfig(
            max_concurrency=self.max_concurrency,
            adapter_max_retries=self.adapter_max_retries,
            retry_backoff_seconds=self.retry_backoff_seconds,
            max_task_retries=self.max_task_retries,
            track_cache_ttl_seconds=self.track_cache_ttl_seconds,
            short_url_base=self.short_url_base,
        )

    @property
    def default_app(self) -> DeveloperApp:
        """The app configured through environment variables."""
        return DeveloperApp(
            id=self.default_app_id,
            name="default",
            webhook_url=self.webhook_url,
            webhook_secret=self.webhook_secret,
            credentials={
                Platform.SPOTIFY: PlatformCredentials(
                    client_id=self.spotify_client_id,
                    client_secret=self.spotify_client_secret,
                ),
                Platform.DEEZER: PlatformCredentials(
                    access_token=self.deezer_access_token
                ),
                Platform.TIDAL: PlatformCredentials(
                    client_id=self.tidal_client_id,
                    client_secret=self.tidal_client_secret,
                ),
                Platform.APPLE_MUSIC: PlatformCredentials(
                    access_token=self.applemusic_token
                ),
            },
        )


@cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
