"""tunelink - Convert music links between streaming platforms.

This library resolves a track or playlist link on one streaming platform
(Spotify, Deezer, TIDAL, Apple Music, YouTube Music) and finds the
equivalent tracks on the others, scoring search candidates with a
configurable fuzzy matcher.

Designed for use as a library in applications (e.g., FastAPI) with
a CLI for debugging and development.

Examples:
    Convert a track to every credential-free platform:
    ```python
    from tunelink import create_converter, parse_link

    converter = create_converter()
    link = parse_link("https://www.deezer.com/track/3135556")
    conversion = converter.convert(link)
    for platform, match in conversion.platforms.items():
        print(platform, match.chosen.url if match and match.chosen else "-")
    ```

    Convert with app credentials:
    ```python
    from tunelink import DeveloperApp, PlatformCredentials, Platform

    app = DeveloperApp(
        id="my-app",
        credentials={
            Platform.SPOTIFY: PlatformCredentials(client_id="...", client_secret="..."),
        },
    )
    converter = create_converter(app)
    ```
"""

from tunelink.config import APIConfig, ConversionConfig, MatcherConfig
from tunelink.exceptions import (
    AdapterError,
    CancellationError,
    EntityNotFoundError,
    HostUnsupportedError,
    InvalidLinkError,
    InvalidTransitionError,
    InvariantError,
    LinkParseError,
    NoCredentialsError,
    RateLimitedError,
    SearchFailedError,
    ServiceClosedError,
    SourceUnavailableError,
    TaskFatalError,
    TaskNotFoundError,
    TaskStoreError,
    TunelinkError,
)
from tunelink.lib import Matcher, conversion_checksum
from tunelink.models import (
    CandidateTrack,
    DeveloperApp,
    EntityKind,
    LinkInfo,
    MatchResult,
    Omitted,
    Platform,
    PlatformCredentials,
    PlatformPlaylistResult,
    PlaylistConversion,
    PlaylistMetadata,
    SearchQuery,
    TaskStatus,
    TrackConversion,
)
from tunelink.models.cancel import CancelToken
from tunelink.platforms import AdapterRegistry, PlatformAdapter
from tunelink.services import TrackConverter
from tunelink.utils.url import MAX_URL_LENGTH, LinkParser, is_supported_url, parse_link


def create_converter(
    app: DeveloperApp | None = None,
    config: APIConfig | None = None,
    matcher_config: MatcherConfig | None = None,
    conversion_config: ConversionConfig | None = None,
) -> TrackConverter:
    """Create a converter with adapters for every platform the app can use.

    This is the recommended way to create a converter for library usage.

    Args:
        app: App whose credentials select the platforms. Without one, only
            the credential-free platforms (Deezer, YouTube Music) are used.
        config: Optional API configuration. Uses defaults if not provided.
        matcher_config: Optional matcher weights and threshold.
        conversion_config: Optional retry settings.

    Returns:
        A configured TrackConverter instance.
    """
    app = app or DeveloperApp(id="default")
    conversion_config = conversion_config or ConversionConfig()
    return TrackConverter(
        AdapterRegistry.for_app(app, config),
        Matcher(matcher_config),
        max_retries=conversion_config.adapter_max_retries,
        backoff_seconds=conversion_config.retry_backoff_seconds,
    )


__all__ = [
    "MAX_URL_LENGTH",
    "APIConfig",
    "AdapterError",
    "AdapterRegistry",
    "CancelToken",
    "CancellationError",
    "CandidateTrack",
    "ConversionConfig",
    "DeveloperApp",
    "EntityKind",
    "EntityNotFoundError",
    "HostUnsupportedError",
    "InvalidLinkError",
    "InvalidTransitionError",
    "InvariantError",
    "LinkInfo",
    "LinkParseError",
    "LinkParser",
    "MatchResult",
    "Matcher",
    "MatcherConfig",
    "NoCredentialsError",
    "Omitted",
    "Platform",
    "PlatformAdapter",
    "PlatformCredentials",
    "PlatformPlaylistResult",
    "PlaylistConversion",
    "PlaylistMetadata",
    "RateLimitedError",
    "SearchFailedError",
    "SearchQuery",
    "ServiceClosedError",
    "SourceUnavailableError",
    "TaskFatalError",
    "TaskNotFoundError",
    "TaskStatus",
    "TaskStoreError",
    "TrackConversion",
    "TrackConverter",
    "TunelinkError",
    "conversion_checksum",
    "create_converter",
    "is_supported_url",
    "parse_link",
]
