"""Platform adapter protocol, shared HTTP plumbing, and adapter registry."""

import logging
from collections import OrderedDict
from collections.abc import Callable, Iterator, Mapping
from typing import Any, Protocol

import httpx

from tunelink.config import APIConfig
from tunelink.exceptions import (
    EntityNotFoundError,
    NoCredentialsError,
    RateLimitedError,
    SearchFailedError,
    ServiceClosedError,
)
from tunelink.models.app import DeveloperApp, PlatformCredentials
from tunelink.models.enums import Platform
from tunelink.models.track import CandidateTrack, PlaylistMetadata, SearchQuery

logger = logging.getLogger(__name__)

# Maximum number of fetched tracks to cache per adapter instance
_TRACK_CACHE_SIZE = 256


class PlatformAdapter(Protocol):
    """Capability set every platform integration provides.

    This protocol enables dependency injection and testing.
    Implement this protocol to create fake adapters for testing.
    """

    platform: Platform

    def search(self, query: SearchQuery) -> list[CandidateTrack]:
        """Search tracks. Returns an empty list when nothing is found."""
        ...

    def get_track(self, track_id: str) -> CandidateTrack:
        """Fetch a single track by platform ID."""
        ...

    def get_playlist_tracks(
        self, playlist_id: str
    ) -> tuple[PlaylistMetadata, list[CandidateTrack]]:
        """Fetch playlist metadata and its ordered track list."""
        ...


class HttpAdapter:
    """Base for adapters that talk to a JSON HTTP API through httpx.

    Maps transport and HTTP failures to typed AdapterErrors and keeps a
    small LRU cache of fetched tracks. Subclasses implement the protocol
    methods using _get_json.
    """

    platform: Platform
    base_url: str = ""

    def __init__(
        self,
        config: APIConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            config: Optional API configuration. Uses defaults if not provided.
            client: Optional httpx client. Creates one bound to base_url if not
                provided. Tests pass a client with a MockTransport.
        """
        self._config = config or APIConfig()
        self._client = client or httpx.Client(
            base_url=self.base_url, timeout=self._config.timeout_seconds
        )
        # LRU cache for fetched tracks with size limit
        self._track_cache: OrderedDict[str, CandidateTrack] = OrderedDict()

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------------
    # Protocol methods (subclasses)
    # -------------------------------------------------------------------------

    def search(self, query: SearchQuery) -> list[CandidateTrack]:
        raise NotImplementedError

    def get_track(self, track_id: str) -> CandidateTrack:
        """Fetch a single track by ID, serving repeated lookups from cache."""
        if not track_id or not track_id.strip():
            raise ValueError("track_id cannot be empty")

        if track_id in self._track_cache:
            logger.debug("%s track cache hit: %s", self.platform, track_id)
            self._track_cache.move_to_end(track_id)
            return self._track_cache[track_id]

        track = self._fetch_track(track_id)
        self._track_cache[track_id] = track
        if len(self._track_cache) > _TRACK_CACHE_SIZE:
            self._track_cache.popitem(last=False)
        return track

    def get_playlist_tracks(
        self, playlist_id: str
    ) -> tuple[PlaylistMetadata, list[CandidateTrack]]:
        raise NotImplementedError

    def _fetch_track(self, track_id: str) -> CandidateTrack:
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        """Headers carrying credentials. Override for authenticated APIs."""
        return {}

    def _get_json(self, url: str, params: Mapping[str, Any] | None = None) -> Any:
        """GET a JSON document, mapping failures to typed adapter errors.

        Args:
            url: Path relative to base_url, or an absolute URL (pagination links).
            params: Optional query parameters.

        Returns:
            Decoded JSON body.

        Raises:
            ServiceClosedError: On transport errors, timeouts, and 5xx responses.
            NoCredentialsError: On 401/403 responses.
            EntityNotFoundError: On 404 responses.
            RateLimitedError: On 429 responses.
            SearchFailedError: On other error responses or undecodable bodies.
        """
        try:
            response = self._client.get(url, params=params, headers=self._auth_headers())
        except httpx.TimeoutException as e:
            logger.warning("%s request timed out: %s", self.platform, url)
            raise ServiceClosedError(
                f"{self.platform} request timed out", self.platform
            ) from e
        except httpx.HTTPError as e:
            logger.warning("%s request failed: %s: %s", self.platform, url, e)
            raise ServiceClosedError(
                f"{self.platform} is unreachable: {e}", self.platform
            ) from e

        self._raise_for_status(response)

        try:
            return response.json()
        except ValueError as e:
            raise SearchFailedError(
                f"{self.platform} returned an unreadable response", self.platform
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        message = f"{self.platform} responded with HTTP {status}"
        if status in (401, 403):
            raise NoCredentialsError(message, self.platform)
        if status == 404:
            raise EntityNotFoundError(message, self.platform)
        if status == 429:
            raise RateLimitedError(
                message, self.platform, retry_after=_parse_retry_after(response)
            )
        if status >= 500:
            raise ServiceClosedError(message, self.platform)
        raise SearchFailedError(message, self.platform)


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def require_credentials(
    platform: Platform, credentials: PlatformCredentials | None, *fields: str
) -> PlatformCredentials:
    """Return credentials that have every named field set.

    Raises:
        NoCredentialsError: If credentials are missing or incomplete.
    """
    if credentials is None or not all(getattr(credentials, f) for f in fields):
        raise NoCredentialsError(
            f"App has no {platform.label} integration configured", platform
        )
    return credentials


type AdapterFactory = Callable[[PlatformCredentials | None, APIConfig], PlatformAdapter]


class AdapterRegistry:
    """Looks up platform adapters by platform name."""

    def __init__(self, adapters: Mapping[Platform, PlatformAdapter] | None = None) -> None:
        self._adapters: dict[Platform, PlatformAdapter] = dict(adapters or {})

    @classmethod
    def for_app(
        cls,
        app: DeveloperApp,
        config: APIConfig | None = None,
        factories: Mapping[Platform, AdapterFactory] | None = None,
    ) -> "AdapterRegistry":
        """Build adapters for every platform the app is configured for.

        Platforms whose adapter cannot be built with the app's credentials
        are left out; looking them up raises NoCredentialsError.
        """
        from tunelink.platforms import DEFAULT_FACTORIES

        config = config or APIConfig()
        registry = cls()
        for platform, factory in (factories or DEFAULT_FACTORIES).items():
            if platform not in app.configured_platforms:
                continue
            try:
                registry.register(factory(app.credentials_for(platform), config))
            except NoCredentialsError:
                logger.info("Skipping %s for app %s: incomplete credentials", platform, app.id)
        return registry

    def register(self, adapter: PlatformAdapter) -> None:
        self._adapters[adapter.platform] = adapter

    def get(self, platform: Platform) -> PlatformAdapter:
        """Return the adapter for a platform.

        Raises:
            NoCredentialsError: If no adapter is configured for the platform.
        """
        try:
            return self._adapters[platform]
        except KeyError:
            raise NoCredentialsError(
                f"No {platform.label} integration configured", platform
            ) from None

    @property
    def platforms(self) -> list[Platform]:
        """Configured platforms in enum order."""
        return [p for p in Platform if p in self._adapters]

    def __contains__(self, platform: object) -> bool:
        return platform in self._adapters

    def __iter__(self) -> Iterator[PlatformAdapter]:
        return iter(self._adapters.values())

    def close(self) -> None:
        """Close adapters that hold network resources."""
        for adapter in self._adapters.values():
            if isinstance(adapter, HttpAdapter):
                adapter.close()


__all__ = [
    "AdapterFactory",
    "AdapterRegistry",
    "HttpAdapter",
    "PlatformAdapter",
    "require_credentials",
]
