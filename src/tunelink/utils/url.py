"""URL parsing utilities.

Resolves streaming platform links into a LinkInfo describing the platform,
entity kind and entity ID. Tracking query parameters are dropped and a
canonical link is rebuilt for every supported platform.
"""

import logging
import re
from collections.abc import Callable
from urllib.parse import parse_qs, unquote, urlparse

import httpx

from tunelink.exceptions import HostUnsupportedError, InvalidLinkError
from tunelink.models.enums import EntityKind, Platform
from tunelink.models.link import LinkInfo

logger = logging.getLogger(__name__)

# Maximum URL length accepted from clients. Apple Music links carry a title
# slug, so this is looser than a bare ID link would need.
MAX_URL_LENGTH = 512

# Timeout for resolving a share link redirect
_REDIRECT_TIMEOUT_SECONDS = 5.0

type RedirectResolver = Callable[[str], str]

# ============================================================================
# Host tables
# ============================================================================

_DEEZER_HOSTS = frozenset({"deezer.com", "www.deezer.com"})
_DEEZER_SHORT_HOSTS = frozenset({"deezer.page.link", "link.deezer.com", "dzr.page.link"})
_SPOTIFY_HOSTS = frozenset({"open.spotify.com"})
_TIDAL_HOSTS = frozenset({"tidal.com", "www.tidal.com", "listen.tidal.com"})
_APPLE_MUSIC_HOSTS = frozenset({"music.apple.com"})
_YTMUSIC_HOSTS = frozenset({"music.youtube.com"})

# ============================================================================
# Path patterns
# ============================================================================

# /en/track/3135556, /track/3135556
_DEEZER_PATH = re.compile(
    r"^/(?:[a-z]{2}(?:-[a-z]{2})?/)?(track|album|playlist)/(\d+)/?$"
)
# /track/2I3dW2dCBZAJGj5X21E53k, /intl-de/playlist/37i9dQZF1DXcBWIGoYBM5M
_SPOTIFY_PATH = re.compile(
    r"^/(?:intl-[a-z]{2}(?:-[a-zA-Z]{2})?/)?(track|album|playlist)/([A-Za-z0-9]+)/?$"
)
# /browse/track/77640617, /playlist/1b46cea3-e06a-49d9-b21e-b1a1603a44bf
_TIDAL_PATH = re.compile(
    r"^/(?:browse/)?(track|album|playlist)/([A-Za-z0-9-]+)(?:/u)?/?$"
)
# /us/album/some-album/1440857781, /gb/playlist/todays-hits/pl.f4d106fed2bd41149aaacabb233eb5eb
_APPLE_MUSIC_PATH = re.compile(
    r"^/([a-z]{2})/(album|playlist|song)/(?:[^/]+/)?([A-Za-z0-9.\-]+)/?$"
)
# YouTube Music album browse IDs
_YTMUSIC_BROWSE_PATH = re.compile(r"^/browse/(MPREb_[A-Za-z0-9_-]+)/?$")
_YTMUSIC_ID = re.compile(r"^[A-Za-z0-9_-]+$")
# Playlist IDs that YouTube Music uses for album track lists
_YTMUSIC_ALBUM_PLAYLIST_PREFIX = "OLAK5uy_"

_APPLE_MUSIC_KINDS = {
    "album": EntityKind.ALBUM,
    "playlist": EntityKind.PLAYLIST,
    "song": EntityKind.TRACK,
}


# ============================================================================
# Public API
# ============================================================================


def resolve_short_link(url: str, client: httpx.Client | None = None) -> str:
    """Follow one redirect hop of a share link and return its target.

    Args:
        url: Share link URL (e.g. https://deezer.page.link/abc).
        client: Optional client to send the request with.

    Returns:
        The URL the share link redirects to.

    Raises:
        InvalidLinkError: If the link does not redirect or cannot be fetched.
    """
    try:
        if client is not None:
            response = client.get(url, follow_redirects=False)
        else:
            response = httpx.get(
                url, follow_redirects=False, timeout=_REDIRECT_TIMEOUT_SECONDS
            )
    except httpx.HTTPError as e:
        logger.warning("Could not resolve share link %s: %s", url, e)
        raise InvalidLinkError(f"Could not resolve share link: {url}") from e

    location = response.headers.get("location")
    if not response.is_redirect or not location:
        raise InvalidLinkError(f"Share link does not redirect: {url}")
    return location


def parse_link(
    url: str,
    *,
    app: str | None = None,
    developer: str | None = None,
    target_platform: Platform | None = None,
    resolve_redirect: RedirectResolver | None = None,
) -> LinkInfo:
    """Parse a streaming platform URL into a LinkInfo.

    Args:
        url: Track, album, or playlist URL on a supported platform.
        app: Owning developer app ID.
        developer: Developer that owns the app.
        target_platform: Requested target platform, or None for all.
        resolve_redirect: Resolver for share links. Defaults to a single
            HTTP request that reads the redirect location.

    Returns:
        The parsed LinkInfo.

    Raises:
        InvalidLinkError: If the URL is empty, not https, too long, or has an
            unparseable path on a recognized host.
        HostUnsupportedError: If the host is not a supported platform.
    """
    if not url or len(url) > MAX_URL_LENGTH:
        raise InvalidLinkError(f"Invalid link: {url[:MAX_URL_LENGTH]!r}")

    url = unquote(url.strip())
    parsed = urlparse(url)
    if parsed.scheme != "https":
        raise InvalidLinkError(f"Link must use https: {url}")

    host = (parsed.hostname or "").lower()

    if host in _DEEZER_SHORT_HOSTS:
        resolver = resolve_redirect or resolve_short_link
        resolved = resolver(url)
        logger.debug("Resolved share link %s -> %s", url, resolved)
        parsed = urlparse(resolved)
        host = (parsed.hostname or "").lower()
        if host not in _DEEZER_HOSTS:
            raise InvalidLinkError(f"Share link resolved to an unexpected host: {host}")

    if host in _DEEZER_HOSTS:
        platform, entity, entity_id = _parse_deezer(parsed.path, url)
    elif host in _SPOTIFY_HOSTS:
        platform, entity, entity_id = _parse_spotify(parsed.path, url)
    elif host in _TIDAL_HOSTS:
        platform, entity, entity_id = _parse_tidal(parsed.path, url)
    elif host in _APPLE_MUSIC_HOSTS:
        platform, entity, entity_id = _parse_apple_music(parsed.path, parsed.query, url)
    elif host in _YTMUSIC_HOSTS:
        platform, entity, entity_id = _parse_ytmusic(parsed.path, parsed.query, url)
    else:
        raise HostUnsupportedError(f"Unsupported host: {host or url}")

    return LinkInfo(
        platform=platform,
        entity=entity,
        entity_id=entity_id,
        target_link=canonical_link(platform, entity, entity_id),
        target_platform=target_platform,
        app=app,
        developer=developer,
    )


class LinkParser:
    """Parses links, resolving share links through a reusable httpx client."""

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(timeout=_REDIRECT_TIMEOUT_SECONDS)

    def parse(
        self,
        url: str,
        *,
        app: str | None = None,
        developer: str | None = None,
        target_platform: Platform | None = None,
    ) -> LinkInfo:
        return parse_link(
            url,
            app=app,
            developer=developer,
            target_platform=target_platform,
            resolve_redirect=self._resolve,
        )

    def _resolve(self, url: str) -> str:
        return resolve_short_link(url, client=self._client)

    def close(self) -> None:
        self._client.close()


def canonical_link(platform: Platform, entity: EntityKind, entity_id: str) -> str:
    """Build the canonical public URL of an entity."""
    match platform:
        case Platform.DEEZER:
            return f"https://www.deezer.com/{entity}/{entity_id}"
        case Platform.SPOTIFY:
            return f"https://open.spotify.com/{entity}/{entity_id}"
        case Platform.TIDAL:
            return f"https://tidal.com/browse/{entity}/{entity_id}"
        case Platform.APPLE_MUSIC:
            kind = "song" if entity == EntityKind.TRACK else str(entity)
            return f"https://music.apple.com/us/{kind}/{entity_id}"
        case Platform.YTMUSIC:
            if entity == EntityKind.TRACK:
                return f"https://music.youtube.com/watch?v={entity_id}"
            if entity_id.startswith("MPREb_"):
                return f"https://music.youtube.com/browse/{entity_id}"
            return f"https://music.youtube.com/playlist?list={entity_id}"


def is_supported_url(url: str) -> bool:
    """Check if a URL is a parseable link on a supported platform.

    Share links are reported as supported without resolving them.
    """
    if not url or len(url) > MAX_URL_LENGTH:
        return False
    host = (urlparse(url.strip()).hostname or "").lower()
    if host in _DEEZER_SHORT_HOSTS:
        return True
    try:
        parse_link(url)
    except (InvalidLinkError, HostUnsupportedError):
        return False
    return True


# ============================================================================
# Per-platform parsers
# ============================================================================


def _parse_deezer(path: str, url: str) -> tuple[Platform, EntityKind, str]:
    if match := _DEEZER_PATH.match(path):
        return Platform.DEEZER, EntityKind(match.group(1)), match.group(2)
    raise InvalidLinkError(f"Could not extract Deezer entity from: {url}")


def _parse_spotify(path: str, url: str) -> tuple[Platform, EntityKind, str]:
    if match := _SPOTIFY_PATH.match(path):
        return Platform.SPOTIFY, EntityKind(match.group(1)), match.group(2)
    raise InvalidLinkError(f"Could not extract Spotify entity from: {url}")


def _parse_tidal(path: str, url: str) -> tuple[Platform, EntityKind, str]:
    if match := _TIDAL_PATH.match(path):
        return Platform.TIDAL, EntityKind(match.group(1)), match.group(2)
    raise InvalidLinkError(f"Could not extract TIDAL entity from: {url}")


def _parse_apple_music(
    path: str, query: str, url: str
) -> tuple[Platform, EntityKind, str]:
    match = _APPLE_MUSIC_PATH.match(path)
    if not match:
        raise InvalidLinkError(f"Could not extract Apple Music entity from: {url}")

    kind, entity_id = match.group(2), match.group(3)
    # Album links with ?i= point at a single track on that album
    if kind == "album" and (track_ids := parse_qs(query).get("i")):
        track_id = track_ids[0]
        if not track_id.isdigit():
            raise InvalidLinkError(f"Invalid Apple Music track ID in: {url}")
        return Platform.APPLE_MUSIC, EntityKind.TRACK, track_id
    return Platform.APPLE_MUSIC, _APPLE_MUSIC_KINDS[kind], entity_id


def _parse_ytmusic(path: str, query: str, url: str) -> tuple[Platform, EntityKind, str]:
    params = parse_qs(query)

    if path.rstrip("/") == "/watch" and (video_ids := params.get("v")):
        video_id = video_ids[0]
        if _YTMUSIC_ID.match(video_id):
            return Platform.YTMUSIC, EntityKind.TRACK, video_id

    if path.rstrip("/") == "/playlist" and (playlist_ids := params.get("list")):
        playlist_id = playlist_ids[0]
        if _YTMUSIC_ID.match(playlist_id):
            if playlist_id.startswith(_YTMUSIC_ALBUM_PLAYLIST_PREFIX):
                return Platform.YTMUSIC, EntityKind.ALBUM, playlist_id
            return Platform.YTMUSIC, EntityKind.PLAYLIST, playlist_id

    if match := _YTMUSIC_BROWSE_PATH.match(path):
        return Platform.YTMUSIC, EntityKind.ALBUM, match.group(1)

    raise InvalidLinkError(f"Could not extract YouTube Music entity from: {url}")
