"""Apple Music adapter using the catalog API with a developer token."""

import logging
from datetime import datetime
from typing import Any

import httpx

from tunelink.config import APIConfig
from tunelink.exceptions import EntityNotFoundError
from tunelink.models.app import PlatformCredentials
from tunelink.models.enums import Platform
from tunelink.models.track import CandidateTrack, PlaylistMetadata, SearchQuery
from tunelink.platforms.base import HttpAdapter, require_credentials

logger = logging.getLogger(__name__)

_ARTWORK_SIZE = 640
_PAGE_SIZE = 100


def _artwork_url(artwork: dict[str, Any] | None) -> str | None:
    """Fill the {w}x{h} template of an artwork URL."""
    if not artwork or not (url := artwork.get("url")):
        return None
    return url.replace("{w}", str(_ARTWORK_SIZE)).replace("{h}", str(_ARTWORK_SIZE))


class AppleMusicAdapter(HttpAdapter):
    """Apple Music platform adapter.

    The app's access_token must hold a signed developer token; the
    storefront comes from APIConfig.country.
    """

    platform = Platform.APPLE_MUSIC
    base_url = "https://api.music.apple.com"

    def __init__(
        self,
        credentials: PlatformCredentials,
        config: APIConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(config, client)
        self._token = credentials.access_token or ""

    @property
    def _catalog(self) -> str:
        return f"/v1/catalog/{self._config.country.lower()}"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def search(self, query: SearchQuery) -> list[CandidateTrack]:
        logger.debug("Apple Music search: %s", query.text)
        data = self._get_json(
            f"{self._catalog}/search",
            {"term": query.text, "types": "songs", "limit": self._config.search_limit},
        )
        songs = ((data.get("results") or {}).get("songs") or {}).get("data") or []
        return [self._to_candidate(song) for song in songs if song.get("id")]

    def _fetch_track(self, track_id: str) -> CandidateTrack:
        logger.debug("Fetching Apple Music track: %s", track_id)
        data = self._get_json(f"{self._catalog}/songs/{track_id}")
        return self._to_candidate(self._first(data, track_id))

    def get_playlist_tracks(
        self, playlist_id: str
    ) -> tuple[PlaylistMetadata, list[CandidateTrack]]:
        logger.debug("Fetching Apple Music playlist: %s", playlist_id)
        info = self._first(
            self._get_json(f"{self._catalog}/playlists/{playlist_id}"), playlist_id
        )
        attributes = info.get("attributes") or {}

        tracks: list[CandidateTrack] = []
        offset = 0
        while True:
            page = self._get_json(
                f"{self._catalog}/playlists/{playlist_id}/tracks",
                {"offset": offset, "limit": _PAGE_SIZE},
            )
            items = page.get("data") or []
            tracks.extend(
                self._to_candidate(item)
                for item in items
                if item.get("id") and item.get("type", "songs") == "songs"
            )
            offset += len(items)
            if not items or not page.get("next"):
                break

        meta = PlaylistMetadata(
            title=attributes.get("name") or "",
            owner=attributes.get("curatorName"),
            cover=_artwork_url(attributes.get("artwork")),
            url=attributes.get("url") or "",
            track_count=len(tracks),
            length_ms=sum(t.duration_ms or 0 for t in tracks),
            last_updated=_parse_datetime(attributes.get("lastModifiedDate")),
        )
        logger.debug("Fetched Apple Music playlist with %d tracks", len(tracks))
        return meta, tracks

    def _first(self, data: dict[str, Any], entity_id: str) -> dict[str, Any]:
        """Return the single resource of a catalog lookup response."""
        resources = data.get("data") or []
        if not resources:
            raise EntityNotFoundError(
                f"Apple Music has no resource {entity_id}", self.platform
            )
        return resources[0]

    def _to_candidate(self, item: dict[str, Any]) -> CandidateTrack:
        attributes = item.get("attributes") or {}
        previews = attributes.get("previews") or []
        artist = attributes.get("artistName")
        return CandidateTrack(
            platform=self.platform,
            id=str(item["id"]),
            title=attributes.get("name") or "",
            artists=[artist] if artist else [],
            duration_ms=attributes.get("durationInMillis"),
            album=attributes.get("albumName"),
            explicit=attributes.get("contentRating") == "explicit",
            cover=_artwork_url(attributes.get("artwork")),
            preview=previews[0].get("url") if previews else None,
            release_date=attributes.get("releaseDate"),
            url=attributes.get("url") or "",
        )


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def create_applemusic_adapter(
    credentials: PlatformCredentials | None, config: APIConfig
) -> AppleMusicAdapter:
    creds = require_credentials(Platform.APPLE_MUSIC, credentials, "access_token")
    return AppleMusicAdapter(creds, config)
