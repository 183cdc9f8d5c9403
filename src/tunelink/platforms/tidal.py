"""TIDAL adapter using the v1 catalog API with client-credentials auth."""

import logging
import threading
import time
from datetime import datetime
from typing import Any

import httpx

from tunelink.config import APIConfig
from tunelink.exceptions import NoCredentialsError, ServiceClosedError
from tunelink.models.app import PlatformCredentials
from tunelink.models.enums import Platform
from tunelink.models.track import CandidateTrack, PlaylistMetadata, SearchQuery
from tunelink.platforms.base import HttpAdapter, require_credentials

logger = logging.getLogger(__name__)

_TOKEN_URL = "https://auth.tidal.com/v1/oauth2/token"
_TOKEN_EXPIRY_MARGIN_SECONDS = 30
_IMAGE_BASE = "https://resources.tidal.com/images"
_PAGE_SIZE = 100


def _image_url(image_id: str | None, size: int = 640) -> str | None:
    """Build an image URL from a TIDAL image UUID."""
    if not image_id:
        return None
    return f"{_IMAGE_BASE}/{image_id.replace('-', '/')}/{size}x{size}.jpg"


class TidalAdapter(HttpAdapter):
    """TIDAL platform adapter."""

    platform = Platform.TIDAL
    base_url = "https://api.tidal.com/v1"

    def __init__(
        self,
        credentials: PlatformCredentials,
        config: APIConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(config, client)
        self._credentials = credentials
        self._token: str | None = credentials.access_token
        self._token_expires_at = float("inf") if credentials.access_token else 0.0
        self._token_lock = threading.Lock()

    @property
    def _country(self) -> dict[str, str]:
        return {"countryCode": self._config.country}

    def search(self, query: SearchQuery) -> list[CandidateTrack]:
        logger.debug("TIDAL search: %s", query.text)
        data = self._get_json(
            "/search/tracks",
            {"query": query.text, "limit": self._config.search_limit, **self._country},
        )
        return [
            self._to_candidate(item)
            for item in data.get("items") or []
            if item.get("id") and item.get("title")
        ]

    def _fetch_track(self, track_id: str) -> CandidateTrack:
        logger.debug("Fetching TIDAL track: %s", track_id)
        return self._to_candidate(self._get_json(f"/tracks/{track_id}", self._country))

    def get_playlist_tracks(
        self, playlist_id: str
    ) -> tuple[PlaylistMetadata, list[CandidateTrack]]:
        logger.debug("Fetching TIDAL playlist: %s", playlist_id)
        info = self._get_json(f"/playlists/{playlist_id}", self._country)

        tracks: list[CandidateTrack] = []
        offset = 0
        while True:
            page = self._get_json(
                f"/playlists/{playlist_id}/items",
                {"offset": offset, "limit": _PAGE_SIZE, **self._country},
            )
            items = page.get("items") or []
            for entry in items:
                item = entry.get("item") or {}
                if entry.get("type", "track") == "track" and item.get("id"):
                    tracks.append(self._to_candidate(item))
            offset += len(items)
            if not items or offset >= (page.get("totalNumberOfItems") or 0):
                break

        meta = PlaylistMetadata(
            title=info.get("title") or "",
            owner=(info.get("creator") or {}).get("name"),
            cover=_image_url(info.get("squareImage") or info.get("image")),
            url=info.get("url") or f"https://tidal.com/browse/playlist/{playlist_id}",
            track_count=info.get("numberOfTracks") or len(tracks),
            length_ms=(info.get("duration") or 0) * 1000,
            last_updated=_parse_datetime(info.get("lastUpdated")),
        )
        logger.debug("Fetched TIDAL playlist with %d tracks", len(tracks))
        return meta, tracks

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._get_token()}"}

    def _get_token(self) -> str:
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            self._token, self._token_expires_at = self._request_token()
            return self._token

    def _request_token(self) -> tuple[str, float]:
        creds = self._credentials
        if not (creds.client_id and creds.client_secret):
            raise NoCredentialsError("TIDAL access token expired", self.platform)

        try:
            response = self._client.post(
                _TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=(creds.client_id, creds.client_secret),
            )
        except httpx.HTTPError as e:
            raise ServiceClosedError(f"TIDAL token request failed: {e}", self.platform) from e

        if response.status_code in (400, 401):
            raise NoCredentialsError("TIDAL rejected the app credentials", self.platform)
        self._raise_for_status(response)

        payload = response.json()
        expires_in = int(payload.get("expires_in") or 0)
        return (
            payload["access_token"],
            time.monotonic() + max(0, expires_in - _TOKEN_EXPIRY_MARGIN_SECONDS),
        )

    def _to_candidate(self, item: dict[str, Any]) -> CandidateTrack:
        album = item.get("album") or {}
        artists = [a["name"] for a in item.get("artists") or [] if a.get("name")]
        if not artists and (artist := (item.get("artist") or {}).get("name")):
            artists = [artist]
        duration = item.get("duration")
        return CandidateTrack(
            platform=self.platform,
            id=str(item["id"]),
            title=item.get("title") or "",
            artists=artists,
            duration_ms=duration * 1000 if duration is not None else None,
            album=album.get("title"),
            explicit=bool(item.get("explicit")),
            cover=_image_url(album.get("cover")),
            release_date=item.get("streamStartDate") or album.get("releaseDate"),
            url=f"https://tidal.com/browse/track/{item['id']}",
        )


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def create_tidal_adapter(
    credentials: PlatformCredentials | None, config: APIConfig
) -> TidalAdapter:
    creds = credentials
    if creds is None or not creds.access_token:
        creds = require_credentials(Platform.TIDAL, credentials, "client_id", "client_secret")
    return TidalAdapter(creds, config)
