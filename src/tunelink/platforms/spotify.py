"""Spotify adapter using the Web API with client-credentials auth."""

import logging
import threading
import time
from typing import Any

import httpx

from tunelink.config import APIConfig
from tunelink.exceptions import NoCredentialsError, ServiceClosedError
from tunelink.models.app import PlatformCredentials
from tunelink.models.enums import Platform
from tunelink.models.track import CandidateTrack, PlaylistMetadata, SearchQuery
from tunelink.platforms.base import HttpAdapter, require_credentials

logger = logging.getLogger(__name__)

_TOKEN_URL = "https://accounts.spotify.com/api/token"
# Refresh tokens this many seconds before Spotify expires them
_TOKEN_EXPIRY_MARGIN_SECONDS = 30
_PAGE_SIZE = 100


class SpotifyAdapter(HttpAdapter):
    """Spotify platform adapter.

    Uses a pre-issued access token when the app has one, otherwise
    exchanges the client ID and secret for an app token and refreshes it
    shortly before it expires.
    """

    platform = Platform.SPOTIFY
    base_url = "https://api.spotify.com/v1"

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

    def search(self, query: SearchQuery) -> list[CandidateTrack]:
        q = f"track:{query.title}"
        if query.primary_artist:
            q += f" artist:{query.primary_artist}"
        logger.debug("Spotify search: %s", q)

        data = self._get_json(
            "/search",
            {
                "q": q,
                "type": "track",
                "limit": self._config.search_limit,
                "market": self._config.country,
            },
        )
        items = (data.get("tracks") or {}).get("items") or []
        return [self._to_candidate(item) for item in items if item and item.get("id")]

    def _fetch_track(self, track_id: str) -> CandidateTrack:
        logger.debug("Fetching Spotify track: %s", track_id)
        return self._to_candidate(self._get_json(f"/tracks/{track_id}"))

    def get_playlist_tracks(
        self, playlist_id: str
    ) -> tuple[PlaylistMetadata, list[CandidateTrack]]:
        logger.debug("Fetching Spotify playlist: %s", playlist_id)
        data = self._get_json(f"/playlists/{playlist_id}")

        page = data.get("tracks") or {}
        tracks: list[CandidateTrack] = []
        while True:
            for entry in page.get("items") or []:
                track = (entry or {}).get("track")
                # Local files and podcast episodes have no catalog ID
                if track and track.get("id") and track.get("type", "track") == "track":
                    tracks.append(self._to_candidate(track))
            if not (next_url := page.get("next")):
                break
            page = self._get_json(next_url)

        images = data.get("images") or []
        meta = PlaylistMetadata(
            title=data.get("name") or "",
            owner=(data.get("owner") or {}).get("display_name"),
            cover=images[0].get("url") if images else None,
            url=(data.get("external_urls") or {}).get("spotify", ""),
            track_count=(data.get("tracks") or {}).get("total") or len(tracks),
            length_ms=sum(t.duration_ms or 0 for t in tracks),
            checksum=data.get("snapshot_id"),
        )
        logger.debug("Fetched Spotify playlist with %d tracks", len(tracks))
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
        """Exchange client credentials for an app access token."""
        creds = self._credentials
        if not (creds.client_id and creds.client_secret):
            raise NoCredentialsError("Spotify access token expired", self.platform)

        try:
            response = self._client.post(
                _TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=(creds.client_id, creds.client_secret),
            )
        except httpx.HTTPError as e:
            raise ServiceClosedError(
                f"Spotify token request failed: {e}", self.platform
            ) from e

        if response.status_code in (400, 401):
            raise NoCredentialsError("Spotify rejected the app credentials", self.platform)
        self._raise_for_status(response)

        payload = response.json()
        expires_in = int(payload.get("expires_in") or 0)
        logger.debug("Obtained Spotify app token (expires in %ds)", expires_in)
        return (
            payload["access_token"],
            time.monotonic() + max(0, expires_in - _TOKEN_EXPIRY_MARGIN_SECONDS),
        )

    def _to_candidate(self, item: dict[str, Any]) -> CandidateTrack:
        album = item.get("album") or {}
        images = album.get("images") or []
        return CandidateTrack(
            platform=self.platform,
            id=item["id"],
            title=item.get("name") or "",
            artists=[a["name"] for a in item.get("artists") or [] if a.get("name")],
            duration_ms=item.get("duration_ms"),
            album=album.get("name"),
            explicit=bool(item.get("explicit")),
            cover=images[0].get("url") if images else None,
            preview=item.get("preview_url"),
            release_date=album.get("release_date"),
            url=(item.get("external_urls") or {}).get("spotify")
            or f"https://open.spotify.com/track/{item['id']}",
        )


def create_spotify_adapter(
    credentials: PlatformCredentials | None, config: APIConfig
) -> SpotifyAdapter:
    creds = credentials
    if creds is None or not creds.access_token:
        creds = require_credentials(
            Platform.SPOTIFY, credentials, "client_id", "client_secret"
        )
    return SpotifyAdapter(creds, config)
