"""Deezer adapter backed by the public Deezer API."""

import logging
from datetime import UTC, datetime
from typing import Any

from tunelink.config import APIConfig
from tunelink.exceptions import EntityNotFoundError, RateLimitedError, SearchFailedError
from tunelink.models.app import PlatformCredentials
from tunelink.models.enums import Platform
from tunelink.models.track import CandidateTrack, PlaylistMetadata, SearchQuery
from tunelink.platforms.base import HttpAdapter

logger = logging.getLogger(__name__)

# Deezer reports errors in a 200 body; these codes need special handling
_ERROR_QUOTA = 4
_ERROR_NO_DATA = 800

_PAGE_SIZE = 100


def _strip_bracketed(title: str) -> str:
    """Drop a trailing "(...)" part; Deezer's field search misses on it."""
    opening = title.find("(")
    if opening > 0 and title.rfind(")") > opening:
        return title[:opening].strip()
    return title.strip()


class DeezerAdapter(HttpAdapter):
    """Deezer platform adapter.

    Deezer's catalog API needs no credentials for search and public
    playlists, so the adapter is available to every app.
    """

    platform = Platform.DEEZER
    base_url = "https://api.deezer.com"

    def search(self, query: SearchQuery) -> list[CandidateTrack]:
        parts = [f'track:"{_strip_bracketed(query.title)}"']
        if query.primary_artist:
            parts.append(f'artist:"{query.primary_artist}"')
        logger.debug("Deezer search: %s", " ".join(parts))

        data = self._get_deezer(
            "/search", {"q": " ".join(parts), "limit": self._config.search_limit}
        )
        return [
            self._to_candidate(item)
            for item in data.get("data") or []
            if item.get("id") and item.get("title")
        ]

    def _fetch_track(self, track_id: str) -> CandidateTrack:
        logger.debug("Fetching Deezer track: %s", track_id)
        return self._to_candidate(self._get_deezer(f"/track/{track_id}"))

    def get_playlist_tracks(
        self, playlist_id: str
    ) -> tuple[PlaylistMetadata, list[CandidateTrack]]:
        logger.debug("Fetching Deezer playlist: %s", playlist_id)
        info = self._get_deezer(f"/playlist/{playlist_id}", {"limit": 1})

        tracks: list[CandidateTrack] = []
        index = 0
        while True:
            page = self._get_deezer(
                f"/playlist/{playlist_id}/tracks", {"index": index, "limit": _PAGE_SIZE}
            )
            items = page.get("data") or []
            tracks.extend(
                self._to_candidate(item)
                for item in items
                if item.get("id") and item.get("title")
            )
            if not page.get("next") or not items:
                break
            index += len(items)

        meta = PlaylistMetadata(
            title=info.get("title") or "",
            owner=(info.get("creator") or {}).get("name"),
            cover=info.get("picture_xl") or info.get("picture"),
            url=info.get("link") or "",
            track_count=info.get("nb_tracks") or len(tracks),
            length_ms=(info.get("duration") or 0) * 1000,
            last_updated=_parse_timestamp(info.get("time_mod")),
            checksum=info.get("checksum"),
        )
        logger.debug("Fetched Deezer playlist with %d tracks", len(tracks))
        return meta, tracks

    def _get_deezer(self, path: str, params: dict[str, Any] | None = None) -> dict:
        data = self._get_json(path, params)
        if not isinstance(data, dict):
            raise SearchFailedError("Deezer returned an unexpected response", self.platform)
        if error := data.get("error"):
            code = error.get("code")
            message = error.get("message") or "unknown error"
            if code == _ERROR_NO_DATA:
                raise EntityNotFoundError(f"Deezer: {message}", self.platform)
            if code == _ERROR_QUOTA:
                raise RateLimitedError(f"Deezer: {message}", self.platform)
            raise SearchFailedError(f"Deezer: {message}", self.platform)
        return data

    def _to_candidate(self, item: dict[str, Any]) -> CandidateTrack:
        album = item.get("album") or {}
        contributors = [
            c["name"]
            for c in item.get("contributors") or []
            if c.get("name") and c.get("role", "Main") == "Main"
        ]
        artists = contributors or [
            name for name in [(item.get("artist") or {}).get("name")] if name
        ]
        duration = item.get("duration")
        return CandidateTrack(
            platform=self.platform,
            id=str(item["id"]),
            title=item.get("title") or "",
            artists=artists,
            duration_ms=duration * 1000 if duration is not None else None,
            album=album.get("title"),
            explicit=bool(item.get("explicit_lyrics")),
            cover=album.get("cover_xl") or album.get("cover"),
            preview=item.get("preview") or None,
            release_date=item.get("release_date") or album.get("release_date"),
            url=item.get("link") or f"https://www.deezer.com/track/{item['id']}",
        )


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def create_deezer_adapter(
    credentials: PlatformCredentials | None, config: APIConfig
) -> DeezerAdapter:
    return DeezerAdapter(config)
