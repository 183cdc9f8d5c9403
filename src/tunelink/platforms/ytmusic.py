"""YouTube Music adapter built on ytmusicapi."""

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar, cast

from pydantic import ValidationError
from ytmusicapi import YTMusic
from ytmusicapi.exceptions import YTMusicError, YTMusicServerError, YTMusicUserError

from tunelink.config import APIConfig
from tunelink.exceptions import (
    EntityNotFoundError,
    SearchFailedError,
    ServiceClosedError,
)
from tunelink.models.app import PlatformCredentials
from tunelink.models.enums import Platform
from tunelink.models.track import CandidateTrack, PlaylistMetadata, SearchQuery
from tunelink.models.ytmusic import Playlist, Song

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Maximum number of fetched tracks to cache per adapter instance
_TRACK_CACHE_SIZE = 256

_WATCH_URL = "https://music.youtube.com/watch?v={}"
_PLAYLIST_URL = "https://music.youtube.com/playlist?list={}"


class YTMusicAdapter:
    """YouTube Music platform adapter.

    Wraps ytmusicapi with consistent error handling and response parsing.
    No credentials are needed; the YTMusic session is created on first use.
    """

    platform = Platform.YTMUSIC

    def __init__(
        self,
        ytmusic: YTMusic | None = None,
        config: APIConfig | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            ytmusic: Optional YTMusic instance. Creates one lazily if not provided.
            config: Optional API configuration. Uses defaults if not provided.
        """
        self._ytm = ytmusic
        self._ytm_lock = threading.Lock()
        self._config = config or APIConfig()
        # LRU cache for fetched tracks with size limit
        self._track_cache: OrderedDict[str, CandidateTrack] = OrderedDict()

    @property
    def ytmusic(self) -> YTMusic:
        with self._ytm_lock:
            if self._ytm is None:
                logger.debug("Creating YTMusic session")
                self._ytm = YTMusic(location=self._config.country)
            return self._ytm

    def search(self, query: SearchQuery) -> list[CandidateTrack]:
        """Search for songs.

        Raises:
            ServiceClosedError: If YouTube Music returned a server error.
            SearchFailedError: If the request was rejected.
        """
        logger.debug("YouTube Music search: %s", query.text)
        data = self._call(
            f"search '{query.text}'",
            lambda: self.ytmusic.search(
                query.text, filter="songs", limit=self._config.search_limit
            ),
        )
        results: list[CandidateTrack] = []
        for item in data or []:
            if not item or not item.get("videoId") or not item.get("title"):
                continue
            results.append(self._to_candidate(self._parse_song(item)))
        return results

    def get_track(self, track_id: str) -> CandidateTrack:
        """Fetch a single track by video ID using get_watch_playlist().

        Raises:
            ValueError: If track_id is empty.
            EntityNotFoundError: If the track doesn't exist or is inaccessible.
        """
        if not track_id or not track_id.strip():
            raise ValueError("track_id cannot be empty")

        if track_id in self._track_cache:
            logger.debug("YouTube Music track cache hit: %s", track_id)
            self._track_cache.move_to_end(track_id)
            return self._track_cache[track_id]

        logger.debug("Fetching YouTube Music track: %s", track_id)
        data = self._call(
            f"track {track_id}", lambda: self.ytmusic.get_watch_playlist(track_id)
        )
        tracks = cast(list[dict[str, Any]], (data or {}).get("tracks") or [])
        if not tracks:
            raise EntityNotFoundError(f"Track not found: {track_id}", self.platform)

        track = self._to_candidate(self._parse_song(tracks[0]))
        self._track_cache[track_id] = track
        if len(self._track_cache) > _TRACK_CACHE_SIZE:
            self._track_cache.popitem(last=False)
        return track

    def get_playlist_tracks(
        self, playlist_id: str
    ) -> tuple[PlaylistMetadata, list[CandidateTrack]]:
        """Fetch a playlist and its available tracks.

        Tracks without a video ID or unavailable in the region are skipped.

        Raises:
            EntityNotFoundError: If the playlist doesn't exist or is private.
        """
        if not playlist_id or not playlist_id.strip():
            raise ValueError("playlist_id cannot be empty")

        logger.debug("Fetching YouTube Music playlist: %s", playlist_id)
        try:
            data = self._call(
                f"playlist {playlist_id}",
                lambda: self.ytmusic.get_playlist(playlist_id, limit=None),
            )
        except KeyError as e:
            # ytmusicapi raises KeyError when YouTube serves a sign-in page
            logger.warning("Missing data in playlist response %s: %s", playlist_id, e)
            raise EntityNotFoundError(
                f"Playlist not found or private: {playlist_id}", self.platform
            ) from e
        if not data:
            raise EntityNotFoundError(f"Playlist not found: {playlist_id}", self.platform)

        raw_tracks = data.get("tracks") or []
        valid = [
            t for t in raw_tracks if t and t.get("videoId") and t.get("isAvailable", True)
        ]
        skipped = len(raw_tracks) - len(valid)
        try:
            playlist = Playlist.model_validate({**data, "tracks": valid})
        except ValidationError as e:
            raise SearchFailedError(
                f"Unreadable playlist response: {playlist_id}", self.platform
            ) from e

        tracks = [self._to_candidate(song) for song in playlist.tracks]
        meta = PlaylistMetadata(
            title=playlist.title or "",
            owner=playlist.author.name if playlist.author else None,
            cover=playlist.cover,
            url=_PLAYLIST_URL.format(playlist_id),
            track_count=len(tracks),
            length_ms=sum(t.duration_ms or 0 for t in tracks),
        )
        logger.debug(
            "Fetched YouTube Music playlist with %d tracks (%d unavailable)",
            len(tracks),
            skipped,
        )
        return meta, tracks

    # -------------------------------------------------------------------------
    # Response handling
    # -------------------------------------------------------------------------

    def _call(self, what: str, fn: Callable[[], T]) -> T:
        """Invoke ytmusicapi, mapping its exceptions to adapter errors."""
        try:
            return fn()
        except YTMusicServerError as e:
            logger.warning("YTMusic server error for %s: %s", what, e)
            raise ServiceClosedError(f"YouTube Music failed: {e}", self.platform) from e
        except YTMusicUserError as e:
            logger.warning("YTMusic rejected %s: %s", what, e)
            if "Unable to find 'contents'" in str(e):
                raise EntityNotFoundError(
                    f"YouTube Music has no {what}", self.platform
                ) from e
            raise SearchFailedError(f"YouTube Music failed: {e}", self.platform) from e
        except YTMusicError as e:
            logger.warning("YTMusic error for %s: %s", what, e)
            raise SearchFailedError(f"YouTube Music failed: {e}", self.platform) from e
        except OSError as e:
            logger.warning("YTMusic request failed for %s: %s", what, e)
            raise ServiceClosedError(
                f"YouTube Music is unreachable: {e}", self.platform
            ) from e

    def _parse_song(self, item: dict[str, Any]) -> Song:
        try:
            return Song.model_validate(item)
        except ValidationError as e:
            raise SearchFailedError(
                "Unreadable YouTube Music track", self.platform
            ) from e

    def _to_candidate(self, song: Song) -> CandidateTrack:
        return CandidateTrack(
            platform=self.platform,
            id=song.video_id,
            title=song.title,
            artists=song.artist_names,
            duration_ms=song.duration_ms,
            album=song.album.name if song.album else None,
            explicit=song.is_explicit,
            cover=song.cover,
            release_date=song.year,
            url=_WATCH_URL.format(song.video_id),
        )


def create_ytmusic_adapter(
    credentials: PlatformCredentials | None, config: APIConfig
) -> YTMusicAdapter:
    return YTMusicAdapter(config=config)
