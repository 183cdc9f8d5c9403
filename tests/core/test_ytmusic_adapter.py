"""Tests for the YouTube Music adapter."""

from typing import Any

import pytest
from tunelink import EntityNotFoundError, Platform, SearchQuery, ServiceClosedError
from tunelink.models.ytmusic import parse_length
from tunelink.platforms import YTMusicAdapter
from ytmusicapi.exceptions import YTMusicServerError, YTMusicUserError


class FakeYTMusic:
    """Stands in for ytmusicapi.YTMusic with canned responses."""

    def __init__(self) -> None:
        self.search_results: list[dict[str, Any]] = []
        self.watch_playlists: dict[str, dict[str, Any]] = {}
        self.playlists: dict[str, dict[str, Any]] = {}
        self.error: Exception | None = None
        self.calls: list[str] = []

    def search(self, query: str, filter: str | None = None, limit: int = 20) -> list:
        self.calls.append(f"search:{filter}")
        if self.error:
            raise self.error
        return self.search_results

    def get_watch_playlist(self, video_id: str) -> dict[str, Any]:
        self.calls.append(f"watch:{video_id}")
        if self.error:
            raise self.error
        return self.watch_playlists.get(video_id, {"tracks": []})

    def get_playlist(self, playlist_id: str, limit: int | None = 100) -> dict:
        self.calls.append(f"playlist:{playlist_id}")
        if self.error:
            raise self.error
        return self.playlists[playlist_id]


def _song(video_id: str, title: str, **extra: Any) -> dict[str, Any]:
    return {
        "videoId": video_id,
        "title": title,
        "artists": [{"name": "Daft Punk", "id": "UC1"}],
        "album": {"name": "RAM", "id": "MPREb_1"},
        "thumbnails": [
            {"url": "https://i/small.jpg", "width": 60, "height": 60},
            {"url": "https://i/large.jpg", "width": 544, "height": 544},
        ],
        "duration_seconds": 248,
        **extra,
    }


@pytest.fixture
def ytm() -> FakeYTMusic:
    return FakeYTMusic()


@pytest.fixture
def adapter(ytm: FakeYTMusic) -> YTMusicAdapter:
    return YTMusicAdapter(ytmusic=ytm)  # type: ignore[arg-type]


class TestSearch:
    """Tests for song search."""

    def test_maps_songs(self, ytm: FakeYTMusic, adapter: YTMusicAdapter) -> None:
        ytm.search_results = [_song("v1", "Get Lucky"), {"title": "no video id"}]

        results = adapter.search(SearchQuery(title="Get Lucky", artists=["Daft Punk"]))

        assert ytm.calls == ["search:songs"]
        assert len(results) == 1
        track = results[0]
        assert track.platform == Platform.YTMUSIC
        assert track.id == "v1"
        assert track.duration_ms == 248_000
        assert track.cover == "https://i/large.jpg"
        assert track.url == "https://music.youtube.com/watch?v=v1"

    def test_server_error(self, ytm: FakeYTMusic, adapter: YTMusicAdapter) -> None:
        ytm.error = YTMusicServerError("HTTP 500")
        with pytest.raises(ServiceClosedError):
            adapter.search(SearchQuery(title="x"))


class TestGetTrack:
    """Tests for single-track lookup."""

    def test_normalizes_watch_track(
        self, ytm: FakeYTMusic, adapter: YTMusicAdapter
    ) -> None:
        watch = _song("v1", "Get Lucky")
        watch.pop("duration_seconds")
        watch["thumbnail"] = watch.pop("thumbnails")
        watch["length"] = "4:08"
        ytm.watch_playlists["v1"] = {"tracks": [watch]}

        track = adapter.get_track("v1")

        assert track.duration_ms == 248_000
        assert track.cover == "https://i/large.jpg"

    def test_cached(self, ytm: FakeYTMusic, adapter: YTMusicAdapter) -> None:
        ytm.watch_playlists["v1"] = {"tracks": [_song("v1", "Get Lucky")]}
        adapter.get_track("v1")
        adapter.get_track("v1")
        assert ytm.calls == ["watch:v1"]

    def test_missing_track(self, adapter: YTMusicAdapter) -> None:
        with pytest.raises(EntityNotFoundError):
            adapter.get_track("nope")

    def test_empty_id(self, adapter: YTMusicAdapter) -> None:
        with pytest.raises(ValueError):
            adapter.get_track(" ")


class TestGetPlaylist:
    """Tests for playlist enumeration."""

    def test_skips_unavailable_tracks(
        self, ytm: FakeYTMusic, adapter: YTMusicAdapter
    ) -> None:
        ytm.playlists["PL1"] = {
            "id": "PL1",
            "title": "Mix",
            "author": {"name": "me", "id": "UC2"},
            "thumbnails": [],
            "tracks": [
                _song("v1", "A"),
                _song("v2", "B", isAvailable=False),
                {"videoId": None, "title": "Removed"},
                _song("v3", "C", artists=None),
            ],
        }

        meta, tracks = adapter.get_playlist_tracks("PL1")

        assert [t.id for t in tracks] == ["v1", "v3"]
        assert tracks[1].artists == []
        assert meta.title == "Mix"
        assert meta.owner == "me"
        assert meta.url == "https://music.youtube.com/playlist?list=PL1"
        assert meta.track_count == 2

    def test_private_playlist(self, ytm: FakeYTMusic, adapter: YTMusicAdapter) -> None:
        ytm.error = KeyError("contents")
        with pytest.raises(EntityNotFoundError):
            adapter.get_playlist_tracks("PL1")

    def test_missing_contents(self, ytm: FakeYTMusic, adapter: YTMusicAdapter) -> None:
        ytm.error = YTMusicUserError("Unable to find 'contents' in response")
        with pytest.raises(EntityNotFoundError):
            adapter.get_playlist_tracks("PL1")


@pytest.mark.parametrize(
    ("length", "expected"),
    [("3:00", 180), ("1:23:45", 5025), ("", None), ("abc", None), ("1:2:3:4", None)],
)
def test_parse_length(length: str, expected: int | None) -> None:
    assert parse_length(length) == expected
