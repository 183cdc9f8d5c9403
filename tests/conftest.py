"""Shared fixtures: in-memory platform adapters and track builders.

Fake adapters implement the PlatformAdapter protocol over dictionaries so
conversion logic can be exercised without network access.
"""

from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Callable

import pytest
from tunelink import (
    AdapterError,
    AdapterRegistry,
    CandidateTrack,
    EntityNotFoundError,
    Platform,
    PlaylistMetadata,
    SearchQuery,
)

# =============================================================================
# Fake Adapter
# =============================================================================


class FakeAdapter:
    """In-memory PlatformAdapter with scriptable failures.

    Search returns catalog tracks whose title equals the query title
    (case-insensitive). Failures queued in search_failures are raised, one
    per call, before searches start succeeding.
    """

    def __init__(
        self,
        platform: Platform,
        catalog: list[CandidateTrack] | None = None,
        playlists: dict[str, tuple[PlaylistMetadata, list[CandidateTrack]]]
        | None = None,
    ) -> None:
        self.platform = platform
        self.catalog = {t.id: t for t in catalog or []}
        self.playlists = playlists or {}
        self.calls: Counter[str] = Counter()
        self.search_failures: list[AdapterError] = []
        self.playlist_failures: list[AdapterError] = []
        self.failing_titles: dict[str, AdapterError] = {}
        # When set, searches block until the gate opens
        self.gate: threading.Event | None = None
        self._lock = threading.Lock()

    def search(self, query: SearchQuery) -> list[CandidateTrack]:
        with self._lock:
            self.calls["search"] += 1
            failure = self.search_failures.pop(0) if self.search_failures else None
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if failure is not None:
            raise failure
        if error := self.failing_titles.get(query.title):
            raise error
        return [
            t for t in self.catalog.values() if t.title.lower() == query.title.lower()
        ]

    def get_track(self, track_id: str) -> CandidateTrack:
        with self._lock:
            self.calls["get_track"] += 1
        try:
            return self.catalog[track_id]
        except KeyError:
            raise EntityNotFoundError(f"No track {track_id}", self.platform) from None

    def get_playlist_tracks(
        self, playlist_id: str
    ) -> tuple[PlaylistMetadata, list[CandidateTrack]]:
        with self._lock:
            self.calls["get_playlist_tracks"] += 1
            failure = self.playlist_failures.pop(0) if self.playlist_failures else None
        if failure is not None:
            raise failure
        try:
            return self.playlists[playlist_id]
        except KeyError:
            raise EntityNotFoundError(
                f"No playlist {playlist_id}", self.platform
            ) from None


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def make_track() -> Callable[..., CandidateTrack]:
    """Factory for creating candidate tracks."""

    def _make_track(
        platform: Platform,
        id: str,
        title: str,
        artists: tuple[str, ...] = ("Test Artist",),
        duration_ms: int | None = 200_000,
    ) -> CandidateTrack:
        return CandidateTrack(
            platform=platform,
            id=id,
            title=title,
            artists=list(artists),
            duration_ms=duration_ms,
            url=f"https://example.com/{platform}/{id}",
        )

    return _make_track


@pytest.fixture
def make_adapter() -> Callable[..., FakeAdapter]:
    """Factory for creating fake adapters."""
    return FakeAdapter


@pytest.fixture
def make_registry() -> Callable[..., AdapterRegistry]:
    """Factory for a registry holding the given adapters."""

    def _make_registry(*adapters: FakeAdapter) -> AdapterRegistry:
        return AdapterRegistry({a.platform: a for a in adapters})

    return _make_registry


@pytest.fixture
def playlist_meta() -> PlaylistMetadata:
    """Metadata of a small source playlist."""
    return PlaylistMetadata(
        title="Road Trip",
        owner="tester",
        url="https://www.deezer.com/playlist/908622995",
        track_count=3,
    )
