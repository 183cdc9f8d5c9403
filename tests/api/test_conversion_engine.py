"""Tests for the conversion engine pipeline."""

import asyncio
import threading
from collections.abc import Callable
from typing import Any

import pytest
from tunelink import (
    AdapterRegistry,
    CandidateTrack,
    ConversionConfig,
    DeveloperApp,
    EntityKind,
    EntityNotFoundError,
    InvalidLinkError,
    LinkInfo,
    Matcher,
    Platform,
    PlaylistMetadata,
    SearchFailedError,
    TaskStatus,
    conversion_checksum,
)
from tunelink.models.enums import ErrorKind, EventType
from tunelink_api.services.conversion import ConversionEngine, TrackResultCache
from tunelink_api.services.event_emitter import EventEmitter, WebhookRegistry
from tunelink_api.services.task_tracker import TaskTracker

PLAYLIST_ID = "908622995"
TITLES = ("Song A", "Song B", "Song C")

PLAYLIST_LINK = LinkInfo(
    platform=Platform.DEEZER,
    entity=EntityKind.PLAYLIST,
    entity_id=PLAYLIST_ID,
    target_link=f"https://www.deezer.com/playlist/{PLAYLIST_ID}",
)
TRACK_LINK = LinkInfo(
    platform=Platform.DEEZER,
    entity=EntityKind.TRACK,
    entity_id="d1",
    target_link="https://www.deezer.com/track/d1",
)


@pytest.fixture
def source_tracks(make_track: Callable[..., CandidateTrack]) -> list[CandidateTrack]:
    return [make_track(Platform.DEEZER, f"d{i}", t) for i, t in enumerate(TITLES, 1)]


@pytest.fixture
def deezer(
    make_adapter: Callable[..., Any],
    source_tracks: list[CandidateTrack],
    playlist_meta: PlaylistMetadata,
) -> Any:
    """Source adapter holding the three-track playlist."""
    return make_adapter(
        Platform.DEEZER,
        source_tracks,
        playlists={PLAYLIST_ID: (playlist_meta, source_tracks)},
    )


@pytest.fixture
def tidal(make_adapter: Callable[..., Any], make_track: Callable[..., CandidateTrack]) -> Any:
    """TIDAL has Song A and Song C but not Song B."""
    return make_adapter(
        Platform.TIDAL,
        [make_track(Platform.TIDAL, "t1", "Song A"), make_track(Platform.TIDAL, "t3", "Song C")],
    )


@pytest.fixture
def ytmusic(
    make_adapter: Callable[..., Any], make_track: Callable[..., CandidateTrack]
) -> Any:
    """YouTube Music has every track."""
    return make_adapter(
        Platform.YTMUSIC,
        [make_track(Platform.YTMUSIC, f"y{i}", t) for i, t in enumerate(TITLES, 1)],
    )


@pytest.fixture
def registry(
    make_registry: Callable[..., AdapterRegistry], deezer: Any, tidal: Any, ytmusic: Any
) -> AdapterRegistry:
    return make_registry(deezer, tidal, ytmusic)


@pytest.fixture
def engine(
    make_engine: Callable[..., ConversionEngine], registry: AdapterRegistry
) -> ConversionEngine:
    return make_engine(registry)


async def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


# =============================================================================
# Playlist conversion
# =============================================================================


class TestPlaylistConversion:
    """End-to-end playlist conversions over fake adapters."""

    @pytest.mark.asyncio
    async def test_converts_to_every_target(
        self,
        engine: ConversionEngine,
        tracker: TaskTracker,
        recorder,
        dev_app: DeveloperApp,
    ) -> None:
        task = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        assert task.status == TaskStatus.PROCESSING
        await engine.join()

        finished = tracker.get(task.id)
        assert finished.status == TaskStatus.COMPLETED
        result = finished.result
        assert result is not None
        assert result.status == TaskStatus.COMPLETED
        assert list(result.platforms) == [Platform.TIDAL, Platform.YTMUSIC]

        tidal_result = result.platforms[Platform.TIDAL]
        assert [t.id for t in tidal_result.tracks] == ["t1", "t3"]
        assert tidal_result.length_ms == 400_000
        assert [(o.title, o.index) for o in tidal_result.omitted] == [("Song B", 2)]
        assert [t.id for t in result.platforms[Platform.YTMUSIC].tracks] == [
            "y1",
            "y2",
            "y3",
        ]
        assert len(result.omitted_tracks) == 1
        assert result.meta.track_count == 3

    @pytest.mark.asyncio
    async def test_event_order(
        self, engine: ConversionEngine, recorder, dev_app: DeveloperApp
    ) -> None:
        task = await engine.convert_playlist(
            PLAYLIST_LINK, [Platform.TIDAL], dev_app
        )
        await engine.join()

        events = recorder.of_task(task.id)
        assert events[0].event_type == EventType.METADATA
        assert events[-1].event_type == EventType.DONE
        tracks = [e for e in events if e.event_type == EventType.TRACK]
        assert len(events) == 1 + len(tracks) + 1
        assert sorted(e.index for e in tracks) == [1, 2, 3]
        omitted = [e for e in tracks if e.omitted is not None]
        assert [e.source_track_id for e in omitted] == ["d2"]
        assert events[-1].summary.matched == {Platform.TIDAL: 2}

    @pytest.mark.asyncio
    async def test_one_track_event_per_platform(
        self, engine: ConversionEngine, recorder, dev_app: DeveloperApp
    ) -> None:
        task = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        await engine.join()

        tracks = [
            e for e in recorder.of_task(task.id) if e.event_type == EventType.TRACK
        ]
        for platform in (Platform.TIDAL, Platform.YTMUSIC):
            assert sorted(e.index for e in tracks if e.platform == platform) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_bounded_concurrency_keeps_order(
        self,
        make_engine: Callable[..., ConversionEngine],
        registry: AdapterRegistry,
        tracker: TaskTracker,
        dev_app: DeveloperApp,
    ) -> None:
        engine = make_engine(registry, max_concurrency=2)

        task = await engine.convert_playlist(PLAYLIST_LINK, [Platform.YTMUSIC], dev_app)
        await engine.join()

        result = tracker.get(task.id).result
        assert [t.id for t in result.platforms[Platform.YTMUSIC].tracks] == [
            "y1",
            "y2",
            "y3",
        ]

    @pytest.mark.asyncio
    async def test_short_url_assigned(
        self,
        make_engine: Callable[..., ConversionEngine],
        registry: AdapterRegistry,
        tracker: TaskTracker,
        dev_app: DeveloperApp,
    ) -> None:
        engine = make_engine(registry, short_url_base="https://tl.example/")

        task = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        await engine.join()

        assert task.short_url is not None
        assert task.short_url.startswith("https://tl.example/")
        result = tracker.get(task.id).result
        assert result.short_url == task.short_url
        assert result.meta.short_url == task.short_url

    @pytest.mark.asyncio
    async def test_rejects_track_link(
        self, engine: ConversionEngine, dev_app: DeveloperApp
    ) -> None:
        with pytest.raises(InvalidLinkError):
            await engine.convert_playlist(TRACK_LINK, None, dev_app)


class TestIdempotency:
    """Tests for resubmission of the same playlist."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_task(
        self, engine: ConversionEngine, deezer, dev_app: DeveloperApp
    ) -> None:
        first, second = await asyncio.gather(
            engine.convert_playlist(PLAYLIST_LINK, None, dev_app),
            engine.convert_playlist(PLAYLIST_LINK, None, dev_app),
        )
        await engine.join()

        assert first.id == second.id
        assert deezer.calls["get_playlist_tracks"] == 1

    @pytest.mark.asyncio
    async def test_completed_task_returned_unchanged(
        self, engine: ConversionEngine, deezer, dev_app: DeveloperApp
    ) -> None:
        task = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        await engine.join()

        again = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)

        assert again.id == task.id
        assert again.status == TaskStatus.COMPLETED
        assert engine.running_count == 0
        assert deezer.calls["get_playlist_tracks"] == 1

    @pytest.mark.asyncio
    async def test_target_order_does_not_matter(
        self, engine: ConversionEngine, dev_app: DeveloperApp
    ) -> None:
        first = await engine.convert_playlist(
            PLAYLIST_LINK, [Platform.TIDAL, Platform.YTMUSIC], dev_app
        )
        second = await engine.convert_playlist(
            PLAYLIST_LINK, [Platform.YTMUSIC, Platform.TIDAL], dev_app
        )
        await engine.join()

        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_different_targets_are_different_tasks(
        self, engine: ConversionEngine, dev_app: DeveloperApp
    ) -> None:
        first = await engine.convert_playlist(PLAYLIST_LINK, [Platform.TIDAL], dev_app)
        second = await engine.convert_playlist(PLAYLIST_LINK, [Platform.YTMUSIC], dev_app)
        await engine.join()

        assert first.id != second.id


class TestFailures:
    """Tests for failure isolation and retries."""

    @pytest.mark.asyncio
    async def test_platform_failure_omits_only_that_track(
        self,
        engine: ConversionEngine,
        tidal,
        tracker: TaskTracker,
        dev_app: DeveloperApp,
    ) -> None:
        tidal.failing_titles["Song A"] = SearchFailedError("TIDAL down", Platform.TIDAL)

        task = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        await engine.join()

        finished = tracker.get(task.id)
        assert finished.status == TaskStatus.COMPLETED
        result = finished.result
        assert [o.index for o in result.platforms[Platform.TIDAL].omitted] == [1, 2]
        assert len(result.platforms[Platform.YTMUSIC].tracks) == 3

    @pytest.mark.asyncio
    async def test_source_failure_fails_task(
        self,
        engine: ConversionEngine,
        deezer,
        tracker: TaskTracker,
        recorder,
        dev_app: DeveloperApp,
    ) -> None:
        deezer.playlist_failures.append(
            EntityNotFoundError("No such playlist", Platform.DEEZER)
        )

        task = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        await engine.join()

        finished = tracker.get(task.id)
        assert finished.status == TaskStatus.FAILED
        assert finished.error.kind == ErrorKind.SOURCE_UNAVAILABLE
        assert finished.result is None
        events = recorder.of_task(task.id)
        assert [e.event_type for e in events] == [EventType.ERROR]
        assert events[0].error_kind == ErrorKind.SOURCE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_failed_task_restarts_until_retries_exhausted(
        self,
        engine: ConversionEngine,
        deezer,
        tracker: TaskTracker,
        dev_app: DeveloperApp,
    ) -> None:
        deezer.playlist_failures.extend(
            EntityNotFoundError("No such playlist", Platform.DEEZER) for _ in range(5)
        )

        task = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        await engine.join()

        # One restart is allowed
        restarted = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        assert restarted.id == task.id
        assert restarted.status == TaskStatus.PROCESSING
        await engine.join()

        exhausted = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        assert exhausted.status == TaskStatus.FAILED
        assert engine.running_count == 0
        assert deezer.calls["get_playlist_tracks"] == 2

        again = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        assert again.retry_count == exhausted.retry_count

    @pytest.mark.asyncio
    async def test_restart_succeeds_after_transient_failure(
        self,
        engine: ConversionEngine,
        deezer,
        tracker: TaskTracker,
        recorder,
        dev_app: DeveloperApp,
    ) -> None:
        deezer.playlist_failures.append(
            EntityNotFoundError("No such playlist", Platform.DEEZER)
        )

        task = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        await engine.join()
        await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        await engine.join()

        finished = tracker.get(task.id)
        assert finished.status == TaskStatus.COMPLETED
        assert finished.error is None
        assert [e.event_type for e in recorder.of_task(task.id)][-1] == EventType.DONE

    @pytest.mark.asyncio
    async def test_concurrent_resubmissions_restart_once(
        self,
        engine: ConversionEngine,
        deezer,
        tracker: TaskTracker,
        dev_app: DeveloperApp,
    ) -> None:
        deezer.playlist_failures.append(
            EntityNotFoundError("No such playlist", Platform.DEEZER)
        )
        task = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        await engine.join()

        resubmitted = await asyncio.gather(
            *(engine.convert_playlist(PLAYLIST_LINK, None, dev_app) for _ in range(3))
        )
        await engine.join()

        assert {t.id for t in resubmitted} == {task.id}
        assert deezer.calls["get_playlist_tracks"] == 2
        finished = tracker.get(task.id)
        assert finished.status == TaskStatus.COMPLETED
        assert finished.retry_count == 1


class TestCancellation:
    """Tests for cancelling running conversions."""

    @pytest.mark.asyncio
    async def test_cancel_stops_at_track_boundary(
        self,
        make_engine: Callable[..., ConversionEngine],
        registry: AdapterRegistry,
        tidal,
        tracker: TaskTracker,
        recorder,
        dev_app: DeveloperApp,
    ) -> None:
        engine = make_engine(registry, max_concurrency=1)
        tidal.gate = threading.Event()

        task = await engine.convert_playlist(PLAYLIST_LINK, [Platform.TIDAL], dev_app)
        await _wait_for(lambda: tidal.calls["search"] >= 1)

        assert await engine.cancel(task.id)
        tidal.gate.set()
        await engine.join()

        finished = tracker.get(task.id)
        assert finished.status == TaskStatus.CANCELLED
        assert finished.error.kind == ErrorKind.CANCELLED
        assert finished.error.reason == "Cancelled by request"
        assert finished.result.status == TaskStatus.CANCELLED

        events = recorder.of_task(task.id)
        tracks = [e for e in events if e.event_type == EventType.TRACK]
        assert len(tracks) == 1
        assert events[-1].event_type == EventType.ERROR
        assert events[-1].error_kind == ErrorKind.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_finished_task(
        self, engine: ConversionEngine, dev_app: DeveloperApp
    ) -> None:
        task = await engine.convert_playlist(PLAYLIST_LINK, None, dev_app)
        await engine.join()

        assert not await engine.cancel(task.id)

    @pytest.mark.asyncio
    async def test_cancelled_task_can_restart(
        self,
        make_engine: Callable[..., ConversionEngine],
        registry: AdapterRegistry,
        tidal,
        tracker: TaskTracker,
        dev_app: DeveloperApp,
    ) -> None:
        engine = make_engine(registry, max_concurrency=1)
        tidal.gate = threading.Event()
        task = await engine.convert_playlist(PLAYLIST_LINK, [Platform.TIDAL], dev_app)
        await _wait_for(lambda: tidal.calls["search"] >= 1)
        await engine.cancel(task.id)
        tidal.gate.set()
        await engine.join()

        restarted = await engine.convert_playlist(PLAYLIST_LINK, [Platform.TIDAL], dev_app)
        await engine.join()

        assert restarted.id == task.id
        finished = tracker.get(task.id)
        assert finished.status == TaskStatus.COMPLETED
        assert not finished.cancel_requested

    @pytest.mark.asyncio
    async def test_shutdown_marks_running_tasks_cancelled(
        self,
        engine: ConversionEngine,
        tidal,
        tracker: TaskTracker,
        recorder,
        dev_app: DeveloperApp,
    ) -> None:
        tidal.gate = threading.Event()
        task = await engine.convert_playlist(PLAYLIST_LINK, [Platform.TIDAL], dev_app)
        await _wait_for(lambda: tidal.calls["search"] >= 1)

        try:
            assert await engine.shutdown() == 1
        finally:
            tidal.gate.set()

        finished = tracker.get(task.id)
        assert finished.status == TaskStatus.CANCELLED
        assert finished.error.reason == "Server shutting down"
        assert recorder.of_task(task.id)[-1].event_type == EventType.ERROR


class TestRecovery:
    """Tests for tasks left unfinished by a previous process."""

    @pytest.mark.asyncio
    async def test_interrupted_task_restarts_after_recovery(
        self,
        engine: ConversionEngine,
        deezer,
        tracker: TaskTracker,
        dev_app: DeveloperApp,
    ) -> None:
        # A task a previous process started but never finished
        checksum = conversion_checksum(
            Platform.DEEZER, PLAYLIST_ID, [Platform.TIDAL], dev_app.id
        )
        stale, _ = tracker.get_or_create(checksum, entity_id=PLAYLIST_ID, app=dev_app.id)
        tracker.advance(stale.id, TaskStatus.PROCESSING)

        stuck = await engine.convert_playlist(PLAYLIST_LINK, [Platform.TIDAL], dev_app)
        assert stuck.id == stale.id
        assert engine.running_count == 0
        assert deezer.calls["get_playlist_tracks"] == 0

        tracker.fail_interrupted()
        restarted = await engine.convert_playlist(PLAYLIST_LINK, [Platform.TIDAL], dev_app)
        await engine.join()

        assert restarted.id == stale.id
        assert deezer.calls["get_playlist_tracks"] == 1
        finished = tracker.get(stale.id)
        assert finished.status == TaskStatus.COMPLETED
        assert finished.retry_count == 1


class TestWebhooks:
    """Tests for per-app webhook delivery."""

    @pytest.mark.asyncio
    async def test_app_webhook_receives_task_events(
        self,
        registry: AdapterRegistry,
        tracker: TaskTracker,
        emitter: EventEmitter,
    ) -> None:
        received: list[Any] = []

        class Collector:
            def __init__(self, url: str, secret: str | None) -> None:
                self.url = url

            def deliver(self, event: Any) -> None:
                received.append(event)

        engine = ConversionEngine(
            lambda app: registry,
            tracker,
            emitter,
            matcher=Matcher(),
            config=ConversionConfig(adapter_max_retries=0),
            webhooks=WebhookRegistry(Collector),
            sleep=lambda seconds: None,
        )
        app = DeveloperApp(id="hooked", webhook_url="https://hooks.example/a")

        await engine.convert_playlist(PLAYLIST_LINK, [Platform.TIDAL], app)
        await engine.join()

        assert received[0].event_type == EventType.METADATA
        assert received[-1].event_type == EventType.DONE


# =============================================================================
# Track conversion
# =============================================================================


class TestTrackConversion:
    """Tests for inline single-track conversion."""

    @pytest.mark.asyncio
    async def test_converts_and_caches(
        self, engine: ConversionEngine, deezer, dev_app: DeveloperApp
    ) -> None:
        first = await engine.convert_track(TRACK_LINK, None, dev_app)
        second = await engine.convert_track(TRACK_LINK, None, dev_app)

        assert first == second
        assert deezer.calls["get_track"] == 1
        assert first.platforms[Platform.TIDAL].chosen.id == "t1"
        assert first.platforms[Platform.YTMUSIC].chosen.id == "y1"

    @pytest.mark.asyncio
    async def test_missing_match(
        self,
        engine: ConversionEngine,
        dev_app: DeveloperApp,
    ) -> None:
        link = TRACK_LINK.model_copy(
            update={"entity_id": "d2", "target_link": "https://www.deezer.com/track/d2"}
        )

        conversion = await engine.convert_track(link, [Platform.TIDAL], dev_app)

        assert conversion.platforms[Platform.TIDAL].chosen is None

    @pytest.mark.asyncio
    async def test_rejects_playlist_link(
        self, engine: ConversionEngine, dev_app: DeveloperApp
    ) -> None:
        with pytest.raises(InvalidLinkError):
            await engine.convert_track(PLAYLIST_LINK, None, dev_app)


class TestTrackResultCache:
    """Tests for the single-track result cache."""

    def _conversion(self, make_track: Callable[..., CandidateTrack]) -> Any:
        from tunelink import TrackConversion

        return TrackConversion(
            unique_id="sum",
            source_platform=Platform.DEEZER,
            source=make_track(Platform.DEEZER, "d1", "Song A"),
        )

    def test_expires_after_ttl(self, make_track) -> None:
        now = [0.0]
        cache = TrackResultCache(10, 60, clock=lambda: now[0])
        cache.put("k", self._conversion(make_track))

        now[0] = 59
        assert cache.get("k") is not None
        now[0] = 61
        assert cache.get("k") is None

    def test_evicts_least_recently_used(self, make_track) -> None:
        cache = TrackResultCache(2, 60)
        conversion = self._conversion(make_track)
        cache.put("a", conversion)
        cache.put("b", conversion)
        cache.get("a")
        cache.put("c", conversion)

        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert len(cache) == 2

    def test_disabled_with_zero_ttl(self, make_track) -> None:
        cache = TrackResultCache(10, 0)
        cache.put("k", self._conversion(make_track))

        assert len(cache) == 0
