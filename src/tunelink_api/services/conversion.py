"""Conversion engine: single tracks and background playlist conversions."""

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from typing import Any

from tunelink import (
    AdapterError,
    AdapterRegistry,
    CancellationError,
    CancelToken,
    CandidateTrack,
    ConversionConfig,
    DeveloperApp,
    EntityKind,
    InvalidLinkError,
    InvalidTransitionError,
    InvariantError,
    LinkInfo,
    Matcher,
    MatchResult,
    NoCredentialsError,
    Platform,
    PlatformPlaylistResult,
    PlaylistConversion,
    PlaylistMetadata,
    SourceUnavailableError,
    TaskFatalError,
    TaskStatus,
    TrackConversion,
    TrackConverter,
    TunelinkError,
    conversion_checksum,
)
from tunelink.lib import short_id
from tunelink.models.enums import ErrorKind, TaskType

from tunelink_api.core.models import Task, TaskError
from tunelink_api.services.event_emitter import EventEmitter, WebhookRegistry
from tunelink_api.services.task_tracker import TaskTracker

logger = logging.getLogger(__name__)

CANCELLED_BY_REQUEST = "Cancelled by request"
SHUTDOWN_REASON = "Server shutting down"

type RegistryFactory = Callable[[DeveloperApp], AdapterRegistry]

# Per-track outcome on every target platform, by source index
type TrackResults = list[dict[Platform, MatchResult] | None]


class TrackResultCache:
    """LRU cache of single-track conversions with a time-to-live."""

    def __init__(
        self,
        max_size: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_size = max_size
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, TrackConversion]] = OrderedDict()

    def get(self, key: str) -> TrackConversion | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, conversion = entry
        if self._clock() - stored_at > self._ttl_seconds:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return conversion

    def put(self, key: str, conversion: TrackConversion) -> None:
        if self._max_size <= 0 or self._ttl_seconds <= 0:
            return
        self._entries[key] = (self._clock(), conversion)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


class ConversionEngine:
    """Runs track and playlist conversions.

    Track conversions run inline and are cached by checksum. Playlist
    conversions are idempotent tasks: the first request creates the task
    and starts a background pipeline, later requests with the same checksum
    get the existing task back.

    Pipeline:
        1. Enumerate the source playlist (failure fails the task)
        2. Emit metadata
        3. Match tracks with up to max_concurrency tracks in flight, each
           fanning out to every target platform; emit one track event per
           platform as each track completes
        4. Persist the aggregated result and emit done

    Architecture Notes:
        - TaskTracker is the only writer of task status
        - Cancellation is checked at every track boundary, both through the
          in-process CancelToken and the task's persisted flag
        - Adapter and store calls run in worker threads
        - Background tasks are tracked in a set to prevent garbage collection
    """

    def __init__(
        self,
        registry_factory: RegistryFactory,
        tracker: TaskTracker,
        emitter: EventEmitter,
        matcher: Matcher | None = None,
        config: ConversionConfig | None = None,
        webhooks: WebhookRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            registry_factory: Returns the adapters available to an app.
            tracker: Task state machine.
            emitter: Event emitter for playlist progress.
            matcher: Candidate matcher. Uses defaults if not provided.
            config: Engine configuration. Uses defaults if not provided.
            webhooks: Per-app webhook deliveries, if enabled.
            sleep: Sleep used between adapter retries (tests pass a no-op).
        """
        self._registry_factory = registry_factory
        self._tracker = tracker
        self._emitter = emitter
        self._matcher = matcher or Matcher()
        self._config = config or ConversionConfig()
        self._webhooks = webhooks
        self._sleep = sleep
        self._track_cache = TrackResultCache(
            self._config.track_cache_size, self._config.track_cache_ttl_seconds
        )

        # Track background tasks to prevent GC during execution
        self._background_tasks: set[asyncio.Task[Any]] = set()
        # Map task_id -> CancelToken for cancellation support
        self._cancel_tokens: dict[str, CancelToken] = {}

    @property
    def running_count(self) -> int:
        return len(self._background_tasks)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def convert_track(
        self,
        link: LinkInfo,
        target_platforms: Iterable[Platform] | None,
        app: DeveloperApp,
    ) -> TrackConversion:
        """Convert a single track to the target platforms.

        A platform whose adapter fails or that is not configured maps to
        None; a platform where nothing passed the threshold maps to a
        MatchResult without a chosen track.

        Raises:
            InvalidLinkError: If the link does not point at a track.
            AdapterError: If the source track could not be fetched.
        """
        if link.entity != EntityKind.TRACK:
            raise InvalidLinkError(f"Expected a track link, got {link.entity}")

        converter = self._converter_for(app)
        targets = converter.resolve_targets(link.platform, target_platforms)
        checksum = conversion_checksum(link.platform, link.entity_id, targets, app.id)

        if cached := self._track_cache.get(checksum):
            logger.debug("Track conversion cache hit: %s", checksum[:8])
            return cached

        link = link.model_copy(update={"app": app.id})
        conversion = await asyncio.to_thread(converter.convert, link, targets)
        self._track_cache.put(checksum, conversion)
        return conversion

    async def convert_playlist(
        self,
        link: LinkInfo,
        target_platforms: Iterable[Platform] | None,
        app: DeveloperApp,
    ) -> Task:
        """Start (or look up) the conversion task of a playlist.

        An existing task is returned unchanged unless it failed or was
        cancelled, in which case it is restarted while retries remain.
        Once retries are exhausted the finished task is returned as-is.

        Raises:
            InvalidLinkError: If the link does not point at a playlist.
            TaskStoreError: If the task store is unavailable.
        """
        if link.entity != EntityKind.PLAYLIST:
            raise InvalidLinkError(f"Expected a playlist link, got {link.entity}")

        converter = self._converter_for(app)
        targets = converter.resolve_targets(link.platform, target_platforms)
        checksum = conversion_checksum(link.platform, link.entity_id, targets, app.id)

        task, existed = await asyncio.to_thread(
            self._tracker.get_or_create,
            checksum,
            entity_id=link.entity_id,
            type=TaskType.PLAYLIST_CONVERSION,
            app=app.id,
            short_url=self._new_short_url(),
        )

        try:
            if existed:
                if not task.status.is_retryable:
                    logger.debug("Task %s already %s", task.id[:8], task.status)
                    return task
                # Losers of a concurrent restart get the running task back
                task, restarted = await asyncio.to_thread(
                    self._tracker.restart, task.id
                )
                if not restarted:
                    return task
            else:
                task = await asyncio.to_thread(
                    self._tracker.advance, task.id, TaskStatus.PROCESSING
                )
        except InvalidTransitionError:
            # A concurrent request already started this task
            return await asyncio.to_thread(self._tracker.get, task.id)

        self._launch(task, link, targets, converter, app)
        return task

    async def cancel(self, task_id: str) -> bool:
        """Request cancellation of a task.

        Returns:
            True if the task was flagged, False if it already finished.

        Raises:
            TaskNotFoundError: If no task has the ID.
        """
        requested = await asyncio.to_thread(self._tracker.request_cancel, task_id)
        if token := self._cancel_tokens.get(task_id):
            token.cancel(CANCELLED_BY_REQUEST)
        return requested

    async def join(self) -> None:
        """Wait for every running pipeline to finish."""
        while self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    async def shutdown(self) -> int:
        """Cancel all running pipelines. Used during shutdown.

        Returns:
            Number of pipelines that were cancelled.
        """
        for token in self._cancel_tokens.values():
            token.cancel(SHUTDOWN_REASON)
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Cancelled %d running conversion(s)", len(tasks))
        return len(tasks)

    # -------------------------------------------------------------------------
    # Private: Pipeline
    # -------------------------------------------------------------------------

    def _converter_for(self, app: DeveloperApp) -> TrackConverter:
        return TrackConverter(
            self._registry_factory(app),
            self._matcher,
            max_retries=self._config.adapter_max_retries,
            backoff_seconds=self._config.retry_backoff_seconds,
            sleep=self._sleep,
        )

    def _new_short_url(self) -> str | None:
        if not self._config.short_url_base:
            return None
        return f"{self._config.short_url_base.rstrip('/')}/{short_id()}"

    def _launch(
        self,
        task: Task,
        link: LinkInfo,
        targets: list[Platform],
        converter: TrackConverter,
        app: DeveloperApp,
    ) -> None:
        webhook = self._webhooks.for_app(app) if self._webhooks else None
        self._emitter.start(task.id, [webhook] if webhook else [])

        token = CancelToken()
        self._cancel_tokens[task.id] = token
        background = asyncio.create_task(
            self._run_pipeline(task, link, targets, converter, token),
            name=f"conversion-{task.id[:8]}",
        )
        self._background_tasks.add(background)
        background.add_done_callback(self._background_tasks.discard)

    async def _run_pipeline(
        self,
        task: Task,
        link: LinkInfo,
        targets: list[Platform],
        converter: TrackConverter,
        token: CancelToken,
    ) -> None:
        """Background task that converts a playlist."""
        task_id = task.id
        meta: PlaylistMetadata | None = None
        tracks: list[CandidateTrack] = []
        results: TrackResults = []

        try:
            try:
                meta, tracks = await asyncio.to_thread(converter.fetch_playlist, link)
            except AdapterError as e:
                raise SourceUnavailableError(
                    f"Source playlist unavailable: {e.message}"
                ) from e

            meta = meta.model_copy(
                update={"short_url": task.short_url, "track_count": len(tracks)}
            )
            results = [None] * len(tracks)
            self._emitter.emit_metadata(task_id, link.platform, meta)
            logger.info(
                "Task %s: converting '%s' (%d tracks) to %s",
                task_id[:8],
                meta.title,
                len(tracks),
                ", ".join(targets) or "no platforms",
            )

            await self._convert_tracks(task_id, tracks, targets, converter, token, results)

            if token.is_cancelled:
                reason = token.reason or CANCELLED_BY_REQUEST
                partial = self._aggregate(
                    task, meta, tracks, results, targets, TaskStatus.CANCELLED
                )
                await asyncio.to_thread(
                    self._tracker.advance,
                    task_id,
                    TaskStatus.CANCELLED,
                    result=partial,
                    error=TaskError(kind=ErrorKind.CANCELLED, reason=reason),
                )
                self._emitter.emit_error(task_id, ErrorKind.CANCELLED, reason)
                logger.info("Task %s cancelled", task_id[:8])
                return

            conversion = self._aggregate(
                task, meta, tracks, results, targets, TaskStatus.COMPLETED
            )
            await asyncio.to_thread(
                self._tracker.advance,
                task_id,
                TaskStatus.COMPLETED,
                result=conversion,
            )
            self._emitter.emit_done(task_id, conversion)
            logger.info(
                "Task %s completed: %s",
                task_id[:8],
                ", ".join(
                    f"{p} {r.matched_count}/{len(tracks)}"
                    for p, r in conversion.platforms.items()
                ),
            )

        except SourceUnavailableError as e:
            # No metadata was emitted, so there is no partial result
            kind = (
                ErrorKind.NO_CREDENTIALS
                if isinstance(e.__cause__, NoCredentialsError)
                else ErrorKind.SOURCE_UNAVAILABLE
            )
            logger.warning(
                "Task %s: cannot enumerate %s playlist %s: %s",
                task_id[:8],
                link.platform,
                link.entity_id,
                e.message,
            )
            await self._fail(task_id, kind, e.message)
        except TaskFatalError as e:
            logger.error("Task %s failed: %s", task_id[:8], e.message)
            await self._fail(
                task_id,
                ErrorKind.STORE,
                e.message,
                self._partial(task, meta, tracks, results, targets),
            )
        except InvariantError as e:
            logger.exception("Task %s violated an invariant", task_id[:8])
            await self._fail(
                task_id,
                ErrorKind.INVARIANT,
                e.message,
                self._partial(task, meta, tracks, results, targets),
            )
        except asyncio.CancelledError:
            await self._record_shutdown(task_id)
            raise
        except Exception as e:
            logger.exception("Task %s failed with error: %s", task_id[:8], e)
            await self._fail(
                task_id,
                ErrorKind.INTERNAL,
                str(e),
                self._partial(task, meta, tracks, results, targets),
            )
        finally:
            self._cancel_tokens.pop(task_id, None)

    async def _convert_tracks(
        self,
        task_id: str,
        tracks: list[CandidateTrack],
        targets: list[Platform],
        converter: TrackConverter,
        token: CancelToken,
        results: TrackResults,
    ) -> None:
        """Match every track on every target, filling results by index."""
        pending = iter(enumerate(tracks))

        async def worker() -> None:
            for index, track in pending:
                if await self._should_stop(task_id, token):
                    return
                matches = await asyncio.gather(
                    *(self._match(converter, track, p, token) for p in targets)
                )
                if any(m is None for m in matches):
                    return  # Cancelled mid-track; the track is not recorded
                results[index] = dict(zip(targets, matches, strict=True))
                for platform, match in zip(targets, matches, strict=True):
                    self._emitter.emit_track(task_id, platform, index + 1, match)

        workers = [
            asyncio.create_task(worker())
            for _ in range(min(self._config.max_concurrency, len(tracks)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

    async def _should_stop(self, task_id: str, token: CancelToken) -> bool:
        if token.is_cancelled:
            return True
        if await asyncio.to_thread(self._tracker.is_cancel_requested, task_id):
            token.cancel(CANCELLED_BY_REQUEST)
            return True
        return False

    async def _match(
        self,
        converter: TrackConverter,
        track: CandidateTrack,
        platform: Platform,
        token: CancelToken,
    ) -> MatchResult | None:
        """Match one track on one platform; adapter failures omit the track.

        Returns None if the task was cancelled before the search finished.
        """
        try:
            return await asyncio.to_thread(
                converter.match_on, track, platform, cancel_token=token
            )
        except CancellationError:
            return None
        except AdapterError as e:
            logger.warning(
                "Matching '%s' on %s failed: %s", track.title, platform, e.message
            )
            return MatchResult(source=track, chosen=None, score=0.0, platform=platform)

    def _aggregate(
        self,
        task: Task,
        meta: PlaylistMetadata,
        tracks: list[CandidateTrack],
        results: TrackResults,
        targets: list[Platform],
        status: TaskStatus,
    ) -> PlaylistConversion:
        """Build per-platform results in source playlist order."""
        platforms: dict[Platform, PlatformPlaylistResult] = {}
        omitted_tracks = []
        for platform in targets:
            matched = []
            omitted = []
            for index, per_track in enumerate(results, 1):
                if per_track is None:
                    continue  # Not reached before cancellation
                match = per_track[platform]
                if match.chosen is not None:
                    matched.append(match.chosen)
                else:
                    omitted.append(match.to_omitted(index))
            platforms[platform] = PlatformPlaylistResult(
                tracks=matched,
                length_ms=sum(t.duration_ms or 0 for t in matched),
                omitted=omitted,
            )
            omitted_tracks.extend(omitted)

        return PlaylistConversion(
            unique_id=task.checksum,
            status=status,
            meta=meta,
            platforms=platforms,
            omitted_tracks=omitted_tracks,
            short_url=task.short_url,
        )

    def _partial(
        self,
        task: Task,
        meta: PlaylistMetadata | None,
        tracks: list[CandidateTrack],
        results: TrackResults,
        targets: list[Platform],
    ) -> PlaylistConversion | None:
        if meta is None:
            return None
        return self._aggregate(task, meta, tracks, results, targets, TaskStatus.FAILED)

    async def _fail(
        self,
        task_id: str,
        kind: ErrorKind,
        reason: str,
        partial: PlaylistConversion | None = None,
    ) -> None:
        """Mark a task failed and emit its error event."""
        try:
            await asyncio.to_thread(
                self._tracker.advance,
                task_id,
                TaskStatus.FAILED,
                result=partial,
                error=TaskError(kind=kind, reason=reason),
            )
        except TunelinkError as e:
            logger.error("Task %s: could not record failure: %s", task_id[:8], e.message)

        if self._emitter.is_active(task_id):
            self._emitter.emit_error(task_id, kind, reason)

    async def _record_shutdown(self, task_id: str) -> None:
        """Mark a pipeline interrupted by shutdown as cancelled.

        The store write is shielded so a repeated cancellation cannot drop it.
        """
        write = asyncio.to_thread(
            self._tracker.advance,
            task_id,
            TaskStatus.CANCELLED,
            error=TaskError(kind=ErrorKind.CANCELLED, reason=SHUTDOWN_REASON),
        )
        try:
            await asyncio.shield(write)
        except TunelinkError as e:
            logger.warning("Task %s: could not record shutdown: %s", task_id[:8], e.message)
        if self._emitter.is_active(task_id):
            self._emitter.emit_error(task_id, ErrorKind.CANCELLED, SHUTDOWN_REASON)
