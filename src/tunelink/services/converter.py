"""Single-track conversion and the retrying adapter calls it is built on."""

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TypeVar

from tunelink.exceptions import AdapterError, InvalidLinkError, RateLimitedError
from tunelink.lib.checksum import conversion_checksum
from tunelink.lib.matching import Matcher
from tunelink.models.cancel import CancelToken
from tunelink.models.enums import EntityKind, Platform
from tunelink.models.link import LinkInfo
from tunelink.models.results import MatchResult, TrackConversion
from tunelink.models.track import CandidateTrack, PlaylistMetadata, SearchQuery
from tunelink.platforms.base import AdapterRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Upper bound on concurrent platform searches for one track
_MAX_PARALLEL_PLATFORMS = 10


class TrackConverter:
    """Fetches source entities and matches tracks across platforms.

    Every adapter call goes through call_with_retry: retryable AdapterErrors
    are repeated up to max_retries times with exponential backoff, and a
    rate limit's Retry-After is honored when it is longer than the backoff.
    Methods block and are meant to run in worker threads when used from
    async code.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        matcher: Matcher | None = None,
        *,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the converter.

        Args:
            registry: Adapters available to the owning app.
            matcher: Matcher used to pick candidates. Uses defaults if not provided.
            max_retries: Retries for a retryable adapter failure.
            backoff_seconds: Base delay, doubled on every retry.
            sleep: Sleep function, injectable for tests.
        """
        self._registry = registry
        self._matcher = matcher or Matcher()
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    @property
    def registry(self) -> AdapterRegistry:
        return self._registry

    def call_with_retry(
        self,
        platform: Platform,
        fn: Callable[[], T],
        cancel_token: CancelToken | None = None,
    ) -> T:
        """Call an adapter operation, retrying retryable failures.

        The token, if given, is checked before every attempt so a cancelled
        conversion does not sit out the backoff.

        Raises:
            AdapterError: The last failure once retries are exhausted, or the
                first non-retryable failure.
            CancellationError: If the token was cancelled.
        """
        attempt = 0
        while True:
            if cancel_token:
                cancel_token.raise_if_cancelled()
            try:
                return fn()
            except AdapterError as e:
                if not e.retryable or attempt >= self._max_retries:
                    raise
                delay = self._backoff_seconds * 2**attempt
                if isinstance(e, RateLimitedError) and e.retry_after is not None:
                    delay = max(delay, e.retry_after)
                attempt += 1
                logger.info(
                    "%s call failed (%s), retry %d/%d in %.1fs",
                    platform,
                    e.error_code,
                    attempt,
                    self._max_retries,
                    delay,
                )
                self._sleep(delay)

    def resolve_targets(
        self, source: Platform, targets: Iterable[Platform] | None = None
    ) -> list[Platform]:
        """Target platforms for a conversion, in enum order.

        Defaults to every configured platform. The source platform is never
        a target.
        """
        wanted = set(targets) if targets else set(self._registry.platforms)
        return [p for p in Platform if p in wanted and p != source]

    def fetch_track(self, link: LinkInfo) -> CandidateTrack:
        adapter = self._registry.get(link.platform)
        return self.call_with_retry(
            link.platform, lambda: adapter.get_track(link.entity_id)
        )

    def fetch_playlist(
        self, link: LinkInfo
    ) -> tuple[PlaylistMetadata, list[CandidateTrack]]:
        adapter = self._registry.get(link.platform)
        return self.call_with_retry(
            link.platform, lambda: adapter.get_playlist_tracks(link.entity_id)
        )

    def match_on(
        self,
        source: CandidateTrack,
        platform: Platform,
        cancel_token: CancelToken | None = None,
    ) -> MatchResult:
        """Search a platform for the source track and pick the best candidate.

        Raises:
            NoCredentialsError: If the platform is not configured.
            AdapterError: If the search failed after retries.
            CancellationError: If the token was cancelled.
        """
        adapter = self._registry.get(platform)
        query = SearchQuery.from_track(source)
        candidates = self.call_with_retry(
            platform, lambda: adapter.search(query), cancel_token
        )
        return self._matcher.match(source, candidates, platform)

    def match_all(
        self, source: CandidateTrack, targets: list[Platform]
    ) -> dict[Platform, MatchResult | None]:
        """Match the source track on every target concurrently.

        A platform whose adapter fails maps to None; the failure is logged
        and does not affect the other platforms.
        """
        results: dict[Platform, MatchResult | None] = dict.fromkeys(targets)
        runnable = [p for p in targets if p in self._registry]
        if not runnable:
            return results

        workers = min(_MAX_PARALLEL_PLATFORMS, len(runnable))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self.match_on, source, p): p for p in runnable}
            for future in as_completed(futures):
                platform = futures[future]
                try:
                    results[platform] = future.result()
                except AdapterError as e:
                    logger.warning(
                        "Matching '%s' on %s failed: %s", source.title, platform, e
                    )
        return results

    def convert(
        self,
        link: LinkInfo,
        targets: Iterable[Platform] | None = None,
    ) -> TrackConversion:
        """Convert a single track to the target platforms.

        Args:
            link: Parsed track link.
            targets: Target platforms. Defaults to every configured platform.

        Returns:
            The conversion with one entry per target platform.

        Raises:
            InvalidLinkError: If the link does not point at a track.
            AdapterError: If the source track could not be fetched.
        """
        if link.entity != EntityKind.TRACK:
            raise InvalidLinkError(f"Expected a track link, got {link.entity}")

        resolved = self.resolve_targets(link.platform, targets)
        source = self.fetch_track(link)

        logger.debug(
            "Converting '%s' by %s to %s",
            source.title,
            source.artist,
            ", ".join(resolved) or "no platforms",
        )
        return TrackConversion(
            unique_id=conversion_checksum(
                link.platform, link.entity_id, resolved, link.app
            ),
            source_platform=link.platform,
            source=source,
            platforms=self.match_all(source, resolved),
        )
