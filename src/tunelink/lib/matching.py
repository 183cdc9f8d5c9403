"""Candidate scoring for cross-platform track matching.

This module scores search candidates from a target platform against a
source track and picks the best acceptable one. Scoring combines three
components, each in [0, 1]:

- title similarity of the normalized titles (token-set ratio)
- artist overlap: share of source artists found among the candidate artists
- duration proximity within a tolerance window

All fuzzy matching logic is encapsulated here - consumers should use
Matcher.match and the MatchResult it returns rather than working with raw
similarity scores directly. Matching is pure: the same inputs always yield
the same result, regardless of candidate order.
"""

import logging
import math
import re
from dataclasses import dataclass

from rapidfuzz import fuzz
from unidecode import unidecode

from tunelink.config import MatcherConfig
from tunelink.models.enums import Platform
from tunelink.models.results import MatchResult
from tunelink.models.track import CandidateTrack

logger = logging.getLogger(__name__)

# ============================================================================
# PRIVATE CONSTANTS - Thresholds and patterns (not exported)
# ============================================================================

# Two normalized artist names at or above this ratio count as the same artist
_ARTIST_EQUALITY_THRESHOLD = 90

# Decimal places kept on scores so float noise never decides a tie
_SCORE_PRECISION = 6

# (feat. X), [Remastered 2011], (Radio Edit)
_BRACKETED = re.compile(r"\s*[\(\[][^\)\]]*[\)\]]")
# "Song - Remastered 2011", "Song - Radio Edit", "Song - Live at Wembley"
_VERSION_TAIL = re.compile(
    r"\s+-\s+.*\b(?:remaster(?:ed)?|version|edit|mix|live|mono|stereo|acoustic|demo)\b.*$"
)
# "Song feat. X", "Song ft X", "Song featuring X"
_FEATURING_TAIL = re.compile(r"\s+(?:feat\.?|ft\.?|featuring)\s+.*$")
_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
# Separators inside a single artist credit: "A & B", "A, B", "A feat. B", "A x B"
_ARTIST_SEPARATORS = re.compile(r"\s*(?:,|&|;|/|\bx\b|\band\b|\bfeat\.?|\bft\.?|\bfeaturing\b)\s*")


# ============================================================================
# RESULT DATACLASSES - Encapsulate scores with context
# ============================================================================


@dataclass(frozen=True)
class CandidateScore:
    """Score breakdown of one candidate against a source track.

    Attributes:
        candidate: The scored candidate.
        title_similarity: Normalized title similarity (0-1).
        artist_overlap: Share of source artists matched by the candidate (0-1).
        duration_proximity: 1 for equal durations, 0 at or beyond the tolerance.
        duration_delta_ms: Absolute duration difference, or None if unknown.
        score: Weighted total (0-1).
    """

    candidate: CandidateTrack
    title_similarity: float
    artist_overlap: float
    duration_proximity: float
    duration_delta_ms: int | None
    score: float

    def rank_key(self) -> tuple[float, float, float]:
        """Ordering key: score, then artist overlap, then closer duration."""
        delta = math.inf if self.duration_delta_ms is None else self.duration_delta_ms
        return (self.score, self.artist_overlap, -delta)


# ============================================================================
# PUBLIC API - Normalization helpers
# ============================================================================


def _fold(text: str) -> str:
    """Transliterate to ASCII and case-fold."""
    return unidecode(text).casefold().strip()


def _clean(text: str) -> str:
    """Strip punctuation and collapse whitespace."""
    return _WHITESPACE.sub(" ", _PUNCTUATION.sub(" ", text)).strip()


def normalize_title(title: str) -> str:
    """Normalize a title for comparison.

    Transliterates, case-folds, and strips featuring credits, bracketed
    suffixes like "(Radio Edit)", version tails like "- Remastered 2011",
    and punctuation.

    Args:
        title: Original track title.

    Returns:
        Normalized title. Falls back to the punctuation-stripped title when
        stripping suffixes would leave nothing.
    """
    folded = _fold(title)
    stripped = _BRACKETED.sub(" ", folded)
    stripped = _VERSION_TAIL.sub("", stripped)
    stripped = _FEATURING_TAIL.sub("", stripped)
    return _clean(stripped) or _clean(folded)


def normalize_artists(artists: list[str]) -> frozenset[str]:
    """Normalize artist credits into a set of individual artist names.

    Multi-artist credits such as "A & B" or "A feat. B" are split so that
    platforms which credit artists differently still overlap.
    """
    names: set[str] = set()
    for credit in artists:
        for part in _ARTIST_SEPARATORS.split(_fold(credit)):
            if name := _clean(part):
                names.add(name)
    return frozenset(names)


def title_similarity(source: str, candidate: str) -> float:
    """Token-set similarity of two normalized titles (0-1)."""
    a, b = normalize_title(source), normalize_title(candidate)
    if not a or not b:
        return 0.0
    return fuzz.token_set_ratio(a, b) / 100


def artist_overlap(source: list[str], candidate: list[str]) -> float:
    """Share of source artists that appear among the candidate artists (0-1)."""
    source_set = normalize_artists(source)
    candidate_set = normalize_artists(candidate)
    if not source_set or not candidate_set:
        return 0.0

    matched = sum(
        1
        for s in source_set
        if any(fuzz.ratio(s, c) >= _ARTIST_EQUALITY_THRESHOLD for c in candidate_set)
    )
    return matched / len(source_set)


# ============================================================================
# PUBLIC API - Matcher
# ============================================================================


class Matcher:
    """Scores candidates against a source track and selects the best match.

    Selection takes the highest score at or above the acceptance threshold.
    Ties are broken by higher artist overlap, then closer duration, then
    first-seen order.
    """

    def __init__(self, config: MatcherConfig | None = None) -> None:
        self._config = config or MatcherConfig()

    @property
    def config(self) -> MatcherConfig:
        return self._config

    def score(self, source: CandidateTrack, candidate: CandidateTrack) -> CandidateScore:
        """Score one candidate against the source track."""
        cfg = self._config

        title = title_similarity(source.title, candidate.title)
        artists = artist_overlap(source.artists, candidate.artists)

        delta: int | None = None
        proximity = 0.0
        if source.duration_ms is not None and candidate.duration_ms is not None:
            delta = abs(source.duration_ms - candidate.duration_ms)
            proximity = max(0.0, 1.0 - delta / cfg.duration_tolerance_ms)

        total_weight = cfg.title_weight + cfg.artist_weight + cfg.duration_weight
        weighted = (
            cfg.title_weight * title
            + cfg.artist_weight * artists
            + cfg.duration_weight * proximity
        ) / total_weight

        return CandidateScore(
            candidate=candidate,
            title_similarity=title,
            artist_overlap=artists,
            duration_proximity=proximity,
            duration_delta_ms=delta,
            score=round(weighted, _SCORE_PRECISION),
        )

    def match(
        self,
        source: CandidateTrack,
        candidates: list[CandidateTrack],
        platform: Platform,
    ) -> MatchResult:
        """Pick the best acceptable candidate for a source track.

        Args:
            source: The track being converted.
            candidates: Search results from the target platform.
            platform: Target platform the candidates came from.

        Returns:
            MatchResult with the chosen candidate, or with chosen=None and the
            best score seen when no candidate reaches the threshold.
        """
        if not candidates:
            return MatchResult(source=source, chosen=None, score=0.0, platform=platform)

        # max() keeps the first-seen candidate on a full tie
        scores = [self.score(source, candidate) for candidate in candidates]
        best = max(scores, key=CandidateScore.rank_key)

        if best.score < self._config.threshold:
            logger.debug(
                "No match on %s for '%s' (best %.3f: '%s')",
                platform,
                source.title,
                best.score,
                best.candidate.title,
            )
            return MatchResult(
                source=source, chosen=None, score=best.score, platform=platform
            )

        return MatchResult(
            source=source, chosen=best.candidate, score=best.score, platform=platform
        )
