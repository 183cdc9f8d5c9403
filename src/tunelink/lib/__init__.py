"""Shared matching and hashing helpers."""

from tunelink.lib.checksum import conversion_checksum, short_id
from tunelink.lib.matching import CandidateScore, Matcher, normalize_title

__all__ = [
    "CandidateScore",
    "Matcher",
    "conversion_checksum",
    "normalize_title",
    "short_id",
]
