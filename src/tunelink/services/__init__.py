"""Conversion services for tunelink.

Public API:
    TrackConverter - Fetch source entities and match tracks across platforms
"""

from tunelink.services.converter import TrackConverter

__all__ = [
    "TrackConverter",
]
