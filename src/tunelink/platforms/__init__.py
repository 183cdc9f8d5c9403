"""Platform adapters.

Public API:
    PlatformAdapter - Protocol every adapter implements
    AdapterRegistry - Adapters available to one developer app
    DEFAULT_FACTORIES - Adapter constructors keyed by platform
"""

from tunelink.models.enums import Platform
from tunelink.platforms.applemusic import AppleMusicAdapter, create_applemusic_adapter
from tunelink.platforms.base import (
    AdapterFactory,
    AdapterRegistry,
    HttpAdapter,
    PlatformAdapter,
    require_credentials,
)
from tunelink.platforms.deezer import DeezerAdapter, create_deezer_adapter
from tunelink.platforms.spotify import SpotifyAdapter, create_spotify_adapter
from tunelink.platforms.tidal import TidalAdapter, create_tidal_adapter
from tunelink.platforms.ytmusic import YTMusicAdapter, create_ytmusic_adapter

DEFAULT_FACTORIES: dict[Platform, AdapterFactory] = {
    Platform.SPOTIFY: create_spotify_adapter,
    Platform.DEEZER: create_deezer_adapter,
    Platform.TIDAL: create_tidal_adapter,
    Platform.APPLE_MUSIC: create_applemusic_adapter,
    Platform.YTMUSIC: create_ytmusic_adapter,
}

__all__ = [
    "DEFAULT_FACTORIES",
    "AdapterFactory",
    "AdapterRegistry",
    "AppleMusicAdapter",
    "DeezerAdapter",
    "HttpAdapter",
    "PlatformAdapter",
    "SpotifyAdapter",
    "TidalAdapter",
    "YTMusicAdapter",
    "require_credentials",
]
