from playstamp.services.providers.applemusic import AppleMusicAdapter
from playstamp.services.providers.base import (
    ProviderAdapter,
    ProviderError,
    ProviderUnauthorized,
    ProviderUnavailable,
)
from playstamp.services.providers.lastfm import LastFMAdapter
from playstamp.services.providers.plyrfm import PlyrFMAdapter
from playstamp.services.providers.spotify import SpotifyAdapter

__all__ = [
    "AppleMusicAdapter",
    "LastFMAdapter",
    "PlyrFMAdapter",
    "ProviderAdapter",
    "ProviderError",
    "ProviderUnauthorized",
    "ProviderUnavailable",
    "SpotifyAdapter",
]
