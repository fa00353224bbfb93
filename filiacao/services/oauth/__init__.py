from filiacao.services.oauth.base import OAuthHttpClient, OAuthProvider, ProviderConfig, TokenResponse
from filiacao.services.oauth.providers import (
    PROVIDER_CLASSES,
    FacebookProvider,
    InstagramProvider,
    SpotifyProvider,
    YouTubeProvider,
)
from filiacao.services.oauth.state import OAuthState, sign_state, verify_state

__all__ = [
    "OAuthHttpClient",
    "OAuthProvider",
    "ProviderConfig",
    "TokenResponse",
    "PROVIDER_CLASSES",
    "FacebookProvider",
    "InstagramProvider",
    "SpotifyProvider",
    "YouTubeProvider",
    "OAuthState",
    "sign_state",
    "verify_state",
]
