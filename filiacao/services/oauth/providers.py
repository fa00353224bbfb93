from __future__ import annotations

from typing import Any

from filiacao.core.errors import ExternalServiceError
from filiacao.core.logging_setup import logger
from filiacao.models.social import SocialProvider
from filiacao.services.oauth.base import OAuthProvider, TokenResponse

FACEBOOK_GRAPH_VERSION = "v18.0"


class SpotifyProvider(OAuthProvider):
    provider = SocialProvider.SPOTIFY
    authorize_endpoint = "https://accounts.spotify.com/authorize"
    token_endpoint = "https://accounts.spotify.com/api/token"
    scopes = ("user-read-email", "user-read-private", "user-top-read")

    def exchange_code(self, code: str) -> TokenResponse:
        payload = self.http.request_json(
            "POST",
            self.token_endpoint,
            data={"grant_type": "authorization_code", "code": code, "redirect_uri": self.config.redirect_uri},
            auth=(self.config.client_id, self.config.client_secret),
        )
        return TokenResponse.from_payload(payload)

    def fetch_profile(self, access_token: str) -> dict[str, Any] | None:
        profile = self.http.request_json("GET", "https://api.spotify.com/v1/me", headers=self._bearer(access_token))

        try:
            top = self.http.request_json(
                "GET",
                "https://api.spotify.com/v1/me/top/tracks",
                params={"limit": 5},
                headers=self._bearer(access_token),
            )
            items = top.get("items") if isinstance(top.get("items"), list) else []
            top_tracks = [
                {
                    "id": track.get("id"),
                    "name": track.get("name"),
                    "popularity": track.get("popularity"),
                    "artists": [artist.get("name") for artist in track.get("artists") or []],
                }
                for track in items
            ]
        except ExternalServiceError:
            top_tracks = []

        return {
            "id": profile.get("id"),
            "name": profile.get("display_name"),
            "email": profile.get("email"),
            "followers": (profile.get("followers") or {}).get("total"),
            "url": (profile.get("external_urls") or {}).get("spotify"),
            "topTracks": top_tracks,
        }


class YouTubeProvider(OAuthProvider):
    provider = SocialProvider.YOUTUBE
    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    scopes = (
        "https://www.googleapis.com/auth/youtube.readonly",
        "https://www.googleapis.com/auth/youtube.force-ssl",
    )
    authorize_params = {"access_type": "offline", "prompt": "consent", "include_granted_scopes": "true"}

    def exchange_code(self, code: str) -> TokenResponse:
        payload = self.http.request_json(
            "POST",
            self.token_endpoint,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
        )
        return TokenResponse.from_payload(payload)

    def fetch_profile(self, access_token: str) -> dict[str, Any] | None:
        data = self.http.request_json(
            "GET",
            "https://www.googleapis.com/youtube/v3/channels",
            params={"part": "snippet,statistics", "mine": "true"},
            headers=self._bearer(access_token),
        )
        items = data.get("items") if isinstance(data.get("items"), list) else []
        item = items[0] if items else {}
        snippet = item.get("snippet") or {}
        statistics = item.get("statistics") or {}
        return {
            "id": item.get("id"),
            "title": snippet.get("title"),
            "description": snippet.get("description"),
            "url": snippet.get("customUrl"),
            "subscribers": statistics.get("subscriberCount"),
            "views": statistics.get("viewCount"),
            "videos": statistics.get("videoCount"),
        }


class FacebookProvider(OAuthProvider):
    provider = SocialProvider.FACEBOOK
    authorize_endpoint = f"https://www.facebook.com/{FACEBOOK_GRAPH_VERSION}/dialog/oauth"
    token_endpoint = f"https://graph.facebook.com/{FACEBOOK_GRAPH_VERSION}/oauth/access_token"
    scopes = ("public_profile", "pages_show_list", "pages_read_engagement")
    scope_separator = ","

    def exchange_code(self, code: str) -> TokenResponse:
        # A Graph API troca o código via GET com as credenciais na query.
        payload = self.http.request_json(
            "GET",
            self.token_endpoint,
            params={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "redirect_uri": self.config.redirect_uri,
                "code": code,
            },
        )
        token = TokenResponse.from_payload(payload)
        token.refresh_token = None
        token.scope = None
        return token

    def fetch_profile(self, access_token: str) -> dict[str, Any] | None:
        graph = f"https://graph.facebook.com/{FACEBOOK_GRAPH_VERSION}"
        profile = self.http.request_json("GET", f"{graph}/me", params={"fields": "id,name"}, headers=self._bearer(access_token))

        try:
            accounts = self.http.request_json(
                "GET",
                f"{graph}/me/accounts",
                params={"fields": "id,name,fan_count,followers_count"},
                headers=self._bearer(access_token),
            )
            pages = accounts.get("data") if isinstance(accounts.get("data"), list) else []
        except ExternalServiceError:
            pages = []

        return {"id": profile.get("id"), "name": profile.get("name"), "pages": pages}


class InstagramProvider(OAuthProvider):
    provider = SocialProvider.INSTAGRAM
    authorize_endpoint = "https://api.instagram.com/oauth/authorize"
    token_endpoint = "https://api.instagram.com/oauth/access_token"
    long_lived_endpoint = "https://graph.instagram.com/access_token"
    scopes = ("instagram_basic",)
    scope_separator = ","

    def exchange_code(self, code: str) -> TokenResponse:
        payload = self.http.request_json(
            "POST",
            self.token_endpoint,
            data={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "grant_type": "authorization_code",
                "redirect_uri": self.config.redirect_uri,
                "code": code,
            },
        )
        short_lived = TokenResponse.from_payload(payload)
        long_lived = self._exchange_long_lived(short_lived.access_token)
        return TokenResponse(
            access_token=long_lived.get("access_token") or short_lived.access_token,
            expires_in=long_lived.get("expires_in") or short_lived.expires_in,
            token_type=short_lived.token_type,
        )

    def _exchange_long_lived(self, access_token: str) -> dict[str, Any]:
        try:
            return self.http.request_json(
                "GET",
                self.long_lived_endpoint,
                params={
                    "grant_type": "ig_exchange_token",
                    "client_secret": self.config.client_secret,
                    "access_token": access_token,
                },
            )
        except ExternalServiceError:
            logger.info("social.instagram.long_lived_unavailable")
            return {}

    def fetch_profile(self, access_token: str) -> dict[str, Any] | None:
        profile = self.http.request_json(
            "GET",
            "https://graph.instagram.com/me",
            params={"fields": "id,username,account_type,media_count", "access_token": access_token},
        )
        return {
            "id": profile.get("id"),
            "username": profile.get("username"),
            "accountType": profile.get("account_type"),
            "mediaCount": profile.get("media_count"),
        }


PROVIDER_CLASSES: dict[SocialProvider, type[OAuthProvider]] = {
    SocialProvider.SPOTIFY: SpotifyProvider,
    SocialProvider.YOUTUBE: YouTubeProvider,
    SocialProvider.FACEBOOK: FacebookProvider,
    SocialProvider.INSTAGRAM: InstagramProvider,
}
