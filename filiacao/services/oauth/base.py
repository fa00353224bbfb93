from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

import httpx

from filiacao.core.errors import ExternalServiceError
from filiacao.models.social import SocialProvider
from filiacao.utils.urls import with_query


@dataclass(frozen=True)
class ProviderConfig:
    client_id: str
    client_secret: str
    redirect_uri: str


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    token_type: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TokenResponse":
        access_token = payload.get("access_token")
        if not access_token:
            raise ExternalServiceError("missing_access_token")
        expires_in = payload.get("expires_in")
        return cls(
            access_token=str(access_token),
            refresh_token=payload.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
            scope=payload.get("scope"),
            token_type=payload.get("token_type"),
        )


class OAuthHttpClient:
    """Chamadas JSON aos provedores; erros HTTP viram ExternalServiceError sem o corpo da resposta."""

    def __init__(self, client: httpx.Client | None = None, *, timeout_seconds: float = 10.0) -> None:
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def request_json(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = self._client.request(method, url, params=params, data=data, headers=headers, auth=auth)
        except httpx.RequestError as exc:
            raise ExternalServiceError("OAuth provider unreachable", details={"url": url}) from exc

        if response.status_code >= 400:
            raise ExternalServiceError(
                "OAuth request failed",
                details={"url": url},
                status_code=response.status_code,
            )
        try:
            payload = response.json() if response.content else {}
        except ValueError:
            payload = {}
        return payload if isinstance(payload, dict) else {}

    def close(self) -> None:
        self._client.close()


class OAuthProvider:
    """Interface comum; cada provedor declara URLs e escopos e implementa troca de código e perfil."""

    provider: ClassVar[SocialProvider]
    authorize_endpoint: ClassVar[str]
    token_endpoint: ClassVar[str]
    scopes: ClassVar[tuple[str, ...]] = ()
    scope_separator: ClassVar[str] = " "
    authorize_params: ClassVar[dict[str, str]] = {}

    def __init__(self, config: ProviderConfig, http: OAuthHttpClient) -> None:
        self.config = config
        self.http = http

    def build_authorize_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": self.scope_separator.join(self.scopes),
            "state": state,
            **self.authorize_params,
        }
        return with_query(self.authorize_endpoint, params)

    def exchange_code(self, code: str) -> TokenResponse:
        raise NotImplementedError

    def fetch_profile(self, access_token: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def _bearer(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}
