from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping
from uuid import UUID

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from filiacao.core.config import Settings, get_settings
from filiacao.core.errors import ConfigurationError, FiliacaoError, InvalidOperationError, UnauthorizedError
from filiacao.core.logging_setup import logger
from filiacao.models.proposal import Person, Proposal
from filiacao.models.social import SocialAccount, SocialProvider
from filiacao.services.audit import AuditService
from filiacao.services.crypto import CryptoService
from filiacao.services.oauth import PROVIDER_CLASSES, OAuthHttpClient, OAuthProvider, OAuthState, ProviderConfig
from filiacao.services.oauth.state import now_ms, sign_state, verify_state
from filiacao.utils.urls import with_query

_REASON_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")

PROFILE_AUDIT_FIELDS = (
    "id",
    "name",
    "username",
    "title",
    "followers",
    "subscribers",
    "views",
    "videos",
    "mediaCount",
)


def sanitize_profile(profile: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Mantém apenas os campos públicos do perfil que podem ir para a auditoria."""
    if not isinstance(profile, Mapping):
        return None
    return {key: profile[key] for key in PROFILE_AUDIT_FIELDS if key in profile}


def parse_provider(value: str) -> SocialProvider:
    try:
        return SocialProvider((value or "").strip().upper())
    except ValueError as exc:
        raise InvalidOperationError("Provider invalido") from exc


@dataclass
class CallbackResult:
    ok: bool
    redirect_url: str
    reason: str | None = None


class SocialOAuthService:
    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        http: OAuthHttpClient | None = None,
        crypto: CryptoService | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.http = http or OAuthHttpClient()
        self.crypto = crypto or CryptoService(self.settings)
        self.audit = AuditService(session)

    def provider_for(self, provider: SocialProvider) -> OAuthProvider:
        credentials = self.settings.oauth_credentials(provider.value)
        if not credentials:
            raise ConfigurationError("Integracao nao configurada")
        client_id, client_secret, redirect_uri = credentials
        config = ProviderConfig(client_id=client_id, client_secret=client_secret, redirect_uri=redirect_uri)
        return PROVIDER_CLASSES[provider](config, self.http)

    def build_authorize_url(self, provider_raw: str, proposal_id: UUID, token: str) -> str:
        provider = parse_provider(provider_raw)
        proposal = self.session.get(Proposal, proposal_id)
        if not proposal or proposal.public_token != token:
            raise UnauthorizedError("Token invalido")

        client = self.provider_for(provider)
        state = sign_state(
            OAuthState(provider=provider.value, proposal_id=str(proposal.id), issued_at=now_ms()),
            self._state_secret(),
        )
        return client.build_authorize_url(state)

    def handle_callback(
        self,
        provider_raw: str,
        *,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        now: int | None = None,
    ) -> CallbackResult:
        if error:
            return self._failure(error if _REASON_PATTERN.match(error) else "oauth_failed")
        try:
            provider = parse_provider(provider_raw)
        except InvalidOperationError:
            return self._failure("invalid_provider")
        if not code or not state:
            return self._failure("missing_code")

        try:
            payload = verify_state(state, self._state_secret(), ttl_minutes=self.settings.social_state_ttl_minutes, now=now)
        except ConfigurationError:
            payload = None
        if not payload:
            return self._failure("invalid_state")
        if payload.provider != provider.value:
            return self._failure("invalid_provider")

        proposal, person = self._proposal_with_person(payload.proposal_id)
        if not proposal or not person:
            return self._failure("proposal_not_found")

        try:
            self._link_account(provider, proposal, person, code)
        except (FiliacaoError, httpx.HTTPError, SQLAlchemyError) as exc:
            self.session.rollback()
            logger.warning(
                "social.callback_failed",
                extra={"provider": provider.value, "proposal_id": str(proposal.id), "error_type": type(exc).__name__},
            )
            return self._failure("oauth_failed")

        return CallbackResult(ok=True, redirect_url=self._success_redirect(proposal))

    def disconnect(self, provider_raw: str, proposal_id: UUID, token: str) -> None:
        provider = parse_provider(provider_raw)
        proposal = self.session.get(Proposal, proposal_id)
        person = self._person(proposal.id) if proposal else None
        if not proposal or not person or proposal.public_token != token:
            raise UnauthorizedError("Token invalido")

        for account in self._accounts(person.id, provider):
            self.session.delete(account)
        self.audit.add_event(
            "SOCIAL_DISCONNECT",
            entity_type="Proposal",
            entity_id=proposal.id,
            proposal_id=proposal.id,
            details={"provider": provider.value},
        )
        self.session.commit()
        logger.info("social.disconnected", extra={"provider": provider.value, "proposal_id": str(proposal.id)})

    def _link_account(self, provider: SocialProvider, proposal: Proposal, person: Person, code: str) -> SocialAccount:
        client = self.provider_for(provider)
        token = client.exchange_code(code)

        # Perfil é opcional: qualquer falha na busca ou no formato da resposta mantém o vínculo.
        try:
            profile = client.fetch_profile(token.access_token)
        except Exception as exc:
            logger.warning(
                "social.profile_failed",
                extra={"provider": provider.value, "proposal_id": str(proposal.id), "error_type": type(exc).__name__},
            )
            profile = None

        fetched_at = datetime.now(timezone.utc)
        meta = {
            "scope": token.scope,
            "tokenType": token.token_type,
            "expiresAt": (fetched_at + timedelta(seconds=token.expires_in)).isoformat() if token.expires_in else None,
            "fetchedAt": fetched_at.isoformat(),
            "profile": profile,
        }

        for existing in self._accounts(person.id, provider):
            self.session.delete(existing)
        self.session.flush()

        account = SocialAccount(
            person_id=person.id,
            provider=provider,
            access_token_encrypted=self.crypto.encrypt(token.access_token),
            refresh_token_encrypted=self.crypto.encrypt(token.refresh_token) if token.refresh_token else None,
            token_meta=meta,
        )
        self.session.add(account)
        self.audit.add_event(
            "SOCIAL_CONNECT",
            entity_type="Proposal",
            entity_id=proposal.id,
            proposal_id=proposal.id,
            details={"provider": provider.value, "profile": sanitize_profile(profile)},
        )
        self.session.commit()
        self.session.refresh(account)
        logger.info("social.connected", extra={"provider": provider.value, "proposal_id": str(proposal.id)})
        return account

    def _proposal_with_person(self, proposal_id: str) -> tuple[Proposal | None, Person | None]:
        try:
            proposal = self.session.get(Proposal, UUID(proposal_id))
        except ValueError:
            return None, None
        if not proposal:
            return None, None
        return proposal, self._person(proposal.id)

    def _person(self, proposal_id: UUID) -> Person | None:
        return self.session.exec(select(Person).where(Person.proposal_id == proposal_id)).first()

    def _accounts(self, person_id: UUID, provider: SocialProvider) -> list[SocialAccount]:
        return list(
            self.session.exec(
                select(SocialAccount).where(SocialAccount.person_id == person_id, SocialAccount.provider == provider)
            ).all()
        )

    def _state_secret(self) -> str:
        secret = self.settings.social_oauth_state_secret
        if not secret:
            raise ConfigurationError("SOCIAL_OAUTH_STATE_SECRET nao configurado")
        return secret

    def _failure(self, reason: str) -> CallbackResult:
        base = self.settings.social_redirect_error_url
        if base:
            url = with_query(base, {"erro": reason})
        else:
            url = with_query("/acompanhar", {"erro": reason})
        return CallbackResult(ok=False, redirect_url=url, reason=reason)

    def _success_redirect(self, proposal: Proposal) -> str:
        base = self.settings.social_redirect_success_url or self.settings.public_tracking_base_url or "/acompanhar"
        return with_query(
            base,
            {"protocolo": proposal.protocol, "protocol": proposal.protocol, "token": proposal.public_token},
        )
