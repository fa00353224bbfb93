from urllib.parse import parse_qs, urlsplit
from uuid import uuid4

import pytest
from sqlmodel import Session, select

from filiacao.core.errors import ConfigurationError, InvalidOperationError, UnauthorizedError
from filiacao.models.audit import AuditLog
from filiacao.models.social import SocialAccount, SocialProvider
from filiacao.services.crypto import CryptoService
from filiacao.services.oauth import OAuthHttpClient, OAuthState, sign_state, verify_state
from filiacao.services.oauth.state import now_ms
from filiacao.services.social import SocialOAuthService, parse_provider, sanitize_profile
from tests.conftest import STATE_SECRET, ProviderStub, create_proposal

SPOTIFY_TOKEN = "https://accounts.spotify.com/api/token"
SPOTIFY_ME = "https://api.spotify.com/v1/me"


@pytest.fixture()
def service(db_session: Session, settings, oauth_http: OAuthHttpClient, crypto: CryptoService) -> SocialOAuthService:  # type: ignore[no-untyped-def]
    return SocialOAuthService(db_session, settings=settings, http=oauth_http, crypto=crypto)


@pytest.fixture()
def proposal(db_session: Session, crypto: CryptoService):  # type: ignore[no-untyped-def]
    return create_proposal(db_session, crypto)


def _state(provider: str, proposal_id, issued_at: int | None = None) -> str:  # type: ignore[no-untyped-def]
    return sign_state(
        OAuthState(provider=provider, proposal_id=str(proposal_id), issued_at=issued_at or now_ms()),
        STATE_SECRET,
    )


def _query(url: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(url).query)


def _stub_spotify(provider_stub: ProviderStub, *, profile: bool = True) -> None:
    provider_stub.add(
        SPOTIFY_TOKEN,
        {"access_token": "spotify-at", "refresh_token": "spotify-rt", "expires_in": 3600, "token_type": "Bearer"},
    )
    if profile:
        provider_stub.add(
            SPOTIFY_ME,
            {
                "id": "sp-1",
                "display_name": "Maria",
                "email": "maria@example.com",
                "followers": {"total": 12},
                "external_urls": {"spotify": "https://open.spotify.com/user/sp-1"},
            },
        )


def test_state_round_trip_and_tamper() -> None:
    issued = now_ms()
    token = sign_state(OAuthState(provider="SPOTIFY", proposal_id="p-1", issued_at=issued), STATE_SECRET)

    state = verify_state(token, STATE_SECRET, ttl_minutes=20, now=issued + 1000)
    assert state == OAuthState(provider="SPOTIFY", proposal_id="p-1", issued_at=issued)

    encoded, _, signature = token.partition(".")
    assert verify_state(f"{encoded}.{'0' * len(signature)}", STATE_SECRET, ttl_minutes=20) is None
    assert verify_state(token, "outro-segredo", ttl_minutes=20) is None
    assert verify_state("sem-ponto", STATE_SECRET, ttl_minutes=20) is None
    assert verify_state(f"\u00e9{encoded}.{signature}", STATE_SECRET, ttl_minutes=20) is None
    assert verify_state(f"{encoded}.\u00e9{signature[1:]}", STATE_SECRET, ttl_minutes=20) is None
    assert verify_state(token, STATE_SECRET, ttl_minutes=20, now=issued + 21 * 60 * 1000) is None


def test_sanitize_profile_keeps_only_public_fields() -> None:
    profile = {"id": "1", "name": "Maria", "email": "maria@example.com", "followers": 3, "topTracks": []}

    assert sanitize_profile(profile) == {"id": "1", "name": "Maria", "followers": 3}
    assert sanitize_profile(None) is None


def test_parse_provider() -> None:
    assert parse_provider(" spotify ") == SocialProvider.SPOTIFY
    with pytest.raises(InvalidOperationError, match="Provider invalido"):
        parse_provider("tiktok")


def test_authorize_url_carries_signed_state(service: SocialOAuthService, proposal) -> None:  # type: ignore[no-untyped-def]
    url = service.build_authorize_url("spotify", proposal.id, proposal.public_token)

    assert url.startswith("https://accounts.spotify.com/authorize?")
    query = _query(url)
    assert query["client_id"] == ["spotify-id"]
    assert query["response_type"] == ["code"]
    assert query["scope"] == ["user-read-email user-read-private user-top-read"]
    state = verify_state(query["state"][0], STATE_SECRET, ttl_minutes=20)
    assert state.provider == "SPOTIFY"
    assert state.proposal_id == str(proposal.id)


def test_instagram_authorize_url_uses_comma_scopes(service: SocialOAuthService, proposal) -> None:  # type: ignore[no-untyped-def]
    url = service.build_authorize_url("INSTAGRAM", proposal.id, proposal.public_token)

    assert _query(url)["scope"] == ["instagram_basic"]
    assert url.startswith("https://api.instagram.com/oauth/authorize?")


def test_authorize_requires_token_and_configuration(service: SocialOAuthService, proposal) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(UnauthorizedError):
        service.build_authorize_url("spotify", proposal.id, "token-errado")
    with pytest.raises(UnauthorizedError):
        service.build_authorize_url("spotify", uuid4(), proposal.public_token)
    with pytest.raises(ConfigurationError, match="Integracao nao configurada"):
        service.build_authorize_url("youtube", proposal.id, proposal.public_token)


def test_expired_state_redirects_with_invalid_state(
    service: SocialOAuthService, db_session: Session, proposal, provider_stub: ProviderStub
) -> None:  # type: ignore[no-untyped-def]
    _stub_spotify(provider_stub)
    expired = _state("SPOTIFY", proposal.id, issued_at=now_ms() - 21 * 60 * 1000)

    result = service.handle_callback("spotify", code="abc", state=expired)

    assert result.ok is False
    assert result.redirect_url == "https://filiacao.example.com/social/erro?erro=invalid_state"
    assert db_session.exec(select(SocialAccount)).all() == []
    assert provider_stub.requests == []


@pytest.mark.parametrize(
    ("provider", "kwargs", "reason"),
    [
        ("spotify", {"error": "access_denied"}, "access_denied"),
        ("spotify", {"error": "<script>alert(1)</script>"}, "oauth_failed"),
        ("tiktok", {"code": "abc", "state": "x.y"}, "invalid_provider"),
        ("spotify", {"state": "x.y"}, "missing_code"),
        ("spotify", {"code": "abc", "state": "x.y"}, "invalid_state"),
        ("spotify", {"code": "abc", "state": "\u00e9abc.deadbeef"}, "invalid_state"),
        ("spotify", {"code": "abc", "state": "sem-assinatura"}, "invalid_state"),
    ],
)
def test_callback_failures_map_to_reason_codes(
    service: SocialOAuthService, provider: str, kwargs: dict, reason: str
) -> None:
    result = service.handle_callback(provider, **kwargs)

    assert result.ok is False
    assert result.reason == reason
    assert _query(result.redirect_url) == {"erro": [reason]}


def test_callback_rejects_state_for_other_provider(service: SocialOAuthService, proposal) -> None:  # type: ignore[no-untyped-def]
    result = service.handle_callback("instagram", code="abc", state=_state("SPOTIFY", proposal.id))

    assert result.reason == "invalid_provider"


def test_callback_with_unknown_proposal(service: SocialOAuthService) -> None:
    result = service.handle_callback("spotify", code="abc", state=_state("SPOTIFY", uuid4()))

    assert result.reason == "proposal_not_found"


def test_successful_callback_links_account(
    service: SocialOAuthService,
    db_session: Session,
    proposal,
    provider_stub: ProviderStub,
    crypto: CryptoService,
) -> None:  # type: ignore[no-untyped-def]
    _stub_spotify(provider_stub)

    result = service.handle_callback("spotify", code="abc", state=_state("SPOTIFY", proposal.id))

    assert result.ok is True
    query = _query(result.redirect_url)
    assert result.redirect_url.startswith("https://filiacao.example.com/social/ok?")
    assert query["protocolo"] == [proposal.protocol]
    assert query["token"] == [proposal.public_token]

    account = db_session.exec(select(SocialAccount)).one()
    assert account.provider == SocialProvider.SPOTIFY
    assert crypto.decrypt(account.access_token_encrypted) == "spotify-at"
    assert crypto.decrypt(account.refresh_token_encrypted) == "spotify-rt"
    assert account.token_meta["profile"]["topTracks"] == []
    assert account.token_meta["expiresAt"] is not None

    audit = db_session.exec(select(AuditLog).where(AuditLog.action == "SOCIAL_CONNECT")).one()
    assert audit.details == {"provider": "SPOTIFY", "profile": {"id": "sp-1", "name": "Maria", "followers": 12}}
    assert "spotify-at" not in str(audit.details)

    token_request = provider_stub.requests[0]
    assert token_request.method == "POST"
    assert token_request.headers["Authorization"].startswith("Basic ")


def test_callback_replaces_existing_account(
    service: SocialOAuthService, db_session: Session, proposal, provider_stub: ProviderStub
) -> None:  # type: ignore[no-untyped-def]
    _stub_spotify(provider_stub)

    service.handle_callback("spotify", code="abc", state=_state("SPOTIFY", proposal.id))
    service.handle_callback("spotify", code="def", state=_state("SPOTIFY", proposal.id))

    assert len(db_session.exec(select(SocialAccount)).all()) == 1


def test_profile_failure_still_links(
    service: SocialOAuthService, db_session: Session, proposal, provider_stub: ProviderStub
) -> None:  # type: ignore[no-untyped-def]
    _stub_spotify(provider_stub, profile=False)

    result = service.handle_callback("spotify", code="abc", state=_state("SPOTIFY", proposal.id))

    assert result.ok is True
    account = db_session.exec(select(SocialAccount)).one()
    assert account.token_meta["profile"] is None


def test_token_exchange_failure_redirects_without_provider_body(
    service: SocialOAuthService, db_session: Session, proposal, provider_stub: ProviderStub
) -> None:  # type: ignore[no-untyped-def]
    provider_stub.add(SPOTIFY_TOKEN, {"error": "invalid_grant", "error_description": "segredo interno"}, status_code=400)

    result = service.handle_callback("spotify", code="abc", state=_state("SPOTIFY", proposal.id))

    assert result.reason == "oauth_failed"
    assert "invalid_grant" not in result.redirect_url
    assert db_session.exec(select(SocialAccount)).all() == []


def test_instagram_uses_long_lived_token(
    service: SocialOAuthService,
    db_session: Session,
    proposal,
    provider_stub: ProviderStub,
    crypto: CryptoService,
) -> None:  # type: ignore[no-untyped-def]
    provider_stub.add("https://api.instagram.com/oauth/access_token", {"access_token": "short-lived", "user_id": 7})
    provider_stub.add("https://graph.instagram.com/access_token", {"access_token": "long-lived", "expires_in": 5184000})
    provider_stub.add(
        "https://graph.instagram.com/me",
        {"id": "7", "username": "maria.musica", "account_type": "CREATOR", "media_count": 30},
    )

    result = service.handle_callback("instagram", code="abc", state=_state("INSTAGRAM", proposal.id))

    assert result.ok is True
    account = db_session.exec(select(SocialAccount)).one()
    assert crypto.decrypt(account.access_token_encrypted) == "long-lived"
    audit = db_session.exec(select(AuditLog).where(AuditLog.action == "SOCIAL_CONNECT")).one()
    assert audit.details["profile"] == {"id": "7", "username": "maria.musica", "mediaCount": 30}


def test_disconnect_removes_account(
    service: SocialOAuthService, db_session: Session, proposal, provider_stub: ProviderStub
) -> None:  # type: ignore[no-untyped-def]
    _stub_spotify(provider_stub)
    service.handle_callback("spotify", code="abc", state=_state("SPOTIFY", proposal.id))

    with pytest.raises(UnauthorizedError):
        service.disconnect("spotify", proposal.id, "token-errado")

    service.disconnect("spotify", proposal.id, proposal.public_token)

    assert db_session.exec(select(SocialAccount)).all() == []
    actions = [log.action for log in db_session.exec(select(AuditLog)).all()]
    assert sorted(actions) == ["SOCIAL_CONNECT", "SOCIAL_DISCONNECT"]


def test_unexpected_profile_shape_still_links(
    service: SocialOAuthService, db_session: Session, proposal, provider_stub: ProviderStub
) -> None:  # type: ignore[no-untyped-def]
    provider_stub.add(SPOTIFY_TOKEN, {"access_token": "spotify-at", "expires_in": 3600})
    provider_stub.add(SPOTIFY_ME, {"id": "sp-1", "followers": [12]})

    result = service.handle_callback("spotify", code="abc", state=_state("SPOTIFY", proposal.id))

    assert result.ok is True
    account = db_session.exec(select(SocialAccount)).one()
    assert account.token_meta["profile"] is None
    audit = db_session.exec(select(AuditLog).where(AuditLog.action == "SOCIAL_CONNECT")).one()
    assert audit.details == {"provider": "SPOTIFY", "profile": None}
