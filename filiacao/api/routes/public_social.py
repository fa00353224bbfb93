from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse
from sqlmodel import Session

from filiacao.api.deps import get_app_settings, get_db, get_oauth_http
from filiacao.core.config import Settings
from filiacao.schemas.common import OkResponse
from filiacao.schemas.social import SocialDisconnectRequest
from filiacao.services.oauth import OAuthHttpClient
from filiacao.services.social import SocialOAuthService

router = APIRouter(prefix="/public/social", tags=["public-social"])


def _service(session: Session, settings: Settings, http: OAuthHttpClient) -> SocialOAuthService:
    return SocialOAuthService(session, settings=settings, http=http)


@router.get("/authorize")
def authorize(
    provider: str = Query(min_length=1),
    proposal_id: UUID = Query(alias="proposalId"),
    token: str = Query(min_length=1),
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    http: OAuthHttpClient = Depends(get_oauth_http),
) -> RedirectResponse:
    url = _service(session, settings, http).build_authorize_url(provider, proposal_id, token)
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/callback/{provider}")
def callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    http: OAuthHttpClient = Depends(get_oauth_http),
) -> RedirectResponse:
    result = _service(session, settings, http).handle_callback(provider, code=code, state=state, error=error)
    return RedirectResponse(result.redirect_url, status_code=status.HTTP_302_FOUND)


@router.post("/disconnect", response_model=OkResponse)
def disconnect(
    payload: SocialDisconnectRequest,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    http: OAuthHttpClient = Depends(get_oauth_http),
) -> OkResponse:
    _service(session, settings, http).disconnect(payload.provider, payload.proposal_id, payload.token)
    return OkResponse()
