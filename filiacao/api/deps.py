from typing import Annotated, Callable
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from filiacao.core.config import Settings, get_settings
from filiacao.db.session import get_session
from filiacao.models.admin import AdminRole, AdminUser
from filiacao.services.jobs import JobDispatchGateway
from filiacao.services.oauth import OAuthHttpClient
from filiacao.utils.security import decode_token

bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Session:
    yield from get_session()


def get_app_settings() -> Settings:
    return get_settings()


def get_job_gateway(settings: Annotated[Settings, Depends(get_app_settings)]) -> JobDispatchGateway:
    return JobDispatchGateway(settings=settings)


def get_oauth_http() -> OAuthHttpClient:
    return OAuthHttpClient()


def get_current_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    session: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> AdminUser:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_token(credentials.credentials, settings)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    try:
        user_id = UUID(str(payload["sub"]))
    except (ValueError, TypeError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject") from exc

    user = session.get(AdminUser, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User inactive")
    return user


def require_roles(*roles: AdminRole) -> Callable[[AdminUser], AdminUser]:
    allowed = {role.value for role in roles}

    def dependency(current_user: Annotated[AdminUser, Depends(get_current_admin)]) -> AdminUser:
        if current_user.has_role(AdminRole.ADMIN):
            return current_user
        if not allowed.intersection(current_user.roles or []):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency
