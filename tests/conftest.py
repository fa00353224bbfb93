from __future__ import annotations

import base64
import os
import uuid
from datetime import date, timedelta
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlmodel import Session, SQLModel, create_engine

from filiacao.api.deps import get_app_settings, get_db, get_job_gateway, get_oauth_http
from filiacao.core.config import Settings
from filiacao.db import session as db_session_module
from filiacao.main import app
from filiacao.models.admin import AdminRole, AdminUser
from filiacao.models.base import utcnow
from filiacao.models.proposal import Address, Person, Proposal, ProposalStatus, StatusHistory
from filiacao.services.crypto import CryptoService, SearchField
from filiacao.services.jobs import JobDispatchGateway
from filiacao.services.oauth import OAuthHttpClient

TEST_KEY = base64.b64encode(b"k" * 32).decode("ascii")
WEBHOOK_SECRET = "whsec_clicksign"
STATE_SECRET = "state-secret"
VALID_CPF = "52998224725"


class RecordingQueue:
    """Fila em memória: guarda cada job enviado pelo gateway."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    def send(self, name, payload, *, queue, request_id, retry_policy) -> None:  # type: ignore[no-untyped-def]
        self.sent.append(
            {
                "name": name,
                "payload": payload,
                "queue": queue,
                "request_id": request_id,
                "retry_policy": retry_policy,
            }
        )

    def names(self) -> list[str]:
        return [job["name"] for job in self.sent]

    def of(self, name: str) -> list[dict[str, Any]]:
        return [job for job in self.sent if job["name"] == name]


class ProviderStub:
    """Respostas fixas dos provedores OAuth, servidas por httpx.MockTransport."""

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, dict[str, Any]]] = {}
        self.requests: list[Any] = []

    def add(self, url: str, payload: dict[str, Any], status_code: int = 200) -> None:
        self.routes[url] = (status_code, payload)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?")[0]
        status_code, payload = self.routes.get(url, (404, {"error": "not_found"}))
        return httpx.Response(status_code, json=payload)


def build_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "data_encryption_key": TEST_KEY,
        "clicksign_webhook_secret": WEBHOOK_SECRET,
        "social_oauth_state_secret": STATE_SECRET,
        "secret_key": "test-secret",
        "public_tracking_base_url": "https://filiacao.example.com/acompanhar",
        "social_redirect_success_url": "https://filiacao.example.com/social/ok",
        "social_redirect_error_url": "https://filiacao.example.com/social/erro",
        "spotify_client_id": "spotify-id",
        "spotify_client_secret": "spotify-secret",
        "spotify_redirect_uri": "https://api.example.com/social/callback/spotify",
        "instagram_client_id": "ig-id",
        "instagram_client_secret": "ig-secret",
        "instagram_redirect_uri": "https://api.example.com/social/callback/instagram",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture()
def db_engine(tmp_path):
    test_database_url = os.getenv("TEST_DATABASE_URL")
    if not test_database_url:
        db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
        test_database_url = f"sqlite:///{db_path}"

    engine = create_engine(test_database_url, connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(bind=engine)

    original_engine = db_session_module.engine
    db_session_module.engine = engine

    def override_dependency():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = override_dependency

    yield engine

    app.dependency_overrides.pop(get_db, None)
    db_session_module.engine = original_engine
    engine.dispose()


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


@pytest.fixture()
def settings() -> Settings:
    return build_settings()


@pytest.fixture()
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture()
def jobs(queue: RecordingQueue, settings: Settings) -> JobDispatchGateway:
    return JobDispatchGateway(queue=queue, settings=settings)


@pytest.fixture()
def crypto(settings: Settings) -> CryptoService:
    return CryptoService(settings)


@pytest.fixture()
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture()
def oauth_http(provider_stub: ProviderStub) -> OAuthHttpClient:
    return OAuthHttpClient(httpx.Client(transport=httpx.MockTransport(provider_stub)))


@pytest.fixture()
def client(db_engine, settings: Settings, jobs: JobDispatchGateway, oauth_http: OAuthHttpClient) -> TestClient:
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_job_gateway] = lambda: jobs
    app.dependency_overrides[get_oauth_http] = lambda: oauth_http
    yield TestClient(app)
    for dependency in (get_app_settings, get_job_gateway, get_oauth_http):
        app.dependency_overrides.pop(dependency, None)


def create_admin(session: Session, *roles: AdminRole, name: str = "Ana Analista", is_active: bool = True) -> AdminUser:
    user = AdminUser(
        name=name,
        email=f"{uuid.uuid4().hex[:8]}@filiacao.example.com",
        roles=[role.value for role in roles] or [AdminRole.ANALYST.value],
        is_active=is_active,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def create_proposal(
    session: Session,
    crypto: CryptoService,
    *,
    status: ProposalStatus = ProposalStatus.SUBMITTED,
    with_person: bool = True,
    full_name: str = "Maria da Silva",
    cpf: str = VALID_CPF,
    phone: str | None = "+5511987654321",
    submitted_days_ago: int = 0,
) -> Proposal:
    submitted_at = utcnow() - timedelta(days=submitted_days_ago)
    proposal = Proposal(
        protocol=str(100000 + uuid.uuid4().int % 900000),
        status=status,
        submitted_at=submitted_at,
        created_at=submitted_at,
    )
    session.add(proposal)
    session.flush()
    session.add(
        StatusHistory(
            proposal_id=proposal.id,
            from_status=None,
            to_status=status,
            reason="Proposta submetida pelo candidato",
            created_at=submitted_at,
        )
    )
    if with_person:
        cpf_encrypted, cpf_hash = crypto.seal(SearchField.CPF, cpf)
        email_encrypted, email_hash = crypto.seal(SearchField.EMAIL, "maria@example.com")
        phone_encrypted, phone_hash = crypto.seal(SearchField.PHONE, phone or "")
        session.add(
            Person(
                proposal_id=proposal.id,
                full_name=full_name,
                cpf_encrypted=cpf_encrypted,
                cpf_hash=cpf_hash,
                email_encrypted=email_encrypted,
                email_hash=email_hash,
                phone_encrypted=phone_encrypted if phone else "",
                phone_hash=phone_hash,
                birth_date=date(1990, 5, 17),
            )
        )
        session.add(
            Address(
                proposal_id=proposal.id,
                cep="01310100",
                street="Avenida Paulista",
                number="1000",
                district="Bela Vista",
                city="Sao Paulo",
                state="SP",
            )
        )
    session.commit()
    session.refresh(proposal)
    return proposal


def auth_headers(user: AdminUser, settings: Settings) -> dict[str, str]:
    token = jwt.encode({"sub": str(user.id)}, settings.secret_key, algorithm=settings.algorithm)
    return {"Authorization": f"Bearer {token}"}


def complete_draft_data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "fullName": "Joao Pereira",
        "cpf": "529.982.247-25",
        "email": "Joao@Example.com",
        "phone": "(11) 98765-4321",
        "birthDate": "1985-03-02",
        "type": "NOVO",
        "address": {
            "cep": "01310-100",
            "street": "Avenida Paulista",
            "number": "900",
            "district": "Bela Vista",
            "city": "Sao Paulo",
            "state": "sp",
        },
        "consent": {"accepted": True, "version": "v1"},
    }
    data.update(overrides)
    return data
