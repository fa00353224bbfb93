from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, status
from sqlmodel import Session

from filiacao.api.deps import get_app_settings, get_db, get_job_gateway
from filiacao.core.config import Settings
from filiacao.schemas.draft import (
    DocumentAttachRequest,
    DraftCreated,
    DraftCreateRequest,
    DraftRead,
    DraftUpdateRequest,
    ProposalSubmitted,
    SubmitProposalRequest,
)
from filiacao.schemas.proposal import DocumentRead, TrackingRead
from filiacao.services.draft import DraftService
from filiacao.services.jobs import JobDispatchGateway
from filiacao.services.proposal import ProposalService

router = APIRouter(prefix="/public", tags=["public"])


def _draft_service(session: Session, settings: Settings, jobs: JobDispatchGateway) -> DraftService:
    return DraftService(session, settings=settings, jobs=jobs)


@router.post("/drafts", response_model=DraftCreated, status_code=status.HTTP_201_CREATED)
def create_draft(
    payload: DraftCreateRequest | None = None,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
) -> DraftCreated:
    draft, token = _draft_service(session, settings, jobs).create_draft(payload.data if payload else None)
    return DraftCreated(draft_id=draft.id, draft_token=token, expires_at=draft.expires_at)


@router.get("/drafts/{draft_id}", response_model=DraftRead)
def get_draft(
    draft_id: UUID,
    token: str | None = Query(default=None),
    x_draft_token: str | None = Header(default=None),
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
) -> DraftRead:
    draft = _draft_service(session, settings, jobs).get_draft(draft_id, x_draft_token or token)
    return DraftRead(draft_id=draft.id, data=draft.data or {}, expires_at=draft.expires_at)


@router.patch("/drafts/{draft_id}", response_model=DraftRead)
def update_draft(
    draft_id: UUID,
    payload: DraftUpdateRequest,
    x_draft_token: str | None = Header(default=None),
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
) -> DraftRead:
    draft = _draft_service(session, settings, jobs).update_draft(
        draft_id, x_draft_token or payload.draft_token, payload.data
    )
    return DraftRead(draft_id=draft.id, data=draft.data or {}, expires_at=draft.expires_at)


@router.post("/drafts/{draft_id}/documents", response_model=DocumentRead, status_code=status.HTTP_201_CREATED)
def attach_document(
    draft_id: UUID,
    payload: DocumentAttachRequest,
    x_draft_token: str | None = Header(default=None),
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
) -> DocumentRead:
    document = _draft_service(session, settings, jobs).attach_document(draft_id, x_draft_token, payload)
    return DocumentRead.model_validate(document)


@router.post("/proposals", response_model=ProposalSubmitted, status_code=status.HTTP_201_CREATED)
def submit_proposal(
    payload: SubmitProposalRequest,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
) -> ProposalSubmitted:
    proposal = _draft_service(session, settings, jobs).submit(payload.draft_id, payload.draft_token)
    return ProposalSubmitted(proposal_id=proposal.id, protocol=proposal.protocol, tracking_token=proposal.public_token)


@router.get("/proposals/track", response_model=TrackingRead)
def track_proposal(
    protocol: str = Query(min_length=1),
    token: str = Query(min_length=1),
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
) -> TrackingRead:
    return ProposalService(session, settings=settings, jobs=jobs).track(protocol, token)
