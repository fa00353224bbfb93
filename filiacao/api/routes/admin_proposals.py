from datetime import datetime
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from filiacao.api.deps import get_app_settings, get_db, get_job_gateway, require_roles
from filiacao.core.config import Settings
from filiacao.models.admin import AdminRole, AdminUser
from filiacao.models.proposal import ProposalStatus, ProposalType
from filiacao.schemas.common import OkResponse
from filiacao.schemas.proposal import (
    AssignProposalRequest,
    AuditLogRead,
    CancelProposalRequest,
    FinalizeProposalRequest,
    ProposalDetail,
    ProposalListFilters,
    ProposalListItem,
    RejectProposalRequest,
    RequestChangesRequest,
    SlaBucket,
)
from filiacao.services.jobs import JobDispatchGateway
from filiacao.services.proposal import ProposalService

router = APIRouter(prefix="/admin/proposals", tags=["admin-proposals"])

read_roles = require_roles(AdminRole.ANALYST, AdminRole.VIEWER)
review_roles = require_roles(AdminRole.ANALYST)
admin_only = require_roles(AdminRole.ADMIN)


def _service(session: Session, settings: Settings, jobs: JobDispatchGateway) -> ProposalService:
    return ProposalService(session, settings=settings, jobs=jobs)


@router.get("", response_model=List[ProposalListItem])
def list_proposals(
    status_filter: ProposalStatus | None = Query(default=None, alias="status"),
    type_filter: ProposalType | None = Query(default=None, alias="type"),
    sla: SlaBucket | None = None,
    date_from: datetime | None = Query(default=None, alias="dateFrom"),
    date_to: datetime | None = Query(default=None, alias="dateTo"),
    text: str | None = None,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(read_roles),
) -> List[ProposalListItem]:
    filters = ProposalListFilters(
        status=status_filter,
        type=type_filter,
        sla=sla,
        date_from=date_from,
        date_to=date_to,
        text=text,
    )
    return _service(session, settings, jobs).list_proposals(filters)


@router.get("/{proposal_id}", response_model=ProposalDetail)
def get_proposal(
    proposal_id: UUID,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(read_roles),
) -> ProposalDetail:
    return _service(session, settings, jobs).get_detail(proposal_id)


@router.get("/{proposal_id}/audit-logs")
def list_proposal_audit_logs(
    proposal_id: UUID,
    action: str | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(read_roles),
) -> dict:
    service = _service(session, settings, jobs)
    service.get_proposal(proposal_id)
    items, total = service.audit.list_events(proposal_id=proposal_id, action=action, page=page, page_size=page_size)
    return {
        "items": [AuditLogRead.model_validate(item).model_dump(mode="json") for item in items],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.post("/{proposal_id}/assign", response_model=OkResponse)
def assign_proposal(
    proposal_id: UUID,
    payload: AssignProposalRequest,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(review_roles),
) -> OkResponse:
    _service(session, settings, jobs).assign(proposal_id, payload.analyst_id, admin_user_id=current_user.id)
    return OkResponse()


@router.post("/{proposal_id}/start-review", response_model=OkResponse)
def start_review(
    proposal_id: UUID,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(review_roles),
) -> OkResponse:
    _service(session, settings, jobs).start_review(proposal_id, admin_user_id=current_user.id)
    return OkResponse()


@router.post("/{proposal_id}/request-changes", response_model=OkResponse)
def request_changes(
    proposal_id: UUID,
    payload: RequestChangesRequest,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(review_roles),
) -> OkResponse:
    _service(session, settings, jobs).request_changes(
        proposal_id,
        payload.missing_items,
        message=payload.message,
        admin_user_id=current_user.id,
    )
    return OkResponse()


@router.post("/{proposal_id}/approve", response_model=OkResponse)
def approve_proposal(
    proposal_id: UUID,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(review_roles),
) -> OkResponse:
    request_id = _service(session, settings, jobs).approve(proposal_id, admin_user_id=current_user.id)
    return OkResponse(request_id=request_id)


@router.post("/{proposal_id}/reject", response_model=OkResponse)
def reject_proposal(
    proposal_id: UUID,
    payload: RejectProposalRequest,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(review_roles),
) -> OkResponse:
    _service(session, settings, jobs).reject(proposal_id, payload.reason, admin_user_id=current_user.id)
    return OkResponse()


@router.post("/{proposal_id}/resend-signature-link", response_model=OkResponse)
def resend_signature_link(
    proposal_id: UUID,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(review_roles),
) -> OkResponse:
    request_id = _service(session, settings, jobs).resend_signature_link(proposal_id, admin_user_id=current_user.id)
    return OkResponse(request_id=request_id)


@router.post("/{proposal_id}/export-pdf", response_model=OkResponse)
def export_pdf(
    proposal_id: UUID,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(read_roles),
) -> OkResponse:
    request_id = _service(session, settings, jobs).export_pdf(proposal_id, admin_user_id=current_user.id)
    return OkResponse(request_id=request_id)


@router.post("/{proposal_id}/cancel", response_model=OkResponse)
def cancel_proposal(
    proposal_id: UUID,
    payload: CancelProposalRequest | None = None,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(admin_only),
) -> OkResponse:
    reason = payload.reason if payload else None
    _service(session, settings, jobs).cancel(proposal_id, reason=reason, admin_user_id=current_user.id)
    return OkResponse()


@router.post("/{proposal_id}/finalize", response_model=OkResponse)
def finalize_proposal(
    proposal_id: UUID,
    payload: FinalizeProposalRequest,
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    jobs: JobDispatchGateway = Depends(get_job_gateway),
    current_user: AdminUser = Depends(admin_only),
) -> OkResponse:
    _service(session, settings, jobs).finalize(proposal_id, payload.member_number, admin_user_id=current_user.id)
    return OkResponse()
