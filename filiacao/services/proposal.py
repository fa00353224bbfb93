from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import or_
from sqlmodel import Session, select

from filiacao.core.config import Settings, get_settings
from filiacao.core.errors import InvalidOperationError, NotFoundError
from filiacao.core.logging_setup import logger
from filiacao.models.admin import AdminRole, AdminUser
from filiacao.models.audit import AuditLog
from filiacao.models.base import utcnow
from filiacao.models.document import DocumentFile, OcrResult
from filiacao.models.notification import Notification
from filiacao.models.proposal import Address, Person, Proposal, ProposalStatus, StatusHistory
from filiacao.models.signature import SignatureEnvelope, SignatureStatus
from filiacao.schemas.proposal import (
    AddressRead,
    AnalystRead,
    AuditLogRead,
    DocumentRead,
    NotificationRead,
    OcrResultRead,
    PersonDetail,
    PersonSummary,
    ProposalDetail,
    ProposalListFilters,
    ProposalListItem,
    SignatureEnvelopeRead,
    SlaBucket,
    SlaRead,
    StatusHistoryRead,
    TrackingRead,
)
from filiacao.services.audit import AuditService
from filiacao.services.crypto import CryptoService, SearchField
from filiacao.services.jobs import JobDispatchGateway
from filiacao.services.notification import NotificationService, Recipient
from filiacao.services.state_machine import ProposalAction, ProposalStateMachine, time_in_status
from filiacao.utils.normalizers import mask_cpf, only_digits
from filiacao.utils.urls import with_query

LIST_LIMIT = 100
PDF_CONTENT_TYPE = "application/pdf"

PENDING_LABELS: dict[ProposalStatus, str] = {
    ProposalStatus.PENDING_DOCS: "Documentos pendentes",
    ProposalStatus.PENDING_SIGNATURE: "Assinatura pendente",
}


def build_tracking_link(settings: Settings, protocol: str, token: str) -> str:
    base = settings.public_tracking_base_url
    if not base:
        return f"Protocol {protocol}"
    return with_query(base, {"protocol": protocol, "token": token})


class ProposalService:
    """Operações do painel sobre a proposta; cada mudança de status passa pela máquina de estados."""

    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        jobs: JobDispatchGateway | None = None,
        crypto: CryptoService | None = None,
        notifications: NotificationService | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.jobs = jobs or JobDispatchGateway(settings=self.settings)
        self.crypto = crypto or CryptoService(self.settings)
        self.audit = AuditService(session)
        self.state_machine = ProposalStateMachine(session, self.audit)
        self.notifications = notifications or NotificationService(session, self.jobs)

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------
    def get_proposal(self, proposal_id: UUID) -> Proposal:
        proposal = self.session.get(Proposal, proposal_id)
        if not proposal:
            raise NotFoundError("Proposta nao encontrada")
        return proposal

    def list_proposals(self, filters: ProposalListFilters | None = None) -> list[ProposalListItem]:
        filters = filters or ProposalListFilters()
        statement = select(Proposal, Person).join(Person, Person.proposal_id == Proposal.id, isouter=True)

        if filters.status:
            statement = statement.where(Proposal.status == filters.status)
        if filters.type:
            statement = statement.where(Proposal.type == filters.type)
        if filters.date_from:
            statement = statement.where(Proposal.created_at >= filters.date_from)
        if filters.date_to:
            statement = statement.where(Proposal.created_at <= filters.date_to)

        if filters.text:
            term = filters.text.strip()
            digits = only_digits(term)
            clauses = []
            if len(term) > 1:
                clauses.append(Person.full_name.ilike(f"%{term}%"))
            if len(digits) == 11:
                clauses.append(Person.cpf_hash == CryptoService.search_hash(SearchField.CPF, digits))
            if clauses:
                statement = statement.where(or_(*clauses))

        statement = self._apply_sla_filter(statement, filters.sla)
        rows = self.session.exec(statement.order_by(Proposal.created_at.desc()).limit(LIST_LIMIT)).all()

        analyst_ids = {proposal.assigned_analyst_id for proposal, _ in rows if proposal.assigned_analyst_id}
        analysts = self._analysts_by_id(analyst_ids)
        histories = self._histories_by_proposal([proposal.id for proposal, _ in rows])

        items: list[ProposalListItem] = []
        for proposal, person in rows:
            analyst = analysts.get(proposal.assigned_analyst_id) if proposal.assigned_analyst_id else None
            items.append(
                ProposalListItem(
                    id=proposal.id,
                    protocol=proposal.protocol,
                    status=proposal.status,
                    type=proposal.type,
                    created_at=proposal.created_at,
                    sla=self._sla(proposal),
                    person=PersonSummary(full_name=person.full_name, cpf_masked=self._masked_cpf(person))
                    if person
                    else None,
                    assigned_analyst=AnalystRead.model_validate(analyst) if analyst else None,
                    status_history=[StatusHistoryRead.model_validate(entry) for entry in histories.get(proposal.id, [])],
                )
            )
        return items

    def get_detail(self, proposal_id: UUID) -> ProposalDetail:
        proposal = self.get_proposal(proposal_id)
        person = self._person(proposal.id)
        address = self.session.exec(select(Address).where(Address.proposal_id == proposal.id)).first()
        analyst = self.session.get(AdminUser, proposal.assigned_analyst_id) if proposal.assigned_analyst_id else None

        documents = self.session.exec(
            select(DocumentFile).where(DocumentFile.proposal_id == proposal.id).order_by(DocumentFile.created_at)
        ).all()
        ocr_results = self.session.exec(
            select(OcrResult).where(OcrResult.proposal_id == proposal.id).order_by(OcrResult.created_at.desc())
        ).all()
        envelopes = self.session.exec(
            select(SignatureEnvelope)
            .where(SignatureEnvelope.proposal_id == proposal.id)
            .order_by(SignatureEnvelope.created_at.desc())
        ).all()
        notifications = self.session.exec(
            select(Notification).where(Notification.proposal_id == proposal.id).order_by(Notification.created_at.desc())
        ).all()
        audit_logs = self.session.exec(
            select(AuditLog).where(AuditLog.proposal_id == proposal.id).order_by(AuditLog.created_at.desc())
        ).all()
        timeline = self.state_machine.history(proposal.id)

        return ProposalDetail(
            id=proposal.id,
            protocol=proposal.protocol,
            status=proposal.status,
            type=proposal.type,
            version=proposal.version,
            created_at=proposal.created_at,
            submitted_at=proposal.submitted_at,
            signed_at=proposal.signed_at,
            rejected_at=proposal.rejected_at,
            sla=self._sla(proposal),
            person=PersonDetail(
                full_name=person.full_name,
                cpf_masked=self._masked_cpf(person),
                birth_date=person.birth_date,
            )
            if person
            else None,
            address=AddressRead.model_validate(address) if address else None,
            assigned_analyst=AnalystRead.model_validate(analyst) if analyst else None,
            documents=[DocumentRead.model_validate(item) for item in documents],
            ocr_results=[OcrResultRead.model_validate(item) for item in ocr_results],
            signatures=[SignatureEnvelopeRead.model_validate(item) for item in envelopes],
            notifications=[NotificationRead.model_validate(item) for item in notifications],
            timeline=[StatusHistoryRead.model_validate(item) for item in timeline],
            audit_logs=[AuditLogRead.model_validate(item) for item in audit_logs],
            time_in_status=time_in_status(timeline),
        )

    def track(self, protocol: str, token: str) -> TrackingRead:
        """Visão pública: mesma mensagem para protocolo inexistente ou token errado."""
        proposal = self.session.exec(select(Proposal).where(Proposal.protocol == protocol.strip())).first()
        if not proposal or proposal.public_token != token:
            raise NotFoundError("Proposta nao encontrada")

        latest_ocr = self.session.exec(
            select(OcrResult).where(OcrResult.proposal_id == proposal.id).order_by(OcrResult.created_at.desc())
        ).first()
        pending = [PENDING_LABELS[proposal.status]] if proposal.status in PENDING_LABELS else []

        return TrackingRead(
            protocol=proposal.protocol,
            status=proposal.status,
            pending=pending,
            timeline=[StatusHistoryRead.model_validate(item) for item in self.state_machine.history(proposal.id)],
            ocr=latest_ocr.structured_data if latest_ocr else None,
        )

    # ------------------------------------------------------------------
    # Ações do painel
    # ------------------------------------------------------------------
    def assign(self, proposal_id: UUID, analyst_id: UUID, *, admin_user_id: UUID | None = None) -> Proposal:
        self.get_proposal(proposal_id)
        analyst = self.session.get(AdminUser, analyst_id)
        if not analyst:
            raise NotFoundError("Analista nao encontrado")
        if not analyst.has_role(AdminRole.ANALYST):
            raise InvalidOperationError("Usuario nao e analista")
        if not analyst.is_active:
            raise InvalidOperationError("Analista inativo")

        proposal, _ = self.state_machine.transition(
            proposal_id,
            ProposalAction.ASSIGN_ANALYST,
            reason=f"Atribuido ao analista {analyst.name}",
            admin_user_id=admin_user_id,
            details={"analystId": str(analyst.id)},
            changes={"assigned_analyst_id": analyst.id},
        )
        return proposal

    def start_review(self, proposal_id: UUID, *, admin_user_id: UUID | None = None) -> Proposal:
        proposal, _ = self.state_machine.transition(
            proposal_id,
            ProposalAction.START_REVIEW,
            to_status=ProposalStatus.UNDER_REVIEW,
            reason="Analise iniciada",
            admin_user_id=admin_user_id,
        )
        return proposal

    def request_changes(
        self,
        proposal_id: UUID,
        missing_items: list[str],
        *,
        message: str | None = None,
        admin_user_id: UUID | None = None,
    ) -> Proposal:
        person = self._require_person(proposal_id)
        proposal, _ = self.state_machine.transition(
            proposal_id,
            ProposalAction.REQUEST_CHANGES,
            to_status=ProposalStatus.PENDING_DOCS,
            reason="Pendencias solicitadas pelo analista",
            admin_user_id=admin_user_id,
            details={"missingItems": list(missing_items), "message": message},
        )

        self.notifications.notify_pending(
            proposal.id,
            self._recipient(person),
            missing_items=missing_items,
            secure_link=build_tracking_link(self.settings, proposal.protocol, proposal.public_token),
            message=message,
        )
        return proposal

    def approve(self, proposal_id: UUID, *, admin_user_id: UUID | None = None) -> str:
        """Solicita a assinatura: PENDING_SIGNATURE e job de geração do contrato em PDF."""
        person = self._require_person(proposal_id)
        request_id = str(uuid4())
        proposal, _ = self.state_machine.transition(
            proposal_id,
            ProposalAction.APPROVE,
            to_status=ProposalStatus.PENDING_SIGNATURE,
            reason="Assinatura solicitada",
            admin_user_id=admin_user_id,
            details={"requestId": request_id},
        )

        self.jobs.enqueue_pdf(
            proposal_id=proposal.id,
            protocol=proposal.protocol,
            candidate=self._candidate(person),
            request_id=request_id,
        )
        logger.info("signature.requested", extra={"proposal_id": str(proposal.id), "request_id": request_id})
        return request_id

    def reject(self, proposal_id: UUID, reason: str, *, admin_user_id: UUID | None = None) -> Proposal:
        person = self._require_person(proposal_id)
        proposal, _ = self.state_machine.transition(
            proposal_id,
            ProposalAction.REJECT,
            to_status=ProposalStatus.REJECTED,
            reason=reason,
            admin_user_id=admin_user_id,
            details={"reason": reason},
            changes={"rejected_at": utcnow()},
        )

        self.notifications.notify_rejected(proposal.id, self._recipient(person), message=reason)
        return proposal

    def resend_signature_link(self, proposal_id: UUID, *, admin_user_id: UUID | None = None) -> str:
        """Cancela o envelope ativo e enfileira um novo pedido de assinatura; o status não muda."""
        person = self._require_person(proposal_id)
        proposal = self.state_machine.lock(proposal_id)
        self.state_machine.ensure_allowed(proposal, ProposalAction.RESEND_SIGNATURE)

        contract = self.session.exec(
            select(DocumentFile)
            .where(DocumentFile.proposal_id == proposal.id, DocumentFile.content_type == PDF_CONTENT_TYPE)
            .order_by(DocumentFile.created_at.desc())
        ).first()
        if not contract:
            raise InvalidOperationError("Contrato PDF nao encontrado")

        active = self.session.exec(
            select(SignatureEnvelope)
            .where(SignatureEnvelope.proposal_id == proposal.id, SignatureEnvelope.status == SignatureStatus.SENT)
            .order_by(SignatureEnvelope.created_at.desc())
        ).first()

        request_id = str(uuid4())
        self.state_machine.stage_transition(proposal, proposal.status, "Link de assinatura reenviado")
        if active:
            active.status = SignatureStatus.CANCELED
            active.updated_at = utcnow()
            self.session.add(active)
        self.state_machine.record(
            proposal,
            ProposalAction.RESEND_SIGNATURE,
            admin_user_id=admin_user_id,
            details={"envelopeId": str(active.id) if active else None, "requestId": request_id},
        )
        self.state_machine.commit()

        self.jobs.enqueue_signature(
            proposal_id=proposal.id,
            protocol=proposal.protocol,
            document_file_id=contract.id,
            candidate=self._candidate(person),
            request_id=request_id,
        )
        logger.info(
            "signature.resent",
            extra={"proposal_id": str(proposal.id), "request_id": request_id, "canceled_envelope": bool(active)},
        )
        return request_id

    def export_pdf(self, proposal_id: UUID, *, admin_user_id: UUID | None = None) -> str:
        person = self._require_person(proposal_id)
        proposal = self.get_proposal(proposal_id)
        request_id = str(uuid4())

        self.audit.record_event(
            ProposalAction.EXPORT_PDF.value,
            entity_type="Proposal",
            entity_id=proposal.id,
            proposal_id=proposal.id,
            admin_user_id=admin_user_id,
            details={"requestId": request_id},
        )
        self.jobs.enqueue_pdf(
            proposal_id=proposal.id,
            protocol=proposal.protocol,
            candidate={**self._candidate(person), "purpose": "export"},
            request_id=request_id,
        )
        return request_id

    def cancel(self, proposal_id: UUID, *, reason: str | None = None, admin_user_id: UUID | None = None) -> Proposal:
        proposal, _ = self.state_machine.transition(
            proposal_id,
            ProposalAction.CANCEL,
            to_status=ProposalStatus.CANCELED,
            reason=reason or "Proposta cancelada",
            admin_user_id=admin_user_id,
            details={"reason": reason},
        )
        return proposal

    def finalize(self, proposal_id: UUID, member_number: str, *, admin_user_id: UUID | None = None) -> Proposal:
        """Conclui a filiação de uma proposta assinada e avisa o candidato com o número de associado."""
        person = self._require_person(proposal_id)
        proposal, _ = self.state_machine.transition(
            proposal_id,
            ProposalAction.FINALIZE,
            to_status=ProposalStatus.APPROVED,
            reason="Filiacao concluida",
            admin_user_id=admin_user_id,
            details={"memberNumber": member_number},
        )

        self.notifications.notify_signed(proposal.id, self._recipient(person), member_number=member_number)
        return proposal

    # ------------------------------------------------------------------
    # Auxiliares
    # ------------------------------------------------------------------
    def _person(self, proposal_id: UUID) -> Person | None:
        return self.session.exec(select(Person).where(Person.proposal_id == proposal_id)).first()

    def _require_person(self, proposal_id: UUID) -> Person:
        self.get_proposal(proposal_id)
        person = self._person(proposal_id)
        if not person:
            raise InvalidOperationError("Proposta sem dados do candidato")
        return person

    def _recipient(self, person: Person) -> Recipient:
        return Recipient(
            email=self.crypto.decrypt(person.email_encrypted),
            phone=self.crypto.decrypt_optional(person.phone_encrypted),
        )

    def _candidate(self, person: Person) -> dict[str, Any]:
        candidate: dict[str, Any] = {
            "name": person.full_name,
            "email": self.crypto.decrypt(person.email_encrypted),
        }
        phone = self.crypto.decrypt_optional(person.phone_encrypted)
        if phone:
            candidate["phone"] = phone
        return candidate

    def _masked_cpf(self, person: Person) -> str | None:
        if not person.cpf_encrypted:
            return None
        return mask_cpf(self.crypto.decrypt(person.cpf_encrypted))

    @staticmethod
    def _sla(proposal: Proposal) -> SlaRead:
        return SlaRead(
            started_at=proposal.sla_started_at,
            due_at=proposal.sla_due_at,
            breached_at=proposal.sla_breached_at,
        )

    def _apply_sla_filter(self, statement, bucket: SlaBucket | None):  # type: ignore[no-untyped-def]
        if not bucket:
            return statement
        now = utcnow()
        soon = now + timedelta(hours=self.settings.sla_due_soon_hours)

        if bucket is SlaBucket.BREACHED:
            return statement.where(or_(Proposal.sla_breached_at.is_not(None), Proposal.sla_due_at < now))
        if bucket is SlaBucket.DUE_SOON:
            return statement.where(
                Proposal.sla_due_at >= now,
                Proposal.sla_due_at <= soon,
                Proposal.sla_breached_at.is_(None),
            )
        return statement.where(or_(Proposal.sla_due_at > soon, Proposal.sla_due_at.is_(None)))

    def _analysts_by_id(self, analyst_ids: set[UUID]) -> dict[UUID, AdminUser]:
        if not analyst_ids:
            return {}
        analysts = self.session.exec(select(AdminUser).where(AdminUser.id.in_(analyst_ids))).all()
        return {analyst.id: analyst for analyst in analysts}

    def _histories_by_proposal(self, proposal_ids: list[UUID]) -> dict[UUID, list[StatusHistory]]:
        if not proposal_ids:
            return {}
        entries = self.session.exec(
            select(StatusHistory).where(StatusHistory.proposal_id.in_(proposal_ids)).order_by(StatusHistory.id)
        ).all()
        grouped: dict[UUID, list[StatusHistory]] = {}
        for entry in entries:
            grouped.setdefault(entry.proposal_id, []).append(entry)
        return grouped
