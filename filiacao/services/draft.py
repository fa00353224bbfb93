from __future__ import annotations

import hmac
import secrets
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from filiacao.core.config import Settings, get_settings
from filiacao.core.errors import ConflictError, InvalidOperationError, NotFoundError, UnauthorizedError
from filiacao.core.logging_setup import logger
from filiacao.models.base import utcnow
from filiacao.models.document import OCR_DOCUMENT_TYPES, DocumentFile
from filiacao.models.draft import Draft
from filiacao.models.proposal import Address, Person, Proposal, ProposalStatus, ProposalType, StatusHistory
from filiacao.schemas.draft import DocumentAttachRequest, DraftData
from filiacao.services.audit import AuditService
from filiacao.services.crypto import CryptoService, SearchField
from filiacao.services.jobs import JobDispatchGateway
from filiacao.services.notification import NotificationService, Recipient
from filiacao.services.state_machine import ProposalAction
from filiacao.utils.normalizers import (
    is_valid_cep,
    is_valid_cpf,
    normalize_cep,
    normalize_cpf,
    normalize_email,
    normalize_phone,
)
from filiacao.utils.security import generate_token, hash_token

PROTOCOL_MIN = 100_000
PROTOCOL_MAX = 99_999_999
PROTOCOL_ATTEMPTS = 5
MINIMUM_AGE = 18

REQUIRED_FIELDS = (
    "fullName",
    "cpf",
    "email",
    "phone",
    "birthDate",
    "address.cep",
    "address.street",
    "address.district",
    "address.city",
    "address.state",
    "consent.accepted",
)


def parse_birth_date(value: str) -> date:
    raw = value.strip()
    try:
        return date.fromisoformat(raw[:10])
    except ValueError as exc:
        raise InvalidOperationError("Data de nascimento invalida") from exc


def age_on(birth: date, today: date) -> int:
    years = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        years -= 1
    return years


def _lookup(data: dict[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def validate_draft_data(payload: dict[str, Any] | None, *, required: bool = False, today: date | None = None) -> dict[str, Any]:
    """Valida e normaliza os dados do rascunho, devolvendo o dicionário em camelCase."""
    try:
        parsed = DraftData.model_validate(payload or {})
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidOperationError(f"Dados invalidos: {location}" if location else "Dados invalidos") from exc

    data = parsed.model_dump(by_alias=True, exclude_none=True, mode="json")

    if data.get("cpf"):
        data["cpf"] = normalize_cpf(data["cpf"])
        if not is_valid_cpf(data["cpf"]):
            raise InvalidOperationError("CPF invalido")

    if data.get("email"):
        try:
            data["email"] = normalize_email(data["email"])
        except ValueError as exc:
            raise InvalidOperationError("Email invalido") from exc

    if data.get("phone"):
        try:
            data["phone"] = normalize_phone(data["phone"])
        except ValueError as exc:
            raise InvalidOperationError("Telefone invalido") from exc

    address = data.get("address")
    if address and address.get("cep"):
        address["cep"] = normalize_cep(address["cep"])
        if not is_valid_cep(address["cep"]):
            raise InvalidOperationError("CEP invalido")
    if address and address.get("state"):
        address["state"] = address["state"].upper()

    if data.get("birthDate"):
        birth = parse_birth_date(data["birthDate"])
        if age_on(birth, today or date.today()) < MINIMUM_AGE:
            raise InvalidOperationError("Idade minima de 18 anos")

    if required:
        missing = [field for field in REQUIRED_FIELDS if not _lookup(data, field)]
        if missing:
            raise InvalidOperationError(f"Campos obrigatorios: {', '.join(missing)}")

    return data


def merge_draft_data(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    merged = {**base, **incoming}
    if "address" in base or "address" in incoming:
        merged["address"] = {**(base.get("address") or {}), **(incoming.get("address") or {})}
    return merged


class DraftService:
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
        self.notifications = notifications or NotificationService(session, self.jobs)
        self.audit = AuditService(session)

    @property
    def ttl(self) -> timedelta:
        return timedelta(days=self.settings.draft_ttl_days)

    def create_draft(self, data: dict[str, Any] | None = None) -> tuple[Draft, str]:
        """Cria o rascunho e devolve o token em claro; apenas o hash fica salvo."""
        validated = validate_draft_data(data) if data else {}
        token = generate_token()
        draft = Draft(token_hash=hash_token(token), data=validated, expires_at=utcnow() + self.ttl)
        self.session.add(draft)
        self.session.commit()
        self.session.refresh(draft)
        logger.info("draft.created", extra={"draft_id": str(draft.id)})
        return draft, token

    def get_draft(self, draft_id: UUID, token: str | None) -> Draft:
        if not token:
            raise UnauthorizedError("Draft token ausente")
        draft = self.session.get(Draft, draft_id)
        if not draft:
            raise NotFoundError("Draft nao encontrado")
        if draft.expires_at < utcnow():
            raise UnauthorizedError("Draft expirado")
        if not hmac.compare_digest(draft.token_hash, hash_token(token)):
            raise UnauthorizedError("Token invalido")
        return draft

    def update_draft(self, draft_id: UUID, token: str | None, data: dict[str, Any]) -> Draft:
        draft = self.get_draft(draft_id, token)
        incoming = validate_draft_data(data)
        draft.data = merge_draft_data(dict(draft.data or {}), incoming)
        draft.updated_at = utcnow()
        self.session.add(draft)
        self.session.commit()
        self.session.refresh(draft)
        return draft

    def attach_document(self, draft_id: UUID, token: str | None, document: DocumentAttachRequest) -> DocumentFile:
        """Registra um arquivo já enviado ao storage como pertencente ao rascunho."""
        draft = self.get_draft(draft_id, token)
        record = DocumentFile(
            draft_id=draft.id,
            type=document.type,
            storage_key=document.storage_key,
            file_name=document.file_name,
            content_type=document.content_type,
            size=document.size,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def submit(self, draft_id: UUID, token: str | None) -> Proposal:
        draft = self.get_draft(draft_id, token)
        data = validate_draft_data(dict(draft.data or {}), required=True)
        protocol = self._generate_protocol()
        now = utcnow()

        proposal = Proposal(
            protocol=protocol,
            type=ProposalType(data.get("type") or ProposalType.NOVO.value),
            status=ProposalStatus.SUBMITTED,
            submitted_at=now,
            draft_id=draft.id,
        )
        self.session.add(proposal)
        self.session.flush()

        cpf_encrypted, cpf_hash = self.crypto.seal(SearchField.CPF, data["cpf"])
        email_encrypted, email_hash = self.crypto.seal(SearchField.EMAIL, data["email"])
        phone_encrypted, phone_hash = self.crypto.seal(SearchField.PHONE, data["phone"])
        self.session.add(
            Person(
                proposal_id=proposal.id,
                full_name=data["fullName"].strip(),
                cpf_encrypted=cpf_encrypted,
                cpf_hash=cpf_hash,
                email_encrypted=email_encrypted,
                email_hash=email_hash,
                phone_encrypted=phone_encrypted,
                phone_hash=phone_hash,
                birth_date=parse_birth_date(data["birthDate"]),
            )
        )
        address = data["address"]
        self.session.add(
            Address(
                proposal_id=proposal.id,
                cep=address["cep"],
                street=address["street"],
                number=address.get("number"),
                complement=address.get("complement"),
                district=address["district"],
                city=address["city"],
                state=address["state"],
            )
        )
        self.session.add(
            StatusHistory(
                proposal_id=proposal.id,
                from_status=None,
                to_status=ProposalStatus.SUBMITTED,
                reason="Proposta submetida pelo candidato",
                created_at=now,
            )
        )

        documents = self.session.exec(select(DocumentFile).where(DocumentFile.draft_id == draft.id)).all()
        for document in documents:
            document.proposal_id = proposal.id
            document.draft_id = None
            self.session.add(document)
        self.session.flush()

        self.audit.add_event(
            ProposalAction.SUBMIT.value,
            entity_type="Proposal",
            entity_id=proposal.id,
            proposal_id=proposal.id,
            details={"protocol": protocol, "documents": len(documents)},
        )
        self.session.delete(draft)

        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Nao foi possivel gerar protocolo") from exc
        self.session.refresh(proposal)

        for document in documents:
            if document.type in OCR_DOCUMENT_TYPES:
                self.jobs.enqueue_ocr(proposal_id=proposal.id, document_file_id=document.id)

        self.notifications.notify_proposal_received(
            proposal.id,
            Recipient(email=data["email"], phone=data.get("phone")),
            protocol=proposal.protocol,
            deadline_days=self.settings.sla_days,
        )
        logger.info("proposal.submitted", extra={"proposal_id": str(proposal.id), "protocol": protocol})
        return proposal

    def cleanup_expired(self, now: datetime | None = None) -> dict[str, int]:
        """Remove rascunhos vencidos, seus documentos e documentos órfãos mais antigos que o TTL."""
        now = now or utcnow()
        expired = self.session.exec(select(Draft).where(Draft.expires_at < now)).all()
        expired_ids = [draft.id for draft in expired]

        removed_documents = 0
        if expired_ids:
            for document in self.session.exec(select(DocumentFile).where(DocumentFile.draft_id.in_(expired_ids))).all():
                self.session.delete(document)
                removed_documents += 1
            self.session.flush()

        for draft in expired:
            self.session.delete(draft)

        orphan_limit = now - self.ttl
        orphans = self.session.exec(
            select(DocumentFile).where(
                DocumentFile.proposal_id.is_(None),
                DocumentFile.draft_id.is_(None),
                DocumentFile.created_at < orphan_limit,
            )
        ).all()
        for document in orphans:
            self.session.delete(document)

        self.session.commit()
        result = {"drafts": len(expired_ids), "documents": removed_documents, "orphans": len(orphans)}
        logger.info("drafts.cleanup", extra=result)
        return result

    def _generate_protocol(self) -> str:
        for _ in range(PROTOCOL_ATTEMPTS):
            candidate = str(PROTOCOL_MIN + secrets.randbelow(PROTOCOL_MAX - PROTOCOL_MIN + 1))
            exists = self.session.exec(select(Proposal.id).where(Proposal.protocol == candidate)).first()
            if not exists:
                return candidate
        raise ConflictError("Nao foi possivel gerar protocolo")
