from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from filiacao.models.document import DocumentType
from filiacao.models.notification import NotificationChannel, NotificationStatus
from filiacao.models.proposal import ProposalStatus, ProposalType
from filiacao.models.signature import SignatureStatus
from filiacao.schemas.common import IDModel, Timestamped


class SlaBucket(str, Enum):
    BREACHED = "BREACHED"
    DUE_SOON = "DUE_SOON"
    OK = "OK"


class ProposalListFilters(BaseModel):
    status: ProposalStatus | None = None
    type: ProposalType | None = None
    sla: SlaBucket | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    text: str | None = None


class AssignProposalRequest(BaseModel):
    analyst_id: UUID


class RequestChangesRequest(BaseModel):
    missing_items: list[str] = Field(min_length=1)
    message: str | None = None

    @field_validator("missing_items")
    @classmethod
    def strip_items(cls, value: list[str]) -> list[str]:
        items = [item.strip() for item in value]
        if any(not item for item in items):
            raise ValueError("Itens pendentes nao podem ser vazios")
        return items


class RejectProposalRequest(BaseModel):
    reason: str = Field(min_length=3)


class CancelProposalRequest(BaseModel):
    reason: str | None = None


class FinalizeProposalRequest(BaseModel):
    member_number: str = Field(min_length=1, max_length=64)


class SlaRead(BaseModel):
    started_at: datetime | None
    due_at: datetime | None
    breached_at: datetime | None


class AnalystRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str


class StatusHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: ProposalStatus | None
    to_status: ProposalStatus
    reason: str | None
    created_at: datetime


class PersonSummary(BaseModel):
    full_name: str
    cpf_masked: str | None


class PersonDetail(PersonSummary):
    birth_date: date | None


class AddressRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    cep: str
    street: str
    number: str | None
    complement: str | None
    district: str
    city: str
    state: str


class DocumentRead(IDModel, Timestamped):
    type: DocumentType
    file_name: str
    content_type: str
    size: int | None
    storage_key: str


class OcrResultRead(IDModel, Timestamped):
    document_file_id: UUID | None
    structured_data: dict[str, Any] | None


class SignatureEnvelopeRead(IDModel, Timestamped):
    provider: str
    envelope_id: str | None
    status: SignatureStatus
    request_id: str | None


class NotificationRead(IDModel, Timestamped):
    channel: NotificationChannel
    status: NotificationStatus
    template: str
    payload_redacted: dict[str, Any] | None


class AuditLogRead(IDModel, Timestamped):
    admin_user_id: UUID | None
    action: str
    entity_type: str
    entity_id: str
    details: dict[str, Any] | None


class ProposalListItem(BaseModel):
    id: UUID
    protocol: str
    status: ProposalStatus
    type: ProposalType
    created_at: datetime
    sla: SlaRead
    person: PersonSummary | None
    assigned_analyst: AnalystRead | None
    status_history: list[StatusHistoryRead]


class ProposalDetail(BaseModel):
    id: UUID
    protocol: str
    status: ProposalStatus
    type: ProposalType
    version: int
    created_at: datetime
    submitted_at: datetime | None
    signed_at: datetime | None
    rejected_at: datetime | None
    sla: SlaRead
    person: PersonDetail | None
    address: AddressRead | None
    assigned_analyst: AnalystRead | None
    documents: list[DocumentRead]
    ocr_results: list[OcrResultRead]
    signatures: list[SignatureEnvelopeRead]
    notifications: list[NotificationRead]
    timeline: list[StatusHistoryRead]
    audit_logs: list[AuditLogRead]
    time_in_status: dict[str, float]


class TrackingRead(BaseModel):
    protocol: str
    status: ProposalStatus
    pending: list[str]
    timeline: list[StatusHistoryRead]
    ocr: dict[str, Any] | None = None
