from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from filiacao.models.document import DocumentType
from filiacao.models.proposal import ProposalType


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class AddressData(_CamelModel):
    cep: str | None = Field(default=None, min_length=1)
    street: str | None = Field(default=None, min_length=1)
    number: str | None = None
    complement: str | None = None
    district: str | None = Field(default=None, min_length=1)
    city: str | None = Field(default=None, min_length=1)
    state: str | None = Field(default=None, min_length=2, max_length=2)


class ConsentData(_CamelModel):
    accepted: bool | None = None
    version: str | None = None
    at: str | None = None


class DraftData(_CamelModel):
    """Dados parciais do candidato; campos desconhecidos são recusados."""

    full_name: str | None = Field(default=None, min_length=2)
    cpf: str | None = Field(default=None, min_length=11)
    email: str | None = Field(default=None, min_length=5)
    phone: str | None = Field(default=None, min_length=8)
    birth_date: str | None = None
    type: ProposalType | None = None
    address: AddressData | None = None
    consent: ConsentData | None = None


class DraftCreateRequest(BaseModel):
    data: dict[str, Any] | None = None


class DraftUpdateRequest(BaseModel):
    draft_token: str | None = Field(default=None, alias="draftToken")
    data: dict[str, Any]

    model_config = ConfigDict(populate_by_name=True)


class DraftCreated(BaseModel):
    draft_id: UUID
    draft_token: str
    expires_at: datetime


class DraftRead(BaseModel):
    draft_id: UUID
    data: dict[str, Any]
    expires_at: datetime


class DocumentAttachRequest(BaseModel):
    type: DocumentType = DocumentType.OUTROS
    storage_key: str = Field(min_length=1, max_length=512)
    file_name: str = Field(min_length=1, max_length=255)
    content_type: str = Field(min_length=3, max_length=128)
    size: int | None = Field(default=None, ge=0)


class SubmitProposalRequest(BaseModel):
    draft_id: UUID = Field(alias="draftId")
    draft_token: str = Field(alias="draftToken", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ProposalSubmitted(BaseModel):
    proposal_id: UUID
    protocol: str
    tracking_token: str
