from enum import Enum
from uuid import UUID

from sqlmodel import Field

from filiacao.models.base import TimestampedModel, UUIDModel


class SignatureStatus(str, Enum):
    SENT = "SENT"
    SIGNED = "SIGNED"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class SignatureEnvelope(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "signature_envelopes"

    proposal_id: UUID = Field(foreign_key="proposals.id", index=True)
    provider: str = Field(default="CLICKSIGN", max_length=32)
    envelope_id: str | None = Field(default=None, index=True, max_length=128)
    document_file_id: UUID | None = Field(default=None, foreign_key="document_files.id")
    status: SignatureStatus = Field(default=SignatureStatus.SENT)
    request_id: str | None = Field(default=None, max_length=64)
