from enum import Enum
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from filiacao.models.base import TimestampedModel, UUIDModel


class DocumentType(str, Enum):
    RG_FRENTE = "RG_FRENTE"
    RG_VERSO = "RG_VERSO"
    CNH = "CNH"
    COMPROVANTE_RESIDENCIA = "COMPROVANTE_RESIDENCIA"
    SELFIE = "SELFIE"
    OUTROS = "OUTROS"


OCR_DOCUMENT_TYPES = frozenset({DocumentType.RG_FRENTE, DocumentType.CNH})


class DocumentFile(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "document_files"

    draft_id: UUID | None = Field(default=None, foreign_key="drafts.id", index=True)
    proposal_id: UUID | None = Field(default=None, foreign_key="proposals.id", index=True)
    type: DocumentType = Field(default=DocumentType.OUTROS)
    storage_key: str
    file_name: str
    content_type: str = Field(max_length=128)
    size: int | None = Field(default=None)


class OcrResult(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "ocr_results"

    proposal_id: UUID = Field(foreign_key="proposals.id", index=True)
    document_file_id: UUID | None = Field(default=None, foreign_key="document_files.id")
    raw_text: str | None = Field(default=None)
    structured_data: dict | None = Field(default=None, sa_type=JSON)
