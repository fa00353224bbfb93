from __future__ import annotations

import secrets
from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlmodel import Field, SQLModel

from filiacao.models.base import TimestampedModel, UUIDModel, utcnow


class ProposalStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    PENDING_DOCS = "PENDING_DOCS"
    PENDING_SIGNATURE = "PENDING_SIGNATURE"
    SIGNED = "SIGNED"
    REJECTED = "REJECTED"
    APPROVED = "APPROVED"
    CANCELED = "CANCELED"


class ProposalType(str, Enum):
    NOVO = "NOVO"
    MIGRACAO = "MIGRACAO"


TERMINAL_STATUSES = frozenset({ProposalStatus.APPROVED, ProposalStatus.REJECTED, ProposalStatus.CANCELED})
OPEN_STATUSES = (ProposalStatus.SUBMITTED, ProposalStatus.UNDER_REVIEW)


def _new_public_token() -> str:
    return secrets.token_urlsafe(32)


class Proposal(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "proposals"

    protocol: str = Field(index=True, unique=True, max_length=16)
    status: ProposalStatus = Field(default=ProposalStatus.SUBMITTED, index=True)
    type: ProposalType = Field(default=ProposalType.NOVO)
    draft_id: UUID | None = Field(default=None, index=True)
    public_token: str = Field(default_factory=_new_public_token, unique=True, max_length=64)

    submitted_at: datetime | None = Field(default=None)
    signed_at: datetime | None = Field(default=None)
    rejected_at: datetime | None = Field(default=None)

    sla_started_at: datetime | None = Field(default=None)
    sla_due_at: datetime | None = Field(default=None, index=True)
    sla_breached_at: datetime | None = Field(default=None)

    assigned_analyst_id: UUID | None = Field(default=None, foreign_key="admin_users.id", index=True)
    version: int = Field(default=1, nullable=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Person(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "persons"

    proposal_id: UUID = Field(foreign_key="proposals.id", index=True, unique=True)
    full_name: str = Field(index=True)
    cpf_encrypted: str
    cpf_hash: str = Field(index=True, max_length=64)
    email_encrypted: str
    email_hash: str = Field(index=True, max_length=64)
    phone_encrypted: str
    phone_hash: str = Field(index=True, max_length=64)
    birth_date: date | None = Field(default=None)


class Address(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "addresses"

    proposal_id: UUID = Field(foreign_key="proposals.id", index=True, unique=True)
    cep: str = Field(max_length=8)
    street: str
    number: str | None = Field(default=None)
    complement: str | None = Field(default=None)
    district: str
    city: str
    state: str = Field(max_length=2)


class StatusHistory(SQLModel, table=True):
    __tablename__ = "status_history"

    # Chave inteira crescente: a ordem de inserção é a ordem do ledger.
    id: int | None = Field(default=None, primary_key=True)
    proposal_id: UUID = Field(foreign_key="proposals.id", index=True)
    from_status: ProposalStatus | None = Field(default=None)
    to_status: ProposalStatus
    reason: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
