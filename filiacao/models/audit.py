from __future__ import annotations

from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from filiacao.models.base import TimestampedModel, UUIDModel


ENTITY_ID_MAX_LENGTH = 128
IDEMPOTENCY_KEY_MAX_LENGTH = 160


class AuditLog(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "audit_logs"

    admin_user_id: UUID | None = Field(default=None, foreign_key="admin_users.id")
    proposal_id: UUID | None = Field(default=None, foreign_key="proposals.id", index=True)
    action: str = Field(index=True, max_length=64)
    entity_type: str = Field(max_length=64)
    entity_id: str = Field(max_length=ENTITY_ID_MAX_LENGTH)
    details: dict | None = Field(default_factory=dict, sa_type=JSON)
    # Chave única para eventos externos (webhooks); nula nas ações do painel.
    idempotency_key: str | None = Field(default=None, unique=True, max_length=IDEMPOTENCY_KEY_MAX_LENGTH)
