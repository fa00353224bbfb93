from enum import Enum
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from filiacao.models.base import TimestampedModel, UUIDModel


class NotificationChannel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    WHATSAPP = "WHATSAPP"


class NotificationStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class Notification(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "notifications"

    proposal_id: UUID = Field(foreign_key="proposals.id", index=True)
    channel: NotificationChannel
    status: NotificationStatus = Field(default=NotificationStatus.PENDING)
    template: str = Field(max_length=64)
    payload_redacted: dict | None = Field(default=None, sa_type=JSON)
    request_id: str | None = Field(default=None, max_length=64)
    error: str | None = Field(default=None)
