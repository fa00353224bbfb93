from datetime import datetime

from sqlalchemy import JSON
from sqlmodel import Field

from filiacao.models.base import TimestampedModel, UUIDModel


class Draft(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "drafts"

    token_hash: str = Field(max_length=64)
    data: dict | None = Field(default_factory=dict, sa_type=JSON)
    expires_at: datetime = Field(index=True)
