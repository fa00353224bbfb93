from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Field

from filiacao.models.base import TimestampedModel, UUIDModel


class SocialProvider(str, Enum):
    SPOTIFY = "SPOTIFY"
    YOUTUBE = "YOUTUBE"
    FACEBOOK = "FACEBOOK"
    INSTAGRAM = "INSTAGRAM"


class SocialAccount(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "social_accounts"
    __table_args__ = (UniqueConstraint("person_id", "provider", name="uq_social_account_person_provider"),)

    person_id: UUID = Field(foreign_key="persons.id", index=True)
    provider: SocialProvider
    access_token_encrypted: str
    refresh_token_encrypted: str | None = Field(default=None)
    token_meta: dict | None = Field(default=None, sa_type=JSON)
