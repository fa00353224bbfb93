from enum import Enum

from sqlalchemy import JSON
from sqlmodel import Field

from filiacao.models.base import TimestampedModel, UUIDModel


class AdminRole(str, Enum):
    ADMIN = "ADMIN"
    ANALYST = "ANALYST"
    VIEWER = "VIEWER"


class AdminUser(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "admin_users"

    name: str
    email: str = Field(index=True, unique=True)
    roles: list[str] = Field(default_factory=list, sa_type=JSON)
    is_active: bool = Field(default=True)

    def has_role(self, role: AdminRole) -> bool:
        return role.value in (self.roles or [])
