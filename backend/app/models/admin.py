from __future__ import annotations

from datetime import datetime

from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel


class AdminUser(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "admin_users"

    email: str = Field(index=True, unique=True)
    full_name: str
    password_hash: str
    is_active: bool = Field(default=True)
    last_login_at: datetime | None = Field(default=None)
