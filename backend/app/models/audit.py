from __future__ import annotations

from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel


class AuditLog(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "audit_logs"

    event_type: str = Field(index=True)
    actor_type: str | None = Field(default=None)
    actor_id: UUID | None = Field(default=None)
    payment_id: str | None = Field(default=None, index=True)
    contract_id: UUID | None = Field(default=None, index=True)
    ip_address: str | None = Field(default=None)
    user_agent: str | None = Field(default=None)
    details: dict | None = Field(default_factory=dict, sa_type=JSON)
