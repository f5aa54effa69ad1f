from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel


class PaymentReceipt(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "payment_receipts"

    payment_id: str = Field(index=True, unique=True)
    receipt_number: str = Field(index=True, unique=True)
    client_id: UUID | None = Field(default=None, foreign_key="clients.id", index=True)
    contract_id: UUID | None = Field(default=None, foreign_key="contracts.id")
    client_name: str
    client_email: str | None = Field(default=None)
    plan_name: str | None = Field(default=None)
    billing_period: str | None = Field(default=None)
    installment_number: int | None = Field(default=None)
    amount_cents: int
    payment_method: str
    payment_date: datetime
    proof_of_sale: str | None = Field(default=None)
    authorization_code: str | None = Field(default=None)
    tid: str | None = Field(default=None)
    pets_data: list | None = Field(default_factory=list, sa_type=JSON)
    pdf_file_name: str | None = Field(default=None)
    pdf_path: str | None = Field(default=None)
    status: str = Field(default="generated")
