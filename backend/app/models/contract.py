from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel


class ContractStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    CURRENT = "current"
    PAID = "paid"
    OVERDUE = "overdue"


# Parcelas que ainda podem ser pagas.
OPEN_INSTALLMENT_STATUSES = (
    InstallmentStatus.PENDING.value,
    InstallmentStatus.CURRENT.value,
    InstallmentStatus.OVERDUE.value,
)


class Contract(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "contracts"

    client_id: UUID = Field(foreign_key="clients.id", index=True)
    pet_id: UUID = Field(foreign_key="pets.id", index=True)
    plan_id: UUID = Field(foreign_key="plans.id", index=True)
    contract_number: str = Field(index=True, unique=True)
    status: str = Field(default=ContractStatus.PENDING.value, index=True)
    billing_period: str
    start_date: datetime
    end_date: datetime | None = Field(default=None)
    monthly_amount_cents: int = Field(default=0)
    annual_amount_cents: int = Field(default=0)
    payment_method: str
    payment_id: str | None = Field(default=None, index=True)
    proof_of_sale: str | None = Field(default=None)
    authorization_code: str | None = Field(default=None)
    tid: str | None = Field(default=None)
    return_code: str | None = Field(default=None)
    return_message: str | None = Field(default=None)
    received_date: datetime | None = Field(default=None)
    pix_qr_code: str | None = Field(default=None)
    pix_copy_paste: str | None = Field(default=None)
    card_token: str | None = Field(default=None)
    card_brand: str | None = Field(default=None)
    card_last_digits: str | None = Field(default=None, max_length=4)

    @property
    def current_amount_cents(self) -> int:
        if self.billing_period == "annual":
            return self.annual_amount_cents
        return self.monthly_amount_cents


class ContractInstallment(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "contract_installments"
    __table_args__ = (
        UniqueConstraint("contract_id", "installment_number", name="uq_installment_contract_number"),
    )

    contract_id: UUID = Field(foreign_key="contracts.id", index=True)
    installment_number: int
    due_date: datetime = Field(index=True)
    period_start: date
    period_end: date
    amount_cents: int
    status: str = Field(default=InstallmentStatus.PENDING.value, index=True)
    paid_at: datetime | None = Field(default=None)
    payment_id: str | None = Field(default=None, index=True)
    receipt_id: UUID | None = Field(default=None, foreign_key="payment_receipts.id")
    last_attempt_at: datetime | None = Field(default=None)
    last_attempt_message: str | None = Field(default=None)
