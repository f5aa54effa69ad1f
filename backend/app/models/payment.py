from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    PIX = "pix"


class PendingPaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    EXPIRED = "expired"


class PendingPayment(UUIDModel, TimestampedModel, table=True):
    """Checkout aguardando confirmação do gateway.

    Pets e contratos só existem depois da confirmação; até lá os dados ficam aqui.
    """

    __tablename__ = "pending_payments"

    payment_id: str = Field(index=True, unique=True)
    payment_method: str
    status: str = Field(default=PendingPaymentStatus.PENDING.value, index=True)
    client_id: UUID = Field(foreign_key="clients.id", index=True)
    plan_id: UUID = Field(foreign_key="plans.id")
    billing_period: str
    installments: int = Field(default=1)
    subtotal_cents: int
    coupon_code: str | None = Field(default=None)
    coupon_discount_cents: int = Field(default=0)
    total_cents: int
    pets_data: list | None = Field(default_factory=list, sa_type=JSON)
    pix_qr_code: str | None = Field(default=None)
    pix_copy_paste: str | None = Field(default=None)
    proof_of_sale: str | None = Field(default=None)
    authorization_code: str | None = Field(default=None)
    tid: str | None = Field(default=None)
    return_code: str | None = Field(default=None)
    return_message: str | None = Field(default=None)
    card_token: str | None = Field(default=None)
    card_brand: str | None = Field(default=None)
    card_last_digits: str | None = Field(default=None, max_length=4)
    expires_at: datetime | None = Field(default=None)
    confirmed_at: datetime | None = Field(default=None)


class InstallmentPaymentAttempt(UUIDModel, TimestampedModel, table=True):
    """Cada PIX gerado para uma parcela; mantém ids anteriores conciliáveis."""

    __tablename__ = "installment_payment_attempts"

    payment_id: str = Field(index=True, unique=True)
    installment_id: UUID = Field(foreign_key="contract_installments.id", index=True)
    payment_method: str = Field(default=PaymentMethod.PIX.value)
    status: str = Field(default=PendingPaymentStatus.PENDING.value, index=True)
    amount_cents: int
    pix_qr_code: str | None = Field(default=None)
    pix_copy_paste: str | None = Field(default=None)
    expires_at: datetime | None = Field(default=None)
