from __future__ import annotations

from enum import Enum

from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class Plan(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "plans"

    name: str = Field(index=True, unique=True)
    description: str | None = Field(default=None)
    base_price_cents: int
    billing_frequency: str = Field(default=BillingPeriod.MONTHLY.value)
    multi_pet_discount: bool = Field(default=False)
    max_installments: int = Field(default=12)
    is_active: bool = Field(default=True)
    display_order: int = Field(default=0)

    @property
    def is_annual_only(self) -> bool:
        return self.billing_frequency == BillingPeriod.ANNUAL.value

    @property
    def single_installment_only(self) -> bool:
        return self.max_installments <= 1
