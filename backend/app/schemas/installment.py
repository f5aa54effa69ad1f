from __future__ import annotations

from datetime import date, datetime
from typing import List
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class InstallmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID | None = None
    virtual_id: str | None = None
    contract_id: UUID
    contract_number: str
    installment_number: int
    due_date: datetime
    period_start: date
    period_end: date
    amount_cents: int
    status: str
    billing_period: str
    pet_name: str | None = None
    plan_name: str | None = None
    paid_at: datetime | None = None
    payment_id: str | None = None
    receipt_id: UUID | None = None
    is_virtual: bool = False


class InstallmentPartitionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    paid: List[InstallmentRead]
    current: List[InstallmentRead]
    overdue: List[InstallmentRead]


class ContractRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    contract_number: str
    pet_id: UUID
    plan_id: UUID
    status: str
    evaluated_status: str | None = None
    billing_period: str
    start_date: datetime
    end_date: datetime | None = None
    monthly_amount_cents: int
    annual_amount_cents: int
    payment_method: str
    received_date: datetime | None = None
    days_past_due: int = 0
    next_due_date: datetime | None = None


class RegularizationRead(BaseModel):
    contract_id: UUID
    billing_period: str
    base_amount_cents: int
    overdue_periods: int
    include_current_period: bool
    amount_cents: int
