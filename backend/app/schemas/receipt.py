from __future__ import annotations

from datetime import datetime
from uuid import UUID

from app.schemas.common import IDModel, Timestamped


class ReceiptRead(IDModel, Timestamped):
    payment_id: str
    receipt_number: str
    client_name: str
    plan_name: str | None = None
    billing_period: str | None = None
    installment_number: int | None = None
    amount_cents: int
    payment_method: str
    payment_date: datetime
    proof_of_sale: str | None = None
    authorization_code: str | None = None
    pets_data: list | None = None
    contract_id: UUID | None = None
    status: str
