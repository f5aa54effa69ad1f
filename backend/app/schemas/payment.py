from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class GatewayNotification(BaseModel):
    """Corpo do webhook enviado pelo gateway (PascalCase)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    payment_id: str = Field(alias="PaymentId", min_length=1)
    change_type: int = Field(alias="ChangeType", ge=1)
    client_order_id: str | None = Field(default=None, alias="ClientOrderId")
    recurrent_payment_id: str | None = Field(default=None, alias="RecurrentPaymentId")


class PaymentQueryResponse(BaseModel):
    payment_id: str
    status: Literal["approved", "pending", "declined", "expired"]
    gateway_status: int | None = None
    stop_polling: bool = False
    message: str | None = None
