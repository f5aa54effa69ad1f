from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from app.schemas.common import IDModel, Timestamped


class PlanRead(IDModel, Timestamped):
    name: str
    description: str | None = None
    base_price_cents: int
    billing_frequency: str
    multi_pet_discount: bool
    max_installments: int
    is_active: bool
    display_order: int


class PlanCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    base_price_cents: int = Field(gt=0)
    billing_frequency: Literal["monthly", "annual"] = "monthly"
    multi_pet_discount: bool = False
    max_installments: int = Field(default=12, ge=1, le=12)
    display_order: int = 0
