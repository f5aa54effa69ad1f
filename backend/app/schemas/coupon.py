from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.schemas.common import IDModel, Timestamped


class CouponRead(IDModel, Timestamped):
    code: str
    type: str
    value: int
    usage_limit: int | None = None
    usage_count: int
    is_active: bool
    valid_from: datetime | None = None
    valid_until: datetime | None = None


class CouponPublic(BaseModel):
    code: str
    type: str
    value: int


class CouponCreate(BaseModel):
    code: str = Field(min_length=2, max_length=40)
    type: Literal["percentage", "fixed_value"]
    value: int = Field(gt=0)
    usage_limit: int | None = Field(default=None, ge=1)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    is_active: bool = True


class CouponValidateRequest(BaseModel):
    code: str = Field(min_length=1)
    total_cents: int | None = Field(default=None, ge=0)


class CouponValidateResponse(BaseModel):
    valid: bool
    coupon: CouponPublic | None = None
    reason: str | None = None
    discount_cents: int | None = None
