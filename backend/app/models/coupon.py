from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel


class CouponType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_VALUE = "fixed_value"


class Coupon(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "coupons"

    code: str = Field(index=True, unique=True)
    type: str = Field(default=CouponType.PERCENTAGE.value)
    # Pontos percentuais (percentage) ou centavos (fixed_value).
    value: int
    usage_limit: int | None = Field(default=None)
    usage_count: int = Field(default=0)
    is_active: bool = Field(default=True)
    valid_from: datetime | None = Field(default=None)
    valid_until: datetime | None = Field(default=None)
