from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlmodel import Session, select

from app.core.errors import BillingValidationError
from app.core.logging_setup import logger
from app.models.coupon import Coupon, CouponType


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def percent_of(amount_cents: int, percent: int | float) -> int:
    """Arredondamento comercial (meio para cima) em centavos."""
    value = Decimal(amount_cents) * Decimal(str(percent)) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def coupon_discount(coupon: Coupon, total_cents: int) -> int:
    if coupon.type == CouponType.PERCENTAGE.value:
        return min(percent_of(total_cents, coupon.value), total_cents)
    return min(max(coupon.value, 0), total_cents)


@dataclass
class CouponCheck:
    valid: bool
    coupon: Coupon | None = None
    reason: str | None = None


class CouponService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_code(self, code: str) -> Coupon | None:
        normalized = normalize_code(code)
        if not normalized:
            return None
        return self.session.exec(select(Coupon).where(Coupon.code == normalized)).first()

    def list_coupons(self) -> list[Coupon]:
        return list(self.session.exec(select(Coupon).order_by(Coupon.created_at.desc())).all())

    def create_coupon(
        self,
        *,
        code: str,
        type: str,
        value: int,
        usage_limit: int | None = None,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
        is_active: bool = True,
    ) -> Coupon:
        normalized = normalize_code(code)
        if not normalized:
            raise BillingValidationError("Coupon code is required")
        if self.get_by_code(normalized):
            raise BillingValidationError("Coupon code already exists")
        if type == CouponType.PERCENTAGE.value and not 0 < value <= 100:
            raise BillingValidationError("Percentage coupons must be between 1 and 100")
        if type == CouponType.FIXED_VALUE.value and value <= 0:
            raise BillingValidationError("Fixed value coupons must be positive")
        if valid_from and valid_until and valid_until < valid_from:
            raise BillingValidationError("Coupon validity window is invalid")
        coupon = Coupon(
            code=normalized,
            type=type,
            value=value,
            usage_limit=usage_limit,
            valid_from=valid_from,
            valid_until=valid_until,
            is_active=is_active,
        )
        self.session.add(coupon)
        self.session.commit()
        self.session.refresh(coupon)
        return coupon

    def validate(self, code: str, now: datetime | None = None) -> CouponCheck:
        moment = now or datetime.utcnow()
        coupon = self.get_by_code(code)
        if not coupon:
            return CouponCheck(valid=False, reason="Coupon not found")
        if not coupon.is_active:
            return CouponCheck(valid=False, coupon=coupon, reason="Coupon is inactive")
        if coupon.valid_from and moment < coupon.valid_from:
            return CouponCheck(valid=False, coupon=coupon, reason="Coupon is not valid yet")
        if coupon.valid_until and moment > coupon.valid_until:
            return CouponCheck(valid=False, coupon=coupon, reason="Coupon has expired")
        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            return CouponCheck(valid=False, coupon=coupon, reason="Coupon usage limit reached")
        return CouponCheck(valid=True, coupon=coupon)

    def require_valid(self, code: str, now: datetime | None = None) -> Coupon:
        check = self.validate(code, now=now)
        if not check.valid or not check.coupon:
            raise BillingValidationError(check.reason or "Invalid coupon")
        return check.coupon

    def increment_usage(self, code: str, *, commit: bool = True) -> Coupon | None:
        coupon = self.get_by_code(code)
        if not coupon:
            logger.warning("Cupom %s não encontrado ao registrar uso", normalize_code(code))
            return None
        coupon.usage_count = int(coupon.usage_count or 0) + 1
        coupon.touch()
        self.session.add(coupon)
        if commit:
            self.session.commit()
            self.session.refresh(coupon)
        logger.info("Uso do cupom %s registrado (total=%s)", coupon.code, coupon.usage_count)
        return coupon
