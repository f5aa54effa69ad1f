from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from sqlmodel import Session

from app.core.config import settings
from app.core.errors import BillingValidationError
from app.models.payment import PaymentMethod
from app.models.plan import BillingPeriod, Plan
from app.services.coupon import CouponService, coupon_discount, percent_of

# Desconto por posição do pet no carrinho: 1º 0%, 2º 5%, 3º 10%, 4º em diante 15%.
MULTI_PET_DISCOUNT_LADDER = (0, 5, 10, 15)


def pet_discount_percent(index: int) -> int:
    return MULTI_PET_DISCOUNT_LADDER[min(index, len(MULTI_PET_DISCOUNT_LADDER) - 1)]


def plan_unit_price(plan: Plan) -> int:
    """Preço de um pet por ciclo: planos anuais cobram 12 mensalidades."""
    if plan.is_annual_only:
        return plan.base_price_cents * 12
    return plan.base_price_cents


@dataclass
class PetPriceLine:
    index: int
    name: str
    base_price_cents: int
    discount_percent: int
    price_cents: int


@dataclass
class PriceQuote:
    plan_id: object
    plan_name: str
    billing_period: str
    lines: list[PetPriceLine] = field(default_factory=list)
    subtotal_cents: int = 0
    coupon_code: str | None = None
    coupon_discount_cents: int = 0
    total_cents: int = 0

    def pets_data(self, pets: Sequence[dict]) -> list[dict]:
        """Linhas por pet serializáveis (dados cadastrais + preço)."""
        rows: list[dict] = []
        for line, pet in zip(self.lines, pets):
            row = dict(pet)
            row.update(
                {
                    "name": line.name,
                    "base_price_cents": line.base_price_cents,
                    "discount_percent": line.discount_percent,
                    "price_cents": line.price_cents,
                }
            )
            rows.append(row)
        return rows


def price_pets(plan: Plan, pet_names: Sequence[str]) -> list[PetPriceLine]:
    unit = plan_unit_price(plan)
    lines: list[PetPriceLine] = []
    for index, name in enumerate(pet_names):
        discount = pet_discount_percent(index) if plan.multi_pet_discount else 0
        lines.append(
            PetPriceLine(
                index=index,
                name=name,
                base_price_cents=unit,
                discount_percent=discount,
                price_cents=unit - percent_of(unit, discount),
            )
        )
    return lines


def resolve_billing_period(plan: Plan, requested: str | None) -> str:
    plan_period = BillingPeriod.ANNUAL.value if plan.is_annual_only else BillingPeriod.MONTHLY.value
    if requested is None or requested == plan_period:
        return plan_period
    if plan.is_annual_only:
        raise BillingValidationError(f"Plan {plan.name} only accepts annual billing")
    raise BillingValidationError(f"Plan {plan.name} only accepts monthly billing")


def enforce_payment_rules(plan: Plan, billing_period: str | None, payment_method: str, installments: int) -> str:
    """Regras verificadas antes de qualquer chamada ao gateway. Retorna o período efetivo."""
    if not plan.is_active:
        raise BillingValidationError("Plan is not available")
    period = resolve_billing_period(plan, billing_period)
    if installments < 1:
        raise BillingValidationError("Installments must be at least 1")
    if payment_method == PaymentMethod.PIX.value:
        if installments > 1:
            raise BillingValidationError("PIX payments do not accept installments")
        return period
    if payment_method != PaymentMethod.CREDIT_CARD.value:
        raise BillingValidationError(f"Unsupported payment method: {payment_method}")
    if installments > settings.max_card_installments:
        raise BillingValidationError(f"Credit card installments are limited to {settings.max_card_installments}")
    if installments > 1 and plan.single_installment_only:
        raise BillingValidationError(f"Plan {plan.name} does not accept installments")
    if installments > plan.max_installments:
        raise BillingValidationError(f"Plan {plan.name} accepts at most {plan.max_installments} installments")
    return period


class PricingService:
    """Preço autoritativo do servidor. O valor enviado pelo cliente é apenas informativo."""

    def __init__(self, session: Session, coupons: CouponService | None = None) -> None:
        self.session = session
        self.coupons = coupons or CouponService(session)

    def quote(
        self,
        plan: Plan,
        pet_names: Sequence[str],
        *,
        billing_period: str | None = None,
        coupon_code: str | None = None,
        now: datetime | None = None,
    ) -> PriceQuote:
        if not pet_names:
            raise BillingValidationError("At least one pet is required")
        period = resolve_billing_period(plan, billing_period)
        lines = price_pets(plan, pet_names)
        subtotal = sum(line.price_cents for line in lines)
        quote = PriceQuote(
            plan_id=plan.id,
            plan_name=plan.name,
            billing_period=period,
            lines=lines,
            subtotal_cents=subtotal,
            total_cents=subtotal,
        )
        if coupon_code:
            coupon = self.coupons.require_valid(coupon_code, now=now)
            quote.coupon_code = coupon.code
            quote.coupon_discount_cents = coupon_discount(coupon, subtotal)
            quote.total_cents = max(subtotal - quote.coupon_discount_cents, 0)
        return quote
