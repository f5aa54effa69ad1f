import pytest

from app.core.errors import BillingValidationError
from app.services.pricing import PricingService, enforce_payment_rules, pet_discount_percent
from tests.conftest import make_coupon, make_plan  # type: ignore


def test_multi_pet_ladder():
    assert [pet_discount_percent(i) for i in range(6)] == [0, 5, 10, 15, 15, 15]


def test_basic_three_pets_quote(db_session):
    plan = make_plan(db_session, "BASIC", base_price_cents=10000)

    quote = PricingService(db_session).quote(plan, ["Rex", "Mel", "Thor"])

    assert [line.price_cents for line in quote.lines] == [10000, 9500, 9000]
    assert quote.subtotal_cents == 28500
    assert quote.total_cents == 28500
    assert quote.billing_period == "monthly"


def test_annual_plan_charges_twelve_months_without_ladder(db_session):
    plan = make_plan(
        db_session,
        "COMFORT",
        base_price_cents=15000,
        billing_frequency="annual",
        multi_pet_discount=False,
        max_installments=12,
    )

    quote = PricingService(db_session).quote(plan, ["Rex", "Mel"])

    assert [line.price_cents for line in quote.lines] == [180000, 180000]
    assert quote.billing_period == "annual"


def test_percentage_coupon_applied_after_ladder(db_session):
    plan = make_plan(db_session, "INFINITY", base_price_cents=20000, multi_pet_discount=False)
    make_coupon(db_session, "SAVE10", value=10)

    quote = PricingService(db_session).quote(plan, ["Rex"], coupon_code="save10")

    assert quote.coupon_code == "SAVE10"
    assert quote.coupon_discount_cents == 2000
    assert quote.total_cents == 18000


def test_fixed_coupon_never_goes_below_zero(db_session):
    plan = make_plan(db_session, base_price_cents=5000)
    make_coupon(db_session, "BIGFIX", type="fixed_value", value=90000)

    quote = PricingService(db_session).quote(plan, ["Rex"], coupon_code="BIGFIX")

    assert quote.coupon_discount_cents == 5000
    assert quote.total_cents == 0


def test_annual_only_plan_rejects_monthly(db_session):
    plan = make_plan(db_session, "COMFORT", billing_frequency="annual", max_installments=12)
    with pytest.raises(BillingValidationError):
        enforce_payment_rules(plan, "monthly", "credit_card", 1)


def test_payment_rules(db_session):
    basic = make_plan(db_session, "BASIC")
    platinum = make_plan(db_session, "PLATINUM", billing_frequency="annual", max_installments=12)

    with pytest.raises(BillingValidationError):
        enforce_payment_rules(basic, None, "credit_card", 2)
    with pytest.raises(BillingValidationError):
        enforce_payment_rules(platinum, None, "credit_card", 13)
    with pytest.raises(BillingValidationError):
        enforce_payment_rules(platinum, None, "pix", 2)

    assert enforce_payment_rules(platinum, None, "credit_card", 12) == "annual"
    assert enforce_payment_rules(basic, "monthly", "pix", 1) == "monthly"
