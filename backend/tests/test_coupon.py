from datetime import datetime, timedelta

import pytest
from fastapi import status

from app.core.config import settings
from app.core.errors import BillingValidationError
from app.services.coupon import CouponService
from tests.conftest import make_coupon  # type: ignore


def test_validation_reasons(db_session):
    now = datetime.utcnow()
    make_coupon(db_session, "OFF", is_active=False)
    make_coupon(db_session, "LATER", valid_from=now + timedelta(days=2))
    make_coupon(db_session, "OLD", valid_until=now - timedelta(days=1))
    make_coupon(db_session, "USED", usage_limit=1, usage_count=1)
    service = CouponService(db_session)

    assert service.validate("NOPE").reason == "Coupon not found"
    assert service.validate("OFF").reason == "Coupon is inactive"
    assert service.validate("LATER").reason == "Coupon is not valid yet"
    assert service.validate("OLD").reason == "Coupon has expired"
    assert service.validate("USED").reason == "Coupon usage limit reached"
    with pytest.raises(BillingValidationError):
        service.require_valid("USED")


def test_create_coupon_normalizes_code(db_session):
    coupon = CouponService(db_session).create_coupon(code=" promo20 ", type="percentage", value=20)

    assert coupon.code == "PROMO20"
    with pytest.raises(BillingValidationError):
        CouponService(db_session).create_coupon(code="PROMO20", type="fixed_value", value=500)


def test_increment_usage(db_session):
    make_coupon(db_session, "SAVE10")
    service = CouponService(db_session)

    coupon = service.increment_usage("save10")

    assert coupon is not None
    assert coupon.usage_count == 1
    assert service.increment_usage("MISSING") is None


def test_validate_endpoint(client, db_session):
    make_coupon(db_session, "SAVE10", value=10)

    response = client.post(f"{settings.api_v1_str}/coupons/validate", json={"code": "save10", "total_cents": 20000})
    assert response.status_code == status.HTTP_200_OK, response.text
    body = response.json()
    assert body["valid"] is True
    assert body["coupon"]["code"] == "SAVE10"
    assert body["discount_cents"] == 2000

    missing = client.post(f"{settings.api_v1_str}/coupons/validate", json={"code": "NOPE"})
    assert missing.status_code == status.HTTP_200_OK
    assert missing.json() == {"valid": False, "coupon": None, "reason": "Coupon not found", "discount_cents": None}
