from __future__ import annotations

import pytest
from fastapi import status
from sqlmodel import select

from app.core.config import settings
from app.core.errors import BillingValidationError
from app.models.client import Pet
from app.models.contract import Contract, ContractInstallment
from app.models.payment import PendingPayment
from app.models.receipt import PaymentReceipt
from app.schemas.checkout import SimpleProcessRequest
from app.services.checkout import CheckoutService
from tests.conftest import (  # type: ignore
    DECLINED_CARD,
    VALID_CPF,
    card_payload,
    make_coupon,
    make_plan,
)

CHECKOUT = f"{settings.api_v1_str}/checkout"


def _customer(email: str = "maria@example.com") -> dict:
    return {"full_name": "Maria Souza", "email": email, "phone": "11999990000", "cpf": VALID_CPF}


def _pets(*names: str) -> list[dict]:
    return [{"name": name, "species": "dog"} for name in names]


def test_save_customer_data_quotes_without_creating_pets(client, db_session, gateway):
    plan = make_plan(db_session)

    response = client.post(
        f"{CHECKOUT}/save-customer-data",
        json={"customer": _customer(), "plan_id": str(plan.id), "pets": _pets("Rex", "Mel")},
    )

    assert response.status_code == status.HTTP_200_OK, response.text
    body = response.json()
    assert body["quote"]["total_cents"] == 19500
    assert [line["discount_percent"] for line in body["quote"]["lines"]] == [0, 5]
    assert db_session.exec(select(Pet)).all() == []
    assert gateway.calls == []


def test_complete_registration_reuses_existing_cpf(client, db_session):
    plan = make_plan(db_session)
    first = client.post(
        f"{CHECKOUT}/save-customer-data",
        json={"customer": _customer("primeiro@example.com"), "plan_id": str(plan.id), "pets": _pets("Rex")},
    ).json()
    temporary = client.post(
        f"{CHECKOUT}/save-customer-data",
        json={
            "customer": {"full_name": "Maria S.", "email": "segundo@example.com"},
            "plan_id": str(plan.id),
            "pets": _pets("Rex"),
        },
    ).json()
    assert temporary["client_id"] != first["client_id"]

    response = client.post(
        f"{CHECKOUT}/complete-registration",
        json={
            "client_id": temporary["client_id"],
            "cpf": "529.982.247-25",
            "address": {"cep": "01310100", "address": "Av. Paulista", "number": "1000", "city": "São Paulo", "state": "SP"},
        },
    )

    assert response.status_code == status.HTTP_200_OK, response.text
    assert response.json() == {"client_id": first["client_id"], "reused_existing_client": True}


def test_card_checkout_three_pets_single_receipt(client, db_session, gateway):
    plan = make_plan(db_session, "BASIC", base_price_cents=10000)

    response = client.post(
        f"{CHECKOUT}/simple-process",
        json={
            "customer": _customer(),
            "plan_id": str(plan.id),
            "pets": _pets("Rex", "Mel", "Thor"),
            "payment_method": "credit_card",
            "card": card_payload(),
            "amount_cents": 1,
        },
    )

    assert response.status_code == status.HTTP_201_CREATED, response.text
    body = response.json()
    assert body["status"] == "approved"
    assert body["total_cents"] == 28500
    assert len(body["contract_ids"]) == 3
    assert body["receipt_id"] is not None
    assert gateway.calls == ["create_credit_card_payment"]

    contracts = db_session.exec(select(Contract)).all()
    assert sorted(c.monthly_amount_cents for c in contracts) == [9000, 9500, 10000]
    assert {c.status for c in contracts} == {"active"}
    installments = db_session.exec(select(ContractInstallment)).all()
    paid = [item for item in installments if item.status == "paid"]
    assert len(paid) == 3
    assert {item.receipt_id for item in paid} == {paid[0].receipt_id}
    assert len([item for item in installments if item.status == "pending"]) == 3

    receipts = db_session.exec(select(PaymentReceipt)).all()
    assert len(receipts) == 1
    assert receipts[0].amount_cents == 28500
    assert len(receipts[0].pets_data) == 3


def test_annual_only_plan_rejects_monthly_before_gateway(client, db_session, gateway):
    plan = make_plan(db_session, "COMFORT", billing_frequency="annual", multi_pet_discount=False, max_installments=12)

    response = client.post(
        f"{CHECKOUT}/simple-process",
        json={
            "customer": _customer(),
            "plan_id": str(plan.id),
            "pets": _pets("Rex"),
            "payment_method": "credit_card",
            "billing_period": "monthly",
            "card": card_payload(),
        },
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert gateway.calls == []
    assert db_session.exec(select(PendingPayment)).all() == []


def test_declined_card_creates_nothing(client, db_session, gateway):
    plan = make_plan(db_session)

    response = client.post(
        f"{CHECKOUT}/simple-process",
        json={
            "customer": _customer(),
            "plan_id": str(plan.id),
            "pets": _pets("Rex"),
            "payment_method": "credit_card",
            "card": card_payload(DECLINED_CARD),
        },
    )

    assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
    detail = response.json()["detail"]
    assert detail["category"] == "card_declined"
    assert detail["return_code"] == "05"
    assert db_session.exec(select(Pet)).all() == []
    assert db_session.exec(select(Contract)).all() == []
    pending = db_session.exec(select(PendingPayment)).one()
    assert pending.status == "declined"


def test_duplicate_pet_names_and_covered_pets_rejected(client, db_session, gateway):
    plan = make_plan(db_session)
    base = {
        "customer": _customer(),
        "plan_id": str(plan.id),
        "payment_method": "credit_card",
        "card": card_payload(),
    }

    duplicated = client.post(f"{CHECKOUT}/simple-process", json={**base, "pets": _pets("Rex", "rex")})
    assert duplicated.status_code == status.HTTP_400_BAD_REQUEST
    assert gateway.calls == []

    first = client.post(f"{CHECKOUT}/simple-process", json={**base, "pets": _pets("Rex")})
    assert first.status_code == status.HTTP_201_CREATED, first.text

    again = client.post(f"{CHECKOUT}/simple-process", json={**base, "pets": _pets("REX")})
    assert again.status_code == status.HTTP_400_BAD_REQUEST
    assert gateway.calls == ["create_credit_card_payment"]
    assert len(db_session.exec(select(Pet)).all()) == 1


def test_coupon_applied_and_counted_once(client, db_session, gateway):
    plan = make_plan(db_session, "INFINITY", base_price_cents=20000, multi_pet_discount=False)
    coupon = make_coupon(db_session, "SAVE10", value=10)

    response = client.post(
        f"{CHECKOUT}/simple-process",
        json={
            "customer": _customer(),
            "plan_id": str(plan.id),
            "pets": _pets("Rex"),
            "payment_method": "credit_card",
            "card": card_payload(),
            "coupon_code": "save10",
        },
    )

    assert response.status_code == status.HTTP_201_CREATED, response.text
    assert response.json()["total_cents"] == 18000
    db_session.refresh(coupon)
    assert coupon.usage_count == 1
    contract = db_session.exec(select(Contract)).one()
    assert contract.monthly_amount_cents == 20000
    installments = db_session.exec(
        select(ContractInstallment)
        .where(ContractInstallment.contract_id == contract.id)
        .order_by(ContractInstallment.installment_number)
    ).all()
    assert [(item.status, item.amount_cents) for item in installments] == [("paid", 18000), ("pending", 20000)]


def test_zero_total_rejected(client, db_session, gateway):
    plan = make_plan(db_session, base_price_cents=5000)
    make_coupon(db_session, "FREE", type="fixed_value", value=5000)

    response = client.post(
        f"{CHECKOUT}/simple-process",
        json={
            "customer": _customer(),
            "plan_id": str(plan.id),
            "pets": _pets("Rex"),
            "payment_method": "pix",
            "coupon_code": "FREE",
        },
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert gateway.calls == []


def test_pix_checkout_webhook_delivered_twice(client, db_session, gateway):
    plan = make_plan(db_session)
    coupon = make_coupon(db_session, "SAVE10", value=10)

    response = client.post(
        f"{CHECKOUT}/simple-process",
        json={
            "customer": _customer(),
            "plan_id": str(plan.id),
            "pets": _pets("Rex", "Mel"),
            "payment_method": "pix",
            "coupon_code": "SAVE10",
        },
    )
    assert response.status_code == status.HTTP_201_CREATED, response.text
    body = response.json()
    assert body["status"] == "pending"
    assert body["pix"]["copy_paste_code"]
    assert db_session.exec(select(Contract)).all() == []
    payment_id = body["payment_id"]

    gateway.settle_pix(payment_id)
    notification = {"PaymentId": payment_id, "ChangeType": 1}
    first = client.post(f"{settings.api_v1_str}/webhooks/gateway", json=notification)
    second = client.post(f"{settings.api_v1_str}/webhooks/gateway", json=notification)

    assert first.status_code == status.HTTP_200_OK, first.text
    assert first.json()["status"] == "applied"
    assert second.json()["status"] == "already_processed"

    contracts = db_session.exec(select(Contract)).all()
    assert len(contracts) == 2
    installments = db_session.exec(select(ContractInstallment)).all()
    assert len([item for item in installments if item.status == "paid"]) == 2
    assert len([item for item in installments if item.status == "pending"]) == 2
    assert len(db_session.exec(select(PaymentReceipt)).all()) == 1
    assert len(db_session.exec(select(Pet)).all()) == 2
    db_session.refresh(coupon)
    assert coupon.usage_count == 1


def test_card_checkout_without_card_rejected_before_gateway(db_session, gateway):
    plan = make_plan(db_session)
    payload = SimpleProcessRequest.model_validate(
        {
            "customer": _customer(),
            "plan_id": str(plan.id),
            "pets": _pets("Rex"),
            "payment_method": "credit_card",
            "card": card_payload(),
        }
    ).model_copy(update={"card": None})

    with pytest.raises(BillingValidationError, match="Card data is required"):
        CheckoutService(db_session, gateway).simple_process(payload)

    assert gateway.calls == []
