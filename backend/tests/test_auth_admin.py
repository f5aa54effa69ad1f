from __future__ import annotations

from datetime import datetime

from fastapi import status
from sqlmodel import select

from app.core.config import settings
from app.models.admin import AdminUser
from app.models.audit import AuditLog
from app.models.plan import Plan
from app.utils.security import get_password_hash
from tests.conftest import (  # type: ignore
    VALID_CPF,
    admin_headers,
    customer_headers,
    make_client,
    make_paid_contract,
)

API = settings.api_v1_str


def _admin(session, email: str = "admin@unipet.com.br", password: str = "Senha@123") -> AdminUser:
    admin = AdminUser(email=email, full_name="Administrador", password_hash=get_password_hash(password))
    session.add(admin)
    session.commit()
    session.refresh(admin)
    return admin


def test_health_endpoints(client):
    assert client.get("/health/live").json() == {"status": "ok"}
    ready = client.get("/health/ready")
    assert ready.status_code == status.HTTP_200_OK


def test_customer_login_with_email_and_cpf(client, db_session):
    customer = make_client(db_session, email="ana@example.com")

    response = client.post(f"{API}/auth/customer/login", json={"email": "ANA@example.com", "cpf": "529.982.247-25"})
    wrong = client.post(f"{API}/auth/customer/login", json={"email": "ana@example.com", "cpf": "11144477735"})

    assert response.status_code == status.HTTP_200_OK, response.text
    body = response.json()
    assert body["role"] == "client"
    assert body["subject_id"] == str(customer.id)
    assert wrong.status_code == status.HTTP_401_UNAUTHORIZED

    installments = client.get(
        f"{API}/customer/installments",
        headers={"Authorization": f"Bearer {body['access_token']}"},
    )
    assert installments.status_code == status.HTTP_200_OK


def test_admin_login_records_last_login(client, db_session):
    admin = _admin(db_session)

    ok = client.post(f"{API}/auth/admin/login", json={"email": admin.email, "password": "Senha@123"})
    bad = client.post(f"{API}/auth/admin/login", json={"email": admin.email, "password": "errada"})

    assert ok.status_code == status.HTTP_200_OK
    assert ok.json()["role"] == "admin"
    assert bad.status_code == status.HTTP_401_UNAUTHORIZED
    db_session.refresh(admin)
    assert admin.last_login_at is not None
    assert db_session.exec(select(AuditLog).where(AuditLog.event_type == "admin_login")).one()


def test_invalid_token_is_rejected(client):
    response = client.get(f"{API}/customer/installments", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_admin_routes_require_admin_token(client, db_session):
    customer = make_client(db_session, cpf=VALID_CPF)

    anonymous = client.get(f"{API}/admin/plans")
    as_customer = client.get(f"{API}/admin/plans", headers=customer_headers(customer.id))

    assert anonymous.status_code == status.HTTP_403_FORBIDDEN
    assert as_customer.status_code == status.HTTP_403_FORBIDDEN


def test_admin_creates_plan_with_type_rules(client, db_session):
    headers = admin_headers(_admin(db_session).id)

    created = client.post(
        f"{API}/admin/plans",
        json={"name": "Comfort Plus", "base_price_cents": 15000, "billing_frequency": "monthly"},
        headers=headers,
    )
    duplicate = client.post(
        f"{API}/admin/plans",
        json={"name": "Comfort Plus", "base_price_cents": 15000},
        headers=headers,
    )

    assert created.status_code == status.HTTP_201_CREATED, created.text
    assert created.json()["billing_frequency"] == "annual"
    assert created.json()["max_installments"] == 12
    assert duplicate.status_code == status.HTTP_400_BAD_REQUEST


def test_seed_default_plans_is_idempotent(client, db_session):
    headers = admin_headers(_admin(db_session).id)

    first = client.post(f"{API}/admin/plans/seed", headers=headers)
    second = client.post(f"{API}/admin/plans/seed", headers=headers)

    assert [plan["name"] for plan in first.json()] == ["BASIC", "INFINITY", "COMFORT", "PLATINUM"]
    assert len(second.json()) == 4
    assert len(db_session.exec(select(Plan)).all()) == 4
    public = client.get(f"{API}/plans").json()
    assert {plan["name"] for plan in public} == {"BASIC", "INFINITY", "COMFORT", "PLATINUM"}


def test_admin_manages_coupons(client, db_session):
    headers = admin_headers(_admin(db_session).id)

    created = client.post(
        f"{API}/admin/coupons",
        json={"code": "promo20", "type": "percentage", "value": 20, "usage_limit": 5},
        headers=headers,
    )
    invalid = client.post(
        f"{API}/admin/coupons",
        json={"code": "BAD", "type": "percentage", "value": 150},
        headers=headers,
    )

    assert created.status_code == status.HTTP_201_CREATED, created.text
    assert created.json()["code"] == "PROMO20"
    assert invalid.status_code == status.HTTP_400_BAD_REQUEST
    listing = client.get(f"{API}/admin/coupons", headers=headers).json()
    assert [coupon["code"] for coupon in listing] == ["PROMO20"]


def test_admin_runs_billing_jobs(client, db_session, gateway):
    headers = admin_headers(_admin(db_session).id)
    make_paid_contract(db_session, start=datetime(2020, 1, 10, 12, 0), card_token=None)

    response = client.post(f"{API}/admin/jobs/billing", headers=headers)

    assert response.status_code == status.HTTP_200_OK, response.text
    body = response.json()
    assert body["renewals_attempted"] == 0
    assert body["statuses_changed"] == 1
