from __future__ import annotations

import os
import uuid
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlmodel import Session, SQLModel, create_engine

from app.api.deps import get_payment_gateway
from app.core.config import settings
from app.db import session as db_session_module
from app.db.session import get_session
from app.main import app
from app.models.client import Client, Pet
from app.models.contract import Contract
from app.models.coupon import Coupon
from app.models.plan import Plan
from app.services.gateway import SandboxGateway
from app.services.ledger import InstallmentLedger
from app.utils.security import TokenRole, create_access_token

pytestmark = pytest.mark.anyio

APPROVED_CARD = "4111111111111111"
DECLINED_CARD = "4111111111111112"
VALID_CPF = "52998224725"
OTHER_CPF = "11144477735"


@pytest.fixture()
def db_engine(tmp_path):
    test_database_url = os.getenv("TEST_DATABASE_URL")
    if not test_database_url:
        db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
        test_database_url = f"sqlite:///{db_path}"

    is_postgres = test_database_url.startswith("postgresql")

    admin_engine = None
    schema_name = None

    if is_postgres:
        make_url(test_database_url)
        schema_name = f"test_{uuid.uuid4().hex}"
        admin_engine = create_engine(test_database_url, future=True)
        with admin_engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                text(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"')
            )
        client_encoding = os.getenv("POSTGRES_CLIENT_ENCODING", "UTF8")
        connect_args = {"options": f"-csearch_path={schema_name},public -cclient_encoding={client_encoding}"}
        engine = create_engine(test_database_url, connect_args=connect_args, future=True)
    else:
        engine = create_engine(test_database_url, connect_args={"check_same_thread": False})

    SQLModel.metadata.create_all(bind=engine)

    original_engine = db_session_module.engine
    original_get_session = db_session_module.get_session

    db_session_module.engine = engine

    def _get_session():
        with Session(engine) as session:
            yield session

    db_session_module.get_session = _get_session

    def override_dependency():
        yield from _get_session()

    app.dependency_overrides[get_session] = override_dependency

    yield engine

    app.dependency_overrides.pop(get_session, None)
    db_session_module.get_session = original_get_session
    db_session_module.engine = original_engine
    engine.dispose()
    if is_postgres and admin_engine and schema_name:
        with admin_engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                text(f'DROP SCHEMA IF EXISTS "{schema_name}" CASCADE')
            )
        admin_engine.dispose()


@pytest.fixture(autouse=True)
def receipts_dir(monkeypatch, tmp_path):
    target = tmp_path / "receipts"
    monkeypatch.setattr(settings, "receipts_dir", str(target))
    yield target


@pytest.fixture()
def gateway() -> SandboxGateway:
    sandbox = SandboxGateway()
    app.dependency_overrides[get_payment_gateway] = lambda: sandbox
    yield sandbox
    app.dependency_overrides.pop(get_payment_gateway, None)


@pytest.fixture()
def client(db_engine, gateway) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


def make_plan(
    session: Session,
    name: str = "BASIC",
    *,
    base_price_cents: int = 10000,
    billing_frequency: str = "monthly",
    multi_pet_discount: bool = True,
    max_installments: int = 1,
) -> Plan:
    plan = Plan(
        name=name,
        base_price_cents=base_price_cents,
        billing_frequency=billing_frequency,
        multi_pet_discount=multi_pet_discount,
        max_installments=max_installments,
    )
    session.add(plan)
    session.commit()
    session.refresh(plan)
    return plan


def make_client(session: Session, *, email: str | None = None, cpf: str | None = VALID_CPF) -> Client:
    client = Client(
        full_name="Maria Souza",
        email=email or f"maria_{uuid.uuid4().hex[:6]}@example.com",
        phone="11999990000",
        cpf=cpf,
    )
    session.add(client)
    session.commit()
    session.refresh(client)
    return client


def make_coupon(session: Session, code: str = "SAVE10", *, type: str = "percentage", value: int = 10, **extra) -> Coupon:
    coupon = Coupon(code=code, type=type, value=value, **extra)
    session.add(coupon)
    session.commit()
    session.refresh(coupon)
    return coupon


def card_payload(number: str = APPROVED_CARD) -> dict[str, str]:
    return {
        "card_number": number,
        "holder": "MARIA SOUZA",
        "expiration_date": f"12/{datetime.utcnow().year + 3}",
        "security_code": "123",
    }


def customer_headers(client_id) -> dict[str, str]:
    token = create_access_token(str(client_id), TokenRole.CLIENT)
    return {"Authorization": f"Bearer {token}"}


def admin_headers(admin_id) -> dict[str, str]:
    token = create_access_token(str(admin_id), TokenRole.ADMIN)
    return {"Authorization": f"Bearer {token}"}


def make_paid_contract(
    session: Session,
    *,
    start: datetime,
    billing_period: str = "monthly",
    amount_cents: int = 10000,
    card_token: str | None = "tok-saved",
    client: Client | None = None,
) -> Contract:
    """Contrato com a parcela 1 paga em ``start`` e a parcela 2 pendente."""
    plan = make_plan(
        session,
        f"PLAN-{uuid.uuid4().hex[:6]}",
        base_price_cents=amount_cents,
        billing_frequency=billing_period,
    )
    owner = client or make_client(session, cpf=None)
    pet = Pet(client_id=owner.id, name=f"Pet {uuid.uuid4().hex[:4]}", plan_id=plan.id)
    session.add(pet)
    session.flush()
    annual = billing_period == "annual"
    contract = Contract(
        client_id=owner.id,
        pet_id=pet.id,
        plan_id=plan.id,
        contract_number=f"UNIPET-TEST-{uuid.uuid4().hex[:8]}",
        status="active",
        billing_period=billing_period,
        start_date=start,
        monthly_amount_cents=0 if annual else amount_cents,
        annual_amount_cents=amount_cents if annual else 0,
        payment_method="credit_card",
        received_date=start,
        card_token=card_token,
        card_brand="Visa",
        card_last_digits="1111",
    )
    session.add(contract)
    session.commit()
    session.refresh(contract)
    ledger = InstallmentLedger(session)
    first = ledger.create_first_installment(contract, paid=True, payment_id=f"pay-{uuid.uuid4().hex}", now=start)
    ledger.create_next_installment_if_needed(contract.id, first)
    session.refresh(contract)
    return contract
