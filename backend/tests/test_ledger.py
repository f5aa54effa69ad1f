from datetime import date, datetime

from sqlmodel import select

from app.models.client import Pet
from app.models.contract import Contract, ContractInstallment, ContractStatus, InstallmentStatus
from app.services.ledger import InstallmentLedger, effective_status
from tests.conftest import make_client, make_plan  # type: ignore


def _make_contract(session, *, billing_period: str = "monthly", amount: int = 10000, start: datetime | None = None) -> Contract:
    plan = make_plan(session, billing_frequency=billing_period)
    client = make_client(session)
    pet = Pet(client_id=client.id, name="Rex")
    session.add(pet)
    session.commit()
    annual = billing_period == "annual"
    contract = Contract(
        client_id=client.id,
        pet_id=pet.id,
        plan_id=plan.id,
        contract_number=f"UNIPET-TEST-{pet.id.hex[:4]}",
        status=ContractStatus.ACTIVE.value,
        billing_period=billing_period,
        start_date=start or datetime(2025, 1, 15, 10, 0),
        monthly_amount_cents=0 if annual else amount,
        annual_amount_cents=amount if annual else 0,
        payment_method="credit_card",
    )
    session.add(contract)
    session.commit()
    session.refresh(contract)
    return contract


def _open_count(session, contract_id) -> int:
    rows = session.exec(select(ContractInstallment).where(ContractInstallment.contract_id == contract_id)).all()
    return sum(1 for row in rows if row.status in {"pending", "current", "overdue"})


def test_first_installment_covers_period_starting_at_payment(db_session):
    contract = _make_contract(db_session)
    ledger = InstallmentLedger(db_session)
    moment = datetime(2025, 1, 15, 10, 0)

    installment = ledger.create_first_installment(contract, paid=True, payment_id="pay-1", now=moment)

    assert installment.installment_number == 1
    assert installment.due_date == moment
    assert installment.period_start == date(2025, 1, 15)
    assert installment.period_end == date(2025, 2, 14)
    assert installment.status == InstallmentStatus.PAID.value
    assert installment.amount_cents == 10000


def test_first_installment_pending_for_async_payment(db_session):
    contract = _make_contract(db_session, billing_period="annual", amount=120000)
    installment = InstallmentLedger(db_session).create_first_installment(contract, paid=False, payment_id="pix-1")

    assert installment.status == InstallmentStatus.PENDING.value
    assert installment.paid_at is None
    assert installment.amount_cents == 120000


def test_next_installment_anchored_on_previous_due_date(db_session):
    contract = _make_contract(db_session)
    ledger = InstallmentLedger(db_session)
    first = ledger.create_first_installment(contract, paid=True, payment_id="pay-1", now=datetime(2025, 1, 15, 9, 0))
    # pago com atraso no dia 20: o vencimento seguinte continua no dia 15
    first.paid_at = datetime(2025, 1, 20, 18, 0)
    db_session.add(first)
    db_session.commit()

    second = ledger.create_next_installment_if_needed(contract.id, first)

    assert second is not None
    assert second.installment_number == 2
    assert second.due_date == datetime(2025, 2, 15, 9, 0)
    assert second.period_start == date(2025, 2, 15)
    assert second.period_end == date(2025, 3, 14)
    assert second.status == InstallmentStatus.PENDING.value


def test_create_next_installment_twice_creates_one_row(db_session):
    contract = _make_contract(db_session)
    ledger = InstallmentLedger(db_session)
    first = ledger.create_first_installment(contract, paid=True, payment_id="pay-1")

    created = ledger.create_next_installment_if_needed(contract.id, first)
    repeated = ledger.create_next_installment_if_needed(contract.id, first)

    assert created is not None
    assert repeated is None
    assert len(ledger.list_installments(contract.id)) == 2
    assert _open_count(db_session, contract.id) == 1


def test_concurrent_insert_is_rejected_by_unique_constraint(db_session, monkeypatch):
    contract = _make_contract(db_session)
    ledger = InstallmentLedger(db_session)
    first = ledger.create_first_installment(contract, paid=True, payment_id="pay-1")
    # outra requisição gravou a parcela 2 entre a leitura e a inserção
    concurrent = ContractInstallment(
        contract_id=contract.id,
        installment_number=2,
        due_date=datetime(2025, 2, 15),
        period_start=date(2025, 2, 15),
        period_end=date(2025, 3, 14),
        amount_cents=10000,
    )
    db_session.add(concurrent)
    db_session.commit()
    monkeypatch.setattr(ledger, "list_installments", lambda contract_id: [first])

    result = ledger.create_next_installment_if_needed(contract.id, first)

    assert result is None
    rows = db_session.exec(select(ContractInstallment).where(ContractInstallment.contract_id == contract.id)).all()
    assert sorted(row.installment_number for row in rows) == [1, 2]


def test_next_installment_skipped_for_unpaid_or_cancelled(db_session):
    contract = _make_contract(db_session)
    ledger = InstallmentLedger(db_session)
    pending = ledger.create_first_installment(contract, paid=False, payment_id="pix-1")
    assert ledger.create_next_installment_if_needed(contract.id, pending) is None

    pending.status = InstallmentStatus.PAID.value
    contract.status = ContractStatus.CANCELLED.value
    db_session.add_all([pending, contract])
    db_session.commit()
    assert ledger.create_next_installment_if_needed(contract.id, pending) is None


def test_effective_status_is_computed_at_read_time(db_session):
    contract = _make_contract(db_session)
    installment = InstallmentLedger(db_session).create_first_installment(
        contract, paid=False, now=datetime(2025, 1, 15)
    )

    assert effective_status(installment, datetime(2025, 1, 10)) == InstallmentStatus.CURRENT.value
    assert effective_status(installment, datetime(2025, 1, 20)) == InstallmentStatus.OVERDUE.value


def test_virtual_installment_projection_and_materialization(db_session):
    contract = _make_contract(db_session)
    ledger = InstallmentLedger(db_session)
    ledger.create_first_installment(contract, paid=True, payment_id="pay-1", now=datetime(2025, 1, 15, 9, 0))

    partition = ledger.partition_for_client(contract.client_id, now=datetime(2025, 3, 1))
    assert len(partition.paid) == 1
    assert len(partition.overdue) == 1
    virtual = partition.overdue[0]
    assert virtual.is_virtual is True
    assert virtual.id is None
    assert virtual.virtual_id == f"virtual-{contract.id}"
    assert virtual.installment_number == 2
    assert len(ledger.list_installments(contract.id)) == 1

    materialized = ledger.ensure_payable_installment(contract)
    again = ledger.ensure_payable_installment(contract)
    assert materialized.id == again.id
    assert materialized.installment_number == 2

    partition = ledger.partition_for_client(contract.client_id, now=datetime(2025, 3, 1))
    assert [item.is_virtual for item in partition.overdue] == [False]
