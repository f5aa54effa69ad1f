from __future__ import annotations

from datetime import date, datetime

from sqlmodel import select

from app.models.contract import ContractInstallment
from scripts.fix_installment_dates import apply_fixes, find_misdated_installments
from tests.conftest import make_paid_contract  # type: ignore

START = datetime(2025, 1, 10, 12, 0)


def _second(session, contract_id) -> ContractInstallment:
    return session.exec(
        select(ContractInstallment)
        .where(ContractInstallment.contract_id == contract_id)
        .where(ContractInstallment.installment_number == 2)
    ).one()


def test_second_installment_two_periods_ahead_is_fixed(db_session):
    contract = make_paid_contract(db_session, start=START)
    healthy = make_paid_contract(db_session, start=START)
    second = _second(db_session, contract.id)
    second.due_date = datetime(2025, 3, 10, 12, 0)
    second.period_start = date(2025, 3, 10)
    db_session.add(second)
    db_session.commit()

    fixes = find_misdated_installments(db_session)

    assert [fix.contract_id for fix in fixes] == [contract.id]
    assert fixes[0].correct_due_date == datetime(2025, 2, 10, 12, 0)
    assert apply_fixes(db_session, fixes) == 1
    db_session.refresh(second)
    assert second.due_date == datetime(2025, 2, 10, 12, 0)
    assert second.period_start == date(2025, 2, 10)
    assert second.period_end == date(2025, 3, 9)
    assert find_misdated_installments(db_session) == []
    assert _second(db_session, healthy.id).due_date == datetime(2025, 2, 10, 12, 0)


def test_paid_installments_are_never_touched(db_session):
    contract = make_paid_contract(db_session, start=START)
    second = _second(db_session, contract.id)
    second.due_date = datetime(2025, 3, 10, 12, 0)
    second.status = "paid"
    db_session.add(second)
    db_session.commit()

    assert find_misdated_installments(db_session) == []
