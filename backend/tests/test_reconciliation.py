from __future__ import annotations

from sqlmodel import select

from app.core.config import settings
from app.models.contract import Contract, ContractInstallment
from app.models.receipt import PaymentReceipt
from app.services.receipt import ReceiptService
from app.services.reconciliation import ReconciliationService
from tests.conftest import VALID_CPF, card_payload, make_plan  # type: ignore


def _card_checkout(client, db_session, pets=("Rex",)) -> dict:
    plan = make_plan(db_session)
    response = client.post(
        f"{settings.api_v1_str}/checkout/simple-process",
        json={
            "customer": {"full_name": "Maria Souza", "email": "maria@example.com", "cpf": VALID_CPF},
            "plan_id": str(plan.id),
            "pets": [{"name": name} for name in pets],
            "payment_method": "credit_card",
            "card": card_payload(),
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_repeated_confirmation_changes_nothing(client, db_session, gateway):
    body = _card_checkout(client, db_session, pets=("Rex", "Mel"))
    service = ReconciliationService(db_session, gateway)
    payment = gateway.query_payment(body["payment_id"])

    result = service.apply_payment_confirmation(payment, source="polling")

    assert result.status == "already_processed"
    assert result.installments_paid == []
    assert len(db_session.exec(select(Contract)).all()) == 2
    assert len(db_session.exec(select(ContractInstallment)).all()) == 4
    assert len(db_session.exec(select(PaymentReceipt)).all()) == 1


def test_missing_receipt_is_repaired_on_next_confirmation(client, db_session, gateway):
    body = _card_checkout(client, db_session)
    for installment in db_session.exec(select(ContractInstallment)).all():
        installment.receipt_id = None
        db_session.add(installment)
    db_session.commit()
    db_session.delete(db_session.exec(select(PaymentReceipt)).one())
    db_session.commit()

    result = ReconciliationService(db_session, gateway).apply_payment_confirmation(
        gateway.query_payment(body["payment_id"]), source="webhook"
    )

    assert result.status == "already_processed"
    assert result.receipt_id is not None
    paid = db_session.exec(select(ContractInstallment).where(ContractInstallment.status == "paid")).one()
    assert paid.receipt_id == result.receipt_id


def test_receipt_failure_does_not_undo_payment(client, db_session, gateway, monkeypatch):
    def _broken(self, data, idempotency_key=None):
        raise RuntimeError("pdf engine unavailable")

    monkeypatch.setattr(ReceiptService, "generate_payment_receipt", _broken)

    body = _card_checkout(client, db_session)

    assert body["status"] == "approved"
    assert body["receipt_id"] is None
    assert any(warning.startswith("receipt:") for warning in body["warnings"])
    contract = db_session.exec(select(Contract)).one()
    assert contract.status == "active"
    assert db_session.exec(select(ContractInstallment).where(ContractInstallment.status == "paid")).one()


def test_card_payment_stores_token_for_renewals(client, db_session, gateway):
    _card_checkout(client, db_session)

    contract = db_session.exec(select(Contract)).one()
    assert contract.card_token
    assert contract.card_last_digits == "1111"
    assert contract.card_brand == "Visa"
