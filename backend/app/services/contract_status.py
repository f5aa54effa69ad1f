from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List
from uuid import UUID

from sqlmodel import Session, select

from app.core.config import settings
from app.core.errors import NotFoundError
from app.core.logging_setup import logger
from app.models.contract import Contract, ContractStatus, InstallmentStatus, OPEN_INSTALLMENT_STATUSES
from app.services import billing_calendar
from app.services.ledger import InstallmentLedger


@dataclass
class ContractEvaluation:
    contract: Contract
    status: str
    days_past_due: int = 0
    next_due_date: datetime | None = None


@dataclass
class RegularizationQuote:
    contract_id: UUID
    billing_period: str
    base_amount_cents: int
    overdue_periods: int
    include_current_period: bool
    amount_cents: int


def status_for_days_past_due(days_past_due: int) -> str:
    if days_past_due > settings.cancellation_days:
        return ContractStatus.CANCELLED.value
    if days_past_due > settings.suspension_days:
        return ContractStatus.SUSPENDED.value
    return ContractStatus.ACTIVE.value


class ContractStatusService:
    """Status do contrato derivado das parcelas (carência, suspensão, cancelamento)."""

    def __init__(self, session: Session, ledger: InstallmentLedger | None = None) -> None:
        self.session = session
        self.ledger = ledger or InstallmentLedger(session)

    def get_contract(self, contract_id: UUID, client_id: UUID | None = None) -> Contract:
        contract = self.session.get(Contract, contract_id)
        if not contract or (client_id is not None and contract.client_id != client_id):
            raise NotFoundError("Contract not found")
        return contract

    def list_for_client(self, client_id: UUID) -> list[Contract]:
        return list(
            self.session.exec(
                select(Contract).where(Contract.client_id == client_id).order_by(Contract.created_at)
            ).all()
        )

    def evaluate(self, contract: Contract, now: datetime | None = None) -> ContractEvaluation:
        reference = now or datetime.utcnow()
        if contract.status == ContractStatus.CANCELLED.value:
            return ContractEvaluation(contract=contract, status=contract.status)

        rows = self.ledger.list_installments(contract.id)
        open_items = [item for item in rows if item.status in OPEN_INSTALLMENT_STATUSES]
        if open_items:
            next_due = min(item.due_date for item in open_items)
        else:
            virtual = self.ledger.project_next_installment(contract, rows)
            next_due = virtual.due_date if virtual else None

        has_paid = any(item.status == InstallmentStatus.PAID.value for item in rows)
        if next_due is None:
            status = ContractStatus.ACTIVE.value if has_paid else contract.status
            return ContractEvaluation(contract=contract, status=status)

        days_past_due = max((reference - next_due).days, 0)
        if not has_paid and contract.status == ContractStatus.PENDING.value:
            status = contract.status
        else:
            status = status_for_days_past_due(days_past_due)
        return ContractEvaluation(
            contract=contract,
            status=status,
            days_past_due=days_past_due,
            next_due_date=next_due,
        )

    def refresh_statuses(self, now: datetime | None = None) -> List[ContractEvaluation]:
        """Aplica o status avaliado a todos os contratos não cancelados. Devolve os alterados."""
        reference = now or datetime.utcnow()
        contracts = self.session.exec(
            select(Contract).where(Contract.status != ContractStatus.CANCELLED.value)
        ).all()
        changed: List[ContractEvaluation] = []
        for contract in contracts:
            evaluation = self.evaluate(contract, reference)
            if evaluation.status == contract.status:
                continue
            logger.info(
                "Contrato %s: %s -> %s (%s dia(s) em atraso)",
                contract.contract_number,
                contract.status,
                evaluation.status,
                evaluation.days_past_due,
            )
            contract.status = evaluation.status
            contract.touch(reference)
            self.session.add(contract)
            changed.append(evaluation)
        if changed:
            self.session.commit()
        return changed

    def regularization_quote(
        self,
        contract: Contract,
        now: datetime | None = None,
        include_current_period: bool = True,
    ) -> RegularizationQuote:
        reference = now or datetime.utcnow()
        last_paid = self.ledger.last_paid_installment(contract.id)
        last_payment_date = (last_paid.paid_at if last_paid else None) or contract.received_date
        overdue = billing_calendar.overdue_periods(
            last_payment_date,
            reference,
            contract.billing_period,
            contract.start_date,
        )
        base = contract.current_amount_cents
        return RegularizationQuote(
            contract_id=contract.id,
            billing_period=contract.billing_period,
            base_amount_cents=base,
            overdue_periods=overdue,
            include_current_period=include_current_period,
            amount_cents=billing_calendar.regularization_amount(base, overdue, include_current_period),
        )
