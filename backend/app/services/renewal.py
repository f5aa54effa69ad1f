from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from sqlmodel import Session, select

from app.core.config import settings
from app.core.errors import GatewayError
from app.core.logging_setup import logger
from app.models.client import Client
from app.models.contract import Contract, ContractInstallment, ContractStatus, OPEN_INSTALLMENT_STATUSES
from app.models.payment import PaymentMethod
from app.services.audit import AuditService
from app.services.checkout import new_merchant_order_id
from app.services.gateway import GatewayCustomer, PaymentGateway
from app.services.ledger import InstallmentLedger
from app.services.reconciliation import ReconciliationService

RENEWABLE_STATUSES = (ContractStatus.ACTIVE.value, ContractStatus.SUSPENDED.value)


@dataclass
class DueItem:
    contract: Contract
    installment_number: int
    due_date: datetime
    amount_cents: int


@dataclass
class RenewalSummary:
    attempted: int = 0
    approved: int = 0
    declined: int = 0


class RenewalService:
    """Renovação automática com cartão salvo, lembretes e avisos de atraso."""

    def __init__(self, session: Session, gateway: PaymentGateway) -> None:
        self.session = session
        self.gateway = gateway
        self.ledger = InstallmentLedger(session)
        self.audit = AuditService(session)
        self.reconciliation = ReconciliationService(session, gateway, ledger=self.ledger)

    def _renewable_contracts(self) -> Iterable[Contract]:
        return self.session.exec(
            select(Contract).where(Contract.status.in_(RENEWABLE_STATUSES)).order_by(Contract.created_at)
        ).all()

    def next_due(self, contract: Contract) -> DueItem | None:
        rows = self.ledger.list_installments(contract.id)
        open_items = [item for item in rows if item.status in OPEN_INSTALLMENT_STATUSES]
        if open_items:
            first = open_items[0]
            return DueItem(contract, first.installment_number, first.due_date, first.amount_cents)
        virtual = self.ledger.project_next_installment(contract, rows)
        if virtual:
            return DueItem(contract, virtual.installment_number, virtual.due_date, virtual.amount_cents)
        return None

    # ------------------------------------------------------------------
    # Cobrança automática
    # ------------------------------------------------------------------

    def run_automatic_renewals(self, now: datetime | None = None) -> RenewalSummary:
        reference = now or datetime.utcnow()
        summary = RenewalSummary()
        for contract in self._renewable_contracts():
            if contract.payment_method != PaymentMethod.CREDIT_CARD.value or not contract.card_token:
                continue
            due = self.next_due(contract)
            if not due or due.due_date > reference - timedelta(days=1):
                continue
            installment = self.ledger.ensure_payable_installment(contract)
            if installment.last_attempt_at and installment.last_attempt_at.date() == reference.date():
                continue
            summary.attempted += 1
            try:
                approved = self._charge(contract, installment, reference)
            except GatewayError as exc:
                logger.error("Falha ao renovar contrato %s: %s", contract.contract_number, exc)
                installment.last_attempt_at = reference
                installment.last_attempt_message = exc.message
                self.session.add(installment)
                self.session.commit()
                summary.declined += 1
                continue
            if approved:
                summary.approved += 1
            else:
                summary.declined += 1
        return summary

    def _charge(self, contract: Contract, installment: ContractInstallment, now: datetime) -> bool:
        client = self.session.get(Client, contract.client_id)
        customer = GatewayCustomer(
            name=client.full_name if client else contract.contract_number,
            email=client.email if client else None,
            cpf=client.cpf if client else None,
        )
        payment = self.gateway.charge_saved_card(
            merchant_order_id=new_merchant_order_id(now),
            customer=customer,
            amount_cents=installment.amount_cents,
            card_token=contract.card_token or "",
            brand=contract.card_brand,
        )
        if not payment.approved:
            installment.last_attempt_at = now
            installment.last_attempt_message = payment.return_message
            self.session.add(installment)
            self.audit.record_event(
                "renewal_declined",
                actor_type="system",
                payment_id=payment.payment_id,
                contract_id=contract.id,
                details={"installment_number": installment.installment_number, "return_code": payment.return_code},
            )
            logger.info(
                "Renovação recusada para o contrato %s (parcela %s, codigo=%s)",
                contract.contract_number,
                installment.installment_number,
                payment.return_code,
            )
            return False

        installment.payment_id = payment.payment_id
        installment.last_attempt_at = now
        self.session.add(installment)
        self.session.commit()
        self.reconciliation.apply_payment_confirmation(payment, source="automatic_renewal", now=now)
        logger.info(
            "Contrato %s renovado automaticamente (parcela %s)",
            contract.contract_number,
            installment.installment_number,
        )
        return True

    # ------------------------------------------------------------------
    # Lembretes e avisos
    # ------------------------------------------------------------------

    def send_reminders(self, now: datetime | None = None) -> int:
        reference = now or datetime.utcnow()
        horizon = reference + timedelta(days=settings.reminder_days_ahead)
        sent = 0
        for contract in self._renewable_contracts():
            due = self.next_due(contract)
            if not due or not (reference < due.due_date <= horizon):
                continue
            marker = f"{due.installment_number}:{due.due_date.date().isoformat()}"
            if self.audit.has_event("payment_reminder", contract_id=contract.id, marker=marker):
                continue
            self.audit.record_event(
                "payment_reminder",
                actor_type="system",
                contract_id=contract.id,
                details={
                    "marker": marker,
                    "client_id": str(contract.client_id),
                    "installment_number": due.installment_number,
                    "due_date": due.due_date.isoformat(),
                    "amount_cents": due.amount_cents,
                },
            )
            sent += 1
        return sent

    def send_overdue_notices(self, now: datetime | None = None) -> int:
        """Um aviso por marco de atraso (1, 3, 7, 15 e 30 dias), apenas o mais alto atingido."""
        reference = now or datetime.utcnow()
        thresholds = sorted(settings.overdue_notice_days)
        sent = 0
        for contract in self._renewable_contracts():
            due = self.next_due(contract)
            if not due or due.due_date >= reference:
                continue
            days = (reference - due.due_date).days
            reached = [value for value in thresholds if days >= value]
            if not reached:
                continue
            threshold = reached[-1]
            marker = f"{due.installment_number}:{threshold}"
            if self.audit.has_event("overdue_notice", contract_id=contract.id, marker=marker):
                continue
            self.audit.record_event(
                "overdue_notice",
                actor_type="system",
                contract_id=contract.id,
                details={
                    "marker": marker,
                    "client_id": str(contract.client_id),
                    "installment_number": due.installment_number,
                    "days_overdue": days,
                    "amount_cents": due.amount_cents,
                },
            )
            sent += 1
        return sent
