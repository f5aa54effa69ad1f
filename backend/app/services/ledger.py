from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.errors import BillingValidationError, NotFoundError
from app.core.logging_setup import logger
from app.models.client import Pet
from app.models.contract import (
    OPEN_INSTALLMENT_STATUSES,
    Contract,
    ContractInstallment,
    ContractStatus,
    InstallmentStatus,
)
from app.models.plan import Plan
from app.services import billing_calendar


@dataclass
class InstallmentView:
    """Parcela pronta para exibição (física ou projetada)."""

    id: UUID | None
    contract_id: UUID
    contract_number: str
    installment_number: int
    due_date: datetime
    period_start: date
    period_end: date
    amount_cents: int
    status: str
    billing_period: str
    pet_name: str | None = None
    plan_name: str | None = None
    paid_at: datetime | None = None
    payment_id: str | None = None
    receipt_id: UUID | None = None
    is_virtual: bool = False

    @property
    def virtual_id(self) -> str | None:
        return f"virtual-{self.contract_id}" if self.is_virtual else None


@dataclass
class InstallmentPartition:
    paid: list[InstallmentView] = field(default_factory=list)
    current: list[InstallmentView] = field(default_factory=list)
    overdue: list[InstallmentView] = field(default_factory=list)


def effective_status(installment: ContractInstallment, now: datetime | None = None) -> str:
    """Status calculado na leitura: parcelas não pagas vencidas são 'overdue'."""
    if installment.status == InstallmentStatus.PAID.value:
        return InstallmentStatus.PAID.value
    reference = now or datetime.utcnow()
    if installment.due_date > reference:
        return InstallmentStatus.CURRENT.value
    return InstallmentStatus.OVERDUE.value


class InstallmentLedger:
    """Sequência de parcelas por contrato: monotônica, contígua e com no máximo uma em aberto."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_installment(self, installment_id: UUID) -> ContractInstallment | None:
        return self.session.get(ContractInstallment, installment_id)

    def list_installments(self, contract_id: UUID) -> list[ContractInstallment]:
        return list(
            self.session.exec(
                select(ContractInstallment)
                .where(ContractInstallment.contract_id == contract_id)
                .order_by(ContractInstallment.installment_number)
            ).all()
        )

    def open_installments(self, contract_id: UUID) -> list[ContractInstallment]:
        return [item for item in self.list_installments(contract_id) if item.status in OPEN_INSTALLMENT_STATUSES]

    def list_by_payment(self, payment_id: str) -> list[ContractInstallment]:
        return list(
            self.session.exec(
                select(ContractInstallment).where(ContractInstallment.payment_id == payment_id)
            ).all()
        )

    def create_first_installment(
        self,
        contract: Contract,
        *,
        paid: bool,
        payment_id: str | None = None,
        now: datetime | None = None,
        amount_cents: int | None = None,
        commit: bool = True,
    ) -> ContractInstallment:
        """Primeira parcela: vence no momento do pagamento e cobre o período que começa agora."""
        moment = now or datetime.utcnow()
        start = moment.date()
        installment = ContractInstallment(
            contract_id=contract.id,
            installment_number=1,
            due_date=moment,
            period_start=start,
            period_end=billing_calendar.period_end(start, contract.billing_period),
            amount_cents=contract.current_amount_cents if amount_cents is None else amount_cents,
            status=InstallmentStatus.PAID.value if paid else InstallmentStatus.PENDING.value,
            paid_at=moment if paid else None,
            payment_id=payment_id,
        )
        self.session.add(installment)
        if commit:
            self.session.commit()
            self.session.refresh(installment)
        logger.info(
            "Parcela 1 criada para contrato %s (status=%s, pagamento=%s)",
            contract.contract_number,
            installment.status,
            payment_id,
        )
        return installment

    def create_next_installment_if_needed(
        self,
        contract_id: UUID,
        paid_installment: ContractInstallment,
    ) -> ContractInstallment | None:
        """Cria a parcela seguinte apenas se não houver outra parcela em aberto.

        O vencimento é ancorado no vencimento anterior, nunca na data do pagamento.
        """
        contract = self.session.get(Contract, contract_id)
        if not contract:
            raise NotFoundError("Contract not found")
        if paid_installment.status != InstallmentStatus.PAID.value:
            logger.warning(
                "Parcela %s ainda não paga; próxima parcela do contrato %s não criada",
                paid_installment.installment_number,
                contract.contract_number,
            )
            return None
        if contract.status == ContractStatus.CANCELLED.value:
            logger.info("Contrato %s cancelado; nenhuma nova parcela", contract.contract_number)
            return None

        installments = self.list_installments(contract_id)
        pending = [
            item
            for item in installments
            if item.status in OPEN_INSTALLMENT_STATUSES and item.id != paid_installment.id
        ]
        if pending:
            logger.info(
                "Contrato %s já possui parcela em aberto (#%s); nada a criar",
                contract.contract_number,
                pending[0].installment_number,
            )
            return None

        next_number = max((item.installment_number for item in installments), default=paid_installment.installment_number) + 1
        next_start = paid_installment.period_end + timedelta(days=1)
        installment = ContractInstallment(
            contract_id=contract.id,
            installment_number=next_number,
            due_date=billing_calendar.add_period(paid_installment.due_date, contract.billing_period),
            period_start=next_start,
            period_end=billing_calendar.period_end(next_start, contract.billing_period),
            amount_cents=contract.current_amount_cents,
            status=InstallmentStatus.PENDING.value,
        )
        self.session.add(installment)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.warning(
                "Parcela #%s do contrato %s criada concorrentemente; mantendo a existente",
                next_number,
                contract.contract_number,
            )
            return None
        self.session.refresh(installment)
        logger.info(
            "Parcela #%s criada para contrato %s com vencimento %s",
            next_number,
            contract.contract_number,
            installment.due_date.date().isoformat(),
        )
        return installment

    def last_paid_installment(self, contract_id: UUID) -> ContractInstallment | None:
        paid = [item for item in self.list_installments(contract_id) if item.status == InstallmentStatus.PAID.value]
        return paid[-1] if paid else None

    def project_next_installment(
        self,
        contract: Contract,
        installments: Iterable[ContractInstallment] | None = None,
    ) -> InstallmentView | None:
        """Projeção de exibição da próxima parcela quando a linha física ainda não existe."""
        if contract.status == ContractStatus.CANCELLED.value:
            return None
        rows = list(installments) if installments is not None else self.list_installments(contract.id)
        if any(item.status in OPEN_INSTALLMENT_STATUSES for item in rows):
            return None
        paid = [item for item in rows if item.status == InstallmentStatus.PAID.value]
        if not paid:
            return None
        last = max(paid, key=lambda item: item.installment_number)
        start = last.period_end + timedelta(days=1)
        return InstallmentView(
            id=None,
            contract_id=contract.id,
            contract_number=contract.contract_number,
            installment_number=max(item.installment_number for item in rows) + 1,
            due_date=billing_calendar.add_period(last.due_date, contract.billing_period),
            period_start=start,
            period_end=billing_calendar.period_end(start, contract.billing_period),
            amount_cents=contract.current_amount_cents,
            status=InstallmentStatus.PENDING.value,
            billing_period=contract.billing_period,
            is_virtual=True,
        )

    def ensure_payable_installment(self, contract: Contract) -> ContractInstallment:
        """Materializa a parcela virtual (se necessário) e devolve a parcela em aberto mais antiga."""
        open_items = self.open_installments(contract.id)
        if open_items:
            return open_items[0]
        last_paid = self.last_paid_installment(contract.id)
        if not last_paid:
            raise BillingValidationError("Contract has no installment to renew")
        self.create_next_installment_if_needed(contract.id, last_paid)
        open_items = self.open_installments(contract.id)
        if not open_items:
            raise BillingValidationError("Contract does not accept new installments")
        return open_items[0]

    def partition_for_client(self, client_id: UUID, now: datetime | None = None) -> InstallmentPartition:
        reference = now or datetime.utcnow()
        partition = InstallmentPartition()
        contracts = self.session.exec(
            select(Contract).where(Contract.client_id == client_id).order_by(Contract.created_at)
        ).all()
        for contract in contracts:
            pet = self.session.get(Pet, contract.pet_id)
            plan = self.session.get(Plan, contract.plan_id)
            rows = self.list_installments(contract.id)
            views = [self._to_view(contract, item, reference) for item in rows]
            virtual = self.project_next_installment(contract, rows)
            if virtual:
                virtual.status = InstallmentStatus.CURRENT.value if virtual.due_date > reference else InstallmentStatus.OVERDUE.value
                views.append(virtual)
            for view in views:
                view.pet_name = pet.name if pet else None
                view.plan_name = plan.name if plan else None
                getattr(partition, view.status).append(view)

        partition.paid.sort(key=lambda item: item.due_date, reverse=True)
        partition.current.sort(key=lambda item: item.due_date)
        partition.overdue.sort(key=lambda item: item.due_date)
        return partition

    def _to_view(self, contract: Contract, installment: ContractInstallment, now: datetime) -> InstallmentView:
        return InstallmentView(
            id=installment.id,
            contract_id=contract.id,
            contract_number=contract.contract_number,
            installment_number=installment.installment_number,
            due_date=installment.due_date,
            period_start=installment.period_start,
            period_end=installment.period_end,
            amount_cents=installment.amount_cents,
            status=effective_status(installment, now),
            billing_period=contract.billing_period,
            paid_at=installment.paid_at,
            payment_id=installment.payment_id,
            receipt_id=installment.receipt_id,
        )
