from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import List
from uuid import UUID

from sqlmodel import Session, select

from app.core.config import settings
from app.core.errors import GatewayNotFoundError, NotFoundError, StepOutcome, run_step
from app.core.logging_setup import logger
from app.models.client import Client, Pet
from app.models.contract import (
    Contract,
    ContractInstallment,
    ContractStatus,
    InstallmentStatus,
)
from app.models.payment import InstallmentPaymentAttempt, PendingPayment, PendingPaymentStatus
from app.models.plan import BillingPeriod, Plan
from app.schemas.payment import GatewayNotification
from app.services.audit import AuditService
from app.services.coupon import CouponService
from app.services.gateway import GatewayPayment, GatewayStatus, PaymentGateway
from app.services.ledger import InstallmentLedger
from app.services.provisioning import ProvisioningService
from app.services.receipt import ReceiptData, ReceiptService

CHANGE_TYPE_STATUS = 1
CHANGE_TYPE_RECURRENCE = 2
CHANGE_TYPE_CHARGEBACK = 3


@dataclass
class ReconciliationResult:
    payment_id: str
    status: str
    installments_paid: List[ContractInstallment] = field(default_factory=list)
    contracts_created: List[Contract] = field(default_factory=list)
    next_installments: List[ContractInstallment] = field(default_factory=list)
    receipt_id: UUID | None = None
    outcomes: List[StepOutcome] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        return [f"{item.step}: {item.error}" for item in self.outcomes if not item.ok]


@dataclass
class PollResult:
    payment_id: str
    status: str
    gateway_status: int | None = None
    stop_polling: bool = False
    message: str | None = None


class ReconciliationService:
    """Único caminho pelo qual uma confirmação externa altera o ledger.

    Webhook e polling chegam aqui; o status é verificado antes de cada mutação,
    então disparos repetidos não produzem efeito.
    """

    def __init__(
        self,
        session: Session,
        gateway: PaymentGateway,
        *,
        receipts: ReceiptService | None = None,
        ledger: InstallmentLedger | None = None,
        provisioning: ProvisioningService | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.ledger = ledger or InstallmentLedger(session)
        self.receipts = receipts or ReceiptService(session)
        self.provisioning = provisioning or ProvisioningService(session, self.ledger)
        self.coupons = CouponService(session)
        self.audit = AuditService(session)

    # ------------------------------------------------------------------
    # Confirmação
    # ------------------------------------------------------------------

    def apply_payment_confirmation(
        self,
        payment: GatewayPayment,
        *,
        source: str,
        now: datetime | None = None,
    ) -> ReconciliationResult:
        moment = now or datetime.utcnow()
        payment_id = payment.payment_id
        result = ReconciliationResult(payment_id=payment_id, status="applied")
        attempt = self._claim_attempt(payment_id, moment)

        pending = self.session.exec(
            select(PendingPayment).where(PendingPayment.payment_id == payment_id).with_for_update()
        ).first()
        if pending and pending.status != PendingPaymentStatus.CONFIRMED.value:
            created = self._confirm_pending(pending, payment, moment)
            result.contracts_created = [contract for contract, _ in created]
            result.installments_paid.extend(installment for _, installment in created)

        unpaid = self.session.exec(
            select(ContractInstallment)
            .where(ContractInstallment.payment_id == payment_id)
            .where(ContractInstallment.status != InstallmentStatus.PAID.value)
            .with_for_update()
        ).all()
        for installment in unpaid:
            self._mark_installment_paid(installment, payment, moment)
        if unpaid:
            self.session.commit()
            for installment in unpaid:
                self.session.refresh(installment)
            result.installments_paid.extend(unpaid)

        if not result.installments_paid:
            known = self.ledger.list_by_payment(payment_id)
            result.status = "already_processed" if known or pending or attempt else "unknown_payment"
            logger.info("Pagamento %s via %s: nada a aplicar (%s)", payment_id, source, result.status)
            if known and any(item.receipt_id is None for item in known):
                outcome = run_step("receipt", lambda: self._issue_receipt(payment_id, moment))
                result.outcomes.append(outcome)
                result.receipt_id = outcome.value
            return result

        logger.info(
            "Pagamento %s confirmado via %s: %s parcela(s) quitada(s)",
            payment_id,
            source,
            len(result.installments_paid),
        )
        self.audit.record_event(
            "payment_confirmed",
            actor_type=source,
            payment_id=payment_id,
            contract_id=result.installments_paid[0].contract_id,
            details={"installments": [str(item.id) for item in result.installments_paid]},
        )

        for installment in result.installments_paid:
            outcome = run_step(
                "next_installment",
                lambda item=installment: self.ledger.create_next_installment_if_needed(item.contract_id, item),
            )
            result.outcomes.append(outcome)
            if outcome.ok and outcome.value is not None:
                result.next_installments.append(outcome.value)

        outcome = run_step("receipt", lambda: self._issue_receipt(payment_id, moment))
        result.outcomes.append(outcome)
        result.receipt_id = outcome.value
        return result

    def _confirm_pending(
        self,
        pending: PendingPayment,
        payment: GatewayPayment,
        moment: datetime,
    ) -> list[tuple[Contract, ContractInstallment]]:
        pending.proof_of_sale = payment.proof_of_sale or pending.proof_of_sale
        pending.authorization_code = payment.authorization_code or pending.authorization_code
        pending.tid = payment.tid or pending.tid
        pending.return_code = payment.return_code or pending.return_code
        pending.return_message = payment.return_message or pending.return_message
        pending.card_token = payment.card_token or pending.card_token
        try:
            created = self.provisioning.provision_from_pending(pending, now=moment)
            pending.status = PendingPaymentStatus.CONFIRMED.value
            pending.confirmed_at = moment
            pending.touch(moment)
            self.session.add(pending)
            if pending.coupon_code:
                self.coupons.increment_usage(pending.coupon_code, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception("Falha ao provisionar contratos do pagamento %s", pending.payment_id)
            raise
        for contract, installment in created:
            self.session.refresh(contract)
            self.session.refresh(installment)
        return created

    def _attempt(self, payment_id: str, *, lock: bool = False) -> InstallmentPaymentAttempt | None:
        query = select(InstallmentPaymentAttempt).where(InstallmentPaymentAttempt.payment_id == payment_id)
        if lock:
            query = query.with_for_update()
        return self.session.exec(query).first()

    def _claim_attempt(self, payment_id: str, moment: datetime) -> InstallmentPaymentAttempt | None:
        """Religa a parcela ao PIX pago quando outro PIX foi gerado depois dele."""
        attempt = self._attempt(payment_id, lock=True)
        if not attempt or attempt.status == PendingPaymentStatus.CONFIRMED.value:
            return attempt
        installment = self.session.exec(
            select(ContractInstallment).where(ContractInstallment.id == attempt.installment_id).with_for_update()
        ).first()
        if installment is None:
            return attempt
        if installment.status == InstallmentStatus.PAID.value and installment.payment_id != payment_id:
            logger.warning(
                "PIX %s pago para a parcela %s já quitada pelo pagamento %s; requer estorno manual",
                payment_id,
                installment.id,
                installment.payment_id,
            )
            self.audit.record_event(
                "duplicate_payment",
                actor_type="gateway",
                payment_id=payment_id,
                contract_id=installment.contract_id,
                details={"installment_id": str(installment.id), "paid_by": installment.payment_id},
                commit=False,
            )
        elif installment.payment_id != payment_id:
            logger.info("Parcela %s religada ao PIX %s", installment.id, payment_id)
            installment.payment_id = payment_id
            installment.touch(moment)
            self.session.add(installment)
        attempt.status = PendingPaymentStatus.CONFIRMED.value
        attempt.touch(moment)
        self.session.add(attempt)
        self.session.commit()
        return attempt

    def _mark_installment_paid(self, installment: ContractInstallment, payment: GatewayPayment, moment: datetime) -> None:
        installment.status = InstallmentStatus.PAID.value
        installment.paid_at = moment
        installment.touch(moment)
        self.session.add(installment)

        contract = self.session.get(Contract, installment.contract_id)
        if not contract:
            return
        if contract.status == ContractStatus.CANCELLED.value:
            logger.warning("Pagamento %s recebido para contrato cancelado %s", payment.payment_id, contract.contract_number)
        else:
            contract.status = ContractStatus.ACTIVE.value
        contract.received_date = moment
        contract.payment_id = payment.payment_id
        contract.proof_of_sale = payment.proof_of_sale or contract.proof_of_sale
        contract.authorization_code = payment.authorization_code or contract.authorization_code
        contract.tid = payment.tid or contract.tid
        contract.return_code = payment.return_code
        contract.return_message = payment.return_message
        if payment.card_token:
            contract.card_token = payment.card_token
        contract.pix_qr_code = None
        contract.pix_copy_paste = None
        if contract.billing_period == BillingPeriod.ANNUAL.value:
            contract.start_date = datetime.combine(installment.period_start, time.min)
        contract.end_date = datetime.combine(installment.period_end, time.min)
        contract.touch(moment)
        self.session.add(contract)

    def _issue_receipt(self, payment_id: str, moment: datetime) -> UUID | None:
        installments = [item for item in self.ledger.list_by_payment(payment_id) if item.status == InstallmentStatus.PAID.value]
        if not installments:
            return None
        pending = self.session.exec(select(PendingPayment).where(PendingPayment.payment_id == payment_id)).first()
        price_lines = {str(row.get("name", "")).strip().lower(): row for row in (pending.pets_data or [])} if pending else {}

        contracts: list[Contract] = []
        pets_rows: list[dict] = []
        for installment in installments:
            contract = self.session.get(Contract, installment.contract_id)
            if not contract:
                continue
            contracts.append(contract)
            pet = self.session.get(Pet, contract.pet_id)
            line = price_lines.get((pet.name if pet else "").strip().lower(), {})
            pets_rows.append(
                {
                    "name": pet.name if pet else "-",
                    "species": pet.species if pet else None,
                    "contract_id": str(contract.id),
                    "contract_number": contract.contract_number,
                    "installment_number": installment.installment_number,
                    "discount_percent": int(line.get("discount_percent") or 0),
                    "price_cents": installment.amount_cents,
                }
            )
        if not contracts:
            return None

        first = contracts[0]
        client = self.session.get(Client, first.client_id)
        plan = self.session.get(Plan, first.plan_id)
        amount = pending.total_cents if pending else sum(item.amount_cents for item in installments)
        data = ReceiptData(
            payment_id=payment_id,
            client_id=first.client_id,
            client_name=client.full_name if client else "-",
            client_email=client.email if client else None,
            plan_name=plan.name if plan else None,
            billing_period=first.billing_period,
            installment_number=installments[0].installment_number if len(installments) == 1 else None,
            contract_id=first.id if len(contracts) == 1 else None,
            amount_cents=amount,
            payment_method=first.payment_method,
            payment_date=installments[0].paid_at or moment,
            proof_of_sale=first.proof_of_sale,
            authorization_code=first.authorization_code,
            tid=first.tid,
            pets=pets_rows,
        )
        receipt = self.receipts.generate_payment_receipt(data, idempotency_key=payment_id)
        if not receipt.success or not receipt.receipt_id:
            return None
        for installment in installments:
            if installment.receipt_id != receipt.receipt_id:
                installment.receipt_id = receipt.receipt_id
                self.session.add(installment)
        self.session.commit()
        return receipt.receipt_id

    # ------------------------------------------------------------------
    # Falhas
    # ------------------------------------------------------------------

    def record_payment_failure(self, payment: GatewayPayment, *, source: str, now: datetime | None = None) -> None:
        """Registra recusa/cancelamento sem rebaixar contratos ativos."""
        moment = now or datetime.utcnow()
        pending = self.session.exec(
            select(PendingPayment).where(PendingPayment.payment_id == payment.payment_id)
        ).first()
        if pending and pending.status == PendingPaymentStatus.PENDING.value:
            pending.status = PendingPaymentStatus.DECLINED.value
            pending.return_code = payment.return_code
            pending.return_message = payment.return_message
            pending.touch(moment)
            self.session.add(pending)

        attempt = self._attempt(payment.payment_id)
        if attempt and attempt.status == PendingPaymentStatus.PENDING.value:
            attempt.status = PendingPaymentStatus.DECLINED.value
            attempt.touch(moment)
            self.session.add(attempt)

        for installment in self.ledger.list_by_payment(payment.payment_id):
            if installment.status == InstallmentStatus.PAID.value:
                continue
            installment.last_attempt_at = moment
            installment.last_attempt_message = payment.return_message or f"status {payment.status}"
            installment.touch(moment)
            self.session.add(installment)
        self.session.commit()
        logger.info("Pagamento %s não aprovado (status=%s) via %s", payment.payment_id, payment.status, source)

    # ------------------------------------------------------------------
    # Gatilhos
    # ------------------------------------------------------------------

    def handle_notification(self, notification: GatewayNotification, now: datetime | None = None) -> ReconciliationResult | None:
        payment_id = notification.payment_id
        if notification.change_type == CHANGE_TYPE_CHARGEBACK:
            logger.warning("Chargeback notificado para o pagamento %s", payment_id)
            self.audit.record_event("chargeback_received", actor_type="gateway", payment_id=payment_id)
            return None
        if notification.change_type == CHANGE_TYPE_RECURRENCE:
            logger.info("Notificação de recorrência recebida para %s", payment_id)
            self.audit.record_event(
                "recurrence_notified",
                actor_type="gateway",
                payment_id=payment_id,
                details={"recurrent_payment_id": notification.recurrent_payment_id},
            )
            return None
        if notification.change_type != CHANGE_TYPE_STATUS:
            logger.warning("ChangeType %s desconhecido para %s; ignorando", notification.change_type, payment_id)
            return None

        try:
            payment = self.gateway.query_payment(payment_id)
        except GatewayNotFoundError:
            logger.warning("Pagamento %s não encontrado no gateway; notificação ignorada", payment_id)
            return None

        if payment.approved:
            return self.apply_payment_confirmation(payment, source="webhook", now=now)
        if payment.failed:
            self.record_payment_failure(payment, source="webhook", now=now)
        else:
            logger.info("Pagamento %s ainda pendente (status=%s)", payment_id, payment.status)
        return None

    def poll_payment(self, payment_id: str, *, client_id: UUID | None = None, now: datetime | None = None) -> PollResult:
        moment = now or datetime.utcnow()
        pending = self.session.exec(select(PendingPayment).where(PendingPayment.payment_id == payment_id)).first()
        installments = self.ledger.list_by_payment(payment_id)
        attempt = self._attempt(payment_id)
        if attempt and not installments:
            linked = self.ledger.get_installment(attempt.installment_id)
            installments = [linked] if linked else []
        if not pending and not installments:
            raise NotFoundError("Payment not found")
        if client_id and not self._owned_by(client_id, pending, installments):
            raise NotFoundError("Payment not found")

        if (pending and pending.status == PendingPaymentStatus.CONFIRMED.value) or (
            installments and all(item.status == InstallmentStatus.PAID.value for item in installments)
        ):
            return PollResult(payment_id, "approved", int(GatewayStatus.PAYMENT_CONFIRMED), True)
        if pending and pending.status == PendingPaymentStatus.DECLINED.value:
            return PollResult(payment_id, "declined", None, True, pending.return_message)

        if pending:
            started_at = pending.created_at
        elif attempt:
            started_at = attempt.created_at
        else:
            started_at = max((item.last_attempt_at or item.created_at) for item in installments)
        if moment - started_at > timedelta(minutes=settings.pix_polling_window_minutes):
            return PollResult(payment_id, "expired", None, True, "Polling window closed; awaiting gateway notification")

        try:
            payment = self.gateway.query_payment(payment_id)
        except GatewayNotFoundError:
            return PollResult(payment_id, "pending", None, False)

        if payment.approved:
            self.apply_payment_confirmation(payment, source="polling", now=moment)
            return PollResult(payment_id, "approved", payment.status, True)
        if payment.failed:
            self.record_payment_failure(payment, source="polling", now=moment)
            return PollResult(payment_id, "declined", payment.status, True, payment.return_message)
        return PollResult(payment_id, "pending", payment.status, False)

    def _owned_by(self, client_id: UUID, pending: PendingPayment | None, installments: list[ContractInstallment]) -> bool:
        if pending:
            return pending.client_id == client_id
        for installment in installments:
            contract = self.session.get(Contract, installment.contract_id)
            if contract and contract.client_id == client_id:
                return True
        return False

