from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List
from uuid import UUID

from sqlmodel import Session, select

from app.core.config import settings
from app.core.errors import BillingValidationError, GatewayNotFoundError, NotFoundError, PaymentDeclinedError
from app.core.logging_setup import logger
from app.models.client import Client
from app.models.contract import Contract, ContractInstallment, ContractStatus, InstallmentStatus
from app.models.payment import InstallmentPaymentAttempt, PaymentMethod, PendingPayment, PendingPaymentStatus
from app.models.plan import Plan
from app.schemas.checkout import (
    CardInput,
    CompleteRegistrationRequest,
    SaveCustomerDataRequest,
    SimpleProcessRequest,
    InstallmentPaymentRequest,
)
from app.services.audit import AuditService
from app.services.gateway import (
    CardData,
    CardPaymentRequest,
    GatewayCustomer,
    GatewayPayment,
    PaymentGateway,
    PixPaymentRequest,
    classify_return_code,
    friendly_message,
)
from app.services.ledger import InstallmentLedger
from app.services.pricing import PriceQuote, PricingService, enforce_payment_rules
from app.services.provisioning import ProvisioningService, pet_key
from app.services.receipt import ReceiptService
from app.services.reconciliation import ReconciliationService

VIRTUAL_PREFIX = "virtual-"


@dataclass
class CheckoutResult:
    status: str
    payment_id: str
    client_id: UUID
    total_cents: int
    contract_ids: List[UUID] = field(default_factory=list)
    receipt_id: UUID | None = None
    pix_qr_code: str | None = None
    pix_copy_paste: str | None = None
    pix_expires_at: datetime | None = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class InstallmentPaymentResult:
    status: str
    payment_id: str
    installment: ContractInstallment
    receipt_id: UUID | None = None
    next_installment_id: UUID | None = None
    pix_qr_code: str | None = None
    pix_copy_paste: str | None = None
    warnings: List[str] = field(default_factory=list)


def new_merchant_order_id(now: datetime | None = None) -> str:
    moment = now or datetime.utcnow()
    return f"UNIPET-{int(moment.timestamp() * 1000)}-{uuid.uuid4().hex[:6].upper()}"


def _card_data(card: CardInput) -> CardData:
    return CardData(
        card_number=card.card_number,
        holder=card.holder,
        expiration_date=card.expiration_date,
        security_code=card.security_code,
        brand=card.brand,
    )


class CheckoutService:
    """Fluxo de checkout em três etapas e pagamento avulso de parcelas."""

    def __init__(
        self,
        session: Session,
        gateway: PaymentGateway,
        *,
        receipts: ReceiptService | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.ledger = InstallmentLedger(session)
        self.provisioning = ProvisioningService(session, self.ledger)
        self.pricing = PricingService(session)
        self.audit = AuditService(session)
        self.reconciliation = ReconciliationService(
            session,
            gateway,
            receipts=receipts,
            ledger=self.ledger,
            provisioning=self.provisioning,
        )

    def _get_plan(self, plan_id: UUID) -> Plan:
        plan = self.session.get(Plan, plan_id)
        if not plan or not plan.is_active:
            raise NotFoundError("Plan not found")
        return plan

    @staticmethod
    def _check_unique_pet_names(names: List[str]) -> None:
        keys = [pet_key(name) for name in names]
        if len(set(keys)) != len(keys):
            raise BillingValidationError("Each pet in the order must have a distinct name")

    # ------------------------------------------------------------------
    # Etapa 1 e 2
    # ------------------------------------------------------------------

    def save_customer_data(self, payload: SaveCustomerDataRequest) -> tuple[Client, PriceQuote]:
        plan = self._get_plan(payload.plan_id)
        names = [pet.name for pet in payload.pets]
        self._check_unique_pet_names(names)
        quote = self.pricing.quote(
            plan,
            names,
            billing_period=payload.billing_period,
            coupon_code=payload.coupon_code,
        )
        client = self.provisioning.resolve_client(payload.customer, current_client_id=payload.client_id)
        logger.info("Checkout etapa 1 salva para cliente %s (%s pet(s))", client.id, len(names))
        return client, quote

    def complete_registration(self, payload: CompleteRegistrationRequest) -> tuple[Client, bool]:
        return self.provisioning.attach_registration(payload.client_id, payload.cpf, payload.address)

    # ------------------------------------------------------------------
    # Etapa 3
    # ------------------------------------------------------------------

    def simple_process(self, payload: SimpleProcessRequest, now: datetime | None = None) -> CheckoutResult:
        moment = now or datetime.utcnow()
        plan = self._get_plan(payload.plan_id)
        names = [pet.name for pet in payload.pets]
        self._check_unique_pet_names(names)
        period = enforce_payment_rules(plan, payload.billing_period, payload.payment_method, payload.installments)
        quote = self.pricing.quote(plan, names, billing_period=period, coupon_code=payload.coupon_code, now=moment)
        if quote.total_cents <= 0:
            raise BillingValidationError("Order total must be greater than zero")
        if payload.amount_cents is not None and payload.amount_cents != quote.total_cents:
            logger.warning(
                "Valor informado pelo cliente (%s) difere do calculado (%s); usando o calculado",
                payload.amount_cents,
                quote.total_cents,
            )

        if payload.customer:
            client = self.provisioning.resolve_client(payload.customer, current_client_id=payload.client_id)
        else:
            client = self.provisioning.get_client(payload.client_id)
        cpf = (payload.customer.cpf if payload.customer else None) or client.cpf
        if payload.address and cpf:
            client, _ = self.provisioning.attach_registration(client.id, cpf, payload.address)

        duplicated = self.provisioning.pets_with_open_contract(client.id, plan.id, names)
        if duplicated:
            raise BillingValidationError(f"Pet(s) already covered by this plan: {', '.join(duplicated)}")

        pets_data = quote.pets_data([pet.model_dump() for pet in payload.pets])
        customer = GatewayCustomer(name=client.full_name, email=client.email, cpf=client.cpf)
        order_id = new_merchant_order_id(moment)

        if payload.payment_method == PaymentMethod.PIX.value:
            return self._start_pix_checkout(client, plan, quote, pets_data, customer, order_id, moment)
        return self._charge_card_checkout(payload, client, plan, quote, pets_data, customer, order_id, moment)

    def _pending_payment(
        self,
        payment: GatewayPayment,
        *,
        method: str,
        client: Client,
        plan: Plan,
        quote: PriceQuote,
        pets_data: list[dict],
        installments: int,
        status: str,
        moment: datetime,
    ) -> PendingPayment:
        pending = PendingPayment(
            payment_id=payment.payment_id,
            payment_method=method,
            status=status,
            client_id=client.id,
            plan_id=plan.id,
            billing_period=quote.billing_period,
            installments=installments,
            subtotal_cents=quote.subtotal_cents,
            coupon_code=quote.coupon_code,
            coupon_discount_cents=quote.coupon_discount_cents,
            total_cents=quote.total_cents,
            pets_data=pets_data,
            pix_qr_code=payment.qr_code_base64,
            pix_copy_paste=payment.qr_code_string,
            proof_of_sale=payment.proof_of_sale,
            authorization_code=payment.authorization_code,
            tid=payment.tid,
            return_code=payment.return_code,
            return_message=payment.return_message,
            card_token=payment.card_token,
            card_brand=payment.card_brand,
            card_last_digits=payment.card_last_digits,
            expires_at=moment + timedelta(hours=settings.pix_expiration_hours) if method == PaymentMethod.PIX.value else None,
        )
        self.session.add(pending)
        self.session.commit()
        self.session.refresh(pending)
        return pending

    def _charge_card_checkout(
        self,
        payload: SimpleProcessRequest,
        client: Client,
        plan: Plan,
        quote: PriceQuote,
        pets_data: list[dict],
        customer: GatewayCustomer,
        order_id: str,
        moment: datetime,
    ) -> CheckoutResult:
        if payload.card is None:
            raise BillingValidationError("Card data is required")
        payment = self.gateway.create_credit_card_payment(
            CardPaymentRequest(
                merchant_order_id=order_id,
                customer=customer,
                amount_cents=quote.total_cents,
                card=_card_data(payload.card),
                installments=payload.installments,
            )
        )
        if not payment.approved:
            self._pending_payment(
                payment,
                method=PaymentMethod.CREDIT_CARD.value,
                client=client,
                plan=plan,
                quote=quote,
                pets_data=pets_data,
                installments=payload.installments,
                status=PendingPaymentStatus.DECLINED.value,
                moment=moment,
            )
            raise self._declined(payment, client_id=client.id)

        self._pending_payment(
            payment,
            method=PaymentMethod.CREDIT_CARD.value,
            client=client,
            plan=plan,
            quote=quote,
            pets_data=pets_data,
            installments=payload.installments,
            status=PendingPaymentStatus.PENDING.value,
            moment=moment,
        )
        result = self.reconciliation.apply_payment_confirmation(payment, source="checkout", now=moment)
        logger.info(
            "Checkout aprovado: pagamento %s, %s contrato(s), total %s",
            payment.payment_id,
            len(result.contracts_created),
            quote.total_cents,
        )
        return CheckoutResult(
            status="approved",
            payment_id=payment.payment_id,
            client_id=client.id,
            total_cents=quote.total_cents,
            contract_ids=[contract.id for contract in result.contracts_created],
            receipt_id=result.receipt_id,
            warnings=result.warnings,
        )

    def _start_pix_checkout(
        self,
        client: Client,
        plan: Plan,
        quote: PriceQuote,
        pets_data: list[dict],
        customer: GatewayCustomer,
        order_id: str,
        moment: datetime,
    ) -> CheckoutResult:
        payment = self.gateway.create_pix_payment(
            PixPaymentRequest(merchant_order_id=order_id, customer=customer, amount_cents=quote.total_cents)
        )
        pending = self._pending_payment(
            payment,
            method=PaymentMethod.PIX.value,
            client=client,
            plan=plan,
            quote=quote,
            pets_data=pets_data,
            installments=1,
            status=PendingPaymentStatus.PENDING.value,
            moment=moment,
        )
        logger.info("PIX gerado para o checkout do cliente %s (pagamento %s)", client.id, payment.payment_id)
        return CheckoutResult(
            status="pending",
            payment_id=payment.payment_id,
            client_id=client.id,
            total_cents=quote.total_cents,
            pix_qr_code=pending.pix_qr_code,
            pix_copy_paste=pending.pix_copy_paste,
            pix_expires_at=pending.expires_at,
        )

    def _declined(self, payment: GatewayPayment, *, client_id: UUID | None = None, contract_id: UUID | None = None) -> PaymentDeclinedError:
        category = classify_return_code(payment.return_code, payment.return_message)
        self.audit.record_event(
            "payment_declined",
            actor_type="client",
            actor_id=client_id,
            payment_id=payment.payment_id,
            contract_id=contract_id,
            details={"return_code": payment.return_code, "status": payment.status, "category": category},
        )
        logger.info("Pagamento %s recusado (codigo=%s, categoria=%s)", payment.payment_id, payment.return_code, category)
        return PaymentDeclinedError(
            friendly_message(category, raw_message=payment.return_message),
            category=category,
            return_code=payment.return_code,
            payment_id=payment.payment_id,
        )

    # ------------------------------------------------------------------
    # Pagamento de parcela (renovação / regularização)
    # ------------------------------------------------------------------

    def resolve_installment(self, client_id: UUID, reference: str) -> tuple[Contract, ContractInstallment]:
        if reference.startswith(VIRTUAL_PREFIX):
            try:
                contract_id = UUID(reference[len(VIRTUAL_PREFIX):])
            except ValueError as exc:
                raise NotFoundError("Installment not found") from exc
            contract = self.session.get(Contract, contract_id)
            if not contract or contract.client_id != client_id:
                raise NotFoundError("Installment not found")
            return contract, self.ledger.ensure_payable_installment(contract)

        try:
            installment_id = UUID(reference)
        except ValueError as exc:
            raise NotFoundError("Installment not found") from exc
        installment = self.ledger.get_installment(installment_id)
        contract = self.session.get(Contract, installment.contract_id) if installment else None
        if not installment or not contract or contract.client_id != client_id:
            raise NotFoundError("Installment not found")
        return contract, installment

    def _reusable_pix(self, installment: ContractInstallment, moment: datetime) -> InstallmentPaymentAttempt | None:
        """PIX anterior ainda válido para a parcela, consultado no gateway antes de gerar outro."""
        attempt = self.session.exec(
            select(InstallmentPaymentAttempt)
            .where(InstallmentPaymentAttempt.installment_id == installment.id)
            .where(InstallmentPaymentAttempt.status == PendingPaymentStatus.PENDING.value)
            .order_by(InstallmentPaymentAttempt.created_at.desc())
        ).first()
        if not attempt:
            return None
        if (attempt.expires_at and attempt.expires_at <= moment) or attempt.amount_cents != installment.amount_cents:
            attempt.status = PendingPaymentStatus.EXPIRED.value
            attempt.touch(moment)
            self.session.add(attempt)
            self.session.commit()
            return None

        try:
            payment = self.gateway.query_payment(attempt.payment_id)
        except GatewayNotFoundError:
            logger.warning("PIX %s não encontrado no gateway; gerando um novo", attempt.payment_id)
            attempt.status = PendingPaymentStatus.EXPIRED.value
            attempt.touch(moment)
            self.session.add(attempt)
            self.session.commit()
            return None

        if payment.approved:
            self.reconciliation.apply_payment_confirmation(payment, source="installment_payment", now=moment)
            return None
        if payment.failed:
            self.reconciliation.record_payment_failure(payment, source="installment_payment", now=moment)
            return None
        return attempt

    def pay_installment(
        self,
        client_id: UUID,
        payload: InstallmentPaymentRequest,
        now: datetime | None = None,
    ) -> InstallmentPaymentResult:
        moment = now or datetime.utcnow()
        contract, installment = self.resolve_installment(client_id, payload.installment_id)
        if installment.status == InstallmentStatus.PAID.value:
            raise BillingValidationError("Installment is already paid")
        if contract.status == ContractStatus.CANCELLED.value:
            raise BillingValidationError("Contract is cancelled")
        client = self.provisioning.get_client(client_id)
        customer = GatewayCustomer(name=client.full_name, email=client.email, cpf=client.cpf)
        order_id = new_merchant_order_id(moment)

        if payload.payment_method == PaymentMethod.PIX.value:
            reusable = self._reusable_pix(installment, moment)
            if reusable:
                logger.info("Reaproveitando PIX %s ainda pendente da parcela %s", reusable.payment_id, installment.id)
                return InstallmentPaymentResult(
                    status="pending",
                    payment_id=reusable.payment_id,
                    installment=installment,
                    pix_qr_code=reusable.pix_qr_code,
                    pix_copy_paste=reusable.pix_copy_paste,
                )
            self.session.refresh(installment)
            if installment.status == InstallmentStatus.PAID.value:
                raise BillingValidationError("Installment is already paid")

            payment = self.gateway.create_pix_payment(
                PixPaymentRequest(merchant_order_id=order_id, customer=customer, amount_cents=installment.amount_cents)
            )
            self.session.add(
                InstallmentPaymentAttempt(
                    payment_id=payment.payment_id,
                    installment_id=installment.id,
                    payment_method=PaymentMethod.PIX.value,
                    amount_cents=installment.amount_cents,
                    pix_qr_code=payment.qr_code_base64,
                    pix_copy_paste=payment.qr_code_string,
                    expires_at=moment + timedelta(hours=settings.pix_expiration_hours),
                )
            )
            installment.payment_id = payment.payment_id
            installment.last_attempt_at = moment
            installment.touch(moment)
            contract.pix_qr_code = payment.qr_code_base64
            contract.pix_copy_paste = payment.qr_code_string
            contract.touch(moment)
            self.session.add(installment)
            self.session.add(contract)
            self.session.commit()
            self.session.refresh(installment)
            return InstallmentPaymentResult(
                status="pending",
                payment_id=payment.payment_id,
                installment=installment,
                pix_qr_code=payment.qr_code_base64,
                pix_copy_paste=payment.qr_code_string,
            )

        if payload.card is not None:
            payment = self.gateway.create_credit_card_payment(
                CardPaymentRequest(
                    merchant_order_id=order_id,
                    customer=customer,
                    amount_cents=installment.amount_cents,
                    card=_card_data(payload.card),
                )
            )
        elif contract.card_token:
            payment = self.gateway.charge_saved_card(
                merchant_order_id=order_id,
                customer=customer,
                amount_cents=installment.amount_cents,
                card_token=contract.card_token,
                brand=contract.card_brand,
            )
        else:
            raise BillingValidationError("No saved card for this contract")

        if not payment.approved:
            installment.last_attempt_at = moment
            installment.last_attempt_message = payment.return_message
            installment.touch(moment)
            self.session.add(installment)
            self.session.commit()
            raise self._declined(payment, client_id=client_id, contract_id=contract.id)

        installment.payment_id = payment.payment_id
        contract.payment_method = PaymentMethod.CREDIT_CARD.value
        contract.card_brand = payment.card_brand or contract.card_brand
        contract.card_last_digits = payment.card_last_digits or contract.card_last_digits
        self.session.add(installment)
        self.session.add(contract)
        self.session.commit()
        result = self.reconciliation.apply_payment_confirmation(payment, source="installment_payment", now=moment)
        self.session.refresh(installment)
        next_installment = next((item for item in result.next_installments if item.contract_id == contract.id), None)
        return InstallmentPaymentResult(
            status="approved",
            payment_id=payment.payment_id,
            installment=installment,
            receipt_id=result.receipt_id,
            next_installment_id=next_installment.id if next_installment else None,
            warnings=result.warnings,
        )
