from __future__ import annotations

import base64
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from functools import lru_cache
from typing import Any, Dict, Optional, Protocol

import httpx

from app.core.config import Settings, settings
from app.core.errors import BillingValidationError, ConfigurationError, GatewayError, GatewayNotFoundError
from app.core.logging_setup import logger
from app.utils.cards import (
    detect_card_brand,
    is_expired,
    is_valid_card_number,
    is_valid_security_code,
    last_digits,
    normalize_expiration,
    parse_expiration,
)
from app.utils.documents import digits_only, is_valid_cpf, normalize_cpf
from app.utils.sanitize import sanitize_payload, sanitize_text


class GatewayStatus(IntEnum):
    NOT_FINISHED = 0
    AUTHORIZED = 1
    PAYMENT_CONFIRMED = 2
    DENIED = 3
    VOIDED = 10
    REFUNDED = 11
    PENDING = 12
    ABORTED = 13
    SCHEDULED = 20


FAILED_STATUSES = {GatewayStatus.DENIED, GatewayStatus.VOIDED, GatewayStatus.ABORTED}


@dataclass
class CardData:
    card_number: str
    holder: str
    expiration_date: str
    security_code: str
    brand: str | None = None


@dataclass
class GatewayCustomer:
    name: str
    email: str | None = None
    cpf: str | None = None


@dataclass
class CardPaymentRequest:
    merchant_order_id: str
    customer: GatewayCustomer
    amount_cents: int
    card: CardData
    installments: int = 1
    save_card: bool = True


@dataclass
class PixPaymentRequest:
    merchant_order_id: str
    customer: GatewayCustomer
    amount_cents: int


@dataclass
class GatewayPayment:
    """Retrato normalizado de uma transação no gateway."""

    payment_id: str
    status: int
    payment_type: str
    amount_cents: int = 0
    return_code: str | None = None
    return_message: str | None = None
    proof_of_sale: str | None = None
    authorization_code: str | None = None
    tid: str | None = None
    qr_code_base64: str | None = None
    qr_code_string: str | None = None
    card_token: str | None = None
    card_brand: str | None = None
    card_last_digits: str | None = None
    merchant_order_id: str | None = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def approved(self) -> bool:
        return self.status == GatewayStatus.PAYMENT_CONFIRMED

    @property
    def pending(self) -> bool:
        return self.status in (GatewayStatus.PENDING, GatewayStatus.NOT_FINISHED, GatewayStatus.AUTHORIZED)

    @property
    def failed(self) -> bool:
        return self.status in FAILED_STATUSES


class PaymentGateway(Protocol):
    name: str

    def create_credit_card_payment(self, request: CardPaymentRequest) -> GatewayPayment:
        ...

    def create_pix_payment(self, request: PixPaymentRequest) -> GatewayPayment:
        ...

    def charge_saved_card(
        self,
        *,
        merchant_order_id: str,
        customer: GatewayCustomer,
        amount_cents: int,
        card_token: str,
        brand: str | None,
    ) -> GatewayPayment:
        ...

    def query_payment(self, payment_id: str) -> GatewayPayment:
        ...


# ---------------------------------------------------------------------------
# Validação local antes de qualquer chamada ao gateway
# ---------------------------------------------------------------------------


def validate_card(card: CardData, now: datetime | None = None) -> None:
    if not is_valid_card_number(card.card_number):
        raise BillingValidationError("Invalid card number", details={"category": "invalid_card_data"})
    parsed = parse_expiration(card.expiration_date)
    if not parsed:
        raise BillingValidationError("Invalid card expiration date", details={"category": "invalid_card_data"})
    if is_expired(*parsed, now=now):
        raise BillingValidationError("Card is expired", details={"category": "invalid_card_data"})
    if not is_valid_security_code(card.security_code):
        raise BillingValidationError("Invalid card security code", details={"category": "invalid_card_data"})
    if not (card.holder or "").strip():
        raise BillingValidationError("Card holder is required", details={"category": "invalid_card_data"})


def validate_pix_customer(customer: GatewayCustomer) -> None:
    if not is_valid_cpf(customer.cpf):
        raise BillingValidationError("A valid CPF is required for PIX payments", details={"category": "invalid_document"})


# ---------------------------------------------------------------------------
# Tradução de códigos de retorno para mensagens amigáveis
# ---------------------------------------------------------------------------

CARD_DECLINED_CODES = {"05", "51", "70", "77", "78", "99", "BL", "GA"}
INVALID_CARD_CODES = {"14", "54", "82", "83", "N7", "57"}
INVALID_DOCUMENT_MARKERS = ("cpf", "identity", "document")

FRIENDLY_MESSAGES = {
    "card_declined": "Pagamento não autorizado pelo emissor do cartão. Verifique o limite ou utilize outro cartão.",
    "invalid_card_data": "Dados do cartão inválidos. Confira número, validade e código de segurança.",
    "invalid_document": "CPF inválido. Verifique o documento informado.",
    "generic": "Não foi possível processar o pagamento. Tente novamente em instantes.",
}


def classify_return_code(return_code: str | None, return_message: str | None = None) -> str:
    code = (return_code or "").strip().upper()
    message = (return_message or "").lower()
    if any(marker in message for marker in INVALID_DOCUMENT_MARKERS):
        return "invalid_document"
    if code in INVALID_CARD_CODES:
        return "invalid_card_data"
    if code in CARD_DECLINED_CODES:
        return "card_declined"
    return "generic"


def friendly_message(category: str, *, raw_message: str | None = None, debug: bool | None = None) -> str:
    message = FRIENDLY_MESSAGES.get(category, FRIENDLY_MESSAGES["generic"])
    show_raw = (settings.debug or not settings.is_production()) if debug is None else debug
    if show_raw and raw_message:
        return f"{message} ({sanitize_text(raw_message)})"
    return message


# ---------------------------------------------------------------------------
# Cielo
# ---------------------------------------------------------------------------


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_cielo_payment(payload: Dict[str, Any]) -> GatewayPayment:
    """Normaliza a resposta PascalCase da Cielo."""
    payment = payload.get("Payment") or {}
    payment_id = payment.get("PaymentId")
    if not payment_id:
        raise GatewayError("Gateway response without PaymentId", details=sanitize_payload(payload))
    card = payment.get("CreditCard") or {}
    card_number = str(card.get("CardNumber") or "")
    return GatewayPayment(
        payment_id=str(payment_id),
        status=_to_int(payment.get("Status")),
        payment_type=str(payment.get("Type") or ""),
        amount_cents=_to_int(payment.get("Amount")),
        return_code=str(payment.get("ReturnCode")) if payment.get("ReturnCode") is not None else None,
        return_message=payment.get("ReturnMessage"),
        proof_of_sale=payment.get("ProofOfSale"),
        authorization_code=payment.get("AuthorizationCode"),
        tid=payment.get("Tid"),
        qr_code_base64=payment.get("QrCodeBase64Image"),
        qr_code_string=payment.get("QrCodeString"),
        card_token=card.get("CardToken"),
        card_brand=card.get("Brand"),
        card_last_digits=card_number[-4:] if card_number else None,
        merchant_order_id=payload.get("MerchantOrderId"),
        raw=payload,
    )


class CieloGateway:
    name = "cielo"

    def __init__(
        self,
        merchant_id: str,
        merchant_key: str,
        *,
        api_url: str | None = None,
        query_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not merchant_id or not merchant_key:
            raise ConfigurationError("Cielo credentials are not configured")
        self.merchant_id = merchant_id
        self.merchant_key = merchant_key
        self._api_url = (api_url or settings.cielo_api_url).rstrip("/")
        self._query_url = (query_url or settings.cielo_query_url).rstrip("/")
        self._timeout = timeout_seconds or settings.cielo_timeout_seconds or 30.0
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "MerchantId": self.merchant_id,
            "MerchantKey": self.merchant_key,
            "RequestId": str(uuid.uuid4()),
        }

    def _request(self, method: str, url: str, *, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        logger.info("Cielo %s %s payload=%s", method, url, sanitize_payload(json) if json else None)
        try:
            with httpx.Client(transport=self._transport, timeout=self._timeout) as client:
                response = client.request(method, url, json=json, headers=self._headers())
        except httpx.RequestError as exc:
            message = sanitize_text(str(exc), secrets=(self.merchant_key, self.merchant_id))
            raise GatewayError(f"Failed to reach payment gateway: {message}") from exc

        if response.status_code == 404:
            raise GatewayNotFoundError("Payment not found at gateway", status_code=404)
        if response.status_code >= 400:
            try:
                payload: Any = response.json()
            except ValueError:
                payload = {"error": response.text}
            details = sanitize_payload(payload if isinstance(payload, dict) else {"errors": payload})
            first = payload[0] if isinstance(payload, list) and payload else payload
            message = str(first.get("Message") if isinstance(first, dict) else "") or "Gateway request failed"
            raise GatewayError(
                sanitize_text(message, secrets=(self.merchant_key,)),
                details=details,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError("Invalid JSON returned by payment gateway", status_code=response.status_code) from exc

    def create_credit_card_payment(self, request: CardPaymentRequest) -> GatewayPayment:
        validate_card(request.card)
        body = {
            "MerchantOrderId": request.merchant_order_id,
            "Customer": {
                "Name": request.customer.name,
                "Email": request.customer.email,
                "Identity": normalize_cpf(request.customer.cpf) or None,
                "IdentityType": "CPF",
            },
            "Payment": {
                "Type": "CreditCard",
                "Amount": request.amount_cents,
                "Installments": request.installments,
                "Capture": True,
                "SoftDescriptor": settings.cielo_soft_descriptor,
                "CreditCard": {
                    "CardNumber": digits_only(request.card.card_number),
                    "Holder": request.card.holder.strip(),
                    "ExpirationDate": normalize_expiration(request.card.expiration_date),
                    "SecurityCode": request.card.security_code.strip(),
                    "SaveCard": request.save_card,
                    "Brand": request.card.brand or detect_card_brand(request.card.card_number),
                },
            },
        }
        payment = parse_cielo_payment(self._request("POST", f"{self._api_url}/1/sales/", json=body))
        payment.card_last_digits = payment.card_last_digits or last_digits(request.card.card_number)
        payment.card_brand = payment.card_brand or body["Payment"]["CreditCard"]["Brand"]
        return payment

    def create_pix_payment(self, request: PixPaymentRequest) -> GatewayPayment:
        validate_pix_customer(request.customer)
        body = {
            "MerchantOrderId": request.merchant_order_id,
            "Customer": {
                "Name": request.customer.name,
                "Identity": normalize_cpf(request.customer.cpf),
                "IdentityType": "CPF",
            },
            "Payment": {"Type": "Pix", "Amount": request.amount_cents},
        }
        return parse_cielo_payment(self._request("POST", f"{self._api_url}/1/sales/", json=body))

    def charge_saved_card(
        self,
        *,
        merchant_order_id: str,
        customer: GatewayCustomer,
        amount_cents: int,
        card_token: str,
        brand: str | None,
    ) -> GatewayPayment:
        body = {
            "MerchantOrderId": merchant_order_id,
            "Customer": {"Name": customer.name},
            "Payment": {
                "Type": "CreditCard",
                "Amount": amount_cents,
                "Installments": 1,
                "Capture": True,
                "SoftDescriptor": settings.cielo_soft_descriptor,
                "CreditCard": {"CardToken": card_token, "Brand": brand or "Visa"},
            },
        }
        return parse_cielo_payment(self._request("POST", f"{self._api_url}/1/sales/", json=body))

    def query_payment(self, payment_id: str) -> GatewayPayment:
        return parse_cielo_payment(self._request("GET", f"{self._query_url}/1/sales/{payment_id}"))


# ---------------------------------------------------------------------------
# Sandbox determinístico (desenvolvimento e testes)
# ---------------------------------------------------------------------------

# Regra do sandbox da Cielo: o último dígito do cartão define o retorno.
SANDBOX_CARD_RESULTS = {
    "0": (GatewayStatus.PAYMENT_CONFIRMED, "4", "Operation Successful"),
    "1": (GatewayStatus.PAYMENT_CONFIRMED, "4", "Operation Successful"),
    "4": (GatewayStatus.PAYMENT_CONFIRMED, "4", "Operation Successful"),
    "2": (GatewayStatus.DENIED, "05", "Not Authorized"),
    "3": (GatewayStatus.DENIED, "57", "Card Expired"),
    "5": (GatewayStatus.DENIED, "78", "Blocked Card"),
    "6": (GatewayStatus.DENIED, "99", "Time Out"),
    "7": (GatewayStatus.DENIED, "77", "Card Canceled"),
    "8": (GatewayStatus.DENIED, "70", "Problems with Creditcard"),
    "9": (GatewayStatus.DENIED, "05", "Not Authorized"),
}


class SandboxGateway:
    """Gateway em memória com as regras do sandbox do provedor."""

    name = "sandbox"

    def __init__(self) -> None:
        self._payments: dict[str, GatewayPayment] = {}
        self._lock = threading.Lock()
        self.calls: list[str] = []

    def _store(self, payment: GatewayPayment) -> GatewayPayment:
        with self._lock:
            self._payments[payment.payment_id] = payment
        return payment

    def create_credit_card_payment(self, request: CardPaymentRequest) -> GatewayPayment:
        self.calls.append("create_credit_card_payment")
        validate_card(request.card)
        number = digits_only(request.card.card_number)
        status, return_code, return_message = SANDBOX_CARD_RESULTS[number[-1]]
        approved = status == GatewayStatus.PAYMENT_CONFIRMED
        payment = GatewayPayment(
            payment_id=str(uuid.uuid4()),
            status=int(status),
            payment_type="CreditCard",
            amount_cents=request.amount_cents,
            return_code=return_code,
            return_message=return_message,
            proof_of_sale=uuid.uuid4().hex[:6] if approved else None,
            authorization_code=uuid.uuid4().hex[:6].upper() if approved else None,
            tid=uuid.uuid4().hex[:20],
            card_token=str(uuid.uuid4()) if approved and request.save_card else None,
            card_brand=request.card.brand or detect_card_brand(number),
            card_last_digits=number[-4:],
            merchant_order_id=request.merchant_order_id,
        )
        return self._store(payment)

    def create_pix_payment(self, request: PixPaymentRequest) -> GatewayPayment:
        self.calls.append("create_pix_payment")
        validate_pix_customer(request.customer)
        payment_id = str(uuid.uuid4())
        copy_paste = f"00020101021226880014br.gov.bcb.pix2566sandbox/{payment_id}5204000053039865802BR6304"
        payment = GatewayPayment(
            payment_id=payment_id,
            status=int(GatewayStatus.PENDING),
            payment_type="Pix",
            amount_cents=request.amount_cents,
            return_code="0",
            return_message="Pix gerado",
            qr_code_base64=base64.b64encode(copy_paste.encode("utf-8")).decode("ascii"),
            qr_code_string=copy_paste,
            merchant_order_id=request.merchant_order_id,
        )
        return self._store(payment)

    def charge_saved_card(
        self,
        *,
        merchant_order_id: str,
        customer: GatewayCustomer,
        amount_cents: int,
        card_token: str,
        brand: str | None,
    ) -> GatewayPayment:
        self.calls.append("charge_saved_card")
        approved = not card_token.startswith("declined")
        payment = GatewayPayment(
            payment_id=str(uuid.uuid4()),
            status=int(GatewayStatus.PAYMENT_CONFIRMED if approved else GatewayStatus.DENIED),
            payment_type="CreditCard",
            amount_cents=amount_cents,
            return_code="4" if approved else "05",
            return_message="Operation Successful" if approved else "Not Authorized",
            proof_of_sale=uuid.uuid4().hex[:6] if approved else None,
            authorization_code=uuid.uuid4().hex[:6].upper() if approved else None,
            tid=uuid.uuid4().hex[:20],
            card_token=card_token,
            card_brand=brand,
            merchant_order_id=merchant_order_id,
        )
        return self._store(payment)

    def query_payment(self, payment_id: str) -> GatewayPayment:
        self.calls.append("query_payment")
        with self._lock:
            payment = self._payments.get(payment_id)
        if not payment:
            raise GatewayNotFoundError("Payment not found at gateway", status_code=404)
        return payment

    def settle_pix(self, payment_id: str, status: GatewayStatus = GatewayStatus.PAYMENT_CONFIRMED) -> GatewayPayment:
        """Simula o pagamento (ou recusa) de um PIX no sandbox."""
        payment = self.query_payment(payment_id)
        payment.status = int(status)
        payment.return_code = "0" if status == GatewayStatus.PAYMENT_CONFIRMED else "05"
        return payment


def build_gateway(current: Settings | None = None) -> PaymentGateway:
    current = current or settings
    if current.gateway_configured():
        return CieloGateway(
            current.cielo_merchant_id or "",
            current.cielo_merchant_key or "",
            api_url=current.cielo_api_url,
            query_url=current.cielo_query_url,
            timeout_seconds=current.cielo_timeout_seconds,
        )
    if current.is_production():
        raise ConfigurationError("Cielo credentials are required in production")
    logger.warning("Credenciais Cielo ausentes; usando gateway sandbox em memória (modo desenvolvimento)")
    return SandboxGateway()


@lru_cache
def get_gateway() -> PaymentGateway:
    """Instância de processo do gateway (dependência FastAPI)."""
    return build_gateway()
