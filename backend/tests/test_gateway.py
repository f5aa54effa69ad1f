from __future__ import annotations

import json
from datetime import datetime

import httpx
import pytest

from app.core.config import Settings
from app.core.errors import BillingValidationError, ConfigurationError, GatewayError, GatewayNotFoundError
from app.services.gateway import (
    CardData,
    CardPaymentRequest,
    CieloGateway,
    GatewayCustomer,
    PixPaymentRequest,
    SandboxGateway,
    build_gateway,
    classify_return_code,
    friendly_message,
)
from tests.conftest import APPROVED_CARD, DECLINED_CARD, VALID_CPF  # type: ignore

CUSTOMER = GatewayCustomer(name="Maria Souza", email="maria@example.com", cpf=VALID_CPF)


def _card(number: str = APPROVED_CARD, expiration: str | None = None) -> CardData:
    return CardData(
        card_number=number,
        holder="MARIA SOUZA",
        expiration_date=expiration or f"12/{datetime.utcnow().year + 2}",
        security_code="123",
    )


def _gateway(handler) -> CieloGateway:
    return CieloGateway(
        "merchant-id",
        "merchant-key",
        api_url="https://api.test/",
        query_url="https://query.test",
        transport=httpx.MockTransport(handler),
    )


def test_credit_card_payment_request_and_parsing():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            201,
            json={
                "MerchantOrderId": "UNIPET-1",
                "Payment": {
                    "PaymentId": "pay-123",
                    "Status": 2,
                    "Type": "CreditCard",
                    "Amount": 28500,
                    "ReturnCode": "4",
                    "ReturnMessage": "Operation Successful",
                    "ProofOfSale": "123456",
                    "AuthorizationCode": "ABC123",
                    "Tid": "tid-1",
                    "CreditCard": {"CardNumber": "411111******1111", "Brand": "Visa", "CardToken": "tok-1"},
                },
            },
        )

    payment = _gateway(handler).create_credit_card_payment(
        CardPaymentRequest(merchant_order_id="UNIPET-1", customer=CUSTOMER, amount_cents=28500, card=_card())
    )

    assert captured["url"] == "https://api.test/1/sales/"
    assert captured["headers"]["MerchantId"] == "merchant-id"
    assert captured["headers"]["MerchantKey"] == "merchant-key"
    assert captured["body"]["Payment"]["Amount"] == 28500
    assert captured["body"]["Payment"]["CreditCard"]["SaveCard"] is True
    assert captured["body"]["Customer"]["Identity"] == VALID_CPF
    assert payment.approved
    assert payment.payment_id == "pay-123"
    assert payment.card_token == "tok-1"
    assert payment.card_last_digits == "1111"


def test_pix_payment_returns_qr_code():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["Payment"]["Type"] == "Pix"
        return httpx.Response(
            201,
            json={"Payment": {"PaymentId": "pix-1", "Status": 12, "Type": "Pix", "QrCodeString": "000201", "QrCodeBase64Image": "aW1n"}},
        )

    payment = _gateway(handler).create_pix_payment(
        PixPaymentRequest(merchant_order_id="UNIPET-2", customer=CUSTOMER, amount_cents=1000)
    )

    assert payment.pending
    assert payment.qr_code_string == "000201"


def test_query_uses_query_host_and_maps_404():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "query.test"
        if request.url.path.endswith("/missing"):
            return httpx.Response(404, json=[])
        return httpx.Response(200, json={"Payment": {"PaymentId": "pay-9", "Status": 3, "Type": "CreditCard"}})

    gateway = _gateway(handler)

    assert gateway.query_payment("pay-9").failed
    with pytest.raises(GatewayNotFoundError):
        gateway.query_payment("missing")


def test_api_error_does_not_leak_merchant_key():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=[{"Code": 126, "Message": "Credit Card Expiration Date is invalid merchant-key"}])

    with pytest.raises(GatewayError) as excinfo:
        _gateway(handler).query_payment("pay-1")

    assert excinfo.value.status_code == 400
    assert "merchant-key" not in excinfo.value.message


def test_network_failure_becomes_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayError):
        _gateway(handler).query_payment("pay-1")


def test_invalid_card_rejected_before_any_request():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    with pytest.raises(BillingValidationError):
        _gateway(handler).create_credit_card_payment(
            CardPaymentRequest(merchant_order_id="x", customer=CUSTOMER, amount_cents=100, card=_card(expiration="01/20"))
        )
    assert calls == []


def test_pix_requires_valid_cpf():
    with pytest.raises(BillingValidationError):
        SandboxGateway().create_pix_payment(
            PixPaymentRequest(merchant_order_id="x", customer=GatewayCustomer(name="Ana", cpf="123"), amount_cents=100)
        )


def test_sandbox_card_results_follow_last_digit():
    sandbox = SandboxGateway()
    approved = sandbox.create_credit_card_payment(
        CardPaymentRequest(merchant_order_id="a", customer=CUSTOMER, amount_cents=100, card=_card())
    )
    declined = sandbox.create_credit_card_payment(
        CardPaymentRequest(merchant_order_id="b", customer=CUSTOMER, amount_cents=100, card=_card(DECLINED_CARD))
    )

    assert approved.approved and approved.card_token
    assert declined.failed and declined.return_code == "05"
    assert sandbox.query_payment(declined.payment_id) is declined


def test_return_code_classification_and_messages():
    assert classify_return_code("05") == "card_declined"
    assert classify_return_code("57") == "invalid_card_data"
    assert classify_return_code("999", "Invalid CPF informed") == "invalid_document"
    assert classify_return_code(None) == "generic"
    assert "(raw)" not in friendly_message("card_declined", raw_message="raw", debug=False)
    assert friendly_message("card_declined", raw_message="raw", debug=True).endswith("(raw)")


def test_build_gateway_requires_credentials_in_production():
    with pytest.raises(ConfigurationError):
        build_gateway(Settings(environment="production", cielo_merchant_id=None, cielo_merchant_key=None))

    assert isinstance(build_gateway(Settings(environment="development", cielo_merchant_id=None, cielo_merchant_key=None)), SandboxGateway)
    assert isinstance(
        build_gateway(Settings(environment="development", cielo_merchant_id="id", cielo_merchant_key="key")),
        CieloGateway,
    )
