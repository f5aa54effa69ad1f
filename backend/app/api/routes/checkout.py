from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from app.api.deps import RequestContext, get_db, get_payment_gateway, guarded, require_client
from app.schemas.checkout import (
    CompleteRegistrationRequest,
    CompleteRegistrationResponse,
    InstallmentPaymentRequest,
    InstallmentPaymentResponse,
    PixData,
    QuoteRead,
    SaveCustomerDataRequest,
    SaveCustomerDataResponse,
    SimpleProcessRequest,
    SimpleProcessResponse,
)
from app.services.checkout import CheckoutService
from app.services.gateway import PaymentGateway

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _service(session: Session, gateway: PaymentGateway) -> CheckoutService:
    return CheckoutService(session, gateway)


@router.post("/save-customer-data", response_model=SaveCustomerDataResponse)
def save_customer_data(
    payload: SaveCustomerDataRequest,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> SaveCustomerDataResponse:
    client, quote = guarded(_service(session, gateway).save_customer_data, payload)
    return SaveCustomerDataResponse(client_id=client.id, quote=QuoteRead.model_validate(quote))


@router.post("/complete-registration", response_model=CompleteRegistrationResponse)
def complete_registration(
    payload: CompleteRegistrationRequest,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> CompleteRegistrationResponse:
    client, reused = guarded(_service(session, gateway).complete_registration, payload)
    return CompleteRegistrationResponse(client_id=client.id, reused_existing_client=reused)


@router.post("/simple-process", response_model=SimpleProcessResponse, status_code=status.HTTP_201_CREATED)
def simple_process(
    payload: SimpleProcessRequest,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> SimpleProcessResponse:
    result = guarded(_service(session, gateway).simple_process, payload)
    pix = None
    if result.pix_copy_paste:
        pix = PixData(
            qr_code_base64=result.pix_qr_code,
            copy_paste_code=result.pix_copy_paste,
            expires_at=result.pix_expires_at.isoformat() if result.pix_expires_at else None,
        )
    return SimpleProcessResponse(
        status=result.status,
        payment_id=result.payment_id,
        client_id=result.client_id,
        total_cents=result.total_cents,
        contract_ids=result.contract_ids,
        receipt_id=result.receipt_id,
        pix=pix,
        warnings=result.warnings,
    )


@router.post("/installment-payment", response_model=InstallmentPaymentResponse)
def installment_payment(
    payload: InstallmentPaymentRequest,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    context: RequestContext = Depends(require_client),
) -> InstallmentPaymentResponse:
    result = guarded(_service(session, gateway).pay_installment, context.client_id, payload)
    pix = None
    if result.pix_copy_paste:
        pix = PixData(qr_code_base64=result.pix_qr_code, copy_paste_code=result.pix_copy_paste)
    return InstallmentPaymentResponse(
        status=result.status,
        payment_id=result.payment_id,
        installment_id=result.installment.id,
        installment_number=result.installment.installment_number,
        amount_cents=result.installment.amount_cents,
        receipt_id=result.receipt_id,
        next_installment_id=result.next_installment_id,
        pix=pix,
        warnings=result.warnings,
    )
