from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlmodel import Session

from app.api.deps import RequestContext, get_db, get_payment_gateway, get_request_context, guarded
from app.core.config import settings
from app.schemas.payment import PaymentQueryResponse
from app.services.gateway import PaymentGateway
from app.services.reconciliation import ReconciliationService

router = APIRouter(prefix="/payments", tags=["payments"])

TRUTHY = {"1", "true", "yes"}


@router.get("/query/{payment_id}", response_model=PaymentQueryResponse)
def query_payment(
    payment_id: str,
    request: Request,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    context: RequestContext = Depends(get_request_context),
) -> PaymentQueryResponse:
    """Polling do status de um pagamento PIX (cliente autenticado ou checkout anônimo)."""
    polling = (request.headers.get(settings.checkout_polling_header) or "").strip().lower() in TRUTHY
    if context.client_id is None and context.admin_id is None and not polling:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    service = ReconciliationService(session, gateway)
    result = guarded(service.poll_payment, payment_id, client_id=context.client_id)
    return PaymentQueryResponse(
        payment_id=result.payment_id,
        status=result.status,
        gateway_status=result.gateway_status,
        stop_polling=result.stop_polling,
        message=result.message,
    )
