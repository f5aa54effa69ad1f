from __future__ import annotations

import hmac
import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlmodel import Session

from app.api.deps import get_db, get_payment_gateway, guarded
from app.core.config import settings
from app.core.logging_setup import logger
from app.schemas.payment import GatewayNotification
from app.services.audit import AuditService
from app.services.gateway import PaymentGateway
from app.services.reconciliation import ReconciliationResult, ReconciliationService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SECRET_HEADER = "X-Webhook-Secret"


@router.post("/gateway", status_code=status.HTTP_200_OK)
async def gateway_webhook(
    request: Request,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> dict:
    """Notificação de mudança de status do gateway.

    Corpo esperado: {"PaymentId": "...", "ChangeType": 1, "ClientOrderId": "..."}.
    Se ``cielo_webhook_secret`` estiver configurado, exige o cabeçalho X-Webhook-Secret.
    """
    if settings.cielo_webhook_secret:
        provided = request.headers.get(SECRET_HEADER) or ""
        if not hmac.compare_digest(provided.encode("utf-8"), settings.cielo_webhook_secret.encode("utf-8")):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    raw_body = await request.body()
    try:
        notification = GatewayNotification.model_validate(json.loads(raw_body or b"null"))
    except (ValueError, ValidationError) as exc:
        logger.warning("Webhook do gateway rejeitado: corpo inválido")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid notification payload") from exc

    ip_address = request.client.host if request.client else None
    # Consulta ao gateway e escrita no banco são bloqueantes
    result = await run_in_threadpool(_process_notification, session, gateway, notification, ip_address)
    return {"ok": True, "status": result.status if result else "acknowledged"}


def _process_notification(
    session: Session,
    gateway: PaymentGateway,
    notification: GatewayNotification,
    ip_address: str | None,
) -> ReconciliationResult | None:
    AuditService(session).record_event(
        "webhook_received",
        actor_type="gateway",
        payment_id=notification.payment_id,
        ip_address=ip_address,
        details={"change_type": notification.change_type, "client_order_id": notification.client_order_id},
    )
    return guarded(ReconciliationService(session, gateway).handle_notification, notification)
