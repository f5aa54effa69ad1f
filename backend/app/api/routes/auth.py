from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlmodel import Session

from app.api.deps import get_db
from app.schemas.auth import AdminLoginRequest, CustomerLoginRequest, Token
from app.services.audit import AuditService
from app.services.auth import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


def _services(session: Session) -> tuple[AuthService, AuditService]:
    return AuthService(session), AuditService(session)


@router.post("/customer/login", response_model=Token)
def customer_login(payload: CustomerLoginRequest, request: Request, session: Session = Depends(get_db)) -> Token:
    auth_service, audit_service = _services(session)
    try:
        token = auth_service.authenticate_customer(payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    audit_service.record_event(
        event_type="customer_login",
        actor_type="client",
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        details={"client_id": token.subject_id},
    )
    return token


@router.post("/admin/login", response_model=Token)
def admin_login(payload: AdminLoginRequest, request: Request, session: Session = Depends(get_db)) -> Token:
    auth_service, audit_service = _services(session)
    try:
        token = auth_service.authenticate_admin(payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    audit_service.record_event(
        event_type="admin_login",
        actor_type="admin",
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        details={"admin_id": token.subject_id},
    )
    return token
