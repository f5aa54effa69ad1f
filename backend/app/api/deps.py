from dataclasses import dataclass
from typing import Annotated, Any, Callable
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.errors import (
    BillingError,
    BillingValidationError,
    ConfigurationError,
    GatewayError,
    NotFoundError,
    PaymentDeclinedError,
)
from app.db.session import get_session
from app.models.admin import AdminUser
from app.models.client import Client
from app.services.gateway import PaymentGateway, get_gateway
from app.utils.security import TokenRole, TokenType, decode_token

bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Session:
    yield from get_session()


def get_payment_gateway() -> PaymentGateway:
    try:
        return get_gateway()
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message) from exc


@dataclass
class RequestContext:
    client_id: UUID | None = None
    admin_id: UUID | None = None

    @property
    def authenticated(self) -> bool:
        return self.client_id is not None or self.admin_id is not None


def get_request_context(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    session: Annotated[Session, Depends(get_db)],
) -> RequestContext:
    if credentials is None:
        return RequestContext()

    try:
        payload = decode_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    if payload.get("token_type") != TokenType.ACCESS.value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        subject = UUID(str(payload["sub"]))
    except (KeyError, ValueError, TypeError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject") from exc

    role = payload.get("role")
    if role == TokenRole.CLIENT.value:
        if not session.get(Client, subject):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Client not found")
        return RequestContext(client_id=subject)
    if role == TokenRole.ADMIN.value:
        admin = session.get(AdminUser, subject)
        if not admin or not admin.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin not found")
        return RequestContext(admin_id=subject)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token role")


def require_client(context: Annotated[RequestContext, Depends(get_request_context)]) -> RequestContext:
    if context.client_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Customer authentication required")
    return context


def require_admin(context: Annotated[RequestContext, Depends(get_request_context)]) -> RequestContext:
    if context.admin_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin authentication required")
    return context


_STATUS_BY_ERROR: list[tuple[type[BillingError], int]] = [
    (PaymentDeclinedError, status.HTTP_402_PAYMENT_REQUIRED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (BillingValidationError, status.HTTP_400_BAD_REQUEST),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
]


def http_error(exc: BillingError) -> HTTPException:
    """Converte um erro de domínio na resposta HTTP correspondente."""
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    detail: Any = exc.message
    if isinstance(exc, PaymentDeclinedError):
        detail = {
            "message": exc.message,
            "category": exc.category,
            "return_code": exc.return_code,
            "payment_id": exc.payment_id,
        }
    elif exc.details.get("category"):
        detail = {"message": exc.message, "category": exc.details["category"]}
    return HTTPException(status_code=status_code, detail=detail)


def guarded(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return func(*args, **kwargs)
    except BillingError as exc:
        raise http_error(exc) from exc
