from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from app.core.logging_setup import logger


class BillingError(Exception):
    """Erro de domínio base da cobrança."""

    code = "billing_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class BillingValidationError(BillingError):
    code = "validation_error"


class NotFoundError(BillingError):
    code = "not_found"


class ConfigurationError(BillingError):
    code = "configuration_error"


class PaymentDeclinedError(BillingError):
    """Gateway não aprovou a transação. Nenhuma mutação no ledger."""

    code = "payment_declined"

    def __init__(
        self,
        message: str,
        *,
        category: str = "generic",
        return_code: str | None = None,
        payment_id: str | None = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.category = category
        self.return_code = return_code
        self.payment_id = payment_id


class GatewayError(BillingError):
    """Falha de comunicação ou erro de API no gateway de pagamento."""

    code = "gateway_error"

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status_code = status_code


class GatewayNotFoundError(GatewayError):
    code = "gateway_not_found"


@dataclass
class StepOutcome:
    step: str
    ok: bool
    critical: bool = False
    error: str | None = None
    value: Any = None


def run_step(step: str, func: Callable[[], Any], *, critical: bool = False) -> StepOutcome:
    """Executa uma etapa posterior ao pagamento.

    Etapas críticas propagam a exceção. Etapas não críticas (recibo, próxima
    parcela) apenas registram a falha, pois o pagamento já foi capturado.
    """
    try:
        value = func()
    except Exception as exc:
        if critical:
            raise
        logger.exception("Etapa não crítica '%s' falhou: %s", step, exc)
        return StepOutcome(step=step, ok=False, critical=False, error=str(exc))
    return StepOutcome(step=step, ok=True, critical=critical, value=value)
