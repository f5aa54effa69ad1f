from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from sqlmodel import Session

from app.core.errors import StepOutcome, run_step
from app.core.logging_setup import logger
from app.services.contract_status import ContractStatusService
from app.services.gateway import PaymentGateway, get_gateway
from app.services.renewal import RenewalService

# Rotina diária: renovações automáticas, status dos contratos, lembretes e avisos de atraso


@dataclass
class BillingJobsReport:
    renewals_attempted: int = 0
    renewals_approved: int = 0
    renewals_declined: int = 0
    statuses_changed: int = 0
    reminders_sent: int = 0
    overdue_notices_sent: int = 0


def _job(session: Session, name: str, func: Callable[[], Any]) -> StepOutcome:
    outcome = run_step(name, func)
    if not outcome.ok:
        session.rollback()
    return outcome


def run_billing_scheduler(session: Session, gateway: PaymentGateway | None = None, now: datetime | None = None) -> BillingJobsReport:
    now = now or datetime.utcnow()
    renewals = RenewalService(session, gateway or get_gateway())
    statuses = ContractStatusService(session)
    report = BillingJobsReport()

    outcome = _job(session, "automatic_renewals", lambda: renewals.run_automatic_renewals(now))
    if outcome.ok:
        report.renewals_attempted = outcome.value.attempted
        report.renewals_approved = outcome.value.approved
        report.renewals_declined = outcome.value.declined

    outcome = _job(session, "contract_statuses", lambda: statuses.refresh_statuses(now))
    if outcome.ok:
        report.statuses_changed = len(outcome.value)

    outcome = _job(session, "payment_reminders", lambda: renewals.send_reminders(now))
    if outcome.ok:
        report.reminders_sent = outcome.value

    outcome = _job(session, "overdue_notices", lambda: renewals.send_overdue_notices(now))
    if outcome.ok:
        report.overdue_notices_sent = outcome.value

    logger.info("Rotina de cobrança concluída: %s", report)
    return report
