"""Aritmética de datas do ciclo de cobrança.

Funções puras: nenhum acesso a banco e nenhum estado oculto. Aceitam tanto
``date`` quanto ``datetime`` e devolvem o mesmo tipo recebido.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from typing import TypeVar

from app.models.plan import BillingPeriod

D = TypeVar("D", date, datetime)


def _period_value(billing_period: BillingPeriod | str) -> str:
    value = billing_period.value if isinstance(billing_period, BillingPeriod) else str(billing_period)
    if value not in (BillingPeriod.MONTHLY.value, BillingPeriod.ANNUAL.value):
        raise ValueError(f"Unknown billing period: {billing_period}")
    return value


def add_months(value: D, months: int) -> D:
    """Soma meses preservando o dia; limita ao último dia do mês de destino."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_years(value: D, years: int) -> D:
    return add_months(value, years * 12)


def add_period(value: D, billing_period: BillingPeriod | str, count: int = 1) -> D:
    if _period_value(billing_period) == BillingPeriod.ANNUAL.value:
        return add_years(value, count)
    return add_months(value, count)


def period_end(period_start: D, billing_period: BillingPeriod | str) -> D:
    """Último dia coberto pelo período iniciado em ``period_start``."""
    return add_period(period_start, billing_period) - timedelta(days=1)


def overdue_periods(
    last_payment_date: date | datetime | None,
    now: date | datetime,
    billing_period: BillingPeriod | str,
    contract_start: date | datetime,
) -> int:
    """Quantidade de ciclos completos decorridos sem pagamento.

    A referência é o último pagamento ou, se nunca houve pagamento, o início
    do contrato. O ciclo em curso não conta como atrasado.
    """
    reference = last_payment_date or contract_start
    reference_day = reference.date() if isinstance(reference, datetime) else reference
    today = now.date() if isinstance(now, datetime) else now
    if today <= reference_day:
        return 0

    elapsed = 0
    while add_period(reference_day, billing_period, elapsed + 1) <= today:
        elapsed += 1
    return max(0, elapsed - 1)


def regularization_amount(base_amount: int, overdue: int, include_current_period: bool = True) -> int:
    periods = overdue + 1 if include_current_period else overdue
    return base_amount * max(periods, 0)
