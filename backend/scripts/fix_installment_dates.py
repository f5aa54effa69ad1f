"""Corrige a data de vencimento da segunda parcela criada com dois períodos de avanço.

Uso:
    python scripts/fix_installment_dates.py           # apenas analisa (dry-run)
    python scripts/fix_installment_dates.py --apply   # grava as correções

Só altera parcelas nº 2 em status pending/current; parcelas pagas nunca são tocadas.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from uuid import UUID

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from sqlmodel import Session, select  # noqa: E402

from app.core.logging_setup import logger  # noqa: E402
from app.db.session import engine  # noqa: E402
from app.models.contract import Contract, ContractInstallment, InstallmentStatus  # noqa: E402
from app.services import billing_calendar  # noqa: E402

FIXABLE_STATUSES = (InstallmentStatus.PENDING.value, InstallmentStatus.CURRENT.value)
TOLERANCE = timedelta(days=1)


@dataclass
class DateFix:
    contract_id: UUID
    contract_number: str
    billing_period: str
    installment_id: UUID
    first_due_date: datetime
    current_due_date: datetime
    correct_due_date: datetime
    period_start: date
    period_end: date


def find_misdated_installments(session: Session) -> list[DateFix]:
    fixes: list[DateFix] = []
    for contract in session.exec(select(Contract)).all():
        rows = session.exec(
            select(ContractInstallment)
            .where(ContractInstallment.contract_id == contract.id)
            .order_by(ContractInstallment.installment_number)
        ).all()
        if len(rows) < 2:
            continue
        first, second = rows[0], rows[1]
        if second.status not in FIXABLE_STATUSES:
            continue
        correct = billing_calendar.add_period(first.due_date, contract.billing_period, 1)
        wrong = billing_calendar.add_period(first.due_date, contract.billing_period, 2)
        if abs(second.due_date - wrong) <= TOLERANCE and abs(second.due_date - correct) > TOLERANCE:
            start = first.period_end + timedelta(days=1)
            fixes.append(
                DateFix(
                    contract_id=contract.id,
                    contract_number=contract.contract_number,
                    billing_period=contract.billing_period,
                    installment_id=second.id,
                    first_due_date=first.due_date,
                    current_due_date=second.due_date,
                    correct_due_date=correct,
                    period_start=start,
                    period_end=billing_calendar.period_end(start, contract.billing_period),
                )
            )
    return fixes


def apply_fixes(session: Session, fixes: list[DateFix]) -> int:
    corrected = 0
    for fix in fixes:
        installment = session.get(ContractInstallment, fix.installment_id)
        if not installment or installment.status not in FIXABLE_STATUSES:
            continue
        installment.due_date = fix.correct_due_date
        installment.period_start = fix.period_start
        installment.period_end = fix.period_end
        installment.touch()
        session.add(installment)
        corrected += 1
    session.commit()
    return corrected


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Corrige vencimentos da segunda parcela")
    parser.add_argument("--apply", action="store_true", help="grava as correções no banco")
    args = parser.parse_args(argv)

    with Session(engine) as session:
        fixes = find_misdated_installments(session)
        if not fixes:
            print("Nenhum contrato com problema encontrado.")
            return 0

        print(f"Encontrados {len(fixes)} contrato(s) com datas incorretas:")
        for fix in fixes:
            print(
                f"  {fix.contract_number} ({fix.billing_period}): parcela 1 em {fix.first_due_date:%d/%m/%Y}, "
                f"parcela 2 em {fix.current_due_date:%d/%m/%Y} -> {fix.correct_due_date:%d/%m/%Y}"
            )

        if not args.apply:
            print("[DRY-RUN] Execute com --apply para aplicar as correções.")
            return 0

        corrected = apply_fixes(session, fixes)
        logger.info("Vencimentos corrigidos: %s parcela(s)", corrected)
        print(f"{corrected} parcela(s) corrigida(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
