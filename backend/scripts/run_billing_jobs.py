"""Executa a rotina diária de cobrança (agendar via cron)."""

import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from sqlmodel import Session  # noqa: E402

from app.db.session import engine, init_db  # noqa: E402
from app.services.billing_scheduler import run_billing_scheduler  # noqa: E402


def main() -> int:
    init_db()
    with Session(engine) as session:
        report = run_billing_scheduler(session)
    print(
        f"Renovações: {report.renewals_approved}/{report.renewals_attempted} aprovadas, "
        f"{report.renewals_declined} recusadas | status alterados: {report.statuses_changed} | "
        f"lembretes: {report.reminders_sent} | avisos de atraso: {report.overdue_notices_sent}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
