from __future__ import annotations

from pydantic import BaseModel


class BillingJobsRead(BaseModel):
    renewals_attempted: int
    renewals_approved: int
    renewals_declined: int
    statuses_changed: int
    reminders_sent: int
    overdue_notices_sent: int
