"""Esquema inicial: planos, clientes, pets, contratos, parcelas, pagamentos e recibos."""

from __future__ import annotations

from alembic import op
from sqlmodel import SQLModel

from app.db.base import *  # noqa: F401,F403 registra os modelos em SQLModel.metadata

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

# Ordem de criação respeita as chaves estrangeiras
TABLES = (
    "plans",
    "clients",
    "pets",
    "coupons",
    "admin_users",
    "pending_payments",
    "contracts",
    "payment_receipts",
    "contract_installments",
    "installment_payment_attempts",
    "audit_logs",
)


def upgrade() -> None:
    bind = op.get_bind()
    metadata = SQLModel.metadata
    SQLModel.metadata.create_all(bind=bind, tables=[metadata.tables[name] for name in TABLES])


def downgrade() -> None:
    bind = op.get_bind()
    metadata = SQLModel.metadata
    metadata.drop_all(bind=bind, tables=[metadata.tables[name] for name in reversed(TABLES)])
