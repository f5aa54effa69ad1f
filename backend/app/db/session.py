import os
from typing import Any, Generator

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

import app.db.base  # noqa: F401
from app.core.config import settings
from app.core.logging_setup import logger

connect_args: dict[str, Any] = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False
elif settings.database_url.startswith("postgresql"):
    client_encoding = os.getenv("POSTGRES_CLIENT_ENCODING", "UTF8")
    connect_args["options"] = f"-c client_encoding={client_encoding}"

engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    connect_args=connect_args,
)


def init_db() -> None:
    SQLModel.metadata.create_all(bind=engine)
    _ensure_schema_compatibility()
    _ensure_client_cpf_unique()


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def _ensure_schema_compatibility() -> None:
    """
    Keep backward compatibility with databases that were created before recent migrations.
    Ensures the (contract_id, installment_number) unique index and the receipt link on installments.
    """
    try:
        with engine.begin() as conn:
            inspector = inspect(conn)
            table_names = set(inspector.get_table_names())
            if "contract_installments" not in table_names:
                return

            columns = {column["name"] for column in inspector.get_columns("contract_installments")}
            if "receipt_id" not in columns:
                logger.warning("Coluna 'receipt_id' ausente em 'contract_installments'. Aplicando ajuste automático.")
                statement = "ALTER TABLE contract_installments ADD COLUMN receipt_id CHAR(32)"
                if settings.database_url.startswith("postgresql"):
                    statement = "ALTER TABLE contract_installments ADD COLUMN IF NOT EXISTS receipt_id UUID"
                conn.exec_driver_sql(statement)
                logger.info("Coluna 'receipt_id' adicionada em 'contract_installments'.")

            unique_sets = [
                tuple(item.get("column_names") or ())
                for item in inspector.get_unique_constraints("contract_installments")
            ]
            unique_sets += [
                tuple(item.get("column_names") or ())
                for item in inspector.get_indexes("contract_installments")
                if item.get("unique")
            ]
            if ("contract_id", "installment_number") not in unique_sets:
                logger.warning("Índice único (contract_id, installment_number) ausente. Criando.")
                conn.exec_driver_sql(
                    "CREATE UNIQUE INDEX IF NOT EXISTS uq_installment_contract_number "
                    "ON contract_installments (contract_id, installment_number)"
                )
    except SQLAlchemyError as exc:  # pragma: no cover - best effort safeguard
        logger.error("Falha ao ajustar esquema do banco: %s", exc)


def _ensure_client_cpf_unique() -> None:
    """Índice único em clients.cpf para bancos criados antes da restrição."""
    try:
        with engine.begin() as conn:
            inspector = inspect(conn)
            if "clients" not in set(inspector.get_table_names()):
                return
            unique_sets = [tuple(item.get("column_names") or ()) for item in inspector.get_unique_constraints("clients")]
            unique_sets += [
                tuple(item.get("column_names") or ())
                for item in inspector.get_indexes("clients")
                if item.get("unique")
            ]
            if ("cpf",) in unique_sets:
                return
            logger.warning("Índice único em clients.cpf ausente. Criando.")
            conn.exec_driver_sql("CREATE UNIQUE INDEX IF NOT EXISTS uq_clients_cpf ON clients (cpf)")
    except SQLAlchemyError as exc:  # pragma: no cover - CPFs duplicados exigem saneamento manual
        logger.error("Não foi possível criar índice único em clients.cpf: %s", exc)
