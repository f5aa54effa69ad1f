from __future__ import annotations

import io
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from html import escape
from pathlib import Path
from typing import Any, List
from uuid import UUID

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.config import settings
from app.core.errors import NotFoundError
from app.core.logging_setup import logger
from app.models.receipt import PaymentReceipt

PAYMENT_METHOD_LABELS = {"credit_card": "Cartão de crédito", "pix": "PIX"}
BILLING_PERIOD_LABELS = {"monthly": "Mensal", "annual": "Anual"}


def format_brl(cents: int) -> str:
    value = f"{abs(cents) / 100:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"-R$ {value}" if cents < 0 else f"R$ {value}"


def generate_receipt_number(now: datetime | None = None) -> str:
    moment = now or datetime.utcnow()
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"UNIPET{moment:%Y%m%dT%H%M%S}{suffix}"


@dataclass
class ReceiptData:
    payment_id: str
    client_name: str
    amount_cents: int
    payment_method: str
    payment_date: datetime
    client_id: UUID | None = None
    client_email: str | None = None
    plan_name: str | None = None
    billing_period: str | None = None
    installment_number: int | None = None
    contract_id: UUID | None = None
    proof_of_sale: str | None = None
    authorization_code: str | None = None
    tid: str | None = None
    pets: List[dict[str, Any]] = field(default_factory=list)


@dataclass
class ReceiptResult:
    success: bool
    receipt_id: UUID | None = None
    receipt_number: str | None = None
    created: bool = False
    error: str | None = None


class ReceiptService:
    """Gera o comprovante de pagamento (registro + PDF). Idempotente por pagamento."""

    def __init__(self, session: Session, storage_dir: str | Path | None = None) -> None:
        self.session = session
        self.storage_dir = Path(storage_dir or settings.receipts_dir)

    def get_receipt(self, receipt_id: UUID) -> PaymentReceipt:
        receipt = self.session.get(PaymentReceipt, receipt_id)
        if not receipt:
            raise NotFoundError("Receipt not found")
        return receipt

    def get_by_payment(self, payment_id: str) -> PaymentReceipt | None:
        return self.session.exec(select(PaymentReceipt).where(PaymentReceipt.payment_id == payment_id)).first()

    def list_for_client(self, client_id: UUID) -> list[PaymentReceipt]:
        return list(
            self.session.exec(
                select(PaymentReceipt)
                .where(PaymentReceipt.client_id == client_id)
                .order_by(PaymentReceipt.payment_date.desc())
            ).all()
        )

    def generate_payment_receipt(self, data: ReceiptData, idempotency_key: str | None = None) -> ReceiptResult:
        key = idempotency_key or data.payment_id
        existing = self.get_by_payment(key)
        if existing:
            logger.info("Comprovante %s já existe para o pagamento %s", existing.receipt_number, key)
            return ReceiptResult(success=True, receipt_id=existing.id, receipt_number=existing.receipt_number)

        receipt = PaymentReceipt(
            payment_id=key,
            receipt_number=generate_receipt_number(),
            client_id=data.client_id,
            contract_id=data.contract_id,
            client_name=data.client_name,
            client_email=data.client_email,
            plan_name=data.plan_name,
            billing_period=data.billing_period,
            installment_number=data.installment_number,
            amount_cents=data.amount_cents,
            payment_method=data.payment_method,
            payment_date=data.payment_date,
            proof_of_sale=data.proof_of_sale,
            authorization_code=data.authorization_code,
            tid=data.tid,
            pets_data=list(data.pets),
        )
        try:
            receipt.pdf_path = str(self._write_pdf(receipt))
            receipt.pdf_file_name = Path(receipt.pdf_path).name
        except OSError as exc:
            logger.error("Falha ao gravar PDF do comprovante %s: %s", receipt.receipt_number, exc)
            receipt.status = "pdf_pending"

        self.session.add(receipt)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = self.get_by_payment(key)
            if not existing:
                raise
            return ReceiptResult(success=True, receipt_id=existing.id, receipt_number=existing.receipt_number)
        self.session.refresh(receipt)
        logger.info(
            "Comprovante %s gerado para o pagamento %s (%s pet(s))",
            receipt.receipt_number,
            key,
            len(receipt.pets_data or []),
        )
        return ReceiptResult(success=True, receipt_id=receipt.id, receipt_number=receipt.receipt_number, created=True)

    def load_pdf(self, receipt: PaymentReceipt) -> bytes:
        """Lê o PDF salvo; se o arquivo sumiu, renderiza novamente."""
        if receipt.pdf_path:
            path = Path(receipt.pdf_path)
            if path.exists():
                return path.read_bytes()
        return self.build_pdf(receipt)

    def _write_pdf(self, receipt: PaymentReceipt) -> Path:
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        target = self.storage_dir / f"{receipt.receipt_number}.pdf"
        target.write_bytes(self.build_pdf(receipt))
        return target

    def build_pdf(self, receipt: PaymentReceipt) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=2 * cm,
            rightMargin=2 * cm,
            topMargin=2 * cm,
            bottomMargin=2 * cm,
            title=f"Comprovante {receipt.receipt_number}",
        )
        styles = getSampleStyleSheet()
        title_style = ParagraphStyle("ReceiptTitle", parent=styles["Title"], fontSize=18, spaceAfter=12)
        label_style = ParagraphStyle("ReceiptLabel", parent=styles["Normal"], fontSize=9, textColor=colors.grey)
        body_style = ParagraphStyle("ReceiptBody", parent=styles["Normal"], fontSize=10, leading=13)

        story: list[Any] = [
            Paragraph("UNIPET Saúde Pet", title_style),
            Paragraph(f"Comprovante de pagamento nº {escape(receipt.receipt_number)}", styles["Heading2"]),
            Spacer(1, 0.4 * cm),
        ]

        summary_rows = [
            ["Cliente", escape(receipt.client_name)],
            ["E-mail", escape(receipt.client_email or "-")],
            ["Plano", escape(receipt.plan_name or "-")],
            ["Periodicidade", BILLING_PERIOD_LABELS.get(receipt.billing_period or "", receipt.billing_period or "-")],
            ["Forma de pagamento", PAYMENT_METHOD_LABELS.get(receipt.payment_method, receipt.payment_method)],
            ["Data do pagamento", receipt.payment_date.strftime("%d/%m/%Y %H:%M")],
            ["Valor pago", format_brl(receipt.amount_cents)],
            ["Identificador da transação", escape(receipt.payment_id)],
        ]
        if receipt.proof_of_sale:
            summary_rows.append(["Comprovante de venda (NSU)", escape(receipt.proof_of_sale)])
        if receipt.authorization_code:
            summary_rows.append(["Código de autorização", escape(receipt.authorization_code)])

        summary = Table(
            [[Paragraph(label, label_style), Paragraph(str(value), body_style)] for label, value in summary_rows],
            colWidths=[5.5 * cm, 11.5 * cm],
        )
        summary.setStyle(
            TableStyle(
                [
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.lightgrey),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        story.extend([summary, Spacer(1, 0.6 * cm)])

        pets = receipt.pets_data or []
        if pets:
            story.append(Paragraph("Pets cobertos", styles["Heading3"]))
            pet_rows: list[list[str]] = [["Pet", "Espécie", "Contrato", "Desconto", "Valor"]]
            for pet in pets:
                pet_rows.append(
                    [
                        str(pet.get("name", "-")),
                        str(pet.get("species") or "-"),
                        str(pet.get("contract_number") or "-"),
                        f"{int(pet.get('discount_percent') or 0)}%",
                        format_brl(int(pet.get("price_cents") or 0)),
                    ]
                )
            pets_table = Table(pet_rows, colWidths=[4 * cm, 2.5 * cm, 5.5 * cm, 2 * cm, 3 * cm])
            pets_table.setStyle(
                TableStyle(
                    [
                        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1f4e79")),
                        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                        ("FONTSIZE", (0, 0), (-1, -1), 9),
                        ("GRID", (0, 0), (-1, -1), 0.25, colors.lightgrey),
                        ("ALIGN", (3, 1), (-1, -1), "RIGHT"),
                    ]
                )
            )
            story.extend([pets_table, Spacer(1, 0.6 * cm)])

        story.append(
            Paragraph(
                f"Documento gerado em {datetime.utcnow().strftime('%d/%m/%Y %H:%M')} UTC.",
                label_style,
            )
        )
        doc.build(story)
        return buffer.getvalue()
