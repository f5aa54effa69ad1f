from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlmodel import Session

from app.api.deps import RequestContext, get_db, guarded, require_client
from app.schemas.installment import ContractRead, InstallmentPartitionRead, RegularizationRead
from app.schemas.receipt import ReceiptRead
from app.services.contract_status import ContractStatusService
from app.services.ledger import InstallmentLedger
from app.services.receipt import ReceiptService

router = APIRouter(prefix="/customer", tags=["customer"])


@router.get("/installments", response_model=InstallmentPartitionRead)
def list_installments(
    session: Session = Depends(get_db),
    context: RequestContext = Depends(require_client),
) -> InstallmentPartitionRead:
    partition = InstallmentLedger(session).partition_for_client(context.client_id)
    return InstallmentPartitionRead.model_validate(partition)


@router.get("/contracts", response_model=List[ContractRead])
def list_contracts(
    session: Session = Depends(get_db),
    context: RequestContext = Depends(require_client),
) -> List[ContractRead]:
    service = ContractStatusService(session)
    items: List[ContractRead] = []
    for contract in service.list_for_client(context.client_id):
        evaluation = service.evaluate(contract)
        read = ContractRead.model_validate(contract)
        read.evaluated_status = evaluation.status
        read.days_past_due = evaluation.days_past_due
        read.next_due_date = evaluation.next_due_date
        items.append(read)
    return items


@router.get("/contracts/{contract_id}/regularization", response_model=RegularizationRead)
def get_regularization(
    contract_id: UUID,
    include_current_period: bool = True,
    session: Session = Depends(get_db),
    context: RequestContext = Depends(require_client),
) -> RegularizationRead:
    service = ContractStatusService(session)
    contract = guarded(service.get_contract, contract_id, context.client_id)
    quote = service.regularization_quote(contract, include_current_period=include_current_period)
    return RegularizationRead(
        contract_id=quote.contract_id,
        billing_period=quote.billing_period,
        base_amount_cents=quote.base_amount_cents,
        overdue_periods=quote.overdue_periods,
        include_current_period=quote.include_current_period,
        amount_cents=quote.amount_cents,
    )


@router.get("/receipts", response_model=List[ReceiptRead])
def list_receipts(
    session: Session = Depends(get_db),
    context: RequestContext = Depends(require_client),
) -> List[ReceiptRead]:
    receipts = ReceiptService(session).list_for_client(context.client_id)
    return [ReceiptRead.model_validate(receipt) for receipt in receipts]


@router.get("/receipts/{receipt_id}/pdf")
def download_receipt(
    receipt_id: UUID,
    session: Session = Depends(get_db),
    context: RequestContext = Depends(require_client),
) -> Response:
    service = ReceiptService(session)
    receipt = guarded(service.get_receipt, receipt_id)
    if receipt.client_id != context.client_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")
    return Response(
        content=service.load_pdf(receipt),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{receipt.receipt_number}.pdf"'},
    )
