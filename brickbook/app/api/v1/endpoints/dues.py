"""
Dues API Endpoints.

Paying a sale's outstanding due from the customer's advance balance.
"""

import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from brickbook.app.db.session import get_db
from brickbook.app.core.dependencies import get_current_user
from brickbook.app.domain.ledger.store import LedgerStore
from brickbook.app.domain.sales.sale_service import sale_service
from brickbook.app.schemas.advance import TransactionResponse
from brickbook.app.schemas.sale import AdvanceDeductionRequest, AdvanceDeductionResponse, DeductionSummary, SaleResponse
from brickbook.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/dues", tags=["Dues"])

logger = logging.getLogger("brickbook.api.dues")


@router.post("/advance-deduction", response_model=AdvanceDeductionResponse)
async def deduct_from_advance(
    body: AdvanceDeductionRequest,
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Deduct advance against a sale's due amount.

    Fails with 400 when the advance balance or the sale's due is smaller than
    the amount, and 404 when the sale does not belong to the customer.
    """
    owner_id = current_user["user_id"]
    result = await sale_service.apply_advance_to_due(
        db,
        owner_id=owner_id,
        sale_id=body.saleId,
        customer_id=body.customerId,
        amount=body.amount,
        description=body.description,
        entry_date=body.date,
    )
    entry = await LedgerStore.get(db, result.entry.id, owner_id)
    sale = result.sale

    await log_event(
        db=db,
        action=AuditAction.ADVANCE_CONSUMED,
        actor_id=owner_id,
        actor_username=current_user.get("sub"),
        customer_id=sale.customer_id,
        metadata={
            "entry_id": entry.id,
            "sale_id": sale.id,
            "payment_id": result.payment.id,
            "amount": float(-entry.amount),
            "new_balance": float(result.new_balance),
        },
        ip_address=request.client.host if request.client else None,
    )
    logger.info(
        "Deducted %s from advance of customer %s for invoice %s",
        -entry.amount, sale.customer_id, sale.invoice_no,
    )

    return AdvanceDeductionResponse(
        message=f"₹{-entry.amount} deducted from advance and applied to due",
        transaction=TransactionResponse.from_entry(entry),
        sale=SaleResponse.from_sale(sale),
        paymentId=result.payment.id,
        summary=DeductionSummary(
            amountDeducted=float(-entry.amount),
            remainingAdvance=float(result.new_balance),
            remainingDue=float(sale.due_amount),
            newStatus=sale.status.value,
        ),
    )
