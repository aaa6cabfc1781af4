"""
Sales API Endpoints.

Recording a sale can spend advance (advanceUsed) and bank an overpayment as
advance (advancePayment) in the same atomic unit as the sale itself.
"""

import logging
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from brickbook.app.db.session import get_db
from brickbook.app.core.dependencies import get_current_user
from brickbook.app.domain.sales.sale_service import sale_service
from brickbook.app.schemas.sale import SaleCreate, SaleCreateResponse, SaleResponse, PaymentSummary
from brickbook.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/sales", tags=["Sales"])

logger = logging.getLogger("brickbook.api.sales")


@router.post("", response_model=SaleCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_sale(
    sale_data: SaleCreate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a sale settled from cash and/or advance.
    """
    result = await sale_service.create_sale(
        db,
        owner_id=current_user["user_id"],
        customer_id=sale_data.customerId,
        total_amount=sale_data.totalAmount,
        paid_amount=sale_data.paidAmount,
        advance_used=sale_data.advanceUsed,
        advance_payment=sale_data.advancePayment,
        invoice_no=sale_data.invoiceNo,
        sale_date=sale_data.saleDate,
    )
    sale = result.sale

    await log_event(
        db=db,
        action=AuditAction.SALE_CREATED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        customer_id=sale.customer_id,
        metadata={
            "sale_id": sale.id,
            "invoice_no": sale.invoice_no,
            "total_amount": float(sale.total_amount),
            "advance_used": float(result.advance_used),
            "advance_payment": float(result.advance_payment),
        },
        ip_address=request.client.host if request.client else None,
    )
    if result.advance_used or result.advance_payment:
        logger.info(
            "Sale %s moved advance for customer %s by %s, balance now %s",
            sale.invoice_no, sale.customer_id, result.advance_change, result.new_balance,
        )

    paid_cash = sale.paid_amount - result.advance_used
    return SaleCreateResponse(
        message="Sale created successfully",
        sale=SaleResponse.from_sale(sale),
        paymentSummary=PaymentSummary(
            totalAmount=float(sale.total_amount),
            paidAmount=float(paid_cash),
            advanceUsed=float(result.advance_used),
            advancePayment=float(result.advance_payment),
            dueAmount=float(sale.due_amount),
            advanceBalanceChange=float(result.advance_change),
            newAdvanceBalance=float(result.new_balance),
        ),
    )
