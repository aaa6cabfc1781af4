"""
Sale and Dues Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from brickbook.app.models.sale import Sale
from brickbook.app.schemas.advance import TransactionResponse


class SaleCreate(BaseModel):
    """Schema for recording a sale settled from cash and/or advance."""
    customerId: str = Field(..., min_length=1)
    totalAmount: Decimal
    paidAmount: Optional[Decimal] = None
    advanceUsed: Optional[Decimal] = None
    advancePayment: Optional[Decimal] = None
    invoiceNo: Optional[str] = Field(None, max_length=64)
    saleDate: Optional[datetime] = None


class SaleResponse(BaseModel):
    id: str
    invoiceNo: str
    customerId: str
    totalAmount: float
    paidAmount: float
    dueAmount: float
    status: str
    saleDate: datetime

    @classmethod
    def from_sale(cls, sale: Sale) -> "SaleResponse":
        return cls(
            id=sale.id,
            invoiceNo=sale.invoice_no,
            customerId=sale.customer_id,
            totalAmount=float(sale.total_amount),
            paidAmount=float(sale.paid_amount),
            dueAmount=float(sale.due_amount),
            status=sale.status.value,
            saleDate=sale.sale_date,
        )


class PaymentSummary(BaseModel):
    totalAmount: float
    paidAmount: float
    advanceUsed: float
    advancePayment: float
    dueAmount: float
    advanceBalanceChange: float
    newAdvanceBalance: float


class SaleCreateResponse(BaseModel):
    success: bool = True
    message: str
    sale: SaleResponse
    paymentSummary: PaymentSummary


class AdvanceDeductionRequest(BaseModel):
    """Schema for paying a sale's due amount from advance."""
    saleId: str = Field(..., min_length=1)
    customerId: str = Field(..., min_length=1)
    amount: Decimal
    description: Optional[str] = Field(None, max_length=255)
    date: Optional[datetime] = None


class DeductionSummary(BaseModel):
    amountDeducted: float
    remainingAdvance: float
    remainingDue: float
    newStatus: str


class AdvanceDeductionResponse(BaseModel):
    success: bool = True
    message: str
    transaction: TransactionResponse
    sale: SaleResponse
    paymentId: int
    summary: DeductionSummary
