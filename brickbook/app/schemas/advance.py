"""
Advance Ledger Schemas.

Field names follow the JSON contract the BrickBook frontend consumes (camelCase).
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from brickbook.app.models.ledger_entry import LedgerEntry
from brickbook.app.domain.ledger.ledger_service import LedgerSummary
from brickbook.app.domain.ledger.projector import Reconciliation
from brickbook.app.domain.ledger.reporting import PeriodTotals


class AdvanceAddRequest(BaseModel):
    """Schema for a manual advance top-up."""
    customerId: str = Field(..., min_length=1)
    amount: Decimal
    description: Optional[str] = Field(None, max_length=255)
    reference: Optional[str] = Field(None, max_length=128)
    notes: Optional[str] = None
    date: Optional[datetime] = None


class AdvanceTransactionCreate(AdvanceAddRequest):
    """Schema for creating any advance transaction; ``type`` defaults to FundsAdded."""
    type: Optional[str] = None
    saleId: Optional[str] = None


class ReverseRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=200)


class CustomerRef(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None


class SaleRef(BaseModel):
    invoiceNo: str


class TransactionResponse(BaseModel):
    """One ledger entry as shown in transaction feeds."""
    id: int
    customerId: str
    amount: float
    type: str
    description: str
    reference: Optional[str] = None
    saleId: Optional[str] = None
    reversesEntryId: Optional[int] = None
    date: datetime
    createdAt: datetime
    customer: Optional[CustomerRef] = None
    sale: Optional[SaleRef] = None

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "TransactionResponse":
        customer = entry.customer
        sale = entry.sale
        return cls(
            id=entry.id,
            customerId=entry.customer_id,
            amount=float(entry.amount),
            type=entry.kind.value,
            description=entry.description,
            reference=entry.reference,
            saleId=entry.sale_id,
            reversesEntryId=entry.reverses_entry_id,
            date=entry.entry_date or entry.created_at,
            createdAt=entry.created_at,
            customer=CustomerRef(id=customer.id, name=customer.name, phone=customer.phone) if customer else None,
            sale=SaleRef(invoiceNo=sale.invoice_no) if sale else None,
        )


class SummaryResponse(BaseModel):
    totalAdded: float
    totalUsed: float
    totalPayments: float
    netAdvance: float
    totalReversed: float

    @classmethod
    def from_summary(cls, summary: LedgerSummary) -> "SummaryResponse":
        return cls(
            totalAdded=float(summary.total_added),
            totalUsed=float(summary.total_used),
            totalPayments=float(summary.total_payments),
            netAdvance=float(summary.net_advance),
            totalReversed=float(summary.total_reversed),
        )


class MutationResponse(BaseModel):
    """Response for any balance-changing call."""
    success: bool = True
    message: str
    newBalance: float
    transaction: TransactionResponse


class TransactionListResponse(BaseModel):
    success: bool = True
    transactions: List[TransactionResponse]
    count: int
    summary: SummaryResponse


class AdvanceCustomer(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    advanceBalance: float
    lastPurchaseDate: Optional[datetime] = None
    createdAt: Optional[datetime] = None


class AdvanceOverviewSummary(BaseModel):
    totalAdvance: float
    totalCustomers: int


class AdvanceOverviewResponse(BaseModel):
    customers: List[AdvanceCustomer]
    summary: AdvanceOverviewSummary


class PeriodTotalsResponse(BaseModel):
    period: str
    totalAdded: float
    totalUsed: float
    totalPayments: float
    netAdvance: float
    totalReversed: float
    count: int

    @classmethod
    def from_totals(cls, row: PeriodTotals) -> "PeriodTotalsResponse":
        return cls(
            period=row.period,
            totalAdded=float(row.total_added),
            totalUsed=float(row.total_used),
            totalPayments=float(row.total_payments),
            netAdvance=float(row.net_advance),
            totalReversed=float(row.total_reversed),
            count=row.count,
        )


class ReconciliationRow(BaseModel):
    customerId: str
    storedBalance: float
    computedBalance: float
    drift: float
    consistent: bool

    @classmethod
    def from_reconciliation(cls, row: Reconciliation) -> "ReconciliationRow":
        return cls(
            customerId=row.customer_id,
            storedBalance=float(row.stored),
            computedBalance=float(row.computed),
            drift=float(row.drift),
            consistent=row.consistent,
        )


class ReconciliationResponse(BaseModel):
    consistent: bool
    customers: List[ReconciliationRow]
