"""
Advance Ledger API Endpoints.

Thin HTTP layer over LedgerService: top-ups, generic transactions,
reversals, transaction feeds, summaries and reconciliation.
"""

import logging
from fastapi import APIRouter, Depends, Path, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from typing import List, Optional

from brickbook.app.core.config import settings
from brickbook.app.core.dependencies import get_current_user
from brickbook.app.core.exceptions import BadRequestError
from brickbook.app.db.session import get_db
from brickbook.app.models.customer import Customer
from brickbook.app.models.ledger_enums import LedgerEntryKind
from brickbook.app.domain.ledger.errors import EntryNotFoundError
from brickbook.app.domain.ledger.ledger_service import LedgerResult, ledger_service
from brickbook.app.domain.ledger.projector import BalanceProjector
from brickbook.app.domain.ledger.reporting import (
    GRANULARITIES, PERIODS, advance_overview, filter_entries, group_by_period, summarize,
)
from brickbook.app.domain.ledger.store import LedgerStore, normalize_kind_filter
from brickbook.app.schemas.advance import (
    AdvanceAddRequest, AdvanceCustomer, AdvanceOverviewResponse, AdvanceOverviewSummary,
    AdvanceTransactionCreate, MutationResponse, PeriodTotalsResponse, ReconciliationResponse,
    ReconciliationRow, ReverseRequest, SummaryResponse, TransactionListResponse, TransactionResponse,
)
from brickbook.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/advance", tags=["Advance Ledger"])

logger = logging.getLogger("brickbook.api.advance")

AUDIT_ACTIONS = {
    LedgerEntryKind.FUNDS_ADDED: AuditAction.ADVANCE_ADDED,
    LedgerEntryKind.EXTRA_PAYMENT: AuditAction.ADVANCE_EXTRA_PAYMENT,
    LedgerEntryKind.CONSUMED_BY_SALE: AuditAction.ADVANCE_CONSUMED,
    LedgerEntryKind.REVERSED: AuditAction.ADVANCE_ENTRY_REVERSED,
}


def _parse_kind(value: Optional[str]) -> Optional[LedgerEntryKind]:
    try:
        return normalize_kind_filter(value)
    except ValueError:
        raise BadRequestError(f"Unknown transaction type: {value}", details={"type": value})


async def _transaction(db: AsyncSession, entry_id: int, owner_id: str) -> TransactionResponse:
    entry = await LedgerStore.get(db, entry_id, owner_id)
    if entry is None:
        raise EntryNotFoundError(entry_id)
    return TransactionResponse.from_entry(entry)


async def _record(
    db: AsyncSession,
    request: Request,
    current_user: dict,
    result: LedgerResult,
) -> TransactionResponse:
    """Reload the committed entry for the response and write the audit trail."""
    transaction = await _transaction(db, result.entry.id, current_user["user_id"])
    kind = LedgerEntryKind(transaction.type)

    await log_event(
        db=db,
        action=AUDIT_ACTIONS[kind],
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        customer_id=transaction.customerId,
        metadata={
            "entry_id": transaction.id,
            "amount": transaction.amount,
            "sale_id": transaction.saleId,
            "new_balance": float(result.new_balance),
        },
        ip_address=request.client.host if request.client else None,
    )
    logger.info(
        "Ledger entry %s (%s %s) for customer %s, balance now %s",
        transaction.id, kind.value, transaction.amount, transaction.customerId, result.new_balance,
    )
    return transaction


@router.get("", response_model=AdvanceOverviewResponse)
async def list_customers_with_advance(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List customers holding a positive advance balance, highest first.
    """
    result = await db.execute(
        select(Customer)
        .where(Customer.owner_id == current_user["user_id"], Customer.advance_balance > 0)
        .order_by(desc(Customer.advance_balance))
    )
    customers = result.scalars().all()
    overview = advance_overview(customers)

    return AdvanceOverviewResponse(
        customers=[
            AdvanceCustomer(
                id=c.id,
                name=c.name,
                phone=c.phone,
                email=c.email,
                advanceBalance=float(c.advance_balance),
                lastPurchaseDate=c.last_purchase_date,
                createdAt=c.created_at,
            )
            for c in customers
        ],
        summary=AdvanceOverviewSummary(
            totalAdvance=float(overview["totalAdvance"]),
            totalCustomers=overview["totalCustomers"],
        ),
    )


@router.post("", response_model=MutationResponse)
async def add_advance(
    body: AdvanceAddRequest,
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Add advance to a customer (FundsAdded).
    """
    result = await ledger_service.add_funds(
        db,
        body.customerId,
        body.amount,
        body.description,
        body.reference,
        owner_id=current_user["user_id"],
        entry_date=body.date,
        notes=body.notes,
    )
    transaction = await _record(db, request, current_user, result)

    return MutationResponse(
        message=f"Advance of ₹{result.entry.amount} added successfully to {transaction.customer.name}",
        newBalance=float(result.new_balance),
        transaction=transaction,
    )


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    customerId: Optional[str] = Query(None, description="Limit the feed to one customer"),
    type: Optional[str] = Query("all", description="all, FundsAdded, ExtraPayment, ConsumedBySale, Reversed"),
    period: str = Query("all", description="all, today, week or month"),
    search: Optional[str] = Query(None, description="Customer name contains"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Transaction feed, newest first, with totals over the returned entries.
    """
    kind = _parse_kind(type)
    if period not in PERIODS:
        raise BadRequestError(f"Unknown period: {period}", details={"period": period})

    owner_id = current_user["user_id"]
    if customerId:
        entries = await ledger_service.get_history(db, customerId, kind=kind, owner_id=owner_id)
    else:
        entries = await LedgerStore.list_by_owner(db, owner_id, kind=kind)
    entries = filter_entries(entries, search=search, period=period)

    return TransactionListResponse(
        transactions=[TransactionResponse.from_entry(entry) for entry in entries],
        count=len(entries),
        summary=SummaryResponse.from_summary(summarize(entries)),
    )


@router.post("/transactions", response_model=MutationResponse)
async def create_transaction(
    body: AdvanceTransactionCreate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Create an advance transaction of any kind except Reversed.

    Accepts the legacy ADVANCE_ADDED / ADVANCE_PAYMENT / ADVANCE_USED type names.
    """
    kind = _parse_kind(body.type) or LedgerEntryKind.FUNDS_ADDED
    owner_id = current_user["user_id"]

    if kind == LedgerEntryKind.FUNDS_ADDED:
        result = await ledger_service.add_funds(
            db,
            body.customerId,
            body.amount,
            body.description or settings.default_transaction_description,
            body.reference,
            owner_id=owner_id,
            entry_date=body.date,
            notes=body.notes,
        )
    elif kind == LedgerEntryKind.EXTRA_PAYMENT:
        result = await ledger_service.record_extra_payment(
            db,
            body.customerId,
            body.amount,
            body.saleId,
            body.description,
            body.reference,
            owner_id=owner_id,
            entry_date=body.date,
        )
    elif kind == LedgerEntryKind.CONSUMED_BY_SALE:
        result = await ledger_service.consume_for_sale(
            db,
            body.customerId,
            body.amount,
            body.saleId,
            body.description,
            body.reference,
            owner_id=owner_id,
            entry_date=body.date,
        )
    else:
        raise BadRequestError(
            "Reversals must reference an existing entry; use /advance/transactions/{id}/reverse",
            details={"type": kind.value},
        )

    transaction = await _record(db, request, current_user, result)
    return MutationResponse(
        message="Advance transaction created successfully",
        newBalance=float(result.new_balance),
        transaction=transaction,
    )


@router.get("/transactions/{entry_id}", response_model=TransactionResponse)
async def get_transaction(
    entry_id: int = Path(..., description="Ledger entry ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Fetch a single ledger entry."""
    return await _transaction(db, entry_id, current_user["user_id"])


@router.post("/transactions/{entry_id}/reverse", response_model=MutationResponse)
async def reverse_transaction(
    body: ReverseRequest,
    request: Request,
    entry_id: int = Path(..., description="Ledger entry ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Reverse a ledger entry. Each entry can be reversed once.
    """
    result = await ledger_service.reverse(db, entry_id, body.reason, owner_id=current_user["user_id"])
    transaction = await _record(db, request, current_user, result)

    return MutationResponse(
        message=f"Entry #{entry_id} reversed",
        newBalance=float(result.new_balance),
        transaction=transaction,
    )


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(
    customerId: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Totals for one customer, or for the whole ledger when no customer is given.
    """
    owner_id = current_user["user_id"]
    if customerId:
        summary = await ledger_service.get_summary(db, customerId, owner_id=owner_id)
    else:
        summary = summarize(await LedgerStore.list_by_owner(db, owner_id))
    return SummaryResponse.from_summary(summary)


@router.get("/reports/periods", response_model=List[PeriodTotalsResponse])
async def period_report(
    customerId: Optional[str] = Query(None),
    granularity: str = Query("month", description="day or month"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Ledger totals per day or month, newest first."""
    if granularity not in GRANULARITIES:
        raise BadRequestError(f"Unknown granularity: {granularity}", details={"granularity": granularity})

    owner_id = current_user["user_id"]
    if customerId:
        entries = await ledger_service.get_history(db, customerId, owner_id=owner_id)
    else:
        entries = await LedgerStore.list_by_owner(db, owner_id)
    return [PeriodTotalsResponse.from_totals(row) for row in group_by_period(entries, granularity)]


@router.get("/reconcile", response_model=ReconciliationResponse)
async def reconcile(
    customerId: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Compare cached balances with the sum of ledger entries.
    """
    owner_id = current_user["user_id"]
    if customerId:
        await ledger_service.current_balance(db, customerId, owner_id=owner_id)
        rows = [await BalanceProjector.reconcile(db, customerId)]
    else:
        rows = await BalanceProjector.reconcile_all(db, owner_id)

    return ReconciliationResponse(
        consistent=all(row.consistent for row in rows),
        customers=[ReconciliationRow.from_reconciliation(row) for row in rows],
    )


@router.post("/reconcile/{customer_id}/rebuild", response_model=ReconciliationRow)
async def rebuild_balance(
    customer_id: str = Path(..., description="Customer ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Reset a customer's cached balance to the ledger sum. Returns the state before the rebuild.
    """
    before = await ledger_service.rebuild_balance(db, customer_id, owner_id=current_user["user_id"])
    if not before.consistent:
        logger.warning(
            "Rebuilt advance balance for customer %s: stored %s, ledger %s",
            customer_id, before.stored, before.computed,
        )
    return ReconciliationRow.from_reconciliation(before)
