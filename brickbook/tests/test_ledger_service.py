"""
Advance Ledger Service Tests.

Validates balance movement, rejection rules, reversals and entry immutability
against the service API directly.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.exc import OperationalError

from brickbook.app.models.ledger_enums import LedgerEntryKind
from brickbook.app.domain.ledger.errors import (
    AlreadyReversedError,
    ContentionError,
    CustomerNotFoundError,
    EntryNotFoundError,
    ImmutableEntryError,
    InsufficientBalanceError,
    InvalidAmountError,
    MissingSaleReferenceError,
    NotReversibleError,
    SaleNotFoundError,
    StorageError,
)
from brickbook.app.domain.ledger.ledger_service import LedgerSummary, coerce_amount, ledger_service
from brickbook.app.domain.ledger.store import LedgerStore


# Scenario: top-up then spend against a sale
@pytest.mark.asyncio
async def test_add_funds_then_consume_for_sale(db_session, customer, sale):
    added = await ledger_service.add_funds(db_session, customer.id, 5000, "top-up")
    assert added.new_balance == Decimal("5000.00")
    assert added.entry.kind == LedgerEntryKind.FUNDS_ADDED
    assert added.entry.amount == Decimal("5000.00")
    assert added.entry.description == "top-up"

    used = await ledger_service.consume_for_sale(db_session, customer.id, 2000, sale.id)
    assert used.new_balance == Decimal("3000.00")
    assert used.entry.kind == LedgerEntryKind.CONSUMED_BY_SALE
    assert used.entry.amount == Decimal("-2000.00")
    assert used.entry.sale_id == sale.id
    assert used.entry.reference == f"SALE_{sale.id}"
    assert sale.invoice_no in used.entry.description

    history = await ledger_service.get_history(db_session, customer.id)
    assert [entry.id for entry in history] == [used.entry.id, added.entry.id]

    summary = await ledger_service.get_summary(db_session, customer.id)
    assert summary == LedgerSummary(
        total_added=Decimal("5000"),
        total_used=Decimal("2000"),
        total_payments=Decimal("0"),
        net_advance=Decimal("3000"),
        total_reversed=Decimal("0"),
    )
    assert await ledger_service.current_balance(db_session, customer.id) == Decimal("3000.00")


@pytest.mark.asyncio
async def test_consume_more_than_balance_is_rejected(db_session, customer, sale):
    customer_id, sale_id = customer.id, sale.id
    await ledger_service.add_funds(db_session, customer_id, 1000)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await ledger_service.consume_for_sale(db_session, customer_id, 1500, sale_id)

    assert exc_info.value.available == Decimal("1000.00")
    assert exc_info.value.required == Decimal("1500.00")
    assert exc_info.value.status_code == 400
    assert await ledger_service.current_balance(db_session, customer_id) == Decimal("1000.00")
    assert len(await ledger_service.get_history(db_session, customer_id)) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [-100, 0, "0.00", "-5", "abc", None, "NaN", "Infinity", True, "0.004"])
async def test_invalid_amount_creates_no_entry(db_session, customer, amount):
    with pytest.raises(InvalidAmountError):
        await ledger_service.add_funds(db_session, customer.id, amount, "bad")

    assert await ledger_service.get_history(db_session, customer.id) == []
    assert await ledger_service.current_balance(db_session, customer.id) == Decimal("0.00")


def test_coerce_amount_rounds_to_cents():
    assert coerce_amount("10.005") == Decimal("10.01")
    assert coerce_amount(12.5) == Decimal("12.50")
    assert coerce_amount(" 7 ") == Decimal("7.00")


# Scenario: overpayment recorded, then corrected
@pytest.mark.asyncio
async def test_reverse_extra_payment_restores_balance(db_session, customer, sale):
    customer_id, sale_id = customer.id, sale.id
    await ledger_service.add_funds(db_session, customer_id, 1000)

    extra = await ledger_service.record_extra_payment(db_session, customer_id, 300, sale_id, "overpaid")
    assert extra.new_balance == Decimal("1300.00")
    assert extra.entry.kind == LedgerEntryKind.EXTRA_PAYMENT
    extra_id = extra.entry.id

    reversal = await ledger_service.reverse(db_session, extra_id, "mistake")
    assert reversal.new_balance == Decimal("1000.00")
    assert reversal.entry.kind == LedgerEntryKind.REVERSED
    assert reversal.entry.amount == Decimal("-300.00")
    assert reversal.entry.reverses_entry_id == extra_id
    assert reversal.entry.sale_id == sale_id
    assert "mistake" in reversal.entry.description
    reversal_id = reversal.entry.id

    with pytest.raises(AlreadyReversedError) as exc_info:
        await ledger_service.reverse(db_session, extra_id, "again")
    assert exc_info.value.status_code == 409
    assert exc_info.value.details["reversalId"] == reversal_id
    assert await ledger_service.current_balance(db_session, customer_id) == Decimal("1000.00")

    summary = await ledger_service.get_summary(db_session, customer_id)
    assert summary.total_payments == Decimal("0")
    assert summary.net_advance == Decimal("1000")


@pytest.mark.asyncio
async def test_reversal_cannot_be_reversed(db_session, customer):
    added = await ledger_service.add_funds(db_session, customer.id, 400)
    reversal = await ledger_service.reverse(db_session, added.entry.id, "wrong customer")

    with pytest.raises(NotReversibleError):
        await ledger_service.reverse(db_session, reversal.entry.id, "undo")


@pytest.mark.asyncio
async def test_reversing_spent_credit_is_rejected(db_session, customer, sale):
    customer_id = customer.id
    added = await ledger_service.add_funds(db_session, customer_id, 500)
    await ledger_service.consume_for_sale(db_session, customer_id, 400, sale.id)
    added_id = added.entry.id

    with pytest.raises(InsufficientBalanceError):
        await ledger_service.reverse(db_session, added_id, "typo")

    assert await ledger_service.current_balance(db_session, customer_id) == Decimal("100.00")
    assert await LedgerStore.find_reversal(db_session, added_id) is None


@pytest.mark.asyncio
async def test_reversing_consumption_credits_balance(db_session, customer, sale):
    await ledger_service.add_funds(db_session, customer.id, 500)
    used = await ledger_service.consume_for_sale(db_session, customer.id, 200, sale.id)

    reversal = await ledger_service.reverse(db_session, used.entry.id, "sale cancelled")
    assert reversal.entry.amount == Decimal("200.00")
    assert reversal.new_balance == Decimal("500.00")

    summary = await ledger_service.get_summary(db_session, customer.id)
    assert summary.total_used == Decimal("0")


@pytest.mark.asyncio
async def test_reverse_unknown_entry(db_session):
    with pytest.raises(EntryNotFoundError):
        await ledger_service.reverse(db_session, 9999, "nothing there")


@pytest.mark.asyncio
async def test_sale_kinds_require_a_sale(db_session, customer):
    await ledger_service.add_funds(db_session, customer.id, 100)

    with pytest.raises(MissingSaleReferenceError):
        await ledger_service.consume_for_sale(db_session, customer.id, 50, None)
    with pytest.raises(MissingSaleReferenceError):
        await ledger_service.record_extra_payment(db_session, customer.id, 50, "")


@pytest.mark.asyncio
async def test_sale_must_belong_to_customer(db_session, customer, customer_factory, sale_factory):
    other = await customer_factory(name="Meena Builders")
    other_sale = await sale_factory(other)
    customer_id = customer.id
    await ledger_service.add_funds(db_session, customer_id, 100)

    with pytest.raises(SaleNotFoundError):
        await ledger_service.consume_for_sale(db_session, customer_id, 50, other_sale.id)
    assert await ledger_service.current_balance(db_session, customer_id) == Decimal("100.00")


@pytest.mark.asyncio
async def test_unknown_customer(db_session):
    with pytest.raises(CustomerNotFoundError):
        await ledger_service.add_funds(db_session, "no-such-customer", 100)
    with pytest.raises(CustomerNotFoundError):
        await ledger_service.get_history(db_session, "no-such-customer")


@pytest.mark.asyncio
async def test_owner_scoping(db_session, customer):
    customer_id, owner_id = customer.id, customer.owner_id
    with pytest.raises(CustomerNotFoundError):
        await ledger_service.add_funds(db_session, customer_id, 100, owner_id="someone-else")

    added = await ledger_service.add_funds(db_session, customer_id, 100, owner_id=owner_id)
    with pytest.raises(EntryNotFoundError):
        await ledger_service.reverse(db_session, added.entry.id, "x", owner_id="someone-else")


@pytest.mark.asyncio
async def test_history_kind_filter_accepts_legacy_names(db_session, customer, sale):
    await ledger_service.add_funds(db_session, customer.id, 800)
    await ledger_service.consume_for_sale(db_session, customer.id, 300, sale.id)

    used = await ledger_service.get_history(db_session, customer.id, kind="ADVANCE_USED")
    assert [entry.kind for entry in used] == [LedgerEntryKind.CONSUMED_BY_SALE]

    everything = await ledger_service.get_history(db_session, customer.id, kind="all")
    assert len(everything) == 2


@pytest.mark.asyncio
async def test_entry_date_defaults_and_override(db_session, customer):
    first = await ledger_service.add_funds(db_session, customer.id, 100)
    assert first.entry.entry_date == first.entry.created_at

    business_day = datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
    second = await ledger_service.add_funds(db_session, customer.id, 100, entry_date=business_day)
    assert second.entry.entry_date == business_day
    assert second.entry.created_at != business_day


# Appended entries are immutable
@pytest.mark.asyncio
async def test_entries_cannot_be_updated(db_session, customer):
    customer_id = customer.id
    added = await ledger_service.add_funds(db_session, customer_id, 5000)
    entry = added.entry
    entry_id = entry.id

    entry.amount = Decimal("1.00")
    with pytest.raises(ImmutableEntryError) as exc_info:
        await db_session.flush()
    assert "amount" in exc_info.value.details["fields"]
    await db_session.rollback()

    stored = await LedgerStore.get(db_session, entry_id)
    assert stored.amount == Decimal("5000.00")
    assert stored.kind == LedgerEntryKind.FUNDS_ADDED
    assert stored.customer_id == customer_id


@pytest.mark.asyncio
async def test_entries_cannot_be_deleted(db_session, customer):
    added = await ledger_service.add_funds(db_session, customer.id, 250)
    entry_id = added.entry.id

    await db_session.delete(added.entry)
    with pytest.raises(ImmutableEntryError):
        await db_session.flush()
    await db_session.rollback()

    assert await LedgerStore.get(db_session, entry_id) is not None


@pytest.mark.asyncio
async def test_reads_are_repeatable(db_session, customer, sale):
    await ledger_service.add_funds(db_session, customer.id, 900)
    await ledger_service.record_extra_payment(db_session, customer.id, 100, sale.id)
    await ledger_service.consume_for_sale(db_session, customer.id, 400, sale.id)

    def snapshot(entries):
        return [(e.id, e.kind, e.amount, e.created_at) for e in entries]

    first = await ledger_service.get_history(db_session, customer.id)
    second = await ledger_service.get_history(db_session, customer.id)
    assert snapshot(first) == snapshot(second)

    assert await ledger_service.get_summary(db_session, customer.id) == await ledger_service.get_summary(
        db_session, customer.id
    )


# Failure handling
@pytest.mark.asyncio
async def test_storage_failure_rolls_back(db_session, customer, mocker):
    customer_id = customer.id
    mocker.patch.object(
        db_session,
        "commit",
        side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error")),
    )

    with pytest.raises(StorageError) as exc_info:
        await ledger_service.add_funds(db_session, customer_id, 100)
    assert exc_info.value.retryable is True

    mocker.stopall()
    assert await ledger_service.current_balance(db_session, customer_id) == Decimal("0.00")
    assert await ledger_service.get_history(db_session, customer_id) == []


@pytest.mark.asyncio
async def test_database_lock_maps_to_contention(db_session, customer, mocker):
    customer_id = customer.id
    mocker.patch.object(
        db_session,
        "commit",
        side_effect=OperationalError("COMMIT", {}, Exception("database is locked")),
    )

    with pytest.raises(ContentionError) as exc_info:
        await ledger_service.add_funds(db_session, customer_id, 100)
    assert exc_info.value.status_code == 503
    assert "Retry-After" in exc_info.value.headers

    mocker.stopall()
    assert await ledger_service.current_balance(db_session, customer_id) == Decimal("0.00")


@pytest.mark.asyncio
async def test_rejected_operation_expires_loaded_rows(db_session, customer, sale):
    customer_id = customer.id
    with pytest.raises(InsufficientBalanceError):
        await ledger_service.consume_for_sale(db_session, customer_id, 1, sale.id)

    # Rows loaded before the rollback are re-read, not served stale
    await db_session.refresh(customer)
    assert customer.id == customer_id
    assert customer.advance_balance == Decimal("0.00")
