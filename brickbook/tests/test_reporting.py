"""
Tests for ledger reporting helpers (no database).
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from brickbook.app.models.customer import Customer
from brickbook.app.models.ledger_entry import LedgerEntry
from brickbook.app.models.ledger_enums import LedgerEntryKind
from brickbook.app.domain.ledger.reporting import (
    advance_overview,
    filter_entries,
    group_by_period,
    in_period,
    summarize,
)
from brickbook.app.domain.ledger.store import LedgerStore, normalize_kind_filter

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

RAVI = Customer(id="c-1", owner_id="owner-1", name="Ravi Traders")
MEENA = Customer(id="c-2", owner_id="owner-1", name="Meena Builders")


def make_entry(entry_id, kind, amount, when=NOW, customer=RAVI, reverses=None):
    return LedgerEntry(
        id=entry_id,
        owner_id="owner-1",
        customer_id=customer.id,
        customer=customer,
        kind=kind,
        amount=Decimal(amount),
        description="test",
        reverses_entry_id=reverses,
        entry_date=when,
        created_at=when,
    )


@pytest.fixture
def entries():
    return [
        make_entry(5, LedgerEntryKind.REVERSED, "-300", NOW - timedelta(hours=1), reverses=3),
        make_entry(4, LedgerEntryKind.CONSUMED_BY_SALE, "-2000", NOW - timedelta(days=3)),
        make_entry(3, LedgerEntryKind.EXTRA_PAYMENT, "300", NOW - timedelta(days=10), customer=MEENA),
        make_entry(2, LedgerEntryKind.FUNDS_ADDED, "1000", NOW - timedelta(days=40), customer=MEENA),
        make_entry(1, LedgerEntryKind.FUNDS_ADDED, "5000", NOW - timedelta(days=45)),
    ]


def test_sum_by_kind_nets_reversals_into_their_target(entries):
    totals = LedgerStore.sum_by_kind(entries)

    assert totals.added == Decimal("6000")
    assert totals.used == Decimal("2000")
    assert totals.extra_payments == Decimal("0")
    assert totals.reversed == Decimal("0")
    assert totals.net == Decimal("4000")


def test_sum_by_kind_reports_orphan_reversals_separately(entries):
    # Only the reversal, not the entry it corrects
    totals = LedgerStore.sum_by_kind(entries[:1])

    assert totals.reversed == Decimal("300")
    assert totals.extra_payments == Decimal("0")
    assert totals.net == Decimal("-300")


def test_summarize_matches_display_names(entries):
    summary = summarize(entries)

    assert summary.total_added == Decimal("6000")
    assert summary.total_used == Decimal("2000")
    assert summary.total_payments == Decimal("0")
    assert summary.net_advance == Decimal("4000")


def test_summarize_reports_orphan_reversals(entries):
    summary = summarize(entries[:1])
    assert summary.total_reversed == Decimal("300")
    assert summary.net_advance == Decimal("-300")

    assert summarize(entries).total_reversed == Decimal("0")


def test_summarize_empty():
    summary = summarize([])
    assert summary.net_advance == Decimal("0")
    assert summary.total_used == Decimal("0")


def test_filter_by_kind_accepts_legacy_name(entries):
    selected = filter_entries(entries, kind="ADVANCE_ADDED")
    assert [e.id for e in selected] == [2, 1]


def test_filter_by_customer_name_is_case_insensitive(entries):
    selected = filter_entries(entries, search="meena")
    assert [e.id for e in selected] == [3, 2]


@pytest.mark.parametrize(
    "period, expected",
    [
        ("all", [5, 4, 3, 2, 1]),
        ("today", [5]),
        ("week", [5, 4]),
        ("month", [5, 4, 3]),
    ],
)
def test_filter_by_period(entries, period, expected):
    selected = filter_entries(entries, period=period, now=NOW)
    assert [e.id for e in selected] == expected


def test_unknown_period_is_rejected(entries):
    with pytest.raises(ValueError):
        in_period(entries[0], "year", NOW)


def test_naive_timestamps_are_treated_as_utc():
    entry = make_entry(1, LedgerEntryKind.FUNDS_ADDED, "10", NOW.replace(tzinfo=None))
    assert in_period(entry, "today", NOW)


def test_group_by_month(entries):
    rows = group_by_period(entries, "month")

    assert [row.period for row in rows] == ["2024-06", "2024-05"]
    june, may = rows
    assert june.count == 3
    assert june.total_used == Decimal("2000")
    # The extra payment and its reversal land in the same month
    assert june.total_payments == Decimal("0")
    assert june.net_advance == Decimal("-2000")
    assert may.count == 2
    assert may.total_added == Decimal("6000")


def test_group_by_day(entries):
    rows = group_by_period(entries, "day")
    assert rows[0].period == "2024-06-15"
    assert len(rows) == 5


def test_group_by_unknown_granularity(entries):
    with pytest.raises(ValueError):
        group_by_period(entries, "week")


def test_advance_overview_counts_positive_balances_only():
    customers = [
        Customer(name="A", advance_balance=Decimal("1500.00")),
        Customer(name="B", advance_balance=Decimal("0.00")),
        Customer(name="C", advance_balance=Decimal("250.50")),
    ]

    overview = advance_overview(customers)

    assert overview == {"totalAdvance": Decimal("1750.50"), "totalCustomers": 2}


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, None),
        ("all", None),
        ("", None),
        ("FundsAdded", LedgerEntryKind.FUNDS_ADDED),
        ("ADVANCE_PAYMENT", LedgerEntryKind.EXTRA_PAYMENT),
        ("ADVANCE_USED", LedgerEntryKind.CONSUMED_BY_SALE),
        ("consumed_by_sale", LedgerEntryKind.CONSUMED_BY_SALE),
        (LedgerEntryKind.REVERSED, LedgerEntryKind.REVERSED),
    ],
)
def test_normalize_kind_filter(value, expected):
    assert normalize_kind_filter(value) == expected


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        normalize_kind_filter("REFUND")
