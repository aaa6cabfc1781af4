"""
Read-only reporting over ledger entries.

Pure functions: they take entry lists already fetched through LedgerService
or LedgerStore reads and never touch a session.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

from brickbook.app.models.ledger_entry import LedgerEntry
from brickbook.app.domain.ledger.ledger_service import LedgerSummary
from brickbook.app.domain.ledger.store import KindFilter, LedgerStore, normalize_kind_filter

PERIODS = ("all", "today", "week", "month")
GRANULARITIES = {"day": "%Y-%m-%d", "month": "%Y-%m"}


@dataclass(frozen=True)
class PeriodTotals:
    period: str
    total_added: Decimal
    total_used: Decimal
    total_payments: Decimal
    net_advance: Decimal
    total_reversed: Decimal
    count: int


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def entry_timestamp(entry: LedgerEntry) -> datetime:
    """Business date of the entry, falling back to its creation time."""
    return _aware(entry.entry_date or entry.created_at)


def in_period(entry: LedgerEntry, period: str, now: Optional[datetime] = None) -> bool:
    """
    ``today`` is the current calendar day, ``week`` the last 7 days and
    ``month`` the last 30 days.
    """
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period!r}")
    if period == "all":
        return True
    now = _aware(now or datetime.now(timezone.utc))
    stamp = entry_timestamp(entry)
    if period == "today":
        return stamp.date() == now.date()
    days = 7 if period == "week" else 30
    return stamp >= now - timedelta(days=days)


def filter_entries(
    entries: Iterable[LedgerEntry],
    kind: KindFilter = None,
    search: Optional[str] = None,
    period: str = "all",
    now: Optional[datetime] = None,
) -> list[LedgerEntry]:
    """Narrow a feed by kind, customer name (case-insensitive) and date window."""
    kind = normalize_kind_filter(kind)
    needle = (search or "").strip().lower()
    selected = []
    for entry in entries:
        if kind is not None and entry.kind != kind:
            continue
        if needle and needle not in (entry.customer.name or "").lower():
            continue
        if not in_period(entry, period, now):
            continue
        selected.append(entry)
    return selected


def summarize(entries: Iterable[LedgerEntry]) -> LedgerSummary:
    return LedgerSummary.from_totals(LedgerStore.sum_by_kind(entries))


def group_by_period(entries: Iterable[LedgerEntry], granularity: str = "month") -> list[PeriodTotals]:
    """Totals per calendar day or month, newest period first."""
    if granularity not in GRANULARITIES:
        raise ValueError(f"Unknown granularity: {granularity!r}")
    fmt = GRANULARITIES[granularity]

    buckets: "OrderedDict[str, list[LedgerEntry]]" = OrderedDict()
    for entry in sorted(entries, key=entry_timestamp, reverse=True):
        buckets.setdefault(entry_timestamp(entry).strftime(fmt), []).append(entry)

    rows = []
    for label, bucket in buckets.items():
        totals = LedgerStore.sum_by_kind(bucket)
        rows.append(
            PeriodTotals(
                period=label,
                total_added=totals.added,
                total_used=totals.used,
                total_payments=totals.extra_payments,
                net_advance=totals.net,
                total_reversed=totals.reversed,
                count=len(bucket),
            )
        )
    return rows


def advance_overview(customers) -> dict:
    """Total advance held and number of customers holding a positive balance."""
    holders = [c for c in customers if Decimal(c.advance_balance or 0) > 0]
    total = sum((Decimal(c.advance_balance) for c in holders), Decimal("0.00"))
    return {"totalAdvance": total, "totalCustomers": len(holders)}
