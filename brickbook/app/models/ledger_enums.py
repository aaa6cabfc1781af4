"""
Advance ledger and sale enumerations.
"""

import enum


class LedgerEntryKind(str, enum.Enum):
    """Kind of balance-affecting event recorded in the advance ledger."""
    FUNDS_ADDED = "FundsAdded"  # Manual top-up
    EXTRA_PAYMENT = "ExtraPayment"  # Overpayment on a sale kept as advance
    CONSUMED_BY_SALE = "ConsumedBySale"  # Advance applied against a sale's due
    REVERSED = "Reversed"  # Correction of a prior entry

    @classmethod
    def parse(cls, value: str) -> "LedgerEntryKind":
        """Accept canonical values, member names and the legacy ADVANCE_* type strings."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        if text in LEGACY_KIND_NAMES:
            return LEGACY_KIND_NAMES[text]
        for kind in cls:
            if text == kind.value or text.upper() == kind.name:
                return kind
        raise ValueError(f"Unknown ledger entry kind: {value!r}")


LEGACY_KIND_NAMES = {
    "ADVANCE_ADDED": LedgerEntryKind.FUNDS_ADDED,
    "ADVANCE_PAYMENT": LedgerEntryKind.EXTRA_PAYMENT,
    "ADVANCE_USED": LedgerEntryKind.CONSUMED_BY_SALE,
}


class SaleStatus(str, enum.Enum):
    """Payment status of a sale."""
    PENDING = "pending"  # Nothing paid yet
    PARTIAL = "partial"  # Some amount still due
    PAID = "paid"  # Fully settled


class PaymentMethod(str, enum.Enum):
    """How a sale payment was received."""
    CASH = "cash"
    ADVANCE_DEDUCTION = "advance_deduction"
