"""
Advance Balance Reconciliation Script.

Compares every customer's cached advance balance with the sum of their ledger
entries and reports drift:
1. Load environment (.env)
2. Reconcile all customers (optionally one owner)
3. Optionally rebuild drifted balances from the ledger

Exits 1 when drift remains, 0 otherwise.

Usage:
    python scripts/reconcile_advances.py [--owner OWNER_ID] [--rebuild] [--env-file PATH]
"""

import argparse
import asyncio
import sys

from dotenv import load_dotenv


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ {msg}")


def success(msg):
    print(f"✅ {msg}")


async def reconcile(owner_id=None, rebuild=False) -> int:
    # Settings are read on import, after the env file is loaded
    from brickbook.app.db.session import AsyncSessionLocal, engine
    from brickbook.app.domain.ledger.ledger_service import ledger_service
    from brickbook.app.domain.ledger.projector import BalanceProjector

    try:
        async with AsyncSessionLocal() as db:
            print_step("RECONCILE", f"Checking customers{f' of owner {owner_id}' if owner_id else ''}...")
            rows = await BalanceProjector.reconcile_all(db, owner_id)
            drifted = [row for row in rows if not row.consistent]

            for row in drifted:
                fail(
                    f"Customer {row.customer_id}: stored {row.stored}, "
                    f"ledger {row.computed}, drift {row.drift}"
                )
            if not drifted:
                success(f"{len(rows)} customers consistent")
                return 0

            if not rebuild:
                print_step("RECONCILE", f"{len(drifted)} of {len(rows)} customers drifted (use --rebuild to fix)")
                return 1

            print_step("REBUILD", f"Rebuilding {len(drifted)} balances from the ledger...")
            for row in drifted:
                await ledger_service.rebuild_balance(db, row.customer_id)
                after = await BalanceProjector.reconcile(db, row.customer_id)
                if not after.consistent:
                    fail(f"Customer {row.customer_id} still drifted after rebuild")
                    return 1
            success(f"Rebuilt {len(drifted)} balances")
            return 0
    finally:
        await engine.dispose()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile cached advance balances with the ledger")
    parser.add_argument("--owner", help="Only check customers of this owner id")
    parser.add_argument("--rebuild", action="store_true", help="Reset drifted balances to the ledger sum")
    parser.add_argument("--env-file", default=".env", help="Environment file to load (default: .env)")
    args = parser.parse_args(argv)

    load_dotenv(args.env_file)
    return asyncio.run(reconcile(owner_id=args.owner, rebuild=args.rebuild))


if __name__ == "__main__":
    sys.exit(main())
