"""
Balance cache reconciliation tests.

The cached Customer.advance_balance must always equal the ledger sum; these
tests tamper with the cache directly and check that drift is detected and
repaired without touching entries.
"""

import importlib.util
import pytest
from decimal import Decimal
from pathlib import Path
from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from brickbook.app.models.customer import Customer
from brickbook.app.domain.ledger.errors import CustomerNotFoundError
from brickbook.app.domain.ledger.ledger_service import ledger_service
from brickbook.app.domain.ledger.projector import BalanceProjector

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "reconcile_advances.py"


async def tamper(db, customer_id, balance):
    await db.execute(
        update(Customer).where(Customer.id == customer_id).values(advance_balance=Decimal(balance))
    )
    await db.commit()


@pytest.mark.asyncio
async def test_new_customer_is_consistent(db_session, customer):
    row = await BalanceProjector.reconcile(db_session, customer.id)
    assert row.stored == Decimal("0.00")
    assert row.computed == Decimal("0.00")
    assert row.consistent


@pytest.mark.asyncio
async def test_cache_tracks_every_append(db_session, customer, sale):
    await ledger_service.add_funds(db_session, customer.id, 700)
    await ledger_service.consume_for_sale(db_session, customer.id, 250, sale.id)
    await ledger_service.record_extra_payment(db_session, customer.id, 50, sale.id)

    row = await BalanceProjector.reconcile(db_session, customer.id)
    assert row.stored == Decimal("500.00")
    assert row.consistent


@pytest.mark.asyncio
async def test_drift_detected_and_rebuilt(db_session, customer, customer_factory):
    clean = await customer_factory(name="Meena Builders")
    await ledger_service.add_funds(db_session, customer.id, 1000)
    await ledger_service.add_funds(db_session, clean.id, 300)
    await tamper(db_session, customer.id, "900.00")

    rows = {row.customer_id: row for row in await BalanceProjector.reconcile_all(db_session, customer.owner_id)}
    assert rows[customer.id].drift == Decimal("-100.00")
    assert not rows[customer.id].consistent
    assert rows[clean.id].consistent

    before = await ledger_service.rebuild_balance(db_session, customer.id)
    assert before.stored == Decimal("900.00")
    assert before.computed == Decimal("1000.00")

    after = await BalanceProjector.reconcile(db_session, customer.id)
    assert after.consistent
    assert len(await ledger_service.get_history(db_session, customer.id)) == 1


@pytest.mark.asyncio
async def test_reconcile_all_filters_by_owner(db_session, customer, customer_factory):
    await customer_factory(name="Elsewhere", owner_id="owner-2")

    rows = await BalanceProjector.reconcile_all(db_session, customer.owner_id)
    assert [row.customer_id for row in rows] == [customer.id]
    assert len(await BalanceProjector.reconcile_all(db_session)) == 2


@pytest.mark.asyncio
async def test_unknown_customer_balance(db_session):
    with pytest.raises(CustomerNotFoundError):
        await BalanceProjector.current_balance(db_session, "missing")


def test_apply_rounds_to_cents():
    assert BalanceProjector.apply(Decimal("10.00"), Decimal("-2.50")) == Decimal("7.50")


# Operator script
@pytest.fixture
def reconcile_script(db_session, mocker):
    spec = importlib.util.spec_from_file_location("reconcile_advances", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    mocker.patch(
        "brickbook.app.db.session.AsyncSessionLocal",
        async_sessionmaker(db_session.bind, class_=AsyncSession, expire_on_commit=False, autoflush=False),
    )
    mocker.patch("brickbook.app.db.session.engine", mocker.AsyncMock())
    return module


@pytest.mark.asyncio
async def test_reconcile_script(db_session, customer, reconcile_script, capsys):
    await ledger_service.add_funds(db_session, customer.id, 100)
    assert await reconcile_script.reconcile() == 0

    await tamper(db_session, customer.id, "40.00")
    assert await reconcile_script.reconcile() == 1
    assert customer.id in capsys.readouterr().out

    assert await reconcile_script.reconcile(rebuild=True) == 0
    assert await reconcile_script.reconcile(owner_id=customer.owner_id) == 0
