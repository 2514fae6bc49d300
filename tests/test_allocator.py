"""FIFO allocation and compensation."""

from datetime import datetime, timedelta

import pytest
from pymongo.errors import PyMongoError

from app.core.exceptions import (
    AllocationConflictError,
    CompensationError,
    InsufficientBalanceError,
    InvalidQuantityError,
)
from app.models.credit_pool import CreditPool
from app.services import allocator
from app.services import pools as pools_service

pytestmark = pytest.mark.asyncio

T0 = datetime(2026, 1, 5, 12, 0, 0)


async def make_pool(owner: str, size: int, remaining: int | None = None, days: int = 0) -> CreditPool:
    pool = CreditPool(
        owner=owner,
        size=size,
        remaining=size if remaining is None else remaining,
        purchased_at=T0 + timedelta(days=days),
    )
    await pool.insert()
    return pool


async def remaining(*pools: CreditPool) -> list[int]:
    return [(await CreditPool.get(p.id)).remaining for p in pools]


async def test_fifo_drains_oldest_pool_first(db):
    p2 = await make_pool("user-1", 10, days=1)
    p1 = await make_pool("user-1", 10, remaining=5, days=0)

    debits = await allocator.allocate("user-1", 7)

    assert [(d.pool_id, d.amount) for d in debits] == [(p1.id, 5), (p2.id, 2)]
    assert await remaining(p1, p2) == [0, 8]


async def test_single_pool_covers_request(db):
    p1 = await make_pool("user-1", 10, days=0)
    p2 = await make_pool("user-1", 20, days=1)

    debits = await allocator.allocate("user-1", 4)

    assert [(d.pool_id, d.amount) for d in debits] == [(p1.id, 4)]
    assert await remaining(p1, p2) == [6, 20]


async def test_exact_fit_empties_every_pool(db):
    pools = [await make_pool("user-1", 10, days=i) for i in range(3)]

    debits = await allocator.allocate("user-1", 30)

    assert sum(d.amount for d in debits) == 30
    assert await remaining(*pools) == [0, 0, 0]


async def test_shortfall_leaves_pools_untouched(db):
    p1 = await make_pool("user-1", 10, days=0)
    p2 = await make_pool("user-1", 10, remaining=3, days=1)

    with pytest.raises(InsufficientBalanceError) as exc:
        await allocator.allocate("user-1", 14)

    assert isinstance(exc.value, AllocationConflictError)
    assert exc.value.requested == 14
    assert await remaining(p1, p2) == [10, 3]


async def test_lost_race_compensates_earlier_debits(db, monkeypatch):
    p1 = await make_pool("user-1", 10, remaining=5, days=0)
    p2 = await make_pool("user-1", 10, days=1)
    stale = await pools_service.list_active_pools("user-1")

    # A concurrent order drains p2 after our read
    p2.remaining = 1
    await p2.save()

    async def stale_list(owner, session=None):
        return stale

    monkeypatch.setattr(pools_service, "list_active_pools", stale_list)

    with pytest.raises(AllocationConflictError):
        await allocator.allocate("user-1", 7)

    assert await remaining(p1, p2) == [5, 1]


async def test_storage_failure_mid_allocation_compensates(db, monkeypatch):
    p1 = await make_pool("user-1", 10, remaining=5, days=0)
    p2 = await make_pool("user-1", 10, days=1)
    real_debit = pools_service.debit_pool
    calls = []

    async def flaky_debit(pool_id, amount, session=None):
        calls.append(pool_id)
        if len(calls) == 2:
            raise RuntimeError("connection reset")
        return await real_debit(pool_id, amount, session=session)

    monkeypatch.setattr(pools_service, "debit_pool", flaky_debit)

    with pytest.raises(RuntimeError):
        await allocator.allocate("user-1", 7)

    assert await remaining(p1, p2) == [5, 10]


@pytest.mark.parametrize("amount", [0, -3])
async def test_non_positive_amount_is_rejected(db, amount):
    p1 = await make_pool("user-1", 10)
    with pytest.raises(InvalidQuantityError):
        await allocator.allocate("user-1", amount)
    assert await remaining(p1) == [10]


async def test_release_restores_debits(db):
    p1 = await make_pool("user-1", 10, remaining=5, days=0)
    p2 = await make_pool("user-1", 10, days=1)
    debits = await allocator.allocate("user-1", 12)

    await allocator.release(debits)

    assert await remaining(p1, p2) == [5, 10]


async def test_release_continues_past_a_failed_credit(db, monkeypatch):
    p1 = await make_pool("user-1", 10, days=0)
    p2 = await make_pool("user-1", 10, days=1)
    debits = await allocator.allocate("user-1", 15)
    real_credit = pools_service.credit_pool
    calls = []

    async def flaky_credit(pool_id, amount, session=None):
        calls.append(pool_id)
        if len(calls) == 1:
            raise PyMongoError("connection reset")
        return await real_credit(pool_id, amount, session=session)

    monkeypatch.setattr(pools_service, "credit_pool", flaky_credit)

    with pytest.raises(CompensationError) as exc:
        await allocator.release(debits)

    # Newest debit is released first; its failure does not stop the older pool's refund
    assert calls == [p2.id, p1.id]
    assert await remaining(p1, p2) == [10, 5]
    assert exc.value.unrestored == [{"pool_id": str(p2.id), "amount": 5}]
    assert isinstance(exc.value.__cause__, PyMongoError)


async def test_failed_compensation_keeps_the_triggering_error(db, monkeypatch):
    p1 = await make_pool("user-1", 10, days=0)
    p2 = await make_pool("user-1", 10, days=1)
    real_debit = pools_service.debit_pool
    debit_error = RuntimeError("connection reset")

    async def flaky_debit(pool_id, amount, session=None):
        if pool_id == p2.id:
            raise debit_error
        return await real_debit(pool_id, amount, session=session)

    async def broken_credit(pool_id, amount, session=None):
        raise PyMongoError("not primary")

    monkeypatch.setattr(pools_service, "debit_pool", flaky_debit)
    monkeypatch.setattr(pools_service, "credit_pool", broken_credit)

    with pytest.raises(CompensationError) as exc:
        await allocator.allocate("user-1", 15)

    assert exc.value.__cause__ is debit_error
    assert exc.value.unrestored == [{"pool_id": str(p1.id), "amount": 10}]
    assert await remaining(p1, p2) == [0, 10]
