"""Credit pool store and balance aggregation."""

from datetime import datetime, timedelta

import pytest

from app.core.exceptions import InsufficientBalanceError, InvalidPackSizeError
from app.models.credit_pool import CreditPool
from app.services import credits as credits_service
from app.services import pools as pools_service

pytestmark = pytest.mark.asyncio

T0 = datetime(2026, 1, 5, 12, 0, 0)


async def make_pool(owner: str, size: int, remaining: int | None = None, days: int = 0, active: bool = True) -> CreditPool:
    pool = CreditPool(
        owner=owner,
        size=size,
        remaining=size if remaining is None else remaining,
        active=active,
        purchased_at=T0 + timedelta(days=days),
    )
    await pool.insert()
    return pool


async def test_create_pool_starts_full(db):
    pool = await pools_service.create_pool("user-1", 20)
    stored = await CreditPool.get(pool.id)
    assert stored.size == 20
    assert stored.remaining == 20
    assert stored.active is True
    assert stored.owner == "user-1"


@pytest.mark.parametrize("size", [0, 15, -10, 100])
async def test_create_pool_rejects_size_outside_allow_list(db, size):
    with pytest.raises(InvalidPackSizeError) as exc:
        await pools_service.create_pool("user-1", size)
    assert exc.value.details["allowed"] == [10, 20, 40, 80]
    assert await CreditPool.find_all().count() == 0


async def test_list_active_pools_oldest_first_and_skips_spent(db):
    newer = await make_pool("user-1", 10, days=2)
    await make_pool("user-1", 10, remaining=0, days=0)
    older = await make_pool("user-1", 20, remaining=5, days=1)
    await make_pool("user-1", 40, days=3, active=False)
    await make_pool("someone-else", 80)

    pools = await pools_service.list_active_pools("user-1")
    assert [p.id for p in pools] == [older.id, newer.id]


async def test_list_pools_includes_spent_newest_first(db):
    first = await make_pool("user-1", 10, remaining=0, days=0)
    second = await make_pool("user-1", 20, days=1)
    pools = await pools_service.list_pools("user-1")
    assert [p.id for p in pools] == [second.id, first.id]


async def test_debit_pool_decrements(db):
    pool = await make_pool("user-1", 10)
    updated = await pools_service.debit_pool(pool.id, 4)
    assert updated.remaining == 6
    assert (await CreditPool.get(pool.id)).remaining == 6


async def test_debit_pool_can_empty_pool(db):
    pool = await make_pool("user-1", 10)
    updated = await pools_service.debit_pool(pool.id, 10)
    assert updated.remaining == 0


async def test_debit_pool_never_goes_negative(db):
    pool = await make_pool("user-1", 10, remaining=3)
    with pytest.raises(InsufficientBalanceError) as exc:
        await pools_service.debit_pool(pool.id, 4)
    assert exc.value.available == 3
    assert (await CreditPool.get(pool.id)).remaining == 3


async def test_debit_pool_refuses_inactive_pool(db):
    pool = await make_pool("user-1", 10, active=False)
    with pytest.raises(InsufficientBalanceError) as exc:
        await pools_service.debit_pool(pool.id, 1)
    assert exc.value.available == 0
    assert (await CreditPool.get(pool.id)).remaining == 10


async def test_credit_pool_restores(db):
    pool = await make_pool("user-1", 10)
    await pools_service.debit_pool(pool.id, 7)
    restored = await pools_service.credit_pool(pool.id, 7)
    assert restored.remaining == 10


async def test_total_available_empty(db):
    assert await credits_service.total_available("nobody") == 0


async def test_total_available_sums_active_pools(db):
    await make_pool("user-1", 10, remaining=4)
    await make_pool("user-1", 20)
    await make_pool("user-1", 40, active=False)
    await make_pool("user-2", 80)
    assert await credits_service.total_available("user-1") == 24
