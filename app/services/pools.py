"""Credit pool store: one pool per purchased meal pack, debited by conditional updates."""

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc
from motor.motor_asyncio import AsyncIOMotorClientSession

from app.core.config import get_settings
from app.core.exceptions import InsufficientBalanceError, InvalidPackSizeError, InvalidQuantityError
from app.core.logging import get_logger
from app.models.credit_pool import CreditPool

log = get_logger(__name__)


def validate_pack_size(size: int) -> int:
    allowed = get_settings().pack_sizes
    # bool is an int subclass; True must not pass as a size
    if isinstance(size, bool) or not isinstance(size, int) or size not in allowed:
        raise InvalidPackSizeError(size, allowed)
    return size


async def create_pool(owner: str, size: int, session: AsyncIOMotorClientSession | None = None) -> CreditPool:
    """Record a new pack for owner with remaining == size."""
    validate_pack_size(size)
    pool = CreditPool(owner=owner, size=size, remaining=size, active=True)
    await pool.insert(session=session)
    return pool


async def list_active_pools(owner: str, session: AsyncIOMotorClientSession | None = None) -> list[CreditPool]:
    """Pools with credits left, oldest purchase first. This order decides which pool pays first."""
    return (
        await CreditPool.find(
            CreditPool.owner == owner,
            CreditPool.active == True,  # noqa: E712
            CreditPool.remaining > 0,
            session=session,
        )
        .sort(+CreditPool.purchased_at, +CreditPool.id)
        .to_list()
    )


async def list_pools(owner: str, limit: int = 50, offset: int = 0) -> list[CreditPool]:
    """All of owner's pools including spent ones, newest first."""
    return (
        await CreditPool.find(CreditPool.owner == owner)
        .sort(-CreditPool.purchased_at, -CreditPool.id)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def debit_pool(
    pool_id: PydanticObjectId,
    amount: int,
    session: AsyncIOMotorClientSession | None = None,
) -> CreditPool:
    """
    Atomically take amount credits from the pool.
    Single find_one_and_update guarded by remaining >= amount, so concurrent debits serialize in Mongo.
    Raises InsufficientBalanceError when the guard did not match (pool drained or deactivated meanwhile).
    """
    if amount <= 0:
        raise InvalidQuantityError("Debit amount must be positive", details={"amount": amount})
    updated = await CreditPool.find_one(
        CreditPool.id == pool_id,
        CreditPool.active == True,  # noqa: E712
        CreditPool.remaining >= amount,
        session=session,
    ).update(
        Inc({CreditPool.remaining: -amount}),
        session=session,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        current = await CreditPool.get(pool_id, session=session)
        available = current.remaining if current and current.active else 0
        log.info("debit_rejected", pool_id=str(pool_id), amount=amount, available=available)
        raise InsufficientBalanceError(available, amount, details={"pool_id": str(pool_id)})
    return updated


async def credit_pool(
    pool_id: PydanticObjectId,
    amount: int,
    session: AsyncIOMotorClientSession | None = None,
) -> CreditPool | None:
    """Give back credits taken by debit_pool. Only used for compensation."""
    return await CreditPool.find_one(CreditPool.id == pool_id, session=session).update(
        Inc({CreditPool.remaining: amount}),
        session=session,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
