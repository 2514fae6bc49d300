"""FIFO credit allocation across a user's meal packs, with compensation on failure."""

from motor.motor_asyncio import AsyncIOMotorClientSession

from app.core.exceptions import (
    AllocationConflictError,
    CompensationError,
    InsufficientBalanceError,
    InvalidQuantityError,
)
from app.core.logging import get_logger
from app.models.order import PoolDebit
from app.services import pools as pools_service

log = get_logger(__name__)


async def allocate(
    owner: str,
    amount: int,
    session: AsyncIOMotorClientSession | None = None,
) -> list[PoolDebit]:
    """
    Debit amount credits from owner's pools, oldest pack first.
    Returns the debits applied; their amounts sum to exactly amount.

    Pools are read once and then debited one by one with conditional updates. If a debit
    loses a race, or the pools run out before amount is covered, every debit made here is
    credited back and AllocationConflictError is raised. Nothing partial is left behind.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidQuantityError("Requested credits must be a positive integer", details={"requested": amount})

    pools = await pools_service.list_active_pools(owner, session=session)
    debits: list[PoolDebit] = []
    needed = amount
    for pool in pools:
        if needed == 0:
            break
        take = min(pool.remaining, needed)
        try:
            await pools_service.debit_pool(pool.id, take, session=session)
        except InsufficientBalanceError:
            await release(debits, session=session)
            log.warning(
                "allocation_conflict",
                owner=owner,
                pool_id=str(pool.id),
                requested=amount,
                debited=amount - needed,
            )
            raise AllocationConflictError(amount - needed, amount, details={"pool_id": str(pool.id)})
        except Exception as e:
            # Inside a transaction the abort restores pools; a failed session cannot take more writes.
            if session is None:
                await release(debits, cause=e)
            raise
        debits.append(PoolDebit(pool_id=pool.id, amount=take))
        needed -= take

    if needed > 0:
        await release(debits, session=session)
        log.warning("allocation_short", owner=owner, requested=amount, debited=amount - needed)
        raise AllocationConflictError(amount - needed, amount)

    log.debug("allocated", owner=owner, requested=amount, pools=[str(d.pool_id) for d in debits])
    return debits


async def release(
    debits: list[PoolDebit],
    session: AsyncIOMotorClientSession | None = None,
    *,
    cause: BaseException | None = None,
) -> None:
    """
    Credit each debit back onto its pool (compensation).
    Every debit is attempted even if an earlier one fails; the failures are logged and raised
    together as CompensationError, chained to cause (the error that triggered the release).
    """
    failures: list[tuple[PoolDebit, Exception]] = []
    for debit in reversed(debits):
        try:
            restored = await pools_service.credit_pool(debit.pool_id, debit.amount, session=session)
        except Exception as e:
            log.exception("allocation_release_failed", pool_id=str(debit.pool_id), amount=debit.amount)
            failures.append((debit, e))
            continue
        if restored is None:
            log.error("allocation_release_missing_pool", pool_id=str(debit.pool_id), amount=debit.amount)
    if failures:
        raise CompensationError(
            [{"pool_id": str(d.pool_id), "amount": d.amount} for d, _ in failures]
        ) from (cause if cause is not None else failures[0][1])
    if debits:
        log.info(
            "allocation_released",
            debits=[{"pool_id": str(d.pool_id), "amount": d.amount} for d in debits],
        )
