"""Balance aggregation over a user's meal packs."""

from motor.motor_asyncio import AsyncIOMotorClientSession

from app.models.credit_pool import CreditPool


async def total_available(owner: str, session: AsyncIOMotorClientSession | None = None) -> int:
    """
    Sum of remaining credits across owner's active pools (0 if none).
    Read-only fast-fail check; the conditional debit is what prevents overspend.
    """
    total = await CreditPool.find(
        CreditPool.owner == owner,
        CreditPool.active == True,  # noqa: E712
        CreditPool.remaining > 0,
        session=session,
    ).sum(CreditPool.remaining)
    return int(total or 0)
