from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.core.pagination import Page, paginate
from app.core.results import Rejected
from app.deps import get_current_owner
from app.models.credit_pool import CreditPool
from app.services import fulfillment
from app.services import pools as pools_service

router = APIRouter()


class PurchaseRequest(BaseModel):
    size: int  # one of PACK_SIZES


def pool_out(pool: CreditPool) -> dict[str, Any]:
    return {
        "id": str(pool.id),
        "size": pool.size,
        "remaining": pool.remaining,
        "active": pool.active and pool.remaining > 0,
        "purchased_at": pool.purchased_at.isoformat(),
    }


@router.post("/purchase")
async def purchase_pack(body: PurchaseRequest, owner: str = Depends(get_current_owner)):
    """Record a meal pack purchase for the caller."""
    outcome = await fulfillment.purchase_pack(owner, body.size)
    if isinstance(outcome, Rejected):
        raise outcome.to_error()
    pool = outcome.value
    return {"pool": pool_out(pool), "message": f"Successfully purchased {pool.size} meal pack!"}


@router.get("")
async def list_packs(
    owner: str = Depends(get_current_owner),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> Page[dict[str, Any]]:
    """Caller's packs, newest first, including spent ones."""
    limit, offset = paginate(limit, offset)
    pools = await pools_service.list_pools(owner, limit=limit, offset=offset)
    return Page[dict[str, Any]](items=[pool_out(p) for p in pools], limit=limit, offset=offset)
