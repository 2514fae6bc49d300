from fastapi import APIRouter, Depends

from app.deps import get_current_owner
from app.services import credits as credits_service

router = APIRouter()


@router.get("/balance")
async def credits_balance(owner: str = Depends(get_current_owner)):
    """Return meals available across active packs."""
    balance = await credits_service.total_available(owner)
    return {"balance": balance}
