from typing import Any

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field

from app.core.exceptions import NotFoundError
from app.core.pagination import Page, paginate
from app.core.results import Rejected
from app.core.security import normalize_idempotency_key
from app.deps import get_current_owner
from app.models.order import Order
from app.models.order_item import OrderItem
from app.services import fulfillment
from app.services import orders as orders_service

router = APIRouter()


class PlaceOrderRequest(BaseModel):
    items: dict[str, int]  # menu_item_id -> quantity
    prices: dict[str, float] = Field(default_factory=dict)  # menu_item_id -> unit price snapshot
    menu_id: str | None = None


def order_out(order: Order, items: list[OrderItem]) -> dict[str, Any]:
    return {
        "id": str(order.id),
        "status": order.status,
        "requested_credits": order.requested_credits,
        "menu_id": order.menu_id,
        "placed_at": order.placed_at.isoformat(),
        "items": [
            {
                "id": str(i.id),
                "menu_item_id": i.menu_item_id,
                "quantity": i.quantity,
                "unit_price": i.unit_price,
            }
            for i in items
        ],
    }


@router.post("")
async def place_order(
    body: PlaceOrderRequest,
    owner: str = Depends(get_current_owner),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Spend meals from the caller's packs (oldest first) on a new order."""
    outcome = await fulfillment.place_order(
        owner,
        body.items,
        prices=body.prices,
        menu_id=body.menu_id,
        idempotency_key=normalize_idempotency_key(idempotency_key),
    )
    if isinstance(outcome, Rejected):
        raise outcome.to_error()
    placed = outcome.value
    return {
        "order": order_out(placed.order, placed.items),
        "meals_remaining": placed.meals_remaining,
        "message": f"Order placed! {placed.order.requested_credits} meals have been deducted from your balance.",
    }


@router.get("")
async def list_orders(
    owner: str = Depends(get_current_owner),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> Page[dict[str, Any]]:
    """Caller's orders with items, newest first."""
    limit, offset = paginate(limit, offset)
    orders = await orders_service.list_orders(owner, limit=limit, offset=offset)
    items = await orders_service.items_by_order([o.id for o in orders])
    return Page[dict[str, Any]](
        items=[order_out(o, items.get(o.id, [])) for o in orders],
        limit=limit,
        offset=offset,
    )


@router.get("/{order_id}")
async def get_order(order_id: PydanticObjectId, owner: str = Depends(get_current_owner)):
    order = await orders_service.get_order(order_id, owner)
    if not order:
        raise NotFoundError("Order not found")
    return {"order": order_out(order, await orders_service.get_items(order.id))}
