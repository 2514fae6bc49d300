"""Order store: order headers and their line items, written and removed as a unit."""

from beanie import PydanticObjectId
from beanie.operators import In
from motor.motor_asyncio import AsyncIOMotorClientSession

from app.core.logging import get_logger
from app.models.order import Order, OrderStatus, PoolDebit
from app.models.order_item import OrderItem

log = get_logger(__name__)


async def create_order(
    owner: str,
    lines: dict[str, int],
    *,
    status: OrderStatus,
    allocations: list[PoolDebit],
    prices: dict[str, float] | None = None,
    menu_id: str | None = None,
    idempotency_key: str | None = None,
    session: AsyncIOMotorClientSession | None = None,
) -> tuple[Order, list[OrderItem]]:
    """
    Insert the order and one item per menu item.
    Without a session, a failed item insert deletes whatever was written before re-raising.
    """
    prices = prices or {}
    order = Order(
        owner=owner,
        requested_credits=sum(lines.values()),
        status=status,
        menu_id=menu_id,
        allocations=allocations,
    )
    if idempotency_key:
        order.idempotency_key = idempotency_key
    await order.insert(session=session)

    items = [
        OrderItem(
            order_id=order.id,
            menu_item_id=menu_item_id,
            quantity=quantity,
            unit_price=float(prices.get(menu_item_id, 0.0)),
        )
        for menu_item_id, quantity in lines.items()
    ]
    try:
        await OrderItem.insert_many(items, session=session)
    except Exception:
        if session is None:
            log.warning("order_items_insert_failed", order_id=str(order.id))
            await discard_order(order.id)
        raise
    return order, items


async def discard_order(order_id: PydanticObjectId, session: AsyncIOMotorClientSession | None = None) -> None:
    """Delete an order and its items (cascade)."""
    await OrderItem.find(OrderItem.order_id == order_id, session=session).delete(session=session)
    await Order.find(Order.id == order_id, session=session).delete(session=session)


async def find_by_idempotency_key(owner: str, key: str) -> Order | None:
    return await Order.find_one(Order.owner == owner, Order.idempotency_key == key)


async def get_order(order_id: PydanticObjectId, owner: str) -> Order | None:
    return await Order.find_one(Order.id == order_id, Order.owner == owner)


async def get_items(order_id: PydanticObjectId) -> list[OrderItem]:
    return await OrderItem.find(OrderItem.order_id == order_id).to_list()


async def list_orders(owner: str, limit: int = 50, offset: int = 0) -> list[Order]:
    """Owner's orders, newest first."""
    return (
        await Order.find(Order.owner == owner)
        .sort(-Order.placed_at, -Order.id)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def items_by_order(order_ids: list[PydanticObjectId]) -> dict[PydanticObjectId, list[OrderItem]]:
    """Items for several orders in one query, grouped by order id."""
    if not order_ids:
        return {}
    grouped: dict[PydanticObjectId, list[OrderItem]] = {oid: [] for oid in order_ids}
    async for item in OrderItem.find(In(OrderItem.order_id, order_ids)):
        grouped.setdefault(item.order_id, []).append(item)
    return grouped
