"""
Pack purchase and order fulfilment.

place_order: validate -> balance fast-fail -> FIFO allocation -> order + items -> audit.
Allocation and order insert share one unit of work (a Mongo transaction when enabled,
otherwise explicit compensation), so credits are never taken without an order to show for them.
"""

from typing import Union

from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.audit import log_event, log_failed_action
from app.core.config import get_settings
from app.core.exceptions import (
    AllocationConflictError,
    BadRequestError,
    EmptySelectionError,
    InsufficientBalanceError,
    InvalidQuantityError,
    LedgerStorageError,
)
from app.core.logging import get_logger
from app.core.results import Accepted, Rejected
from app.db.init import ledger_transaction
from app.models.credit_pool import CreditPool
from app.models.order import Order
from app.models.order_item import OrderItem
from app.services import allocator
from app.services import credits as credits_service
from app.services import orders as orders_service
from app.services import pools as pools_service

log = get_logger(__name__)

PURCHASE_ACTION = "PURCHASE_PACK"
ORDER_ACTION = "CREATE_ORDER"


class PlacedOrder(BaseModel):
    order: Order
    items: list[OrderItem]
    meals_remaining: int
    replayed: bool = False  # True when an earlier order with the same idempotency key was returned


PurchaseOutcome = Union[Accepted[CreditPool], Rejected]
OrderOutcome = Union[Accepted[PlacedOrder], Rejected]


def validate_selection(requested_items: dict[str, int] | None) -> dict[str, int]:
    """Return the selection as {menu_item_id: quantity}; every quantity a positive int."""
    if not requested_items:
        raise EmptySelectionError()
    lines: dict[str, int] = {}
    for menu_item_id, quantity in requested_items.items():
        if not isinstance(menu_item_id, str) or not menu_item_id.strip():
            raise InvalidQuantityError("Menu item id is required", details={"menu_item_id": menu_item_id})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(
                f"Quantity for {menu_item_id} must be a positive whole number",
                details={"menu_item_id": menu_item_id, "quantity": quantity},
            )
        lines[menu_item_id.strip()] = lines.get(menu_item_id.strip(), 0) + quantity
    return lines


async def purchase_pack(owner: str, size: int) -> PurchaseOutcome:
    """Grant a new pack of size credits to owner. No payment is taken here."""
    try:
        pools_service.validate_pack_size(size)
    except BadRequestError as e:
        log.info("pack_purchase_rejected", owner=owner, size=size, code=e.code)
        await log_failed_action(owner, PURCHASE_ACTION, "packs", e.code, {"pack_size": size})
        return Rejected.from_error(e)

    try:
        pool = await pools_service.create_pool(owner, size)
    except PyMongoError as e:
        log.exception("ledger_storage_error", operation="purchase", owner=owner, size=size)
        raise LedgerStorageError("purchase", context={"owner": owner, "size": size}) from e

    log.info("pack_purchased", owner=owner, pool_id=str(pool.id), size=size)
    await log_event(owner, PURCHASE_ACTION, "packs", str(pool.id), {"pack_size": pool.size})
    return Accepted[CreditPool](value=pool)


async def place_order(
    owner: str,
    requested_items: dict[str, int],
    *,
    prices: dict[str, float] | None = None,
    menu_id: str | None = None,
    idempotency_key: str | None = None,
) -> OrderOutcome:
    """
    Spend credits on an order.
    Rejections (bad selection, not enough credits) come back as Rejected; storage failures raise
    LedgerStorageError. Lost allocation races are retried ALLOCATION_RETRIES times; if they keep
    losing while the balance would still cover the order, that is a storage failure too.
    """
    try:
        lines = validate_selection(requested_items)
    except BadRequestError as e:
        log.info("order_rejected", owner=owner, code=e.code)
        await log_failed_action(owner, ORDER_ACTION, "orders", e.code)
        return Rejected.from_error(e)
    requested = sum(lines.values())

    try:
        if idempotency_key:
            existing = await orders_service.find_by_idempotency_key(owner, idempotency_key)
            if existing:
                return Accepted[PlacedOrder](value=await _replay(existing))

        attempts = get_settings().allocation_retries + 1
        for attempt in range(1, attempts + 1):
            available = await credits_service.total_available(owner)
            if available < requested:
                return await _reject_insufficient(owner, InsufficientBalanceError(available, requested))
            try:
                order, items = await _fulfil(owner, lines, requested, prices, menu_id, idempotency_key)
            except AllocationConflictError:
                log.info("order_allocation_retry", owner=owner, attempt=attempt, requested=requested)
                continue
            except DuplicateKeyError:
                # Same Idempotency-Key committed by a concurrent request; our debits were undone.
                existing = await orders_service.find_by_idempotency_key(owner, idempotency_key or "")
                if existing is None:
                    raise
                return Accepted[PlacedOrder](value=await _replay(existing))
            except PyMongoError as e:
                if e.has_error_label("TransientTransactionError") and attempt < attempts:
                    log.info("order_transaction_retry", owner=owner, attempt=attempt)
                    continue
                raise
            remaining = await credits_service.total_available(owner)
            break
        else:
            available = await credits_service.total_available(owner)
            if available < requested:
                return await _reject_insufficient(owner, InsufficientBalanceError(available, requested))
            # Enough credits exist now but every attempt lost its race; not a balance problem.
            log.error("order_allocation_retries_exhausted", owner=owner, requested=requested, available=available)
            await log_failed_action(owner, ORDER_ACTION, "orders", "LEDGER_STORAGE_ERROR",
                                    {"requested": requested, "available": available})
            raise LedgerStorageError("place_order", message="Failed to process order. Please try again.",
                                     context={"owner": owner, "requested": requested, "attempts": attempts})
    except PyMongoError as e:
        log.exception("ledger_storage_error", operation="place_order", owner=owner, requested=requested)
        raise LedgerStorageError("place_order", message="Failed to process order. Please try again.",
                                 context={"owner": owner, "requested": requested}) from e

    log.info("order_placed", owner=owner, order_id=str(order.id), requested=requested, meals_remaining=remaining)
    await log_event(
        owner,
        ORDER_ACTION,
        "orders",
        str(order.id),
        {"total_meals": requested, "meals_remaining": remaining},
    )
    return Accepted[PlacedOrder](value=PlacedOrder(order=order, items=items, meals_remaining=remaining))


async def _fulfil(
    owner: str,
    lines: dict[str, int],
    requested: int,
    prices: dict[str, float] | None,
    menu_id: str | None,
    idempotency_key: str | None,
) -> tuple[Order, list[OrderItem]]:
    """One attempt: allocate and persist inside a single unit of work."""
    async with ledger_transaction() as session:
        debits = await allocator.allocate(owner, requested, session=session)
        try:
            return await orders_service.create_order(
                owner,
                lines,
                status=get_settings().default_order_status,
                allocations=debits,
                prices=prices,
                menu_id=menu_id,
                idempotency_key=idempotency_key,
                session=session,
            )
        except Exception as e:
            log.warning("order_persist_failed", owner=owner, requested=requested, in_transaction=session is not None)
            if session is None:
                await allocator.release(debits, cause=e)
            raise


async def _reject_insufficient(owner: str, error: InsufficientBalanceError) -> Rejected:
    log.info("order_rejected", owner=owner, code=error.code, requested=error.requested, available=error.available)
    await log_failed_action(
        owner,
        ORDER_ACTION,
        "orders",
        error.code,
        {"requested": error.requested, "available": error.available},
    )
    return Rejected.from_error(error)


async def _replay(order: Order) -> PlacedOrder:
    items = await orders_service.get_items(order.id)
    remaining = await credits_service.total_available(order.owner)
    log.info("order_replayed", owner=order.owner, order_id=str(order.id))
    return PlacedOrder(order=order, items=items, meals_remaining=remaining, replayed=True)

