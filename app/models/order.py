from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, Field
from pymongo import ASCENDING, IndexModel

from app.core.security import generate_idempotency_key

OrderStatus = Literal["pending", "confirmed", "delivered", "cancelled"]
ORDER_STATUSES: tuple[str, ...] = ("pending", "confirmed", "delivered", "cancelled")


class PoolDebit(BaseModel):
    """Credits taken from one pool to pay for an order."""
    pool_id: PydanticObjectId
    amount: int


class Order(Document):
    owner: Indexed(str)
    requested_credits: int
    status: OrderStatus = "confirmed"
    menu_id: str | None = None
    idempotency_key: str = Field(default_factory=generate_idempotency_key)
    allocations: list[PoolDebit] = Field(default_factory=list)
    placed_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "orders"
        indexes = [
            [("owner", 1), ("placed_at", -1)],
            IndexModel(
                [("owner", ASCENDING), ("idempotency_key", ASCENDING)],
                name="uniq_owner_idempotency_key",
                unique=True,
            ),
        ]
