from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class CreditPool(Document):
    """One purchased meal pack. `remaining` only moves through the allocator."""
    owner: Indexed(str)
    size: int  # credits granted at purchase, never changes
    remaining: int  # 0 <= remaining <= size
    active: bool = True  # admin enable flag; remaining == 0 is treated as inactive too
    purchased_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_pools"
        indexes = [
            [("owner", 1), ("active", 1), ("purchased_at", 1)],
        ]
