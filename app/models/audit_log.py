from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    user_id: str | None = None  # optional for system events
    action: str  # PURCHASE_PACK, CREATE_ORDER
    resource: str  # packs, orders
    resource_id: str | None = None
    success: bool = True
    error: str | None = None  # rejection code when success is False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("resource", 1), ("resource_id", 1)],
        ]
