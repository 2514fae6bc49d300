"""Audit log for ledger actions (purchases, orders), successful or rejected."""

from typing import Any

from pymongo.errors import PyMongoError

from app.core.logging import get_logger
from app.models.audit_log import AuditLog

log = get_logger(__name__)


async def _append(entry: AuditLog) -> None:
    log.info(
        "audit",
        user_id=entry.user_id,
        action=entry.action,
        resource=entry.resource,
        resource_id=entry.resource_id,
        success=entry.success,
        error=entry.error,
        **entry.metadata,
    )
    try:
        await entry.insert()
    except PyMongoError:
        # Ledger change is already committed; the log line above still carries the record.
        log.exception("audit_write_failed", action=entry.action, resource_id=entry.resource_id)


async def log_event(
    user_id: str | None,
    action: str,
    resource: str,
    resource_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append a successful action to audit_logs."""
    await _append(
        AuditLog(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            metadata=metadata or {},
        )
    )


async def log_failed_action(
    user_id: str | None,
    action: str,
    resource: str,
    error: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append a rejected action (error is the rejection code, e.g. INSUFFICIENT_BALANCE)."""
    await _append(
        AuditLog(
            user_id=user_id,
            action=action,
            resource=resource,
            success=False,
            error=error,
            metadata=metadata or {},
        )
    )
