from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession

from app.core.config import get_settings
from app.models.audit_log import AuditLog
from app.models.credit_pool import CreditPool
from app.models.order import Order
from app.models.order_item import OrderItem

DOCUMENT_MODELS = [
    CreditPool,
    Order,
    OrderItem,
    AuditLog,
]

_client: Any = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def create_client() -> AsyncIOMotorClient:
    settings = get_settings()
    kwargs: dict[str, Any] = {
        "serverSelectionTimeoutMS": settings.mongodb_timeout_ms,
        "socketTimeoutMS": settings.mongodb_timeout_ms,
    }
    # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    return AsyncIOMotorClient(settings.mongodb_uri, **kwargs)


async def init_db(client: Any = None) -> None:
    """Bind Beanie models to the configured database. Tests pass an in-memory client."""
    global _client
    settings = get_settings()
    _client = client if client is not None else create_client()
    database = _client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)


@asynccontextmanager
async def ledger_transaction() -> AsyncIterator[AsyncIOMotorClientSession | None]:
    """
    Unit of work for allocation + order insert.
    Yields a session inside a started transaction when MONGODB_TRANSACTIONS is on (replica set required);
    an exception leaving the block aborts it. Otherwise yields None and callers compensate explicitly.
    """
    settings = get_settings()
    if not settings.mongodb_transactions:
        yield None
        return
    if _client is None:
        raise RuntimeError("Database not initialised")
    async with await _client.start_session() as session:
        async with session.start_transaction(max_commit_time_ms=settings.transaction_max_commit_ms):
            yield session
