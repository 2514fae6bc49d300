import os
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory Mongo; multi-document transactions need a replica set, so tests exercise compensation
os.environ.setdefault("MONGODB_DB_NAME", "mealpacks_test")
os.environ.setdefault("MONGODB_TRANSACTIONS", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")


@pytest_asyncio.fixture
async def db():
    from mongomock_motor import AsyncMongoMockClient

    from app.db.init import init_db
    mongo = AsyncMongoMockClient()
    await init_db(mongo)
    yield mongo


@pytest.fixture
def settings():
    from app.core.config import get_settings
    return get_settings()


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def login(client: AsyncClient) -> Callable[[str], str]:
    """Sign in the test client as the given user id."""
    from app.core.security import create_session_cookie
    from app.deps import SESSION_COOKIE_NAME

    def _login(user_id: str) -> str:
        client.cookies.set(SESSION_COOKIE_NAME, create_session_cookie({"user_id": user_id}))
        return user_id

    return _login
