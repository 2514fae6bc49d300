"""Shared FastAPI dependencies."""

from fastapi import Request

from app.core.exceptions import UnauthorizedError
from app.core.logging import bind_owner
from app.core.security import load_session_cookie

SESSION_COOKIE_NAME = "mealpacks_session"


async def get_current_owner(request: Request) -> str:
    """Dependency: resolve the caller's user id from the signed session cookie."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    bind_owner(str(user_id))
    return str(user_id)
