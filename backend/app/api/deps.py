"""FastAPI dependencies: per-request session manager, auth gate, fincode client."""

import logging
from typing import Annotated

from fastapi import Depends, Request, Response

from app.config import settings
from app.core.exceptions import AuthError, GatewayConfigError
from app.core.session_manager import SessionManager
from app.services.fincode_client import FincodeClient
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)


async def get_session_manager(request: Request, response: Response) -> SessionManager:
    """Load the cookie-bound session for this request; timeout and rotation run as a side effect."""
    secure = settings.session_cookie_secure
    if secure is None:
        secure = request.url.scheme == "https"
    manager = SessionManager(
        SessionStore(),
        response,
        session_id=request.cookies.get(settings.session_cookie_name),
        secure=secure,
    )
    # error handlers build their own response and pick up rotated/expired cookies from here
    request.state.session_manager = manager
    await manager.init_session()
    return manager


async def require_user_id(
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> int:
    """Authenticated user id. Raises AuthError (401) otherwise."""
    if not await manager.is_authenticated():
        raise AuthError("Authentication required")
    return manager.user_id


def get_fincode_client() -> FincodeClient:
    """fincode client for mutating actions; missing credentials fail the request."""
    return FincodeClient.from_settings()


def get_optional_fincode_client() -> FincodeClient | None:
    """fincode client for best-effort reads; None when no credential is configured."""
    try:
        return FincodeClient.from_settings()
    except GatewayConfigError as e:
        logger.warning("fincode client unavailable: %s", e)
        return None
