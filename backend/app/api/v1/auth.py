"""Auth: register, login, logout, current user, session status."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_fincode_client, get_session_manager, require_user_id
from app.core.exceptions import AuthError
from app.core.rate_limit import AUTH_RATE_LIMIT, limiter
from app.core.session_manager import SessionManager
from app.db.session import get_db
from app.services import user_service
from app.services.fincode_client import FincodeClient

logger = logging.getLogger(__name__)
router = APIRouter(tags=["auth"])


class RegisterBody(BaseModel):
    email: str
    password: str
    customer_name: str | None = None


class LoginBody(BaseModel):
    email: str
    password: str


@router.post(
    "/register",
    status_code=201,
    summary="Register a new user and its fincode customer",
    responses={
        400: {"description": "Missing or malformed email/password"},
        409: {"description": "User already exists"},
        500: {"description": "fincode customer creation failed"},
    },
)
@limiter.limit(AUTH_RATE_LIMIT)
async def register(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[FincodeClient, Depends(get_fincode_client)],
    body: RegisterBody,
) -> dict:
    user = await user_service.register_user(session, client, body.email, body.password, body.customer_name)
    logger.info("Registered user %s", user.id)
    return {
        "success": True,
        "message": "User registered successfully",
        "user_id": user.id,
        "fincode_customer_id": user.fincode_customer_id,
    }


@router.post(
    "/login",
    summary="Login with email and password; sets the session cookie",
    responses={401: {"description": "Invalid credentials"}},
)
@limiter.limit(AUTH_RATE_LIMIT)
async def login(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
    body: LoginBody,
) -> dict:
    user = await user_service.authenticate(session, body.email, body.password)
    await manager.login(user.id, user.email)
    return {
        "success": True,
        "message": "Login successful",
        "user": {"id": user.id, "email": user.email},
    }


@router.post("/logout", summary="Destroy the current session")
async def logout(manager: Annotated[SessionManager, Depends(get_session_manager)]) -> dict:
    await manager.destroy()
    return {"success": True, "message": "Logout successful"}


@router.get(
    "/user",
    summary="Get current authenticated user",
    responses={401: {"description": "Not authenticated"}},
)
async def current_user(
    user_id: Annotated[int, Depends(require_user_id)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> dict:
    return {"success": True, "user": {"id": user_id, "email": manager.user_email}}


@router.get(
    "/session-status",
    summary="Session state and remaining time before the inactivity timeout",
    responses={401: {"description": "Session expired or not authenticated"}},
)
async def session_status(manager: Annotated[SessionManager, Depends(get_session_manager)]) -> dict:
    info = await manager.get_info()
    if info is None:
        raise AuthError("Session expired or not authenticated")
    return {
        "success": True,
        "authenticated": True,
        "user": {"id": info["user_id"], "email": info["user_email"]},
        "session": {"remaining_time": info["remaining_time"], "timeout": info["timeout"]},
    }
