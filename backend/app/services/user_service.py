"""User records: lookup, registration with a linked fincode customer, credential check."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import hash_password, is_valid_email, normalize_email, verify_password
from app.core.exceptions import AuthError, ConflictError, GatewayError, ValidationError
from app.models.user import User
from app.services.fincode_client import FincodeClient
from app.services.fincode_payloads import clean_id, pick

logger = logging.getLogger(__name__)

CUSTOMER_CREATE_FAILED = "決済サービスの顧客登録に失敗しました"


async def get_user(session: AsyncSession, user_id: int) -> User | None:
    r = await session.execute(select(User).where(User.id == user_id))
    return r.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    r = await session.execute(select(User).where(User.email == normalize_email(email)))
    return r.scalar_one_or_none()


def _validated_email(email: str) -> str:
    email = normalize_email(email)
    if not is_valid_email(email):
        raise ValidationError("Invalid email format")
    return email


async def register_user(
    session: AsyncSession,
    client: FincodeClient,
    email: str,
    password: str,
    customer_name: str | None = None,
) -> User:
    """
    Create the user together with its fincode customer. Runs inside the request
    transaction: if the gateway fails nothing is inserted.
    """
    email = _validated_email(email)
    if not password.strip():
        raise ValidationError("password is required")
    if await get_user_by_email(session, email) is not None:
        raise ConflictError("User already exists")

    name = (customer_name or "").strip() or email
    try:
        response = await client.create_customer(name, email)
    except GatewayError as e:
        logger.error("fincode customer create failed for %s: %s", email, e)
        e.public_message = CUSTOMER_CREATE_FAILED
        raise
    customer_id = clean_id(pick(response, "id", "customer_id"))
    if not customer_id:
        raise GatewayError("fincode returned no customer id", public_message=CUSTOMER_CREATE_FAILED)

    user = User(email=email, password_hash=hash_password(password), fincode_customer_id=customer_id)
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as e:
        # concurrent registration of the same email
        logger.warning("Register IntegrityError: %s", e)
        raise ConflictError("User already exists") from e
    await session.refresh(user)
    return user


async def authenticate(session: AsyncSession, email: str, password: str) -> User:
    """Return the user for valid credentials; AuthError with a generic message otherwise."""
    email = _validated_email(email)
    user = await get_user_by_email(session, email)
    if not user or not verify_password(password, user.password_hash):
        raise AuthError("Invalid credentials")
    return user
