"""
Server-side session store backed by the web_sessions table.
Each call runs in its own short transaction so session state does not depend on
whether the request's own transaction commits or rolls back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import hash_session_id
from app.core.exceptions import StoreError
from app.db import session as db_session
from app.models.web_session import WebSession

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Data held for one cookie-bound session."""

    sid: str | None = None
    user_id: int | None = None
    user_email: str | None = None
    created_at: float | None = None
    last_activity_at: float | None = None
    persisted: bool = False  # True once a row exists in the store


class SessionStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None):
        self._session_maker = session_maker

    def _maker(self) -> async_sessionmaker[AsyncSession]:
        return self._session_maker or db_session.async_session_maker

    async def load(self, sid: str) -> SessionState | None:
        try:
            async with self._maker()() as session:
                r = await session.execute(select(WebSession).where(WebSession.sid_hash == hash_session_id(sid)))
                row = r.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.exception("Session load failed")
            raise StoreError(f"session load failed: {e}") from e
        if row is None:
            return None
        return SessionState(
            sid=sid,
            user_id=row.user_id,
            user_email=row.user_email,
            created_at=row.created_at,
            last_activity_at=row.last_activity_at,
            persisted=True,
        )

    async def save(self, state: SessionState) -> None:
        """Insert or update the row for state.sid."""
        if not state.sid:
            raise ValueError("Cannot save a session without an identifier")
        sid_hash = hash_session_id(state.sid)
        try:
            async with self._maker()() as session:
                r = await session.execute(select(WebSession).where(WebSession.sid_hash == sid_hash))
                row = r.scalar_one_or_none()
                if row is None:
                    row = WebSession(sid_hash=sid_hash, created_at=state.created_at or 0.0)
                    session.add(row)
                row.user_id = state.user_id
                row.user_email = state.user_email
                row.created_at = state.created_at or 0.0
                row.last_activity_at = state.last_activity_at
                await session.commit()
        except SQLAlchemyError as e:
            logger.exception("Session save failed")
            raise StoreError(f"session save failed: {e}") from e
        state.persisted = True

    async def rotate(self, old_sid: str, new_sid: str) -> None:
        """Move session data from old_sid to new_sid; old_sid stops resolving."""
        try:
            async with self._maker()() as session:
                r = await session.execute(
                    select(WebSession).where(WebSession.sid_hash == hash_session_id(old_sid))
                )
                row = r.scalar_one_or_none()
                if row is not None:
                    row.sid_hash = hash_session_id(new_sid)
                    await session.commit()
        except SQLAlchemyError as e:
            logger.exception("Session rotate failed")
            raise StoreError(f"session rotate failed: {e}") from e

    async def delete(self, sid: str) -> None:
        try:
            async with self._maker()() as session:
                await session.execute(delete(WebSession).where(WebSession.sid_hash == hash_session_id(sid)))
                await session.commit()
        except SQLAlchemyError as e:
            logger.exception("Session delete failed")
            raise StoreError(f"session delete failed: {e}") from e
