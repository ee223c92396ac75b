"""
Cookie-bound login sessions: inactivity timeout, periodic identifier rotation,
fixation-safe login and logout.

States: no session -> active (after login) -> expired/destroyed (until the next login).
A SessionManager is created per request (see app.api.deps.get_session_manager)
and passed explicitly to whatever needs the authenticated user.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from starlette.responses import Response

from app.config import settings
from app.core.auth import create_session_id
from app.services.session_store import SessionState, SessionStore

logger = logging.getLogger(__name__)

# Activity stamps closer than this to the stored one are not written back
ACTIVITY_WRITE_GRANULARITY = 1.0


class SessionManager:
    def __init__(
        self,
        store: SessionStore,
        response: Response | None = None,
        *,
        session_id: str | None = None,
        secure: bool = False,
        timeout: int | None = None,
        refresh_interval: int | None = None,
        clock: Callable[[], float] = time.time,
        cookie_name: str | None = None,
        cookie_path: str | None = None,
        cookie_domain: str | None = None,
    ):
        self._store = store
        self._response = response
        self._incoming_sid = session_id or None
        self._secure = secure
        self.timeout = timeout if timeout is not None else settings.session_timeout_seconds
        self.refresh_interval = (
            refresh_interval if refresh_interval is not None else settings.session_refresh_seconds
        )
        self._clock = clock
        self.cookie_name = cookie_name or settings.session_cookie_name
        self.cookie_path = cookie_path or settings.session_cookie_path
        self.cookie_domain = cookie_domain if cookie_domain is not None else settings.session_cookie_domain
        self._state = SessionState()
        self._saved: SessionState | None = None  # last state known to be in the store

    @property
    def session_id(self) -> str | None:
        return self._state.sid

    @property
    def user_id(self) -> int | None:
        return self._state.user_id

    @property
    def user_email(self) -> str | None:
        return self._state.user_email

    async def init_session(self) -> None:
        """Load the session named by the request cookie, then run the timeout check and rotation."""
        state = None
        if self._incoming_sid:
            state = await self._store.load(self._incoming_sid)
        # Strict mode: an identifier the store does not know is never adopted
        self._state = state or SessionState()
        self._saved = replace(state) if state else None
        if await self._check_timeout():
            await self._rotate_if_due()
            await self._persist()

    async def check_timeout(self) -> bool:
        """Destroy the session after TIMEOUT seconds of inactivity; otherwise stamp activity."""
        ok = await self._check_timeout()
        if ok:
            await self._persist()
        return ok

    async def rotate(self) -> None:
        """Issue a new identifier for the same data once the current one is older than the refresh interval."""
        await self._rotate_if_due()
        await self._persist()

    async def is_authenticated(self) -> bool:
        if not await self.check_timeout():
            return False
        return bool(self._state.user_id)

    async def login(self, user_id: int, email: str) -> None:
        """Bind the session to a user. Call only after the credentials were verified."""
        await self._regenerate_id()
        now = self._clock()
        self._state.user_id = user_id
        self._state.user_email = email
        self._state.created_at = now
        self._state.last_activity_at = now
        await self._store.save(self._state)
        self._saved = replace(self._state)
        self._set_cookie()

    async def destroy(self) -> None:
        """Clear session data, expire the cookie and drop the server-side record."""
        sid = self._state.sid
        if sid and self._state.persisted:
            await self._store.delete(sid)
        self._state = SessionState()
        self._saved = None
        if self._response is not None:
            self._response.delete_cookie(
                self.cookie_name,
                path=self.cookie_path,
                domain=self.cookie_domain,
                secure=self._secure,
                httponly=True,
                samesite="lax",
            )

    async def get_info(self) -> dict[str, Any] | None:
        if not await self.is_authenticated():
            return None
        remaining = self.timeout
        if self._state.last_activity_at is not None:
            remaining = self.timeout - (self._clock() - self._state.last_activity_at)
        return {
            "user_id": self._state.user_id,
            "user_email": self._state.user_email,
            "remaining_time": int(max(0, remaining)),
            "timeout": self.timeout,
        }

    async def _check_timeout(self) -> bool:
        now = self._clock()
        last = self._state.last_activity_at
        if last is not None and now - last >= self.timeout:
            logger.info("Session for user %s expired after %.0fs idle", self._state.user_id, now - last)
            await self.destroy()
            return False
        # never move activity backwards if the clock steps back
        self._state.last_activity_at = now if last is None else max(now, last)
        return True

    async def _rotate_if_due(self) -> None:
        now = self._clock()
        if self._state.created_at is None:
            self._state.created_at = now
            return
        if now - self._state.created_at > self.refresh_interval:
            await self._regenerate_id()
            self._state.created_at = now

    async def _regenerate_id(self) -> None:
        old_sid = self._state.sid
        new_sid = create_session_id()
        if old_sid and self._state.persisted:
            await self._store.rotate(old_sid, new_sid)
        self._state.sid = new_sid
        if self._state.persisted:
            self._set_cookie()

    async def _persist(self) -> None:
        # anonymous sessions stay in memory until login
        if not self._state.persisted or self._matches_store():
            return
        await self._store.save(self._state)
        self._saved = replace(self._state)

    def _matches_store(self) -> bool:
        saved, state = self._saved, self._state
        if saved is None or (saved.sid, saved.user_id, saved.user_email, saved.created_at) != (
            state.sid,
            state.user_id,
            state.user_email,
            state.created_at,
        ):
            return False
        if saved.last_activity_at is None or state.last_activity_at is None:
            return saved.last_activity_at == state.last_activity_at
        return state.last_activity_at - saved.last_activity_at < ACTIVITY_WRITE_GRANULARITY

    def copy_cookies_to(self, response: Response) -> None:
        """Carry cookie changes made on the dependency response onto a response built elsewhere (error handlers)."""
        if self._response is None or self._response is response:
            return
        for key, value in self._response.raw_headers:
            if key == b"set-cookie":
                response.raw_headers.append((key, value))

    def _set_cookie(self) -> None:
        if self._response is None or not self._state.sid:
            return
        self._response.set_cookie(
            self.cookie_name,
            self._state.sid,
            path=self.cookie_path,
            domain=self.cookie_domain,
            secure=self._secure,
            httponly=True,
            samesite="lax",
        )
