"""Session lifecycle: timeout boundary, identifier rotation, fixation-safe login, destroy."""

from dataclasses import replace

import pytest
from starlette.responses import Response

from app.core.session_manager import SessionManager
from app.services.session_store import SessionState

TIMEOUT = 3600
REFRESH = 300


class FakeSessionStore:
    """In-memory store keyed by the raw session id."""

    def __init__(self):
        self.sessions: dict[str, SessionState] = {}
        self.saves = 0

    async def load(self, sid):
        state = self.sessions.get(sid)
        return replace(state) if state else None

    async def save(self, state):
        self.saves += 1
        self.sessions[state.sid] = replace(state, persisted=True)
        state.persisted = True

    async def rotate(self, old_sid, new_sid):
        state = self.sessions.pop(old_sid, None)
        if state is not None:
            self.sessions[new_sid] = replace(state, sid=new_sid)

    async def delete(self, sid):
        self.sessions.pop(sid, None)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_manager(store, clock, session_id=None, response=None):
    return SessionManager(
        store,
        response if response is not None else Response(),
        session_id=session_id,
        timeout=TIMEOUT,
        refresh_interval=REFRESH,
        clock=clock,
        cookie_name="sid",
        cookie_path="/",
    )


async def logged_in_sid(store, clock, user_id=1, email="a@b.com") -> str:
    manager = make_manager(store, clock)
    await manager.init_session()
    await manager.login(user_id, email)
    return manager.session_id


def set_cookie_headers(response: Response) -> list[str]:
    return [v.decode() for k, v in response.raw_headers if k == b"set-cookie"]


@pytest.mark.asyncio
async def test_login_issues_new_identifier_for_anonymous_request():
    store, clock = FakeSessionStore(), FakeClock()
    response = Response()
    manager = make_manager(store, clock, response=response)
    await manager.init_session()
    assert manager.session_id is None
    assert not await manager.is_authenticated()

    await manager.login(7, "user@example.com")

    assert manager.session_id
    assert manager.user_id == 7
    assert await manager.is_authenticated()
    assert manager.session_id in store.sessions
    cookie = set_cookie_headers(response)[-1]
    assert cookie.startswith(f"sid={manager.session_id}")
    assert "HttpOnly" in cookie
    assert "SameSite=lax" in cookie
    assert "Secure" not in cookie


@pytest.mark.asyncio
async def test_login_replaces_existing_identifier():
    store, clock = FakeSessionStore(), FakeClock()
    old_sid = await logged_in_sid(store, clock, user_id=1)

    manager = make_manager(store, clock, session_id=old_sid)
    await manager.init_session()
    await manager.login(2, "other@example.com")

    assert manager.session_id != old_sid
    assert old_sid not in store.sessions
    assert store.sessions[manager.session_id].user_id == 2


@pytest.mark.asyncio
async def test_unknown_identifier_is_not_adopted():
    store, clock = FakeSessionStore(), FakeClock()
    manager = make_manager(store, clock, session_id="attacker-chosen")
    await manager.init_session()
    assert manager.session_id is None

    await manager.login(1, "a@b.com")
    assert manager.session_id != "attacker-chosen"
    assert "attacker-chosen" not in store.sessions


@pytest.mark.asyncio
async def test_session_alive_one_second_before_timeout():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock)

    clock.now = 1000.0 + TIMEOUT - 1
    manager = make_manager(store, clock, session_id=sid)
    await manager.init_session()

    assert await manager.is_authenticated()
    assert manager.user_id == 1


@pytest.mark.asyncio
async def test_session_expires_at_exact_timeout():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock)

    clock.now = 1000.0 + TIMEOUT
    response = Response()
    manager = make_manager(store, clock, session_id=sid, response=response)
    await manager.init_session()

    assert not await manager.is_authenticated()
    assert manager.user_id is None
    assert sid not in store.sessions
    assert any("Max-Age=0" in c for c in set_cookie_headers(response))


@pytest.mark.asyncio
async def test_activity_extends_session():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock)

    # activity at +100 (no rotation yet), then +100+TIMEOUT-1 is still inside the window
    clock.now = 1100.0
    manager = make_manager(store, clock, session_id=sid)
    await manager.init_session()
    assert await manager.is_authenticated()

    clock.now = 1100.0 + TIMEOUT - 1
    manager = make_manager(store, clock, session_id=manager.session_id)
    await manager.init_session()
    assert await manager.is_authenticated()


@pytest.mark.asyncio
async def test_identifier_kept_within_refresh_interval():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock)

    clock.now = 1000.0 + REFRESH
    manager = make_manager(store, clock, session_id=sid)
    await manager.init_session()
    assert manager.session_id == sid


@pytest.mark.asyncio
async def test_identifier_rotates_after_refresh_interval_and_keeps_data():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock, user_id=5, email="five@example.com")

    clock.now = 1000.0 + REFRESH + 1
    response = Response()
    manager = make_manager(store, clock, session_id=sid, response=response)
    await manager.init_session()

    new_sid = manager.session_id
    assert new_sid and new_sid != sid
    assert sid not in store.sessions
    assert store.sessions[new_sid].user_id == 5
    assert manager.user_email == "five@example.com"
    assert any(c.startswith(f"sid={new_sid}") for c in set_cookie_headers(response))

    # the old identifier no longer resolves
    stale = make_manager(store, clock, session_id=sid)
    await stale.init_session()
    assert not await stale.is_authenticated()


@pytest.mark.asyncio
async def test_activity_never_moves_backwards():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock)

    clock.now = 900.0
    manager = make_manager(store, clock, session_id=sid)
    await manager.init_session()
    assert store.sessions[sid].last_activity_at == 1000.0


@pytest.mark.asyncio
async def test_destroy_clears_state_and_store():
    store, clock = FakeSessionStore(), FakeClock()
    sid = await logged_in_sid(store, clock)

    response = Response()
    manager = make_manager(store, clock, session_id=sid, response=response)
    await manager.init_session()
    await manager.destroy()

    assert manager.session_id is None
    assert manager.user_id is None
    assert store.sessions == {}
    cookie = set_cookie_headers(response)[-1]
    assert cookie.startswith("sid=")
    assert "Max-Age=0" in cookie


@pytest.mark.asyncio
async def test_get_info_reports_remaining_time():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock, user_id=3, email="three@example.com")

    clock.now = 1200.0
    manager = make_manager(store, clock, session_id=sid)
    await manager.init_session()
    info = await manager.get_info()

    assert info == {
        "user_id": 3,
        "user_email": "three@example.com",
        "remaining_time": TIMEOUT,
        "timeout": TIMEOUT,
    }


@pytest.mark.asyncio
async def test_get_info_none_without_login():
    manager = make_manager(FakeSessionStore(), FakeClock())
    await manager.init_session()
    assert await manager.get_info() is None


@pytest.mark.asyncio
async def test_anonymous_session_is_not_persisted():
    store = FakeSessionStore()
    manager = make_manager(store, FakeClock())
    await manager.init_session()
    await manager.check_timeout()
    await manager.rotate()
    assert store.sessions == {}


@pytest.mark.asyncio
async def test_unchanged_session_is_not_written_back():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock)
    saves = store.saves

    manager = make_manager(store, clock, session_id=sid)
    await manager.init_session()
    assert await manager.is_authenticated()
    assert await manager.get_info() is not None
    assert store.saves == saves


@pytest.mark.asyncio
async def test_activity_written_once_per_request():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock)
    saves = store.saves

    clock.now = 1010.0
    manager = make_manager(store, clock, session_id=sid)
    await manager.init_session()
    assert await manager.is_authenticated()
    assert store.saves == saves + 1
    assert store.sessions[sid].last_activity_at == 1010.0


@pytest.mark.asyncio
async def test_copy_cookies_to_other_response():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock)

    clock.now = 1000.0 + REFRESH + 1
    manager = make_manager(store, clock, session_id=sid)
    await manager.init_session()

    error_response = Response(status_code=400)
    manager.copy_cookies_to(error_response)
    assert any(c.startswith(f"sid={manager.session_id}") for c in set_cookie_headers(error_response))


@pytest.mark.asyncio
async def test_copy_cookies_to_without_changes_adds_nothing():
    store, clock = FakeSessionStore(), FakeClock(1000.0)
    sid = await logged_in_sid(store, clock)

    manager = make_manager(store, clock, session_id=sid)
    await manager.init_session()

    error_response = Response(status_code=400)
    manager.copy_cookies_to(error_response)
    assert set_cookie_headers(error_response) == []
