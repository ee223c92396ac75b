"""
Process-wide httpx.AsyncClient used for fincode calls.
Opened in the app lifespan and closed on shutdown; FincodeClient falls back to it
when no client is injected.
"""
from __future__ import annotations

import httpx

_shared: httpx.AsyncClient | None = None

# fincode answers JSON for every endpoint, including errors
_DEFAULT_HEADERS = {"Accept": "application/json"}


def get_http_client() -> httpx.AsyncClient:
    if _shared is None:
        raise RuntimeError("fincode HTTP client is not open; init_http_client() runs in the app lifespan")
    return _shared


def init_http_client(timeout: float = 30.0, max_connections: int = 20) -> httpx.AsyncClient:
    """Open the shared client once; later calls return the same instance."""
    global _shared
    if _shared is None:
        _shared = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections // 2),
            headers=_DEFAULT_HEADERS,
        )
    return _shared


async def close_http_client() -> None:
    global _shared
    client, _shared = _shared, None
    if client is not None:
        await client.aclose()
