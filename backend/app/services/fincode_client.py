"""
fincode payment gateway client: customers, cards, plans, subscriptions, billing results.
Auth: Bearer secret key. One HTTP call per operation, no automatic retry.
"""
from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import httpx
from prometheus_client import Counter

from app.config import Settings, settings
from app.core.exceptions import GatewayConfigError, GatewayError
from app.services.http_client import get_http_client

logger = logging.getLogger(__name__)

FINCODE_REQUESTS = Counter(
    "fincode_requests_total",
    "Requests sent to the fincode API",
    ["method", "outcome"],
)

_JSON_BODY_METHODS = ("POST", "PUT", "PATCH")


def _error_message(data: Any) -> str:
    """Extract the provider message from a fincode error envelope."""
    if isinstance(data, dict):
        if data.get("error_message"):
            return str(data["error_message"])
        errors = data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            if errors[0].get("error_message"):
                return str(errors[0]["error_message"])
    return "fincode API error"


def _log_response_error(method: str, path: str, response: httpx.Response) -> None:
    """Log HTTP error without credentials."""
    body = (response.text or "")[:500]
    logger.warning("fincode %s %s -> %s body=%s", method, path, response.status_code, body)


class FincodeClient:
    def __init__(
        self,
        api_key: str,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        if not api_key:
            raise GatewayConfigError("FINCODE API key (FINCODE_API_KEY/FINCODE_SECRET_KEY) is not configured")
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client
        self.timeout = timeout

    @classmethod
    def from_settings(
        cls,
        config: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> FincodeClient:
        config = config or settings
        return cls(
            api_key=config.fincode_api_key.strip(),
            base_url=config.fincode_base_url,
            http_client=http_client,
            timeout=config.fincode_timeout_seconds,
        )

    @staticmethod
    def new_idempotency_key() -> str:
        return str(uuid.uuid4())

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        client = self._http_client or get_http_client()
        headers = {"Authorization": f"Bearer {self._api_key}"}
        content = None
        if method in _JSON_BODY_METHODS:
            headers["Content-Type"] = "application/json;charset=UTF-8"
            headers["idempotent_key"] = self.new_idempotency_key()
            content = json.dumps(body or {}, ensure_ascii=False).encode("utf-8")

        try:
            r = await client.request(
                method,
                f"{self.base_url}{path}",
                params=params or None,
                headers=headers,
                content=content,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            FINCODE_REQUESTS.labels(method=method, outcome="transport_error").inc()
            logger.warning("fincode %s %s transport error: %s", method, path, e)
            raise GatewayError(f"fincode request failed: {e}") from e

        try:
            data = r.json()
        except ValueError as e:
            FINCODE_REQUESTS.labels(method=method, outcome="invalid_response").inc()
            _log_response_error(method, path, r)
            raise GatewayError("Invalid fincode response format", status_code=r.status_code) from e

        if r.status_code >= 400:
            FINCODE_REQUESTS.labels(method=method, outcome="error").inc()
            _log_response_error(method, path, r)
            raise GatewayError(_error_message(data), status_code=r.status_code)

        FINCODE_REQUESTS.labels(method=method, outcome="ok").inc()
        return data if data is not None else {}

    async def create_customer(self, name: str, email: str) -> dict[str, Any]:
        return await self._request("POST", "/v1/customers", {"name": name, "email": email})

    async def get_customer(self, customer_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/v1/customers/{customer_id}")

    async def list_cards(self, customer_id: str, limit: int = 20) -> Any:
        params = {"limit": limit} if limit > 0 else None
        return await self._request("GET", f"/v1/customers/{customer_id}/cards", params=params)

    async def get_card(self, customer_id: str, card_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/v1/customers/{customer_id}/cards/{card_id}")

    async def create_card(self, customer_id: str, token: str) -> dict[str, Any]:
        """Register the tokenized card as the customer's default card."""
        return await self._request(
            "POST",
            f"/v1/customers/{customer_id}/cards",
            {"token": token, "default_flag": "1"},
        )

    async def delete_card(self, customer_id: str, card_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/v1/customers/{customer_id}/cards/{card_id}")

    async def get_plans(self, limit: int = 10) -> Any:
        params = {"limit": limit} if limit > 0 else None
        return await self._request("GET", "/v1/plans", params=params)

    async def create_subscription(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/v1/subscriptions", payload)

    async def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/v1/subscriptions/{subscription_id}", params={"pay_type": "Card"})

    async def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/v1/subscriptions/{subscription_id}", params={"pay_type": "Card"})

    async def get_results(self, subscription_id: str, limit: int = 10) -> Any:
        """Billing history for a subscription."""
        return await self._request(
            "GET",
            f"/v1/subscriptions/{subscription_id}/result",
            params={"pay_type": "Card", "limit": limit},
        )
