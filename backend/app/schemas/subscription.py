"""Pydantic schemas for subscription endpoints and normalized fincode data."""

from datetime import date
from typing import Any

from pydantic import BaseModel


class Plan(BaseModel):
    id: str | None = None
    name: str | None = None
    price: str | int | float | None = None
    currency: str | None = None


class SavedCard(BaseModel):
    """Card as returned to the client; built from whatever fields fincode sent."""

    id: str
    brand: str | None = None
    card_no: str | None = None
    masked_card_no: str | None = None
    last_four: str | None = None
    expire: str | None = None  # MM/YY, or the gateway's own expire string
    expire_month: Any = None
    expire_year: Any = None
    holder_name: str | None = None
    fingerprint: str | None = None
    default_flag: Any = None
    card_status: str | None = None
    raw: dict[str, Any] | None = None


class SubscriptionView(BaseModel):
    plan_id: str | None = None
    status: str
    start_date: date | None = None
    next_charge_date: date | None = None
    cancel_at: date | None = None
    fincode_subscription_id: str | None = None
    fincode_customer_id: str | None = None
    fincode_card_id: str | None = None


class CardRegisterBody(BaseModel):
    card_token: str
    customer_name: str | None = None


class SubscribeBody(BaseModel):
    plan_id: str | None = None
    card_token: str | None = None
    start_date: str | None = None
    customer_name: str | None = None
