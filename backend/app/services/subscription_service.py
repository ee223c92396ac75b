"""
fincode subscriptions: reconcile the local row with the gateway, list cards and plans,
subscribe, register/delete cards, cancel.

The local `subscriptions` row (one per user) is updated in place on every action.
Read paths treat the gateway as best-effort and fall back to local data; mutating
paths abort on any gateway failure and the request transaction rolls back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings
from app.core.exceptions import AuthError, GatewayConfigError, GatewayError, NotFoundError, ValidationError
from app.models.subscription import Subscription
from app.models.user import User
from app.schemas.subscription import Plan, SavedCard, SubscribeBody, SubscriptionView
from app.services.fincode_client import FincodeClient
from app.services.fincode_payloads import (
    clean_id,
    format_date_for_gateway,
    format_date_for_storage,
    normalize_card,
    normalize_cards,
    normalize_plans,
    pick,
)
from app.services.user_service import get_user

logger = logging.getLogger(__name__)

ACTIVE = "active"
CANCELED = "canceled"
CARD_REGISTERED = "card_registered"
CARD_ONLY_PLAN_ID = "card_only"
DEFAULT_PLAN_NAME = "Standard Plan"
DEFAULT_CURRENCY = "JPY"
RESULTS_LIMIT = 5
CARDS_LIMIT = 20
PLANS_LIMIT = 10

NO_CARDS_MESSAGE = "保存済みカードはありません"

_ROW_FIELDS = (
    "plan_id",
    "fincode_customer_id",
    "fincode_card_id",
    "fincode_subscription_id",
    "status",
    "start_date",
    "next_charge_date",
    "cancel_at",
    "raw_payload",
)


@dataclass
class CardRegistration:
    subscription: Subscription
    card_id: str
    customer_id: str
    response: dict[str, Any]


@dataclass
class CardDeletion:
    subscription: Subscription | None
    card_id: str
    customer_id: str
    response: dict[str, Any]


def row_values(row: Subscription) -> dict[str, Any]:
    """Column values of a subscription row, for building its next version."""
    return {field: getattr(row, field) for field in _ROW_FIELDS}


def to_view(row: Subscription | None) -> SubscriptionView | None:
    if row is None:
        return None
    return SubscriptionView(
        plan_id=row.plan_id,
        status=row.status,
        start_date=row.start_date,
        next_charge_date=row.next_charge_date,
        cancel_at=row.cancel_at,
        fincode_subscription_id=row.fincode_subscription_id,
        fincode_customer_id=row.fincode_customer_id,
        fincode_card_id=row.fincode_card_id,
    )


async def get_subscription_row(session: AsyncSession, user_id: int) -> Subscription | None:
    # populate_existing: always reflect the stored row, not a stale identity-map copy
    r = await session.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return r.scalar_one_or_none()


async def upsert_subscription(session: AsyncSession, user_id: int, values: dict[str, Any]) -> Subscription:
    """Insert the user's subscription row, or update it in place if it exists."""
    row = await get_subscription_row(session, user_id)
    if row is None:
        row = Subscription(user_id=user_id, **values)
        session.add(row)
    else:
        for field, value in values.items():
            setattr(row, field, value)
        row.updated_at = datetime.now(timezone.utc)
    await session.flush()
    return row


async def _require_user(session: AsyncSession, user_id: int) -> User:
    user = await get_user(session, user_id)
    if user is None:
        raise AuthError(f"User {user_id} not found")
    return user


def resolve_plan(
    remote: dict[str, Any] | None = None,
    local_plan_id: str | None = None,
    config: Settings | None = None,
) -> Plan:
    """Plan metadata: remote subscription fields, then the local plan id, then configuration."""
    config = config or settings
    remote = remote if isinstance(remote, dict) else {}
    price = pick(remote, "price", "amount")
    if price is None and config.subscription_plan_price:
        price = config.subscription_plan_price
    return Plan(
        id=clean_id(remote.get("plan_id")) or local_plan_id or config.fincode_plan_id or None,
        name=pick(remote, "plan_name") or config.subscription_plan_name or DEFAULT_PLAN_NAME,
        price=price,
        currency=pick(remote, "currency") or config.subscription_plan_currency or DEFAULT_CURRENCY,
    )


async def refresh_local_subscription(
    session: AsyncSession,
    user_id: int,
    local: Subscription,
    remote: dict[str, Any],
) -> Subscription:
    """Merge a fetched gateway subscription into the local row: status and next charge date come from remote."""
    if not remote:
        return local
    values = row_values(local)
    values["status"] = str(pick(remote, "status", "subscription_status", default=local.status))
    next_charge = pick(remote, "next_charge_date", "next_billing_date")
    if next_charge is not None:
        values["next_charge_date"] = format_date_for_storage(next_charge)
    values["raw_payload"] = remote
    return await upsert_subscription(session, user_id, values)


async def get_status(
    session: AsyncSession,
    client: FincodeClient | None,
    user_id: int,
    config: Settings | None = None,
) -> dict[str, Any]:
    """Reconciled subscription status. Gateway failures degrade to local data, never to an error."""
    config = config or settings
    subscription = await get_subscription_row(session, user_id)
    remote = None
    results = None

    if subscription is not None and subscription.fincode_subscription_id:
        if client is None:
            logger.warning("fincode not configured; serving local subscription for user %s", user_id)
        else:
            subscription_id = subscription.fincode_subscription_id
            try:
                remote = await client.get_subscription(subscription_id)
            except GatewayError as e:
                logger.warning("fincode sync failed for user %s: %s", user_id, e)
            try:
                results = await client.get_results(subscription_id, RESULTS_LIMIT)
            except GatewayError as e:
                logger.warning("fincode billing results unavailable for user %s: %s", user_id, e)
            if remote is not None:
                await refresh_local_subscription(session, user_id, subscription, remote)
                subscription = await get_subscription_row(session, user_id)

    plan = resolve_plan(remote, subscription.plan_id if subscription else None, config)
    view = to_view(subscription)
    return {
        "plan": plan.model_dump(),
        "subscription": view.model_dump(mode="json") if view else None,
        "remote": remote,
        "results": results,
        "public_key": config.fincode_public_key,
    }


def _known_customer_id(existing: Subscription | None, user: User | None) -> str | None:
    return (existing.fincode_customer_id if existing else None) or (user.fincode_customer_id if user else None)


async def get_cards(session: AsyncSession, client: FincodeClient | None, user_id: int) -> dict[str, Any]:
    """Saved cards for the user's customer. A failing listing falls back to the locally known card."""
    existing = await get_subscription_row(session, user_id)
    user = await get_user(session, user_id)
    customer_id = _known_customer_id(existing, user)
    if not customer_id:
        return {"cards": [], "customer_id": None, "message": NO_CARDS_MESSAGE}
    if client is None:
        raise GatewayConfigError("fincode is not configured")

    cards: list[SavedCard] = []
    try:
        cards = normalize_cards(await client.list_cards(customer_id, CARDS_LIMIT))
    except GatewayError as e:
        logger.warning("fincode card list fetch failed for customer %s: %s", customer_id, e)

    known_card_id = existing.fincode_card_id if existing else None
    if not cards and known_card_id:
        try:
            card = normalize_card(await client.get_card(customer_id, known_card_id), fallback_id=known_card_id)
        except GatewayError as e:
            logger.warning("fincode card fetch failed for card %s: %s", known_card_id, e)
            card = None
        if card is not None:
            cards.append(card)

    return {"cards": [c.model_dump() for c in cards], "customer_id": customer_id}


async def get_plans(client: FincodeClient | None, config: Settings | None = None) -> list[Plan]:
    """Plans offered by the gateway, or the configured plan when the gateway has none."""
    config = config or settings
    failure: GatewayError | None = None
    plans: list[Plan] = []
    if client is None:
        failure = GatewayConfigError("fincode is not configured")
    else:
        try:
            plans = normalize_plans(await client.get_plans(PLANS_LIMIT))
        except GatewayError as e:
            logger.warning("fincode plan fetch failed: %s", e)
            failure = e
    if plans:
        return plans
    fallback = resolve_plan(config=config)
    if fallback.id:
        return [fallback]
    if failure is not None:
        raise failure
    return []


async def resolve_customer_id(
    session: AsyncSession,
    client: FincodeClient,
    user: User,
    existing: Subscription | None,
    customer_name: str | None = None,
) -> str:
    """
    Known customer id if the gateway still has it, otherwise a newly created customer.
    A new id is linked to the user only when the user had none.
    """
    customer_id = _known_customer_id(existing, user)
    if customer_id:
        try:
            await client.get_customer(customer_id)
        except GatewayError as e:
            logger.warning("fincode customer %s fetch failed, recreate: %s", customer_id, e)
            customer_id = None
    if customer_id:
        return customer_id

    name = (customer_name or "").strip() or user.email or f"Tsunagi User {user.id}"
    response = await client.create_customer(name, user.email or "")
    customer_id = clean_id(pick(response, "id", "customer_id"))
    if not customer_id:
        raise GatewayError("fincode returned no customer id", public_message="顧客の作成に失敗しました")
    if user.link_customer(customer_id):
        await session.flush()
    return customer_id


async def subscribe(
    session: AsyncSession,
    client: FincodeClient,
    user_id: int,
    body: SubscribeBody,
    config: Settings | None = None,
) -> tuple[Subscription, dict[str, Any]]:
    """Start a subscription, registering a new default card first when a token is given."""
    config = config or settings
    plan_id = (body.plan_id or "").strip() or config.fincode_plan_id
    if not plan_id:
        raise ValidationError("plan_id is required", public_message="プランIDが設定されていません")

    existing = await get_subscription_row(session, user_id)
    # Application-level check; concurrent subscribe calls are not serialized
    if existing is not None and existing.status == ACTIVE:
        raise ValidationError(
            f"user {user_id} already has an active subscription",
            public_message="既に有効なサブスクリプションが存在します",
        )
    card_token = (body.card_token or "").strip()
    card_id = existing.fincode_card_id if existing else None
    if not card_token and not card_id:
        raise ValidationError("card_token is required", public_message="card_tokenを指定してください")

    user = await _require_user(session, user_id)
    customer_id = await resolve_customer_id(session, client, user, existing, body.customer_name)

    if card_token:
        card_response = await client.create_card(customer_id, card_token)
        card_id = clean_id(pick(card_response, "id", "card_id"))
        if not card_id:
            raise GatewayError("fincode returned no card id", public_message="カード登録に失敗しました")

    # Wire format and storage format are converted separately from the same input
    start_input = body.start_date or date.today().isoformat()
    response = await client.create_subscription(
        {
            "pay_type": "Card",
            "plan_id": plan_id,
            "customer_id": customer_id,
            "card_id": card_id,
            "start_date": format_date_for_gateway(start_input),
        }
    )

    next_charge = pick(response, "next_charge_date", "next_billing_date")
    row = await upsert_subscription(
        session,
        user_id,
        {
            "plan_id": plan_id,
            "fincode_customer_id": customer_id,
            "fincode_card_id": card_id,
            "fincode_subscription_id": clean_id(pick(response, "id", "subscription_id")),
            "status": str(pick(response, "status", "subscription_status") or ACTIVE),
            "start_date": format_date_for_storage(start_input),
            "next_charge_date": format_date_for_storage(next_charge),
            "cancel_at": None,
            "raw_payload": response,
        },
    )
    return row, response


async def register_card(
    session: AsyncSession,
    client: FincodeClient,
    user_id: int,
    card_token: str,
    customer_name: str | None = None,
    config: Settings | None = None,
) -> CardRegistration:
    """Register a tokenized card as the default card, keeping every other subscription field."""
    config = config or settings
    card_token = (card_token or "").strip()
    if not card_token:
        raise ValidationError("card_token is required")

    existing = await get_subscription_row(session, user_id)
    user = await _require_user(session, user_id)
    customer_id = await resolve_customer_id(session, client, user, existing, customer_name)

    response = await client.create_card(customer_id, card_token)
    card_id = clean_id(pick(response, "id", "card_id"))
    if not card_id:
        raise GatewayError("fincode returned no card id", public_message="カード登録に失敗しました")

    values = row_values(existing) if existing else dict.fromkeys(_ROW_FIELDS)
    values["plan_id"] = values["plan_id"] or config.fincode_plan_id or CARD_ONLY_PLAN_ID
    values["status"] = values["status"] or CARD_REGISTERED
    values["fincode_customer_id"] = customer_id
    values["fincode_card_id"] = card_id
    values["raw_payload"] = response
    row = await upsert_subscription(session, user_id, values)
    return CardRegistration(subscription=row, card_id=card_id, customer_id=customer_id, response=response)


async def delete_card(
    session: AsyncSession,
    client: FincodeClient,
    user_id: int,
    card_id: str,
) -> CardDeletion:
    """Delete a card at the gateway; forget it locally if it was the subscription's card."""
    card_id = (card_id or "").strip()
    if not card_id:
        raise ValidationError("cardId is required", public_message="cardId を指定してください")

    existing = await get_subscription_row(session, user_id)
    user = await get_user(session, user_id)
    customer_id = _known_customer_id(existing, user)
    if not customer_id:
        raise NotFoundError(f"user {user_id} has no fincode customer", public_message="カード情報が存在しません")

    try:
        response = await client.delete_card(customer_id, card_id)
    except GatewayError as e:
        if e.gateway_status == 404:
            raise NotFoundError(f"card {card_id} not found: {e.message}", public_message="カードが見つかりません") from e
        raise

    if existing is not None and existing.fincode_card_id == card_id:
        values = row_values(existing)
        values["fincode_card_id"] = None
        values["raw_payload"] = response
        await upsert_subscription(session, user_id, values)

    return CardDeletion(
        subscription=await get_subscription_row(session, user_id),
        card_id=card_id,
        customer_id=customer_id,
        response=response,
    )


async def cancel(session: AsyncSession, client: FincodeClient, user_id: int) -> tuple[Subscription, dict[str, Any]]:
    """Cancel at the gateway; the row is kept with status canceled."""
    existing = await get_subscription_row(session, user_id)
    if existing is None or not existing.fincode_subscription_id:
        raise NotFoundError(
            f"user {user_id} has no gateway subscription",
            public_message="有効なサブスクリプションが見つかりません",
        )

    response = await client.cancel_subscription(existing.fincode_subscription_id)
    values = row_values(existing)
    values["status"] = CANCELED
    values["next_charge_date"] = None
    values["cancel_at"] = date.today()
    values["raw_payload"] = response
    row = await upsert_subscription(session, user_id, values)
    return row, response
