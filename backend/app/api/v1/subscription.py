"""Subscription: reconciled status, plans, saved cards, subscribe, card registration, cancel."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_fincode_client, get_optional_fincode_client, require_user_id
from app.core.exceptions import GatewayError
from app.db.session import get_db
from app.schemas.subscription import CardRegisterBody, SubscribeBody
from app.services import subscription_service
from app.services.fincode_client import FincodeClient
from app.services.subscription_service import to_view

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/subscription", tags=["subscription"])

UserId = Annotated[int, Depends(require_user_id)]
DbSession = Annotated[AsyncSession, Depends(get_db)]


def _view_json(row) -> dict | None:
    view = to_view(row)
    return view.model_dump(mode="json") if view else None


@router.get(
    "",
    summary="Current subscription, refreshed from fincode when possible",
    responses={401: {"description": "Not authenticated"}},
)
async def get_subscription(
    session: DbSession,
    user_id: UserId,
    client: Annotated[FincodeClient | None, Depends(get_optional_fincode_client)],
) -> dict:
    status = await subscription_service.get_status(session, client, user_id)
    return {"success": True, **status}


@router.get(
    "/plans",
    summary="Available plans",
    responses={401: {"description": "Not authenticated"}},
)
async def get_plans(
    user_id: UserId,
    client: Annotated[FincodeClient | None, Depends(get_optional_fincode_client)],
) -> dict:
    try:
        plans = await subscription_service.get_plans(client)
    except GatewayError as e:
        logger.error("Subscription plan fetch error: %s", e)
        e.public_message = "プラン情報の取得に失敗しました"
        raise
    return {"success": True, "plans": [p.model_dump() for p in plans]}


@router.get(
    "/cards",
    summary="Saved cards of the user's fincode customer",
    responses={401: {"description": "Not authenticated"}},
)
async def get_cards(
    session: DbSession,
    user_id: UserId,
    client: Annotated[FincodeClient | None, Depends(get_optional_fincode_client)],
) -> dict:
    try:
        listing = await subscription_service.get_cards(session, client, user_id)
    except GatewayError as e:
        logger.error("Subscription cards fetch error: %s", e)
        e.public_message = "カード情報の取得に失敗しました"
        raise
    return {"success": True, **listing}


@router.post(
    "/card",
    status_code=201,
    summary="Register a tokenized card as the default card",
    responses={400: {"description": "card_token missing"}, 401: {"description": "Not authenticated"}},
)
async def register_card(
    session: DbSession,
    user_id: UserId,
    client: Annotated[FincodeClient, Depends(get_fincode_client)],
    body: CardRegisterBody,
) -> dict:
    try:
        result = await subscription_service.register_card(
            session, client, user_id, body.card_token, body.customer_name
        )
    except GatewayError as e:
        logger.error("Subscription card register error: %s", e)
        e.public_message = "カード登録に失敗しました"
        raise
    return {
        "success": True,
        "message": "カードを登録しました",
        "card_id": result.card_id,
        "customer_id": result.customer_id,
        "subscription": _view_json(result.subscription),
        "fincode_response": result.response,
    }


@router.delete(
    "/cards/{card_id}",
    summary="Delete a saved card",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "No customer or card"}},
)
async def delete_card(
    session: DbSession,
    user_id: UserId,
    client: Annotated[FincodeClient, Depends(get_fincode_client)],
    card_id: str,
) -> dict:
    try:
        result = await subscription_service.delete_card(session, client, user_id, card_id)
    except GatewayError as e:
        logger.error("Subscription card delete error: %s", e)
        e.public_message = "カード削除に失敗しました"
        raise
    return {
        "success": True,
        "message": "カードを削除しました",
        "card_id": result.card_id,
        "customer_id": result.customer_id,
        "fincode_response": result.response,
        "subscription": _view_json(result.subscription),
    }


@router.post(
    "",
    status_code=201,
    summary="Start a subscription",
    responses={
        400: {"description": "No plan, no card, or already active"},
        401: {"description": "Not authenticated"},
    },
)
async def subscribe(
    session: DbSession,
    user_id: UserId,
    client: Annotated[FincodeClient, Depends(get_fincode_client)],
    body: SubscribeBody,
) -> dict:
    try:
        row, response = await subscription_service.subscribe(session, client, user_id, body)
    except GatewayError as e:
        logger.error("Subscription create error: %s", e)
        e.public_message = "サブスクリプション登録に失敗しました"
        raise
    return {
        "success": True,
        "message": "サブスクリプションを開始しました",
        "subscription": _view_json(row),
        "fincode_response": response,
    }


@router.delete(
    "",
    summary="Cancel the subscription",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "No subscription"}},
)
async def cancel_subscription(
    session: DbSession,
    user_id: UserId,
    client: Annotated[FincodeClient, Depends(get_fincode_client)],
) -> dict:
    try:
        row, response = await subscription_service.cancel(session, client, user_id)
    except GatewayError as e:
        logger.error("Subscription cancel error: %s", e)
        e.public_message = "サブスクリプション解約に失敗しました"
        raise
    return {
        "success": True,
        "message": "サブスクリプションを解約しました",
        "subscription": _view_json(row),
        "fincode_response": response,
    }
