"""
Normalization of loosely-typed fincode responses.
Field names differ between endpoints and API versions, so every value is taken
from an explicit precedence list of candidate keys instead of a fixed schema.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Iterable

from app.schemas.subscription import Plan, SavedCard

CARD_LIST_KEYS = ("cards", "items", "data", "list")
PLAN_LIST_KEYS = ("plans", "items", "data", "list")

GATEWAY_DATE_FORMAT = "%Y/%m/%d"
_INPUT_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y%m%d")
_NON_DIGITS = re.compile(r"\D")


def pick(doc: Any, *keys: str, default: Any = None) -> Any:
    """First value among keys that is present and not None."""
    if not isinstance(doc, dict):
        return default
    for key in keys:
        value = doc.get(key)
        if value is not None:
            return value
    return default


def extract_list(response: Any, keys: Iterable[str]) -> list[Any]:
    """Items of a list response: a wrapped list under one of keys, or a bare list."""
    if isinstance(response, list):
        return response
    if not isinstance(response, dict):
        return []
    for key in keys:
        value = response.get(key)
        if isinstance(value, list):
            return value
    return []


def clean_id(value: Any) -> str | None:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    value = str(value).strip()
    return value or None


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def last_four_digits(value: Any) -> str | None:
    if value is None:
        return None
    digits = _NON_DIGITS.sub("", str(value))
    return digits[-4:] or None


def format_expire(month: Any, year: Any) -> str | None:
    """MM/YY from month/year fields; None when either is missing or not numeric."""
    if month is None or year is None:
        return None
    try:
        return f"{int(month):02d}/{str(year)[-2:]}"
    except (TypeError, ValueError):
        return None


def normalize_card(card: Any, fallback_id: str | None = None) -> SavedCard | None:
    """Build a SavedCard from a fincode card record. Records without a resolvable id are dropped."""
    if not isinstance(card, dict):
        return None
    card_id = clean_id(pick(card, "id", "card_id")) or clean_id(fallback_id)
    if not card_id:
        return None

    card_no = pick(card, "masked_card_no", "card_no", "card_number")
    card_no = card_no if isinstance(card_no, str) and card_no else None
    last_four = last_four_digits(card_no)
    if last_four is None:
        last_four = last_four_digits(card.get("last4"))

    expire_month = pick(card, "expire_month", "expiration_month")
    expire_year = pick(card, "expire_year", "expiration_year")
    expire = format_expire(expire_month, expire_year)
    if expire is None and card.get("expire") is not None:
        expire = str(card["expire"])

    return SavedCard(
        id=card_id,
        brand=_str_or_none(pick(card, "brand", "card_brand", "brand_code")),
        card_no=card_no,
        masked_card_no=card_no,
        last_four=last_four,
        expire=expire,
        expire_month=expire_month,
        expire_year=expire_year,
        holder_name=_str_or_none(card.get("holder_name")),
        fingerprint=_str_or_none(card.get("fingerprint")),
        default_flag=card.get("default_flag"),
        card_status=_str_or_none(pick(card, "status", "card_status")),
        raw=card,
    )


def normalize_cards(response: Any) -> list[SavedCard]:
    cards = []
    for item in extract_list(response, CARD_LIST_KEYS):
        card = normalize_card(item)
        if card is not None:
            cards.append(card)
    return cards


def normalize_plan(plan: Any) -> Plan | None:
    if not isinstance(plan, dict):
        return None
    plan_id = clean_id(pick(plan, "id", "plan_id"))
    if not plan_id:
        return None
    return Plan(
        id=plan_id,
        name=_str_or_none(pick(plan, "name", "plan_name")),
        price=pick(plan, "price", "amount", "fee"),
        currency=_str_or_none(pick(plan, "currency", "currency_code")),
    )


def normalize_plans(response: Any) -> list[Plan]:
    plans = []
    for item in extract_list(response, PLAN_LIST_KEYS):
        plan = normalize_plan(item)
        if plan is not None:
            plans.append(plan)
    return plans


def parse_date(value: Any) -> date | None:
    """Parse YYYY-MM-DD, YYYY/MM/DD or YYYYMMDD (optionally followed by a time). None if unparsable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    # Take date part only if string contains time
    if "T" in s or " " in s:
        s = s.replace("T", " ").split(" ", 1)[0]
    for fmt in _INPUT_DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def format_date_for_gateway(value: Any) -> str | None:
    """Date in fincode's wire format (YYYY/MM/DD)."""
    parsed = parse_date(value)
    return parsed.strftime(GATEWAY_DATE_FORMAT) if parsed else None


def format_date_for_storage(value: Any) -> date | None:
    """Date for the subscriptions table columns."""
    return parse_date(value)
