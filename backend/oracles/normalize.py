"""Turn raw venue payloads into oracle outcomes."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as date_parser

from arena.domain import OracleOutcome
from arena.errors import ValidationError

# A settled binary market prices the winning side at (or within rounding of) 1.
WINNING_PRICE_THRESHOLD = Decimal("0.99")


def _as_list(value: Any) -> list[Any]:
    """Return value as a list when possible, decoding JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _as_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


def parse_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def polymarket_outcome(raw_market: dict[str, Any]) -> OracleOutcome:
    """Read a gamma market: resolved once closed and one side trades at ~1."""

    closed = _as_bool(raw_market.get("closed"))
    uma_status = str(raw_market.get("umaResolutionStatus") or "").lower()
    if not closed and uma_status != "resolved":
        return OracleOutcome(resolved=False, error="Market not yet resolved on Polymarket")

    outcomes = [str(item).strip().lower() for item in _as_list(raw_market.get("outcomes"))]
    prices = [_as_decimal(item) for item in _as_list(raw_market.get("outcomePrices"))]

    for index, price in enumerate(prices):
        if price is None or price < WINNING_PRICE_THRESHOLD:
            continue
        label = outcomes[index] if index < len(outcomes) else ("yes" if index == 0 else "no")
        if label in {"yes", "no"}:
            return OracleOutcome(resolved=True, outcome=label)

    return OracleOutcome(resolved=True, error="Could not determine outcome from Polymarket")


def kalshi_outcome(raw_market: dict[str, Any]) -> OracleOutcome:
    result = str(raw_market.get("result") or "").strip().lower()
    if result in {"yes", "no"}:
        return OracleOutcome(resolved=True, outcome=result)
    return OracleOutcome(resolved=False, error="Market not yet resolved on Kalshi")


@dataclass(slots=True)
class MarketSummary:
    question: str
    close_time: datetime | None = None


def summarize_market(source: str, raw_market: dict[str, Any]) -> MarketSummary:
    """Pull the cached fields of an external market out of a venue payload."""

    if source == "kalshi":
        question = raw_market.get("title") or raw_market.get("subtitle") or raw_market.get("ticker")
        close_time = parse_timestamp(raw_market.get("close_time") or raw_market.get("expiration_time"))
    else:
        question = raw_market.get("question") or raw_market.get("title")
        close_time = parse_timestamp(raw_market.get("endDate") or raw_market.get("end_date_iso"))

    if not question or not str(question).strip():
        raise ValidationError(f"{source} market payload has no question text")
    return MarketSummary(question=str(question).strip(), close_time=close_time)
