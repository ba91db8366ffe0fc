from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from arena.db import SessionFactory, session_scope
from arena.domain import OracleOutcome
from arena.errors import UpstreamError, ValidationError
from arena.models import ExternalMarket, OracleSource
from arena.repositories import MarketRepository
from arena.services.validation import require_mirror_key

from .client import KalshiClient, PolymarketClient
from .normalize import kalshi_outcome, polymarket_outcome, summarize_market

VENUES = (OracleSource.POLYMARKET.value, OracleSource.KALSHI.value)


class OracleAdapter:
    """Fetch a market's factual outcome from the venue named by ``source``."""

    def __init__(
        self,
        *,
        polymarket: PolymarketClient | None = None,
        kalshi: KalshiClient | None = None,
    ) -> None:
        self._polymarket = polymarket
        self._kalshi = kalshi

    @property
    def polymarket(self) -> PolymarketClient:
        if self._polymarket is None:
            self._polymarket = PolymarketClient()
        return self._polymarket

    @property
    def kalshi(self) -> KalshiClient:
        if self._kalshi is None:
            self._kalshi = KalshiClient()
        return self._kalshi

    def fetch_market(self, source: str, external_id: str) -> dict[str, Any]:
        if source not in VENUES:
            raise ValidationError(f"Unknown oracle source: {source}")

        client = self.polymarket if source == OracleSource.POLYMARKET.value else self.kalshi
        try:
            return client.fetch_market(external_id)
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "{} oracle returned HTTP {} for {}", source, exc.response.status_code, external_id
            )
            raise UpstreamError(
                f"{source} returned HTTP {exc.response.status_code}", can_retry=True
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("{} oracle request failed for {}: {}", source, external_id, exc)
            raise UpstreamError(f"Failed to reach {source}: {exc}", can_retry=True) from exc

    def fetch_outcome(self, source: str, external_id: str) -> OracleOutcome:
        if source == OracleSource.INTERNAL.value:
            return OracleOutcome(resolved=False, error="Internal oracle requires manual outcome input")

        raw_market = self.fetch_market(source, external_id)
        if source == OracleSource.POLYMARKET.value:
            outcome = polymarket_outcome(raw_market)
        else:
            outcome = kalshi_outcome(raw_market)

        logger.info(
            "Oracle {} answered for {}: resolved={} outcome={}",
            source,
            external_id,
            outcome.resolved,
            outcome.outcome,
        )
        return outcome

    def close(self) -> None:
        for client in (self._polymarket, self._kalshi):
            if client is not None:
                client.close()


def sync_market(
    adapter: OracleAdapter,
    source: str,
    external_id: str,
    *,
    mirror_key: str | None = None,
    session_factory: SessionFactory | None = None,
) -> ExternalMarket:
    """Cache an external market locally, optionally registering its on-chain mirror."""

    if mirror_key:
        mirror_key = require_mirror_key(mirror_key, "mirrorKey")

    raw_market = adapter.fetch_market(source, external_id)
    summary = summarize_market(source, raw_market)

    with session_scope(session_factory) as session:
        repo = MarketRepository(session)
        market = repo.upsert_external_market(
            source=source,
            external_id=external_id,
            question=summary.question,
            close_time=summary.close_time,
            raw_data=raw_market,
        )
        if mirror_key and repo.get_mirror_market(mirror_key) is None:
            repo.create_mirror_market(mirror_key=mirror_key, external_market_id=market.id)

    logger.info("Synced {} market {} as {}", source, external_id, market.id)
    return market
