from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from arena.core.config import settings


class _MarketClient:
    """Shared plumbing for the read-only market endpoints the oracles poll."""

    venue = "market"

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.oracle_timeout_seconds
        self.client = httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=transport)

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        logger.info("{} GET {} params={}", self.venue, path, params or {})
        response = self.client.get(path, params=params)
        response.raise_for_status()
        return response.json()

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class PolymarketClient(_MarketClient):
    """Thin wrapper around the Polymarket gamma API."""

    venue = "Polymarket"

    def __init__(self, *, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url=base_url or str(settings.polymarket_base_url), **kwargs)

    def fetch_market(self, market_id: str) -> dict[str, Any]:
        payload = self._get(f"/markets/{market_id}")
        # Some deployments answer with a one-element list for id lookups.
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        if isinstance(payload, dict) and isinstance(payload.get("market"), dict):
            payload = payload["market"]
        return payload if isinstance(payload, dict) else {}


class KalshiClient(_MarketClient):
    """Thin wrapper around the Kalshi trade API."""

    venue = "Kalshi"

    def __init__(self, *, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url=base_url or str(settings.kalshi_base_url), **kwargs)

    def fetch_market(self, ticker: str) -> dict[str, Any]:
        payload = self._get(f"/markets/{ticker}")
        if isinstance(payload, dict) and isinstance(payload.get("market"), dict):
            return payload["market"]
        return payload if isinstance(payload, dict) else {}
