"""Client for the arbitrage trading service used by arbitrage battles."""

from __future__ import annotations

from typing import Any, Protocol

import httpx
from loguru import logger

from arena.core.config import Settings, settings as default_settings
from arena.domain import TradeResult
from arena.errors import UpstreamError


class ArbitrageTrader(Protocol):
    def execute_arbitrage(self, user_id: str, opportunity_id: str, amount: int) -> TradeResult:
        """Place a funded cross-venue trade."""

    def cancel_trade(self, trade_id: str) -> None:
        """Unwind a trade whose battle could not be created."""


class ArbitrageTradingClient:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        cfg = settings or default_settings
        self.base_url = cfg.arbitrage_service_url
        self.client = (
            httpx.Client(base_url=self.base_url, timeout=cfg.arbitrage_timeout_seconds, transport=transport)
            if self.base_url
            else None
        )

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if self.client is None:
            raise UpstreamError("Arbitrage trading service is not configured")
        try:
            response = self.client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Arbitrage service request failed: {exc}") from exc
        body = response.json()
        return body if isinstance(body, dict) else {}

    def execute_arbitrage(self, user_id: str, opportunity_id: str, amount: int) -> TradeResult:
        logger.info("Executing arbitrage opportunity {} for {} amount={}", opportunity_id, user_id, amount)
        body = self._post(
            "/trades",
            {"userId": user_id, "opportunityId": opportunity_id, "amount": str(amount)},
        )
        return TradeResult(
            success=bool(body.get("success")),
            trade_id=body.get("tradeId"),
            expected_profit=body.get("expectedProfit"),
            error=body.get("error"),
        )

    def cancel_trade(self, trade_id: str) -> None:
        logger.info("Cancelling arbitrage trade {}", trade_id)
        self._post(f"/trades/{trade_id}/cancel", {})

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
