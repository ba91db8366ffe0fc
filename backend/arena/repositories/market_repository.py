"""External, mirror and matched market lookups."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from arena.models import ExternalMarket, MatchedMarketPair, MirrorMarket


class MarketRepository:
    """Markets are owned by the sync jobs; the settlement core reads them and caches outcomes."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_external_market(self, market_id: str) -> ExternalMarket | None:
        return self._session.get(ExternalMarket, market_id)

    def find_external_market(self, source: str, external_id: str) -> ExternalMarket | None:
        query = select(ExternalMarket).where(
            ExternalMarket.source == source,
            ExternalMarket.external_id == external_id,
        )
        return self._session.execute(query).scalar_one_or_none()

    def upsert_external_market(
        self,
        *,
        source: str,
        external_id: str,
        question: str,
        close_time: datetime | None = None,
        raw_data: dict | None = None,
    ) -> ExternalMarket:
        existing = self.find_external_market(source, external_id)
        if existing is None:
            existing = ExternalMarket(source=source, external_id=external_id, question=question)
            self._session.add(existing)

        existing.question = question
        if close_time is not None:
            existing.close_time = close_time
        if raw_data is not None:
            existing.raw_data = raw_data
        self._session.flush()
        return existing

    def record_outcome(self, market_id: str, *, outcome: str, resolved_at: datetime) -> bool:
        statement = (
            update(ExternalMarket)
            .where(ExternalMarket.id == market_id)
            .values(outcome=outcome, status="resolved", resolved_at=resolved_at, last_synced_at=resolved_at)
        )
        return self._session.execute(statement).rowcount == 1

    def get_mirror_market(self, mirror_key: str) -> MirrorMarket | None:
        query = select(MirrorMarket).where(MirrorMarket.mirror_key == mirror_key)
        return self._session.execute(query).scalar_one_or_none()

    def create_mirror_market(self, *, mirror_key: str, external_market_id: str) -> MirrorMarket:
        mirror = MirrorMarket(mirror_key=mirror_key, external_market_id=external_market_id)
        self._session.add(mirror)
        self._session.flush()
        return mirror

    def mark_mirror_resolved(self, mirror_key: str, *, tx_hash: str) -> bool:
        statement = (
            update(MirrorMarket)
            .where(MirrorMarket.mirror_key == mirror_key)
            .values(resolved=True, resolution_tx_hash=tx_hash)
        )
        return self._session.execute(statement).rowcount == 1

    def find_matched_pair(self, polymarket_id: str, kalshi_id: str) -> MatchedMarketPair | None:
        query = select(MatchedMarketPair).where(
            MatchedMarketPair.polymarket_id == polymarket_id,
            MatchedMarketPair.kalshi_id == kalshi_id,
        )
        return self._session.execute(query).scalar_one_or_none()

    def create_matched_pair(self, **fields) -> MatchedMarketPair:
        pair = MatchedMarketPair(**fields)
        self._session.add(pair)
        self._session.flush()
        return pair
