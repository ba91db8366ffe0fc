from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class BattleStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RoundWinner(str, Enum):
    WARRIOR1 = "warrior1"
    WARRIOR2 = "warrior2"
    DRAW = "draw"


class ResolutionStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OracleSource(str, Enum):
    POLYMARKET = "polymarket"
    KALSHI = "kalshi"
    INTERNAL = "internal"


class MarketSource(str, Enum):
    POLYMARKET = "polymarket"
    KALSHI = "kalshi"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""

    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def new_id() -> str:
    return uuid4().hex


class TokenAmount(TypeDecorator):
    """Integer base-unit amounts (wei-scale) stored without floating point rounding."""

    impl = Numeric(78, 0)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return int(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return int(value.to_integral_value())
        return int(value)


class ExternalMarket(Base):
    """Cached record of an off-platform market (Polymarket/Kalshi)."""

    __tablename__ = "external_markets"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    external_id: Mapped[str] = mapped_column(String, nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    outcome: Mapped[str | None] = mapped_column(String(10), nullable=True)
    close_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    mirror_markets: Mapped[list["MirrorMarket"]] = relationship(
        "MirrorMarket", back_populates="external_market"
    )

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_external_market_source_id"),
    )


class MirrorMarket(Base):
    """On-chain market instance that settles in sync with an external market."""

    __tablename__ = "mirror_markets"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    mirror_key: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)
    external_market_id: Mapped[str] = mapped_column(
        String, ForeignKey("external_markets.id"), nullable=False
    )
    chain_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    external_market: Mapped[ExternalMarket] = relationship(
        "ExternalMarket", back_populates="mirror_markets"
    )


class MatchedMarketPair(Base):
    """The same question listed on Polymarket and Kalshi, with any price gap found."""

    __tablename__ = "matched_market_pairs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    polymarket_id: Mapped[str] = mapped_column(String, nullable=False)
    kalshi_id: Mapped[str] = mapped_column(String, nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    has_arbitrage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    arbitrage_opportunity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    spread_bps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("polymarket_id", "kalshi_id", name="uq_matched_market_pair"),
    )


class PredictionBattle(Base):
    __tablename__ = "prediction_battles"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    external_market_id: Mapped[str] = mapped_column(String, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    market_key: Mapped[str | None] = mapped_column(String(66), nullable=True)
    warrior1_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warrior1_owner: Mapped[str] = mapped_column(String(42), nullable=False, default="")
    warrior2_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warrior2_owner: Mapped[str] = mapped_column(String(42), nullable=False, default="")
    stakes: Mapped[int] = mapped_column(TokenAmount, nullable=False)
    warrior1_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warrior2_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BattleStatus.PENDING.value)
    current_round: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_arbitrage_battle: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    arbitrage_trade_id: Mapped[str | None] = mapped_column(String, nullable=True)
    kalshi_market_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rounds: Mapped[list["PredictionRound"]] = relationship(
        "PredictionRound",
        back_populates="battle",
        cascade="all, delete-orphan",
        order_by="PredictionRound.round_number",
    )
    betting_pool: Mapped["BattleBettingPool | None"] = relationship(
        "BattleBettingPool", back_populates="battle", uselist=False
    )

    __table_args__ = (
        Index("ix_prediction_battles_status", "status"),
        Index("ix_prediction_battles_market", "external_market_id", "source"),
    )


class PredictionRound(Base):
    __tablename__ = "prediction_rounds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    battle_id: Mapped[str] = mapped_column(
        String, ForeignKey("prediction_battles.id"), nullable=False
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    w1_argument: Mapped[str | None] = mapped_column(Text, nullable=True)
    w1_evidence: Mapped[list | None] = mapped_column(JSON, nullable=True)
    w1_move: Mapped[str | None] = mapped_column(String(20), nullable=True)
    w1_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    w2_argument: Mapped[str | None] = mapped_column(Text, nullable=True)
    w2_evidence: Mapped[list | None] = mapped_column(JSON, nullable=True)
    w2_move: Mapped[str | None] = mapped_column(String(20), nullable=True)
    w2_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    round_winner: Mapped[str] = mapped_column(String(10), nullable=False)
    judge_reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    battle: Mapped[PredictionBattle] = relationship("PredictionBattle", back_populates="rounds")

    __table_args__ = (
        UniqueConstraint("battle_id", "round_number", name="uq_prediction_round_number"),
    )


class WarriorArenaStats(Base):
    __tablename__ = "warrior_arena_stats"

    warrior_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    total_battles: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    draws: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    arena_rating: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    peak_rating: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_battle_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class BattleBettingPool(Base):
    __tablename__ = "battle_betting_pools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    battle_id: Mapped[str] = mapped_column(
        String, ForeignKey("prediction_battles.id"), nullable=False, unique=True
    )
    total_warrior1_bets: Mapped[int] = mapped_column(TokenAmount, nullable=False, default=0)
    total_warrior2_bets: Mapped[int] = mapped_column(TokenAmount, nullable=False, default=0)
    total_bettors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    betting_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    closed_by_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    battle: Mapped[PredictionBattle] = relationship("PredictionBattle", back_populates="betting_pool")


class BattleBet(Base):
    __tablename__ = "battle_bets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    battle_id: Mapped[str] = mapped_column(
        String, ForeignKey("prediction_battles.id"), nullable=False
    )
    bettor_address: Mapped[str] = mapped_column(String(42), nullable=False)
    bet_on_warrior1: Mapped[bool] = mapped_column(Boolean, nullable=False)
    amount: Mapped[int] = mapped_column(TokenAmount, nullable=False)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout: Mapped[int | None] = mapped_column(TokenAmount, nullable=True)
    place_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("battle_id", "bettor_address", name="uq_battle_bettor"),
    )


class ScheduledResolution(Base):
    __tablename__ = "scheduled_resolutions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    external_market_id: Mapped[str] = mapped_column(
        String, ForeignKey("external_markets.id"), nullable=False
    )
    mirror_key: Mapped[str | None] = mapped_column(
        String(66), ForeignKey("mirror_markets.mirror_key"), nullable=True
    )
    scheduled_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    oracle_source: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ResolutionStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Identifies the attempt holding the lease; only that attempt may complete or release.
    lease_token: Mapped[str | None] = mapped_column(String(32), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    creator: Mapped[str] = mapped_column(String, nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    external_market: Mapped[ExternalMarket] = relationship("ExternalMarket")
    mirror_market: Mapped[MirrorMarket | None] = relationship("MirrorMarket")

    __table_args__ = (
        Index("ix_scheduled_resolutions_status_time", "status", "scheduled_time"),
        Index("ix_scheduled_resolutions_market", "external_market_id"),
        # At most one open (pending or executing) resolution per external market.
        Index(
            "uq_scheduled_resolutions_open_market",
            "external_market_id",
            unique=True,
            sqlite_where=text("status IN ('pending', 'executing')"),
            postgresql_where=text("status IN ('pending', 'executing')"),
        ),
    )
