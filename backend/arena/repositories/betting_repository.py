"""Spectator bet and betting-pool persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from arena.models import BattleBet, BattleBettingPool


class BettingRepository:
    """Pool totals only ever change through SQL-side increments inside the caller's transaction."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Pools

    def get_pool(self, battle_id: str) -> BattleBettingPool | None:
        query = select(BattleBettingPool).where(BattleBettingPool.battle_id == battle_id)
        return self._session.execute(query).scalar_one_or_none()

    def ensure_pool(self, battle_id: str, *, betting_open: bool) -> BattleBettingPool:
        existing = self.get_pool(battle_id)
        if existing is not None:
            return existing

        pool = BattleBettingPool(
            battle_id=battle_id,
            total_warrior1_bets=0,
            total_warrior2_bets=0,
            total_bettors=0,
            betting_open=betting_open,
        )
        try:
            with self._session.begin_nested():
                self._session.add(pool)
        except IntegrityError:
            # Another request materialized the pool first.
            pool = self.get_pool(battle_id)
            if pool is None:
                raise
        return pool

    def add_to_pool(
        self,
        battle_id: str,
        *,
        on_warrior1: bool,
        amount: int,
        new_bettor: bool,
    ) -> bool:
        values = {"total_bettors": BattleBettingPool.total_bettors + (1 if new_bettor else 0)}
        if on_warrior1:
            values["total_warrior1_bets"] = BattleBettingPool.total_warrior1_bets + amount
        else:
            values["total_warrior2_bets"] = BattleBettingPool.total_warrior2_bets + amount

        statement = (
            update(BattleBettingPool)
            .where(BattleBettingPool.battle_id == battle_id)
            .values(**values)
        )
        return self._session.execute(statement).rowcount == 1

    def close_pool(self, battle_id: str, *, by_admin: bool = False) -> bool:
        values: dict[str, bool] = {"betting_open": False}
        if by_admin:
            values["closed_by_admin"] = True
        statement = (
            update(BattleBettingPool)
            .where(BattleBettingPool.battle_id == battle_id)
            .values(**values)
        )
        return self._session.execute(statement).rowcount == 1

    def sync_pool_open(self, battle_id: str, *, betting_open: bool) -> bool:
        """Follow the battle's betting window; an admin close is never undone."""

        statement = (
            update(BattleBettingPool)
            .where(
                BattleBettingPool.battle_id == battle_id,
                BattleBettingPool.closed_by_admin.is_(False),
                BattleBettingPool.betting_open != betting_open,
            )
            .values(betting_open=betting_open)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(statement).rowcount == 1

    def refresh_pool(self, pool: BattleBettingPool) -> BattleBettingPool:
        self._session.refresh(pool)
        return pool

    # ------------------------------------------------------------------
    # Bets

    def get_bet(self, battle_id: str, bettor_address: str) -> BattleBet | None:
        query = select(BattleBet).where(
            BattleBet.battle_id == battle_id,
            BattleBet.bettor_address == bettor_address,
        )
        return self._session.execute(query).scalar_one_or_none()

    def insert_bet(
        self,
        *,
        battle_id: str,
        bettor_address: str,
        on_warrior1: bool,
        amount: int,
        placed_at: datetime,
        tx_hash: str | None = None,
    ) -> BattleBet | None:
        """Insert a first bet; returns ``None`` when the bettor already holds one."""

        bet = BattleBet(
            battle_id=battle_id,
            bettor_address=bettor_address,
            bet_on_warrior1=on_warrior1,
            amount=amount,
            claimed=False,
            place_tx_hash=tx_hash,
            placed_at=placed_at,
        )
        try:
            with self._session.begin_nested():
                self._session.add(bet)
        except IntegrityError:
            return None
        return bet

    def accumulate_bet(
        self,
        *,
        battle_id: str,
        bettor_address: str,
        on_warrior1: bool,
        amount: int,
    ) -> bool:
        """Add to an unclaimed bet on the same side; no row matches a side switch."""

        statement = (
            update(BattleBet)
            .where(
                BattleBet.battle_id == battle_id,
                BattleBet.bettor_address == bettor_address,
                BattleBet.bet_on_warrior1.is_(on_warrior1),
                BattleBet.claimed.is_(False),
            )
            .values(amount=BattleBet.amount + amount)
        )
        return self._session.execute(statement).rowcount == 1

    def mark_claimed(self, bet_id: int, *, payout: int, claimed_at: datetime) -> bool:
        statement = (
            update(BattleBet)
            .where(BattleBet.id == bet_id, BattleBet.claimed.is_(False))
            .values(claimed=True, payout=payout, claimed_at=claimed_at)
        )
        return self._session.execute(statement).rowcount == 1

    def refresh_bet(self, bet: BattleBet) -> BattleBet:
        self._session.refresh(bet)
        return bet

    def total_staked(self, battle_id: str) -> int:
        query = select(func.coalesce(func.sum(BattleBet.amount), 0)).where(
            BattleBet.battle_id == battle_id
        )
        return int(self._session.execute(query).scalar_one())
