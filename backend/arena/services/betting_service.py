"""Spectator wagering on battles: a parimutuel pool per battle."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from arena.core.config import Settings, settings as default_settings
from arena.db import SessionFactory, session_scope
from arena.domain import PayoutQuote, PoolOdds
from arena.errors import ConflictError, NotFoundError, ValidationError
from arena.models import BattleBet, BattleBettingPool, BattleStatus, PredictionBattle, utcnow
from arena.repositories import BattleRepository, BettingRepository

from .payouts import compute_odds, compute_payout
from .validation import require_address, require_amount


@dataclass(slots=True)
class PoolView:
    pool: BattleBettingPool
    odds: PoolOdds
    total_pool: int
    user_bet: BattleBet | None = None


@dataclass(slots=True)
class PlacedBet:
    bet: BattleBet
    pool: BattleBettingPool
    odds: PoolOdds


@dataclass(slots=True)
class ClaimResult:
    bet: BattleBet
    quote: PayoutQuote


class WageringPool:
    """Accepts bets during a battle's early rounds and pays them out after completion."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or default_settings

    def _pool_open(self, battle: PredictionBattle) -> bool:
        return (
            battle.status == BattleStatus.ACTIVE.value
            and battle.current_round <= self._settings.betting_last_open_round
        )

    def _accepts_bets(self, battle: PredictionBattle) -> bool:
        # Pending battles take early bets before the challenge is accepted.
        return (
            battle.status in (BattleStatus.PENDING.value, BattleStatus.ACTIVE.value)
            and battle.current_round <= self._settings.betting_last_open_round
        )

    def _current_pool(self, repo: BettingRepository, battle: PredictionBattle) -> BattleBettingPool:
        """Materialize the pool and bring its stored flag in line with the battle's window."""

        pool = repo.ensure_pool(battle.id, betting_open=self._pool_open(battle))
        if repo.sync_pool_open(battle.id, betting_open=self._pool_open(battle)):
            pool = repo.refresh_pool(pool)
        return pool

    @staticmethod
    def _load_battle(session, battle_id: str) -> PredictionBattle:
        battle = BattleRepository(session).get_battle(battle_id)
        if battle is None:
            raise NotFoundError("Battle not found", battle_id=battle_id)
        return battle

    # ------------------------------------------------------------------
    # Pool

    def get_or_create_pool(self, battle_id: str) -> BattleBettingPool:
        with session_scope(self._session_factory) as session:
            battle = self._load_battle(session, battle_id)
            return self._current_pool(BettingRepository(session), battle)

    def get_pool(self, battle_id: str, *, bettor: str | None = None) -> PoolView:
        bettor_address = require_address(bettor, "bettor") if bettor else None

        with session_scope(self._session_factory) as session:
            battle = self._load_battle(session, battle_id)
            repo = BettingRepository(session)
            pool = self._current_pool(repo, battle)
            user_bet = repo.get_bet(battle_id, bettor_address) if bettor_address else None

        return PoolView(
            pool=pool,
            odds=compute_odds(pool.total_warrior1_bets, pool.total_warrior2_bets),
            total_pool=pool.total_warrior1_bets + pool.total_warrior2_bets,
            user_bet=user_bet,
        )

    def close_betting(self, battle_id: str) -> BattleBettingPool:
        with session_scope(self._session_factory) as session:
            battle = self._load_battle(session, battle_id)
            repo = BettingRepository(session)
            pool = repo.ensure_pool(battle_id, betting_open=self._pool_open(battle))
            repo.close_pool(battle_id, by_admin=True)
            pool = repo.refresh_pool(pool)

        logger.info("Betting closed for battle {}", battle_id)
        return pool

    # ------------------------------------------------------------------
    # Bets

    def place_bet(
        self,
        battle_id: str,
        *,
        bettor: str,
        bet_on_warrior1: bool,
        amount: int | str,
        tx_hash: str | None = None,
    ) -> PlacedBet:
        bettor_address = require_address(bettor, "bettorAddress")
        amount = require_amount(amount, "amount")
        if not isinstance(bet_on_warrior1, bool):
            raise ValidationError("betOnWarrior1 must be a boolean", field="betOnWarrior1")

        with session_scope(self._session_factory) as session:
            battle = self._load_battle(session, battle_id)
            if not self._accepts_bets(battle):
                raise ConflictError(
                    f"Betting is closed for this battle (status={battle.status}, round={battle.current_round})"
                )

            repo = BettingRepository(session)
            pool = self._current_pool(repo, battle)
            if pool.closed_by_admin:
                raise ConflictError("Betting has been closed for this battle")

            bet = repo.insert_bet(
                battle_id=battle_id,
                bettor_address=bettor_address,
                on_warrior1=bet_on_warrior1,
                amount=amount,
                placed_at=utcnow(),
                tx_hash=tx_hash,
            )
            new_bettor = bet is not None
            if bet is None:
                accumulated = repo.accumulate_bet(
                    battle_id=battle_id,
                    bettor_address=bettor_address,
                    on_warrior1=bet_on_warrior1,
                    amount=amount,
                )
                if not accumulated:
                    raise ConflictError("Cannot bet on both sides")
                bet = repo.refresh_bet(repo.get_bet(battle_id, bettor_address))

            repo.add_to_pool(battle_id, on_warrior1=bet_on_warrior1, amount=amount, new_bettor=new_bettor)
            pool = repo.refresh_pool(pool)

        logger.info(
            "Bet on battle {} by {}: {} on warrior{} (pool {}/{})",
            battle_id,
            bettor_address,
            amount,
            1 if bet_on_warrior1 else 2,
            pool.total_warrior1_bets,
            pool.total_warrior2_bets,
        )
        return PlacedBet(
            bet=bet,
            pool=pool,
            odds=compute_odds(pool.total_warrior1_bets, pool.total_warrior2_bets),
        )

    def quote(self, battle_id: str, *, bettor: str) -> PayoutQuote:
        """Preview what ``bettor`` would receive if they claimed now."""

        bettor_address = require_address(bettor, "bettorAddress")
        with session_scope(self._session_factory) as session:
            battle = self._load_battle(session, battle_id)
            repo = BettingRepository(session)
            bet = repo.get_bet(battle_id, bettor_address)
            pool = repo.get_pool(battle_id)
            if bet is None or pool is None:
                raise NotFoundError("No bet found for this battle")
            return self._payout_for(battle, pool, bet)

    def claim(self, battle_id: str, *, bettor: str) -> ClaimResult:
        bettor_address = require_address(bettor, "bettorAddress")

        with session_scope(self._session_factory) as session:
            battle = self._load_battle(session, battle_id)
            if battle.status != BattleStatus.COMPLETED.value:
                raise ConflictError("Battle not completed", status=battle.status)

            repo = BettingRepository(session)
            bet = repo.get_bet(battle_id, bettor_address)
            pool = repo.get_pool(battle_id)
            if bet is None or pool is None:
                raise NotFoundError("No bet found for this battle")
            if bet.claimed:
                raise ConflictError("Already claimed")

            quote = self._payout_for(battle, pool, bet)
            if not repo.mark_claimed(bet.id, payout=quote.payout, claimed_at=utcnow()):
                raise ConflictError("Already claimed")
            bet = repo.refresh_bet(bet)

        logger.info(
            "Bet {} on battle {} claimed by {}: payout={} fee={} won={} draw={}",
            bet.id,
            battle_id,
            bettor_address,
            quote.payout,
            quote.fee,
            quote.won,
            quote.is_draw,
        )
        return ClaimResult(bet=bet, quote=quote)

    def _payout_for(
        self, battle: PredictionBattle, pool: BattleBettingPool, bet: BattleBet
    ) -> PayoutQuote:
        return compute_payout(
            amount=bet.amount,
            bet_on_warrior1=bet.bet_on_warrior1,
            total_warrior1=pool.total_warrior1_bets,
            total_warrior2=pool.total_warrior2_bets,
            warrior1_score=battle.warrior1_score,
            warrior2_score=battle.warrior2_score,
            fee_bps=self._settings.betting_fee_bps,
        )
