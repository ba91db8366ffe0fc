"""Battle lifecycle: challenges, round submission and arena ratings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger
from web3 import Web3

from arena.core.config import Settings, settings as default_settings
from arena.db import SessionFactory, session_scope
from arena.domain import MarketContext, PriorRound, RoundSubmission, WarriorTraits
from arena.errors import ArenaError, ConflictError, NotFoundError, UpstreamError, ValidationError
from arena.models import (
    BattleStatus,
    MarketSource,
    PredictionBattle,
    PredictionRound,
    RoundWinner,
    WarriorArenaStats,
    utcnow,
)
from arena.repositories import BattlePage, BattleRepository, BettingRepository, MarketRepository

from .arbitrage import ArbitrageTrader
from .debate import DebateEngine, TraitDebateEngine, elo_after_draw, elo_after_win
from .ownership import OwnershipVerifier
from .validation import require_address, require_amount, require_text, require_warrior_id

TOTAL_ROUNDS = 5
MAX_ROUND_SCORE = 1000


def market_key(source: str, external_market_id: str) -> str:
    """Deterministic bytes32 correlation key for a market (keccak256 of ``source:id``)."""

    return Web3.to_hex(Web3.keccak(text=f"{source}:{external_market_id}"))


def round_winner(warrior1_score: int, warrior2_score: int) -> str:
    if warrior1_score > warrior2_score:
        return RoundWinner.WARRIOR1.value
    if warrior2_score > warrior1_score:
        return RoundWinner.WARRIOR2.value
    return RoundWinner.DRAW.value


@dataclass(slots=True)
class CreatedBattle:
    battle: PredictionBattle
    market_key: str


@dataclass(slots=True)
class SubmittedRound:
    battle: PredictionBattle
    round: PredictionRound

    @property
    def completed(self) -> bool:
        return self.battle.status == BattleStatus.COMPLETED.value


class BattleLifecycleManager:
    """Owns the battle/round state machine and the per-warrior arena stats.

    Every status change goes through a conditional update in :class:`BattleRepository`,
    so concurrent callers racing on the same battle see exactly one winner and the
    rest get a :class:`ConflictError`.
    """

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        *,
        debate_engine: DebateEngine | None = None,
        ownership_verifier: OwnershipVerifier | None = None,
        arbitrage_trader: ArbitrageTrader | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._debate_engine = debate_engine or TraitDebateEngine()
        self._ownership_verifier = ownership_verifier
        self._arbitrage_trader = arbitrage_trader
        self._settings = settings or default_settings

    # ------------------------------------------------------------------
    # Challenges

    def create_challenge(
        self,
        *,
        external_market_id: str,
        source: str,
        question: str,
        warrior_id: int,
        owner: str,
        stakes: int | str,
        challenger_side_yes: bool = True,
    ) -> CreatedBattle:
        external_market_id = require_text(external_market_id, "externalMarketId")
        source = _require_source(source)
        question = require_text(question, "question")
        warrior_id = require_warrior_id(warrior_id, "warriorId")
        owner = require_address(owner, "owner")
        stakes = require_amount(stakes, "stakes")

        self._check_ownership(warrior_id, owner)

        key = market_key(source, external_market_id)
        fields: dict[str, Any] = {
            "external_market_id": external_market_id,
            "source": source,
            "question": question,
            "market_key": key,
            "stakes": stakes,
            "status": BattleStatus.PENDING.value,
            "current_round": 0,
        }
        if challenger_side_yes:
            fields.update(warrior1_id=warrior_id, warrior1_owner=owner, warrior2_id=0, warrior2_owner="")
        else:
            fields.update(warrior1_id=0, warrior1_owner="", warrior2_id=warrior_id, warrior2_owner=owner)

        with session_scope(self._session_factory) as session:
            battle = BattleRepository(session).create_battle(**fields)

        logger.info(
            "Battle {} created on {}:{} by warrior {} (side={})",
            battle.id,
            source,
            external_market_id,
            warrior_id,
            "yes" if challenger_side_yes else "no",
        )
        return CreatedBattle(battle=self.get_battle(battle.id), market_key=key)

    def create_arbitrage_battle(
        self,
        *,
        polymarket_id: str,
        kalshi_market_id: str,
        question: str,
        warrior1_id: int,
        warrior2_id: int,
        owner: str,
        stakes: int | str,
    ) -> CreatedBattle:
        """Run the arbitrage saga: trade, then battle row, then round 1.

        A failed trade leaves nothing behind. A trade whose battle cannot be stored is
        unwound with ``cancel_trade``. A failed round-1 auto-play only logs, leaving the
        battle active and waiting on round 1.
        """

        polymarket_id = require_text(polymarket_id, "externalMarketId")
        kalshi_market_id = require_text(kalshi_market_id, "kalshiMarketId")
        question = require_text(question, "question")
        warrior1_id = require_warrior_id(warrior1_id, "warrior1Id")
        warrior2_id = require_warrior_id(warrior2_id, "warrior2Id")
        owner = require_address(owner, "owner")
        stakes = require_amount(stakes, "stakes")
        if warrior1_id == warrior2_id:
            raise ValidationError("An arbitrage battle needs two different warriors")
        if self._arbitrage_trader is None:
            raise UpstreamError("Arbitrage trading is not configured")

        with session_scope(self._session_factory) as session:
            pair = MarketRepository(session).find_matched_pair(polymarket_id, kalshi_market_id)
            if pair is None:
                raise NotFoundError("Matched market pair not found")
            if not pair.is_active or not pair.has_arbitrage or not pair.arbitrage_opportunity_id:
                raise ConflictError("No active arbitrage opportunity for this market pair")
            opportunity_id = pair.arbitrage_opportunity_id

        for warrior_id in (warrior1_id, warrior2_id):
            self._check_ownership(warrior_id, owner)

        try:
            trade = self._arbitrage_trader.execute_arbitrage(owner, opportunity_id, stakes)
        except ArenaError:
            raise
        except Exception as exc:
            raise UpstreamError(f"Arbitrage trade failed: {exc}") from exc
        if not trade.success or not trade.trade_id:
            raise UpstreamError(trade.error or "Arbitrage trade failed")

        source = MarketSource.POLYMARKET.value
        key = market_key(source, polymarket_id)
        try:
            with session_scope(self._session_factory) as session:
                battle = BattleRepository(session).create_battle(
                    external_market_id=polymarket_id,
                    source=source,
                    question=question,
                    market_key=key,
                    warrior1_id=warrior1_id,
                    warrior1_owner=owner,
                    warrior2_id=warrior2_id,
                    warrior2_owner=owner,
                    stakes=stakes,
                    status=BattleStatus.ACTIVE.value,
                    current_round=1,
                    is_arbitrage_battle=True,
                    arbitrage_trade_id=trade.trade_id,
                    kalshi_market_id=kalshi_market_id,
                )
        except Exception:
            logger.exception("Storing arbitrage battle failed; cancelling trade {}", trade.trade_id)
            try:
                self._arbitrage_trader.cancel_trade(trade.trade_id)
            except Exception:
                logger.exception("Compensating cancel of trade {} failed", trade.trade_id)
            raise

        logger.info(
            "Arbitrage battle {} created with trade {} (expected profit {})",
            battle.id,
            trade.trade_id,
            trade.expected_profit,
        )

        try:
            self.execute_round(battle.id)
        except Exception as exc:
            logger.warning("Round 1 auto-play failed for arbitrage battle {}: {}", battle.id, exc)

        return CreatedBattle(battle=self.get_battle(battle.id), market_key=key)

    def accept_challenge(self, battle_id: str, *, warrior_id: int, owner: str) -> PredictionBattle:
        warrior_id = require_warrior_id(warrior_id, "warrior2Id")
        owner = require_address(owner, "warrior2Owner")

        self._check_ownership(warrior_id, owner)

        with session_scope(self._session_factory) as session:
            repo = BattleRepository(session)
            battle = self._load(repo, battle_id)
            if battle.status != BattleStatus.PENDING.value:
                raise ConflictError(f"Battle is {battle.status}; only pending battles can be accepted")

            fill_warrior1 = battle.warrior1_id == 0
            challenger_id = battle.warrior2_id if fill_warrior1 else battle.warrior1_id
            if challenger_id == warrior_id:
                raise ValidationError("A warrior cannot battle itself")

            if not repo.activate(battle_id, fill_warrior1=fill_warrior1, warrior_id=warrior_id, owner=owner):
                raise ConflictError("Battle was accepted or cancelled concurrently")
            battle = repo.refresh(battle)

        logger.info("Battle {} accepted by warrior {}", battle_id, warrior_id)
        return battle

    def cancel_challenge(self, battle_id: str) -> PredictionBattle:
        with session_scope(self._session_factory) as session:
            repo = BattleRepository(session)
            battle = self._load(repo, battle_id)
            if not repo.cancel(battle_id, cancelled_at=utcnow()):
                repo.refresh(battle)
                raise ConflictError(f"Cannot cancel a {battle.status} battle")
            BettingRepository(session).close_pool(battle_id)
            battle = repo.refresh(battle)

        logger.info("Battle {} cancelled", battle_id)
        return battle

    # ------------------------------------------------------------------
    # Rounds

    def submit_round(self, battle_id: str, submission: RoundSubmission) -> SubmittedRound:
        """Record one round and advance the battle, all in one transaction.

        Round 5 also completes the battle and updates both warriors' stats and ratings.
        """

        _validate_submission(submission)
        winner = round_winner(submission.warrior1.score, submission.warrior2.score)
        completes = submission.round_number == TOTAL_ROUNDS
        now = utcnow()

        with session_scope(self._session_factory) as session:
            repo = BattleRepository(session)
            battle = self._load(repo, battle_id, for_update=True)
            if battle.status != BattleStatus.ACTIVE.value:
                raise ConflictError(f"Battle is {battle.status}; rounds can only be submitted while active")
            if battle.current_round != submission.round_number:
                raise ConflictError(
                    f"Battle is on round {battle.current_round}, cannot submit round {submission.round_number}"
                )

            record = repo.upsert_round(battle_id, submission, round_winner=winner, ended_at=now)
            advanced = repo.advance_round(
                battle_id,
                round_number=submission.round_number,
                warrior1_points=submission.warrior1.score,
                warrior2_points=submission.warrior2.score,
                completes=completes,
                now=now,
            )
            if not advanced:
                raise ConflictError(f"Round {submission.round_number} was already submitted")
            battle = repo.refresh(battle)

            if completes:
                self._record_outcome(repo, battle, now)

        logger.info(
            "Battle {} round {} recorded: {} ({} vs {})",
            battle_id,
            submission.round_number,
            winner,
            submission.warrior1.score,
            submission.warrior2.score,
        )
        if completes:
            logger.info(
                "Battle {} completed {}-{}", battle_id, battle.warrior1_score, battle.warrior2_score
            )
        return SubmittedRound(battle=battle, round=record)

    def execute_round(
        self,
        battle_id: str,
        *,
        traits1: WarriorTraits | None = None,
        traits2: WarriorTraits | None = None,
        yes_price: float | None = None,
    ) -> SubmittedRound:
        """Play the battle's current round with the debate engine and submit it."""

        with session_scope(self._session_factory) as session:
            battle = self._load(BattleRepository(session), battle_id)
            if battle.status != BattleStatus.ACTIVE.value:
                raise ConflictError(f"Battle is {battle.status}; only active battles can play rounds")
            round_number = battle.current_round
            market = MarketContext(
                question=battle.question,
                source=battle.source,
                external_market_id=battle.external_market_id,
                yes_price=yes_price,
            )
            prior_rounds = [
                PriorRound(
                    round_number=item.round_number,
                    w1_move=item.w1_move,
                    w2_move=item.w2_move,
                    w1_score=item.w1_score,
                    w2_score=item.w2_score,
                )
                for item in battle.rounds
                if item.round_number < round_number
            ]

        default_traits = WarriorTraits.uniform(self._settings.default_trait_value)
        result = self._debate_engine.run_round(
            traits1 or default_traits,
            traits2 or default_traits,
            market,
            round_number,
            prior_rounds,
        )
        return self.submit_round(battle_id, result.to_submission(round_number))

    def execute_full_battle(
        self,
        battle_id: str,
        *,
        traits1: WarriorTraits | None = None,
        traits2: WarriorTraits | None = None,
        yes_price: float | None = None,
    ) -> list[SubmittedRound]:
        """Play every remaining round until the battle completes."""

        played: list[SubmittedRound] = []
        while True:
            submitted = self.execute_round(
                battle_id, traits1=traits1, traits2=traits2, yes_price=yes_price
            )
            played.append(submitted)
            if submitted.completed:
                return played

    # ------------------------------------------------------------------
    # Reads

    def get_battle(self, battle_id: str) -> PredictionBattle:
        with session_scope(self._session_factory) as session:
            return self._load(BattleRepository(session), battle_id)

    def list_battles(
        self,
        *,
        status: str | None = None,
        warrior_id: int | None = None,
        market_id: str | None = None,
        source: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> BattlePage:
        if status and status not in {item.value for item in BattleStatus}:
            raise ValidationError(f"Unknown battle status: {status}", field="status")
        page_size = limit if limit is not None else self._settings.battle_page_size_default
        page_size = max(1, min(page_size, self._settings.battle_page_size_max))
        start = max(0, offset or 0)

        with session_scope(self._session_factory) as session:
            return BattleRepository(session).list_battles(
                status=status,
                warrior_id=warrior_id,
                market_id=market_id,
                source=source,
                limit=page_size,
                offset=start,
            )

    def get_warrior_stats(self, warrior_id: int) -> WarriorArenaStats:
        warrior_id = require_warrior_id(warrior_id, "warriorId")
        with session_scope(self._session_factory) as session:
            stats = BattleRepository(session).get_stats(warrior_id)
            if stats is None:
                # Warriors that never fought report the starting line.
                stats = WarriorArenaStats(
                    warrior_id=warrior_id,
                    total_battles=0,
                    wins=0,
                    losses=0,
                    draws=0,
                    arena_rating=1000,
                    peak_rating=1000,
                    current_streak=0,
                )
            return stats

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _load(repo: BattleRepository, battle_id: str, *, for_update: bool = False) -> PredictionBattle:
        battle = repo.get_battle(battle_id, for_update=for_update)
        if battle is None:
            raise NotFoundError("Battle not found", battle_id=battle_id)
        return battle

    def _check_ownership(self, warrior_id: int, owner: str) -> None:
        if self._ownership_verifier is None:
            return
        try:
            if not self._ownership_verifier.verify(warrior_id, owner):
                logger.warning("Ownership mismatch for warrior {} and {}; continuing", warrior_id, owner)
        except Exception as exc:
            logger.warning("Ownership check for warrior {} failed: {}; continuing", warrior_id, exc)

    @staticmethod
    def _record_outcome(repo: BattleRepository, battle: PredictionBattle, now) -> None:
        stats1 = repo.get_or_create_stats(battle.warrior1_id)
        stats2 = repo.get_or_create_stats(battle.warrior2_id)
        rating1, rating2 = stats1.arena_rating, stats2.arena_rating

        if battle.warrior1_score > battle.warrior2_score:
            rating1, rating2 = elo_after_win(rating1, rating2)
            results = ("win", "loss")
        elif battle.warrior2_score > battle.warrior1_score:
            rating2, rating1 = elo_after_win(rating2, rating1)
            results = ("loss", "win")
        else:
            rating1, rating2 = elo_after_draw(rating1, rating2)
            results = ("draw", "draw")

        repo.record_result(stats1, result=results[0], new_rating=rating1, battled_at=now)
        repo.record_result(stats2, result=results[1], new_rating=rating2, battled_at=now)


def _require_source(source: Any) -> str:
    allowed = {item.value for item in MarketSource}
    if source not in allowed:
        raise ValidationError(f"source must be one of {sorted(allowed)}", field="source")
    return source


def _validate_submission(submission: RoundSubmission) -> None:
    if not 1 <= submission.round_number <= TOTAL_ROUNDS:
        raise ValidationError(f"roundNumber must be between 1 and {TOTAL_ROUNDS}", field="roundNumber")
    for label, side in (("warrior1", submission.warrior1), ("warrior2", submission.warrior2)):
        score = side.score
        if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= MAX_ROUND_SCORE:
            raise ValidationError(
                f"{label} score must be an integer between 0 and {MAX_ROUND_SCORE}",
                field=f"{label}.score",
            )
