"""Battle, round and arena-stats persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from arena.domain import RoundSubmission
from arena.models import (
    BattleStatus,
    PredictionBattle,
    PredictionRound,
    WarriorArenaStats,
)

from .types import BattlePage


class BattleRepository:
    """Encapsulate battle lifecycle writes; every status change is a conditional update."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Battles

    def create_battle(self, **fields: Any) -> PredictionBattle:
        battle = PredictionBattle(**fields)
        self._session.add(battle)
        self._session.flush()
        return battle

    def get_battle(self, battle_id: str, *, for_update: bool = False) -> PredictionBattle | None:
        query = (
            select(PredictionBattle)
            .where(PredictionBattle.id == battle_id)
            .options(selectinload(PredictionBattle.rounds))
        )
        if for_update:
            query = query.with_for_update()
        return self._session.execute(query).scalar_one_or_none()

    def refresh(self, battle: PredictionBattle) -> PredictionBattle:
        self._session.refresh(battle)
        return battle

    def list_battles(
        self,
        *,
        status: str | None = None,
        warrior_id: int | None = None,
        market_id: str | None = None,
        source: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> BattlePage:
        filters = []
        if status:
            filters.append(PredictionBattle.status == status)
        if warrior_id is not None:
            filters.append(
                or_(PredictionBattle.warrior1_id == warrior_id, PredictionBattle.warrior2_id == warrior_id)
            )
        if market_id and source:
            filters.append(PredictionBattle.external_market_id == market_id)
            filters.append(PredictionBattle.source == source)

        query = (
            select(PredictionBattle)
            .where(*filters)
            .options(selectinload(PredictionBattle.rounds))
            .order_by(PredictionBattle.created_at.desc(), PredictionBattle.id)
            .limit(limit)
            .offset(offset)
        )
        count_query = select(func.count()).select_from(PredictionBattle).where(*filters)

        battles = list(self._session.execute(query).scalars().all())
        total = int(self._session.execute(count_query).scalar_one())
        return BattlePage(battles=battles, total=total, limit=limit, offset=offset)

    def activate(
        self,
        battle_id: str,
        *,
        fill_warrior1: bool,
        warrior_id: int,
        owner: str,
    ) -> bool:
        values: dict[str, Any] = {"status": BattleStatus.ACTIVE.value, "current_round": 1}
        if fill_warrior1:
            values.update(warrior1_id=warrior_id, warrior1_owner=owner)
        else:
            values.update(warrior2_id=warrior_id, warrior2_owner=owner)

        statement = (
            update(PredictionBattle)
            .where(
                PredictionBattle.id == battle_id,
                PredictionBattle.status == BattleStatus.PENDING.value,
            )
            .values(**values)
        )
        return self._session.execute(statement).rowcount == 1

    def cancel(self, battle_id: str, *, cancelled_at: datetime) -> bool:
        statement = (
            update(PredictionBattle)
            .where(
                PredictionBattle.id == battle_id,
                PredictionBattle.status.in_(
                    [BattleStatus.PENDING.value, BattleStatus.ACTIVE.value]
                ),
            )
            .values(status=BattleStatus.CANCELLED.value, cancelled_at=cancelled_at)
        )
        return self._session.execute(statement).rowcount == 1

    def advance_round(
        self,
        battle_id: str,
        *,
        round_number: int,
        warrior1_points: int,
        warrior2_points: int,
        completes: bool,
        now: datetime,
    ) -> bool:
        """Add a round's points and move to the next round.

        Only succeeds while the battle is active and still waiting on ``round_number``,
        so each round (and the completion it may trigger) is applied exactly once.
        """

        values: dict[str, Any] = {
            "warrior1_score": PredictionBattle.warrior1_score + warrior1_points,
            "warrior2_score": PredictionBattle.warrior2_score + warrior2_points,
            "current_round": round_number + 1,
        }
        if completes:
            values["status"] = BattleStatus.COMPLETED.value
            values["completed_at"] = now

        statement = (
            update(PredictionBattle)
            .where(
                PredictionBattle.id == battle_id,
                PredictionBattle.status == BattleStatus.ACTIVE.value,
                PredictionBattle.current_round == round_number,
            )
            .values(**values)
        )
        return self._session.execute(statement).rowcount == 1

    # ------------------------------------------------------------------
    # Rounds

    def upsert_round(
        self,
        battle_id: str,
        submission: RoundSubmission,
        *,
        round_winner: str,
        ended_at: datetime,
    ) -> PredictionRound:
        query = select(PredictionRound).where(
            PredictionRound.battle_id == battle_id,
            PredictionRound.round_number == submission.round_number,
        )
        record = self._session.execute(query).scalar_one_or_none()
        if record is None:
            record = PredictionRound(battle_id=battle_id, round_number=submission.round_number)
            self._session.add(record)

        record.w1_argument = submission.warrior1.argument
        record.w1_evidence = list(submission.warrior1.evidence)
        record.w1_move = submission.warrior1.move
        record.w1_score = submission.warrior1.score
        record.w2_argument = submission.warrior2.argument
        record.w2_evidence = list(submission.warrior2.evidence)
        record.w2_move = submission.warrior2.move
        record.w2_score = submission.warrior2.score
        record.round_winner = round_winner
        record.judge_reasoning = submission.judge_reasoning
        record.ended_at = ended_at
        self._session.flush()
        return record

    def list_rounds(self, battle_id: str) -> list[PredictionRound]:
        query = (
            select(PredictionRound)
            .where(PredictionRound.battle_id == battle_id)
            .order_by(PredictionRound.round_number)
        )
        return list(self._session.execute(query).scalars().all())

    # ------------------------------------------------------------------
    # Arena stats

    def get_stats(self, warrior_id: int) -> WarriorArenaStats | None:
        return self._session.get(WarriorArenaStats, warrior_id)

    def _locked_stats(self, warrior_id: int) -> WarriorArenaStats | None:
        return self._session.get(WarriorArenaStats, warrior_id, with_for_update=True)

    def get_or_create_stats(self, warrior_id: int) -> WarriorArenaStats:
        stats = self._locked_stats(warrior_id)
        if stats is not None:
            return stats

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
        try:
            with self._session.begin_nested():
                self._session.add(stats)
        except IntegrityError:
            # A concurrently completing battle created the row first.
            stats = self._locked_stats(warrior_id)
            if stats is None:
                raise
        return stats

    def record_result(
        self,
        stats: WarriorArenaStats,
        *,
        result: str,
        new_rating: int,
        battled_at: datetime,
    ) -> WarriorArenaStats:
        stats.total_battles += 1
        if result == "win":
            stats.wins += 1
            stats.current_streak = stats.current_streak + 1 if stats.current_streak > 0 else 1
        elif result == "loss":
            stats.losses += 1
            stats.current_streak = stats.current_streak - 1 if stats.current_streak < 0 else -1
        else:
            stats.draws += 1
            stats.current_streak = 0
        stats.arena_rating = new_rating
        stats.peak_rating = max(stats.peak_rating, new_rating)
        stats.last_battle_at = battled_at
        return stats
