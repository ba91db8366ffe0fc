"""Trait and move scoring for arena debates, plus Elo rating updates."""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from arena.domain import MAX_TRAIT_VALUE, WarriorTraits


class DebateMove(str, Enum):
    STRIKE = "strike"
    TAUNT = "taunt"
    DODGE = "dodge"
    SPECIAL = "special"
    RECOVER = "recover"


# move -> (the move it counters, the move that counters it)
MOVE_COUNTERS: dict[DebateMove, tuple[DebateMove, DebateMove]] = {
    DebateMove.STRIKE: (DebateMove.DODGE, DebateMove.TAUNT),
    DebateMove.TAUNT: (DebateMove.STRIKE, DebateMove.SPECIAL),
    DebateMove.DODGE: (DebateMove.SPECIAL, DebateMove.RECOVER),
    DebateMove.SPECIAL: (DebateMove.TAUNT, DebateMove.STRIKE),
    DebateMove.RECOVER: (DebateMove.DODGE, DebateMove.TAUNT),
}

MOVE_TRAIT_SCALING: dict[DebateMove, tuple[str, ...]] = {
    DebateMove.STRIKE: ("strength",),
    DebateMove.TAUNT: ("charisma", "wit"),
    DebateMove.DODGE: ("defence",),
    DebateMove.SPECIAL: ("strength", "charisma", "wit"),
    DebateMove.RECOVER: ("defence", "charisma"),
}

COUNTER_BONUS = 1.3
COUNTERED_PENALTY = 0.7
MOVE_TRAIT_BONUS_CAP = 0.20
DEFENCE_REDUCTION_CAP = 0.20
MIN_BASE_SCORE = 40
MAX_BASE_SCORE = 100
MAX_ROUND_SCORE = 1000

ELO_K_FACTOR = 32
ELO_FLOOR = 100


@dataclass(slots=True)
class ScoreBreakdown:
    base_score: int
    trait_bonus: int
    move_multiplier: float
    counter_bonus: int
    final_score: int


def move_trait_bonus(move: DebateMove, traits: WarriorTraits) -> float:
    scaling = MOVE_TRAIT_SCALING[move]
    average = sum(getattr(traits, name) for name in scaling) / len(scaling)
    return (average / MAX_TRAIT_VALUE) * MOVE_TRAIT_BONUS_CAP


def move_multiplier(move: DebateMove, opponent_move: DebateMove) -> float:
    counters, countered_by = MOVE_COUNTERS[move]
    if counters == opponent_move:
        return COUNTER_BONUS
    if countered_by == opponent_move:
        return COUNTERED_PENALTY
    return 1.0


def calculate_round_score(
    base_score: int,
    traits: WarriorTraits,
    move: DebateMove,
    opponent_move: DebateMove,
    opponent_traits: WarriorTraits | None = None,
) -> ScoreBreakdown:
    trait_bonus = move_trait_bonus(move, traits)
    score = base_score * (1 + trait_bonus)

    multiplier = move_multiplier(move, opponent_move)
    score *= multiplier

    if opponent_traits is not None:
        score *= 1 - (opponent_traits.defence / MAX_TRAIT_VALUE) * DEFENCE_REDUCTION_CAP

    counter_bonus = (multiplier - 1) * base_score if multiplier > 1 else 0
    return ScoreBreakdown(
        base_score=base_score,
        trait_bonus=round(base_score * trait_bonus),
        move_multiplier=multiplier,
        counter_bonus=round(counter_bonus),
        final_score=round(min(max(score, 0), MAX_ROUND_SCORE)),
    )


def generate_base_score(luck: int, rng: random.Random) -> int:
    """Luck lifts the floor of the 40..100 base score range up to 60."""

    floor = MIN_BASE_SCORE + (luck / MAX_TRAIT_VALUE) * 20
    return round(floor + rng.random() * (MAX_BASE_SCORE - floor))


def select_move(
    traits: WarriorTraits,
    round_number: int,
    rng: random.Random,
    *,
    opponent_last_move: DebateMove | None = None,
    previous_moves: Sequence[DebateMove] = (),
) -> DebateMove:
    weights = {
        DebateMove.STRIKE: traits.strength / MAX_TRAIT_VALUE,
        DebateMove.TAUNT: (traits.charisma + traits.wit) / (2 * MAX_TRAIT_VALUE),
        DebateMove.DODGE: traits.defence / MAX_TRAIT_VALUE,
        DebateMove.SPECIAL: (traits.strength + traits.charisma + traits.wit) / (3 * MAX_TRAIT_VALUE),
        DebateMove.RECOVER: (traits.defence + traits.charisma) / (2 * MAX_TRAIT_VALUE),
    }

    if opponent_last_move is not None:
        for move, (counters, _) in MOVE_COUNTERS.items():
            if counters == opponent_last_move:
                weights[move] *= 1.5

    if round_number == 1:
        weights[DebateMove.STRIKE] *= 1.3
        weights[DebateMove.SPECIAL] *= 1.2
    elif round_number == 5:
        weights[DebateMove.SPECIAL] *= 1.5
    elif round_number >= 3:
        aggressive = sum(1 for move in previous_moves if move in (DebateMove.STRIKE, DebateMove.SPECIAL))
        if aggressive >= 2:
            weights[DebateMove.RECOVER] *= 1.4
            weights[DebateMove.DODGE] *= 1.3

    for move in DebateMove:
        if sum(1 for previous in previous_moves if previous == move) >= 2:
            weights[move] *= 0.5

    total = sum(weights.values())
    if total <= 0:
        return DebateMove.STRIKE

    threshold = rng.random() * total
    for move, weight in weights.items():
        threshold -= weight
        if threshold <= 0:
            return move
    return DebateMove.STRIKE


def _expected(rating: int, opponent_rating: int) -> float:
    return 1 / (1 + 10 ** ((opponent_rating - rating) / 400))


def elo_after_win(winner_rating: int, loser_rating: int) -> tuple[int, int]:
    expected_winner = _expected(winner_rating, loser_rating)
    winner_new = round(winner_rating + ELO_K_FACTOR * (1 - expected_winner))
    loser_new = round(loser_rating + ELO_K_FACTOR * (0 - (1 - expected_winner)))
    return max(ELO_FLOOR, winner_new), max(ELO_FLOOR, loser_new)


def elo_after_draw(rating1: int, rating2: int) -> tuple[int, int]:
    expected1 = _expected(rating1, rating2)
    new1 = round(rating1 + ELO_K_FACTOR * (0.5 - expected1))
    new2 = round(rating2 + ELO_K_FACTOR * (0.5 - (1 - expected1)))
    return max(ELO_FLOOR, new1), max(ELO_FLOOR, new2)
