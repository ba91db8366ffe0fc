"""Default debate engine: trait-weighted move selection with templated arguments."""

from __future__ import annotations

import random
from typing import Any, Sequence

from arena.domain import (
    MAX_TRAIT_VALUE,
    MarketContext,
    PriorRound,
    RoundResult,
    SideSubmission,
    WarriorTraits,
)

from .scoring import (
    DebateMove,
    ScoreBreakdown,
    calculate_round_score,
    generate_base_score,
    select_move,
)

ARGUMENT_TEMPLATES: dict[str, dict[DebateMove, tuple[str, ...]]] = {
    "yes": {
        DebateMove.STRIKE: (
            "The evidence overwhelmingly supports YES. {evidence}. The trajectory is clear.",
            "Historical patterns don't lie: {evidence}. The outcome will be YES.",
        ),
        DebateMove.TAUNT: (
            "My opponent ignores the obvious signs. {evidence}. Their NO position is wishful thinking.",
            "While my opponent clings to doubt, {evidence}. The smart money is on YES.",
        ),
        DebateMove.DODGE: (
            "That concern is valid but misses the bigger picture. Consider: {evidence}.",
            "I acknowledge the uncertainty, but the core thesis remains: {evidence}.",
        ),
        DebateMove.SPECIAL: (
            "Here's what everyone's missing: {evidence}. This changes everything for YES.",
            "Consider this overlooked factor: {evidence}. It tips the scales to YES.",
        ),
        DebateMove.RECOVER: (
            "Fair point on that weakness. However, the overall picture still supports YES: {evidence}.",
            "That's a valid concern. Let me address it and reinforce: {evidence}.",
        ),
    },
    "no": {
        DebateMove.STRIKE: (
            "The data clearly indicates NO. {evidence}. The conclusion is unavoidable.",
            "Market signals are telling us: {evidence}. NO is the rational position.",
        ),
        DebateMove.TAUNT: (
            "The YES position is built on hopium. {evidence}. Reality says otherwise.",
            "Wishful thinking won't change: {evidence}. NO is where this lands.",
        ),
        DebateMove.DODGE: (
            "That's one perspective, but consider: {evidence}. The NO thesis stands.",
            "I see that argument, but let's refocus on: {evidence}.",
        ),
        DebateMove.SPECIAL: (
            "Here's the insight others miss: {evidence}. This seals the NO case.",
            "An unconventional but crucial point: {evidence}. NO becomes clearer.",
        ),
        DebateMove.RECOVER: (
            "That's a fair critique. However, the NO thesis remains intact: {evidence}.",
            "Valid concern, but the weight of evidence still says NO: {evidence}.",
        ),
    },
}

EVIDENCE_SOURCES: dict[str, tuple[str, ...]] = {
    "news": ("Reuters", "Bloomberg", "AP News", "Financial Times"),
    "data": ("Federal Reserve", "Bureau of Labor Statistics", "World Bank"),
    "expert": ("Goldman Sachs Research", "MIT Study", "Stanford Analysis"),
    "historical": ("Historical Records", "Pattern Analysis"),
}

EVIDENCE_SNIPPETS: dict[str, tuple[str, ...]] = {
    "yes": (
        "Recent indicators point strongly toward this outcome.",
        "Multiple sources confirm the positive trajectory.",
        "Historical precedent favors this result.",
    ),
    "no": (
        "Current data suggests significant headwinds.",
        "Several factors indicate this outcome is unlikely.",
        "Historical patterns show similar situations failing.",
    ),
}

SIDE_LABELS = {"yes": "YES", "no": "NO"}


class TraitDebateEngine:
    """Plays rounds from warrior traits alone.

    Passing ``seed`` makes every round reproducible: the generator is keyed on the seed,
    the market and the round number, so replaying a battle yields the same transcript.
    """

    def __init__(self, *, seed: int | str | None = None, evidence_count: int = 2) -> None:
        self._seed = seed
        self._evidence_count = evidence_count

    def _rng(self, market: MarketContext, round_number: int) -> random.Random:
        if self._seed is None:
            return random.Random()
        return random.Random(f"{self._seed}:{market.source}:{market.external_market_id}:{round_number}")

    def run_round(
        self,
        traits1: WarriorTraits,
        traits2: WarriorTraits,
        market: MarketContext,
        round_number: int,
        prior_rounds: Sequence[PriorRound],
    ) -> RoundResult:
        rng = self._rng(market, round_number)
        ordered = sorted(prior_rounds, key=lambda prior: prior.round_number)
        last = ordered[-1] if ordered else None

        move1 = select_move(
            traits1,
            round_number,
            rng,
            opponent_last_move=_as_move(last.w2_move) if last else None,
            previous_moves=[move for move in (_as_move(p.w1_move) for p in ordered) if move],
        )
        move2 = select_move(
            traits2,
            round_number,
            rng,
            opponent_last_move=_as_move(last.w1_move) if last else None,
            previous_moves=[move for move in (_as_move(p.w2_move) for p in ordered) if move],
        )

        evidence1 = self._evidence(rng, market, "yes", traits1)
        evidence2 = self._evidence(rng, market, "no", traits2)

        score1 = calculate_round_score(generate_base_score(traits1.luck, rng), traits1, move1, move2, traits2)
        score2 = calculate_round_score(generate_base_score(traits2.luck, rng), traits2, move2, move1, traits1)

        if score1.final_score > score2.final_score:
            winner = "warrior1"
        elif score2.final_score > score1.final_score:
            winner = "warrior2"
        else:
            winner = "draw"

        return RoundResult(
            warrior1=SideSubmission(
                argument=_argument(rng, "yes", move1, evidence1),
                evidence=evidence1,
                move=move1.value,
                score=score1.final_score,
            ),
            warrior2=SideSubmission(
                argument=_argument(rng, "no", move2, evidence2),
                evidence=evidence2,
                move=move2.value,
                score=score2.final_score,
            ),
            round_winner=winner,
            judge_reasoning=judge_reasoning(move1, move2, score1, score2, evidence1, evidence2, winner),
        )

    def _evidence(
        self,
        rng: random.Random,
        market: MarketContext,
        side: str,
        traits: WarriorTraits,
    ) -> list[dict[str, Any]]:
        quality_bonus = (traits.luck / MAX_TRAIT_VALUE) * 20
        keywords = " ".join([word for word in market.question.split() if len(word) > 4][:3])
        evidence: list[dict[str, Any]] = []

        if market.yes_price is not None:
            price = market.yes_price if side == "yes" else 1 - market.yes_price
            venue = "Polymarket" if market.source == "polymarket" else "Kalshi"
            evidence.append(
                {
                    "type": "market",
                    "source": f"{venue} Order Book",
                    "title": f"{SIDE_LABELS[side]} trading at {price * 100:.1f}%",
                    "snippet": f"{venue} traders price {SIDE_LABELS[side]} at {price * 100:.1f}%",
                    "relevance": round(70 + quality_bonus + rng.random() * 15),
                }
            )

        while len(evidence) < self._evidence_count:
            kind = rng.choice(sorted(EVIDENCE_SOURCES))
            evidence.append(
                {
                    "type": kind,
                    "source": rng.choice(EVIDENCE_SOURCES[kind]),
                    "title": f"{kind.title()} signals on {keywords or market.question}",
                    "snippet": rng.choice(EVIDENCE_SNIPPETS[side]),
                    "relevance": round(60 + quality_bonus + rng.random() * 20),
                }
            )

        return sorted(evidence, key=lambda item: item["relevance"], reverse=True)


def judge_reasoning(
    move1: DebateMove,
    move2: DebateMove,
    score1: ScoreBreakdown,
    score2: ScoreBreakdown,
    evidence1: Sequence[dict[str, Any]],
    evidence2: Sequence[dict[str, Any]],
    winner: str,
) -> str:
    parts = [f"YES used {move1.value} while NO used {move2.value}."]

    if score1.move_multiplier > 1:
        parts.append(f"YES's {move1.value} effectively countered NO's {move2.value}.")
    elif score2.move_multiplier > 1:
        parts.append(f"NO's {move2.value} effectively countered YES's {move1.value}.")

    quality1 = evidence1[0]["relevance"] if evidence1 else 0
    quality2 = evidence2[0]["relevance"] if evidence2 else 0
    if abs(quality1 - quality2) > 10:
        parts.append(f"{'YES' if quality1 > quality2 else 'NO'} presented stronger supporting evidence.")

    if winner == "warrior1":
        parts.append(f"Round goes to YES ({score1.final_score} vs {score2.final_score}).")
    elif winner == "warrior2":
        parts.append(f"Round goes to NO ({score2.final_score} vs {score1.final_score}).")
    else:
        parts.append(f"Round is a draw ({score1.final_score} vs {score2.final_score}).")
    return " ".join(parts)


def _argument(rng: random.Random, side: str, move: DebateMove, evidence: Sequence[dict[str, Any]]) -> str:
    template = rng.choice(ARGUMENT_TEMPLATES[side][move])
    summary = " Furthermore, ".join(item["snippet"] for item in evidence)
    return template.replace("{evidence}", summary)


def _as_move(value: str | None) -> DebateMove | None:
    if not value:
        return None
    try:
        return DebateMove(value)
    except ValueError:
        return None
