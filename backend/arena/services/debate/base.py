"""Contract for debate engines that play a single battle round."""

from __future__ import annotations

from typing import Protocol, Sequence

from arena.domain import MarketContext, PriorRound, RoundResult, WarriorTraits


class DebateEngine(Protocol):
    """Pure function of its inputs: no persistence, no side effects."""

    def run_round(
        self,
        traits1: WarriorTraits,
        traits2: WarriorTraits,
        market: MarketContext,
        round_number: int,
        prior_rounds: Sequence[PriorRound],
    ) -> RoundResult:
        """Return both sides' arguments, evidence, moves and scores for ``round_number``."""
