"""Typed values exchanged between the services and their collaborators."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

MAX_TRAIT_VALUE = 10_000


@dataclass(slots=True)
class WarriorTraits:
    """Warrior NFT traits on a 0..10000 scale (two implied decimals)."""

    strength: int = 5000
    wit: int = 5000
    charisma: int = 5000
    defence: int = 5000
    luck: int = 5000

    @classmethod
    def uniform(cls, value: int) -> "WarriorTraits":
        return cls(strength=value, wit=value, charisma=value, defence=value, luck=value)

    def __post_init__(self) -> None:
        for name, value in asdict(self).items():
            if not 0 <= int(value) <= MAX_TRAIT_VALUE:
                raise ValueError(f"trait {name} must be within 0..{MAX_TRAIT_VALUE}")


@dataclass(slots=True)
class MarketContext:
    question: str
    source: str
    external_market_id: str
    yes_price: float | None = None


@dataclass(slots=True)
class SideSubmission:
    """One warrior's contribution to a round."""

    argument: str | None = None
    evidence: list[dict[str, Any]] = field(default_factory=list)
    move: str | None = None
    score: int = 0


@dataclass(slots=True)
class RoundSubmission:
    round_number: int
    warrior1: SideSubmission
    warrior2: SideSubmission
    judge_reasoning: str | None = None


@dataclass(slots=True)
class RoundResult:
    """Output of a debate engine for a single round."""

    warrior1: SideSubmission
    warrior2: SideSubmission
    round_winner: str
    judge_reasoning: str

    def to_submission(self, round_number: int) -> RoundSubmission:
        return RoundSubmission(
            round_number=round_number,
            warrior1=self.warrior1,
            warrior2=self.warrior2,
            judge_reasoning=self.judge_reasoning,
        )


@dataclass(slots=True)
class PriorRound:
    round_number: int
    w1_move: str | None
    w2_move: str | None
    w1_score: int
    w2_score: int


@dataclass(slots=True)
class OracleOutcome:
    """Answer from an oracle: ``outcome`` is only meaningful when ``resolved``."""

    resolved: bool
    outcome: str | None = None
    error: str | None = None

    @property
    def is_definitive(self) -> bool:
        return self.resolved and self.outcome in {"yes", "no"}


@dataclass(slots=True)
class TradeResult:
    success: bool
    trade_id: str | None = None
    expected_profit: float | None = None
    error: str | None = None


@dataclass(slots=True)
class MirrorResolution:
    tx_hash: str


@dataclass(slots=True)
class PoolOdds:
    warrior1_bps: int
    warrior2_bps: int


@dataclass(slots=True)
class PayoutQuote:
    payout: int
    won: bool
    is_draw: bool
    fee: int
