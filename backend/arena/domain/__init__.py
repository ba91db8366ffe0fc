"""Domain values shared by services, collaborators and the API."""

from .models import (
    MAX_TRAIT_VALUE,
    MarketContext,
    MirrorResolution,
    OracleOutcome,
    PayoutQuote,
    PoolOdds,
    PriorRound,
    RoundResult,
    RoundSubmission,
    SideSubmission,
    TradeResult,
    WarriorTraits,
)

__all__ = [
    "MAX_TRAIT_VALUE",
    "MarketContext",
    "MirrorResolution",
    "OracleOutcome",
    "PayoutQuote",
    "PoolOdds",
    "PriorRound",
    "RoundResult",
    "RoundSubmission",
    "SideSubmission",
    "TradeResult",
    "WarriorTraits",
]
