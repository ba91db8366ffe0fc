"""Repository abstractions for database interactions."""

from .battle_repository import BattleRepository
from .betting_repository import BettingRepository
from .market_repository import MarketRepository
from .resolution_repository import ResolutionRepository
from .types import BattlePage

__all__ = [
    "BattlePage",
    "BattleRepository",
    "BettingRepository",
    "MarketRepository",
    "ResolutionRepository",
]
