"""Debate engines that play battle rounds."""

from .base import DebateEngine
from .engine import TraitDebateEngine
from .scoring import DebateMove, elo_after_draw, elo_after_win

__all__ = [
    "DebateEngine",
    "DebateMove",
    "TraitDebateEngine",
    "elo_after_draw",
    "elo_after_win",
]
