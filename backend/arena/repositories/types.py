"""Shared repository result types."""

from __future__ import annotations

from dataclasses import dataclass, field

from arena.models import PredictionBattle


@dataclass(slots=True)
class BattlePage:
    """A window of battles plus the unpaginated total for the same filters."""

    battles: list[PredictionBattle] = field(default_factory=list)
    total: int = 0
    limit: int = 0
    offset: int = 0


__all__ = ["BattlePage"]
