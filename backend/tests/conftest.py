from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from arena.core.config import Settings
from arena.db import build_db_components, init_db, session_scope
from arena.domain import RoundSubmission, SideSubmission
from arena.models import utcnow
from arena.repositories import MarketRepository
from arena.services.battle_service import BattleLifecycleManager
from arena.services.betting_service import WageringPool
from arena.services.debate import TraitDebateEngine
from arena.services.resolution_service import ScheduledResolutionScheduler

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
MIRROR_KEY = "0x" + "ab" * 32


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path/'arena.db'}",
        web3_rpc_url=None,
        arbitrage_service_url=None,
        resolution_max_attempts=3,
    )


@pytest.fixture
def session_factory(test_settings):
    engine, factory = build_db_components(test_settings.resolved_database_url)
    init_db(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def battles(session_factory, test_settings) -> BattleLifecycleManager:
    return BattleLifecycleManager(
        session_factory,
        debate_engine=TraitDebateEngine(seed="tests"),
        settings=test_settings,
    )


@pytest.fixture
def pool(session_factory, test_settings) -> WageringPool:
    return WageringPool(session_factory, settings=test_settings)


@pytest.fixture
def oracle() -> MagicMock:
    return MagicMock()


@pytest.fixture
def mirror_resolver() -> MagicMock:
    return MagicMock()


@pytest.fixture
def scheduler(session_factory, test_settings, oracle, mirror_resolver) -> ScheduledResolutionScheduler:
    return ScheduledResolutionScheduler(
        session_factory,
        oracle=oracle,
        mirror_resolver=mirror_resolver,
        settings=test_settings,
    )


@pytest.fixture
def external_market(session_factory):
    """A cached Polymarket market with a mirror market attached."""

    with session_scope(session_factory) as session:
        repo = MarketRepository(session)
        market = repo.upsert_external_market(
            source="polymarket",
            external_id="pm-123",
            question="Will it rain in London tomorrow?",
        )
        repo.create_mirror_market(mirror_key=MIRROR_KEY, external_market_id=market.id)
    return market


def active_battle(battles: BattleLifecycleManager, *, stakes: int = 1000):
    created = battles.create_challenge(
        external_market_id="pm-123",
        source="polymarket",
        question="Will it rain in London tomorrow?",
        warrior_id=1,
        owner=ALICE,
        stakes=stakes,
    )
    return battles.accept_challenge(created.battle.id, warrior_id=2, owner=BOB)


def submission(round_number: int, warrior1_score: int, warrior2_score: int) -> RoundSubmission:
    return RoundSubmission(
        round_number=round_number,
        warrior1=SideSubmission(argument="yes", move="strike", score=warrior1_score),
        warrior2=SideSubmission(argument="no", move="dodge", score=warrior2_score),
        judge_reasoning=f"round {round_number}",
    )


def play_rounds(battles: BattleLifecycleManager, battle_id: str, scores, *, start: int = 1):
    result = None
    for offset, (warrior1_score, warrior2_score) in enumerate(scores):
        result = battles.submit_round(
            battle_id, submission(start + offset, warrior1_score, warrior2_score)
        )
    return result


def ready_time():
    # Inside the scheduling clock-skew tolerance, so immediately executable.
    return utcnow() - timedelta(seconds=30)
