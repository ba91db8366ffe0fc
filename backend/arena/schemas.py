from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field


def _amount_to_str(value: Any) -> Any:
    # Base-unit amounts exceed what JSON numbers carry exactly; they travel as strings.
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    return value


TokenAmount = Annotated[str, BeforeValidator(_amount_to_str)]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str


# ----------------------------------------------------------------------
# Battles


class Round(BaseModel):
    round_number: int
    w1_argument: str | None = None
    w1_evidence: list[dict[str, Any]] | None = None
    w1_move: str | None = None
    w1_score: int
    w2_argument: str | None = None
    w2_evidence: list[dict[str, Any]] | None = None
    w2_move: str | None = None
    w2_score: int
    round_winner: str
    judge_reasoning: str | None = None
    started_at: datetime
    ended_at: datetime | None = None

    model_config = {"from_attributes": True}


class Battle(BaseModel):
    id: str
    external_market_id: str
    source: str
    question: str
    market_key: str | None = None
    warrior1_id: int
    warrior1_owner: str
    warrior2_id: int
    warrior2_owner: str
    stakes: TokenAmount
    warrior1_score: int
    warrior2_score: int
    status: str
    current_round: int
    is_arbitrage_battle: bool
    arbitrage_trade_id: str | None = None
    kalshi_market_id: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    rounds: list[Round] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class BattleResponse(BaseModel):
    success: bool = True
    battle: Battle
    market_key: str | None = None
    message: str | None = None


class BattleList(BaseModel):
    success: bool = True
    battles: list[Battle]
    total: int
    limit: int
    offset: int
    has_more: bool


class RoundResponse(BaseModel):
    success: bool = True
    battle: Battle
    round: Round
    completed: bool


class CreateChallengeRequest(BaseModel):
    external_market_id: str
    source: str
    question: str
    warrior_id: int
    owner: str
    stakes: int | str
    challenger_side_yes: bool = True


class CreateArbitrageBattleRequest(BaseModel):
    external_market_id: str
    kalshi_market_id: str
    question: str
    warrior1_id: int
    warrior2_id: int
    owner: str
    stakes: int | str


class AcceptChallengeRequest(BaseModel):
    warrior2_id: int
    warrior2_owner: str


class SideSubmission(BaseModel):
    argument: str | None = None
    evidence: list[dict[str, Any]] = Field(default_factory=list)
    move: str | None = None
    score: int = Field(ge=0, le=1000)


class SubmitRoundRequest(BaseModel):
    round_number: int = Field(ge=1, le=5)
    warrior1: SideSubmission
    warrior2: SideSubmission
    judge_reasoning: str | None = None


class Traits(BaseModel):
    strength: int = Field(default=5000, ge=0, le=10_000)
    wit: int = Field(default=5000, ge=0, le=10_000)
    charisma: int = Field(default=5000, ge=0, le=10_000)
    defence: int = Field(default=5000, ge=0, le=10_000)
    luck: int = Field(default=5000, ge=0, le=10_000)


class ExecuteBattleRequest(BaseModel):
    warrior1_traits: Traits | None = None
    warrior2_traits: Traits | None = None
    yes_price: float | None = Field(default=None, ge=0, le=1)


class WarriorStats(BaseModel):
    warrior_id: int
    total_battles: int
    wins: int
    losses: int
    draws: int
    arena_rating: int
    peak_rating: int
    current_streak: int
    last_battle_at: datetime | None = None

    model_config = {"from_attributes": True}


class WarriorStatsResponse(BaseModel):
    success: bool = True
    stats: WarriorStats


# ----------------------------------------------------------------------
# Betting


class Pool(BaseModel):
    battle_id: str
    total_warrior1_bets: TokenAmount
    total_warrior2_bets: TokenAmount
    total_bettors: int
    betting_open: bool

    model_config = {"from_attributes": True}


class Bet(BaseModel):
    battle_id: str
    bettor_address: str
    bet_on_warrior1: bool
    amount: TokenAmount
    claimed: bool
    payout: TokenAmount | None = None
    place_tx_hash: str | None = None
    placed_at: datetime
    claimed_at: datetime | None = None

    model_config = {"from_attributes": True}


class Odds(BaseModel):
    warrior1_bps: int
    warrior2_bps: int

    model_config = {"from_attributes": True}


class PoolResponse(BaseModel):
    success: bool = True
    pool: Pool
    odds: Odds
    total_pool: TokenAmount
    user_bet: Bet | None = None


class PlaceBetRequest(BaseModel):
    battle_id: str
    bettor_address: str
    bet_on_warrior1: bool
    amount: int | str
    tx_hash: str | None = None


class PlaceBetResponse(BaseModel):
    success: bool = True
    bet: Bet
    pool: Pool
    odds: Odds


class ClaimRequest(BaseModel):
    battle_id: str
    bettor_address: str


class ClaimResponse(BaseModel):
    success: bool = True
    bet: Bet
    payout: TokenAmount
    fee: TokenAmount
    won: bool
    is_draw: bool


class CloseBettingResponse(BaseModel):
    success: bool = True
    pool: Pool


# ----------------------------------------------------------------------
# Scheduled resolutions


class Resolution(BaseModel):
    id: str
    external_market_id: str
    mirror_key: str | None = None
    scheduled_time: datetime
    oracle_source: str
    status: str
    attempts: int
    last_error: str | None = None
    outcome: bool | None = None
    lease_expires_at: datetime | None = None
    executed_at: datetime | None = None
    creator: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ScheduleResolutionRequest(BaseModel):
    external_market_id: str
    mirror_key: str | None = None
    scheduled_time: datetime
    oracle_source: str
    creator: str | None = None


class ExecuteResolutionRequest(BaseModel):
    resolution_id: str
    manual_outcome: bool | None = None


class ResolutionResponse(BaseModel):
    success: bool = True
    resolution: Resolution
    message: str | None = None


class ResolutionList(BaseModel):
    success: bool = True
    resolutions: list[Resolution]
    count: int


class ExecuteResolutionResponse(BaseModel):
    success: bool = True
    resolution: Resolution
    outcome: bool
    mirror_tx_hash: str | None = None
    message: str
