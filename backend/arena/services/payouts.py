"""Parimutuel pool arithmetic.

All amounts are integer base units. Every division floors, so rounding never favours a
bettor and the payouts for one battle can never exceed what was staked into its pool.
"""

from __future__ import annotations

from arena.domain import PayoutQuote, PoolOdds

BPS_DENOMINATOR = 10_000
SHARE_SCALE = 10**18
DEFAULT_FEE_BPS = 500


def compute_odds(total_warrior1: int, total_warrior2: int) -> PoolOdds:
    total = total_warrior1 + total_warrior2
    if total <= 0:
        return PoolOdds(warrior1_bps=5000, warrior2_bps=5000)
    warrior1_bps = total_warrior1 * BPS_DENOMINATOR // total
    return PoolOdds(warrior1_bps=warrior1_bps, warrior2_bps=BPS_DENOMINATOR - warrior1_bps)


def fee_on(amount: int, fee_bps: int = DEFAULT_FEE_BPS) -> int:
    return amount * fee_bps // BPS_DENOMINATOR


def compute_payout(
    *,
    amount: int,
    bet_on_warrior1: bool,
    total_warrior1: int,
    total_warrior2: int,
    warrior1_score: int,
    warrior2_score: int,
    fee_bps: int = DEFAULT_FEE_BPS,
) -> PayoutQuote:
    if warrior1_score == warrior2_score:
        fee = fee_on(amount, fee_bps)
        return PayoutQuote(payout=amount - fee, won=False, is_draw=True, fee=fee)

    warrior1_won = warrior1_score > warrior2_score
    if warrior1_won != bet_on_warrior1:
        return PayoutQuote(payout=0, won=False, is_draw=False, fee=0)

    winning_pool = total_warrior1 if bet_on_warrior1 else total_warrior2
    losing_pool = total_warrior2 if bet_on_warrior1 else total_warrior1
    if winning_pool <= 0:
        return PayoutQuote(payout=amount, won=True, is_draw=False, fee=0)

    share = amount * SHARE_SCALE // winning_pool
    winnings = losing_pool * share // SHARE_SCALE
    fee = fee_on(winnings, fee_bps)
    return PayoutQuote(payout=amount + winnings - fee, won=True, is_draw=False, fee=fee)
