import pytest

from arena.db import session_scope
from arena.errors import ConflictError, NotFoundError, ValidationError
from arena.repositories import BettingRepository

from conftest import ALICE, BOB, CAROL, active_battle, play_rounds


def _pending_battle(battles):
    return battles.create_challenge(
        external_market_id="pm-123",
        source="polymarket",
        question="Will it rain in London tomorrow?",
        warrior_id=1,
        owner=ALICE,
        stakes=1000,
    ).battle


def _assert_pool_matches_bets(session_factory, battle_id):
    with session_scope(session_factory) as session:
        repo = BettingRepository(session)
        pool = repo.get_pool(battle_id)
        assert pool.total_warrior1_bets + pool.total_warrior2_bets == repo.total_staked(battle_id)


def test_new_pool_is_empty_with_even_odds(battles, pool):
    battle = active_battle(battles)

    view = pool.get_pool(battle.id)

    assert view.pool.betting_open
    assert view.pool.total_bettors == 0
    assert view.total_pool == 0
    assert (view.odds.warrior1_bps, view.odds.warrior2_bps) == (5000, 5000)
    assert view.user_bet is None


def test_pending_battle_pool_is_not_yet_open(battles, pool):
    battle = _pending_battle(battles)

    assert not pool.get_or_create_pool(battle.id).betting_open

    battles.accept_challenge(battle.id, warrior_id=2, owner=BOB)

    assert pool.get_or_create_pool(battle.id).betting_open


def test_pending_battle_accepts_early_bets(battles, pool):
    battle = _pending_battle(battles)

    placed = pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=True, amount=250)

    assert placed.pool.total_warrior1_bets == 250
    assert not placed.pool.betting_open

    battles.accept_challenge(battle.id, warrior_id=2, owner=BOB)
    view = pool.get_pool(battle.id, bettor=CAROL)

    assert view.pool.betting_open
    assert view.user_bet.amount == 250


def test_bets_accumulate_on_the_same_side(battles, pool, session_factory):
    battle = active_battle(battles)

    pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=True, amount=100)
    placed = pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=True, amount="150")

    assert placed.bet.amount == 250
    assert placed.pool.total_warrior1_bets == 250
    assert placed.pool.total_bettors == 1
    _assert_pool_matches_bets(session_factory, battle.id)


def test_cannot_bet_on_both_sides(battles, pool, session_factory):
    battle = active_battle(battles)
    pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=True, amount=100)

    with pytest.raises(ConflictError, match="both sides"):
        pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=False, amount=100)

    view = pool.get_pool(battle.id, bettor=CAROL)
    assert view.user_bet.amount == 100
    assert view.user_bet.bet_on_warrior1
    assert (view.pool.total_warrior1_bets, view.pool.total_warrior2_bets) == (100, 0)
    _assert_pool_matches_bets(session_factory, battle.id)


def test_odds_follow_pool_totals(battles, pool):
    battle = active_battle(battles)
    pool.place_bet(battle.id, bettor=ALICE, bet_on_warrior1=True, amount=100)
    pool.place_bet(battle.id, bettor=BOB, bet_on_warrior1=False, amount=300)

    view = pool.get_pool(battle.id, bettor=BOB.upper().replace("0X", "0x"))

    assert (view.odds.warrior1_bps, view.odds.warrior2_bps) == (2500, 7500)
    assert view.total_pool == 400
    assert view.pool.total_bettors == 2
    assert view.user_bet.bettor_address == BOB


def test_betting_closes_after_round_two(battles, pool):
    battle = active_battle(battles)
    play_rounds(battles, battle.id, [(500, 400), (500, 400)])

    with pytest.raises(ConflictError, match="closed"):
        pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=True, amount=100)

    assert not pool.get_pool(battle.id).pool.betting_open


def test_admin_close_rejects_new_bets(battles, pool):
    battle = active_battle(battles)
    pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=True, amount=100)

    closed = pool.close_betting(battle.id)

    assert not closed.betting_open
    with pytest.raises(ConflictError, match="closed"):
        pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=True, amount=100)
    assert not pool.get_pool(battle.id).pool.betting_open


def test_admin_close_survives_challenge_acceptance(battles, pool):
    battle = _pending_battle(battles)
    pool.close_betting(battle.id)

    battles.accept_challenge(battle.id, warrior_id=2, owner=BOB)

    assert not pool.get_pool(battle.id).pool.betting_open
    with pytest.raises(ConflictError, match="closed"):
        pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=True, amount=100)


def test_cancelled_battle_rejects_bets(battles, pool):
    battle = _pending_battle(battles)
    battles.cancel_challenge(battle.id)

    with pytest.raises(ConflictError):
        pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=True, amount=100)


@pytest.mark.parametrize(
    "bettor,amount",
    [("0x123", 100), (CAROL, 0), (CAROL, "12.5"), (CAROL, True)],
)
def test_place_bet_validates_input(battles, pool, bettor, amount):
    battle = active_battle(battles)

    with pytest.raises(ValidationError):
        pool.place_bet(battle.id, bettor=bettor, bet_on_warrior1=True, amount=amount)


def test_bet_on_unknown_battle_is_not_found(pool):
    with pytest.raises(NotFoundError):
        pool.place_bet("missing", bettor=CAROL, bet_on_warrior1=True, amount=100)


def test_winners_split_the_losing_pool(battles, pool):
    battle = active_battle(battles)
    pool.place_bet(battle.id, bettor=ALICE, bet_on_warrior1=True, amount=100)
    pool.place_bet(battle.id, bettor=BOB, bet_on_warrior1=False, amount=300)
    play_rounds(battles, battle.id, [(600, 400)] * 5)

    winner = pool.claim(battle.id, bettor=ALICE)
    loser = pool.claim(battle.id, bettor=BOB)

    assert winner.quote.won
    assert winner.quote.payout == 385
    assert winner.quote.fee == 15
    assert winner.bet.claimed
    assert winner.bet.payout == 385
    assert loser.quote.payout == 0
    assert not loser.quote.won
    assert winner.quote.payout + loser.quote.payout <= 400


def test_draw_refunds_stake_less_fee(battles, pool):
    battle = active_battle(battles)
    pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=False, amount=200)
    play_rounds(battles, battle.id, [(500, 500)] * 5)

    result = pool.claim(battle.id, bettor=CAROL)

    assert result.quote.is_draw
    assert result.quote.payout == 190


def test_claim_is_one_shot(battles, pool):
    battle = active_battle(battles)
    pool.place_bet(battle.id, bettor=ALICE, bet_on_warrior1=True, amount=100)
    pool.place_bet(battle.id, bettor=BOB, bet_on_warrior1=False, amount=300)
    play_rounds(battles, battle.id, [(600, 400)] * 5)
    pool.claim(battle.id, bettor=ALICE)

    with pytest.raises(ConflictError, match="Already claimed"):
        pool.claim(battle.id, bettor=ALICE)

    assert pool.get_pool(battle.id, bettor=ALICE).user_bet.payout == 385


def test_claim_before_completion_conflicts(battles, pool):
    battle = active_battle(battles)
    pool.place_bet(battle.id, bettor=CAROL, bet_on_warrior1=True, amount=100)

    with pytest.raises(ConflictError, match="not completed"):
        pool.claim(battle.id, bettor=CAROL)


def test_claim_without_bet_is_not_found(battles, pool):
    battle = active_battle(battles)
    pool.place_bet(battle.id, bettor=ALICE, bet_on_warrior1=True, amount=100)
    play_rounds(battles, battle.id, [(600, 400)] * 5)

    with pytest.raises(NotFoundError):
        pool.claim(battle.id, bettor=CAROL)


def test_quote_previews_without_claiming(battles, pool):
    battle = active_battle(battles)
    pool.place_bet(battle.id, bettor=ALICE, bet_on_warrior1=True, amount=100)
    pool.place_bet(battle.id, bettor=BOB, bet_on_warrior1=False, amount=300)
    play_rounds(battles, battle.id, [(600, 400)] * 5)

    quote = pool.quote(battle.id, bettor=ALICE)

    assert quote.payout == 385
    assert not pool.get_pool(battle.id, bettor=ALICE).user_bet.claimed
