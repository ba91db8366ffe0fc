from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from arena.domain import MirrorResolution, OracleOutcome
from arena.errors import ConflictError, NotReadyError, UpstreamError
from arena.main import _battle_service, _betting_service, _resolution_service, app
from arena.models import utcnow

from conftest import ALICE, BOB, CAROL, MIRROR_KEY


@pytest.fixture
def client():
    """Test client that cleans up dependency overrides after each test."""
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def wired_client(client, battles, pool, scheduler):
    """Client backed by real services on the per-test database."""
    app.dependency_overrides[_battle_service] = lambda: battles
    app.dependency_overrides[_betting_service] = lambda: pool
    app.dependency_overrides[_resolution_service] = lambda: scheduler
    return client


def _create_battle(client, **overrides):
    payload = {
        "external_market_id": "pm-123",
        "source": "polymarket",
        "question": "Will it rain in London tomorrow?",
        "warrior_id": 1,
        "owner": ALICE,
        "stakes": "5000000000000000",
    }
    payload.update(overrides)
    return client.post("/arena/battles", json=payload)


def _round(round_number, warrior1_score, warrior2_score):
    return {
        "round_number": round_number,
        "warrior1": {"argument": "yes", "move": "strike", "score": warrior1_score},
        "warrior2": {"argument": "no", "move": "dodge", "score": warrior2_score},
    }


def test_healthcheck(client):
    """Verify the healthcheck endpoint returns a successful response."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_battle_flow_over_http(wired_client):
    """Create, accept and play a battle end to end through the API."""
    created = _create_battle(wired_client)
    assert created.status_code == 201
    body = created.json()
    battle_id = body["battle"]["id"]
    assert body["battle"]["status"] == "pending"
    assert body["battle"]["stakes"] == "5000000000000000"
    assert body["market_key"].startswith("0x")

    accepted = wired_client.post(
        f"/arena/battles/{battle_id}/accept", json={"warrior2_id": 2, "warrior2_owner": BOB}
    )
    assert accepted.status_code == 200
    assert accepted.json()["battle"]["status"] == "active"

    for round_number in range(1, 6):
        response = wired_client.post(f"/arena/battles/{battle_id}/rounds", json=_round(round_number, 600, 400))
        assert response.status_code == 200
    assert response.json()["completed"] is True
    assert response.json()["battle"]["warrior1_score"] == 3000

    battle = wired_client.get(f"/arena/battles/{battle_id}").json()["battle"]
    assert battle["status"] == "completed"
    assert [item["round_number"] for item in battle["rounds"]] == [1, 2, 3, 4, 5]

    stats = wired_client.get("/arena/warriors/1/stats").json()["stats"]
    assert stats["wins"] == 1
    assert stats["arena_rating"] == 1016


def test_out_of_order_round_is_conflict(wired_client):
    battle_id = _create_battle(wired_client).json()["battle"]["id"]
    wired_client.post(f"/arena/battles/{battle_id}/accept", json={"warrior2_id": 2, "warrior2_owner": BOB})

    response = wired_client.post(f"/arena/battles/{battle_id}/rounds", json=_round(3, 600, 400))

    assert response.status_code == 409
    assert response.json()["success"] is False
    assert response.json()["code"] == "conflict"


def test_execute_all_plays_every_round(wired_client):
    battle_id = _create_battle(wired_client).json()["battle"]["id"]
    wired_client.post(f"/arena/battles/{battle_id}/accept", json={"warrior2_id": 2, "warrior2_owner": BOB})

    response = wired_client.post(
        f"/arena/battles/{battle_id}/execute-all",
        json={"warrior1_traits": {"strength": 9000}, "yes_price": 0.7},
    )

    assert response.status_code == 200
    assert response.json()["battle"]["status"] == "completed"
    assert response.json()["message"] == "Played 5 round(s)"


def test_invalid_owner_is_validation_error(wired_client):
    response = _create_battle(wired_client, owner="nobody")

    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


def test_missing_battle_is_404(wired_client):
    response = wired_client.get("/arena/battles/missing")

    assert response.status_code == 404
    assert response.json()["error"] == "Battle not found"


def test_betting_over_http(wired_client):
    battle_id = _create_battle(wired_client).json()["battle"]["id"]
    wired_client.post(f"/arena/battles/{battle_id}/accept", json={"warrior2_id": 2, "warrior2_owner": BOB})

    placed = wired_client.post(
        "/arena/betting",
        json={"battle_id": battle_id, "bettor_address": CAROL, "bet_on_warrior1": True, "amount": "200"},
    )
    assert placed.status_code == 200
    assert placed.json()["pool"]["total_warrior1_bets"] == "200"
    assert placed.json()["odds"] == {"warrior1_bps": 10000, "warrior2_bps": 0}

    switched = wired_client.post(
        "/arena/betting",
        json={"battle_id": battle_id, "bettor_address": CAROL, "bet_on_warrior1": False, "amount": 5},
    )
    assert switched.status_code == 409
    assert switched.json()["error"] == "Cannot bet on both sides"

    early_claim = wired_client.patch(
        "/arena/betting", json={"battle_id": battle_id, "bettor_address": CAROL}
    )
    assert early_claim.status_code == 409

    for round_number in range(1, 6):
        wired_client.post(f"/arena/battles/{battle_id}/rounds", json=_round(round_number, 500, 500))

    claimed = wired_client.patch("/arena/betting", json={"battle_id": battle_id, "bettor_address": CAROL})
    assert claimed.status_code == 200
    assert claimed.json()["payout"] == "190"
    assert claimed.json()["is_draw"] is True

    view = wired_client.get("/arena/betting", params={"battle_id": battle_id, "bettor": CAROL}).json()
    assert view["user_bet"]["claimed"] is True
    assert view["pool"]["betting_open"] is False


def test_close_betting_over_http(wired_client):
    battle_id = _create_battle(wired_client).json()["battle"]["id"]

    response = wired_client.delete("/arena/betting", params={"battle_id": battle_id})

    assert response.status_code == 200
    assert response.json()["pool"]["betting_open"] is False


def test_resolution_lifecycle_over_http(wired_client, external_market, oracle, mirror_resolver):
    oracle.fetch_outcome.return_value = OracleOutcome(resolved=True, outcome="yes")
    mirror_resolver.resolve.return_value = MirrorResolution(tx_hash="0xabc")

    scheduled = wired_client.post(
        "/flow/scheduled-resolutions",
        json={
            "external_market_id": external_market.id,
            "mirror_key": MIRROR_KEY,
            "scheduled_time": (utcnow() - timedelta(seconds=30)).isoformat(),
            "oracle_source": "polymarket",
        },
    )
    assert scheduled.status_code == 201
    assert scheduled.json()["message"] == "Resolution scheduled"
    resolution_id = scheduled.json()["resolution"]["id"]

    ready = wired_client.get("/flow/scheduled-resolutions", params={"status": "ready"}).json()
    assert ready["count"] == 1

    executed = wired_client.put("/flow/scheduled-resolutions", json={"resolution_id": resolution_id})
    assert executed.status_code == 200
    assert executed.json()["outcome"] is True
    assert executed.json()["mirror_tx_hash"] == "0xabc"
    assert executed.json()["message"] == "Market resolved with outcome: YES"

    single = wired_client.get("/flow/scheduled-resolutions", params={"id": resolution_id}).json()
    assert single["resolutions"][0]["status"] == "completed"

    cancelled = wired_client.delete("/flow/scheduled-resolutions", params={"id": resolution_id})
    assert cancelled.status_code == 409


def test_not_ready_reports_minutes_remaining(client):
    mock_service = MagicMock()
    mock_service.execute.side_effect = NotReadyError(
        "Scheduled time has not arrived yet. 5 minute(s) remaining.", minutes_remaining=5
    )
    app.dependency_overrides[_resolution_service] = lambda: mock_service

    response = client.put("/flow/scheduled-resolutions", json={"resolution_id": "r-1"})

    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "error": "Scheduled time has not arrived yet. 5 minute(s) remaining.",
        "code": "not_ready",
        "minutes_remaining": 5,
    }


def test_upstream_error_reports_retry_hint(client):
    mock_service = MagicMock()
    mock_service.execute.side_effect = UpstreamError(
        "Market not yet resolved on Polymarket", can_retry=True, resolution_id="r-1"
    )
    app.dependency_overrides[_resolution_service] = lambda: mock_service

    response = client.put("/flow/scheduled-resolutions", json={"resolution_id": "r-1"})

    assert response.status_code == 502
    assert response.json()["canRetry"] is True
    assert response.json()["resolution_id"] == "r-1"


def test_duplicate_schedule_reports_existing_id(client):
    mock_service = MagicMock()
    mock_service.schedule.side_effect = ConflictError(
        "A pending resolution already exists for this market", existing_resolution_id="r-0"
    )
    app.dependency_overrides[_resolution_service] = lambda: mock_service

    response = client.post(
        "/flow/scheduled-resolutions",
        json={
            "external_market_id": "m-1",
            "scheduled_time": "2030-01-01T00:00:00Z",
            "oracle_source": "kalshi",
        },
    )

    assert response.status_code == 409
    assert response.json()["existing_resolution_id"] == "r-0"


def test_unexpected_error_is_internal():
    mock_service = MagicMock()
    mock_service.get_battle.side_effect = RuntimeError("database exploded")
    app.dependency_overrides[_battle_service] = lambda: mock_service
    try:
        response = TestClient(app, raise_server_exceptions=False).get("/arena/battles/b-1")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json()["code"] == "internal_error"
