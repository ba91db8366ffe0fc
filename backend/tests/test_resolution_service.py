from datetime import timedelta

import pytest

from arena.db import session_scope
from arena.domain import MirrorResolution, OracleOutcome
from arena.errors import (
    ConflictError,
    NotFoundError,
    NotReadyError,
    UpstreamError,
    ValidationError,
)
from arena.models import ExternalMarket, MirrorMarket, ResolutionStatus, utcnow
from arena.repositories import MarketRepository, ResolutionRepository

from conftest import MIRROR_KEY, ready_time


def _schedule(scheduler, market, **overrides):
    params = dict(
        external_market_id=market.id,
        scheduled_time=ready_time(),
        oracle_source="polymarket",
        mirror_key=MIRROR_KEY,
    )
    params.update(overrides)
    return scheduler.schedule(**params)


def _acquire(session_factory, resolution_id, *, lease_expires_at):
    with session_scope(session_factory) as session:
        lease_token = ResolutionRepository(session).acquire(resolution_id, lease_expires_at=lease_expires_at)
    assert lease_token
    return lease_token


def test_schedule_creates_pending_resolution(scheduler, external_market):
    resolution = _schedule(scheduler, external_market, creator="ops")

    assert resolution.status == ResolutionStatus.PENDING.value
    assert resolution.attempts == 0
    assert resolution.creator == "ops"
    assert resolution.mirror_key == MIRROR_KEY


def test_schedule_defaults_creator_to_system(scheduler, external_market):
    resolution = _schedule(scheduler, external_market, mirror_key=None)

    assert resolution.creator == "system"
    assert resolution.mirror_key is None


def test_schedule_rejects_past_times(scheduler, external_market):
    with pytest.raises(ValidationError, match="in the future"):
        _schedule(scheduler, external_market, scheduled_time=utcnow() - timedelta(minutes=5))


def test_schedule_rejects_unknown_oracle(scheduler, external_market):
    with pytest.raises(ValidationError):
        _schedule(scheduler, external_market, oracle_source="chainlink")


def test_schedule_requires_known_market_and_mirror(scheduler, external_market):
    with pytest.raises(NotFoundError, match="External market"):
        _schedule(scheduler, external_market, external_market_id="missing")
    with pytest.raises(NotFoundError, match="Mirror market"):
        _schedule(scheduler, external_market, mirror_key="0x" + "00" * 32)


def test_second_open_resolution_for_market_conflicts(scheduler, external_market):
    first = _schedule(scheduler, external_market)

    with pytest.raises(ConflictError) as excinfo:
        _schedule(scheduler, external_market, scheduled_time=utcnow() + timedelta(hours=1))

    assert excinfo.value.details["existing_resolution_id"] == first.id


def test_cancelled_resolution_frees_the_market(scheduler, external_market):
    first = _schedule(scheduler, external_market)
    scheduler.cancel(first.id)

    second = _schedule(scheduler, external_market)

    assert second.id != first.id


def test_execute_before_time_is_not_ready(scheduler, external_market, oracle):
    resolution = _schedule(scheduler, external_market, scheduled_time=utcnow() + timedelta(minutes=10))

    with pytest.raises(NotReadyError) as excinfo:
        scheduler.execute(resolution.id)

    assert excinfo.value.details["minutes_remaining"] == 10
    assert "10 minute(s) remaining" in excinfo.value.message
    stored = scheduler.get(resolution.id)
    assert stored.status == ResolutionStatus.PENDING.value
    assert stored.attempts == 0
    oracle.fetch_outcome.assert_not_called()


def test_execute_resolves_market_and_mirror(scheduler, external_market, oracle, mirror_resolver, session_factory):
    oracle.fetch_outcome.return_value = OracleOutcome(resolved=True, outcome="yes")
    mirror_resolver.resolve.return_value = MirrorResolution(tx_hash="0xfeed")
    resolution = _schedule(scheduler, external_market)

    result = scheduler.execute(resolution.id)

    oracle.fetch_outcome.assert_called_once_with("polymarket", "pm-123")
    mirror_resolver.resolve.assert_called_once_with(MIRROR_KEY, True)
    assert result.outcome is True
    assert result.mirror_tx_hash == "0xfeed"
    assert result.message == "Market resolved with outcome: YES"
    assert result.resolution.status == ResolutionStatus.COMPLETED.value
    assert result.resolution.attempts == 1
    assert result.resolution.executed_at is not None
    assert result.resolution.lease_expires_at is None

    with session_scope(session_factory) as session:
        market = session.get(ExternalMarket, external_market.id)
        assert (market.status, market.outcome) == ("resolved", "yes")
        mirror = MarketRepository(session).get_mirror_market(MIRROR_KEY)
        assert mirror.resolved
        assert mirror.resolution_tx_hash == "0xfeed"


def test_unresolved_market_returns_to_pending(scheduler, external_market, oracle):
    oracle.fetch_outcome.return_value = OracleOutcome(
        resolved=False, error="Market not yet resolved on Polymarket"
    )
    resolution = _schedule(scheduler, external_market)

    with pytest.raises(UpstreamError) as excinfo:
        scheduler.execute(resolution.id)

    assert excinfo.value.can_retry
    stored = scheduler.get(resolution.id)
    assert stored.status == ResolutionStatus.PENDING.value
    assert stored.attempts == 1
    assert stored.last_error == "Market not yet resolved on Polymarket"
    assert stored.lease_expires_at is None


def test_oracle_transport_failure_returns_to_pending(scheduler, external_market, oracle):
    oracle.fetch_outcome.side_effect = UpstreamError("gateway timeout", can_retry=True)
    resolution = _schedule(scheduler, external_market)

    with pytest.raises(UpstreamError):
        scheduler.execute(resolution.id)

    stored = scheduler.get(resolution.id)
    assert stored.status == ResolutionStatus.PENDING.value
    assert stored.last_error == "gateway timeout"


def test_oracle_crash_is_reported_as_retryable(scheduler, external_market, oracle):
    oracle.fetch_outcome.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
    resolution = _schedule(scheduler, external_market)

    with pytest.raises(UpstreamError) as excinfo:
        scheduler.execute(resolution.id)

    payload = excinfo.value.to_payload()
    assert payload["canRetry"] is True
    assert payload["code"] == "upstream_error"
    assert "Failed to fetch outcome" in payload["error"]
    stored = scheduler.get(resolution.id)
    assert stored.status == ResolutionStatus.PENDING.value
    assert stored.last_error.startswith("Expecting value")


def test_mirror_failure_does_not_undo_resolution(scheduler, external_market, oracle, mirror_resolver, session_factory):
    oracle.fetch_outcome.return_value = OracleOutcome(resolved=True, outcome="no")
    mirror_resolver.resolve.side_effect = UpstreamError("reverted")
    resolution = _schedule(scheduler, external_market)

    result = scheduler.execute(resolution.id)

    assert result.outcome is False
    assert result.mirror_tx_hash is None
    assert result.resolution.status == ResolutionStatus.COMPLETED.value
    with session_scope(session_factory) as session:
        assert not MarketRepository(session).get_mirror_market(MIRROR_KEY).resolved


def test_completed_resolution_cannot_run_or_cancel_again(scheduler, external_market, oracle):
    oracle.fetch_outcome.return_value = OracleOutcome(resolved=True, outcome="yes")
    resolution = _schedule(scheduler, external_market, mirror_key=None)
    scheduler.execute(resolution.id)

    with pytest.raises(ConflictError, match="already been completed"):
        scheduler.execute(resolution.id)
    with pytest.raises(ConflictError, match="completed"):
        scheduler.cancel(resolution.id)
    assert oracle.fetch_outcome.call_count == 1


def test_executing_resolution_is_exclusive(scheduler, external_market, oracle, session_factory):
    resolution = _schedule(scheduler, external_market)
    _acquire(session_factory, resolution.id, lease_expires_at=utcnow() + timedelta(minutes=5))

    with pytest.raises(ConflictError, match="already being executed"):
        scheduler.execute(resolution.id)
    with pytest.raises(ConflictError, match="currently executing"):
        scheduler.cancel(resolution.id)
    oracle.fetch_outcome.assert_not_called()


def test_cancelled_resolution_cannot_execute(scheduler, external_market, oracle):
    resolution = _schedule(scheduler, external_market)

    cancelled = scheduler.cancel(resolution.id)

    assert cancelled.status == ResolutionStatus.CANCELLED.value
    with pytest.raises(ConflictError, match="cancelled"):
        scheduler.execute(resolution.id)
    with pytest.raises(ConflictError):
        scheduler.cancel(resolution.id)


def test_unknown_resolution_is_not_found(scheduler):
    with pytest.raises(NotFoundError):
        scheduler.execute("missing")
    with pytest.raises(NotFoundError):
        scheduler.cancel("missing")


def test_internal_oracle_needs_manual_outcome(scheduler, external_market, oracle):
    resolution = _schedule(scheduler, external_market, oracle_source="internal", mirror_key=None)

    with pytest.raises(UpstreamError, match="manual outcome"):
        scheduler.execute(resolution.id)

    result = scheduler.execute(resolution.id, manual_outcome=False)

    assert result.outcome is False
    assert result.resolution.attempts == 2
    oracle.fetch_outcome.assert_not_called()


def test_manual_outcome_rejected_for_external_oracles(scheduler, external_market):
    resolution = _schedule(scheduler, external_market)

    with pytest.raises(ValidationError):
        scheduler.execute(resolution.id, manual_outcome=True)

    assert scheduler.get(resolution.id).attempts == 0


def test_reclaim_stale_returns_expired_leases(scheduler, external_market, session_factory):
    resolution = _schedule(scheduler, external_market)
    _acquire(session_factory, resolution.id, lease_expires_at=utcnow() - timedelta(minutes=1))

    assert scheduler.reclaim_stale() == 1

    stored = scheduler.get(resolution.id)
    assert stored.status == ResolutionStatus.PENDING.value
    assert stored.last_error
    assert scheduler.reclaim_stale() == 0


def test_reclaimed_worker_cannot_finish_the_new_attempt(scheduler, external_market, session_factory):
    resolution = _schedule(scheduler, external_market)
    stale_token = _acquire(session_factory, resolution.id, lease_expires_at=utcnow() - timedelta(minutes=1))
    assert scheduler.reclaim_stale() == 1
    fresh_token = _acquire(session_factory, resolution.id, lease_expires_at=utcnow() + timedelta(minutes=5))
    assert fresh_token != stale_token

    with session_scope(session_factory) as session:
        repo = ResolutionRepository(session)
        assert not repo.complete(resolution.id, lease_token=stale_token, outcome=True, executed_at=utcnow())
        assert not repo.release(resolution.id, lease_token=stale_token, error="late")

    stored = scheduler.get(resolution.id)
    assert stored.status == ResolutionStatus.EXECUTING.value
    assert stored.attempts == 2

    with session_scope(session_factory) as session:
        assert ResolutionRepository(session).complete(
            resolution.id, lease_token=fresh_token, outcome=True, executed_at=utcnow()
        )
    assert scheduler.get(resolution.id).status == ResolutionStatus.COMPLETED.value


def test_fail_exhausted_only_after_max_attempts(scheduler, external_market, oracle):
    oracle.fetch_outcome.return_value = OracleOutcome(resolved=False, error="not yet")
    resolution = _schedule(scheduler, external_market)

    for _ in range(2):
        with pytest.raises(UpstreamError):
            scheduler.execute(resolution.id)
        assert not scheduler.fail_exhausted(resolution.id, error="not yet")

    with pytest.raises(UpstreamError):
        scheduler.execute(resolution.id)
    assert scheduler.fail_exhausted(resolution.id, error="not yet")

    stored = scheduler.get(resolution.id)
    assert stored.status == ResolutionStatus.FAILED.value
    with pytest.raises(ConflictError):
        scheduler.execute(resolution.id)
    assert scheduler.cancel(resolution.id).status == ResolutionStatus.CANCELLED.value


def test_list_resolutions_by_bucket(scheduler, external_market, session_factory):
    ready = _schedule(scheduler, external_market)
    with session_scope(session_factory) as session:
        other = MarketRepository(session).upsert_external_market(
            source="kalshi", external_id="KX-RAIN", question="Rain?"
        )
    later = _schedule(
        scheduler,
        other,
        oracle_source="kalshi",
        mirror_key=None,
        scheduled_time=utcnow() + timedelta(hours=2),
    )

    assert [item.id for item in scheduler.list_resolutions(status="ready")] == [ready.id]
    assert {item.id for item in scheduler.list_resolutions()} == {ready.id, later.id}
    assert {item.id for item in scheduler.list_resolutions(status="pending")} == {ready.id, later.id}
    assert [item.id for item in scheduler.list_resolutions(external_market_id=other.id)] == [later.id]
    assert [item.id for item in scheduler.list_resolutions(resolution_id=later.id)] == [later.id]

    with pytest.raises(ValidationError):
        scheduler.list_resolutions(status="bogus")
