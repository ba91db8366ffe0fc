"""Time-gated, oracle-driven resolution of external markets."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from loguru import logger

from arena.core.config import Settings, settings as default_settings
from arena.db import SessionFactory, session_scope
from arena.domain import OracleOutcome
from arena.errors import (
    ArenaError,
    ConflictError,
    InternalError,
    NotFoundError,
    NotReadyError,
    UpstreamError,
    ValidationError,
)
from arena.models import OracleSource, ResolutionStatus, ScheduledResolution, ensure_utc, utcnow
from arena.repositories import MarketRepository, ResolutionRepository

from .mirror import MirrorResolver

READY_BUCKET = "ready"
ALL_BUCKET = "all"

_REJECTION_MESSAGES = {
    ResolutionStatus.COMPLETED.value: "Resolution has already been completed",
    ResolutionStatus.CANCELLED.value: "Resolution has been cancelled",
    ResolutionStatus.EXECUTING.value: "Resolution is already being executed",
    ResolutionStatus.FAILED.value: "Resolution has failed; cancel it and schedule a new one",
}

_CANCEL_REJECTIONS = {
    ResolutionStatus.COMPLETED.value: "Cannot cancel a completed resolution",
    ResolutionStatus.EXECUTING.value: "Cannot cancel a resolution that is currently executing",
    ResolutionStatus.CANCELLED.value: "Resolution has been cancelled",
}


class OutcomeOracle(Protocol):
    def fetch_outcome(self, source: str, external_id: str) -> OracleOutcome:
        ...


@dataclass(slots=True)
class ExecutionResult:
    resolution: ScheduledResolution
    outcome: bool
    mirror_tx_hash: str | None = None

    @property
    def message(self) -> str:
        return f"Market resolved with outcome: {'YES' if self.outcome else 'NO'}"


class ScheduledResolutionScheduler:
    """Schedules, executes and cancels resolutions.

    Execution is admitted by a single conditional ``pending -> executing`` update that also
    stamps a lease. The oracle is called outside any transaction; whatever goes wrong after
    admission puts the row back to ``pending`` with ``last_error`` so callers can retry.
    """

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        *,
        oracle: OutcomeOracle,
        mirror_resolver: MirrorResolver | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._oracle = oracle
        self._mirror_resolver = mirror_resolver
        self._settings = settings or default_settings

    # ------------------------------------------------------------------
    # Scheduling

    def schedule(
        self,
        *,
        external_market_id: str,
        scheduled_time: datetime,
        oracle_source: str,
        mirror_key: str | None = None,
        creator: str | None = None,
    ) -> ScheduledResolution:
        if not external_market_id:
            raise ValidationError("externalMarketId is required", field="externalMarketId")
        if oracle_source not in {item.value for item in OracleSource}:
            raise ValidationError(
                "oracleSource must be one of polymarket, kalshi, internal", field="oracleSource"
            )
        if not isinstance(scheduled_time, datetime):
            raise ValidationError("scheduledTime must be a timestamp", field="scheduledTime")

        scheduled_time = ensure_utc(scheduled_time)
        now = utcnow()
        if scheduled_time <= now - timedelta(seconds=self._settings.schedule_clock_skew_seconds):
            raise ValidationError("Scheduled time must be in the future", field="scheduledTime")

        with session_scope(self._session_factory) as session:
            markets = MarketRepository(session)
            if markets.get_external_market(external_market_id) is None:
                raise NotFoundError("External market not found", external_market_id=external_market_id)
            if mirror_key and markets.get_mirror_market(mirror_key) is None:
                raise NotFoundError("Mirror market not found", mirror_key=mirror_key)

            repo = ResolutionRepository(session)
            existing = repo.find_open_for_market(external_market_id)
            resolution = None
            if existing is None:
                resolution = repo.create_open(
                    external_market_id=external_market_id,
                    mirror_key=mirror_key or None,
                    scheduled_time=scheduled_time,
                    oracle_source=oracle_source,
                    creator=creator or "system",
                    attempts=0,
                )
                if resolution is None:
                    # Lost the race to a concurrent schedule; the partial unique index fired.
                    existing = repo.find_open_for_market(external_market_id)
            if resolution is None:
                raise ConflictError(
                    "A pending resolution already exists for this market",
                    existing_resolution_id=existing.id if existing else None,
                )
            resolution_id = resolution.id

        logger.info(
            "Resolution {} scheduled for market {} at {} via {}",
            resolution_id,
            external_market_id,
            scheduled_time.isoformat(),
            oracle_source,
        )
        return self.get(resolution_id)

    # ------------------------------------------------------------------
    # Queries

    def get(self, resolution_id: str) -> ScheduledResolution:
        with session_scope(self._session_factory) as session:
            resolution = ResolutionRepository(session).get(resolution_id)
            if resolution is None:
                raise NotFoundError("Resolution not found", resolution_id=resolution_id)
            return resolution

    def list_resolutions(
        self,
        *,
        resolution_id: str | None = None,
        external_market_id: str | None = None,
        status: str | None = None,
    ) -> list[ScheduledResolution]:
        if resolution_id:
            return [self.get(resolution_id)]

        limit = self._settings.resolution_list_limit
        with session_scope(self._session_factory) as session:
            repo = ResolutionRepository(session)
            if external_market_id:
                return repo.list_for_market(external_market_id)
            if status == READY_BUCKET:
                return repo.list_ready(now=utcnow(), limit=limit)
            if not status or status == ALL_BUCKET:
                return repo.list_by_status(None, limit=limit)
            if status not in {item.value for item in ResolutionStatus}:
                raise ValidationError(f"Unknown status filter: {status}", field="status")
            return repo.list_by_status([status], limit=limit)

    # ------------------------------------------------------------------
    # Execution

    def execute(self, resolution_id: str, *, manual_outcome: bool | None = None) -> ExecutionResult:
        now = utcnow()
        with session_scope(self._session_factory) as session:
            resolution = ResolutionRepository(session).get(resolution_id)
            if resolution is None:
                raise NotFoundError("Resolution not found", resolution_id=resolution_id)
            _reject_unexecutable(resolution, now)
            if manual_outcome is not None and resolution.oracle_source != OracleSource.INTERNAL.value:
                raise ValidationError("Manual outcomes are only accepted for the internal oracle")
            oracle_source = resolution.oracle_source
            market_id = resolution.external_market_id
            external_id = resolution.external_market.external_id
            mirror_key = resolution.mirror_key

        lease_expires_at = now + timedelta(seconds=self._settings.resolution_lease_seconds)
        with session_scope(self._session_factory) as session:
            repo = ResolutionRepository(session)
            lease_token = repo.acquire(resolution_id, lease_expires_at=lease_expires_at)
            if lease_token is None:
                current = repo.get(resolution_id)
                raise ConflictError(
                    _REJECTION_MESSAGES.get(current.status, "Resolution is not pending")
                    if current
                    else "Resolution not found"
                )

        logger.info("Resolution {} executing via {}", resolution_id, oracle_source)

        try:
            outcome = self._fetch_outcome(oracle_source, external_id, manual_outcome)
        except Exception as exc:
            self._release(resolution_id, lease_token, str(exc) or exc.__class__.__name__)
            if isinstance(exc, ArenaError):
                raise
            logger.exception("Oracle lookup for resolution {} crashed", resolution_id)
            raise UpstreamError(
                f"Failed to fetch outcome: {exc}", can_retry=True, resolution_id=resolution_id
            ) from exc

        if not outcome.is_definitive:
            error = outcome.error or "Oracle returned no definitive outcome"
            self._release(resolution_id, lease_token, error)
            raise UpstreamError(error, can_retry=True, resolution_id=resolution_id)

        value = outcome.outcome == "yes"
        executed_at = utcnow()
        try:
            with session_scope(self._session_factory) as session:
                repo = ResolutionRepository(session)
                if not repo.complete(
                    resolution_id, lease_token=lease_token, outcome=value, executed_at=executed_at
                ):
                    raise ConflictError("Resolution lease expired before completion")
                MarketRepository(session).record_outcome(
                    market_id, outcome=outcome.outcome, resolved_at=executed_at
                )
        except ConflictError:
            raise
        except Exception as exc:
            self._release(resolution_id, lease_token, f"Failed to record outcome: {exc}")
            logger.exception("Recording outcome for resolution {} failed", resolution_id)
            raise InternalError(f"Failed to record outcome: {exc}") from exc

        logger.info(
            "Resolution {} completed: market {} resolved {}",
            resolution_id,
            market_id,
            outcome.outcome,
        )

        tx_hash = self._settle_mirror(mirror_key, value) if mirror_key else None
        return ExecutionResult(resolution=self.get(resolution_id), outcome=value, mirror_tx_hash=tx_hash)

    def cancel(self, resolution_id: str) -> ScheduledResolution:
        with session_scope(self._session_factory) as session:
            repo = ResolutionRepository(session)
            resolution = repo.get(resolution_id)
            if resolution is None:
                raise NotFoundError("Resolution not found", resolution_id=resolution_id)
            if resolution.status in _CANCEL_REJECTIONS:
                raise ConflictError(_CANCEL_REJECTIONS[resolution.status])
            if not repo.cancel(resolution_id):
                current = repo.get(resolution_id)
                raise ConflictError(
                    _CANCEL_REJECTIONS.get(current.status, "Resolution can no longer be cancelled")
                )

        logger.info("Resolution {} cancelled", resolution_id)
        return self.get(resolution_id)

    def reclaim_stale(self, now: datetime | None = None) -> int:
        """Put executions whose lease elapsed back to pending."""

        with session_scope(self._session_factory) as session:
            reclaimed = ResolutionRepository(session).reclaim_expired(now=ensure_utc(now) or utcnow())
        if reclaimed:
            logger.warning("Reclaimed {} resolution(s) with expired execution leases", reclaimed)
        return reclaimed

    def fail_exhausted(self, resolution_id: str, *, error: str) -> bool:
        with session_scope(self._session_factory) as session:
            failed = ResolutionRepository(session).mark_failed(
                resolution_id, max_attempts=self._settings.resolution_max_attempts, error=error
            )
        if failed:
            logger.warning("Resolution {} marked failed after repeated attempts: {}", resolution_id, error)
        return failed

    # ------------------------------------------------------------------
    # Helpers

    def _fetch_outcome(
        self, oracle_source: str, external_id: str, manual_outcome: bool | None
    ) -> OracleOutcome:
        if oracle_source == OracleSource.INTERNAL.value:
            if manual_outcome is None:
                return OracleOutcome(resolved=False, error="Internal oracle requires manual outcome input")
            return OracleOutcome(resolved=True, outcome="yes" if manual_outcome else "no")
        return self._oracle.fetch_outcome(oracle_source, external_id)

    def _release(self, resolution_id: str, lease_token: str, error: str) -> None:
        with session_scope(self._session_factory) as session:
            released = ResolutionRepository(session).release(
                resolution_id, lease_token=lease_token, error=error
            )
        if released:
            logger.warning("Resolution {} returned to pending: {}", resolution_id, error)

    def _settle_mirror(self, mirror_key: str, outcome: bool) -> str | None:
        if self._mirror_resolver is None:
            logger.warning("No mirror resolver configured; mirror {} left unsettled", mirror_key)
            return None
        try:
            settlement = self._mirror_resolver.resolve(mirror_key, outcome)
            with session_scope(self._session_factory) as session:
                MarketRepository(session).mark_mirror_resolved(mirror_key, tx_hash=settlement.tx_hash)
        except Exception as exc:
            logger.warning("Mirror settlement for {} failed: {}", mirror_key, exc)
            return None
        return settlement.tx_hash


def _reject_unexecutable(resolution: ScheduledResolution, now: datetime) -> None:
    if resolution.status in _REJECTION_MESSAGES:
        raise ConflictError(_REJECTION_MESSAGES[resolution.status])

    remaining = (ensure_utc(resolution.scheduled_time) - now).total_seconds()
    if remaining > 0:
        minutes = math.ceil(remaining / 60)
        raise NotReadyError(
            f"Scheduled time has not arrived yet. {minutes} minute(s) remaining.",
            minutes_remaining=minutes,
        )
