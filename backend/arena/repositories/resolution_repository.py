"""Scheduled resolution persistence and its admission-control gates."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from arena.models import ResolutionStatus, ScheduledResolution, new_id

OPEN_STATUSES = (ResolutionStatus.PENDING.value, ResolutionStatus.EXECUTING.value)
CANCELLABLE_STATUSES = (ResolutionStatus.PENDING.value, ResolutionStatus.FAILED.value)


class ResolutionRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Queries

    def _base_query(self):
        return select(ScheduledResolution).options(
            selectinload(ScheduledResolution.external_market),
            selectinload(ScheduledResolution.mirror_market),
        )

    def get(self, resolution_id: str) -> ScheduledResolution | None:
        query = self._base_query().where(ScheduledResolution.id == resolution_id)
        return self._session.execute(query).scalar_one_or_none()

    def find_open_for_market(self, external_market_id: str) -> ScheduledResolution | None:
        query = self._base_query().where(
            ScheduledResolution.external_market_id == external_market_id,
            ScheduledResolution.status.in_(OPEN_STATUSES),
        )
        return self._session.execute(query).scalars().first()

    def list_for_market(self, external_market_id: str) -> list[ScheduledResolution]:
        query = (
            self._base_query()
            .where(ScheduledResolution.external_market_id == external_market_id)
            .order_by(ScheduledResolution.scheduled_time.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def list_by_status(
        self, statuses: Sequence[str] | None, *, limit: int
    ) -> list[ScheduledResolution]:
        query = self._base_query()
        if statuses:
            query = query.where(ScheduledResolution.status.in_(list(statuses)))
        query = query.order_by(ScheduledResolution.scheduled_time.desc()).limit(limit)
        return list(self._session.execute(query).scalars().all())

    def list_ready(self, *, now: datetime, limit: int) -> list[ScheduledResolution]:
        query = (
            self._base_query()
            .where(
                ScheduledResolution.status == ResolutionStatus.PENDING.value,
                ScheduledResolution.scheduled_time <= now,
            )
            .order_by(ScheduledResolution.scheduled_time.asc())
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())

    # ------------------------------------------------------------------
    # Mutations

    def create_open(self, **fields) -> ScheduledResolution | None:
        """Insert a pending resolution; returns ``None`` when the market already has an open one."""

        resolution = ScheduledResolution(status=ResolutionStatus.PENDING.value, **fields)
        try:
            with self._session.begin_nested():
                self._session.add(resolution)
        except IntegrityError:
            return None
        return resolution

    def acquire(self, resolution_id: str, *, lease_expires_at: datetime) -> str | None:
        """pending -> executing, counting the attempt. The single admission gate for execution.

        Returns the lease token the attempt must present to ``complete`` or ``release``,
        or ``None`` when the row was not pending.
        """

        lease_token = new_id()
        statement = (
            update(ScheduledResolution)
            .where(
                ScheduledResolution.id == resolution_id,
                ScheduledResolution.status == ResolutionStatus.PENDING.value,
            )
            .values(
                status=ResolutionStatus.EXECUTING.value,
                attempts=ScheduledResolution.attempts + 1,
                lease_expires_at=lease_expires_at,
                lease_token=lease_token,
            )
        )
        if self._session.execute(statement).rowcount != 1:
            return None
        return lease_token

    def release(self, resolution_id: str, *, lease_token: str, error: str) -> bool:
        statement = (
            update(ScheduledResolution)
            .where(
                ScheduledResolution.id == resolution_id,
                ScheduledResolution.status == ResolutionStatus.EXECUTING.value,
                ScheduledResolution.lease_token == lease_token,
            )
            .values(
                status=ResolutionStatus.PENDING.value,
                last_error=error,
                lease_expires_at=None,
                lease_token=None,
            )
        )
        return self._session.execute(statement).rowcount == 1

    def complete(
        self, resolution_id: str, *, lease_token: str, outcome: bool, executed_at: datetime
    ) -> bool:
        statement = (
            update(ScheduledResolution)
            .where(
                ScheduledResolution.id == resolution_id,
                ScheduledResolution.status == ResolutionStatus.EXECUTING.value,
                ScheduledResolution.lease_token == lease_token,
            )
            .values(
                status=ResolutionStatus.COMPLETED.value,
                outcome=outcome,
                executed_at=executed_at,
                last_error=None,
                lease_expires_at=None,
                lease_token=None,
            )
        )
        return self._session.execute(statement).rowcount == 1

    def cancel(self, resolution_id: str) -> bool:
        statement = (
            update(ScheduledResolution)
            .where(
                ScheduledResolution.id == resolution_id,
                ScheduledResolution.status.in_(CANCELLABLE_STATUSES),
            )
            .values(status=ResolutionStatus.CANCELLED.value, lease_expires_at=None, lease_token=None)
        )
        return self._session.execute(statement).rowcount == 1

    def mark_failed(self, resolution_id: str, *, max_attempts: int, error: str) -> bool:
        statement = (
            update(ScheduledResolution)
            .where(
                ScheduledResolution.id == resolution_id,
                ScheduledResolution.status == ResolutionStatus.PENDING.value,
                ScheduledResolution.attempts >= max_attempts,
            )
            .values(status=ResolutionStatus.FAILED.value, last_error=error)
        )
        return self._session.execute(statement).rowcount == 1

    def reclaim_expired(self, *, now: datetime) -> int:
        """Return abandoned executions (lease elapsed) to pending."""

        statement = (
            update(ScheduledResolution)
            .where(
                ScheduledResolution.status == ResolutionStatus.EXECUTING.value,
                ScheduledResolution.lease_expires_at.is_not(None),
                ScheduledResolution.lease_expires_at < now,
            )
            .values(
                status=ResolutionStatus.PENDING.value,
                last_error="Execution lease expired before completion",
                lease_expires_at=None,
                lease_token=None,
            )
            .execution_options(synchronize_session=False)
        )
        return int(self._session.execute(statement).rowcount or 0)
