"""Cron entry point that reclaims stale leases and executes ready scheduled resolutions."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from arena.core.config import Settings, get_settings
from arena.db import SessionFactory, init_db, session_scope
from arena.errors import ArenaError, ConflictError, NotReadyError, UpstreamError
from arena.models import OracleSource, utcnow
from arena.repositories import ResolutionRepository
from arena.services.mirror import Web3MirrorResolver
from arena.services.resolution_service import ScheduledResolutionScheduler
from oracles.service import OracleAdapter


@dataclass(slots=True)
class SweepSummary:
    reclaimed: int = 0
    checked: int = 0
    executed: int = 0
    retried: int = 0
    not_ready: int = 0
    skipped: int = 0
    awaiting_manual: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reclaimed": self.reclaimed,
            "checked": self.checked,
            "executed": self.executed,
            "retried": self.retried,
            "not_ready": self.not_ready,
            "skipped": self.skipped,
            "awaiting_manual": self.awaiting_manual,
            "failed": self.failed,
            "errors": self.errors,
        }


class ResolutionSweep:
    """Drive pending resolutions forward without a caller in the loop."""

    def __init__(
        self,
        scheduler: ScheduledResolutionScheduler,
        *,
        session_factory: SessionFactory | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def run(self, *, batch_size: int | None = None, now: datetime | None = None) -> SweepSummary:
        summary = SweepSummary()
        batch_size = batch_size or self.settings.resolution_sweep_batch_size
        now = now or utcnow()

        summary.reclaimed = self.scheduler.reclaim_stale(now)

        with session_scope(self.session_factory) as session:
            ready = [
                (item.id, item.oracle_source)
                for item in ResolutionRepository(session).list_ready(now=now, limit=batch_size)
            ]

        logger.info(
            "Starting resolution sweep: {} ready (batch_size={}), {} reclaimed",
            len(ready),
            batch_size,
            summary.reclaimed,
        )

        for resolution_id, oracle_source in ready:
            summary.checked += 1
            if oracle_source == OracleSource.INTERNAL.value:
                summary.awaiting_manual += 1
                continue

            try:
                self.scheduler.execute(resolution_id)
            except NotReadyError:
                summary.not_ready += 1
            except ConflictError as exc:
                # Another worker got there first, or the row left pending meanwhile.
                logger.info("Skipping resolution {}: {}", resolution_id, exc.message)
                summary.skipped += 1
            except UpstreamError as exc:
                summary.retried += 1
                if self.scheduler.fail_exhausted(resolution_id, error=exc.message):
                    summary.failed += 1
            except ArenaError as exc:
                summary.errors.append({"resolution_id": resolution_id, "error": exc.message, "code": exc.code})
                if self.scheduler.fail_exhausted(resolution_id, error=exc.message):
                    summary.failed += 1
            else:
                summary.executed += 1

        logger.info(
            "Resolution sweep finished: checked={}, executed={}, retried={}, failed={}",
            summary.checked,
            summary.executed,
            summary.retried,
            summary.failed,
        )
        return summary


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Execute scheduled market resolutions whose time has arrived",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Maximum number of ready resolutions to execute in this sweep",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args()


def _write_summary(summary: SweepSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Sweep summary written to {}", path)


def main() -> SweepSummary:
    args = _parse_args()
    settings = get_settings()
    init_db()

    oracle = OracleAdapter()
    mirror = Web3MirrorResolver(settings=settings) if settings.mirror_contract_address else None
    scheduler = ScheduledResolutionScheduler(oracle=oracle, mirror_resolver=mirror, settings=settings)
    try:
        summary = ResolutionSweep(scheduler, settings=settings).run(batch_size=args.batch_size)
    finally:
        oracle.close()

    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
