import argparse

from loguru import logger

from arena.db import init_db
from arena.errors import ArenaError
from oracles.service import VENUES, OracleAdapter, sync_market


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Cache Polymarket or Kalshi markets so resolutions can be scheduled against them"
    )
    parser.add_argument("--source", choices=VENUES, required=True, help="Venue the markets live on")
    parser.add_argument(
        "--id",
        dest="external_ids",
        action="append",
        required=True,
        metavar="EXTERNAL_ID",
        help="Venue market id or ticker (repeatable)",
    )
    parser.add_argument(
        "--mirror-key",
        default=None,
        help="bytes32 key of the on-chain mirror market (only with a single --id)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    if args.mirror_key and len(args.external_ids) > 1:
        raise SystemExit("--mirror-key can only be combined with a single --id")
    init_db()

    synced = 0
    adapter = OracleAdapter()
    try:
        for external_id in args.external_ids:
            try:
                sync_market(adapter, args.source, external_id, mirror_key=args.mirror_key)
            except ArenaError as exc:
                logger.warning("Skipping {} market {}: {}", args.source, external_id, exc.message)
                continue
            synced += 1
    finally:
        adapter.close()

    logger.info("Synced {} of {} markets", synced, len(args.external_ids))


if __name__ == "__main__":
    main()
