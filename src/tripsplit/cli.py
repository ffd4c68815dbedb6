from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Optional, Sequence

from tripsplit.config import get_settings
from tripsplit.db.repo import Database, TripSplitRepository
from tripsplit.logging import configure_logging, get_logger
from tripsplit.services.expenses import ExpenseService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tripsplit-balances", description="Print who owes whom in a travel group.")
    parser.add_argument("group_id")
    parser.add_argument("--trip", dest="trip_id", default=None, help="limit the balance sheet to one trip")
    return parser


async def run(group_id: str, trip_id: Optional[str]) -> dict:
    settings = get_settings()
    configure_logging(settings.log_level)
    db = Database(settings.database_url)
    await db.connect()
    repo = TripSplitRepository(db)
    service = ExpenseService(
        repo,
        repo,
        repo,
        tolerance=settings.split_tolerance,
        policy=settings.custom_split_policy,
        recent_limit=settings.recent_externals_limit,
    )

    log = get_logger(__name__)
    log.info("balances.start", group_id=group_id, trip_id=trip_id)
    try:
        return await service.trip_balances(group_id, trip_id)
    finally:
        await db.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        payload = asyncio.run(run(args.group_id, args.trip_id))
    except LookupError as exc:
        print(f"not found: {exc}", file=sys.stderr)
        return 1
    json.dump(payload, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
