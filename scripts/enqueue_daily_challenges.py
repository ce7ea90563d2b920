# scripts/enqueue_daily_challenges.py
"""
Enqueue one daily challenge job per owner. Meant for a once-a-day cron:

  0 0 * * *  python scripts/enqueue_daily_challenges.py --owners-file /var/lib/study/active_owners.txt

Owner ids come from --owner (repeatable), --owners-file (one per line),
or stdin when neither is given.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from api.app.config import get_settings
from db.session import get_db
from jobs.daily import enqueue_daily_challenges

logger = logging.getLogger("daily_challenges")


def _read_owner_ids(args: argparse.Namespace) -> list[str]:
    owner_ids: list[str] = list(args.owner or [])
    if args.owners_file:
        owner_ids.extend(Path(args.owners_file).read_text(encoding="utf-8").splitlines())
    if not owner_ids:
        owner_ids.extend(sys.stdin.read().splitlines())
    return owner_ids


async def run(owner_ids: list[str], subject: str | None) -> int:
    payload = {"subject": subject} if subject else {}
    count = 0
    async for db in get_db():
        jobs = await enqueue_daily_challenges(
            db,
            owner_ids,
            payload=payload,
            max_attempts=get_settings().job_max_attempts,
        )
        await db.commit()
        count = len(jobs)
    return count


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--owner", action="append", help="owner id (repeatable)")
    parser.add_argument("--owners-file", help="file with one owner id per line")
    parser.add_argument("--subject", help="subject passed to every challenge")
    args = parser.parse_args()

    count = asyncio.run(run(_read_owner_ids(args), args.subject))
    logger.info("Enqueued %d daily challenge jobs", count)


if __name__ == "__main__":
    main()
