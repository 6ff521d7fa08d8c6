from __future__ import annotations

import argparse
import asyncio

from snowproblem.db import AsyncSessionLocal
from snowproblem.logger import logger
from snowproblem.services.jobs import expire_stale_jobs


async def run(*, dry_run: bool) -> list:
    async with AsyncSessionLocal() as db:
        job_ids = await expire_stale_jobs(db, dry_run=dry_run)

    logger.warning(
        "Stale job sweep finished",
        extra={"dry_run": dry_run, "count": len(job_ids), "job_ids": job_ids},
    )
    return job_ids


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Cancel jobs still collecting bids after their desired completion time."
    )
    parser.add_argument("--dry-run", action="store_true", help="Only list the jobs that would expire.")
    args = parser.parse_args()
    job_ids = asyncio.run(run(dry_run=args.dry_run))
    for job_id in job_ids:
        print(job_id)


if __name__ == "__main__":
    main()
