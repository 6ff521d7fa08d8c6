import asyncio
import traceback
from .workers import celery_app
from .db import AsyncSessionLocal
from .services.jobs import expire_stale_jobs
from .logger import logger


@celery_app.task(bind=True, acks_late=True, max_retries=3)
def expire_stale_jobs_task(self):
    """
    Periodic sweep cancelling jobs whose bidding window ran past the desired completion time.
    """
    async def _run():
        async with AsyncSessionLocal() as db:
            try:
                expired = await expire_stale_jobs(db)
            except Exception as e:
                logger.error(
                    f"Expiry sweep failed: {str(e)}",
                    extra={"error": str(e), "traceback": traceback.format_exc()},
                )
                raise
            return {"expired": expired}

    return asyncio.run(_run())
