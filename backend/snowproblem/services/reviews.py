from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import atomic
from ..exceptions import ConflictError, InvalidJobStateError, PermissionDeniedError
from ..logger import logger
from ..models import Job, JobStatus, Profile, Review
from .jobs import get_job


async def create_review(
    db: AsyncSession, reviewer: Profile, job_id: str, rating: int, comment: Optional[str] = None
) -> Review:
    """
    Review the other participant of a completed job.

    The reviewee's average rating and review count are recomputed in the
    same transaction.
    """
    job: Job = await get_job(db, job_id)
    if job.provider_id is None or not job.is_participant(reviewer.id):
        raise PermissionDeniedError("Only the job owner and its provider can leave a review")
    if job.status != JobStatus.COMPLETED:
        raise InvalidJobStateError(job.id, job.status.value, JobStatus.COMPLETED.value)

    existing = await db.execute(
        select(Review.id).where(Review.job_id == job.id, Review.reviewer_id == reviewer.id)
    )
    if existing.first() is not None:
        raise ConflictError("You have already reviewed this job", "DUPLICATE_REVIEW")

    reviewee_id = job.counterpart_of(reviewer.id)
    review = Review(
        id=str(uuid.uuid4()),
        job_id=job.id,
        reviewer_id=reviewer.id,
        reviewee_id=reviewee_id,
        rating=rating,
        comment=comment,
    )
    async with atomic(db, "create review"):
        db.add(review)
        await db.flush()
        stats = await db.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(Review.reviewee_id == reviewee_id)
        )
        average, count = stats.one()
        await db.execute(
            update(Profile)
            .where(Profile.id == reviewee_id)
            .values(rating=round(float(average), 2), total_reviews=int(count))
            .execution_options(synchronize_session=False)
        )
    await db.refresh(review)

    logger.info("Review created", extra={"job_id": job.id, "reviewee_id": reviewee_id, "rating": rating})
    return review


async def list_reviews_for(db: AsyncSession, profile_id: str, limit: int = 20) -> List[Review]:
    result = await db.execute(
        select(Review).where(Review.reviewee_id == profile_id).order_by(desc(Review.created_at)).limit(limit)
    )
    return list(result.scalars().all())
