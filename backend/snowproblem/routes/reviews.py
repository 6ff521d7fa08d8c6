"""
Review routes
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from ..db import get_db
from ..models import Profile, Review as ReviewModel
from ..schemas import Review, ReviewCreateRequest
from ..auth import get_current_user
from ..services import reviews as review_service

router = APIRouter(tags=["Reviews"])


def review_to_schema(review: ReviewModel) -> Review:
    return Review(
        id=review.id,
        jobId=review.job_id,
        reviewerId=review.reviewer_id,
        revieweeId=review.reviewee_id,
        rating=review.rating,
        comment=review.comment,
        createdAt=review.created_at,
    )


@router.post("/jobs/{job_id}/reviews", response_model=Review, status_code=201)
async def create_review(
    job_id: str,
    request: ReviewCreateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Rate the other participant of a completed job"""
    review = await review_service.create_review(db, current_user, job_id, request.rating, request.comment)
    return review_to_schema(review)


@router.get("/profiles/{profile_id}/reviews", response_model=List[Review])
async def list_reviews(
    profile_id: str,
    limit: int = Query(20, ge=1, le=100),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    reviews = await review_service.list_reviews_for(db, profile_id, limit=limit)
    return [review_to_schema(r) for r in reviews]
