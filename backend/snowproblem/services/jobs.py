from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import desc, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..db import atomic
from ..exceptions import (
    BidNotFoundError,
    ConflictError,
    InvalidRequestError,
    JobNotFoundError,
    PartialUploadError,
    PermissionDeniedError,
    TransientError,
)
from ..logger import logger
from ..models import ASSIGNED_STATUSES, Bid, BidStatus, Job, JobStatus, Profile
from ..schemas import BidCreateRequest, JobCreateRequest
from . import notifications
from .geocoding import geocode_address
from .lifecycle import (
    JobAction,
    TransitionPlan,
    check_transition,
    is_requester,
    plan_acceptance,
    plan_cancel,
    plan_completion,
    plan_confirmation,
    plan_dispute,
    plan_start,
    sort_bids,
)
from .photos import PhotoUpload, UploadBatchResult, delete_photos, upload_photos


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def get_job(db: AsyncSession, job_id: str) -> Job:
    result = await db.execute(select(Job).where(Job.id == job_id).execution_options(populate_existing=True))
    job = result.scalar_one_or_none()
    if job is None:
        raise JobNotFoundError(job_id)
    return job


async def get_bid(db: AsyncSession, bid_id: str) -> Bid:
    result = await db.execute(select(Bid).where(Bid.id == bid_id).execution_options(populate_existing=True))
    bid = result.scalar_one_or_none()
    if bid is None:
        raise BidNotFoundError(bid_id)
    return bid


async def list_bids(db: AsyncSession, job_id: str) -> List[Bid]:
    result = await db.execute(
        select(Bid)
        .where(Bid.job_id == job_id)
        .order_by(Bid.created_at, Bid.id)
        .execution_options(populate_existing=True)
    )
    return sort_bids(result.scalars().all())


async def _apply(db: AsyncSession, plan: TransitionPlan) -> None:
    """Compare-and-set write of one job row; zero matched rows means we lost a race."""
    conditions = [Job.id == plan.job_id]
    for column, value in plan.expected.items():
        attr = getattr(Job, column)
        conditions.append(attr.is_(None) if value is None else attr == value)

    result = await db.execute(
        update(Job)
        .where(*conditions)
        .values(**plan.changes)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "Job changed concurrently",
            extra={"job_id": plan.job_id, "action": plan.action.value, "expected": {k: str(v) for k, v in plan.expected.items()}},
        )
        raise ConflictError(
            f"Job {plan.job_id} was changed by someone else while applying '{plan.action.value}'",
            "CONCURRENT_UPDATE",
        )


async def _reject_pending_bids(db: AsyncSession, job_id: str, keep_bid_id: Optional[str] = None) -> List[Bid]:
    query = select(Bid).where(Bid.job_id == job_id, Bid.status == BidStatus.PENDING)
    if keep_bid_id is not None:
        query = query.where(Bid.id != keep_bid_id)
    losing = list((await db.execute(query)).scalars().all())
    if losing:
        await db.execute(
            update(Bid)
            .where(Bid.id.in_([b.id for b in losing]), Bid.status == BidStatus.PENDING)
            .values(status=BidStatus.REJECTED)
            .execution_options(synchronize_session=False)
        )
    return losing


# ===== Creation & bidding =====

async def create_job(db: AsyncSession, owner: Profile, payload: JobCreateRequest) -> Job:
    if not is_requester(owner):
        raise PermissionDeniedError("Only property or vehicle owners can post jobs")

    address = payload.address
    latitude, longitude = payload.latitude, payload.longitude
    if latitude is None or longitude is None:
        resolved = await geocode_address(payload.address)
        if resolved is None:
            raise InvalidRequestError("Please enter a valid address")
        address, latitude, longitude = resolved.address, resolved.latitude, resolved.longitude

    job = Job(
        owner_id=owner.id,
        status=JobStatus.BIDDING,
        title=payload.title,
        description=payload.description,
        address=address,
        latitude=latitude,
        longitude=longitude,
        property_type=payload.propertyType,
        areas=[area.value for area in payload.areas],
        estimated_sqft=payload.estimatedSqft,
        desired_completion_time=payload.desiredCompletionTime,
        is_recurring=payload.isRecurring,
        before_photos=[],
        after_photos=[],
    )
    async with atomic(db, "create job"):
        db.add(job)
    await db.refresh(job)

    logger.info("Job posted", extra={"job_id": job.id, "owner_id": owner.id})
    return job


async def add_before_photos(
    db: AsyncSession, owner: Profile, job_id: str, photos: Sequence[PhotoUpload]
) -> Tuple[Job, UploadBatchResult]:
    job = await get_job(db, job_id)
    check_transition(owner, job, JobAction.ADD_PHOTOS)

    if not photos:
        raise InvalidRequestError("No photos supplied")
    existing = list(job.before_photos or [])
    if len(existing) + len(photos) > settings.MAX_JOB_PHOTOS:
        raise InvalidRequestError(f"A job can have at most {settings.MAX_JOB_PHOTOS} photos")

    batch = upload_photos(job.id, photos, "before")
    if not batch.succeeded:
        raise PartialUploadError(0, batch.failed_filenames, "None of the photos could be uploaded")

    plan = TransitionPlan(
        job_id=job.id,
        action=JobAction.ADD_PHOTOS,
        expected={"status": JobStatus.BIDDING},
        changes={"before_photos": existing + batch.succeeded},
    )
    try:
        async with atomic(db, "add job photos"):
            await _apply(db, plan)
    except (ConflictError, TransientError):
        delete_photos(batch.succeeded)
        raise
    await db.refresh(job)
    return job, batch


async def _has_pending_bid(db: AsyncSession, job_id: str, provider_id: str) -> bool:
    existing = await db.execute(
        select(Bid.id).where(
            Bid.job_id == job_id,
            Bid.provider_id == provider_id,
            Bid.status == BidStatus.PENDING,
        )
    )
    return existing.first() is not None


def _duplicate_bid() -> ConflictError:
    return ConflictError(
        "You already have a pending bid on this job; withdraw it to submit a new one",
        "DUPLICATE_BID",
    )


async def submit_bid(db: AsyncSession, provider: Profile, job_id: str, payload: BidCreateRequest) -> Bid:
    """
    Place a pending bid on a job that is still open for bidding.

    The insert shares a transaction with a guarded write on the job row, so a
    bid never lands on a job that has already been assigned.
    """
    job = await get_job(db, job_id)
    check_transition(provider, job, JobAction.SUBMIT_BID)

    if await _has_pending_bid(db, job.id, provider.id):
        raise _duplicate_bid()

    bid = Bid(
        id=str(uuid.uuid4()),
        job_id=job.id,
        provider_id=provider.id,
        status=BidStatus.PENDING,
        amount=payload.amount,
        estimated_duration_minutes=payload.estimatedDurationMinutes,
        message=payload.message,
        can_start_immediately=payload.canStartImmediately,
    )
    try:
        async with atomic(db, "submit bid"):
            still_open = await db.execute(
                update(Job)
                .where(
                    Job.id == job.id,
                    Job.status == JobStatus.BIDDING,
                    Job.provider_id.is_(None),
                    Job.accepted_bid_id.is_(None),
                )
                .values(updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            if still_open.rowcount != 1:
                raise ConflictError(f"Job {job.id} is no longer accepting bids", "JOB_NOT_OPEN")

            db.add(bid)
            notifications.notify(
                db,
                job.owner_id,
                notifications.BID_RECEIVED,
                "New bid received",
                f"{provider.full_name or 'A provider'} bid ${payload.amount:.2f} on \"{job.title}\"",
                {"job_id": job.id, "bid_id": bid.id},
            )
    except ConflictError as e:
        # the unique index on pending bids caught a concurrent submission
        if isinstance(e.__cause__, IntegrityError):
            raise _duplicate_bid() from e
        raise
    await db.refresh(bid)

    logger.info("Bid submitted", extra={"job_id": job.id, "bid_id": bid.id, "provider_id": provider.id, "amount": bid.amount})
    return bid


async def withdraw_bid(db: AsyncSession, provider: Profile, job_id: str, bid_id: str) -> Bid:
    job = await get_job(db, job_id)
    bid = await get_bid(db, bid_id)
    check_transition(provider, job, JobAction.WITHDRAW_BID, bid)

    async with atomic(db, "withdraw bid"):
        result = await db.execute(
            update(Bid)
            .where(Bid.id == bid.id, Bid.status == BidStatus.PENDING)
            .values(status=BidStatus.WITHDRAWN)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Bid {bid.id} is no longer pending", "BID_NOT_PENDING")
    await db.refresh(bid)

    logger.info("Bid withdrawn", extra={"job_id": job.id, "bid_id": bid.id})
    return bid


# ===== Acceptance =====

async def accept_bid(db: AsyncSession, owner: Profile, job_id: str, bid_id: str) -> Job:
    """
    Assign the job to the provider behind `bid_id` and reject every other pending bid.

    The job write, the winning-bid write and the bulk rejection are one
    transaction. Calling again with the same bid returns the job unchanged.
    """
    job = await get_job(db, job_id)
    bid = await get_bid(db, bid_id)
    bids = await list_bids(db, job.id)

    plan = plan_acceptance(owner, job, bid, bids)
    if plan.already_applied:
        logger.info("Bid already accepted, nothing to do", extra={"job_id": job.id, "bid_id": bid.id})
        return job

    providers_by_bid: Dict[str, str] = {b.id: b.provider_id for b in bids}
    try:
        async with atomic(db, "accept bid"):
            await _apply(db, plan.job)

            result = await db.execute(
                update(Bid)
                .where(Bid.id == bid.id, Bid.job_id == job.id, Bid.status == BidStatus.PENDING)
                .values(status=BidStatus.ACCEPTED)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(f"Bid {bid.id} is no longer pending", "BID_NOT_PENDING")

            losing = await _reject_pending_bids(db, job.id, keep_bid_id=bid.id)

            notifications.notify(
                db,
                plan.provider_id,
                notifications.BID_ACCEPTED,
                "Your bid was accepted",
                f"Your ${plan.amount:.2f} bid on \"{job.title}\" was accepted",
                {"job_id": job.id, "bid_id": bid.id},
            )
            for lost in losing:
                notifications.notify(
                    db,
                    providers_by_bid.get(lost.id, lost.provider_id),
                    notifications.BID_REJECTED,
                    "Bid not selected",
                    f"Another provider was selected for \"{job.title}\"",
                    {"job_id": job.id, "bid_id": lost.id},
                )
    except ConflictError:
        # a concurrent call with the same bid may have won; that is a successful retry
        await db.refresh(job)
        if job.accepted_bid_id == bid.id:
            return job
        raise

    await db.refresh(job)
    logger.info(
        "Bid accepted",
        extra={
            "job_id": job.id,
            "bid_id": bid.id,
            "provider_id": plan.provider_id,
            "final_amount": plan.amount,
            "rejected_bids": len(losing),
        },
    )
    return job


# ===== Work & completion =====

async def start_job(db: AsyncSession, provider: Profile, job_id: str) -> Job:
    job = await get_job(db, job_id)
    plan = plan_start(provider, job)

    async with atomic(db, "start job"):
        await _apply(db, plan)
        notifications.notify(
            db,
            job.owner_id,
            notifications.JOB_STARTED,
            "Work has started",
            f"Your provider started work on \"{job.title}\"",
            {"job_id": job.id},
        )
    await db.refresh(job)

    logger.info("Job started", extra={"job_id": job.id, "provider_id": provider.id})
    return job


async def complete_job(
    db: AsyncSession, provider: Profile, job_id: str, photos: Sequence[PhotoUpload]
) -> Tuple[Job, UploadBatchResult]:
    """
    Upload proof photos, then mark the job completed with payment held.

    If none of the photos can be stored the job is left untouched and a
    PartialUploadError is raised so the provider can retry.
    """
    job = await get_job(db, job_id)
    check_transition(provider, job, JobAction.COMPLETE)

    if not photos:
        raise InvalidRequestError("Please upload at least one completion photo")
    if len(photos) > settings.MAX_JOB_PHOTOS:
        raise InvalidRequestError(f"At most {settings.MAX_JOB_PHOTOS} completion photos are allowed")

    batch = upload_photos(job.id, photos, "after")
    if not batch.succeeded:
        raise PartialUploadError(
            0,
            batch.failed_filenames,
            "None of the completion photos could be uploaded; the job was not marked complete",
        )

    plan = plan_completion(provider, job, batch.succeeded, _utcnow())
    try:
        async with atomic(db, "complete job"):
            await _apply(db, plan)
            notifications.notify(
                db,
                job.owner_id,
                notifications.JOB_COMPLETED,
                "Job completed",
                f"\"{job.title}\" was marked complete. Please review the photos and confirm.",
                {"job_id": job.id},
            )
    except (ConflictError, TransientError):
        delete_photos(batch.succeeded)
        raise
    await db.refresh(job)

    if batch.failed:
        logger.warning(
            "Job completed with some photos missing",
            extra={"job_id": job.id, "failed_photos": batch.failed_filenames},
        )
    logger.info("Job completed", extra={"job_id": job.id, "photos": len(batch.succeeded)})
    return job, batch


async def confirm_completion(db: AsyncSession, owner: Profile, job_id: str) -> Job:
    job = await get_job(db, job_id)
    plan = plan_confirmation(owner, job)

    async with atomic(db, "confirm completion"):
        await _apply(db, plan)
        await db.execute(
            update(Profile)
            .where(Profile.id == job.provider_id)
            .values(total_jobs_completed=Profile.total_jobs_completed + 1)
            .execution_options(synchronize_session=False)
        )
        notifications.notify(
            db,
            job.provider_id,
            notifications.JOB_CONFIRMED,
            "Payment released",
            f"The owner confirmed \"{job.title}\". Payment has been released.",
            {"job_id": job.id},
        )
    await db.refresh(job)

    logger.info("Job confirmed", extra={"job_id": job.id, "provider_id": job.provider_id, "final_amount": job.final_amount})
    return job


async def dispute_job(db: AsyncSession, owner: Profile, job_id: str) -> Job:
    job = await get_job(db, job_id)
    plan = plan_dispute(owner, job)

    async with atomic(db, "dispute job"):
        await _apply(db, plan)
        notifications.notify(
            db,
            job.provider_id,
            notifications.JOB_DISPUTED,
            "Job disputed",
            f"The owner disputed the completion of \"{job.title}\". We'll review this shortly.",
            {"job_id": job.id},
        )
    await db.refresh(job)

    logger.warning("Job disputed", extra={"job_id": job.id, "provider_id": job.provider_id})
    return job


# ===== Cancellation & expiry =====

async def cancel_job(db: AsyncSession, owner: Profile, job_id: str) -> Job:
    job = await get_job(db, job_id)
    plan = plan_cancel(owner, job)

    async with atomic(db, "cancel job"):
        await _apply(db, plan)
        losing = await _reject_pending_bids(db, job.id)
        for lost in losing:
            notifications.notify(
                db,
                lost.provider_id,
                notifications.BID_REJECTED,
                "Job cancelled",
                f"\"{job.title}\" was cancelled by its owner",
                {"job_id": job.id, "bid_id": lost.id},
            )
    await db.refresh(job)

    logger.info("Job cancelled", extra={"job_id": job.id, "rejected_bids": len(losing)})
    return job


async def expire_stale_jobs(db: AsyncSession, now: Optional[datetime] = None, dry_run: bool = False) -> List[str]:
    """
    Cancel jobs still collecting bids after their desired completion time.

    Pending bids on those jobs are rejected and owners are notified. Returns
    the ids of the expired jobs.
    """
    now = now or _utcnow()
    result = await db.execute(
        select(Job).where(Job.status == JobStatus.BIDDING, Job.desired_completion_time < now)
    )
    stale = list(result.scalars().all())
    if dry_run or not stale:
        return [job.id for job in stale]

    expired: List[str] = []
    async with atomic(db, "expire stale jobs"):
        for job in stale:
            cancelled = await db.execute(
                update(Job)
                .where(Job.id == job.id, Job.status == JobStatus.BIDDING, Job.accepted_bid_id.is_(None))
                .values(status=JobStatus.CANCELLED)
                .execution_options(synchronize_session=False)
            )
            if cancelled.rowcount != 1:
                continue
            losing = await _reject_pending_bids(db, job.id)
            for lost in losing:
                notifications.notify(
                    db,
                    lost.provider_id,
                    notifications.BID_REJECTED,
                    "Job expired",
                    f"\"{job.title}\" expired before a bid was accepted",
                    {"job_id": job.id, "bid_id": lost.id},
                )
            notifications.notify(
                db,
                job.owner_id,
                notifications.JOB_EXPIRED,
                "Job expired",
                f"\"{job.title}\" passed its desired completion time without an accepted bid",
                {"job_id": job.id},
            )
            expired.append(job.id)

    logger.info("Expired stale jobs", extra={"expired": len(expired), "job_ids": expired})
    return expired


# ===== Listings =====

def _owner_filter(owner_id: str, status: Optional[JobStatus] = None) -> list:
    conditions = [Job.owner_id == owner_id]
    if status is not None:
        conditions.append(Job.status == status)
    return conditions


def _provider_filter(provider_id: str, status: Optional[JobStatus] = None) -> list:
    conditions = [Job.provider_id == provider_id, Job.status.in_(ASSIGNED_STATUSES)]
    if status is not None:
        conditions.append(Job.status == status)
    return conditions


def _user_filter(user: Profile, status: Optional[JobStatus] = None) -> list:
    if user.is_provider:
        return _provider_filter(user.id, status)
    return _owner_filter(user.id, status)


async def _page(db: AsyncSession, conditions: list, limit: Optional[int], offset: int) -> List[Job]:
    query = select(Job).where(*conditions).order_by(desc(Job.created_at), Job.id).offset(offset)
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def _count(db: AsyncSession, conditions: list) -> int:
    result = await db.execute(select(func.count()).select_from(Job).where(*conditions))
    return int(result.scalar_one())


async def list_open_jobs(db: AsyncSession, limit: int = 20, offset: int = 0) -> List[Job]:
    return await _page(db, [Job.status == JobStatus.BIDDING], limit, offset)


async def count_open_jobs(db: AsyncSession) -> int:
    return await _count(db, [Job.status == JobStatus.BIDDING])


async def list_owner_jobs(
    db: AsyncSession, owner_id: str, status: Optional[JobStatus] = None, limit: Optional[int] = None, offset: int = 0
) -> List[Job]:
    return await _page(db, _owner_filter(owner_id, status), limit, offset)


async def list_provider_jobs(
    db: AsyncSession, provider_id: str, status: Optional[JobStatus] = None, limit: Optional[int] = None, offset: int = 0
) -> List[Job]:
    """Jobs assigned to the provider; a status outside the assigned ones matches nothing."""
    return await _page(db, _provider_filter(provider_id, status), limit, offset)


async def list_jobs_for(
    db: AsyncSession, user: Profile, status: Optional[JobStatus] = None, limit: Optional[int] = None, offset: int = 0
) -> List[Job]:
    return await _page(db, _user_filter(user, status), limit, offset)


async def count_jobs_for(db: AsyncSession, user: Profile, status: Optional[JobStatus] = None) -> int:
    return await _count(db, _user_filter(user, status))


@dataclass(frozen=True)
class DashboardSummary:
    recent_jobs: List[Job]
    active_count: int
    completed_count: int


async def dashboard(db: AsyncSession, user: Profile, recent: int = 5) -> DashboardSummary:
    if user.is_provider:
        recent_jobs = await list_open_jobs(db, limit=recent)
        party = Job.provider_id
    else:
        recent_jobs = await list_owner_jobs(db, user.id, limit=recent)
        party = Job.owner_id

    active = await db.execute(
        select(func.count()).select_from(Job).where(
            party == user.id, Job.status.in_((JobStatus.ACCEPTED, JobStatus.IN_PROGRESS))
        )
    )
    completed = await db.execute(
        select(func.count()).select_from(Job).where(party == user.id, Job.status == JobStatus.COMPLETED)
    )
    return DashboardSummary(
        recent_jobs=recent_jobs,
        active_count=int(active.scalar_one()),
        completed_count=int(completed.scalar_one()),
    )
