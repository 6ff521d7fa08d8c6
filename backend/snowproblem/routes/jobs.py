"""
Job routes - posting, bidding and the job lifecycle
"""
from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from ..db import get_db
from ..models import Bid as BidModel, Job as JobModel, JobStatus, Profile
from ..schemas import (
    Bid,
    BidCreateRequest,
    DashboardResponse,
    FailedPhoto,
    GeocodeResponse,
    Job,
    JobCreateRequest,
    JobDetail,
    JobListResponse,
    PaginationMeta,
    PhotoBatchResponse,
)
from ..auth import get_current_user, get_current_provider
from ..exceptions import InvalidRequestError, PermissionDeniedError
from ..logger import logger
from ..services import jobs as job_service
from ..services.geocoding import geocode_address, reverse_geocode
from ..services.photos import PhotoUpload, UploadBatchResult

router = APIRouter(prefix="/jobs", tags=["Jobs"])


def job_to_schema(job: JobModel) -> Job:
    """Convert Job model to Job schema"""
    return Job(
        id=job.id,
        ownerId=job.owner_id,
        providerId=job.provider_id,
        status=job.status,
        title=job.title,
        description=job.description,
        address=job.address,
        latitude=job.latitude,
        longitude=job.longitude,
        propertyType=job.property_type,
        areas=list(job.areas or []),
        estimatedSqft=job.estimated_sqft,
        desiredCompletionTime=job.desired_completion_time,
        isRecurring=job.is_recurring,
        beforePhotos=list(job.before_photos or []),
        afterPhotos=list(job.after_photos or []),
        acceptedBidId=job.accepted_bid_id,
        finalAmount=job.final_amount,
        paymentStatus=job.payment_status,
        completedAt=job.completed_at,
        ownerConfirmed=job.owner_confirmed,
        createdAt=job.created_at,
        updatedAt=job.updated_at,
    )


def bid_to_schema(bid: BidModel) -> Bid:
    return Bid(
        id=bid.id,
        jobId=bid.job_id,
        providerId=bid.provider_id,
        status=bid.status,
        amount=bid.amount,
        estimatedDurationMinutes=bid.estimated_duration_minutes,
        message=bid.message,
        canStartImmediately=bid.can_start_immediately,
        createdAt=bid.created_at,
    )


def _batch_response(job: JobModel, batch: UploadBatchResult) -> PhotoBatchResponse:
    return PhotoBatchResponse(
        job=job_to_schema(job),
        uploaded=len(batch.succeeded),
        failedPhotos=[FailedPhoto(filename=f.filename, reason=f.reason) for f in batch.failed],
    )


async def _read_photos(files: List[UploadFile]) -> List[PhotoUpload]:
    photos = []
    for f in files:
        if f.content_type and not f.content_type.startswith("image/"):
            raise InvalidRequestError(f"{f.filename} is not an image")
        photos.append(PhotoUpload(filename=f.filename or "photo", content_type=f.content_type, data=await f.read()))
    return photos


@router.get("", response_model=JobListResponse)
async def list_my_jobs(
    status: Optional[JobStatus] = Query(None),
    limit: int = Query(20, ge=1, le=50),
    offset: int = Query(0, ge=0),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Jobs the caller posted, or the caller is assigned to"""
    jobs = await job_service.list_jobs_for(db, current_user, status=status, limit=limit, offset=offset)
    total = await job_service.count_jobs_for(db, current_user, status=status)
    return JobListResponse(
        data=[job_to_schema(j) for j in jobs],
        meta=PaginationMeta(total=total, limit=limit, offset=offset),
    )


@router.get("/open", response_model=JobListResponse)
async def list_open_jobs(
    limit: int = Query(20, ge=1, le=50),
    offset: int = Query(0, ge=0),
    current_user: Profile = Depends(get_current_provider),
    db: AsyncSession = Depends(get_db)
):
    """Jobs currently accepting bids, newest first"""
    jobs = await job_service.list_open_jobs(db, limit=limit, offset=offset)
    total = await job_service.count_open_jobs(db)
    return JobListResponse(
        data=[job_to_schema(j) for j in jobs],
        meta=PaginationMeta(total=total, limit=limit, offset=offset),
    )


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    summary = await job_service.dashboard(db, current_user)
    return DashboardResponse(
        recentJobs=[job_to_schema(j) for j in summary.recent_jobs],
        activeCount=summary.active_count,
        completedCount=summary.completed_count,
    )


@router.get("/geocode", response_model=GeocodeResponse)
async def geocode(
    address: Optional[str] = Query(None, min_length=5),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    current_user: Profile = Depends(get_current_user),
):
    """Resolve an address to coordinates, or coordinates to an address"""
    if address:
        result = await geocode_address(address)
    elif lat is not None and lng is not None:
        result = await reverse_geocode(lat, lng)
    else:
        raise InvalidRequestError("Provide an address or a lat/lng pair")

    if result is None:
        raise InvalidRequestError("Location could not be resolved")
    return GeocodeResponse(address=result.address, latitude=result.latitude, longitude=result.longitude)


@router.post("", response_model=Job, status_code=201)
async def create_job(
    request: JobCreateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Post a new job; it opens for bidding immediately"""
    job = await job_service.create_job(db, current_user, request)
    return job_to_schema(job)


@router.get("/{job_id}", response_model=JobDetail)
async def get_job(
    job_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Job details with bids, oldest first"""
    job = await job_service.get_job(db, job_id)
    if not (job.is_participant(current_user.id) or current_user.is_provider):
        raise PermissionDeniedError("You cannot view this job")

    bids = await job_service.list_bids(db, job.id)
    if current_user.id != job.owner_id:
        bids = [b for b in bids if b.provider_id == current_user.id]

    return JobDetail(**job_to_schema(job).model_dump(), bids=[bid_to_schema(b) for b in bids])


@router.post("/{job_id}/photos", response_model=PhotoBatchResponse)
async def add_job_photos(
    job_id: str,
    photos: List[UploadFile] = File(...),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Attach "before" photos while the job is open for bids"""
    job, batch = await job_service.add_before_photos(db, current_user, job_id, await _read_photos(photos))
    return _batch_response(job, batch)


@router.post("/{job_id}/bids", response_model=Bid, status_code=201)
async def submit_bid(
    job_id: str,
    request: BidCreateRequest,
    current_user: Profile = Depends(get_current_provider),
    db: AsyncSession = Depends(get_db)
):
    bid = await job_service.submit_bid(db, current_user, job_id, request)
    return bid_to_schema(bid)


@router.post("/{job_id}/bids/{bid_id}/withdraw", response_model=Bid)
async def withdraw_bid(
    job_id: str,
    bid_id: str,
    current_user: Profile = Depends(get_current_provider),
    db: AsyncSession = Depends(get_db)
):
    bid = await job_service.withdraw_bid(db, current_user, job_id, bid_id)
    return bid_to_schema(bid)


@router.post("/{job_id}/bids/{bid_id}/accept", response_model=Job)
async def accept_bid(
    job_id: str,
    bid_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Accept one bid; every other pending bid on the job is rejected"""
    job = await job_service.accept_bid(db, current_user, job_id, bid_id)
    return job_to_schema(job)


@router.post("/{job_id}/start", response_model=Job)
async def start_job(
    job_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    job = await job_service.start_job(db, current_user, job_id)
    return job_to_schema(job)


@router.post("/{job_id}/complete", response_model=PhotoBatchResponse)
async def complete_job(
    job_id: str,
    photos: List[UploadFile] = File(...),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Upload completion photos and mark the job done; payment is held until the owner confirms"""
    job, batch = await job_service.complete_job(db, current_user, job_id, await _read_photos(photos))
    if batch.failed:
        logger.info(f"Completion of job {job_id} reported {len(batch.failed)} failed photos")
    return _batch_response(job, batch)


@router.post("/{job_id}/confirm", response_model=Job)
async def confirm_completion(
    job_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Confirm the work and release payment"""
    job = await job_service.confirm_completion(db, current_user, job_id)
    return job_to_schema(job)


@router.post("/{job_id}/dispute", response_model=Job)
async def dispute_job(
    job_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    job = await job_service.dispute_job(db, current_user, job_id)
    return job_to_schema(job)


@router.post("/{job_id}/cancel", response_model=Job)
async def cancel_job(
    job_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    job = await job_service.cancel_job(db, current_user, job_id)
    return job_to_schema(job)
