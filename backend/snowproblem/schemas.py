"""
Pydantic schemas for request/response validation
"""
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum

from .models import BidStatus, EquipmentType, JobStatus, PaymentStatus, PropertyType, UserRole

# ===== Common Schemas =====

class HealthResponse(BaseModel):
    status: str

class VersionResponse(BaseModel):
    version: str

class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int = 0

# ===== Profile Schemas =====

class UserProfile(BaseModel):
    id: str
    email: Optional[EmailStr] = None
    fullName: Optional[str] = None
    phone: Optional[str] = None
    avatarUrl: Optional[str] = None
    role: UserRole
    onboarded: bool
    bio: Optional[str] = None
    equipmentTypes: Optional[List[EquipmentType]] = None
    serviceRadiusMiles: Optional[int] = None
    isAvailable: bool = True
    rating: Optional[float] = None
    totalReviews: int = 0
    totalJobsCompleted: int = 0
    stripeOnboardingComplete: bool = False
    defaultAddress: Optional[str] = None
    defaultLatitude: Optional[float] = None
    defaultLongitude: Optional[float] = None

class OnboardingRequest(BaseModel):
    fullName: str = Field(min_length=2)
    phone: Optional[str] = None
    role: UserRole
    equipmentTypes: Optional[List[EquipmentType]] = None
    serviceRadiusMiles: Optional[int] = Field(default=None, ge=1, le=50)

class ProfileUpdateRequest(BaseModel):
    fullName: Optional[str] = Field(default=None, min_length=2)
    phone: Optional[str] = None
    bio: Optional[str] = Field(default=None, max_length=1000)
    avatarUrl: Optional[str] = None
    isAvailable: Optional[bool] = None
    equipmentTypes: Optional[List[EquipmentType]] = None
    serviceRadiusMiles: Optional[int] = Field(default=None, ge=1, le=50)
    defaultAddress: Optional[str] = None
    defaultLatitude: Optional[float] = Field(default=None, ge=-90, le=90)
    defaultLongitude: Optional[float] = Field(default=None, ge=-180, le=180)

class NearbyProviderResponse(BaseModel):
    id: str
    fullName: Optional[str] = None
    avatarUrl: Optional[str] = None
    equipmentTypes: List[EquipmentType] = []
    rating: Optional[float] = None
    totalReviews: int = 0
    distanceMiles: float

class PayoutLinkResponse(BaseModel):
    url: str

# ===== Job Schemas =====

class JobArea(str, Enum):
    DRIVEWAY = "driveway"
    SIDEWALK = "sidewalk"
    WALKWAY = "walkway"
    STAIRS = "stairs"
    PARKING = "parking"
    PATIO = "patio"
    ROOF = "roof"
    OTHER = "other"

class JobCreateRequest(BaseModel):
    title: str = Field(min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    address: str = Field(min_length=5)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    propertyType: PropertyType = PropertyType.RESIDENTIAL
    areas: List[JobArea] = Field(min_length=1)
    estimatedSqft: Optional[int] = Field(default=None, ge=1)
    desiredCompletionTime: datetime
    isRecurring: bool = False

    @field_validator("desiredCompletionTime")
    @classmethod
    def completion_time_must_be_future(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("Desired completion time must be in the future")
        return v

    @field_validator("areas")
    @classmethod
    def dedupe_areas(cls, v: List[JobArea]) -> List[JobArea]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def coordinates_come_in_pairs(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        return self

class BidCreateRequest(BaseModel):
    amount: float = Field(ge=1)
    estimatedDurationMinutes: int = Field(ge=5)
    message: Optional[str] = Field(default=None, max_length=500)
    canStartImmediately: bool = False

class Bid(BaseModel):
    id: str
    jobId: str
    providerId: str
    status: BidStatus
    amount: float
    estimatedDurationMinutes: int
    message: Optional[str] = None
    canStartImmediately: bool
    createdAt: Optional[datetime] = None

class Job(BaseModel):
    id: str
    ownerId: str
    providerId: Optional[str] = None
    status: JobStatus
    title: str
    description: Optional[str] = None
    address: str
    latitude: float
    longitude: float
    propertyType: PropertyType
    areas: List[str]
    estimatedSqft: Optional[int] = None
    desiredCompletionTime: datetime
    isRecurring: bool
    beforePhotos: List[str] = []
    afterPhotos: List[str] = []
    acceptedBidId: Optional[str] = None
    finalAmount: Optional[float] = None
    paymentStatus: PaymentStatus
    completedAt: Optional[datetime] = None
    ownerConfirmed: bool
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

class JobDetail(Job):
    bids: List[Bid] = []

class JobListResponse(BaseModel):
    data: List[Job]
    meta: PaginationMeta

class FailedPhoto(BaseModel):
    filename: str
    reason: str

class PhotoBatchResponse(BaseModel):
    job: Job
    uploaded: int
    failedPhotos: List[FailedPhoto] = []

class DashboardResponse(BaseModel):
    recentJobs: List[Job]
    activeCount: int
    completedCount: int

class GeocodeResponse(BaseModel):
    address: str
    latitude: float
    longitude: float

# ===== Messaging Schemas =====

class MessageCreateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=2000)

class Message(BaseModel):
    id: str
    jobId: str
    senderId: str
    recipientId: str
    content: str
    readAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None

class MessageThread(BaseModel):
    jobId: str
    jobTitle: str
    recipientId: str
    messages: List[Message]

class ConversationSummary(BaseModel):
    jobId: str
    jobTitle: str
    jobStatus: JobStatus
    lastMessage: Optional[Message] = None
    unreadCount: int

# ===== Review Schemas =====

class ReviewCreateRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)

class Review(BaseModel):
    id: str
    jobId: str
    reviewerId: str
    revieweeId: str
    rating: int
    comment: Optional[str] = None
    createdAt: Optional[datetime] = None

# ===== Notification Schemas =====

class Notification(BaseModel):
    id: str
    type: str
    title: str
    message: str
    data: Optional[dict] = None
    readAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
