import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls):
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


class UserRole(str, enum.Enum):
    PROPERTY_OWNER = "property_owner"
    VEHICLE_OWNER = "vehicle_owner"
    SERVICE_PROVIDER = "service_provider"


REQUESTER_ROLES = (UserRole.PROPERTY_OWNER, UserRole.VEHICLE_OWNER)


class EquipmentType(str, enum.Enum):
    SHOVEL = "shovel"
    SNOW_BLOWER = "snow_blower"
    PLOW = "plow"
    SALT_SPREADER = "salt_spreader"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    BIDDING = "bidding"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


# provider_id and final_amount are set exactly in these states
ASSIGNED_STATUSES = (
    JobStatus.ACCEPTED,
    JobStatus.IN_PROGRESS,
    JobStatus.COMPLETED,
    JobStatus.DISPUTED,
)


class BidStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class PropertyType(str, enum.Enum):
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    role = Column(_enum(UserRole), nullable=False, default=UserRole.PROPERTY_OWNER)
    onboarded = Column(Boolean, nullable=False, default=False)

    equipment_types = Column(JSON, nullable=True)
    service_radius_miles = Column(Integer, nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)
    rating = Column(Float, nullable=True)
    total_reviews = Column(Integer, nullable=False, default=0)
    total_jobs_completed = Column(Integer, nullable=False, default=0)
    bio = Column(Text, nullable=True)

    stripe_account_id = Column(String, nullable=True)
    stripe_onboarding_complete = Column(Boolean, nullable=False, default=False)

    default_latitude = Column(Float, nullable=True)
    default_longitude = Column(Float, nullable=True)
    default_address = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def is_provider(self) -> bool:
        return self.role == UserRole.SERVICE_PROVIDER


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True, default=_uuid)
    owner_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    provider_id = Column(String, ForeignKey("profiles.id"), nullable=True, index=True)
    status = Column(_enum(JobStatus), nullable=False, default=JobStatus.BIDDING, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    address = Column(String, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    property_type = Column(_enum(PropertyType), nullable=False, default=PropertyType.RESIDENTIAL)
    areas = Column(JSON, nullable=False, default=list)
    estimated_sqft = Column(Integer, nullable=True)

    desired_completion_time = Column(DateTime(timezone=True), nullable=False)
    is_recurring = Column(Boolean, nullable=False, default=False)

    before_photos = Column(JSON, nullable=False, default=list)
    after_photos = Column(JSON, nullable=False, default=list)

    accepted_bid_id = Column(String, nullable=True)
    final_amount = Column(Float, nullable=True)

    payment_status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_intent_id = Column(String, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    owner_confirmed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def is_participant(self, user_id: str) -> bool:
        return user_id == self.owner_id or (self.provider_id is not None and user_id == self.provider_id)

    def counterpart_of(self, user_id: str) -> str:
        return self.provider_id if user_id == self.owner_id else self.owner_id


class Bid(Base):
    __tablename__ = "bids"

    id = Column(String, primary_key=True, default=_uuid)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=False, index=True)
    provider_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    status = Column(_enum(BidStatus), nullable=False, default=BidStatus.PENDING)
    amount = Column(Float, nullable=False)
    estimated_duration_minutes = Column(Integer, nullable=False)
    message = Column(Text, nullable=True)
    can_start_immediately = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # one pending bid per provider per job
    __table_args__ = (
        Index(
            "uq_bids_pending_job_provider",
            "job_id",
            "provider_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True, default=_uuid)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=False, index=True)
    sender_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    recipient_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("job_id", "reviewer_id", name="uq_reviews_job_reviewer"),)

    id = Column(String, primary_key=True, default=_uuid)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=False, index=True)
    reviewer_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    reviewee_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
