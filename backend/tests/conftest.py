import io
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from snowproblem.models import Base, Bid, BidStatus, Job, JobStatus, PaymentStatus, Profile, PropertyType, UserRole
from snowproblem.services import photos as photos_module
from snowproblem.services.photos import PhotoUpload


class DummyS3:
    def __init__(self, put_error=None, fail_keys_containing=None):
        self.put_error = put_error
        self.fail_keys_containing = fail_keys_containing
        self.put_calls = []
        self.delete_calls = []

    def put_object(self, **kwargs):
        if self.put_error and (self.fail_keys_containing is None or self.fail_keys_containing in kwargs["Key"]):
            raise self.put_error
        self.put_calls.append(kwargs)
        return {}

    def delete_object(self, **kwargs):
        self.delete_calls.append(kwargs)
        return {}


def image_bytes(fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color=(255, 255, 255)).save(buf, format=fmt)
    return buf.getvalue()


def photo(name: str = "driveway.png", data: bytes = None) -> PhotoUpload:
    return PhotoUpload(filename=name, content_type="image/png", data=data if data is not None else image_bytes())


@pytest_asyncio.fixture
async def db():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def dummy_s3(monkeypatch):
    s3 = DummyS3()
    monkeypatch.setattr(photos_module, "s3", s3)
    return s3


async def _add_profile(db, profile_id, role, name):
    profile = Profile(
        id=profile_id,
        email=f"{profile_id}@example.com",
        full_name=name,
        role=role,
        onboarded=True,
        is_available=True,
        total_reviews=0,
        total_jobs_completed=0,
        stripe_onboarding_complete=False,
    )
    db.add(profile)
    await db.commit()
    return profile


@pytest_asyncio.fixture
async def owner(db):
    return await _add_profile(db, "owner-1", UserRole.PROPERTY_OWNER, "Olive Owner")


@pytest_asyncio.fixture
async def provider(db):
    return await _add_profile(db, "provider-1", UserRole.SERVICE_PROVIDER, "Pat Plow")


@pytest_asyncio.fixture
async def rival(db):
    return await _add_profile(db, "provider-2", UserRole.SERVICE_PROVIDER, "Rita Shovel")


@pytest.fixture
def make_job(db):
    async def _make(owner, status=JobStatus.BIDDING, provider=None, due_in=timedelta(days=1), **fields):
        job = Job(
            owner_id=owner.id,
            provider_id=provider.id if provider else None,
            status=status,
            title="Clear my driveway",
            address="12 Snowy Lane, Burlington, VT",
            latitude=44.4759,
            longitude=-73.2121,
            property_type=PropertyType.RESIDENTIAL,
            areas=["driveway"],
            desired_completion_time=datetime.now(timezone.utc) + due_in,
            is_recurring=False,
            before_photos=[],
            after_photos=[],
            payment_status=PaymentStatus.PENDING,
            owner_confirmed=False,
            **fields,
        )
        db.add(job)
        await db.commit()
        await db.refresh(job)
        return job

    return _make


@pytest.fixture
def make_bid(db):
    async def _make(job, provider, amount=50.0, status=BidStatus.PENDING):
        bid = Bid(
            job_id=job.id,
            provider_id=provider.id,
            status=status,
            amount=amount,
            estimated_duration_minutes=45,
            can_start_immediately=True,
        )
        db.add(bid)
        await db.commit()
        await db.refresh(bid)
        return bid

    return _make
