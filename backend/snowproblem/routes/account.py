"""
Account routes - profile management, onboarding and notifications
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from ..db import get_db
from ..models import Notification as NotificationModel, Profile
from ..schemas import (
    NearbyProviderResponse,
    Notification,
    OnboardingRequest,
    ProfileUpdateRequest,
    UserProfile,
)
from ..auth import get_current_user
from ..services import notifications as notification_service
from ..services import profiles as profile_service

router = APIRouter(prefix="/account", tags=["Account"])


def profile_to_schema(profile: Profile) -> UserProfile:
    return UserProfile(
        id=profile.id,
        email=profile.email or None,
        fullName=profile.full_name,
        phone=profile.phone,
        avatarUrl=profile.avatar_url,
        role=profile.role,
        onboarded=profile.onboarded,
        bio=profile.bio,
        equipmentTypes=profile.equipment_types,
        serviceRadiusMiles=profile.service_radius_miles,
        isAvailable=profile.is_available,
        rating=profile.rating,
        totalReviews=profile.total_reviews,
        totalJobsCompleted=profile.total_jobs_completed,
        stripeOnboardingComplete=profile.stripe_onboarding_complete,
        defaultAddress=profile.default_address,
        defaultLatitude=profile.default_latitude,
        defaultLongitude=profile.default_longitude,
    )


def notification_to_schema(notification: NotificationModel) -> Notification:
    return Notification(
        id=notification.id,
        type=notification.type,
        title=notification.title,
        message=notification.message,
        data=notification.data,
        readAt=notification.read_at,
        createdAt=notification.created_at,
    )


@router.get("/profile", response_model=UserProfile)
async def get_profile(
    current_user: Profile = Depends(get_current_user)
):
    """Get the caller's profile"""
    return profile_to_schema(current_user)


@router.put("/profile", response_model=UserProfile)
async def update_profile(
    profile_update: ProfileUpdateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update the caller's profile"""
    profile = await profile_service.update_profile(db, current_user, profile_update)
    return profile_to_schema(profile)


@router.post("/onboarding", response_model=UserProfile)
async def complete_onboarding(
    request: OnboardingRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Pick a role and fill in the basics after signing up"""
    profile = await profile_service.onboard(db, current_user, request)
    return profile_to_schema(profile)


@router.get("/providers/nearby", response_model=List[NearbyProviderResponse])
async def nearby_providers(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: float = Query(10, gt=0, le=50),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    found = await profile_service.nearby_providers(db, lat, lng, radius)
    return [
        NearbyProviderResponse(
            id=p.profile.id,
            fullName=p.profile.full_name,
            avatarUrl=p.profile.avatar_url,
            equipmentTypes=p.profile.equipment_types or [],
            rating=p.profile.rating,
            totalReviews=p.profile.total_reviews,
            distanceMiles=p.distance_miles,
        )
        for p in found
    ]


@router.get("/notifications", response_model=List[Notification])
async def list_notifications(
    unread: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    items = await notification_service.list_notifications(db, current_user.id, unread_only=unread, limit=limit)
    return [notification_to_schema(n) for n in items]


@router.post("/notifications/read-all")
async def mark_all_notifications_read(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    count = await notification_service.mark_all_read(db, current_user.id)
    return {"updated": count}


@router.post("/notifications/{notification_id}/read", response_model=Notification)
async def mark_notification_read(
    notification_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    notification = await notification_service.mark_read(db, current_user.id, notification_id)
    return notification_to_schema(notification)
