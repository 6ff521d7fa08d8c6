from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional

from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import atomic
from ..logger import logger
from ..models import Profile, UserRole
from ..schemas import OnboardingRequest, ProfileUpdateRequest

EARTH_RADIUS_MILES = 3958.8

_email_adapter = TypeAdapter(EmailStr)


@dataclass(frozen=True)
class NearbyProvider:
    profile: Profile
    distance_miles: float


def _clean_email(user_id: str, email) -> str:
    if not email:
        return ""
    try:
        return _email_adapter.validate_python(email)
    except ValidationError:
        logger.warning("Ignoring malformed email claim", extra={"user_id": user_id})
        return ""


async def get_or_create_profile(db: AsyncSession, user_id: str, email: Optional[str]) -> Profile:
    """
    Profiles mirror identities from the hosted auth provider; the row is
    created the first time an identity calls the API.
    """
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()
    if profile is not None:
        return profile

    profile = Profile(id=user_id, email=_clean_email(user_id, email), role=UserRole.PROPERTY_OWNER, onboarded=False)
    async with atomic(db, "create profile"):
        db.add(profile)
    await db.refresh(profile)
    logger.info("Profile created", extra={"user_id": user_id})
    return profile


def _apply_provider_fields(profile: Profile, equipment_types, service_radius_miles) -> None:
    if profile.role == UserRole.SERVICE_PROVIDER:
        if equipment_types is not None:
            profile.equipment_types = [e.value for e in equipment_types]
        if service_radius_miles is not None:
            profile.service_radius_miles = service_radius_miles
    else:
        profile.equipment_types = None
        profile.service_radius_miles = None


async def onboard(db: AsyncSession, profile: Profile, request: OnboardingRequest) -> Profile:
    async with atomic(db, "onboard profile"):
        profile.full_name = request.fullName
        profile.phone = request.phone
        profile.role = request.role
        _apply_provider_fields(profile, request.equipmentTypes, request.serviceRadiusMiles)
        profile.onboarded = True
    await db.refresh(profile)
    logger.info("Profile onboarded", extra={"user_id": profile.id, "role": profile.role.value})
    return profile


async def update_profile(db: AsyncSession, profile: Profile, update: ProfileUpdateRequest) -> Profile:
    async with atomic(db, "update profile"):
        if update.fullName is not None:
            profile.full_name = update.fullName
        if update.phone is not None:
            profile.phone = update.phone
        if update.bio is not None:
            profile.bio = update.bio
        if update.avatarUrl is not None:
            profile.avatar_url = update.avatarUrl
        if update.isAvailable is not None:
            profile.is_available = update.isAvailable
        if update.defaultAddress is not None:
            profile.default_address = update.defaultAddress
        if update.defaultLatitude is not None and update.defaultLongitude is not None:
            profile.default_latitude = update.defaultLatitude
            profile.default_longitude = update.defaultLongitude
        _apply_provider_fields(profile, update.equipmentTypes, update.serviceRadiusMiles)
    await db.refresh(profile)
    logger.info(f"Profile updated for user: {profile.id}")
    return profile


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(a))


async def nearby_providers(db: AsyncSession, latitude: float, longitude: float, radius_miles: float) -> List[NearbyProvider]:
    """Available providers with a known location within `radius_miles`, nearest first."""
    result = await db.execute(
        select(Profile).where(
            Profile.role == UserRole.SERVICE_PROVIDER,
            Profile.is_available.is_(True),
            Profile.default_latitude.is_not(None),
            Profile.default_longitude.is_not(None),
        )
    )
    found = []
    for profile in result.scalars().all():
        distance = haversine_miles(latitude, longitude, profile.default_latitude, profile.default_longitude)
        if distance <= radius_miles:
            found.append(NearbyProvider(profile=profile, distance_miles=round(distance, 2)))
    found.sort(key=lambda p: p.distance_miles)
    return found
