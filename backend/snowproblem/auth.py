"""
Authentication dependencies

Identities live in the hosted auth provider; requests carry its access token
as a bearer JWT. We only verify the token and map its subject to a Profile.
"""
import jwt
from dataclasses import dataclass
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from .models import Profile, UserRole
from .db import get_db
from .config import settings
from .services.profiles import get_or_create_profile

security = HTTPBearer()


@dataclass(frozen=True)
class TokenIdentity:
    user_id: str
    email: Optional[str]


def decode_access_token(token: str) -> Optional[TokenIdentity]:
    """Decode an access token and return its identity, or None if it is not valid"""
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None
    return TokenIdentity(user_id=user_id, email=payload.get("email"))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Profile:
    """
    Dependency to get current authenticated user from the bearer token
    """
    identity = decode_access_token(credentials.credentials)

    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    return await get_or_create_profile(db, identity.user_id, identity.email)


async def get_current_provider(current_user: Profile = Depends(get_current_user)) -> Profile:
    if current_user.role != UserRole.SERVICE_PROVIDER:
        raise HTTPException(status_code=403, detail="Only service providers can do this")
    return current_user
