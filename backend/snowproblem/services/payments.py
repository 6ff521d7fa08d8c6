from __future__ import annotations

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..db import atomic
from ..exceptions import PermissionDeniedError, TransientError
from ..logger import logger
from ..models import Profile

ONBOARDING_SUCCESS = "/profile?stripe=success"
ONBOARDING_INCOMPLETE = "/profile?stripe=incomplete"
ONBOARDING_REFRESH = "/profile?stripe=refresh"
ONBOARDING_NO_ACCOUNT = "/profile?error=no_stripe_account"


def _client() -> None:
    stripe.api_key = settings.STRIPE_SECRET_KEY


def _app_url(path: str) -> str:
    return f"{settings.APP_URL.rstrip('/')}{path}"


async def start_onboarding(db: AsyncSession, profile: Profile, callback_url: str) -> str:
    """
    Make sure the provider has a Connect account and return the hosted onboarding URL.
    """
    if not profile.is_provider:
        raise PermissionDeniedError("Only service providers receive payouts")
    _client()

    try:
        if not profile.stripe_account_id:
            account = stripe.Account.create(
                type="express",
                email=profile.email,
                capabilities={"transfers": {"requested": True}},
                metadata={"user_id": profile.id},
            )
            async with atomic(db, "save payout account"):
                profile.stripe_account_id = account.id
            logger.info("Created payout account", extra={"user_id": profile.id, "account_id": account.id})

        link = stripe.AccountLink.create(
            account=profile.stripe_account_id,
            refresh_url=_app_url(ONBOARDING_REFRESH),
            return_url=callback_url,
            type="account_onboarding",
        )
    except stripe.StripeError as e:
        logger.error("Payout onboarding failed", extra={"user_id": profile.id, "error": str(e)})
        raise TransientError("Payment provider is unavailable, please retry") from e

    return link.url


async def finish_onboarding(db: AsyncSession, profile: Profile) -> str:
    """Check the hosted onboarding outcome and return where to send the user next."""
    if not profile.stripe_account_id:
        return _app_url(ONBOARDING_NO_ACCOUNT)
    _client()

    try:
        account = stripe.Account.retrieve(profile.stripe_account_id)
    except stripe.StripeError as e:
        logger.error("Could not retrieve payout account", extra={"user_id": profile.id, "error": str(e)})
        raise TransientError("Payment provider is unavailable, please retry") from e

    if account.details_submitted:
        async with atomic(db, "complete payout onboarding"):
            profile.stripe_onboarding_complete = True
        logger.info("Payout onboarding complete", extra={"user_id": profile.id})
        return _app_url(ONBOARDING_SUCCESS)

    return _app_url(ONBOARDING_INCOMPLETE)
