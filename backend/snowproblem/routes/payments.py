"""
Payout routes - hosted onboarding for provider payout accounts
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from ..models import Profile
from ..schemas import PayoutLinkResponse
from ..auth import get_current_provider
from ..services import payments as payment_service

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/connect", response_model=PayoutLinkResponse)
async def start_payout_onboarding(
    request: Request,
    current_user: Profile = Depends(get_current_provider),
    db: AsyncSession = Depends(get_db)
):
    """Create the payout account if needed and return the hosted onboarding link"""
    callback_url = str(request.url_for("finish_payout_onboarding"))
    url = await payment_service.start_onboarding(db, current_user, callback_url)
    return PayoutLinkResponse(url=url)


@router.get("/connect/callback")
async def finish_payout_onboarding(
    current_user: Profile = Depends(get_current_provider),
    db: AsyncSession = Depends(get_db)
):
    """Landing point after hosted onboarding; redirects back into the app"""
    redirect_to = await payment_service.finish_onboarding(db, current_user)
    return RedirectResponse(url=redirect_to, status_code=303)
