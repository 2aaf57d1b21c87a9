"""
Referral attribution API routes.

- GET    /api/referrals/status: Currently captured attribution
- POST   /api/referrals/capture: Capture a code from the landing URL
- DELETE /api/referrals: Clear attribution (logout)
"""
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from sharewizard.api.deps import apply_referral_cookies, get_referral_pipeline, get_visitor_id
from sharewizard.features.referrals.capture import ReferralCapturePipeline
from sharewizard.models.referral import ReferralStatus


router = APIRouter(prefix="/referrals", tags=["referrals"])


class CaptureRequest(BaseModel):
    """Query parameters of the page the visitor landed on."""
    query_params: Dict[str, str] = Field(default_factory=dict)
    ref: Optional[str] = None


@router.get("/status", response_model=ReferralStatus)
async def referral_status(
    response: Response,
    visitor_id: str = Depends(get_visitor_id),
    referrals: ReferralCapturePipeline = Depends(get_referral_pipeline),
):
    status = await referrals.status()
    # Expired attribution is purged during the read
    apply_referral_cookies(response, referrals, visitor_id)
    return status


@router.post("/capture", response_model=ReferralStatus)
async def capture(
    body: CaptureRequest,
    response: Response,
    visitor_id: str = Depends(get_visitor_id),
    referrals: ReferralCapturePipeline = Depends(get_referral_pipeline),
):
    params = dict(body.query_params)
    if body.ref:
        params[referrals.settings.REFERRAL_QUERY_PARAM] = body.ref
    status = await referrals.capture(params)
    apply_referral_cookies(response, referrals, visitor_id)
    return status


@router.delete("", response_model=ReferralStatus)
async def clear(
    response: Response,
    visitor_id: str = Depends(get_visitor_id),
    referrals: ReferralCapturePipeline = Depends(get_referral_pipeline),
):
    await referrals.clear()
    apply_referral_cookies(response, referrals, visitor_id)
    return ReferralStatus()
