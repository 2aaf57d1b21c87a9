"""
Billing API routes.

- POST /api/billing/checkout: Create a checkout session (subscription or flex pack)
"""
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from sharewizard.api.deps import (
    apply_referral_cookies,
    get_account_id,
    get_checkout_builder,
    get_visitor_id,
)
from sharewizard.features.billing.checkout import CheckoutSessionBuilder
from sharewizard.models.checkout import CheckoutMode, CheckoutOptions


router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    plan_id: str
    quantity: int = Field(default=1, ge=1)
    mode: CheckoutMode = CheckoutMode.SUBSCRIPTION
    query_params: Dict[str, str] = Field(default_factory=dict)
    coupon_code: Optional[str] = None
    trial_period_days: Optional[int] = Field(default=None, ge=0)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    """Response with checkout URL."""
    url: str


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    response: Response,
    account_id: str = Depends(get_account_id),
    visitor_id: str = Depends(get_visitor_id),
    builder: CheckoutSessionBuilder = Depends(get_checkout_builder),
):
    """
    Create a checkout session.

    Errors:
        400: Plan cannot be purchased or has no price configured
        502: Gateway rejected the session
        503: Billing disabled (STRIPE_SECRET_KEY not set)
        504: Gateway did not answer in time
    """
    options = CheckoutOptions(
        mode=request.mode,
        quantity=request.quantity,
        query_params=request.query_params,
        coupon_code=request.coupon_code,
        trial_period_days=request.trial_period_days,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
    )
    url = await builder.create_checkout_session(account_id, request.plan_id, options)
    apply_referral_cookies(response, builder.referrals, visitor_id)
    return CheckoutResponse(url=url)
