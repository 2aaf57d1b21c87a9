"""
sharewizard/models/checkout.py

Checkout session request/result models.

A request is created per checkout attempt and resolves exactly once: either
the gateway integration fills in `url` or it fills in `error`.
"""

from enum import Enum
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class CheckoutMode(str, Enum):
    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"


class CheckoutOptions(BaseModel):
    """Caller-supplied knobs for a checkout attempt."""
    mode: CheckoutMode = CheckoutMode.SUBSCRIPTION
    quantity: int = Field(default=1, ge=1)
    query_params: Dict[str, str] = Field(default_factory=dict)
    coupon_code: Optional[str] = None
    trial_period_days: Optional[int] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutSessionRequest(BaseModel):
    """Gateway request; metadata values are flat strings only."""
    model_config = ConfigDict(frozen=True)

    price: str
    mode: CheckoutMode
    quantity: int = 1
    success_url: str
    cancel_url: str
    client_reference_id: str
    metadata: Dict[str, str]
    trial_period_days: Optional[int] = None
    coupon: Optional[str] = None
    allow_promotion_codes: bool = True
    billing_address_collection: str = "auto"
    customer_creation: str = "always"


class CheckoutSessionSnapshot(BaseModel):
    """Observed state of a stored checkout session record."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return bool(self.url or self.error)
