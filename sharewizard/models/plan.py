"""
sharewizard/models/plan.py

Plan definition model for the plan catalog.

Plans are immutable and built once at process start.
"""

from enum import Enum
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict


class PlanTier(str, Enum):
    """Plan-type category used for entitlement and trial decisions."""
    FREE = "free"
    TRIAL = "trial"
    PAID = "paid"
    FLEX = "flex"


class BillingPeriod(str, Enum):
    NONE = "none"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ONE_TIME = "one_time"


class PlanDefinition(BaseModel):
    """
    PlanDefinition maps a plan id to its quota, price reference and features.

    Examples:
    - free (default, 3 requests)
    - trial (5 requests for 5 days)
    - basicMonth / basicYear (paid subscriptions)
    - flexy (one-time top-up pack)
    """
    model_config = ConfigDict(frozen=True)

    id: str
    tier: PlanTier
    display_name: str
    request_limit: int
    billing_period: BillingPeriod = BillingPeriod.NONE
    price_ref: Optional[str] = None
    price_label: str = "Free"
    features: Tuple[str, ...] = ()
