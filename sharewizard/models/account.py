"""
sharewizard/models/account.py

Account record and usage counter models.

The account record is owned by the external document store; webhook handlers
mutate it outside this service, so every read is treated as possibly stale.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class AccountRecord(BaseModel):
    """Stored account document: usage counter fields plus trial state."""
    model_config = ConfigDict(frozen=True)

    account_id: str
    plan_type: str = "free"
    requests_used: int = Field(default=0, ge=0)
    requests_limit: Optional[int] = None
    has_used_trial: bool = False
    trial_pending: bool = False
    trial_end_date: Optional[datetime] = None
    selected_plan: Optional[str] = None
    selected_cycle: Optional[str] = None
    reset_date: Optional[datetime] = None


class UsageCounter(BaseModel):
    """
    Resolved usage counter for an account.

    Constraint: used >= 0; limit is always resolved (defaulted from the plan
    catalog when the stored record has none).
    """
    model_config = ConfigDict(frozen=True)

    account_id: str
    used: int = Field(ge=0)
    limit: int = Field(ge=0)
    plan: str

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)
