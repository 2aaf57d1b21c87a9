"""
sharewizard/models/referral.py

Partner registry records and captured referral attribution.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class PartnerCodeRecord(BaseModel):
    """Partner code as stored in the registry (read-only here)."""
    model_config = ConfigDict(frozen=True)

    code: str
    partner_id: str
    active: bool = True
    uses: int = 0
    max_uses: Optional[int] = None
    expires_at: Optional[datetime] = None


class PartnerInfo(BaseModel):
    """Partner profile as stored in the registry (read-only here)."""
    model_config = ConfigDict(frozen=True)

    partner_id: str
    display_name: str
    email: str = ""
    company_name: Optional[str] = None
    active: bool = True
    commission_rate: float = 0.0


class ReferralCapture(BaseModel):
    """A validated referral code persisted in the cookie and durable tiers."""
    model_config = ConfigDict(frozen=True)

    code: str
    partner: Optional[PartnerInfo] = None
    captured_at: datetime

    @property
    def partner_id(self) -> Optional[str]:
        return self.partner.partner_id if self.partner else None

    @property
    def partner_name(self) -> Optional[str]:
        return self.partner.display_name if self.partner else None

    @property
    def partner_email(self) -> Optional[str]:
        return self.partner.email if self.partner else None


class ReferralStatus(BaseModel):
    """Current referral state for display."""
    has_referral: bool = False
    code: Optional[str] = None
    partner: Optional[PartnerInfo] = None
    captured_at: Optional[datetime] = None
