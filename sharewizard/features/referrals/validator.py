"""
sharewizard/features/referrals/validator.py

Referral code validation against the partner registry.

Pure read-and-check: use counters are maintained by the webhook side.
Any failure degrades to "no attribution".
"""

from datetime import datetime, timezone
from typing import Callable, Optional
import logging

from sharewizard.models.referral import PartnerInfo
from sharewizard.stores.base import PartnerRegistry


logger = logging.getLogger(__name__)


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReferralValidator:
    def __init__(self, registry: PartnerRegistry, clock: Callable[[], datetime] = _utcnow):
        self.registry = registry
        self._clock = clock

    async def validate(self, code: Optional[str]) -> Optional[PartnerInfo]:
        """Resolve a referral code to its partner, or None when it cannot attribute."""
        normalized = normalize_code(code)
        if not normalized:
            return None
        try:
            return await self._resolve(normalized)
        except Exception:
            logger.warning(
                "[referral] validation failed, proceeding without attribution",
                exc_info=True,
                extra={"referral_code": normalized},
            )
            return None

    async def _resolve(self, code: str) -> Optional[PartnerInfo]:
        record = await self.registry.get_code(code)
        if record is None:
            logger.info("[referral] REJECTED", extra={"referral_code": code, "reason": "not_found"})
            return None
        if not record.active:
            logger.info("[referral] REJECTED", extra={"referral_code": code, "reason": "inactive"})
            return None

        expires_at = record.expires_at
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at < self._clock():
                logger.info("[referral] REJECTED", extra={"referral_code": code, "reason": "expired"})
                return None

        if record.max_uses is not None and record.uses >= record.max_uses:
            logger.info("[referral] REJECTED", extra={"referral_code": code, "reason": "usage_limit"})
            return None

        partner = await self.registry.get_partner(record.partner_id)
        if partner is None:
            logger.info("[referral] REJECTED", extra={"referral_code": code, "reason": "partner_not_found"})
            return None
        if not partner.active:
            logger.info(
                "[referral] REJECTED",
                extra={"referral_code": code, "reason": "partner_inactive", "partner_id": partner.partner_id},
            )
            return None

        logger.info("[referral] VALID", extra={"referral_code": code, "partner_id": partner.partner_id})
        return partner
