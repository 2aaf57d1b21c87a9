"""
sharewizard/features/referrals/capture.py

Referral capture pipeline.

Handles:
- Reading the referral code from query parameter, cookie and durable tiers
  (precedence query > cookie > durable, re-evaluated on every call)
- 90-day freshness window; stale attribution is purged from both tiers
- Persisting validated codes to both tiers with identical payloads
- Logout-triggered clearing
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional
import json
import logging

from pydantic import ValidationError as PydanticValidationError

from sharewizard.core.config import Settings, settings as default_settings
from sharewizard.features.referrals.storage import KeyValueTier
from sharewizard.features.referrals.validator import ReferralValidator, normalize_code
from sharewizard.models.referral import PartnerInfo, ReferralCapture, ReferralStatus


logger = logging.getLogger(__name__)

REFERRAL_CODE_KEY = "sharewizard_referral_code"
PARTNER_INFO_KEY = "sharewizard_partner_info"
REFERRAL_TIMESTAMP_KEY = "sharewizard_referral_timestamp"
STORAGE_KEYS = (REFERRAL_CODE_KEY, PARTNER_INFO_KEY, REFERRAL_TIMESTAMP_KEY)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    """Timestamps are stored as epoch milliseconds."""
    if not raw:
        return None
    try:
        return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _parse_partner(raw: Optional[str]) -> Optional[PartnerInfo]:
    if not raw:
        return None
    try:
        return PartnerInfo.model_validate(json.loads(raw))
    except (ValueError, PydanticValidationError):
        logger.warning("[referral] discarding unreadable partner info")
        return None


class ReferralCapturePipeline:
    """
    Captures and resolves referral attribution for one visitor.

    The cookie tier and durable tier are independent stores; either one
    alone is enough to recover the attribution. Storage failures never
    propagate: they degrade to "no attribution".
    """

    def __init__(
        self,
        cookie_tier: KeyValueTier,
        durable_tier: KeyValueTier,
        validator: ReferralValidator,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cookie_tier = cookie_tier
        self.durable_tier = durable_tier
        self.validator = validator
        self.settings = settings or default_settings
        self._clock = clock

    @property
    def tiers(self):
        return (self.cookie_tier, self.durable_tier)

    @property
    def expiry(self) -> timedelta:
        return timedelta(days=self.settings.REFERRAL_EXPIRY_DAYS)

    def query_code(self, query_params: Optional[Mapping[str, str]]) -> Optional[str]:
        code = normalize_code((query_params or {}).get(self.settings.REFERRAL_QUERY_PARAM))
        return code or None

    async def _read(self, tier: KeyValueTier) -> Optional[ReferralCapture]:
        """Read one tier; returns None when absent, stale or unreadable."""
        try:
            code = await tier.get(REFERRAL_CODE_KEY)
            if not code:
                return None
            captured_at = _parse_timestamp(await tier.get(REFERRAL_TIMESTAMP_KEY))
            if captured_at is None:
                logger.info("[referral] skipping tier without timestamp", extra={"tier": tier.name, "referral_code": code})
                return None
            if self._clock() - captured_at >= self.expiry:
                logger.info("[referral] EXPIRED", extra={"tier": tier.name, "referral_code": code})
                await self.clear()
                return None
            partner = _parse_partner(await tier.get(PARTNER_INFO_KEY))
        except Exception:
            logger.warning("[referral] storage read failed", exc_info=True, extra={"tier": tier.name})
            return None
        return ReferralCapture(code=normalize_code(code), partner=partner, captured_at=captured_at)

    async def _stored_capture(self) -> Optional[ReferralCapture]:
        for tier in self.tiers:
            capture = await self._read(tier)
            if capture is not None:
                return capture
        return None

    async def capture_and_resolve(self, query_params: Optional[Mapping[str, str]] = None) -> Optional[str]:
        """Current referral code: query parameter, then cookie, then durable store."""
        code = self.query_code(query_params)
        if code:
            return code
        capture = await self._stored_capture()
        return capture.code if capture else None

    async def persist(self, code: str, partner: Optional[PartnerInfo] = None) -> None:
        """Write the same code, partner info and timestamp to both tiers."""
        now = self._clock()
        expires_at = now + self.expiry
        payload = {
            REFERRAL_CODE_KEY: normalize_code(code),
            REFERRAL_TIMESTAMP_KEY: str(int(now.timestamp() * 1000)),
        }
        if partner is not None:
            payload[PARTNER_INFO_KEY] = partner.model_dump_json()

        for tier in self.tiers:
            try:
                for key, value in payload.items():
                    await tier.set(key, value, expires_at)
            except Exception:
                logger.warning("[referral] storage write failed", exc_info=True, extra={"tier": tier.name})
        logger.info(
            "[referral] PERSISTED",
            extra={"referral_code": payload[REFERRAL_CODE_KEY], "partner_id": partner.partner_id if partner else None},
        )

    async def capture(self, query_params: Optional[Mapping[str, str]] = None) -> ReferralStatus:
        """Validate a code from the query string and persist it; otherwise keep cached state."""
        code = self.query_code(query_params)
        if code:
            partner = await self.validator.validate(code)
            if partner is not None:
                await self.persist(code, partner)
            else:
                logger.info("[referral] not persisting invalid code", extra={"referral_code": code})
        return await self.status()

    async def cached_partner_info(self) -> Optional[PartnerInfo]:
        """Partner info from the first fresh tier, durable store first."""
        for tier in (self.durable_tier, self.cookie_tier):
            capture = await self._read(tier)
            if capture is not None and capture.partner is not None:
                return capture.partner
        return None

    async def status(self) -> ReferralStatus:
        capture = await self._stored_capture()
        if capture is None:
            return ReferralStatus()
        return ReferralStatus(
            has_referral=True,
            code=capture.code,
            partner=capture.partner,
            captured_at=capture.captured_at,
        )

    async def clear(self) -> None:
        for tier in self.tiers:
            try:
                for key in STORAGE_KEYS:
                    await tier.delete(key)
            except Exception:
                logger.warning("[referral] storage clear failed", exc_info=True, extra={"tier": tier.name})
        logger.info("[referral] CLEARED")
