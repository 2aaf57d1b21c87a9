"""
sharewizard/features/billing/checkout.py

Checkout session builder.

Handles:
- Resolving a plan id (or raw price reference) to gateway price and mode
- Best-effort referral attribution (a failed lookup never blocks a purchase)
- Flat string metadata and the client reference join key for the webhook
- Handing the request to the configured CheckoutGateway
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional, Tuple
import logging

from sharewizard.core.config import Settings, settings as default_settings
from sharewizard.core.errors import ValidationError
from sharewizard.features.billing.provider import CheckoutGateway
from sharewizard.features.plans.catalog import FLEX_PLAN_ID, PlanCatalog
from sharewizard.features.referrals.capture import ReferralCapturePipeline
from sharewizard.features.referrals.validator import ReferralValidator
from sharewizard.features.usage.ledger import UsageLedger
from sharewizard.models.checkout import CheckoutMode, CheckoutOptions, CheckoutSessionRequest
from sharewizard.models.plan import PlanTier
from sharewizard.models.referral import PartnerInfo


logger = logging.getLogger(__name__)

REFERRAL_SOURCE = "referral_link"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_metadata(
    account_id: str,
    mode: CheckoutMode,
    created_at: datetime,
    source: str,
    referral_code: Optional[str] = None,
    partner: Optional[PartnerInfo] = None,
    extra: Optional[Mapping[str, object]] = None,
) -> Dict[str, str]:
    """Flat string metadata; empty attribution fields are left out."""
    metadata: Dict[str, str] = {
        "account_id": account_id,
        "created_at": created_at.isoformat(),
        "checkout_type": mode.value,
        "source": source,
    }
    if partner is not None:
        attribution = {
            "referralCode": referral_code,
            "partnerId": partner.partner_id,
            "partnerName": partner.display_name,
            "partnerEmail": partner.email,
        }
        metadata.update({key: str(value) for key, value in attribution.items() if value})
    for key, value in (extra or {}).items():
        if value is not None and value != "":
            metadata[key] = str(value)
    return metadata


class CheckoutSessionBuilder:
    """Builds checkout session requests and submits them to the gateway."""

    def __init__(
        self,
        ledger: UsageLedger,
        catalog: PlanCatalog,
        referrals: ReferralCapturePipeline,
        validator: ReferralValidator,
        gateway: CheckoutGateway,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ledger = ledger
        self.catalog = catalog
        self.referrals = referrals
        self.validator = validator
        self.gateway = gateway
        self.settings = settings or default_settings
        self._clock = clock

    def _resolve_plan(self, plan_ref: str, requested_mode: CheckoutMode) -> Tuple[str, Optional[str], CheckoutMode]:
        """Return (price, plan_id, mode) for a plan id or a raw price reference."""
        if not plan_ref:
            raise ValidationError("plan_ref is required")

        if self.catalog.has_plan(plan_ref):
            plan = self.catalog.get_plan(plan_ref)
        else:
            plan = self.catalog.find_by_price(plan_ref)
            if plan is None:
                # Unknown price references pass through to the gateway as-is
                return plan_ref, None, requested_mode

        if plan.tier not in (PlanTier.PAID, PlanTier.FLEX):
            raise ValidationError(f"Plan {plan.id} cannot be purchased")
        if not plan.price_ref:
            raise ValidationError(f"No price configured for plan {plan.id}")
        mode = CheckoutMode.PAYMENT if plan.tier == PlanTier.FLEX else CheckoutMode.SUBSCRIPTION
        return plan.price_ref, plan.id, mode

    async def _resolve_attribution(
        self, account_id: str, query_params: Mapping[str, str]
    ) -> Tuple[Optional[str], Optional[PartnerInfo]]:
        try:
            code = await self.referrals.capture_and_resolve(query_params)
            if not code:
                return None, None
            partner = await self.validator.validate(code)
        except Exception:
            logger.error(
                "[checkout] referral lookup failed, proceeding without attribution",
                exc_info=True,
                extra={"account_id": account_id},
            )
            return None, None
        if partner is None:
            logger.info(
                "[checkout] referral not attributable, proceeding without attribution",
                extra={"account_id": account_id, "referral_code": code},
            )
            return None, None
        return code, partner

    async def build_request(
        self, account_id: str, plan_ref: str, options: Optional[CheckoutOptions] = None
    ) -> CheckoutSessionRequest:
        opts = options or CheckoutOptions()
        price, plan_id, mode = self._resolve_plan(plan_ref, opts.mode)
        referral_code, partner = await self._resolve_attribution(account_id, opts.query_params)

        extra: Dict[str, object] = {"plan_id": plan_id}
        if plan_id == FLEX_PLAN_ID:
            extra.update({"product_type": "flex_pack", "quantity": opts.quantity})

        source = REFERRAL_SOURCE if partner is not None else self.settings.CHECKOUT_SOURCE
        metadata = build_metadata(
            account_id, mode, self._clock(), source,
            referral_code=referral_code, partner=partner, extra=extra,
        )

        trial_days = None
        if mode == CheckoutMode.SUBSCRIPTION:
            trial_days = (
                opts.trial_period_days if opts.trial_period_days is not None else self.settings.TRIAL_LENGTH_DAYS
            )

        base_url = self.settings.BASE_URL.rstrip("/")
        return CheckoutSessionRequest(
            price=price,
            mode=mode,
            quantity=opts.quantity,
            success_url=opts.success_url or f"{base_url}/dashboard?checkout_success=true",
            cancel_url=opts.cancel_url or f"{base_url}/pricing?checkout_canceled=true",
            client_reference_id=referral_code or account_id,
            metadata=metadata,
            trial_period_days=trial_days or None,
            coupon=opts.coupon_code or None,
        )

    async def create_checkout_session(
        self, account_id: str, plan_ref: str, options: Optional[CheckoutOptions] = None
    ) -> str:
        """
        Create a checkout session and return its redirect URL.

        Raises:
            ValidationError: If the plan cannot be purchased
            CheckoutError: If the gateway rejects the session (no retry)
            CheckoutTimeoutError: If the gateway does not answer in time
        """
        await self.ledger.get_account(account_id)
        request = await self.build_request(account_id, plan_ref, options)
        logger.info(
            "[checkout] creating session",
            extra={
                "account_id": account_id,
                "plan_id": request.metadata.get("plan_id"),
                "mode": request.mode.value,
                "referral_code": request.metadata.get("referralCode"),
            },
        )
        return await self.gateway.create_session(account_id, request)

    async def create_subscription_checkout(
        self,
        account_id: str,
        plan_id: str = "basicMonth",
        *,
        query_params: Optional[Mapping[str, str]] = None,
        coupon_code: Optional[str] = None,
        trial_period_days: Optional[int] = None,
    ) -> str:
        options = CheckoutOptions(
            mode=CheckoutMode.SUBSCRIPTION,
            query_params=dict(query_params or {}),
            coupon_code=coupon_code,
            trial_period_days=trial_period_days,
        )
        return await self.create_checkout_session(account_id, plan_id, options)

    async def create_flex_checkout(
        self,
        account_id: str,
        quantity: int = 1,
        *,
        query_params: Optional[Mapping[str, str]] = None,
    ) -> str:
        options = CheckoutOptions(
            mode=CheckoutMode.PAYMENT,
            quantity=quantity,
            query_params=dict(query_params or {}),
        )
        return await self.create_checkout_session(account_id, FLEX_PLAN_ID, options)
