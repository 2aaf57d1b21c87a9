"""
Stripe checkout gateway.

Implements CheckoutGateway with a direct request/response call to the
Stripe API. The SDK is blocking, so calls run in a worker thread.
"""
from typing import Any, Dict, Optional
import asyncio
import logging

import stripe

from sharewizard.core.config import Settings, settings as default_settings
from sharewizard.core.errors import BillingDisabledError, CheckoutError, CheckoutTimeoutError
from sharewizard.models.checkout import CheckoutMode, CheckoutSessionRequest


logger = logging.getLogger(__name__)


def billing_enabled(settings: Optional[Settings] = None) -> bool:
    """Check if Stripe checkout is configured."""
    cfg = settings or default_settings
    return bool(cfg.STRIPE_SECRET_KEY)


class StripeCheckoutGateway:
    """Stripe implementation of CheckoutGateway."""

    def __init__(self, secret_key: Optional[str] = None, settings: Optional[Settings] = None, timeout: Optional[float] = None):
        cfg = settings or default_settings
        self.secret_key = secret_key or cfg.STRIPE_SECRET_KEY
        self.timeout = timeout if timeout is not None else cfg.CHECKOUT_TIMEOUT_SECONDS

    def _session_params(self, account_id: str, request: CheckoutSessionRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [{"price": request.price, "quantity": request.quantity}],
            "mode": request.mode.value,
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "client_reference_id": request.client_reference_id,
            "metadata": dict(request.metadata),
            "billing_address_collection": request.billing_address_collection,
        }
        # Stripe rejects discounts combined with allow_promotion_codes
        if request.coupon:
            params["discounts"] = [{"coupon": request.coupon}]
        else:
            params["allow_promotion_codes"] = request.allow_promotion_codes

        if request.mode == CheckoutMode.SUBSCRIPTION:
            subscription_data: Dict[str, Any] = {"metadata": dict(request.metadata)}
            if request.trial_period_days:
                subscription_data["trial_period_days"] = request.trial_period_days
            params["subscription_data"] = subscription_data
        else:
            # customer_creation is only accepted in payment mode
            params["customer_creation"] = request.customer_creation
            params["payment_intent_data"] = {"metadata": dict(request.metadata)}
        return params

    def _create(self, params: Dict[str, Any]) -> str:
        try:
            session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise CheckoutError(f"Stripe checkout session creation failed: {e}")
        if not session.url:
            raise CheckoutError("Stripe returned a checkout session without a URL")
        return session.url

    async def create_session(self, account_id: str, request: CheckoutSessionRequest) -> str:
        if not self.secret_key:
            raise BillingDisabledError("Billing is not configured")

        params = self._session_params(account_id, request)
        try:
            url = await asyncio.wait_for(asyncio.to_thread(self._create, params), self.timeout)
        except asyncio.TimeoutError:
            logger.error("[checkout] TIMEOUT", extra={"account_id": account_id, "timeout": self.timeout})
            raise CheckoutTimeoutError(f"Checkout session was not created within {self.timeout:g} seconds")
        except CheckoutError as e:
            logger.error("[checkout] REJECTED", extra={"account_id": account_id, "error_message": e.message})
            raise
        logger.info("[checkout] READY", extra={"account_id": account_id, "mode": request.mode.value})
        return url
