"""
Document-store checkout gateway.

Writes the session request as a new checkout_sessions record under the
account and waits for the external payment integration to fill in either
`url` or `error` on that same record.
"""
from typing import Any, Dict, Optional
import asyncio
import logging

from sharewizard.core.config import Settings, settings as default_settings
from sharewizard.core.errors import CheckoutError, CheckoutTimeoutError
from sharewizard.models.checkout import CheckoutMode, CheckoutSessionRequest
from sharewizard.stores.base import AccountStore


logger = logging.getLogger(__name__)


def session_document(request: CheckoutSessionRequest) -> Dict[str, Any]:
    """Shape the request the way the payment extension reads it."""
    document: Dict[str, Any] = {
        "price": request.price,
        "quantity": request.quantity,
        "mode": request.mode.value,
        "success_url": request.success_url,
        "cancel_url": request.cancel_url,
        "client_reference_id": request.client_reference_id,
        "metadata": dict(request.metadata),
        "allow_promotion_codes": request.allow_promotion_codes,
        "billing_address_collection": request.billing_address_collection,
        "payment_method_types": ["card"],
        "customer_creation": request.customer_creation,
    }
    if request.mode == CheckoutMode.SUBSCRIPTION and request.trial_period_days:
        document["subscription_data"] = {"trial_period_days": request.trial_period_days}
    if request.coupon:
        document["discounts"] = [{"coupon": request.coupon}]
    return document


class DocumentStoreCheckoutGateway:
    """CheckoutGateway backed by AccountStore checkout session records."""

    def __init__(self, store: AccountStore, settings: Optional[Settings] = None, timeout: Optional[float] = None):
        cfg = settings or default_settings
        self.store = store
        self.timeout = timeout if timeout is not None else cfg.CHECKOUT_TIMEOUT_SECONDS

    async def create_session(self, account_id: str, request: CheckoutSessionRequest) -> str:
        session_id = await self.store.add_checkout_session(account_id, session_document(request))
        logger.info(
            "[checkout] session requested",
            extra={"account_id": account_id, "session_id": session_id, "mode": request.mode.value},
        )
        try:
            return await asyncio.wait_for(self._await_result(account_id, session_id), self.timeout)
        except asyncio.TimeoutError:
            logger.error(
                "[checkout] TIMEOUT",
                extra={"account_id": account_id, "session_id": session_id, "timeout": self.timeout},
            )
            raise CheckoutTimeoutError(f"Checkout session was not created within {self.timeout:g} seconds")

    async def _await_result(self, account_id: str, session_id: str) -> str:
        async with self.store.watch_checkout_session(account_id, session_id) as snapshots:
            async for snapshot in snapshots:
                if snapshot.error:
                    logger.error(
                        "[checkout] REJECTED",
                        extra={"account_id": account_id, "session_id": session_id, "error_message": snapshot.error},
                    )
                    raise CheckoutError(snapshot.error)
                if snapshot.url:
                    logger.info("[checkout] READY", extra={"account_id": account_id, "session_id": session_id})
                    return snapshot.url
        raise CheckoutError("Checkout session watch ended without a result")
