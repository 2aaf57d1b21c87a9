"""
Checkout gateway protocol.

Defines the interface for payment gateways that turn a checkout session
request into a hosted checkout URL. Allows swapping the gateway (Stripe
direct, document-store extension) without changing the session builder.
"""
from typing import Protocol

from sharewizard.models.checkout import CheckoutSessionRequest


class CheckoutGateway(Protocol):
    """
    Protocol for checkout gateways.

    Implementations must resolve exactly once: either a redirect URL or a
    CheckoutError. No retries; a failed attempt needs a new request.
    """

    async def create_session(self, account_id: str, request: CheckoutSessionRequest) -> str:
        """
        Submit a checkout session request and await its result.

        Args:
            account_id: Internal account ID
            request: Fully built session request (flat string metadata)

        Returns:
            Checkout session URL

        Raises:
            CheckoutError: If the gateway reports an error
            CheckoutTimeoutError: If no result arrives within the await bound
            BillingDisabledError: If the gateway is not configured
        """
        ...
