"""
Store protocols consumed by the entitlement and referral core.

Defines the contracts required from the account/document store and the
partner registry. Components receive implementations through their
constructors so storage can be swapped (memory, SQL) without changing
business logic.
"""
from typing import Any, AsyncContextManager, AsyncIterator, Dict, Optional, Protocol

from sharewizard.models.account import AccountRecord
from sharewizard.models.checkout import CheckoutSessionSnapshot
from sharewizard.models.referral import PartnerCodeRecord, PartnerInfo


class AccountStore(Protocol):
    """
    Protocol for the per-account document store.

    Implementations must provide:
    - Record-level read and conditional update
    - Atomic increments (never read-modify-write)
    - A per-account checkout session sub-record with change subscription
    """

    async def get_account(self, account_id: str) -> Optional[AccountRecord]:
        """
        Read the account record.

        Returns:
            AccountRecord, or None if the account does not exist

        Raises:
            StoreError: If the store cannot be reached
        """
        ...

    async def create_account(self, record: AccountRecord) -> AccountRecord:
        """
        Create the account record if missing (idempotent).

        Returns:
            The stored record (existing one wins)
        """
        ...

    async def update_account(
        self,
        account_id: str,
        changes: Dict[str, Any],
        *,
        expected: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Apply field changes, optionally only when `expected` fields match.

        Returns:
            True if a record was updated, False if missing or precondition failed
        """
        ...

    async def increment_usage(self, account_id: str, amount: int, default_limit: int) -> bool:
        """
        Atomically add `amount` to requests_used if the result stays within the limit.

        `default_limit` stands in for a missing requests_limit.

        Returns:
            True if incremented, False if the account is missing or the limit would be exceeded
        """
        ...

    async def increment_limit(
        self,
        account_id: str,
        amount: int,
        default_limit: int,
        *,
        plan_type: Optional[str] = None,
    ) -> bool:
        """Atomically add `amount` to requests_limit, optionally switching plan_type."""
        ...

    async def add_checkout_session(self, account_id: str, payload: Dict[str, Any]) -> str:
        """
        Create a checkout session sub-record for the account.

        Returns:
            New session id
        """
        ...

    def watch_checkout_session(
        self, account_id: str, session_id: str
    ) -> AsyncContextManager[AsyncIterator[CheckoutSessionSnapshot]]:
        """
        Subscribe to changes of a checkout session record.

        The subscription is released when the context exits. The iterator
        yields the current snapshot first, then every later change.
        """
        ...

    async def resolve_checkout_session(
        self,
        account_id: str,
        session_id: str,
        *,
        url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Fill in the gateway result (called by the gateway integration side)."""
        ...


class PartnerRegistry(Protocol):
    """Read-only partner registry: code -> partner id, partner id -> profile."""

    async def get_code(self, code: str) -> Optional[PartnerCodeRecord]:
        ...

    async def get_partner(self, partner_id: str) -> Optional[PartnerInfo]:
        ...
