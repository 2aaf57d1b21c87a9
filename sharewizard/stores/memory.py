"""
In-memory account store and partner registry.

Single-process implementations used for development and tests. Mutations
never yield to the event loop between the check and the write, so the
increment primitives are atomic with respect to other coroutines.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Set, Tuple
from uuid import uuid4
import asyncio
import logging

from sharewizard.core.errors import AccountNotFoundError
from sharewizard.models.account import AccountRecord
from sharewizard.models.checkout import CheckoutSessionSnapshot
from sharewizard.models.referral import PartnerCodeRecord, PartnerInfo

logger = logging.getLogger(__name__)

SessionKey = Tuple[str, str]


class MemoryAccountStore:
    """
    Dict-backed account store with realtime checkout session subscriptions.

    Maps account_id -> AccountRecord and (account_id, session_id) -> session
    state; subscribers get an asyncio.Queue per watch.
    """

    def __init__(self):
        self._accounts: Dict[str, AccountRecord] = {}
        self._sessions: Dict[SessionKey, Dict[str, Any]] = {}
        self._watchers: Dict[SessionKey, Set[asyncio.Queue]] = {}

    @property
    def active_watchers(self) -> int:
        return sum(len(queues) for queues in self._watchers.values())

    def checkout_payload(self, account_id: str, session_id: str) -> Dict[str, Any]:
        return self._sessions[(account_id, session_id)]["payload"]

    def checkout_sessions(self, account_id: str) -> Dict[str, Dict[str, Any]]:
        return {sid: data for (aid, sid), data in self._sessions.items() if aid == account_id}

    async def get_account(self, account_id: str) -> Optional[AccountRecord]:
        return self._accounts.get(account_id)

    async def create_account(self, record: AccountRecord) -> AccountRecord:
        return self._accounts.setdefault(record.account_id, record)

    async def update_account(
        self,
        account_id: str,
        changes: Dict[str, Any],
        *,
        expected: Optional[Dict[str, Any]] = None,
    ) -> bool:
        current = self._accounts.get(account_id)
        if current is None:
            return False
        if expected and any(getattr(current, k) != v for k, v in expected.items()):
            return False
        self._accounts[account_id] = current.model_copy(update=changes)
        return True

    async def increment_usage(self, account_id: str, amount: int, default_limit: int) -> bool:
        current = self._accounts.get(account_id)
        if current is None:
            return False
        limit = default_limit if current.requests_limit is None else current.requests_limit
        if current.requests_used + amount > limit:
            return False
        self._accounts[account_id] = current.model_copy(
            update={"requests_used": current.requests_used + amount}
        )
        return True

    async def increment_limit(
        self,
        account_id: str,
        amount: int,
        default_limit: int,
        *,
        plan_type: Optional[str] = None,
    ) -> bool:
        current = self._accounts.get(account_id)
        if current is None:
            return False
        base = default_limit if current.requests_limit is None else current.requests_limit
        changes: Dict[str, Any] = {"requests_limit": base + amount}
        if plan_type:
            changes["plan_type"] = plan_type
        self._accounts[account_id] = current.model_copy(update=changes)
        return True

    async def add_checkout_session(self, account_id: str, payload: Dict[str, Any]) -> str:
        if account_id not in self._accounts:
            raise AccountNotFoundError(f"Account {account_id} not found")
        session_id = uuid4().hex
        self._sessions[(account_id, session_id)] = {"payload": payload, "url": None, "error": None}
        return session_id

    def _snapshot(self, key: SessionKey) -> CheckoutSessionSnapshot:
        data = self._sessions[key]
        return CheckoutSessionSnapshot(session_id=key[1], url=data["url"], error=data["error"])

    @asynccontextmanager
    async def watch_checkout_session(self, account_id: str, session_id: str):
        key = (account_id, session_id)
        if key not in self._sessions:
            raise KeyError(f"Checkout session {session_id} not found")
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.setdefault(key, set()).add(queue)
        queue.put_nowait(self._snapshot(key))

        async def _iterate() -> AsyncIterator[CheckoutSessionSnapshot]:
            while True:
                yield await queue.get()

        try:
            yield _iterate()
        finally:
            watchers = self._watchers.get(key)
            if watchers is not None:
                watchers.discard(queue)
                if not watchers:
                    del self._watchers[key]
            logger.debug(f"[store] released checkout watch {session_id}")

    async def resolve_checkout_session(
        self,
        account_id: str,
        session_id: str,
        *,
        url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        key = (account_id, session_id)
        data = self._sessions[key]
        data["url"] = url
        data["error"] = error
        snapshot = self._snapshot(key)
        for queue in list(self._watchers.get(key, ())):
            queue.put_nowait(snapshot)


class MemoryPartnerRegistry:
    """Dict-backed partner registry."""

    def __init__(self):
        self._codes: Dict[str, PartnerCodeRecord] = {}
        self._partners: Dict[str, PartnerInfo] = {}

    def add_partner(self, partner: PartnerInfo) -> None:
        self._partners[partner.partner_id] = partner

    def add_code(self, record: PartnerCodeRecord) -> None:
        self._codes[record.code.upper()] = record

    async def get_code(self, code: str) -> Optional[PartnerCodeRecord]:
        return self._codes.get(code)

    async def get_partner(self, partner_id: str) -> Optional[PartnerInfo]:
        return self._partners.get(partner_id)
