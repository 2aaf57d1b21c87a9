"""
sharewizard/features/usage/ledger.py

Usage ledger.

Handles:
- Per-account counters (used, limit, plan) with catalog defaults
- Atomic cost-weighted usage increments
- Flex top-ups, resets and webhook-driven plan changes
"""

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, Optional
import logging
import math

from sharewizard.features.plans.catalog import FLEX_PLAN_ID, FREE_PLAN_ID, PlanCatalog
from sharewizard.models.account import AccountRecord, UsageCounter
from sharewizard.models.plan import PlanTier
from sharewizard.stores.base import AccountStore


logger = logging.getLogger(__name__)


class GenerationCost(IntEnum):
    """Units charged per content-generation call."""
    CAPTION = 1
    LONGFORM = 4


def resolve_limit(record: AccountRecord, catalog: PlanCatalog) -> int:
    """Stored limit, or the plan's default when the record has none."""
    if record.requests_limit is None:
        return catalog.default_limit(record.plan_type)
    return record.requests_limit


def days_remaining(end_date: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days left until `end_date` (rounded up, never negative)."""
    if end_date is None:
        return 0
    if end_date.tzinfo is None:
        end_date = end_date.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    seconds = (end_date - current).total_seconds()
    return max(0, math.ceil(seconds / 86400))


class UsageLedger:
    """Reads and mutates usage counters on the external account record."""

    def __init__(self, store: AccountStore, catalog: PlanCatalog):
        self.store = store
        self.catalog = catalog

    async def get_account(self, account_id: str) -> AccountRecord:
        """
        Read the account record, creating it from the free plan on first read.

        Raises:
            StoreError: If the store cannot be reached
        """
        record = await self.store.get_account(account_id)
        if record is not None:
            return record
        logger.info("[usage] creating account record", extra={"account_id": account_id, "plan_id": FREE_PLAN_ID})
        return await self.store.create_account(
            AccountRecord(
                account_id=account_id,
                plan_type=FREE_PLAN_ID,
                requests_used=0,
                requests_limit=self.catalog.default_limit(FREE_PLAN_ID),
            )
        )

    async def get_counter(self, account_id: str) -> UsageCounter:
        record = await self.get_account(account_id)
        return UsageCounter(
            account_id=account_id,
            used=record.requests_used,
            limit=resolve_limit(record, self.catalog),
            plan=record.plan_type,
        )

    async def record_usage(self, account_id: str, cost: int = GenerationCost.CAPTION) -> bool:
        """
        Charge `cost` units for a billable action.

        The increment is a single conditional store operation, so `used`
        never passes `limit` even under concurrent calls.

        Returns:
            True if charged, False if the remaining quota is insufficient
        """
        if cost < 1:
            raise ValueError(f"cost must be positive, got {cost}")
        record = await self.get_account(account_id)
        charged = await self.store.increment_usage(
            account_id, int(cost), self.catalog.default_limit(record.plan_type)
        )
        logger.info(
            "[usage] CHARGED" if charged else "[usage] REFUSED",
            extra={"account_id": account_id, "cost": int(cost), "plan_id": record.plan_type},
        )
        return charged

    async def add_flex_requests(self, account_id: str, additional_requests: int) -> bool:
        """
        Top up the limit by `additional_requests` without resetting usage.

        Free and trial accounts move to the flex plan; paid accounts keep
        their plan and simply gain quota.
        """
        if additional_requests < 1:
            raise ValueError(f"additional_requests must be positive, got {additional_requests}")
        record = await self.get_account(account_id)
        tier = self.catalog.tier_of(record.plan_type)
        new_plan = FLEX_PLAN_ID if tier in (PlanTier.FREE, PlanTier.TRIAL) else None
        added = await self.store.increment_limit(
            account_id,
            additional_requests,
            resolve_limit(record, self.catalog),
            plan_type=new_plan,
        )
        if added:
            logger.info(
                "[usage] flex top-up",
                extra={"account_id": account_id, "added": additional_requests, "plan_id": new_plan or record.plan_type},
            )
        else:
            logger.error("[usage] flex top-up failed", extra={"account_id": account_id})
        return added

    async def reset_usage(self, account_id: str) -> bool:
        reset = await self.store.update_account(account_id, {"requests_used": 0})
        if not reset:
            logger.error("[usage] reset failed, account not found", extra={"account_id": account_id})
        return reset

    async def apply_plan_change(
        self,
        account_id: str,
        plan_id: str,
        *,
        reset_usage: bool = True,
        limit_override: Optional[int] = None,
    ) -> bool:
        """
        Apply a plan change as produced by the payment webhook.

        Sets plan and limit from the catalog (or `limit_override`) and, by
        default, resets usage.
        """
        if not self.catalog.has_plan(plan_id):
            raise ValueError(f"Plan {plan_id} not found")
        await self.get_account(account_id)
        changes: Dict[str, Any] = {
            "plan_type": plan_id,
            "requests_limit": limit_override if limit_override is not None else self.catalog.default_limit(plan_id),
        }
        if reset_usage:
            changes["requests_used"] = 0
        applied = await self.store.update_account(account_id, changes)
        logger.info(
            "[usage] plan change applied",
            extra={"account_id": account_id, "plan_id": plan_id, "reset_usage": reset_usage},
        )
        return applied

    async def is_last_request(self, account_id: str) -> bool:
        """True when exactly one unit of quota remains."""
        counter = await self.get_counter(account_id)
        return counter.used == counter.limit - 1
