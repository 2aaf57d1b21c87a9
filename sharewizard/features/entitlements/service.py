"""
sharewizard/features/entitlements/service.py

Entitlement checker.

Handles:
- Availability gate for billable actions (cost-aware)
- Ternary plan status (OK / UPGRADE / LIMIT_REACHED) with usage percentage
- Fail-closed behaviour when the account record cannot be read
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging

from sharewizard.core.config import Settings, settings as default_settings
from sharewizard.core.errors import QuotaExceededError
from sharewizard.core.logging import log_event
from sharewizard.features.plans.catalog import FREE_PLAN_ID, PlanCatalog
from sharewizard.features.usage.ledger import GenerationCost, UsageLedger
from sharewizard.models.account import UsageCounter
from sharewizard.models.plan import PlanTier


logger = logging.getLogger(__name__)


class PlanStatus(str, Enum):
    OK = "OK"
    UPGRADE = "UPGRADE"
    LIMIT_REACHED = "LIMIT_REACHED"


@dataclass(frozen=True)
class Availability:
    can_proceed: bool
    used: int
    limit: int
    plan: str


@dataclass(frozen=True)
class PlanStatusResult:
    status: PlanStatus
    message: str
    usage_percentage: float
    warning: bool = False


def usage_percentage(used: int, limit: int) -> float:
    """Share of quota consumed, capped at 100; a zero limit counts as fully used."""
    if limit <= 0:
        return 100.0
    return max(0.0, min(used / limit * 100, 100.0))


_EXHAUSTED_MESSAGES = {
    PlanTier.FREE: "You have used all your free requests. Choose a plan and start a trial to continue.",
    PlanTier.TRIAL: "Your trial requests are used up. Upgrade to a paid plan to continue.",
    PlanTier.PAID: "You have reached your request limit. Add Flex packs for additional requests.",
    PlanTier.FLEX: "You have used all your Flex requests. Purchase more to continue.",
}


class EntitlementChecker:
    """Derives entitlement decisions from the usage ledger and plan catalog."""

    def __init__(self, ledger: UsageLedger, catalog: PlanCatalog, settings: Optional[Settings] = None):
        self.ledger = ledger
        self.catalog = catalog
        self.settings = settings or default_settings

    async def _read_counter(self, account_id: str) -> Optional[UsageCounter]:
        try:
            return await self.ledger.get_counter(account_id)
        except Exception:
            # Absence of data is never unlimited entitlement
            logger.error(
                "[entitlement] account read failed, failing closed",
                exc_info=True,
                extra={"account_id": account_id},
            )
            return None

    async def check_availability(self, account_id: str, cost: int = GenerationCost.CAPTION) -> Availability:
        counter = await self._read_counter(account_id)
        if counter is None:
            return Availability(can_proceed=False, used=0, limit=0, plan=FREE_PLAN_ID)

        can_proceed = counter.used + int(cost) <= counter.limit
        if not can_proceed:
            logger.warning(
                "[entitlement] WOULD_EXCEED",
                extra={
                    "account_id": account_id,
                    "plan_id": counter.plan,
                    "used": counter.used,
                    "limit": counter.limit,
                    "cost": int(cost),
                },
            )
        return Availability(
            can_proceed=can_proceed,
            used=counter.used,
            limit=counter.limit,
            plan=counter.plan,
        )

    async def check_plan_status(self, account_id: str) -> PlanStatusResult:
        counter = await self._read_counter(account_id)
        if counter is None:
            return PlanStatusResult(
                status=PlanStatus.UPGRADE,
                message="We could not load your plan. Please try again or contact support.",
                usage_percentage=100.0,
            )
        return self.status_for(counter)

    def status_for(self, counter: UsageCounter) -> PlanStatusResult:
        percentage = usage_percentage(counter.used, counter.limit)
        tier = self.catalog.tier_of(counter.plan)

        if counter.used >= counter.limit:
            status = PlanStatus.UPGRADE if tier in (PlanTier.FREE, PlanTier.TRIAL) else PlanStatus.LIMIT_REACHED
            logger.info(
                f"[entitlement] {status.value}",
                extra={"account_id": counter.account_id, "plan_id": counter.plan, "used": counter.used, "limit": counter.limit},
            )
            return PlanStatusResult(status=status, message=_EXHAUSTED_MESSAGES[tier], usage_percentage=percentage)

        remaining = counter.limit - counter.used
        if percentage >= self.settings.LOW_USAGE_WARNING_PERCENT:
            return PlanStatusResult(
                status=PlanStatus.OK,
                message=f"You're running low on requests ({remaining} left). Consider upgrading soon.",
                usage_percentage=percentage,
                warning=True,
            )
        return PlanStatusResult(
            status=PlanStatus.OK,
            message=f"You have {remaining} requests remaining.",
            usage_percentage=percentage,
        )

    async def consume(self, account_id: str, cost: int = GenerationCost.CAPTION) -> UsageCounter:
        """Gate and charge a billable action.

        Raises QuotaExceededError (code upgrade_required or limit_reached) when
        the account cannot afford `cost`.
        """
        availability = await self.check_availability(account_id, cost)
        charged = availability.can_proceed and await self.ledger.record_usage(account_id, cost)
        if not charged:
            tier = self.catalog.tier_of(availability.plan)
            code = "upgrade_required" if tier in (PlanTier.FREE, PlanTier.TRIAL) else "limit_reached"
            log_event(
                "warning",
                "[entitlement] BLOCK",
                account_id=account_id,
                event_type="entitlement.block",
                error_code=code,
                extra={"plan_id": availability.plan, "cost": int(cost)},
            )
            raise QuotaExceededError(_EXHAUSTED_MESSAGES[tier], code=code)
        return await self.ledger.get_counter(account_id)
