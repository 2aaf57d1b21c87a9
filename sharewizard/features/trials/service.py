"""
sharewizard/features/trials/service.py

Trial lifecycle state machine.

free -> trial_pending -> trial -> paid (happy path)
trial_pending -> free (checkout cancelled)

Every transition is a conditional store update, so a transition whose
precondition no longer holds mutates nothing and reports False.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from sharewizard.core.config import Settings, settings as default_settings
from sharewizard.features.plans.catalog import (
    FLEX_PLAN_ID,
    FREE_PLAN_ID,
    SUBSCRIPTION_PLAN_IDS,
    TRIAL_PLAN_ID,
    PlanCatalog,
)
from sharewizard.features.usage.ledger import UsageLedger


logger = logging.getLogger(__name__)

BILLING_CYCLES = ("monthly", "yearly")


class TrialLifecycle:
    """One-time trial issuance per account."""

    def __init__(self, ledger: UsageLedger, catalog: PlanCatalog, settings: Optional[Settings] = None):
        self.ledger = ledger
        self.store = ledger.store
        self.catalog = catalog
        self.settings = settings or default_settings

    async def mark_for_trial(
        self,
        account_id: str,
        selected_plan: str = "basicMonth",
        selected_cycle: str = "monthly",
    ) -> bool:
        """Record the selected plan and lock the account as trial-pending (free plan only)."""
        if selected_plan not in SUBSCRIPTION_PLAN_IDS or selected_cycle not in BILLING_CYCLES:
            logger.error(
                "[trial] invalid plan selection",
                extra={"account_id": account_id, "selected_plan": selected_plan, "selected_cycle": selected_cycle},
            )
            return False

        record = await self.ledger.get_account(account_id)
        if record.plan_type != FREE_PLAN_ID:
            logger.error(
                "[trial] mark refused, account is not on free plan",
                extra={"account_id": account_id, "plan_id": record.plan_type},
            )
            return False

        marked = await self.store.update_account(
            account_id,
            {"selected_plan": selected_plan, "selected_cycle": selected_cycle, "trial_pending": True},
            expected={"plan_type": FREE_PLAN_ID},
        )
        if marked:
            logger.info(
                "[trial] marked for trial",
                extra={"account_id": account_id, "selected_plan": selected_plan, "selected_cycle": selected_cycle},
            )
        else:
            logger.error("[trial] mark lost a race with a plan change", extra={"account_id": account_id})
        return marked

    async def activate_trial_after_payment(self, account_id: str, now: Optional[datetime] = None) -> bool:
        """Grant the trial once payment is confirmed; fails when no trial is pending."""
        record = await self.ledger.get_account(account_id)
        if not record.trial_pending:
            logger.error("[trial] activation refused, no pending trial", extra={"account_id": account_id})
            return False

        current = now or datetime.now(timezone.utc)
        trial_end = current + timedelta(days=self.settings.TRIAL_LENGTH_DAYS)
        activated = await self.store.update_account(
            account_id,
            {
                "plan_type": TRIAL_PLAN_ID,
                "requests_limit": self.catalog.default_limit(TRIAL_PLAN_ID),
                "requests_used": 0,
                "trial_end_date": trial_end,
                "has_used_trial": True,
                "trial_pending": False,
            },
            expected={"trial_pending": True},
        )
        if activated:
            logger.info(
                "[trial] activated",
                extra={"account_id": account_id, "trial_end_date": trial_end.isoformat()},
            )
        else:
            logger.error("[trial] activation refused, pending trial already consumed", extra={"account_id": account_id})
        return activated

    async def clear_trial_pending(self, account_id: str) -> bool:
        """Drop the pending lock after a cancelled checkout; has_used_trial is untouched."""
        record = await self.ledger.get_account(account_id)
        if not record.trial_pending:
            return True
        cleared = await self.store.update_account(
            account_id,
            {"trial_pending": False, "selected_plan": None, "selected_cycle": None},
        )
        logger.info("[trial] pending trial cleared", extra={"account_id": account_id})
        return cleared

    async def is_eligible_for_trial(self, account_id: str) -> bool:
        record = await self.ledger.get_account(account_id)
        return record.plan_type == FREE_PLAN_ID and not record.has_used_trial

    async def sync_subscription(
        self,
        account_id: str,
        status: str,
        role: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Apply an active/trialing subscription reported by the gateway.

        A pending trial is activated; otherwise the plan follows the
        subscription (trialing -> trial, role -> that plan). Returns the
        resulting plan id.
        """
        if status not in ("active", "trialing"):
            record = await self.ledger.get_account(account_id)
            return record.plan_type

        record = await self.ledger.get_account(account_id)
        if record.trial_pending and await self.activate_trial_after_payment(account_id, now=now):
            return TRIAL_PLAN_ID

        if status == "trialing":
            plan_id = TRIAL_PLAN_ID
        elif role in SUBSCRIPTION_PLAN_IDS or role == FLEX_PLAN_ID:
            plan_id = role
        else:
            plan_id = FREE_PLAN_ID

        if plan_id != record.plan_type:
            await self.ledger.apply_plan_change(account_id, plan_id)
        return plan_id
