"""
sharewizard/features/plans/catalog.py

Plan catalog.

Handles:
- Static plan table (free, trial, basicMonth, basicYear, flexy)
- Default request limits per plan
- Price reference lookup from configuration
- Display helpers (plan names, upgrade suggestions)
"""

from typing import Dict, Optional, Tuple

from sharewizard.core.config import Settings, settings as default_settings
from sharewizard.models.plan import BillingPeriod, PlanDefinition, PlanTier


FREE_PLAN_ID = "free"
TRIAL_PLAN_ID = "trial"
FLEX_PLAN_ID = "flexy"
SUBSCRIPTION_PLAN_IDS = ("basicMonth", "basicYear")

_TRIAL_FEATURE = "5 free requests during trial"

# Default plan configurations
DEFAULT_PLANS = {
    "free": {
        "tier": PlanTier.FREE,
        "display_name": "Free Plan",
        "request_limit": 3,
        "billing_period": BillingPeriod.NONE,
        "price_setting": None,
        "price_label": "Free",
        "features": (
            "3 free requests",
            "Manual share support",
            "Post ideas and captions",
        ),
    },
    "trial": {
        "tier": PlanTier.TRIAL,
        "display_name": "Trial Plan",
        "request_limit": 5,
        "billing_period": BillingPeriod.NONE,
        "price_setting": None,
        "price_label": "Free",
        "features": (_TRIAL_FEATURE,),
    },
    "basicMonth": {
        "tier": PlanTier.PAID,
        "display_name": "Basic Monthly Plan",
        "request_limit": 70,
        "billing_period": BillingPeriod.MONTHLY,
        "price_setting": "STRIPE_PRICE_BASIC_MONTH",
        "price_label": "£5.99/month",
        "features": (
            _TRIAL_FEATURE,
            "70 requests/month",
            "Single platform support",
            "Post ideas and captions",
            "Mobile-friendly ready to post preview & download",
            "Manual sharing on social media platforms",
            "Friendly customer support",
        ),
    },
    "basicYear": {
        "tier": PlanTier.PAID,
        "display_name": "Basic Yearly Plan",
        "request_limit": 900,
        "billing_period": BillingPeriod.YEARLY,
        "price_setting": "STRIPE_PRICE_BASIC_YEAR",
        "price_label": "£29.99/year",
        "features": (
            _TRIAL_FEATURE,
            "900 requests/year",
            "Single platform support",
            "Post ideas and captions",
            "Mobile-friendly ready to post preview & download",
            "Manual sharing on social media platforms",
            "Friendly customer support",
        ),
    },
    "flexy": {
        "tier": PlanTier.FLEX,
        "display_name": "Flex Purchase",
        "request_limit": 20,
        "billing_period": BillingPeriod.ONE_TIME,
        "price_setting": "STRIPE_PRICE_FLEXY",
        "price_label": "£1.99 per pack",
        "features": (
            "No monthly commitment",
            "Works with Basic plans",
            "20 additional requests per pack",
            "Use with any plan",
        ),
    },
}

SUGGESTED_UPGRADES = {
    "free": "Choose a plan and start your 5-day free trial with our Basic plan.",
    "trial": "Your trial will end soon. Upgrade to continue.",
    "basicMonth": "Save money by switching to yearly billing, or add Flex packs as needed.",
    "basicYear": "You're on our best plan! Need more? Add Flex packs for additional requests.",
    "flexy": "Need more requests? Purchase additional Flex packs anytime.",
}


class PlanCatalog:
    """Immutable plan table built once at process start."""

    def __init__(self, settings: Optional[Settings] = None):
        cfg = settings or default_settings
        plans: Dict[str, PlanDefinition] = {}
        for plan_id, config in DEFAULT_PLANS.items():
            price_setting = config["price_setting"]
            plans[plan_id] = PlanDefinition(
                id=plan_id,
                tier=config["tier"],
                display_name=config["display_name"],
                request_limit=config["request_limit"],
                billing_period=config["billing_period"],
                price_ref=getattr(cfg, price_setting, None) if price_setting else None,
                price_label=config["price_label"],
                features=config["features"],
            )
        self._plans = plans

    @property
    def plan_ids(self) -> Tuple[str, ...]:
        return tuple(self._plans)

    def has_plan(self, plan_id: Optional[str]) -> bool:
        return plan_id in self._plans

    def get_plan(self, plan_id: Optional[str]) -> PlanDefinition:
        """Return the plan, falling back to the free plan for unknown ids."""
        return self._plans.get(plan_id or FREE_PLAN_ID, self._plans[FREE_PLAN_ID])

    def default_limit(self, plan_id: Optional[str]) -> int:
        return self.get_plan(plan_id).request_limit

    def tier_of(self, plan_id: Optional[str]) -> PlanTier:
        return self.get_plan(plan_id).tier

    def price_for(self, plan_id: str) -> Optional[str]:
        """Map internal plan ID to the gateway price reference."""
        plan = self._plans.get(plan_id)
        return plan.price_ref if plan else None

    def find_by_price(self, price_ref: str) -> Optional[PlanDefinition]:
        for plan in self._plans.values():
            if plan.price_ref and plan.price_ref == price_ref:
                return plan
        return None

    def format_plan_name(self, plan_id: Optional[str]) -> str:
        plan = self._plans.get(plan_id or "")
        return plan.display_name if plan else "Unknown Plan"

    def suggested_upgrade(self, plan_id: Optional[str]) -> str:
        return SUGGESTED_UPGRADES.get(plan_id or "", "Upgrade your plan to access more features.")

    def plan_features(self, plan_id: Optional[str]) -> Tuple[str, ...]:
        plan = self._plans.get(plan_id or "")
        return plan.features if plan else (_TRIAL_FEATURE,)
