"""
Service wiring and FastAPI dependencies.

Every component receives its store/gateway clients through its
constructor; the app builds one Services container at startup and keeps
it in app.state.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from datetime import datetime
from uuid import uuid4
import logging

from fastapi import Depends, Header, Request
from redis import Redis

from sharewizard.core.config import Settings, settings as default_settings
from sharewizard.core.errors import UnauthorizedError
from sharewizard.features.billing.checkout import CheckoutSessionBuilder
from sharewizard.features.billing.document_store import DocumentStoreCheckoutGateway
from sharewizard.features.billing.provider import CheckoutGateway
from sharewizard.features.billing.stripe_provider import StripeCheckoutGateway
from sharewizard.features.entitlements.service import EntitlementChecker
from sharewizard.features.plans.catalog import PlanCatalog
from sharewizard.features.referrals.capture import ReferralCapturePipeline
from sharewizard.features.referrals.storage import CookieTier, KeyValueTier, MemoryTier, RedisTier
from sharewizard.features.referrals.validator import ReferralValidator
from sharewizard.features.trials.service import TrialLifecycle
from sharewizard.features.usage.ledger import UsageLedger
from sharewizard.stores.base import AccountStore, PartnerRegistry
from sharewizard.stores.memory import MemoryAccountStore, MemoryPartnerRegistry


logger = logging.getLogger(__name__)

VISITOR_COOKIE = "sharewizard_visitor_id"


@dataclass
class Services:
    settings: Settings
    catalog: PlanCatalog
    store: AccountStore
    registry: PartnerRegistry
    ledger: UsageLedger
    entitlements: EntitlementChecker
    trials: TrialLifecycle
    validator: ReferralValidator
    gateway: CheckoutGateway
    redis: Optional[Redis] = None
    durable_data: Dict[str, Tuple[str, datetime]] = field(default_factory=dict)

    def durable_tier(self, namespace: str) -> KeyValueTier:
        if self.redis is not None:
            return RedisTier(self.redis, namespace)
        return MemoryTier(namespace, self.durable_data)


def _build_stores(cfg: Settings) -> Tuple[AccountStore, PartnerRegistry]:
    if cfg.STORE_BACKEND == "sql":
        from sharewizard.core.database import init_engine
        from sharewizard.stores.sql import SqlAccountStore, SqlPartnerRegistry

        init_engine(cfg.DATABASE_URL)
        return SqlAccountStore(poll_interval=cfg.CHECKOUT_POLL_INTERVAL_SECONDS), SqlPartnerRegistry()
    return MemoryAccountStore(), MemoryPartnerRegistry()


def _build_gateway(cfg: Settings, store: AccountStore) -> CheckoutGateway:
    if cfg.CHECKOUT_GATEWAY == "document_store":
        return DocumentStoreCheckoutGateway(store, settings=cfg)
    return StripeCheckoutGateway(settings=cfg)


def build_services(
    settings: Optional[Settings] = None,
    *,
    store: Optional[AccountStore] = None,
    registry: Optional[PartnerRegistry] = None,
    gateway: Optional[CheckoutGateway] = None,
    redis_client: Optional[Redis] = None,
) -> Services:
    """Assemble the component graph; explicit arguments override configured backends."""
    cfg = settings or default_settings
    if store is None or registry is None:
        default_store, default_registry = _build_stores(cfg)
        store = store or default_store
        registry = registry or default_registry
    if redis_client is None and cfg.REFERRAL_DURABLE_BACKEND == "redis":
        redis_client = Redis.from_url(cfg.REDIS_URL)

    catalog = PlanCatalog(cfg)
    ledger = UsageLedger(store, catalog)
    services = Services(
        settings=cfg,
        catalog=catalog,
        store=store,
        registry=registry,
        ledger=ledger,
        entitlements=EntitlementChecker(ledger, catalog, cfg),
        trials=TrialLifecycle(ledger, catalog, cfg),
        validator=ReferralValidator(registry),
        gateway=gateway or _build_gateway(cfg, store),
        redis=redis_client,
    )
    logger.info(
        "[services] built",
        extra={
            "store_backend": type(store).__name__,
            "checkout_gateway": type(services.gateway).__name__,
            "referral_durable_backend": "redis" if redis_client is not None else "memory",
        },
    )
    return services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_account_id(x_account_id: Optional[str] = Header(default=None)) -> str:
    """Account id is asserted by the upstream auth provider."""
    if not x_account_id:
        raise UnauthorizedError("Missing x-account-id header")
    return x_account_id


def get_visitor_id(request: Request) -> str:
    """Anonymous visitor id from its cookie; a new one is minted on first visit."""
    return request.cookies.get(VISITOR_COOKIE) or uuid4().hex


def get_referral_scope(
    visitor_id: str = Depends(get_visitor_id),
    x_account_id: Optional[str] = Header(default=None),
) -> str:
    """Namespace for durable referral storage: the account when signed in, else the visitor."""
    return x_account_id or visitor_id


def get_referral_pipeline(
    request: Request,
    scope: str = Depends(get_referral_scope),
    services: Services = Depends(get_services),
) -> ReferralCapturePipeline:
    return ReferralCapturePipeline(
        cookie_tier=CookieTier(request.cookies),
        durable_tier=services.durable_tier(scope),
        validator=services.validator,
        settings=services.settings,
    )


def get_checkout_builder(
    referrals: ReferralCapturePipeline = Depends(get_referral_pipeline),
    services: Services = Depends(get_services),
) -> CheckoutSessionBuilder:
    return CheckoutSessionBuilder(
        ledger=services.ledger,
        catalog=services.catalog,
        referrals=referrals,
        validator=services.validator,
        gateway=services.gateway,
        settings=services.settings,
    )


def apply_referral_cookies(response: Any, referrals: ReferralCapturePipeline, visitor_id: str) -> None:
    """Flush pending referral cookie writes and pin the anonymous visitor id."""
    cookie_tier = referrals.cookie_tier
    if isinstance(cookie_tier, CookieTier):
        cookie_tier.apply(response)
    response.set_cookie(
        VISITOR_COOKIE,
        visitor_id,
        max_age=referrals.settings.REFERRAL_EXPIRY_DAYS * 86400,
        path="/",
        samesite="lax",
    )
