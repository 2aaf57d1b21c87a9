# sharewizard/conftest.py
from datetime import datetime, timedelta, timezone

import pytest

from sharewizard.core.config import Settings
from sharewizard.features.entitlements.service import EntitlementChecker
from sharewizard.features.plans.catalog import PlanCatalog
from sharewizard.features.referrals.capture import ReferralCapturePipeline
from sharewizard.features.referrals.storage import CookieTier, MemoryTier
from sharewizard.features.referrals.validator import ReferralValidator
from sharewizard.features.trials.service import TrialLifecycle
from sharewizard.features.usage.ledger import UsageLedger
from sharewizard.models.referral import PartnerCodeRecord, PartnerInfo
from sharewizard.stores.memory import MemoryAccountStore, MemoryPartnerRegistry


FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for expiry tests."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        ENV="test",
        STORE_BACKEND="memory",
        REFERRAL_DURABLE_BACKEND="memory",
        CHECKOUT_GATEWAY="document_store",
        STRIPE_SECRET_KEY=None,
        STRIPE_PRICE_BASIC_MONTH="price_basic_month",
        STRIPE_PRICE_BASIC_YEAR="price_basic_year",
        STRIPE_PRICE_FLEXY="price_flexy",
        BASE_URL="https://app.sharewizard.test",
        CHECKOUT_TIMEOUT_SECONDS=2.0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog(test_settings):
    return PlanCatalog(test_settings)


@pytest.fixture
def store():
    return MemoryAccountStore()


@pytest.fixture
def ledger(store, catalog):
    return UsageLedger(store, catalog)


@pytest.fixture
def entitlements(ledger, catalog, test_settings):
    return EntitlementChecker(ledger, catalog, test_settings)


@pytest.fixture
def trials(ledger, catalog, test_settings):
    return TrialLifecycle(ledger, catalog, test_settings)


@pytest.fixture
def acme_partner():
    return PartnerInfo(
        partner_id="partner-acme",
        display_name="Acme Media",
        email="partners@acme.test",
        company_name="Acme Media LLC",
        commission_rate=0.2,
    )


@pytest.fixture
def registry(acme_partner, clock):
    """Registry with one valid code (ACME2024) and a few unusable ones."""
    registry = MemoryPartnerRegistry()
    registry.add_partner(acme_partner)
    registry.add_partner(PartnerInfo(partner_id="partner-gone", display_name="Gone Co", active=False))
    registry.add_code(PartnerCodeRecord(code="ACME2024", partner_id="partner-acme", uses=3, max_uses=100))
    registry.add_code(PartnerCodeRecord(code="PAUSED", partner_id="partner-acme", active=False))
    registry.add_code(
        PartnerCodeRecord(code="OLDCODE", partner_id="partner-acme", expires_at=clock.now - timedelta(days=1))
    )
    registry.add_code(PartnerCodeRecord(code="FULL", partner_id="partner-acme", uses=10, max_uses=10))
    registry.add_code(PartnerCodeRecord(code="ORPHAN", partner_id="partner-missing"))
    registry.add_code(PartnerCodeRecord(code="GONE", partner_id="partner-gone"))
    return registry


@pytest.fixture
def validator(registry, clock):
    return ReferralValidator(registry, clock=clock)


@pytest.fixture
def durable_data():
    return {}


@pytest.fixture
def cookie_tier():
    return CookieTier()


@pytest.fixture
def durable_tier(durable_data, clock):
    return MemoryTier("visitor-1", durable_data, clock=clock)


@pytest.fixture
def referrals(cookie_tier, durable_tier, validator, test_settings, clock):
    return ReferralCapturePipeline(cookie_tier, durable_tier, validator, test_settings, clock=clock)
