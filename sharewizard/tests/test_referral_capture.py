"""
Tests for the referral capture pipeline and storage tiers.
"""
import json
from datetime import timedelta

import pytest
from starlette.responses import Response

from sharewizard.features.referrals.capture import (
    PARTNER_INFO_KEY,
    REFERRAL_CODE_KEY,
    REFERRAL_TIMESTAMP_KEY,
    ReferralCapturePipeline,
)
from sharewizard.features.referrals.storage import CookieTier, MemoryTier, RedisTier
from sharewizard.models.referral import PartnerInfo


class ExplodingTier:
    name = "durable"

    async def get(self, key):
        raise OSError("storage unavailable")

    async def set(self, key, value, expires_at):
        raise OSError("storage unavailable")

    async def delete(self, key):
        raise OSError("storage unavailable")


async def _store_code(tier, code, captured_at, expires_at):
    await tier.set(REFERRAL_CODE_KEY, code, expires_at)
    await tier.set(REFERRAL_TIMESTAMP_KEY, str(int(captured_at.timestamp() * 1000)), expires_at)


@pytest.mark.asyncio
async def test_query_code_wins_over_stored_codes(referrals, cookie_tier, durable_tier, clock):
    expires = clock.now + timedelta(days=30)
    await _store_code(cookie_tier, "BCODE", clock.now, expires)
    await _store_code(durable_tier, "CCODE", clock.now, expires)

    assert await referrals.capture_and_resolve({"ref": "acode"}) == "ACODE"
    assert await referrals.capture_and_resolve({}) == "BCODE"


@pytest.mark.asyncio
async def test_durable_tier_used_when_cookie_missing(referrals, durable_tier, clock):
    await _store_code(durable_tier, "CCODE", clock.now, clock.now + timedelta(days=30))

    assert await referrals.capture_and_resolve() == "CCODE"


@pytest.mark.asyncio
async def test_no_referral_anywhere(referrals):
    assert await referrals.capture_and_resolve({"utm_source": "x"}) is None
    assert (await referrals.status()).has_referral is False


@pytest.mark.asyncio
async def test_persist_writes_identical_payload_to_both_tiers(referrals, cookie_tier, durable_tier, acme_partner):
    await referrals.persist("acme2024", acme_partner)

    for tier in (cookie_tier, durable_tier):
        assert await tier.get(REFERRAL_CODE_KEY) == "ACME2024"
        assert json.loads(await tier.get(PARTNER_INFO_KEY))["partner_id"] == "partner-acme"
    assert await cookie_tier.get(REFERRAL_TIMESTAMP_KEY) == await durable_tier.get(REFERRAL_TIMESTAMP_KEY)


@pytest.mark.asyncio
async def test_either_tier_alone_recovers_attribution(referrals, cookie_tier, durable_data, acme_partner):
    await referrals.persist("ACME2024", acme_partner)
    durable_data.clear()

    status = await referrals.status()

    assert status.code == "ACME2024"
    assert status.partner == acme_partner


@pytest.mark.asyncio
async def test_capture_persists_validated_code(referrals, acme_partner, clock):
    status = await referrals.capture({"ref": "acme2024"})

    assert status.has_referral is True
    assert status.code == "ACME2024"
    assert status.partner == acme_partner
    assert status.captured_at == clock.now.replace(microsecond=0)


@pytest.mark.asyncio
async def test_capture_does_not_persist_invalid_code(referrals, cookie_tier, durable_tier):
    status = await referrals.capture({"ref": "JUNK"})

    assert status.has_referral is False
    assert await cookie_tier.get(REFERRAL_CODE_KEY) is None
    assert await durable_tier.get(REFERRAL_CODE_KEY) is None


@pytest.mark.asyncio
async def test_invalid_query_code_keeps_cached_attribution(referrals):
    await referrals.capture({"ref": "ACME2024"})

    status = await referrals.capture({"ref": "PAUSED"})

    assert status.code == "ACME2024"


@pytest.mark.asyncio
async def test_stale_code_is_purged_from_both_tiers(referrals, cookie_tier, durable_tier, clock):
    captured = clock.now - timedelta(days=91)
    expires = clock.now + timedelta(days=30)
    await _store_code(cookie_tier, "OLD", captured, expires)
    await _store_code(durable_tier, "OLD", captured, expires)

    assert await referrals.capture_and_resolve() is None
    assert await cookie_tier.get(REFERRAL_CODE_KEY) is None
    assert await durable_tier.get(REFERRAL_CODE_KEY) is None


@pytest.mark.asyncio
async def test_code_expires_after_window(referrals, acme_partner, clock):
    await referrals.persist("ACME2024", acme_partner)

    clock.advance(days=89)
    assert await referrals.capture_and_resolve() == "ACME2024"

    clock.advance(days=2)
    assert await referrals.capture_and_resolve() is None


@pytest.mark.asyncio
async def test_clear_removes_everything(referrals, cookie_tier, durable_tier, acme_partner):
    await referrals.persist("ACME2024", acme_partner)

    await referrals.clear()

    assert (await referrals.status()).has_referral is False
    assert await referrals.cached_partner_info() is None
    for tier in (cookie_tier, durable_tier):
        assert await tier.get(PARTNER_INFO_KEY) is None


@pytest.mark.asyncio
async def test_cached_partner_info_prefers_durable_tier(referrals, cookie_tier, durable_tier, acme_partner, clock):
    other = PartnerInfo(partner_id="partner-other", display_name="Other")
    expires = clock.now + timedelta(days=1)
    await _store_code(cookie_tier, "OTHER", clock.now, expires)
    await cookie_tier.set(PARTNER_INFO_KEY, other.model_dump_json(), expires)
    await _store_code(durable_tier, "ACME2024", clock.now, expires)
    await durable_tier.set(PARTNER_INFO_KEY, acme_partner.model_dump_json(), expires)

    assert await referrals.cached_partner_info() == acme_partner


@pytest.mark.asyncio
async def test_cached_partner_info_expires_with_window(referrals, acme_partner, clock):
    await referrals.persist("ACME2024", acme_partner)

    clock.advance(days=91)

    assert await referrals.cached_partner_info() is None


@pytest.mark.asyncio
async def test_cached_partner_info_ignores_tier_without_timestamp(
    referrals, cookie_tier, durable_tier, acme_partner, clock
):
    await cookie_tier.set(REFERRAL_CODE_KEY, "ACME2024", clock.now + timedelta(days=1))
    await cookie_tier.set(PARTNER_INFO_KEY, acme_partner.model_dump_json(), clock.now + timedelta(days=1))

    assert await referrals.cached_partner_info() is None


@pytest.mark.asyncio
async def test_missing_cookie_timestamp_falls_back_to_durable_tier(referrals, cookie_tier, durable_tier, acme_partner):
    await referrals.persist("ACME2024", acme_partner)
    await cookie_tier.delete(REFERRAL_TIMESTAMP_KEY)

    assert await referrals.capture_and_resolve({}) == "ACME2024"
    assert await durable_tier.get(REFERRAL_CODE_KEY) == "ACME2024"
    assert await cookie_tier.get(REFERRAL_CODE_KEY) == "ACME2024"


@pytest.mark.asyncio
async def test_unparsable_timestamp_does_not_purge_other_tier(referrals, cookie_tier, durable_tier, clock):
    expires = clock.now + timedelta(days=30)
    await referrals.persist("ACME2024")
    await cookie_tier.set(REFERRAL_TIMESTAMP_KEY, "not-a-timestamp", expires)

    assert (await referrals.status()).code == "ACME2024"
    assert await durable_tier.get(REFERRAL_TIMESTAMP_KEY) is not None


@pytest.mark.asyncio
async def test_storage_failures_degrade_to_no_attribution(validator, test_settings, clock, acme_partner):
    pipeline = ReferralCapturePipeline(
        ExplodingTier(), ExplodingTier(), validator, test_settings, clock=clock
    )

    await pipeline.persist("ACME2024", acme_partner)
    await pipeline.clear()
    assert await pipeline.capture_and_resolve() is None
    assert await pipeline.cached_partner_info() is None
    assert (await pipeline.capture({"ref": "ACME2024"})).has_referral is False
    assert await pipeline.capture_and_resolve({"ref": "ACME2024"}) == "ACME2024"


@pytest.mark.asyncio
async def test_cookie_tier_flushes_set_cookie_headers(clock):
    tier = CookieTier({"existing": "1"})
    await tier.set(REFERRAL_CODE_KEY, "ACME2024", clock.now + timedelta(days=90))
    await tier.set(PARTNER_INFO_KEY, '{"partner_id": "p"}', clock.now + timedelta(days=90))
    await tier.delete("existing")

    response = Response()
    tier.apply(response)

    cookies = response.headers.getlist("set-cookie")
    assert len(cookies) == 3
    assert cookies[0].startswith(f"{REFERRAL_CODE_KEY}=ACME2024")
    assert "Path=/" in cookies[0]
    assert "SameSite=lax" in cookies[0]
    assert await tier.get(PARTNER_INFO_KEY) == '{"partner_id": "p"}'
    assert await tier.get("existing") is None


@pytest.mark.asyncio
async def test_memory_tier_expires_entries(clock):
    tier = MemoryTier("visitor-1", clock=clock)
    await tier.set("k", "v", clock.now + timedelta(hours=1))

    assert await tier.get("k") == "v"
    clock.advance(hours=2)
    assert await tier.get("k") is None


@pytest.mark.asyncio
async def test_memory_tier_scopes_by_namespace(clock):
    shared = {}
    first = MemoryTier("visitor-1", shared, clock=clock)
    second = MemoryTier("visitor-2", shared, clock=clock)
    await first.set("k", "v", clock.now + timedelta(hours=1))

    assert await second.get("k") is None


@pytest.mark.asyncio
async def test_memory_tier_write_sweeps_abandoned_namespaces(clock):
    shared = {}
    abandoned = MemoryTier("visitor-1", shared, clock=clock)
    await abandoned.set("k", "v", clock.now + timedelta(hours=1))
    clock.advance(hours=2)

    await MemoryTier("visitor-2", shared, clock=clock).set("k", "v", clock.now + timedelta(hours=1))

    assert list(shared) == ["visitor-2:k"]


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.expiries = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, exat=None):
        self.data[key] = value.encode("utf-8")
        self.expiries[key] = exat

    def delete(self, key):
        self.data.pop(key, None)


@pytest.mark.asyncio
async def test_redis_tier_namespaces_keys_and_sets_expiry(clock):
    client = FakeRedis()
    tier = RedisTier(client, "acct-1")
    expires = clock.now + timedelta(days=90)

    await tier.set(REFERRAL_CODE_KEY, "ACME2024", expires)

    key = f"sharewizard:referral:acct-1:{REFERRAL_CODE_KEY}"
    assert client.expiries[key] == expires
    assert await tier.get(REFERRAL_CODE_KEY) == "ACME2024"
    await tier.delete(REFERRAL_CODE_KEY)
    assert await tier.get(REFERRAL_CODE_KEY) is None
