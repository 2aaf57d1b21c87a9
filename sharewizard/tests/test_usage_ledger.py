"""
Tests for the usage ledger.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from sharewizard.features.usage.ledger import GenerationCost, days_remaining
from sharewizard.models.account import AccountRecord


@pytest.mark.asyncio
async def test_first_read_creates_free_account(ledger, store):
    counter = await ledger.get_counter("acct-new")

    assert counter.plan == "free"
    assert counter.used == 0
    assert counter.limit == 3
    assert (await store.get_account("acct-new")).requests_limit == 3


@pytest.mark.asyncio
async def test_missing_limit_defaults_from_plan(ledger, store):
    await store.create_account(AccountRecord(account_id="acct-1", plan_type="basicMonth", requests_used=10))

    counter = await ledger.get_counter("acct-1")
    assert counter.limit == 70
    assert counter.remaining == 60


@pytest.mark.asyncio
async def test_record_usage_charges_cost(ledger):
    await ledger.get_account("acct-1")

    assert await ledger.record_usage("acct-1") is True
    assert (await ledger.get_counter("acct-1")).used == 1


@pytest.mark.asyncio
async def test_record_usage_refuses_beyond_limit(ledger, store):
    await store.create_account(
        AccountRecord(account_id="acct-1", plan_type="basicMonth", requests_used=68, requests_limit=70)
    )

    assert await ledger.record_usage("acct-1", GenerationCost.LONGFORM) is False
    assert (await ledger.get_counter("acct-1")).used == 68
    assert await ledger.record_usage("acct-1", 2) is True
    assert (await ledger.get_counter("acct-1")).used == 70


@pytest.mark.asyncio
async def test_record_usage_rejects_non_positive_cost(ledger):
    with pytest.raises(ValueError):
        await ledger.record_usage("acct-1", 0)


@pytest.mark.asyncio
async def test_concurrent_usage_never_exceeds_limit(ledger, store):
    """used <= limit holds after any interleaving of billable actions."""
    await store.create_account(AccountRecord(account_id="acct-1", plan_type="trial", requests_limit=5))

    results = await asyncio.gather(*(ledger.record_usage("acct-1") for _ in range(20)))

    counter = await ledger.get_counter("acct-1")
    assert sum(results) == 5
    assert counter.used == counter.limit == 5


@pytest.mark.asyncio
async def test_flex_top_up_moves_free_account_to_flex(ledger):
    await ledger.get_account("acct-1")
    await ledger.record_usage("acct-1", 3)

    assert await ledger.add_flex_requests("acct-1", 20) is True

    counter = await ledger.get_counter("acct-1")
    assert counter.plan == "flexy"
    assert counter.used == 3
    assert counter.limit == 23


@pytest.mark.asyncio
async def test_flex_top_up_keeps_paid_plan(ledger, store):
    await store.create_account(
        AccountRecord(account_id="acct-1", plan_type="basicMonth", requests_used=70, requests_limit=70)
    )

    await ledger.add_flex_requests("acct-1", 20)

    counter = await ledger.get_counter("acct-1")
    assert counter.plan == "basicMonth"
    assert counter.limit == 90
    assert counter.used == 70


@pytest.mark.asyncio
async def test_reset_usage(ledger):
    await ledger.get_account("acct-1")
    await ledger.record_usage("acct-1", 2)

    assert await ledger.reset_usage("acct-1") is True
    assert (await ledger.get_counter("acct-1")).used == 0
    assert await ledger.reset_usage("acct-missing") is False


@pytest.mark.asyncio
async def test_apply_plan_change_resets_usage(ledger):
    await ledger.get_account("acct-1")
    await ledger.record_usage("acct-1", 3)

    await ledger.apply_plan_change("acct-1", "basicYear")

    counter = await ledger.get_counter("acct-1")
    assert counter.plan == "basicYear"
    assert counter.limit == 900
    assert counter.used == 0


@pytest.mark.asyncio
async def test_apply_plan_change_with_override_keeps_usage(ledger):
    await ledger.get_account("acct-1")
    await ledger.record_usage("acct-1", 2)

    await ledger.apply_plan_change("acct-1", "basicMonth", reset_usage=False, limit_override=100)

    counter = await ledger.get_counter("acct-1")
    assert counter.limit == 100
    assert counter.used == 2


@pytest.mark.asyncio
async def test_apply_plan_change_unknown_plan(ledger):
    with pytest.raises(ValueError):
        await ledger.apply_plan_change("acct-1", "platinum")


@pytest.mark.asyncio
async def test_is_last_request(ledger):
    await ledger.get_account("acct-1")
    await ledger.record_usage("acct-1", 2)

    assert await ledger.is_last_request("acct-1") is True
    await ledger.record_usage("acct-1")
    assert await ledger.is_last_request("acct-1") is False


def test_days_remaining_rounds_up():
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert days_remaining(now + timedelta(days=4, hours=1), now=now) == 5
    assert days_remaining(now - timedelta(days=1), now=now) == 0
    assert days_remaining(None, now=now) == 0
    assert days_remaining(datetime(2026, 3, 3), now=now) == 2
