import asyncio
from datetime import datetime

import pytest

from dailyq.core.errors import InsufficientBalanceError, StoreError
from dailyq.features.jokers.ledger import JokerLedger, current_year_month
from dailyq.tests.mocks import FlakyStore


@pytest.mark.asyncio
async def test_consume_from_empty_balance_raises_and_leaves_zero(store, test_settings, clock):
    store.create_profile("u1", balance=0, last_grant_month="2025-03")
    ledger = JokerLedger(store, settings=test_settings, clock=clock)

    with pytest.raises(InsufficientBalanceError):
        await ledger.use_one_joker("u1")

    assert await ledger.balance("u1") == 0


@pytest.mark.asyncio
async def test_consume_decrements_by_one(store, test_settings, clock):
    store.create_profile("u2", balance=3)
    ledger = JokerLedger(store, settings=test_settings, clock=clock)

    assert await ledger.use_one_joker("u2") is True
    assert await ledger.balance("u2") == 2


@pytest.mark.asyncio
async def test_retry_with_same_key_is_not_charged_twice(store, test_settings, clock):
    store.create_profile("u3", balance=2)
    ledger = JokerLedger(store, settings=test_settings, clock=clock)

    assert await ledger.use_one_joker("u3", idempotency_key="attempt-1") is True
    assert await ledger.use_one_joker("u3", idempotency_key="attempt-1") is False
    assert await ledger.balance("u3") == 1


@pytest.mark.asyncio
async def test_concurrent_consumes_never_go_negative(store, test_settings, clock):
    store.create_profile("u4", balance=1)
    ledger = JokerLedger(store, settings=test_settings, clock=clock)

    results = await asyncio.gather(
        ledger.use_one_joker("u4"),
        ledger.use_one_joker("u4"),
        return_exceptions=True,
    )

    assert sum(1 for r in results if r is True) == 1
    assert sum(1 for r in results if isinstance(r, InsufficientBalanceError)) == 1
    assert await ledger.balance("u4") == 0


@pytest.mark.asyncio
async def test_monthly_grant_applies_once_per_month(store, test_settings, clock):
    store.create_profile("u5", balance=1, last_grant_month="2025-02")
    ledger = JokerLedger(store, settings=test_settings, clock=clock)

    assert await ledger.grant_monthly_jokers("u5") is True
    assert await ledger.grant_monthly_jokers("u5") is False

    balance = await store.get_joker_balance("u5")
    assert balance.balance == 1 + test_settings.JOKER_MONTHLY_GRANT
    assert balance.last_grant_month == "2025-03"


@pytest.mark.asyncio
async def test_grant_in_new_month_applies_again(store, test_settings, clock):
    ledger = JokerLedger(store, settings=test_settings, clock=clock)
    await ledger.grant_monthly_jokers("u6")

    clock.set(datetime(2025, 4, 1, 0, 5))
    assert await ledger.grant_monthly_jokers("u6") is True
    assert await ledger.balance("u6") == 2 * test_settings.JOKER_MONTHLY_GRANT


@pytest.mark.asyncio
async def test_profile_load_survives_grant_failure(test_settings, clock):
    flaky = FlakyStore()
    flaky.create_profile("u7", balance=1)
    flaky.fail_once.add("grant_monthly_jokers")
    ledger = JokerLedger(flaky, settings=test_settings, clock=clock)

    profile = await ledger.profile("u7")
    assert profile.joker_balance == 1

    # Next load picks the grant up
    profile = await ledger.profile("u7")
    assert profile.joker_balance == 1 + test_settings.JOKER_MONTHLY_GRANT


@pytest.mark.asyncio
async def test_store_failure_propagates_from_consume(test_settings, clock):
    flaky = FlakyStore()
    flaky.create_profile("u8", balance=1)
    flaky.fail_once.add("consume_one_joker")
    ledger = JokerLedger(flaky, settings=test_settings, clock=clock)

    with pytest.raises(StoreError):
        await ledger.use_one_joker("u8")
    assert await ledger.balance("u8") == 1


@pytest.mark.asyncio
async def test_bonus_grants_add_to_balance(store):
    store.create_profile("u9", balance=1)
    joker = await store.add_jokers("u9", 2, reason="referral")
    assert joker.balance == 3


def test_current_year_month():
    assert current_year_month(datetime(2025, 12, 31, 23, 59)) == "2025-12"
