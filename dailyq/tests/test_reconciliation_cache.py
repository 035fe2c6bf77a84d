import asyncio

import pytest

from dailyq.features.calendar.cache import LOAD_ERROR, ReconciliationCache
from dailyq.models.answer import CalendarAnswerEntry
from dailyq.tests.mocks import FlakyStore, GatedStore


async def _release_when_waiting(store: GatedStore, index: int) -> None:
    while len(store.gates) <= index:
        await asyncio.sleep(0)
    store.gates[index].set()


@pytest.mark.asyncio
async def test_fetch_joins_answers_with_question_text(store):
    store.add_question("2025-03-07", "Wat maakte je blij?")
    await store.upsert_answer("u1", "2025-03-07", "De zon")
    await store.upsert_answer("u1", "2025-03-08", "Regen", is_joker=True)
    cache = ReconciliationCache(store, user_id="u1")

    month = await cache.get_or_fetch_month("u1", "2025-03")

    assert set(month.entries) == {"2025-03-07", "2025-03-08"}
    assert month.get("2025-03-07").question_text == "Wat maakte je blij?"
    assert month.get("2025-03-08").question_text == ""
    assert month.get("2025-03-08").is_joker is True
    assert not month.loading and month.error is None


@pytest.mark.asyncio
async def test_populated_month_is_served_from_cache(store):
    await store.upsert_answer("u1", "2025-03-07", "first")
    cache = ReconciliationCache(store, user_id="u1")
    await cache.get_or_fetch_month("u1", "2025-03")

    await store.upsert_answer("u1", "2025-03-08", "other device")
    month = await cache.get_or_fetch_month("u1", "2025-03")
    assert "2025-03-08" not in month.entries

    refreshed = await cache.refetch("2025-03")
    assert "2025-03-08" in refreshed.entries


@pytest.mark.asyncio
async def test_empty_month_is_refetched_every_time():
    flaky = FlakyStore()
    cache = ReconciliationCache(flaky, user_id="u1")

    await cache.get_or_fetch_month("u1", "2025-02")
    await cache.get_or_fetch_month("u1", "2025-02")

    assert flaky.calls["list_answers_in_range"] == 2


@pytest.mark.asyncio
async def test_refetch_replaces_month_wholesale(store):
    await store.upsert_answer("u1", "2025-03-07", "keep")
    cache = ReconciliationCache(store, user_id="u1")
    await cache.get_or_fetch_month("u1", "2025-03")

    store._answers.clear()
    month = await cache.refetch("2025-03")
    assert month.entries == {}


@pytest.mark.asyncio
async def test_optimistic_write_is_visible_without_fetch(store):
    cache = ReconciliationCache(store, user_id="u1")
    entry = CalendarAnswerEntry(question_text="Q", answer_text="A", is_joker=True)

    cache.set_answer_for_day("2025-03-07", entry)

    assert cache.peek("2025-03").get("2025-03-07") == entry
    assert cache.entry_for("2025-03-07") == entry
    # A lone optimistic entry does not count as a loaded month
    assert not cache.is_populated("2025-03")


@pytest.mark.asyncio
async def test_slow_fetch_does_not_erase_optimistic_write():
    gated = GatedStore()
    cache = ReconciliationCache(gated, user_id="u1")
    entry = CalendarAnswerEntry(question_text="Q", answer_text="just saved")

    fetch = asyncio.create_task(cache.get_or_fetch_month("u1", "2025-03"))
    while not gated.gates:
        await asyncio.sleep(0)
    cache.set_answer_for_day("2025-03-07", entry)
    gated.gates[0].set()
    month = await fetch

    assert month.get("2025-03-07") == entry
    assert cache.is_populated("2025-03")


@pytest.mark.asyncio
async def test_older_fetch_finishing_last_is_discarded():
    gated = GatedStore()
    cache = ReconciliationCache(gated, user_id="u1")

    first = asyncio.create_task(cache.refetch("2025-03"))
    while len(gated.gates) < 1:
        await asyncio.sleep(0)
    await gated.upsert_answer("u1", "2025-03-05", "newer")
    second = asyncio.create_task(cache.refetch("2025-03"))

    await _release_when_waiting(gated, 1)
    await second
    await _release_when_waiting(gated, 0)
    await first

    assert "2025-03-05" in cache.peek("2025-03").entries


@pytest.mark.asyncio
async def test_fetch_failure_sets_error_and_keeps_entries():
    flaky = FlakyStore()
    await flaky.upsert_answer("u1", "2025-03-07", "A")
    cache = ReconciliationCache(flaky, user_id="u1")
    await cache.get_or_fetch_month("u1", "2025-03")

    flaky.fail_once.add("list_answers_in_range")
    month = await cache.refetch("2025-03")

    assert month.error == LOAD_ERROR
    assert not month.loading
    assert "2025-03-07" in month.entries


@pytest.mark.asyncio
async def test_question_failure_degrades_to_empty_text():
    flaky = FlakyStore()
    flaky.add_question("2025-03-07", "Q")
    await flaky.upsert_answer("u1", "2025-03-07", "A")
    flaky.fail_once.add("list_questions_in_range")
    cache = ReconciliationCache(flaky, user_id="u1")

    month = await cache.get_or_fetch_month("u1", "2025-03")
    assert month.get("2025-03-07").question_text == ""
    assert month.error is None


@pytest.mark.asyncio
async def test_close_drops_months(store):
    await store.upsert_answer("u1", "2025-03-07", "A")
    cache = ReconciliationCache(store, user_id="u1")
    await cache.get_or_fetch_month("u1", "2025-03")

    cache.close()
    assert cache.peek("2025-03").entries == {}
