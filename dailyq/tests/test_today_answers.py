from datetime import datetime

import pytest

from dailyq.core.errors import NotFoundError, ValidationError
from dailyq.features.answers.service import TodayAnswerService
from dailyq.features.calendar.cache import ReconciliationCache
from dailyq.features.calendar.days import add_days
from dailyq.features.streaks.recap import RECAP_FLAG, build_weekly_recap, maybe_weekly_recap
from dailyq.features.streaks.service import StreakCalculator
from dailyq.tests.mocks import FlakyStore

TODAY = "2025-03-10"  # a Monday


def _service(store, test_settings, clock):
    cache = ReconciliationCache(store, user_id="u1")
    streaks = StreakCalculator(store, settings=test_settings, clock=clock)
    return TodayAnswerService(store, cache, streaks, settings=test_settings, clock=clock), cache


@pytest.mark.asyncio
async def test_load_requires_a_question(store, test_settings, clock):
    service, _ = _service(store, test_settings, clock)
    with pytest.raises(NotFoundError):
        await service.load("u1")

    store.add_question(TODAY, "Hoe begon je de week?")
    question, answer = await service.load("u1")
    assert question.text == "Hoe begon je de week?"
    assert answer is None


@pytest.mark.asyncio
async def test_submit_then_update_same_day(store, test_settings, clock):
    store.add_question(TODAY, "Q")
    service, cache = _service(store, test_settings, clock)

    first = await service.submit("u1", " eerste ")
    assert first.was_update is False
    assert first.answer.text == "eerste"
    assert first.answer.is_joker is False
    assert cache.entry_for(TODAY).answer_text == "eerste"

    second = await service.submit("u1", "tweede")
    assert second.was_update is True
    assert (await store.get_answer("u1", TODAY)).text == "tweede"


@pytest.mark.asyncio
async def test_submit_rejects_empty_text(store, test_settings, clock):
    store.add_question(TODAY, "Q")
    service, _ = _service(store, test_settings, clock)
    with pytest.raises(ValidationError):
        await service.submit("u1", "   ")
    assert await store.get_answer("u1", TODAY) is None


@pytest.mark.asyncio
async def test_monday_recap_shown_once(store, test_settings, clock):
    store.add_question(TODAY, "Q")
    for day in ("2025-03-03", "2025-03-05", "2025-03-09"):
        await store.upsert_answer("u1", day, "a")
    service, _ = _service(store, test_settings, clock)

    first = await service.submit("u1", "maandag")
    assert first.recap is not None
    assert (first.recap.start, first.recap.end) == ("2025-03-03", "2025-03-09")
    assert (first.recap.count, first.recap.total) == (3, 7)

    second = await service.submit("u1", "nog een keer")
    assert second.recap is None


@pytest.mark.asyncio
async def test_no_recap_on_other_weekdays(store, test_settings, clock):
    clock.set(datetime(2025, 3, 11, 9, 0))
    store.add_question("2025-03-11", "Q")
    service, _ = _service(store, test_settings, clock)

    outcome = await service.submit("u1", "dinsdag")
    assert outcome.recap is None


@pytest.mark.asyncio
async def test_recap_denominator_respects_account_start(store):
    now = datetime(2025, 3, 10, 9, 0)
    await store.upsert_answer("u1", "2025-03-08", "a")

    recap = await build_weekly_recap(store, "u1", now, account_created_at="2025-03-07")
    assert (recap.count, recap.total) == (1, 3)


@pytest.mark.asyncio
async def test_recap_flag_is_per_monday(store):
    monday = datetime(2025, 3, 10, 9, 0)
    next_monday = datetime(2025, 3, 17, 9, 0)

    assert await maybe_weekly_recap(store, "u1", monday) is not None
    assert await maybe_weekly_recap(store, "u1", monday) is None
    assert await maybe_weekly_recap(store, "u1", next_monday) is not None
    assert not await store.mark_flag_if_absent("u1", RECAP_FLAG, TODAY)


@pytest.mark.asyncio
async def test_submit_reports_milestone(store, test_settings, clock):
    store.add_question(TODAY, "Q")
    for back in range(1, 7):
        await store.upsert_answer("u1", add_days(TODAY, -back), "a")
    service, _ = _service(store, test_settings, clock)

    outcome = await service.submit("u1", "zeven")
    assert outcome.milestone is not None
    assert outcome.milestone.milestone == 7


@pytest.mark.asyncio
async def test_post_submit_failures_do_not_fail_the_save(test_settings, clock):
    flaky = FlakyStore()
    flaky.add_question(TODAY, "Q")
    flaky.fail_always.update({"get_streaks", "list_answers_in_range"})
    service, _ = _service(flaky, test_settings, clock)

    outcome = await service.submit("u1", "antwoord")
    assert outcome.answer.text == "antwoord"
    assert outcome.recap is None
    assert outcome.milestone is None
