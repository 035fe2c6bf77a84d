import pytest

from dailyq.features.calendar.days import add_days
from dailyq.features.streaks.aggregate import compute_streaks
from dailyq.features.streaks.service import StreakCalculator, milestone_progress
from dailyq.models.answer import Answer
from dailyq.tests.mocks import FlakyStore

TODAY = "2025-03-10"


def _answers(user_id, days, joker_days=()):
    out = [Answer(user_id=user_id, day=d, text="a") for d in days]
    out += [Answer(user_id=user_id, day=d, text="a", is_joker=True) for d in joker_days]
    return out


def _run(end, length):
    return [add_days(end, -i) for i in range(length)]


def test_streak_ending_today():
    state = compute_streaks(_answers("u", _run(TODAY, 3)), TODAY)
    assert (state.visual_streak, state.real_streak) == (3, 3)
    assert state.ends_on == TODAY


def test_unanswered_today_keeps_yesterdays_run():
    state = compute_streaks(_answers("u", _run("2025-03-09", 4)), TODAY)
    assert state.visual_streak == 4
    assert state.ends_on == "2025-03-09"


def test_gap_before_yesterday_breaks_streak():
    state = compute_streaks(_answers("u", _run("2025-03-08", 5)), TODAY)
    assert (state.visual_streak, state.real_streak) == (0, 0)
    assert state.ends_on is None


def test_joker_days_count_for_visual_only():
    days = ["2025-03-10", "2025-03-09", "2025-03-07"]
    state = compute_streaks(_answers("u", days, joker_days=["2025-03-08"]), TODAY)
    assert state.visual_streak == 4
    assert state.real_streak == 2
    assert state.real_streak <= state.visual_streak


def test_future_answers_are_ignored():
    state = compute_streaks(_answers("u", ["2025-03-11", TODAY]), TODAY)
    assert state.visual_streak == 1


def test_milestone_progress():
    progress = milestone_progress(5)
    assert (progress.next_milestone, progress.days_left) == (7, 2)
    assert milestone_progress(7).next_milestone == 30
    assert milestone_progress(150).next_milestone is None


@pytest.mark.asyncio
async def test_milestone_fires_once_on_reaching_seven(store, test_settings, clock):
    calculator = StreakCalculator(store, settings=test_settings, clock=clock)
    for day in _run("2025-03-09", 6):
        await store.upsert_answer("u1", day, "a")

    state, event = await calculator.refresh("u1", TODAY)
    assert state.visual_streak == 6
    assert event is None

    await store.upsert_answer("u1", TODAY, "a")
    state, event = await calculator.refresh("u1", TODAY)
    assert state.visual_streak == 7
    assert event is not None and event.milestone == 7

    # Re-render and a repeated save do not fire again
    _, again = await calculator.refresh("u1", TODAY)
    assert again is None
    assert await calculator.on_answer_saved("u1", TODAY, TODAY) is None


@pytest.mark.asyncio
async def test_milestone_does_not_refire_next_day_before_answering(store, test_settings, clock):
    calculator = StreakCalculator(store, settings=test_settings, clock=clock)
    for day in _run(TODAY, 7):
        await store.upsert_answer("u2", day, "a")

    _, first = await calculator.refresh("u2", TODAY)
    assert first is not None

    # Next morning: run still ends yesterday with length 7
    _, next_day = await calculator.refresh("u2", "2025-03-11")
    assert next_day is None


@pytest.mark.asyncio
async def test_milestone_counts_joker_backed_visual_streak(store, test_settings, clock):
    calculator = StreakCalculator(store, settings=test_settings, clock=clock)
    days = _run(TODAY, 7)
    for day in days:
        await store.upsert_answer("u3", day, "a", is_joker=(day == "2025-03-07"))

    state, event = await calculator.refresh("u3", TODAY)
    assert state.visual_streak == 7
    assert state.real_streak == 3
    assert event is not None and event.milestone == 7


@pytest.mark.asyncio
async def test_streak_store_failure_degrades_to_no_event(test_settings, clock):
    flaky = FlakyStore()
    flaky.fail_always.add("get_streaks")
    calculator = StreakCalculator(flaky, settings=test_settings, clock=clock)

    assert await calculator.on_answer_saved("u4", TODAY) is None
