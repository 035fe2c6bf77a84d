import asyncio
from datetime import datetime

import pytest

from dailyq.features.calendar.cache import MonthSnapshot, ReconciliationCache
from dailyq.features.calendar.view import CalendarNavigator, month_grid, month_progress, render_month
from dailyq.models.answer import CalendarAnswerEntry
from dailyq.tests.mocks import GatedStore

TODAY = "2025-03-10"


def test_month_grid_is_monday_first():
    grid = month_grid("2025-03")  # March 1st 2025 is a Saturday
    assert grid[:5] == [None] * 5
    assert grid[5] == "2025-03-01"
    assert grid[-1] == "2025-03-31"

    assert month_grid("2024-04")[0] == "2024-04-01"  # a Monday


def test_render_month_states_and_progress():
    snapshot = MonthSnapshot(
        entries={
            "2025-03-07": CalendarAnswerEntry("Q", "A"),
            "2025-03-08": CalendarAnswerEntry("Q", "A", is_joker=True),
        }
    )
    view = render_month("2025-03", snapshot, TODAY, account_created_at="2025-03-03")
    by_day = {cell.day: cell for cell in view.cells if cell}

    assert by_day["2025-03-01"].state == "before"
    assert by_day["2025-03-03"].state == "missed"
    assert by_day["2025-03-07"].state == "answered"
    assert by_day["2025-03-08"].state == "joker"
    assert by_day[TODAY].state == "today"
    assert by_day["2025-03-11"].state == "future"
    assert by_day["2025-03-31"].number == 31

    assert (view.progress.answered, view.progress.answerable) == (2, 8)
    assert all(len(week) == 7 for week in view.weeks)


def test_future_month_has_no_progress():
    progress = month_progress("2025-04", MonthSnapshot(entries={}), TODAY)
    assert (progress.answered, progress.answerable, progress.percent) == (0, 0, 0.0)


@pytest.mark.asyncio
async def test_navigation_crosses_year_boundary(store, test_settings):
    clock = lambda: datetime(2025, 1, 15, 9, 0)  # noqa: E731
    navigator = CalendarNavigator(ReconciliationCache(store, user_id="u1"), "u1", settings=test_settings, clock=clock)

    assert navigator.year_month == "2025-01"
    assert navigator.previous() == "2024-12"
    assert navigator.next() == "2025-01"
    assert navigator.next() == "2025-02"
    assert navigator.go_today() == "2025-01"


@pytest.mark.asyncio
async def test_load_renders_cached_answers(store, test_settings, clock):
    await store.upsert_answer("u1", "2025-03-07", "A")
    navigator = CalendarNavigator(ReconciliationCache(store, user_id="u1"), "u1", settings=test_settings, clock=clock)

    view = await navigator.load()
    assert view.year_month == "2025-03"
    assert next(c for c in view.cells if c and c.day == "2025-03-07").state == "answered"


@pytest.mark.asyncio
async def test_result_for_abandoned_month_is_dropped(test_settings, clock):
    gated = GatedStore()
    navigator = CalendarNavigator(ReconciliationCache(gated, user_id="u1"), "u1", settings=test_settings, clock=clock)

    pending = asyncio.create_task(navigator.load())
    while not gated.gates:
        await asyncio.sleep(0)
    navigator.previous()
    gated.gates[0].set()

    assert await pending is None
    assert navigator.year_month == "2025-02"
