"""Tests for single-edit cascade propagation."""

from datetime import date

import pytest

from schedule_engine.engine.calendar import diff_days
from schedule_engine.engine.cascade import CascadePropagator
from schedule_engine.models import AnomalyKind, ChangeKind

from conftest import FRI, MON, NEXT_FRI, NEXT_MON, PROJECT_ID, THU, TUE, WED, by_id, make_task


def chain():
    return [
        make_task("a", MON, FRI),
        make_task("b", NEXT_MON, NEXT_FRI, "a"),
        make_task("c", date(2026, 1, 19), date(2026, 1, 23), "b"),
    ]


async def move(store, working, task_id, start, end):
    """Simulate an edit that has already been written."""
    working[task_id] = await store.update_task_dates(PROJECT_ID, task_id, start, end)


class TestCascadePropagator:
    @pytest.mark.asyncio
    async def test_chain_shifts_and_persists(self, store, seed_project):
        await seed_project(chain())
        working = by_id(await store.list_tasks(PROJECT_ID))
        await move(store, working, "a", NEXT_MON, NEXT_FRI)

        result = await CascadePropagator(store, PROJECT_ID, working, False).run("a")

        assert result.updated_ids == ["b", "c"]
        stored = by_id(await store.list_tasks(PROJECT_ID))
        assert (stored["b"].start_date, stored["b"].end_date) == (date(2026, 1, 19), date(2026, 1, 23))
        assert (stored["c"].start_date, stored["c"].end_date) == (date(2026, 1, 26), date(2026, 1, 30))

    @pytest.mark.asyncio
    async def test_duration_preserved(self, store, seed_project):
        await seed_project(chain())
        before = by_id(await store.list_tasks(PROJECT_ID))
        working = dict(before)
        await move(store, working, "a", WED, date(2026, 1, 20))

        await CascadePropagator(store, PROJECT_ID, working, False).run("a")

        after = by_id(await store.list_tasks(PROJECT_ID))
        for task_id in ("b", "c"):
            assert diff_days(after[task_id].start_date, after[task_id].end_date, False) == \
                diff_days(before[task_id].start_date, before[task_id].end_date, False)

    @pytest.mark.asyncio
    async def test_successor_checks_every_predecessor(self, store, seed_project):
        await seed_project([
            make_task("a", MON, WED),
            make_task("x", MON, date(2026, 1, 20)),
            make_task("d", date(2026, 1, 21), date(2026, 1, 22), "a", "x"),
        ])
        working = by_id(await store.list_tasks(PROJECT_ID))
        await move(store, working, "a", MON, THU)

        result = await CascadePropagator(store, PROJECT_ID, working, False).run("a")

        # x still ends later than a, so d stays put
        assert result.updated_ids == []

    @pytest.mark.asyncio
    async def test_parent_rollup_reaches_dependents_of_parent(self, store, seed_project):
        await seed_project([
            make_task("p", MON, NEXT_FRI),
            make_task("c1", MON, FRI, parent_task_id="p"),
            make_task("c2", NEXT_MON, NEXT_FRI, parent_task_id="p"),
            make_task("s", date(2026, 1, 19), date(2026, 1, 23), "p"),
        ])
        working = by_id(await store.list_tasks(PROJECT_ID))
        await move(store, working, "c2", date(2026, 1, 19), date(2026, 1, 23))

        result = await CascadePropagator(store, PROJECT_ID, working, False).run("c2")

        stored = by_id(await store.list_tasks(PROJECT_ID))
        assert (stored["p"].start_date, stored["p"].end_date) == (MON, date(2026, 1, 23))
        assert (stored["s"].start_date, stored["s"].end_date) == (date(2026, 1, 26), date(2026, 1, 30))
        assert set(result.updated_ids) == {"p", "s"}

    @pytest.mark.asyncio
    async def test_exclusion_partner_moved(self, store, seed_project):
        await seed_project([
            make_task("a", MON, TUE, exclusion_links=["e"]),
            make_task("e", WED, THU, exclusion_links=["a"]),
        ])
        working = by_id(await store.list_tasks(PROJECT_ID))
        await move(store, working, "a", MON, WED)

        result = await CascadePropagator(store, PROJECT_ID, working, False).run("a")

        stored = by_id(await store.list_tasks(PROJECT_ID))
        assert result.updated_ids == ["e"]
        assert (stored["e"].start_date, stored["e"].end_date) == (THU, FRI)

    @pytest.mark.asyncio
    async def test_iteration_limit_reported(self, store, seed_project):
        await seed_project(chain())
        working = by_id(await store.list_tasks(PROJECT_ID))
        await move(store, working, "a", NEXT_MON, NEXT_FRI)

        result = await CascadePropagator(store, PROJECT_ID, working, False, max_iterations=1).run("a")

        assert result.updated_ids == ["b"]
        assert [a.kind for a in result.anomalies] == [AnomalyKind.ITERATION_LIMIT]
        stored = by_id(await store.list_tasks(PROJECT_ID))
        assert stored["c"].start_date == date(2026, 1, 19)

    @pytest.mark.asyncio
    async def test_each_write_notifies(self, store, seed_project):
        await seed_project(chain())
        working = by_id(await store.list_tasks(PROJECT_ID))
        events = []

        async def listener(event):
            events.append(event)

        store.notifier.subscribe(PROJECT_ID, listener)
        await move(store, working, "a", NEXT_MON, NEXT_FRI)
        await CascadePropagator(store, PROJECT_ID, working, False).run("a")

        assert [e.task_ids for e in events] == [["a"], ["b"], ["c"]]
        assert all(e.kind == ChangeKind.TASKS_UPDATED for e in events)

    @pytest.mark.asyncio
    async def test_stored_loop_left_unchanged(self, store, seed_project):
        await seed_project([
            make_task("x", MON, FRI),
            make_task("a", NEXT_MON, NEXT_FRI, "x", "b"),
            make_task("b", date(2026, 1, 19), date(2026, 1, 23), "a"),
        ])
        working = by_id(await store.list_tasks(PROJECT_ID))
        await move(store, working, "x", MON, NEXT_MON)

        result = await CascadePropagator(store, PROJECT_ID, working, False).run("x")

        assert result.updated_ids == []
        assert [(a.kind, a.task_id, a.related_ids) for a in result.anomalies] == [
            (AnomalyKind.CYCLE_DETECTED, "a", ["a", "b", "a"]),
        ]
        stored = by_id(await store.list_tasks(PROJECT_ID))
        assert (stored["a"].start_date, stored["a"].end_date) == (NEXT_MON, NEXT_FRI)
        assert (stored["b"].start_date, stored["b"].end_date) == (date(2026, 1, 19), date(2026, 1, 23))

    @pytest.mark.asyncio
    async def test_loop_member_processed_once(self, store, seed_project):
        await seed_project([
            make_task("a", MON, FRI, "b"),
            make_task("b", NEXT_MON, NEXT_FRI, "a"),
            make_task("c", date(2026, 1, 19), date(2026, 1, 23), "b"),
        ])
        working = by_id(await store.list_tasks(PROJECT_ID))
        await move(store, working, "b", date(2026, 1, 19), date(2026, 1, 23))

        result = await CascadePropagator(store, PROJECT_ID, working, False).run("b")

        # c is downstream of the loop, not on it, so it still follows b
        assert result.updated_ids == ["c"]
        assert [a.kind for a in result.anomalies] == [AnomalyKind.CYCLE_DETECTED]
        stored = by_id(await store.list_tasks(PROJECT_ID))
        assert (stored["a"].start_date, stored["a"].end_date) == (MON, FRI)
        assert stored["c"].start_date == date(2026, 1, 26)
