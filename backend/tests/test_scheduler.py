"""Tests for the schedule service: edits, refresh and task lifecycle."""

import asyncio
from datetime import date

import pytest

from schedule_engine.exceptions import (
    CycleDetectedError,
    InvalidDateRangeError,
    ProjectNotFoundError,
    TaskNotFoundError,
)
from schedule_engine.models import (
    AnomalyKind,
    ConstraintType,
    CreateProjectRequest,
    CreateTaskRequest,
    Dependency,
    LinkType,
    TaskChanges,
    UpdateProjectRequest,
)

from conftest import FRI, MON, NEXT_FRI, NEXT_MON, PROJECT_ID, SAT, THU, TUE, WED, by_id, make_task


def chain():
    return [
        make_task("a", MON, FRI),
        make_task("b", NEXT_MON, NEXT_FRI, "a"),
        make_task("c", date(2026, 1, 19), date(2026, 1, 23), "b"),
    ]


async def stored(store):
    return by_id(await store.list_tasks(PROJECT_ID))


class TestApplyEdit:
    @pytest.mark.asyncio
    async def test_rejects_cycle_without_writing(self, service, store, seed_project):
        await seed_project(chain())
        before = await stored(store)

        with pytest.raises(CycleDetectedError) as exc_info:
            await service.apply_edit(PROJECT_ID, "a", TaskChanges(dependencies=[Dependency(predecessor_id="c")]))

        assert exc_info.value.chain == ["a", "c", "b", "a"]
        assert "a -> c -> b -> a" in str(exc_info.value)
        after = await stored(store)
        for task_id in ("a", "b", "c"):
            assert after[task_id].dependencies == before[task_id].dependencies

    @pytest.mark.asyncio
    async def test_date_edit_cascades(self, service, store, seed_project):
        await seed_project(chain())

        result = await service.apply_edit(
            PROJECT_ID, "a", TaskChanges(start_date=NEXT_MON, end_date=NEXT_FRI)
        )

        assert [t.id for t in result.updated_tasks] == ["a", "b", "c"]
        after = await stored(store)
        assert after["b"].start_date == date(2026, 1, 19)
        assert after["c"].start_date == date(2026, 1, 26)

    @pytest.mark.asyncio
    async def test_edited_task_scheduled_against_predecessors(self, service, store, seed_project):
        await seed_project(chain())

        await service.apply_edit(PROJECT_ID, "b", TaskChanges(start_date=MON, end_date=TUE))

        b = (await stored(store))["b"]
        assert (b.start_date, b.end_date) == (NEXT_MON, date(2026, 1, 13))

    @pytest.mark.asyncio
    async def test_legacy_single_predecessor_edit(self, service, store, seed_project):
        await seed_project([make_task("a", MON, FRI), make_task("b", MON, TUE)])

        await service.apply_edit(PROJECT_ID, "b", TaskChanges.model_validate({"dependsOn": "a"}))

        b = (await stored(store))["b"]
        assert b.dependencies == [Dependency(predecessor_id="a", type=LinkType.FINISH_START)]
        assert b.start_date == NEXT_MON

    @pytest.mark.asyncio
    async def test_advisory_violation_reported(self, service, seed_project):
        await seed_project(chain())

        result = await service.apply_edit(PROJECT_ID, "b", TaskChanges(
            constraint_type=ConstraintType.FINISH_NO_LATER_THAN,
            constraint_date=THU,
        ))

        assert [v.kind for v in result.violations] == [AnomalyKind.CONSTRAINT_VIOLATION_ADVISORY]

    @pytest.mark.asyncio
    async def test_invalid_range_rejected(self, service, seed_project):
        await seed_project(chain())
        with pytest.raises(InvalidDateRangeError):
            await service.apply_edit(PROJECT_ID, "a", TaskChanges(start_date=FRI, end_date=MON))

    @pytest.mark.asyncio
    async def test_unknown_task(self, service, seed_project):
        await seed_project(chain())
        with pytest.raises(TaskNotFoundError):
            await service.apply_edit(PROJECT_ID, "ghost", TaskChanges(title="x"))

    @pytest.mark.asyncio
    async def test_unknown_project(self, service):
        with pytest.raises(ProjectNotFoundError):
            await service.apply_edit("nope", "a", TaskChanges(title="x"))

    @pytest.mark.asyncio
    async def test_exclusion_links_kept_symmetric(self, service, store, seed_project):
        await seed_project([make_task("a", MON, TUE), make_task("b", WED, THU)])

        await service.apply_edit(PROJECT_ID, "a", TaskChanges(exclusion_links=["b"]))
        assert (await stored(store))["b"].exclusion_links == ["a"]

        await service.apply_edit(PROJECT_ID, "a", TaskChanges(exclusion_links=[]))
        assert (await stored(store))["b"].exclusion_links == []

    @pytest.mark.asyncio
    async def test_new_exclusion_separates_tasks(self, service, store, seed_project):
        await seed_project([make_task("a", MON, WED), make_task("b", TUE, THU)])

        await service.apply_edit(PROJECT_ID, "a", TaskChanges(exclusion_links=["b"]))

        b = (await stored(store))["b"]
        assert (b.start_date, b.end_date) == (THU, date(2026, 1, 12))

    @pytest.mark.asyncio
    async def test_concurrent_edits_serialized(self, service, store, seed_project):
        await seed_project(chain())

        await asyncio.gather(
            service.apply_edit(PROJECT_ID, "a", TaskChanges(start_date=NEXT_MON, end_date=NEXT_FRI)),
            service.apply_edit(PROJECT_ID, "c", TaskChanges(title="Launch")),
        )

        after = await stored(store)
        assert after["c"].title == "Launch"
        assert after["c"].start_date == date(2026, 1, 26)
        assert service.project_lock(PROJECT_ID) is service.project_lock(PROJECT_ID)

    @pytest.mark.asyncio
    async def test_edit_upstream_of_stored_loop(self, service, store, seed_project):
        await seed_project([
            make_task("x", MON, FRI),
            make_task("a", NEXT_MON, NEXT_FRI, "x", "b"),
            make_task("b", date(2026, 1, 19), date(2026, 1, 23), "a"),
        ])
        events = []

        async def listener(event):
            events.append(event)

        store.notifier.subscribe(PROJECT_ID, listener)
        result = await service.apply_edit(PROJECT_ID, "x", TaskChanges(end_date=NEXT_MON))

        assert [t.id for t in result.updated_tasks] == ["x"]
        assert [a.kind for a in result.anomalies] == [AnomalyKind.CYCLE_DETECTED]
        assert [e.task_ids for e in events] == [["x"]]
        tasks = await stored(store)
        assert tasks["a"].start_date == NEXT_MON
        assert tasks["b"].start_date == date(2026, 1, 19)


class TestRefreshSchedule:
    @pytest.mark.asyncio
    async def test_persists_only_changed_tasks(self, service, store, seed_project):
        await seed_project([
            make_task("a", MON, FRI),
            make_task("b", MON, FRI, "a"),
            make_task("z", MON, TUE),
        ])
        events = []

        async def listener(event):
            events.append(event)

        store.notifier.subscribe(PROJECT_ID, listener)
        result = await service.refresh_schedule(PROJECT_ID)

        assert result.changed_count == 1
        assert by_id(result.final_tasks)["b"].start_date == NEXT_MON
        assert [e.task_ids for e in events] == [["b"]]

    @pytest.mark.asyncio
    async def test_reports_anomalies(self, service, seed_project):
        await seed_project([make_task("a", MON, FRI, "ghost")])
        result = await service.refresh_schedule(PROJECT_ID)

        assert result.changed_count == 0
        assert [a.kind for a in result.anomalies] == [AnomalyKind.UNKNOWN_PREDECESSOR]

    @pytest.mark.asyncio
    async def test_rolls_up_parent_of_moved_child(self, service, store, seed_project):
        await seed_project([
            make_task("a", MON, FRI),
            make_task("p", MON, TUE),
            make_task("c", MON, TUE, "a", parent_task_id="p"),
        ])
        await service.refresh_schedule(PROJECT_ID)

        p = (await stored(store))["p"]
        assert (p.start_date, p.end_date) == (NEXT_MON, date(2026, 1, 13))

    @pytest.mark.asyncio
    async def test_weekend_policy_switch_reschedules(self, service, store, seed_project):
        await seed_project([make_task("a", MON, FRI), make_task("b", date(2026, 1, 19), date(2026, 1, 23), "a")])

        project = await service.update_project(PROJECT_ID, UpdateProjectRequest(include_weekends=True))

        assert project.include_weekends
        b = (await stored(store))["b"]
        assert b.start_date == SAT


class TestTaskLifecycle:
    @pytest.mark.asyncio
    async def test_project_defaults(self, service):
        project = await service.create_project(CreateProjectRequest(name="Roadmap"))
        assert project.include_weekends is False
        assert (await service.get_project(project.id)).name == "Roadmap"

    @pytest.mark.asyncio
    async def test_create_task_default_span(self, service, seed_project):
        await seed_project([])
        task = await service.create_task(PROJECT_ID, CreateTaskRequest(title="Design", start_date=MON))

        assert task.start_date == MON
        assert task.end_date == date(2026, 1, 14)
        assert task.dependencies == []

    @pytest.mark.asyncio
    async def test_create_task_rolls_off_weekend(self, service, seed_project):
        await seed_project([])
        task = await service.create_task(PROJECT_ID, CreateTaskRequest(title="Design", start_date=SAT))
        assert task.start_date == NEXT_MON

    @pytest.mark.asyncio
    async def test_create_child_of_unknown_parent(self, service, seed_project):
        await seed_project([])
        with pytest.raises(TaskNotFoundError):
            await service.create_task(PROJECT_ID, CreateTaskRequest(title="x", parent_task_id="ghost"))

    @pytest.mark.asyncio
    async def test_remove_is_recursive_and_strips_references(self, service, store, seed_project):
        await seed_project([
            make_task("p", MON, FRI),
            make_task("c", MON, WED, parent_task_id="p"),
            make_task("g", MON, TUE, parent_task_id="c"),
            make_task("s", NEXT_MON, NEXT_FRI, "g", exclusion_links=["c"]),
            make_task("o", MON, FRI, exclusion_links=["p"]),
        ])

        removed = await service.remove_task(PROJECT_ID, "p")

        assert removed == ["p", "c", "g"]
        remaining = await stored(store)
        assert set(remaining) == {"s", "o"}
        assert remaining["s"].dependencies == []
        assert remaining["s"].exclusion_links == []
        assert remaining["o"].exclusion_links == []

    @pytest.mark.asyncio
    async def test_remove_child_rolls_up_parent(self, service, store, seed_project):
        await seed_project([
            make_task("p", MON, NEXT_FRI),
            make_task("c1", MON, WED, parent_task_id="p"),
            make_task("c2", NEXT_MON, NEXT_FRI, parent_task_id="p"),
        ])

        await service.remove_task(PROJECT_ID, "c2")

        p = (await stored(store))["p"]
        assert (p.start_date, p.end_date) == (MON, WED)

    @pytest.mark.asyncio
    async def test_baseline_round_trip(self, service, store, seed_project):
        await seed_project(chain())

        await service.set_baseline(PROJECT_ID)
        assert (await stored(store))["b"].baseline_end_date == NEXT_FRI

        await service.clear_baseline(PROJECT_ID)
        assert (await stored(store))["b"].baseline_end_date is None


class TestProjectAnalysis:
    @pytest.mark.asyncio
    async def test_health_and_critical_path(self, service, seed_project):
        await seed_project(chain())

        critical = await service.project_critical_path(PROJECT_ID)
        health = await service.project_health(PROJECT_ID)

        assert critical.critical_ids == ["a", "b", "c"]
        assert health.critical_ids == critical.critical_ids
        # nothing started and no baseline yet
        assert health.schedule.value == "red"
