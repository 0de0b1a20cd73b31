"""Tests for the in-memory task store and the change notifier."""

import pytest

from schedule_engine.exceptions import ProjectNotFoundError, TaskNotFoundError
from schedule_engine.models import ChangeEvent, ChangeKind, Project
from schedule_engine.notifier import ChangeNotifier

from conftest import FRI, MON, NEXT_FRI, NEXT_MON, PROJECT_ID, make_task


def record_events(store):
    events = []

    async def listener(event: ChangeEvent):
        events.append(event)

    store.notifier.subscribe(PROJECT_ID, listener)
    return events


class TestInMemoryTaskStore:
    @pytest.mark.asyncio
    async def test_unknown_project(self, store):
        with pytest.raises(ProjectNotFoundError):
            await store.get_project("missing")
        with pytest.raises(ProjectNotFoundError):
            await store.list_tasks("missing")

    @pytest.mark.asyncio
    async def test_unknown_task(self, store, seed_project):
        await seed_project([])
        with pytest.raises(TaskNotFoundError):
            await store.get_task(PROJECT_ID, "ghost")
        with pytest.raises(TaskNotFoundError):
            await store.update_task_dates(PROJECT_ID, "ghost", MON, FRI)

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store, seed_project):
        await seed_project([make_task("a", MON, FRI)])

        fetched = await store.get_task(PROJECT_ID, "a")
        fetched.exclusion_links.append("b")

        assert (await store.get_task(PROJECT_ID, "a")).exclusion_links == []

    @pytest.mark.asyncio
    async def test_update_dates_keeps_other_fields(self, store, seed_project):
        await seed_project([make_task("a", MON, FRI, title="Build", effort_hours=12)])

        updated = await store.update_task_dates(PROJECT_ID, "a", NEXT_MON, NEXT_FRI)

        assert (updated.start_date, updated.end_date) == (NEXT_MON, NEXT_FRI)
        assert updated.title == "Build"
        assert updated.effort_hours == 12

    @pytest.mark.asyncio
    async def test_events_per_write(self, store, seed_project):
        await seed_project([make_task("a", MON, FRI)])
        events = record_events(store)

        await store.save_task(PROJECT_ID, make_task("b", MON, FRI))
        await store.update_task_dates(PROJECT_ID, "a", NEXT_MON, NEXT_FRI)
        await store.save_tasks(PROJECT_ID, [])
        await store.delete_tasks(PROJECT_ID, ["b", "ghost"])
        await store.save_project(Project(id=PROJECT_ID, name="Renamed"))

        assert [(e.kind, e.task_ids) for e in events] == [
            (ChangeKind.TASK_CREATED, ["b"]),
            (ChangeKind.TASKS_UPDATED, ["a"]),
            (ChangeKind.TASKS_REMOVED, ["b"]),
            (ChangeKind.PROJECT_UPDATED, []),
        ]


class TestChangeNotifier:
    @pytest.mark.asyncio
    async def test_events_scoped_to_project(self):
        notifier = ChangeNotifier()
        received = []

        async def listener(event):
            received.append(event.project_id)

        notifier.subscribe("p1", listener)
        await notifier.publish(ChangeEvent(project_id="p2", kind=ChangeKind.TASKS_UPDATED))
        await notifier.publish(ChangeEvent(project_id="p1", kind=ChangeKind.TASKS_UPDATED))

        assert received == ["p1"]

    @pytest.mark.asyncio
    async def test_failing_listener_is_dropped(self):
        notifier = ChangeNotifier()
        received = []

        async def broken(event):
            raise RuntimeError("socket gone")

        async def healthy(event):
            received.append(event.kind)

        notifier.subscribe("p1", broken)
        notifier.subscribe("p1", healthy)
        await notifier.publish(ChangeEvent(project_id="p1", kind=ChangeKind.TASK_CREATED))

        assert received == [ChangeKind.TASK_CREATED]
        assert notifier.listener_count("p1") == 1

    def test_unsubscribe(self):
        notifier = ChangeNotifier()

        async def listener(event):
            pass

        notifier.subscribe("p1", listener)
        notifier.unsubscribe("p1", listener)
        notifier.unsubscribe("p1", listener)

        assert notifier.listener_count("p1") == 0
