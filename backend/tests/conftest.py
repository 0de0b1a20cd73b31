"""Pytest configuration and fixtures for schedule engine tests."""

from datetime import date

import pytest

from schedule_engine.config import Settings
from schedule_engine.engine.scheduler import ScheduleService
from schedule_engine.models import Dependency, LinkType, Project, Task
from schedule_engine.store import InMemoryTaskStore

# 2026-01-05 is a Monday
MON = date(2026, 1, 5)
TUE = date(2026, 1, 6)
WED = date(2026, 1, 7)
THU = date(2026, 1, 8)
FRI = date(2026, 1, 9)
SAT = date(2026, 1, 10)
SUN = date(2026, 1, 11)
NEXT_MON = date(2026, 1, 12)
NEXT_FRI = date(2026, 1, 16)

PROJECT_ID = "proj-1"


def make_task(task_id: str, start: date, end: date, *predecessors, link: LinkType = LinkType.FINISH_START, **fields) -> Task:
    """Build a task; positional predecessors all use `link`."""
    return Task(
        id=task_id,
        title=fields.pop("title", task_id.upper()),
        start_date=start,
        end_date=end,
        dependencies=[Dependency(predecessor_id=p, type=link) for p in predecessors],
        **fields,
    )


def by_id(tasks) -> dict:
    return {task.id: task for task in tasks}


@pytest.fixture
def settings():
    """Settings independent of any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def store():
    return InMemoryTaskStore()


@pytest.fixture
def service(store, settings):
    return ScheduleService(store, settings)


@pytest.fixture
def seed_project(store):
    """Save a working-day project and the given tasks into the store."""

    async def _seed(tasks, include_weekends: bool = False):
        await store.save_project(Project(id=PROJECT_ID, name="Demo", include_weekends=include_weekends))
        await store.save_tasks(PROJECT_ID, tasks)
        return PROJECT_ID

    return _seed
