"""
Task store: the durable record of projects and tasks the engine reads and writes.

The engine only ever reads snapshots and writes whole tasks or date pairs, so
any backend that satisfies TaskStore can sit behind ScheduleService.
"""

from datetime import date
from typing import Iterable, Optional, Protocol

from .exceptions import ProjectNotFoundError, TaskNotFoundError
from .logging_config import get_logger
from .models import ChangeEvent, ChangeKind, Project, Task
from .notifier import ChangeNotifier

logger = get_logger(__name__)


class TaskStore(Protocol):
    notifier: ChangeNotifier

    async def get_project(self, project_id: str) -> Project: ...

    async def save_project(self, project: Project) -> Project: ...

    async def list_tasks(self, project_id: str) -> list[Task]: ...

    async def get_task(self, project_id: str, task_id: str) -> Task: ...

    async def save_task(self, project_id: str, task: Task) -> Task: ...

    async def save_tasks(self, project_id: str, tasks: Iterable[Task]) -> None: ...

    async def update_task_dates(self, project_id: str, task_id: str, start: date, end: date) -> Task: ...

    async def delete_tasks(self, project_id: str, task_ids: Iterable[str]) -> None: ...


class InMemoryTaskStore:
    """
    Process-local TaskStore. Records are copied on the way in and out so
    callers never share mutable state with the store.
    """

    def __init__(self, notifier: Optional[ChangeNotifier] = None):
        self.notifier = notifier or ChangeNotifier()
        self._projects: dict[str, Project] = {}
        self._tasks: dict[str, dict[str, Task]] = {}

    def _project_tasks(self, project_id: str) -> dict[str, Task]:
        if project_id not in self._projects:
            raise ProjectNotFoundError(project_id)
        return self._tasks[project_id]

    async def get_project(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project.model_copy()

    async def save_project(self, project: Project) -> Project:
        is_new = project.id not in self._projects
        self._projects[project.id] = project.model_copy()
        self._tasks.setdefault(project.id, {})
        if not is_new:
            await self.notifier.publish(ChangeEvent(project_id=project.id, kind=ChangeKind.PROJECT_UPDATED))
        logger.debug(
            "Project saved",
            extra={'extra_data': {'project_id': project.id, 'created': is_new}}
        )
        return project

    async def list_tasks(self, project_id: str) -> list[Task]:
        return [task.model_copy(deep=True) for task in self._project_tasks(project_id).values()]

    async def get_task(self, project_id: str, task_id: str) -> Task:
        task = self._project_tasks(project_id).get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task.model_copy(deep=True)

    async def save_task(self, project_id: str, task: Task) -> Task:
        tasks = self._project_tasks(project_id)
        kind = ChangeKind.TASKS_UPDATED if task.id in tasks else ChangeKind.TASK_CREATED
        tasks[task.id] = task.model_copy(deep=True)
        await self.notifier.publish(ChangeEvent(project_id=project_id, kind=kind, task_ids=[task.id]))
        return task

    async def save_tasks(self, project_id: str, tasks: Iterable[Task]) -> None:
        stored = self._project_tasks(project_id)
        saved_ids: list[str] = []
        for task in tasks:
            stored[task.id] = task.model_copy(deep=True)
            saved_ids.append(task.id)
        if saved_ids:
            await self.notifier.publish(
                ChangeEvent(project_id=project_id, kind=ChangeKind.TASKS_UPDATED, task_ids=saved_ids)
            )

    async def update_task_dates(self, project_id: str, task_id: str, start: date, end: date) -> Task:
        tasks = self._project_tasks(project_id)
        if task_id not in tasks:
            raise TaskNotFoundError(task_id)
        updated = tasks[task_id].model_copy(update={"start_date": start, "end_date": end})
        tasks[task_id] = updated
        await self.notifier.publish(
            ChangeEvent(project_id=project_id, kind=ChangeKind.TASKS_UPDATED, task_ids=[task_id])
        )
        return updated.model_copy(deep=True)

    async def delete_tasks(self, project_id: str, task_ids: Iterable[str]) -> None:
        tasks = self._project_tasks(project_id)
        removed = [task_id for task_id in task_ids if tasks.pop(task_id, None) is not None]
        if removed:
            await self.notifier.publish(
                ChangeEvent(project_id=project_id, kind=ChangeKind.TASKS_REMOVED, task_ids=removed)
            )
