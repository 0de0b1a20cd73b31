"""
Schedule service: the one entry point for both pure simulation and
persisting runs.

Pure methods take a task snapshot and return results without touching the
store. Persisting methods load a snapshot, work on an owned copy, write only
what changed and cascade from there. Persisting runs of the same project are
serialized by a per-project lock; different projects run independently.
"""

import asyncio
import logging
import uuid
from datetime import date
from typing import Iterable, Optional

from ..config import Settings, get_settings
from ..exceptions import CycleDetectedError, InvalidDateRangeError, TaskNotFoundError
from ..logging_config import LogContext, get_logger, log_execution_time
from ..models import (
    AnomalyKind,
    CreateProjectRequest,
    CreateTaskRequest,
    CriticalPathResult,
    Dependency,
    EditResult,
    HealthResponse,
    LevelingProposal,
    LinkType,
    Project,
    ReconcileResult,
    RefreshResult,
    ScheduleAnomaly,
    Task,
    TaskChanges,
    UpdateProjectRequest,
)
from ..store import TaskStore
from . import critical_path as critical_path_analysis
from . import leveling
from . import reconciler
from .calendar import add_days, next_valid_day
from .cascade import CascadePropagator
from .graph import DependencyGraph
from .health import compute_schedule_health
from .links import rolled_up_span
from .report import PassReport, WorkingSet, dedupe_anomalies, with_dates

logger = get_logger(__name__)

_LEGACY_DEPENDENCY_FIELDS = {"dependencies", "depends_on", "dependency_type"}


class ScheduleService:
    def __init__(self, store: TaskStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self._locks: dict[str, asyncio.Lock] = {}

    def project_lock(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project_id] = lock
        return lock

    # --- Pure entry points ---

    def reconcile_snapshot(self, tasks: Iterable[Task], include_weekends: bool) -> ReconcileResult:
        """Reconcile a snapshot in memory. Nothing is written."""
        return reconciler.reconcile_snapshot(tasks, include_weekends)

    def compute_critical_path(self, tasks: Iterable[Task], include_weekends: bool) -> CriticalPathResult:
        return critical_path_analysis.compute_critical_path(tasks, include_weekends)

    def compute_leveling_proposals(
        self,
        tasks: Iterable[Task],
        critical_path: Optional[CriticalPathResult],
        include_weekends: bool,
    ) -> list[LevelingProposal]:
        tasks = list(tasks)
        if critical_path is None:
            critical_path = self.compute_critical_path(tasks, include_weekends)
        return leveling.compute_leveling_proposals(
            tasks,
            critical_path,
            include_weekends=include_weekends,
            capacity_hours=self.settings.daily_capacity_hours,
        )

    def schedule_health(self, tasks: Iterable[Task], include_weekends: bool) -> HealthResponse:
        tasks = list(tasks)
        critical = self.compute_critical_path(tasks, include_weekends)
        return HealthResponse(
            schedule=compute_schedule_health(tasks, critical.critical_ids),
            critical_ids=critical.critical_ids,
        )

    # --- Projects ---

    async def create_project(self, request: CreateProjectRequest) -> Project:
        include_weekends = request.include_weekends
        if include_weekends is None:
            include_weekends = self.settings.default_include_weekends
        project = Project(id=str(uuid.uuid4()), name=request.name, include_weekends=include_weekends)
        await self.store.save_project(project)
        logger.info(
            "Project created",
            extra={'extra_data': {'project_id': project.id, 'include_weekends': include_weekends}}
        )
        return project

    async def get_project(self, project_id: str) -> Project:
        return await self.store.get_project(project_id)

    async def list_tasks(self, project_id: str) -> list[Task]:
        return await self.store.list_tasks(project_id)

    async def update_project(self, project_id: str, request: UpdateProjectRequest) -> Project:
        project = await self.store.get_project(project_id)
        if request.name is not None and request.name != project.name:
            project = project.model_copy(update={"name": request.name})
            await self.store.save_project(project)
        if request.include_weekends is not None and request.include_weekends != project.include_weekends:
            await self.set_include_weekends(project_id, request.include_weekends)
            project = await self.store.get_project(project_id)
        return project

    async def set_include_weekends(self, project_id: str, include_weekends: bool) -> RefreshResult:
        """Switch the calendar policy, then reschedule the project under it."""
        with LogContext(project_id=project_id):
            async with self.project_lock(project_id):
                project = await self.store.get_project(project_id)
                await self.store.save_project(project.model_copy(update={"include_weekends": include_weekends}))
            logger.info(
                "Calendar policy changed",
                extra={'extra_data': {'include_weekends': include_weekends}}
            )
            return await self.refresh_schedule(project_id)

    # --- Tasks ---

    @log_execution_time()
    async def create_task(self, project_id: str, request: CreateTaskRequest) -> Task:
        with LogContext(project_id=project_id):
            async with self.project_lock(project_id):
                project = await self.store.get_project(project_id)
                include_weekends = project.include_weekends
                working = await self._load_working_set(project_id)
                if request.parent_task_id is not None and request.parent_task_id not in working:
                    raise TaskNotFoundError(request.parent_task_id)

                start = next_valid_day(request.start_date or date.today(), include_weekends)
                task = Task(
                    id=str(uuid.uuid4()),
                    title=request.title,
                    start_date=start,
                    end_date=add_days(start, self.settings.default_task_span_days, include_weekends),
                    parent_task_id=request.parent_task_id,
                    owner_id=request.owner_id,
                    effort_hours=request.effort_hours,
                )
                await self.store.save_task(project_id, task)
                working[task.id] = task

                if task.parent_task_id is not None:
                    # The parent's rolled-up span may have grown
                    await self._cascade(project_id, working, include_weekends, [task.id])

                logger.info(
                    "Task created",
                    extra={'extra_data': {'task_id': task.id, 'parent_task_id': task.parent_task_id}}
                )
                return task

    @log_execution_time()
    async def remove_task(self, project_id: str, task_id: str) -> list[str]:
        """
        Delete a task and all of its descendants, along with every dependency
        edge and exclusion link that points at any of them.
        """
        with LogContext(project_id=project_id):
            async with self.project_lock(project_id):
                project = await self.store.get_project(project_id)
                working = await self._load_working_set(project_id)
                if task_id not in working:
                    raise TaskNotFoundError(task_id)

                graph = DependencyGraph(working.values())
                parent_id = graph.parent(task_id)
                removed = [task_id] + graph.descendants(task_id)
                removed_set = set(removed)

                touched: list[Task] = []
                for other_id, other in list(working.items()):
                    if other_id in removed_set:
                        continue
                    deps = [d for d in other.dependencies if d.predecessor_id not in removed_set]
                    links = [link for link in other.exclusion_links if link not in removed_set]
                    if len(deps) != len(other.dependencies) or len(links) != len(other.exclusion_links):
                        updated = other.model_copy(update={"dependencies": deps, "exclusion_links": links})
                        working[other_id] = updated
                        touched.append(updated)

                await self.store.save_tasks(project_id, touched)
                await self.store.delete_tasks(project_id, removed)
                for removed_id in removed:
                    working.pop(removed_id, None)

                if parent_id is not None and parent_id in working:
                    await self._refresh_parent(project_id, working, parent_id, project.include_weekends)

                logger.info(
                    "Task removed",
                    extra={'extra_data': {
                        'task_id': task_id,
                        'removed': len(removed),
                        'unlinked': len(touched),
                    }}
                )
                return removed

    @log_execution_time()
    async def apply_edit(self, project_id: str, task_id: str, changes: TaskChanges) -> EditResult:
        """
        Apply a field-level edit and propagate its consequences.

        A dependency edit that would close a loop is rejected before anything
        is written. Otherwise the edited task is scheduled against all of its
        predecessors, exclusion links are kept symmetric, and the change
        cascades to successors, the parent and exclusion partners.
        """
        with LogContext(project_id=project_id):
            async with self.project_lock(project_id):
                project = await self.store.get_project(project_id)
                include_weekends = project.include_weekends
                working = await self._load_working_set(project_id)
                if task_id not in working:
                    raise TaskNotFoundError(task_id)

                original = working[task_id]
                edited = self._apply_changes(original, changes)

                if changes.touches_dependencies:
                    graph = DependencyGraph(working.values())
                    chain = graph.find_cycle(task_id, edited.predecessor_ids)
                    if chain:
                        logger.warning(
                            "Dependency edit rejected: cycle",
                            extra={'extra_data': {'task_id': task_id, 'cycle': chain}}
                        )
                        raise CycleDetectedError(task_id, chain)

                if edited.end_date < edited.start_date:
                    raise InvalidDateRangeError(task_id, edited.start_date, edited.end_date)

                report = PassReport()
                edited, partners = self._sync_exclusions(working, original, edited, report)

                working[task_id] = edited
                graph = DependencyGraph(working.values())
                outcome = reconciler.reconcile_task(working, graph, task_id, include_weekends)
                report.anomalies.extend(outcome.anomalies)
                report.violations.extend(outcome.violations)
                if outcome.changed:
                    edited = with_dates(edited, outcome.start, outcome.end)
                    working[task_id] = edited

                await self.store.save_task(project_id, edited)
                await self.store.save_tasks(project_id, partners)
                touched_ids = [task_id] + [p.id for p in partners]

                cascade = await self._cascade(project_id, working, include_weekends, [task_id])
                report.anomalies.extend(cascade.anomalies)
                report.violations.extend(cascade.violations)
                for updated_id in cascade.changed_ids:
                    if updated_id not in touched_ids:
                        touched_ids.append(updated_id)

                logger.info(
                    "Edit applied",
                    extra={'extra_data': {
                        'task_id': task_id,
                        'fields': sorted(changes.model_fields_set),
                        'updated': len(touched_ids),
                    }}
                )
                return EditResult(
                    updated_tasks=[working[i] for i in touched_ids if i in working],
                    violations=dedupe_anomalies(report.violations),
                    anomalies=dedupe_anomalies(report.anomalies),
                )

    @log_execution_time(level=logging.INFO)
    async def refresh_schedule(self, project_id: str) -> RefreshResult:
        """
        Reconcile the whole project, then write changed tasks in topological
        order, cascading from each one.
        """
        with LogContext(project_id=project_id):
            async with self.project_lock(project_id):
                project = await self.store.get_project(project_id)
                include_weekends = project.include_weekends
                stored = await self._load_working_set(project_id)

                graph = DependencyGraph(stored.values())
                working, report = reconciler.reconcile_working_set(stored, graph, include_weekends)
                order, cyclic = graph.topological_order()

                changed = [
                    task_id for task_id in order + cyclic
                    if (working[task_id].start_date, working[task_id].end_date)
                    != (stored[task_id].start_date, stored[task_id].end_date)
                ]
                try:
                    for task_id in changed:
                        task = working[task_id]
                        await self.store.update_task_dates(project_id, task_id, task.start_date, task.end_date)
                except asyncio.CancelledError:
                    logger.warning(
                        "Refresh cancelled; completed writes are kept",
                        extra={'extra_data': {'changed': len(changed)}}
                    )
                    raise

                cascade = await self._cascade(project_id, working, include_weekends, changed)
                report.merge(cascade)

                changed_ids = set(changed) | set(cascade.changed_ids)
                if report.anomalies:
                    logger.warning(
                        "Refresh finished with anomalies",
                        extra={'extra_data': {'anomalies': [a.kind.value for a in report.anomalies]}}
                    )
                logger.info(
                    "Schedule refreshed",
                    extra={'extra_data': {'tasks': len(working), 'changed': len(changed_ids)}}
                )
                return RefreshResult(
                    changed_count=len(changed_ids),
                    final_tasks=await self.store.list_tasks(project_id),
                    anomalies=report.anomalies,
                    violations=report.violations,
                )

    async def set_baseline(self, project_id: str) -> list[Task]:
        """Record every task's current dates as its baseline."""
        with LogContext(project_id=project_id):
            async with self.project_lock(project_id):
                tasks = [
                    t.model_copy(update={"baseline_start_date": t.start_date, "baseline_end_date": t.end_date})
                    for t in await self.store.list_tasks(project_id)
                ]
                await self.store.save_tasks(project_id, tasks)
                logger.info("Baseline set", extra={'extra_data': {'tasks': len(tasks)}})
                return tasks

    async def clear_baseline(self, project_id: str) -> list[Task]:
        with LogContext(project_id=project_id):
            async with self.project_lock(project_id):
                tasks = [
                    t.model_copy(update={"baseline_start_date": None, "baseline_end_date": None})
                    for t in await self.store.list_tasks(project_id)
                ]
                await self.store.save_tasks(project_id, tasks)
                logger.info("Baseline cleared", extra={'extra_data': {'tasks': len(tasks)}})
                return tasks

    # --- Project analysis ---

    async def project_critical_path(self, project_id: str) -> CriticalPathResult:
        project = await self.store.get_project(project_id)
        tasks = await self.store.list_tasks(project_id)
        return self.compute_critical_path(tasks, project.include_weekends)

    async def project_leveling(self, project_id: str) -> list[LevelingProposal]:
        project = await self.store.get_project(project_id)
        tasks = await self.store.list_tasks(project_id)
        return self.compute_leveling_proposals(tasks, None, project.include_weekends)

    async def project_health(self, project_id: str) -> HealthResponse:
        project = await self.store.get_project(project_id)
        tasks = await self.store.list_tasks(project_id)
        return self.schedule_health(tasks, project.include_weekends)

    # --- Internals ---

    async def _load_working_set(self, project_id: str) -> WorkingSet:
        return {task.id: task for task in await self.store.list_tasks(project_id)}

    async def _cascade(
        self,
        project_id: str,
        working: WorkingSet,
        include_weekends: bool,
        start_ids: Iterable[str],
    ) -> PassReport:
        report = PassReport()
        propagator = CascadePropagator(
            self.store,
            project_id,
            working,
            include_weekends,
            max_iterations=self.settings.max_cascade_iterations,
        )
        for start_id in start_ids:
            result = await propagator.run(start_id)
            report.merge(PassReport(
                changed_ids=result.updated_ids,
                anomalies=result.anomalies,
                violations=result.violations,
            ))
        return report

    async def _refresh_parent(
        self,
        project_id: str,
        working: WorkingSet,
        parent_id: str,
        include_weekends: bool,
    ) -> None:
        graph = DependencyGraph(working.values())
        rolled = rolled_up_span(working, graph, parent_id, include_weekends)
        parent = working[parent_id]
        if (rolled.start, rolled.end) != (parent.start_date, parent.end_date):
            working[parent_id] = with_dates(parent, rolled.start, rolled.end)
            await self.store.update_task_dates(project_id, parent_id, rolled.start, rolled.end)
        await self._cascade(project_id, working, include_weekends, [parent_id])

    @staticmethod
    def _apply_changes(task: Task, changes: TaskChanges) -> Task:
        fields_set = changes.model_fields_set
        update = {
            name: getattr(changes, name)
            for name in fields_set - _LEGACY_DEPENDENCY_FIELDS
        }

        if "dependencies" in fields_set:
            update["dependencies"] = list(changes.dependencies or [])
        elif "depends_on" in fields_set:
            link_type = changes.dependency_type or LinkType.FINISH_START
            update["dependencies"] = (
                [Dependency(predecessor_id=changes.depends_on, type=link_type)] if changes.depends_on else []
            )
        elif "dependency_type" in fields_set and task.dependencies and changes.dependency_type:
            first = task.dependencies[0].model_copy(update={"type": changes.dependency_type})
            update["dependencies"] = [first] + task.dependencies[1:]

        for name in ("title", "buffer_days", "buffer_position", "constraint_type",
                     "start_date", "end_date", "effort_hours", "status"):
            # Explicit null on a required field means "leave it"
            if name in update and update[name] is None:
                del update[name]

        # Re-validate so dedupe rules apply to the new lists
        return Task.model_validate({**task.model_dump(), **update})

    @staticmethod
    def _sync_exclusions(
        working: WorkingSet,
        original: Task,
        edited: Task,
        report: PassReport,
    ) -> tuple[Task, list[Task]]:
        """Mirror exclusion-link changes onto the partner tasks."""
        if edited.exclusion_links == original.exclusion_links:
            return edited, []

        links: list[str] = []
        for linked_id in edited.exclusion_links:
            if linked_id == edited.id:
                continue
            if linked_id not in working:
                report.anomalies.append(ScheduleAnomaly(
                    kind=AnomalyKind.UNKNOWN_PREDECESSOR,
                    task_id=edited.id,
                    message=f"Exclusion link to unknown task {linked_id}; ignored",
                    related_ids=[linked_id],
                ))
                continue
            links.append(linked_id)
        edited = edited.model_copy(update={"exclusion_links": links})

        added = set(links) - set(original.exclusion_links)
        removed = set(original.exclusion_links) - set(links)
        partners: list[Task] = []
        for partner_id in sorted(added) + sorted(removed):
            partner = working.get(partner_id)
            if partner is None:
                continue
            partner_links = [link for link in partner.exclusion_links if link != edited.id]
            if partner_id in added:
                partner_links.append(edited.id)
            if partner_links != partner.exclusion_links:
                partner = partner.model_copy(update={"exclusion_links": partner_links})
                working[partner_id] = partner
                partners.append(partner)
        return edited, partners
