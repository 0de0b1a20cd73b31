"""
Single-edit propagation: push one task's new dates through everything that
depends on it and persist each change as it is made.
"""

import asyncio
from collections import deque
from datetime import date

from ..logging_config import get_logger
from ..models import AnomalyKind, CascadeResult, ScheduleAnomaly
from ..store import TaskStore
from .exclusions import resolve_pair
from .graph import DependencyGraph
from .links import DateSpan, rolled_up_span
from .reconciler import cycle_anomaly, reconcile_task
from .report import PassReport, WorkingSet, dedupe_anomalies, with_dates

logger = get_logger(__name__)


class CascadePropagator:
    """
    Breadth-first propagation over one project's working set.

    The working set is owned by the propagator for the duration of a run and
    is kept in step with every write, so later hops see earlier results.
    Each write is awaited before the next task is dequeued.
    """

    def __init__(
        self,
        store: TaskStore,
        project_id: str,
        working: WorkingSet,
        include_weekends: bool,
        max_iterations: int = 10000,
    ):
        self.store = store
        self.project_id = project_id
        self.working = working
        self.include_weekends = include_weekends
        self.max_iterations = max_iterations
        self.graph = DependencyGraph(working.values())
        _, cyclic = self.graph.topological_order()
        # Tasks on a stored dependency loop keep their dates and are visited once
        self.cyclic = set(cyclic)
        self._report = PassReport()

    async def run(self, start_task_id: str) -> CascadeResult:
        queue = deque([start_task_id])
        # Dates each task had when it was last processed. A task off any loop
        # is processed again only if its dates moved after that.
        processed: dict[str, DateSpan] = {}
        iterations = 0

        try:
            while queue:
                current = queue.popleft()
                if current not in self.working:
                    continue
                span = self._span(current)
                if current in processed and (current in self.cyclic or processed[current] == span):
                    continue
                if iterations >= self.max_iterations:
                    self._report.anomalies.append(ScheduleAnomaly(
                        kind=AnomalyKind.ITERATION_LIMIT,
                        task_id=current,
                        message=f"Cascade stopped after {self.max_iterations} steps",
                        related_ids=list(dict.fromkeys(queue)),
                    ))
                    logger.warning(
                        "Cascade iteration limit reached",
                        extra={'extra_data': {
                            'start_task_id': start_task_id,
                            'limit': self.max_iterations,
                            'pending': len(queue) + 1,
                        }}
                    )
                    break
                iterations += 1
                processed[current] = span

                for successor_id in self.graph.successors(current):
                    if await self._reconcile_successor(successor_id):
                        queue.append(successor_id)

                parent_id = self.graph.parent(current)
                if parent_id is not None:
                    await self._roll_up_parent(parent_id)
                    queue.append(parent_id)

                for linked_id in self.working[current].exclusion_links:
                    moved_id = await self._separate(current, linked_id)
                    if moved_id is not None:
                        queue.append(moved_id)
        except asyncio.CancelledError:
            logger.warning(
                "Cascade cancelled; completed writes are kept",
                extra={'extra_data': {
                    'start_task_id': start_task_id,
                    'persisted': len(self._report.changed_ids),
                }}
            )
            raise

        logger.debug(
            "Cascade finished",
            extra={'extra_data': {
                'start_task_id': start_task_id,
                'steps': iterations,
                'updated': len(self._report.changed_ids),
            }}
        )
        return CascadeResult(
            updated_ids=self._report.changed_ids,
            anomalies=dedupe_anomalies(self._report.anomalies),
            violations=dedupe_anomalies(self._report.violations),
        )

    def _span(self, task_id: str) -> DateSpan:
        task = self.working[task_id]
        return DateSpan(task.start_date, task.end_date)

    async def _persist(self, task_id: str, start: date, end: date) -> None:
        self.working[task_id] = with_dates(self.working[task_id], start, end)
        await self.store.update_task_dates(self.project_id, task_id, start, end)
        self._report.mark_changed(task_id)

    async def _reconcile_successor(self, task_id: str) -> bool:
        """Re-evaluate against every predecessor, not only the one that moved."""
        if task_id not in self.working:
            return False
        if task_id in self.cyclic:
            self._report.anomalies.append(cycle_anomaly(self.graph, task_id))
            return False
        outcome = reconcile_task(self.working, self.graph, task_id, self.include_weekends)
        self._report.anomalies.extend(outcome.anomalies)
        self._report.violations.extend(outcome.violations)
        if not outcome.changed:
            return False
        await self._persist(task_id, outcome.start, outcome.end)
        return True

    async def _roll_up_parent(self, parent_id: str) -> None:
        rolled = rolled_up_span(self.working, self.graph, parent_id, self.include_weekends)
        if rolled != self._span(parent_id):
            await self._persist(parent_id, rolled.start, rolled.end)

    async def _separate(self, task_id: str, linked_id: str):
        if linked_id not in self.working or linked_id == task_id:
            return None
        moved = resolve_pair(self.working[task_id], self.working[linked_id], self.include_weekends)
        if moved is None:
            return None
        await self._persist(moved.id, moved.start_date, moved.end_date)
        return moved.id
