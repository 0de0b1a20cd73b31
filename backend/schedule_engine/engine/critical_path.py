"""
Critical path analysis: forward and backward pass over leaf tasks.
"""

from datetime import date
from typing import Iterable

from ..logging_config import get_logger, log_execution_time
from ..models import AnomalyKind, CriticalPathResult, ScheduleAnomaly, Task, TaskTiming
from .calendar import add_days, diff_days
from .graph import DependencyGraph
from .links import task_duration

logger = get_logger(__name__)


class _CriticalPathPass:
    """
    Memoized ES/EF/LS/LF over the leaf tasks of one snapshot.

    Summary tasks are left out, as is any edge whose predecessor is not a
    leaf. An edge that would close a loop is cut and reported.
    """

    def __init__(self, tasks: Iterable[Task], include_weekends: bool):
        tasks = list(tasks)
        graph = DependencyGraph(tasks)
        self.include_weekends = include_weekends
        self.leaves: dict[str, Task] = {t.id: t for t in tasks if graph.is_leaf(t.id)}
        self.predecessors: dict[str, list[str]] = {
            task_id: [p for p in task.predecessor_ids if p in self.leaves and p != task_id]
            for task_id, task in self.leaves.items()
        }
        self.successors: dict[str, list[str]] = {task_id: [] for task_id in self.leaves}
        for task_id, pred_ids in self.predecessors.items():
            for pred_id in pred_ids:
                self.successors[pred_id].append(task_id)

        self.es: dict[str, date] = {}
        self.ef: dict[str, date] = {}
        self.ls: dict[str, date] = {}
        self.lf: dict[str, date] = {}
        self.project_end: date = date.min
        self.anomalies: list[ScheduleAnomaly] = []
        self._in_progress: set[str] = set()
        self._cut: set[tuple[str, str]] = set()

    def _duration(self, task_id: str) -> int:
        return task_duration(self.leaves[task_id], self.include_weekends)

    def _cut_edge(self, pred_id: str, task_id: str) -> None:
        if (pred_id, task_id) in self._cut:
            return
        self._cut.add((pred_id, task_id))
        self.anomalies.append(ScheduleAnomaly(
            kind=AnomalyKind.CYCLE_DETECTED,
            task_id=task_id,
            message=f"Dependency on {pred_id} closes a loop; ignored for critical path",
            related_ids=[pred_id, task_id],
        ))

    def earliest_finish(self, task_id: str) -> date:
        if task_id in self.ef:
            return self.ef[task_id]
        self._in_progress.add(task_id)
        start = self.leaves[task_id].start_date
        for pred_id in self.predecessors[task_id]:
            if (pred_id, task_id) in self._cut:
                continue
            if pred_id in self._in_progress:
                self._cut_edge(pred_id, task_id)
                continue
            start = max(start, add_days(self.earliest_finish(pred_id), 1, self.include_weekends))
        self._in_progress.discard(task_id)
        self.es[task_id] = start
        self.ef[task_id] = add_days(start, self._duration(task_id), self.include_weekends)
        return self.ef[task_id]

    def latest_start(self, task_id: str) -> date:
        if task_id in self.ls:
            return self.ls[task_id]
        self._in_progress.add(task_id)
        finish = None
        for succ_id in self.successors[task_id]:
            if (task_id, succ_id) in self._cut or succ_id in self._in_progress:
                continue
            candidate = add_days(self.latest_start(succ_id), -1, self.include_weekends)
            finish = candidate if finish is None else min(finish, candidate)
        self._in_progress.discard(task_id)
        self.lf[task_id] = self.project_end if finish is None else finish
        self.ls[task_id] = add_days(self.lf[task_id], -self._duration(task_id), self.include_weekends)
        return self.ls[task_id]

    def run(self) -> CriticalPathResult:
        if not self.leaves:
            return CriticalPathResult()

        for task_id in self.leaves:
            self.earliest_finish(task_id)
        self.project_end = max(self.ef.values())
        for task_id in self.leaves:
            self.latest_start(task_id)

        critical_ids: list[str] = []
        float_by_task: dict[str, int] = {}
        timings: dict[str, TaskTiming] = {}
        for task_id in self.leaves:
            float_days = max(0, diff_days(self.es[task_id], self.ls[task_id], self.include_weekends))
            float_by_task[task_id] = float_days
            if float_days == 0:
                critical_ids.append(task_id)
            timings[task_id] = TaskTiming(
                earliest_start=self.es[task_id],
                earliest_finish=self.ef[task_id],
                latest_start=self.ls[task_id],
                latest_finish=self.lf[task_id],
                float_days=float_days,
            )

        return CriticalPathResult(
            critical_ids=critical_ids,
            float_by_task=float_by_task,
            project_end=self.project_end,
            timings=timings,
            anomalies=self.anomalies,
        )


@log_execution_time()
def compute_critical_path(tasks: Iterable[Task], include_weekends: bool = True) -> CriticalPathResult:
    """
    Per-task total float and the zero-float (critical) set.

    Read-only; never touches the tasks it is given.
    """
    result = _CriticalPathPass(tasks, include_weekends).run()
    logger.debug(
        "Critical path computed",
        extra={'extra_data': {
            'leaf_tasks': len(result.float_by_task),
            'critical': len(result.critical_ids),
            'project_end': str(result.project_end) if result.project_end else None,
        }}
    )
    return result
