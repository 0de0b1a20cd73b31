"""
Greedy resource leveling.

For each owner, find days where assigned effort exceeds daily capacity and
propose shifting non-critical work forward within its float. Proposals are
advisory; nothing here writes dates back.
"""

import math
from collections import defaultdict
from datetime import date
from typing import Iterable, Optional

from ..logging_config import get_logger, log_execution_time
from ..models import CriticalPathResult, LevelingProposal, Task
from .calendar import add_days, valid_days_between
from .graph import DependencyGraph
from .links import DateSpan

logger = get_logger(__name__)

# Float comparisons on summed hours
_TOLERANCE = 0.001


class _OwnerLoad:
    """Daily hour totals for one owner's tasks, tracking any proposed shifts."""

    def __init__(self, tasks: list[Task], include_weekends: bool):
        self.tasks = tasks
        self.include_weekends = include_weekends
        self.spans: dict[str, DateSpan] = {t.id: DateSpan(t.start_date, t.end_date) for t in tasks}
        self.load: dict[date, float] = defaultdict(float)
        for task in tasks:
            self._apply(task, 1)

    def hours_per_day(self, task: Task) -> float:
        span = self.spans[task.id]
        days = sum(1 for _ in valid_days_between(span.start, span.end, self.include_weekends))
        return task.effort_hours / days if days else 0.0

    def _apply(self, task: Task, sign: int) -> None:
        span = self.spans[task.id]
        per_day = self.hours_per_day(task)
        for day in valid_days_between(span.start, span.end, self.include_weekends):
            self.load[day] += sign * per_day

    def shift(self, task: Task, days: int) -> DateSpan:
        self._apply(task, -1)
        span = self.spans[task.id]
        moved = DateSpan(
            add_days(span.start, days, self.include_weekends),
            add_days(span.end, days, self.include_weekends),
        )
        self.spans[task.id] = moved
        self._apply(task, 1)
        return moved

    def earliest_overload(self, capacity: float, exhausted: set[date]) -> Optional[date]:
        overloaded = [
            day for day, hours in self.load.items()
            if hours > capacity + _TOLERANCE and day not in exhausted
        ]
        return min(overloaded) if overloaded else None


@log_execution_time()
def compute_leveling_proposals(
    tasks: Iterable[Task],
    critical_path: CriticalPathResult,
    include_weekends: bool = True,
    capacity_hours: float = 8.0,
) -> list[LevelingProposal]:
    tasks = list(tasks)
    graph = DependencyGraph(tasks)

    by_owner: dict[str, list[Task]] = {}
    for task in tasks:
        if not graph.is_leaf(task.id) or task.effort_hours <= 0 or not task.owner_id:
            continue
        by_owner.setdefault(task.owner_id, []).append(task)

    proposals: list[LevelingProposal] = []
    shifted: set[str] = set()

    for owner_id, owner_tasks in by_owner.items():
        load = _OwnerLoad(owner_tasks, include_weekends)
        exhausted: set[date] = set()

        while True:
            day = load.earliest_overload(capacity_hours, exhausted)
            if day is None:
                break
            exhausted.add(day)
            excess = load.load[day] - capacity_hours

            candidates = [
                task for task in owner_tasks
                if not critical_path.is_critical(task.id)
                and critical_path.float_by_task.get(task.id, 0) > 0
                and task.id not in shifted
                and load.spans[task.id].start <= day <= load.spans[task.id].end
            ]
            candidates.sort(key=lambda t: critical_path.float_by_task.get(t.id, 0), reverse=True)

            for candidate in candidates:
                if excess <= 0:
                    break
                per_day = load.hours_per_day(candidate)
                if per_day <= 0:
                    continue

                float_days = critical_path.float_by_task[candidate.id]
                shift_days = min(float_days, max(1, math.ceil(excess / per_day)))
                old = load.spans[candidate.id]
                new = load.shift(candidate, shift_days)
                shifted.add(candidate.id)
                excess -= per_day

                proposals.append(LevelingProposal(
                    task_id=candidate.id,
                    task_title=candidate.title,
                    owner_id=owner_id,
                    old_start=old.start,
                    old_end=old.end,
                    new_start=new.start,
                    new_end=new.end,
                    shift_days=shift_days,
                    float_days=float_days,
                ))

    logger.debug(
        "Leveling proposals computed",
        extra={'extra_data': {'owners': len(by_owner), 'proposals': len(proposals)}}
    )
    return proposals
