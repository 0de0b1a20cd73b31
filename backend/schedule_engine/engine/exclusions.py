"""
Mutual-exclusion resolution: linked tasks may never overlap in time.
"""

from collections import defaultdict, deque
from typing import Optional

from ..models import AnomalyKind, ScheduleAnomaly, Task
from .calendar import add_days
from .links import effective_end, task_duration
from .report import PassReport, WorkingSet, with_dates


def pair_key(task_id: str, other_id: str) -> tuple[str, str]:
    return (task_id, other_id) if task_id <= other_id else (other_id, task_id)


def overlaps(a: Task, b: Task, include_weekends: bool) -> bool:
    """Ranges overlap when each starts on or before the other's effective end."""
    return (
        a.start_date <= effective_end(b, include_weekends)
        and effective_end(a, include_weekends) >= b.start_date
    )


def resolve_pair(task: Task, linked: Task, include_weekends: bool) -> Optional[Task]:
    """
    Return the later-starting task moved to just after the other's effective
    end, or None when the pair does not overlap. On equal starts `task` moves.
    """
    if not overlaps(task, linked, include_weekends):
        return None

    later, earlier = (task, linked) if task.start_date >= linked.start_date else (linked, task)
    duration = task_duration(later, include_weekends)
    new_start = add_days(effective_end(earlier, include_weekends), 1, include_weekends)
    return with_dates(later, new_start, add_days(new_start, duration, include_weekends))


def resolve_exclusions(working: WorkingSet, include_weekends: bool) -> tuple[WorkingSet, PassReport]:
    """
    Separate every overlapping exclusion pair.

    Pairs are visited once in snapshot order. When a task moves, the other
    pairs it belongs to are checked again, so a move cannot leave an earlier
    pair overlapping. Each pair gets a bounded number of checks; one that still
    overlaps afterwards is reported.
    """
    working = dict(working)
    report = PassReport()
    pairs: list[tuple[str, str]] = []
    pairs_of: dict[str, list[tuple[str, str]]] = defaultdict(list)
    seen: set[tuple[str, str]] = set()

    for task_id in list(working):
        for linked_id in working[task_id].exclusion_links:
            key = pair_key(task_id, linked_id)
            if key in seen:
                continue
            seen.add(key)

            if linked_id not in working:
                report.anomalies.append(ScheduleAnomaly(
                    kind=AnomalyKind.UNKNOWN_PREDECESSOR,
                    task_id=task_id,
                    message=f"Exclusion link to unknown task {linked_id}; ignored",
                    related_ids=[linked_id],
                ))
                continue
            if linked_id == task_id:
                continue

            pair = (task_id, linked_id)
            pairs.append(pair)
            pairs_of[task_id].append(pair)
            pairs_of[linked_id].append(pair)

    max_checks = len(pairs) + 1
    checks: dict[tuple[str, str], int] = defaultdict(int)
    queue = deque(pairs)
    while queue:
        pair = queue.popleft()
        if checks[pair] >= max_checks:
            continue
        checks[pair] += 1

        task_id, linked_id = pair
        moved = resolve_pair(working[task_id], working[linked_id], include_weekends)
        if moved is None:
            continue
        working[moved.id] = moved
        report.mark_changed(moved.id)
        queue.extend(other for other in pairs_of[moved.id] if other != pair)

    for task_id, linked_id in pairs:
        if overlaps(working[task_id], working[linked_id], include_weekends):
            report.anomalies.append(ScheduleAnomaly(
                kind=AnomalyKind.ITERATION_LIMIT,
                task_id=task_id,
                message=f"Still overlaps exclusion partner {linked_id} after {max_checks} checks",
                related_ids=[linked_id],
            ))

    return working, report
