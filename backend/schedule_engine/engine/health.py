"""
Traffic-light schedule health.
"""

from typing import Iterable

from ..models import HealthStatus, Task, TaskStatus

GREEN_THRESHOLD = 0.8
YELLOW_THRESHOLD = 0.5


def is_on_time(task: Task) -> bool:
    if task.baseline_end_date is not None:
        return task.end_date <= task.baseline_end_date
    return task.status in (TaskStatus.WORKING, TaskStatus.DONE)


def compute_schedule_health(tasks: Iterable[Task], critical_ids: Iterable[str]) -> HealthStatus:
    """
    Red as soon as a critical task is stuck; otherwise graded by the share of
    tasks that are on time against their baseline.
    """
    tasks = list(tasks)
    if not tasks:
        return HealthStatus.GREEN

    critical = set(critical_ids)
    if any(task.id in critical and task.status == TaskStatus.STUCK for task in tasks):
        return HealthStatus.RED

    ratio = sum(1 for task in tasks if is_on_time(task)) / len(tasks)
    if ratio >= GREEN_THRESHOLD:
        return HealthStatus.GREEN
    if ratio >= YELLOW_THRESHOLD:
        return HealthStatus.YELLOW
    return HealthStatus.RED
