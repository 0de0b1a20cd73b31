"""
Exceptions raised by the scheduling engine.

Only conditions that must block an operation are exceptions. Problems that a
run can route around (a missing predecessor, an advisory constraint breach)
are reported as ScheduleAnomaly records instead.
"""

from datetime import date


class SchedulingError(Exception):
    """Base class for scheduling errors."""


class CycleDetectedError(SchedulingError):
    """A proposed dependency set would close a loop. Nothing was written."""

    def __init__(self, task_id: str, chain: list[str]):
        self.task_id = task_id
        self.chain = chain
        super().__init__(f"Circular dependency: {' -> '.join(chain)}")


class TaskNotFoundError(SchedulingError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class ProjectNotFoundError(SchedulingError):
    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class InvalidDateRangeError(SchedulingError):
    def __init__(self, task_id: str, start: date, end: date):
        self.task_id = task_id
        self.start = start
        self.end = end
        super().__init__(f"Task {task_id} would end ({end}) before it starts ({start})")
