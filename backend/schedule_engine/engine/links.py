"""
Precedence-link scheduling: where a successor lands relative to one predecessor.
"""

from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional

from ..models import BufferPosition, LinkType, Task
from .calendar import add_days, diff_days, next_valid_day
from .graph import DependencyGraph


@dataclass(frozen=True)
class DateSpan:
    start: date
    end: date


def task_duration(task: Task, include_weekends: bool) -> int:
    return diff_days(task.start_date, task.end_date, include_weekends)


def rolled_up_span(
    tasks: Mapping[str, Task],
    graph: DependencyGraph,
    task_id: str,
    include_weekends: bool,
    _seen: Optional[frozenset] = None,
) -> DateSpan:
    """
    Stored dates for a leaf; for a parent, the min start and max end of its
    children's effective dates. A parent's own stored dates are ignored.
    """
    task = tasks[task_id]
    seen = (_seen or frozenset()) | {task_id}
    child_ids = [child_id for child_id in graph.children(task_id) if child_id in tasks and child_id not in seen]
    if not child_ids:
        return DateSpan(task.start_date, task.end_date)

    spans = [effective_span(tasks, graph, child_id, include_weekends, seen) for child_id in child_ids]
    return DateSpan(min(s.start for s in spans), max(s.end for s in spans))


def effective_span(
    tasks: Mapping[str, Task],
    graph: DependencyGraph,
    task_id: str,
    include_weekends: bool,
    _seen: Optional[frozenset] = None,
) -> DateSpan:
    """Dates a task presents to its successors: rolled up, then buffer-extended."""
    span = rolled_up_span(tasks, graph, task_id, include_weekends, _seen)
    return apply_buffer(tasks[task_id], span, include_weekends)


def apply_buffer(task: Task, span: DateSpan, include_weekends: bool) -> DateSpan:
    if task.buffer_days <= 0:
        return span
    if task.buffer_position == BufferPosition.END:
        return DateSpan(span.start, add_days(span.end, task.buffer_days, include_weekends))
    return DateSpan(add_days(span.start, -task.buffer_days, include_weekends), span.end)


def effective_end(task: Task, include_weekends: bool) -> date:
    """Stored end pushed out by an end-positioned buffer."""
    if task.buffer_days > 0 and task.buffer_position == BufferPosition.END:
        return add_days(task.end_date, task.buffer_days, include_weekends)
    return task.end_date


def schedule_link(
    predecessor: DateSpan,
    duration: int,
    link_type: LinkType,
    include_weekends: bool,
) -> DateSpan:
    """
    Candidate dates for a successor of `duration` valid days.

    `predecessor` must already be the effective (buffer-adjusted) span.
    """
    if link_type == LinkType.FINISH_START:
        start = add_days(predecessor.end, 1, include_weekends)
        return DateSpan(start, add_days(start, duration, include_weekends))

    if link_type == LinkType.FINISH_FINISH:
        end = predecessor.end
        return DateSpan(add_days(end, -duration, include_weekends), end)

    if link_type == LinkType.START_START:
        start = next_valid_day(predecessor.start, include_weekends)
        return DateSpan(start, add_days(start, duration, include_weekends))

    # StartFinish: finish on the valid day just before the predecessor starts
    end = add_days(predecessor.start, -1, include_weekends)
    return DateSpan(add_days(end, -duration, include_weekends), end)
