"""
Violation-only reconciliation of task dates against dependencies and constraints.

A task's stored dates are treated as the user's intent. They are overridden
only when a predecessor forbids them, when an ASAP task can be pulled forward,
or when the task's own constraint demands it. Duration is always preserved.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Optional

from ..logging_config import get_logger
from ..models import AnomalyKind, ConstraintType, ReconcileResult, ScheduleAnomaly, Task
from .calendar import add_days
from .exclusions import resolve_exclusions
from .graph import DependencyGraph
from .links import DateSpan, effective_span, schedule_link, task_duration
from .report import PassReport, WorkingSet, dedupe_anomalies, with_dates

logger = get_logger(__name__)


@dataclass
class TaskOutcome:
    task_id: str
    start: date
    end: date
    changed: bool
    anomalies: list[ScheduleAnomaly] = field(default_factory=list)
    violations: list[ScheduleAnomaly] = field(default_factory=list)


def latest_predecessor_start(
    tasks: Mapping[str, Task],
    graph: DependencyGraph,
    task: Task,
    include_weekends: bool,
    anomalies: list[ScheduleAnomaly],
) -> Optional[date]:
    """
    The most restrictive start any predecessor allows. A later start always
    dominates, whatever the link type. Unknown predecessors are skipped.
    """
    duration = task_duration(task, include_weekends)
    latest: Optional[date] = None
    for dep in task.dependencies:
        if dep.predecessor_id not in tasks:
            anomalies.append(ScheduleAnomaly(
                kind=AnomalyKind.UNKNOWN_PREDECESSOR,
                task_id=task.id,
                message=f"Predecessor {dep.predecessor_id} does not exist; edge ignored",
                related_ids=[dep.predecessor_id],
            ))
            continue
        predecessor = effective_span(tasks, graph, dep.predecessor_id, include_weekends)
        candidate = schedule_link(predecessor, duration, dep.type, include_weekends)
        if latest is None or candidate.start > latest:
            latest = candidate.start
    return latest


def apply_constraint(task: Task, span: DateSpan, duration: int, include_weekends: bool) -> DateSpan:
    """Move `span` only where the task's own fixed-date constraint is violated."""
    constraint_date = task.constraint_date
    if task.constraint_type == ConstraintType.ASAP or constraint_date is None:
        return span

    if task.constraint_type == ConstraintType.START_NO_EARLIER_THAN:
        if constraint_date > span.start:
            return DateSpan(constraint_date, add_days(constraint_date, duration, include_weekends))
    elif task.constraint_type == ConstraintType.MUST_START_ON:
        return DateSpan(constraint_date, add_days(constraint_date, duration, include_weekends))
    elif task.constraint_type == ConstraintType.MUST_FINISH_ON:
        return DateSpan(add_days(constraint_date, -duration, include_weekends), constraint_date)
    elif task.constraint_type == ConstraintType.FINISH_NO_EARLIER_THAN:
        if constraint_date > span.end:
            return DateSpan(span.start, constraint_date)
    # SNLT / FNLT never move a task; see advisory_violation
    return span


def advisory_violation(task: Task, span: DateSpan) -> Optional[ScheduleAnomaly]:
    constraint_date = task.constraint_date
    if constraint_date is None:
        return None
    if task.constraint_type == ConstraintType.START_NO_LATER_THAN and span.start > constraint_date:
        return ScheduleAnomaly(
            kind=AnomalyKind.CONSTRAINT_VIOLATION_ADVISORY,
            task_id=task.id,
            message=f"Starts {span.start} but should start no later than {constraint_date}",
        )
    if task.constraint_type == ConstraintType.FINISH_NO_LATER_THAN and span.end > constraint_date:
        return ScheduleAnomaly(
            kind=AnomalyKind.CONSTRAINT_VIOLATION_ADVISORY,
            task_id=task.id,
            message=f"Finishes {span.end} but should finish no later than {constraint_date}",
        )
    return None


def reconcile_task(
    tasks: Mapping[str, Task],
    graph: DependencyGraph,
    task_id: str,
    include_weekends: bool,
) -> TaskOutcome:
    """Compute the final dates for one task. Does not modify `tasks`."""
    task = tasks[task_id]
    stored = DateSpan(task.start_date, task.end_date)
    duration = task_duration(task, include_weekends)
    anomalies: list[ScheduleAnomaly] = []

    final = stored
    latest_start = latest_predecessor_start(tasks, graph, task, include_weekends, anomalies)
    if latest_start is not None:
        too_early = task.start_date < latest_start
        can_pull_forward = task.constraint_type == ConstraintType.ASAP and task.start_date > latest_start
        if too_early or can_pull_forward:
            final = DateSpan(latest_start, add_days(latest_start, duration, include_weekends))

    final = apply_constraint(task, final, duration, include_weekends)

    if final.end < final.start:
        anomalies.append(ScheduleAnomaly(
            kind=AnomalyKind.INVALID_DATE_RANGE,
            task_id=task_id,
            message=f"Computed end {final.end} precedes start {final.start}; previous dates kept",
        ))
        final = stored

    violation = advisory_violation(task, final)
    return TaskOutcome(
        task_id=task_id,
        start=final.start,
        end=final.end,
        changed=final != stored,
        anomalies=anomalies,
        violations=[violation] if violation else [],
    )


def cycle_anomaly(graph: DependencyGraph, task_id: str) -> ScheduleAnomaly:
    chain = graph.find_cycle(task_id, [dep.predecessor_id for dep in graph.predecessors(task_id)])
    return ScheduleAnomaly(
        kind=AnomalyKind.CYCLE_DETECTED,
        task_id=task_id,
        message="Task is part of a dependency loop; dates left unchanged",
        related_ids=chain or [task_id],
    )


def reconcile_dependencies(
    working: WorkingSet,
    graph: DependencyGraph,
    include_weekends: bool,
) -> tuple[WorkingSet, PassReport]:
    """Dependency and constraint pass over a whole working set, in topological order."""
    working = dict(working)
    report = PassReport()
    order, cyclic = graph.topological_order()

    for task_id in cyclic:
        report.anomalies.append(cycle_anomaly(graph, task_id))

    for task_id in order:
        outcome = reconcile_task(working, graph, task_id, include_weekends)
        report.anomalies.extend(outcome.anomalies)
        report.violations.extend(outcome.violations)
        if outcome.changed:
            working[task_id] = with_dates(working[task_id], outcome.start, outcome.end)
            report.changed_ids.append(task_id)

    report.anomalies = dedupe_anomalies(report.anomalies)
    return working, report


def reconcile_working_set(
    working: WorkingSet,
    graph: DependencyGraph,
    include_weekends: bool,
) -> tuple[WorkingSet, PassReport]:
    """Full reconciliation: dependencies and constraints, then exclusions."""
    working, report = reconcile_dependencies(working, graph, include_weekends)
    working, exclusion_report = resolve_exclusions(working, include_weekends)
    report.merge(exclusion_report)
    return working, report


def reconcile_snapshot(tasks: Iterable[Task], include_weekends: bool) -> ReconcileResult:
    """
    Pure, in-memory reconciliation of a snapshot, e.g. for display correction.
    The input tasks are not modified and nothing is written anywhere.
    """
    working: WorkingSet = {task.id: task.model_copy(deep=True) for task in tasks}
    graph = DependencyGraph(working.values())
    working, report = reconcile_working_set(working, graph, include_weekends)

    if report.anomalies:
        logger.warning(
            "Reconciliation finished with anomalies",
            extra={'extra_data': {
                'anomalies': [a.kind.value for a in report.anomalies],
                'task_count': len(working),
            }}
        )
    logger.debug(
        "Snapshot reconciled",
        extra={'extra_data': {'task_count': len(working), 'changed': len(report.changed_ids)}}
    )

    return ReconcileResult(
        tasks=list(working.values()),
        changed_ids=report.changed_ids,
        anomalies=report.anomalies,
        violations=report.violations,
    )
