"""
Working-set and per-pass bookkeeping shared by the reconciliation passes.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from ..models import ScheduleAnomaly, Task

# Owned copies of a snapshot, keyed by task id. Each pass takes one and
# returns the updated one; nothing else holds a reference to it.
WorkingSet = dict[str, Task]


@dataclass
class PassReport:
    changed_ids: list[str] = field(default_factory=list)
    anomalies: list[ScheduleAnomaly] = field(default_factory=list)
    violations: list[ScheduleAnomaly] = field(default_factory=list)

    def mark_changed(self, task_id: str) -> None:
        if task_id not in self.changed_ids:
            self.changed_ids.append(task_id)

    def merge(self, other: "PassReport") -> None:
        for task_id in other.changed_ids:
            self.mark_changed(task_id)
        self.anomalies = dedupe_anomalies(self.anomalies + other.anomalies)
        self.violations = dedupe_anomalies(self.violations + other.violations)


def dedupe_anomalies(anomalies: Iterable[ScheduleAnomaly]) -> list[ScheduleAnomaly]:
    seen: set[tuple] = set()
    unique: list[ScheduleAnomaly] = []
    for anomaly in anomalies:
        key = (anomaly.kind, anomaly.task_id, anomaly.message)
        if key in seen:
            continue
        seen.add(key)
        unique.append(anomaly)
    return unique


def with_dates(task: Task, start: date, end: date) -> Task:
    return task.model_copy(update={"start_date": start, "end_date": end})
