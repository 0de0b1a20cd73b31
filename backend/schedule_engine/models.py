"""
Pydantic models for the scheduling engine and its API.
Field aliases are camelCase for frontend compatibility; Python code uses snake_case.
"""

from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class LinkType(str, Enum):
    FINISH_START = "FS"
    FINISH_FINISH = "FF"
    START_START = "SS"
    START_FINISH = "SF"


class ConstraintType(str, Enum):
    ASAP = "ASAP"
    START_NO_EARLIER_THAN = "SNET"
    START_NO_LATER_THAN = "SNLT"
    MUST_START_ON = "MSO"
    MUST_FINISH_ON = "MFO"
    FINISH_NO_EARLIER_THAN = "FNET"
    FINISH_NO_LATER_THAN = "FNLT"


class BufferPosition(str, Enum):
    START = "start"
    END = "end"


class TaskStatus(str, Enum):
    NOT_STARTED = "not-started"
    WORKING = "working"
    STUCK = "stuck"
    DONE = "done"


class AnomalyKind(str, Enum):
    CYCLE_DETECTED = "CycleDetected"
    UNKNOWN_PREDECESSOR = "UnknownPredecessor"
    CONSTRAINT_VIOLATION_ADVISORY = "ConstraintViolationAdvisory"
    INVALID_DATE_RANGE = "InvalidDateRange"
    ITERATION_LIMIT = "IterationLimit"


class HealthStatus(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class ChangeKind(str, Enum):
    TASKS_UPDATED = "tasks_updated"
    TASK_CREATED = "task_created"
    TASKS_REMOVED = "tasks_removed"
    PROJECT_UPDATED = "project_updated"


def _fold_legacy_dependency(data: Any) -> Any:
    """Turn a legacy dependsOn/dependencyType pair into a one-entry dependency list."""
    if not isinstance(data, dict):
        return data
    if data.get("dependencies"):
        return data
    legacy_id = data.get("dependsOn", data.get("depends_on"))
    if not legacy_id:
        return data
    legacy_type = data.get("dependencyType", data.get("dependency_type")) or LinkType.FINISH_START
    folded = dict(data)
    folded["dependencies"] = [{"predecessorId": legacy_id, "type": legacy_type}]
    return folded


class Dependency(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    predecessor_id: str = Field(alias="predecessorId")
    type: LinkType = LinkType.FINISH_START


class Task(BaseModel):
    """A scheduling unit. Duration is derived from the dates, never stored."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str = ""
    start_date: date = Field(alias="startDate")
    end_date: date = Field(alias="endDate")
    dependencies: list[Dependency] = Field(default_factory=list)
    buffer_days: int = Field(default=0, alias="bufferDays", ge=0)
    buffer_position: BufferPosition = Field(default=BufferPosition.END, alias="bufferPosition")
    constraint_type: ConstraintType = Field(default=ConstraintType.ASAP, alias="constraintType")
    constraint_date: Optional[date] = Field(default=None, alias="constraintDate")
    exclusion_links: list[str] = Field(default_factory=list, alias="exclusionLinks")
    parent_task_id: Optional[str] = Field(default=None, alias="parentTaskId")
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    effort_hours: float = Field(default=0, alias="effortHours", ge=0)
    status: TaskStatus = TaskStatus.NOT_STARTED
    baseline_start_date: Optional[date] = Field(default=None, alias="baselineStartDate")
    baseline_end_date: Optional[date] = Field(default=None, alias="baselineEndDate")

    @model_validator(mode="before")
    @classmethod
    def fold_legacy_dependency(cls, data: Any) -> Any:
        return _fold_legacy_dependency(data)

    @field_validator("dependencies")
    @classmethod
    def dedupe_dependencies(cls, v: list[Dependency]) -> list[Dependency]:
        seen: set[str] = set()
        unique: list[Dependency] = []
        for dep in v:
            if dep.predecessor_id in seen:
                continue
            seen.add(dep.predecessor_id)
            unique.append(dep)
        return unique

    @field_validator("exclusion_links")
    @classmethod
    def dedupe_exclusions(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @property
    def depends_on(self) -> Optional[str]:
        """Legacy single-predecessor view: the first predecessor, if any."""
        return self.dependencies[0].predecessor_id if self.dependencies else None

    @property
    def dependency_type(self) -> LinkType:
        return self.dependencies[0].type if self.dependencies else LinkType.FINISH_START

    @property
    def predecessor_ids(self) -> list[str]:
        return [dep.predecessor_id for dep in self.dependencies]


class Project(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    include_weekends: bool = Field(default=False, alias="includeWeekends")


class ScheduleAnomaly(BaseModel):
    """A non-fatal problem found during a run. The run continues past it."""

    model_config = ConfigDict(populate_by_name=True)

    kind: AnomalyKind
    task_id: Optional[str] = Field(default=None, alias="taskId")
    message: str
    related_ids: list[str] = Field(default_factory=list, alias="relatedIds")


class ChangeEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId")
    kind: ChangeKind
    task_ids: list[str] = Field(default_factory=list, alias="taskIds")


# --- Analysis Models ---

class TaskTiming(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    earliest_start: date = Field(alias="earliestStart")
    earliest_finish: date = Field(alias="earliestFinish")
    latest_start: date = Field(alias="latestStart")
    latest_finish: date = Field(alias="latestFinish")
    float_days: int = Field(alias="floatDays")


class CriticalPathResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    critical_ids: list[str] = Field(default_factory=list, alias="criticalIds")
    float_by_task: dict[str, int] = Field(default_factory=dict, alias="floatByTask")
    project_end: Optional[date] = Field(default=None, alias="projectEnd")
    timings: dict[str, TaskTiming] = Field(default_factory=dict)
    anomalies: list[ScheduleAnomaly] = Field(default_factory=list)

    def is_critical(self, task_id: str) -> bool:
        return task_id in self.critical_ids


class LevelingProposal(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    task_title: str = Field(default="", alias="taskTitle")
    owner_id: str = Field(alias="ownerId")
    old_start: date = Field(alias="oldStart")
    old_end: date = Field(alias="oldEnd")
    new_start: date = Field(alias="newStart")
    new_end: date = Field(alias="newEnd")
    shift_days: int = Field(alias="shiftDays")
    float_days: int = Field(alias="floatDays")


class ReconcileResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tasks: list[Task]
    changed_ids: list[str] = Field(default_factory=list, alias="changedIds")
    anomalies: list[ScheduleAnomaly] = Field(default_factory=list)
    violations: list[ScheduleAnomaly] = Field(default_factory=list)


class CascadeResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    updated_ids: list[str] = Field(default_factory=list, alias="updatedIds")
    anomalies: list[ScheduleAnomaly] = Field(default_factory=list)
    violations: list[ScheduleAnomaly] = Field(default_factory=list)


class EditResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    updated_tasks: list[Task] = Field(default_factory=list, alias="updatedTasks")
    violations: list[ScheduleAnomaly] = Field(default_factory=list)
    anomalies: list[ScheduleAnomaly] = Field(default_factory=list)


class RefreshResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    changed_count: int = Field(alias="changedCount")
    final_tasks: list[Task] = Field(default_factory=list, alias="finalTasks")
    anomalies: list[ScheduleAnomaly] = Field(default_factory=list)
    violations: list[ScheduleAnomaly] = Field(default_factory=list)


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schedule: HealthStatus
    critical_ids: list[str] = Field(default_factory=list, alias="criticalIds")


# --- Request Models ---

class TaskChanges(BaseModel):
    """
    Field-level edit of one task. Only fields present in the payload are applied,
    so an explicit null clears an optional field.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")
    dependencies: Optional[list[Dependency]] = None
    depends_on: Optional[str] = Field(default=None, alias="dependsOn")
    dependency_type: Optional[LinkType] = Field(default=None, alias="dependencyType")
    buffer_days: Optional[int] = Field(default=None, alias="bufferDays", ge=0)
    buffer_position: Optional[BufferPosition] = Field(default=None, alias="bufferPosition")
    constraint_type: Optional[ConstraintType] = Field(default=None, alias="constraintType")
    constraint_date: Optional[date] = Field(default=None, alias="constraintDate")
    exclusion_links: Optional[list[str]] = Field(default=None, alias="exclusionLinks")
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    effort_hours: Optional[float] = Field(default=None, alias="effortHours", ge=0)
    status: Optional[TaskStatus] = None
    baseline_start_date: Optional[date] = Field(default=None, alias="baselineStartDate")
    baseline_end_date: Optional[date] = Field(default=None, alias="baselineEndDate")

    @property
    def touches_dependencies(self) -> bool:
        return bool({"dependencies", "depends_on", "dependency_type"} & self.model_fields_set)


class ScheduleRequest(BaseModel):
    """Stateless request: a snapshot of tasks plus the calendar policy."""

    model_config = ConfigDict(populate_by_name=True)

    tasks: list[Task] = Field(default_factory=list)
    include_weekends: bool = Field(default=False, alias="includeWeekends")


class CreateProjectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    include_weekends: Optional[bool] = Field(default=None, alias="includeWeekends")


class UpdateProjectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    include_weekends: Optional[bool] = Field(default=None, alias="includeWeekends")


class CreateTaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    start_date: Optional[date] = Field(default=None, alias="startDate")
    parent_task_id: Optional[str] = Field(default=None, alias="parentTaskId")
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    effort_hours: float = Field(default=0, alias="effortHours", ge=0)
