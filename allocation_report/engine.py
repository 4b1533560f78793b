from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, List, Literal, Mapping, Optional, Sequence

import pandas as pd

from .models import ReportConfig, Resource, Task
from .schedule import Schedule

LOGGER = logging.getLogger(__name__)

BucketKind = Literal["ordinary", "idle"]


class ReportDataError(RuntimeError):
    """Schedule data cannot produce an allocation report."""


class NoEligibleResourcesError(ReportDataError):
    def __init__(self, tag: str) -> None:
        super().__init__(f"No resources with the custom tag '{tag}' were found")
        self.tag = tag


class DuplicateResourceIdError(ReportDataError):
    def __init__(self, resource_id: str, first: Resource, second: Resource) -> None:
        super().__init__(
            f"Resources {first.id} and {second.id} share the external resource id '{resource_id}'"
        )
        self.resource_id = resource_id
        self.first = first
        self.second = second


class InvalidProjectTagError(ReportDataError):
    def __init__(self, task_id: str, reason: str) -> None:
        super().__init__(f"Task {task_id}: {reason}")
        self.task_id = task_id
        self.reason = reason


class MissingProjectNameError(ReportDataError):
    def __init__(self, task_id: str, tag: str, empty: bool) -> None:
        state = "may not be empty" if empty else "has not been set"
        super().__init__(f"{tag} of task {task_id} {state}")
        self.task_id = task_id
        self.tag = tag


class InconsistentProjectNameError(ReportDataError):
    def __init__(
        self, project_id: str, task_id: str, name: str, first_task_id: str, first_name: str
    ) -> None:
        super().__init__(
            f"Task {task_id} and task {first_task_id} have the same project id ({project_id}) "
            f"but different project names ({name}/{first_name})"
        )
        self.project_id = project_id
        self.task_id = task_id
        self.name = name
        self.first_task_id = first_task_id
        self.first_name = first_name


class NoEligibleTasksError(ReportDataError):
    def __init__(self, id_tag: str, name_tag: str) -> None:
        super().__init__(f"No tasks with the custom tags '{id_tag}' and '{name_tag}' were found")
        self.id_tag = id_tag
        self.name_tag = name_tag


@dataclass(frozen=True)
class ResourceCapacity:
    """Normalized capacity of one resource for the reporting interval (days)."""

    resource_id: str
    resource: Resource
    actual_effort: float
    total_effort_capacity: float
    idle_remainder: float

    @property
    def name(self) -> str:
        return self.resource.name


@dataclass(frozen=True)
class ProjectBucket:
    id: str
    name: str
    kind: BucketKind = "ordinary"
    tasks: List[Task] = field(default_factory=list)
    resource_sums: Dict[str, float] = field(default_factory=dict)

    @property
    def is_idle(self) -> bool:
        return self.kind == "idle"

    def add(self, resource_id: str, work: float) -> None:
        self.resource_sums[resource_id] = self.resource_sums.get(resource_id, 0.0) + work

    def freeze(self) -> "ProjectBucket":
        """Copy with read-only tasks and sums; `add` fails on the copy."""
        return replace(self, tasks=tuple(self.tasks), resource_sums=MappingProxyType(dict(self.resource_sums)))


def normalize_capacities(schedule: Schedule, config: ReportConfig) -> Dict[str, ResourceCapacity]:
    """Compute the maximum possible allocation of every tagged resource.

    A fully allocated resource works one day per working day. More effort is
    treated as unpaid overtime and becomes the denominator; less effort leaves
    an idle remainder and the denominator stays at the working days.
    """
    working_days = schedule.working_days(config.start, config.end)
    LOGGER.info("%s working days between %s and %s", working_days, config.start, config.end)
    capacities: Dict[str, ResourceCapacity] = {}
    for resource in schedule.resource_list(config.resource_filter):
        resource_id = schedule.custom_tag(resource, config.resource_id_tag)
        if not schedule.is_leaf(resource) or not resource_id:
            LOGGER.debug("skipping resource %s", resource.id)
            continue
        if resource_id in capacities:
            raise DuplicateResourceIdError(resource_id, capacities[resource_id].resource, resource)
        actual = schedule.effort(resource, config.scenario_index, config.start, config.end)
        if actual >= working_days:
            idle = 0.0
            total = actual
        else:
            idle = working_days - actual
            total = working_days
        capacities[resource_id] = ResourceCapacity(
            resource_id=resource_id,
            resource=resource,
            actual_effort=actual,
            total_effort_capacity=total,
            idle_remainder=idle,
        )
    if not capacities:
        raise NoEligibleResourcesError(config.resource_id_tag)
    return capacities


def group_projects(
    schedule: Schedule,
    config: ReportConfig,
    capacities: Dict[str, ResourceCapacity],
) -> Dict[str, ProjectBucket]:
    buckets: Dict[str, ProjectBucket] = {}
    for task in schedule.task_list(config.task_filter):
        if not schedule.is_leaf(task) or not schedule.assigned_resources(task, config.scenario_index):
            continue
        project_id = schedule.custom_tag(task, config.project_id_tag)
        if project_id is None:
            continue
        if not project_id:
            raise InvalidProjectTagError(task.id, f"{config.project_id_tag} may not be empty")
        name = schedule.custom_tag(task, config.project_name_tag)
        if not name:
            raise MissingProjectNameError(task.id, config.project_name_tag, empty=name is not None)
        bucket = buckets.get(project_id)
        if bucket is None:
            bucket = buckets[project_id] = ProjectBucket(id=project_id, name=name)
        elif bucket.name != name:
            # The interchange format identifies a project by both id and name.
            raise InconsistentProjectNameError(
                project_id, task.id, name, bucket.tasks[0].id, bucket.name
            )
        bucket.tasks.append(task)
    if not buckets:
        raise NoEligibleTasksError(config.project_id_tag, config.project_name_tag)
    LOGGER.info("collected %d projects", len(buckets))

    if config.has_idle_bucket:
        idle_id = str(config.idle_bucket_id)
        if idle_id in buckets:
            raise InvalidProjectTagError(
                buckets[idle_id].tasks[0].id,
                f"{config.project_id_tag} '{idle_id}' is reserved for idle time",
            )
        idle = ProjectBucket(id=idle_id, name=str(config.idle_bucket_name), kind="idle")
        for resource_id, capacity in capacities.items():
            idle.resource_sums[resource_id] = capacity.idle_remainder
        buckets[idle_id] = idle
    return buckets


def accumulate_allocations(
    schedule: Schedule,
    config: ReportConfig,
    buckets: Dict[str, ProjectBucket],
    capacities: Dict[str, ResourceCapacity],
) -> None:
    """Add every accepted resource's effort on a bucket's tasks to the bucket."""
    for bucket in buckets.values():
        if bucket.is_idle:
            continue
        for task in bucket.tasks:
            for resource in schedule.assigned_resources(task, config.scenario_index):
                resource_id = schedule.custom_tag(resource, config.resource_id_tag)
                if not resource_id or resource_id not in capacities:
                    continue
                # A filtered-out resource may carry the same tag as an accepted one.
                if capacities[resource_id].resource.id != resource.id:
                    continue
                work = schedule.effort(
                    task, config.scenario_index, config.start, config.end, resource=resource
                )
                # No record for resources that did not work on the task in the interval.
                if work <= 0.0:
                    continue
                bucket.add(resource_id, work)


@dataclass(frozen=True)
class AllocationTable:
    """Fractions of resource capacity per project bucket."""

    capacities: Mapping[str, ResourceCapacity]
    buckets: Mapping[str, ProjectBucket]

    def __post_init__(self) -> None:
        object.__setattr__(self, "capacities", MappingProxyType(dict(self.capacities)))
        frozen = {bucket_id: bucket.freeze() for bucket_id, bucket in self.buckets.items()}
        object.__setattr__(self, "buckets", MappingProxyType(frozen))

    def fraction(self, bucket_id: str, resource_id: str) -> float:
        bucket = self.buckets.get(bucket_id)
        capacity = self.capacities.get(resource_id)
        if bucket is None or capacity is None:
            return 0.0
        value = bucket.resource_sums.get(resource_id)
        if value is None or capacity.total_effort_capacity <= 0.0:
            return 0.0
        return value / capacity.total_effort_capacity

    def resource_total(self, resource_id: str) -> float:
        return sum(self.fraction(bucket_id, resource_id) for bucket_id in self.buckets)

    def bucket_total(self, bucket_id: str) -> float:
        return sum(self.fraction(bucket_id, resource_id) for resource_id in self.capacities)

    def grand_total(self) -> float:
        return sum(self.bucket_total(bucket_id) for bucket_id in self.buckets)

    def bucket_ids(self) -> List[str]:
        return sorted(self.buckets)

    def visible_bucket_ids(self) -> List[str]:
        return [bucket_id for bucket_id in self.bucket_ids() if self.bucket_total(bucket_id) > 0.0]

    def resource_ids(self) -> List[str]:
        return sorted(self.capacities)

    def bucket_name(self, bucket_id: str) -> str:
        return self.buckets[bucket_id].name

    def resource_label(self, resource_id: str) -> str:
        return f"{self.capacities[resource_id].name} ({resource_id})"

    def bucket_resource_ids(self, bucket_id: str) -> List[str]:
        return sorted(self.buckets[bucket_id].resource_sums)

    def to_frame(self, bucket_ids: Optional[Sequence[str]] = None) -> pd.DataFrame:
        columns = list(bucket_ids) if bucket_ids is not None else self.bucket_ids()
        rows = [
            [self.fraction(bucket_id, resource_id) for bucket_id in columns]
            for resource_id in self.resource_ids()
        ]
        return pd.DataFrame(rows, index=self.resource_ids(), columns=columns, dtype=float)


def build_allocation_table(schedule: Schedule, config: ReportConfig) -> AllocationTable:
    capacities = normalize_capacities(schedule, config)
    buckets = group_projects(schedule, config, capacities)
    accumulate_allocations(schedule, config, buckets, capacities)
    return AllocationTable(capacities=capacities, buckets=buckets)
