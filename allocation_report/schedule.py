from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set, TypeVar, Union

import pandas as pd

from .models import Booking, CalendarConfig, ListFilter, Resource, Task

LOGGER = logging.getLogger(__name__)

BOOKING_COLUMNS = ["task", "resource", "scenario", "day", "effort"]

Entity = TypeVar("Entity", Resource, Task)


def _index_entities(entities: Iterable[Entity], label: str) -> Dict[str, Entity]:
    indexed: Dict[str, Entity] = {}
    for entity in entities:
        if not entity.id:
            raise ValueError(f"{label} id must not be empty")
        if entity.id in indexed:
            raise ValueError(f"duplicate {label} id '{entity.id}'")
        indexed[entity.id] = entity
    for entity in indexed.values():
        if entity.parent is not None and entity.parent not in indexed:
            raise ValueError(f"{label} '{entity.id}' has unknown parent '{entity.parent}'")
    return indexed


def _children_map(entities: Dict[str, Entity]) -> Dict[str, List[str]]:
    children: Dict[str, List[str]] = defaultdict(list)
    for entity in entities.values():
        if entity.parent is not None:
            children[entity.parent].append(entity.id)
    return children


class Schedule:
    """Read-only view of a computed schedule.

    Resources and tasks form two independent trees. Effort is taken from
    per-day bookings, so every query over ``[start, end)`` is a sum of the
    bookings whose day falls inside the interval.
    """

    def __init__(
        self,
        resources: Sequence[Resource],
        tasks: Sequence[Task],
        bookings: Iterable[Booking],
        *,
        scenarios: Sequence[str] = ("plan",),
        calendar: Optional[CalendarConfig] = None,
    ) -> None:
        if not scenarios:
            raise ValueError("at least one scenario is required")
        self.scenarios = tuple(scenarios)
        self.calendar = calendar or CalendarConfig()
        self._resources = _index_entities(resources, "resource")
        self._tasks = _index_entities(tasks, "task")
        self._resource_children = _children_map(self._resources)
        self._task_children = _children_map(self._tasks)
        self._bookings = self._bookings_frame(bookings)

    def _bookings_frame(self, bookings: Iterable[Booking]) -> pd.DataFrame:
        rows = [
            {
                "task": booking.task,
                "resource": booking.resource,
                "scenario": booking.scenario,
                "day": booking.day,
                "effort": float(booking.effort),
            }
            for booking in bookings
        ]
        frame = pd.DataFrame(rows, columns=BOOKING_COLUMNS)
        unknown_tasks = sorted(set(frame["task"]) - set(self._tasks))
        if unknown_tasks:
            raise ValueError(f"bookings reference unknown tasks: {', '.join(unknown_tasks)}")
        unknown_resources = sorted(set(frame["resource"]) - set(self._resources))
        if unknown_resources:
            raise ValueError(f"bookings reference unknown resources: {', '.join(unknown_resources)}")
        unknown_scenarios = sorted(set(frame["scenario"]) - set(self.scenarios))
        if unknown_scenarios:
            raise ValueError(f"bookings reference unknown scenarios: {', '.join(unknown_scenarios)}")
        if (frame["effort"] < 0).any():
            raise ValueError("bookings contain negative effort")
        frame["day"] = pd.to_datetime(frame["day"])
        return frame

    # -- entity access -----------------------------------------------------

    @property
    def resources(self) -> List[Resource]:
        return list(self._resources.values())

    @property
    def tasks(self) -> List[Task]:
        return list(self._tasks.values())

    def resource(self, resource_id: str) -> Resource:
        return self._resources[resource_id]

    def task(self, task_id: str) -> Task:
        return self._tasks[task_id]

    def is_leaf(self, entity: Union[Resource, Task]) -> bool:
        children = self._task_children if isinstance(entity, Task) else self._resource_children
        return not children.get(entity.id)

    @staticmethod
    def custom_tag(entity: Union[Resource, Task], tag: str) -> Optional[str]:
        """Return the tag value, ``None`` when the tag is not set at all."""
        return entity.tags.get(tag)

    def resource_list(self, list_filter: Optional[ListFilter] = None) -> List[Resource]:
        return self._filtered(self._resources, self._resource_children, list_filter or ListFilter())

    def task_list(self, list_filter: Optional[ListFilter] = None) -> List[Task]:
        return self._filtered(self._tasks, self._task_children, list_filter or ListFilter())

    def _filtered(
        self,
        entities: Dict[str, Entity],
        children: Dict[str, List[str]],
        list_filter: ListFilter,
    ) -> List[Entity]:
        hidden: Set[str] = set()
        for hidden_id in list_filter.hide:
            if hidden_id not in entities:
                LOGGER.debug("hide criterion '%s' matches nothing", hidden_id)
                continue
            hidden.update(self._subtree(hidden_id, children))
        selected = [
            entity
            for entity in entities.values()
            if entity.id not in hidden
            and (list_filter.require_tag is None or list_filter.require_tag in entity.tags)
        ]
        if list_filter.sort == "id":
            selected.sort(key=lambda entity: entity.id)
        elif list_filter.sort == "name":
            selected.sort(key=lambda entity: (entity.name, entity.id))
        else:
            selected.sort(key=lambda entity: entity.input_row)
        return selected

    @staticmethod
    def _subtree(root_id: str, children: Dict[str, List[str]]) -> Set[str]:
        collected: Set[str] = set()
        pending = [root_id]
        while pending:
            current = pending.pop()
            if current in collected:
                continue
            collected.add(current)
            pending.extend(children.get(current, []))
        return collected

    # -- queries -----------------------------------------------------------

    def scenario_id(self, scenario_index: int) -> str:
        if scenario_index < 0 or scenario_index >= len(self.scenarios):
            raise ValueError(f"unknown scenario index {scenario_index}")
        return self.scenarios[scenario_index]

    def effort(
        self,
        scope: Union[Resource, Task],
        scenario_index: int,
        start: date,
        end: date,
        resource: Optional[Resource] = None,
    ) -> float:
        """Booked effort in days within ``[start, end)``.

        ``scope`` is either a resource (all of its work) or a task, optionally
        narrowed to one resource. Container scopes include their subtrees.
        """
        frame = self._bookings
        mask = (
            (frame["scenario"] == self.scenario_id(scenario_index))
            & (frame["day"] >= pd.Timestamp(start))
            & (frame["day"] < pd.Timestamp(end))
        )
        if isinstance(scope, Task):
            mask &= frame["task"].isin(self._subtree(scope.id, self._task_children))
            if resource is not None:
                mask &= frame["resource"].isin(self._subtree(resource.id, self._resource_children))
        else:
            mask &= frame["resource"].isin(self._subtree(scope.id, self._resource_children))
        return float(frame.loc[mask, "effort"].sum())

    def working_days(self, start: date, end: date) -> float:
        if end <= start:
            return 0.0
        days = pd.bdate_range(
            start=start,
            end=end,
            freq="C",
            weekmask=self.calendar.weekmask,
            holidays=list(self.calendar.holidays),
            inclusive="left",
        )
        return float(len(days))

    def assigned_resources(self, task: Task, scenario_index: int) -> List[Resource]:
        frame = self._bookings
        mask = (frame["task"] == task.id) & (frame["scenario"] == self.scenario_id(scenario_index))
        booked = set(frame.loc[mask, "resource"])
        return [resource for resource in self._resources.values() if resource.id in booked]
