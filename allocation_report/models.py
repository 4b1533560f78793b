from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Optional, Tuple


OUTPUT_FORMATS: Tuple[str, ...] = ("html", "xml", "csv")
SORT_KEYS: Tuple[str, ...] = ("id", "name", "none")


@dataclass(frozen=True)
class Resource:
    """Roster entry; ``tags`` holds the custom attributes read by the report."""

    id: str
    name: str
    parent: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)
    input_row: int = 0


@dataclass(frozen=True)
class Task:
    """Node of the task tree; only leaves carry bookings in practice."""

    id: str
    name: str
    parent: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)
    input_row: int = 0


@dataclass(frozen=True)
class Booking:
    task: str
    resource: str
    scenario: str
    day: date
    effort: float


@dataclass(frozen=True)
class ListFilter:
    """Hide/sort criteria applied to resource and task lists."""

    hide: Tuple[str, ...] = ()
    sort: str = "id"
    require_tag: Optional[str] = None


@dataclass(frozen=True)
class NumberFormat:
    precision: int = 2
    decimal_mark: str = "."
    thousands_mark: str = ""

    def format(self, value: float) -> str:
        text = f"{value:,.{self.precision}f}"
        integral, _, fraction = text.partition(".")
        integral = integral.replace(",", self.thousands_mark)
        if not fraction:
            return integral
        return f"{integral}{self.decimal_mark}{fraction}"


@dataclass(frozen=True)
class CalendarConfig:
    weekmask: str = "Mon Tue Wed Thu Fri"
    holidays: Tuple[date, ...] = ()


@dataclass(frozen=True)
class ReportConfig:
    start: date
    end: date
    report_name: str = "Resource Allocation"
    scenarios: Tuple[str, ...] = ("plan",)
    scenario_index: int = 0
    idle_bucket_id: Optional[str] = None
    idle_bucket_name: Optional[str] = None
    resource_filter: ListFilter = field(default_factory=ListFilter)
    task_filter: ListFilter = field(default_factory=ListFilter)
    resource_id_tag: str = "external_resource_id"
    project_id_tag: str = "external_project_id"
    project_name_tag: str = "external_project_name"
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    number_format: NumberFormat = field(default_factory=NumberFormat)
    xml_custom_info: str = ""
    html_name_limit: int = 15
    formats: Tuple[str, ...] = OUTPUT_FORMATS
    logging_level: str = "INFO"

    @property
    def has_idle_bucket(self) -> bool:
        return bool(self.idle_bucket_id) and bool(self.idle_bucket_name)

    def scenario_id(self) -> str:
        if not 0 <= self.scenario_index < len(self.scenarios):
            raise ValueError(
                f"scenario_index {self.scenario_index} out of range for scenarios {list(self.scenarios)}"
            )
        return self.scenarios[self.scenario_index]
