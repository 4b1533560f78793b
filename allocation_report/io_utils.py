from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .models import (
    OUTPUT_FORMATS,
    SORT_KEYS,
    Booking,
    CalendarConfig,
    ListFilter,
    NumberFormat,
    ReportConfig,
    Resource,
    Task,
)
from .render import parse_custom_info
from .schedule import Schedule

_BOOKING_REQUIRED_COLUMNS = {"task", "resource", "date", "effort"}
_WEEKDAYS = {"Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"}


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in sorted(required) if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _parse_date(value: object, field_name: str) -> date:
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _parse_tags(value: object, owner: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"tags of {owner} must be an object")
    tags: Dict[str, str] = {}
    for key, tag_value in value.items():
        if tag_value is None:
            continue
        if not isinstance(tag_value, (str, int, float)) or isinstance(tag_value, bool):
            raise ValueError(f"tag '{key}' of {owner} must be a string")
        tags[str(key)] = str(tag_value)
    return tags


def _load_entries(path: str | Path, label: str) -> List[dict]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{label} file must be a JSON array")
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError(f"{label} entries must be objects")
        entry_id = entry.get("id")
        if not entry_id or not isinstance(entry_id, str):
            raise ValueError(f"{label} id is required")
    return data


def load_resources(path: str | Path) -> List[Resource]:
    resources: List[Resource] = []
    for row, entry in enumerate(_load_entries(path, "resources"), start=1):
        resource_id = entry["id"]
        parent = entry.get("parent")
        resources.append(
            Resource(
                id=resource_id,
                name=str(entry.get("name") or resource_id),
                parent=str(parent) if parent else None,
                tags=_parse_tags(entry.get("tags"), f"resource {resource_id}"),
                input_row=row,
            )
        )
    return resources


def load_tasks(path: str | Path) -> List[Task]:
    tasks: List[Task] = []
    for row, entry in enumerate(_load_entries(path, "tasks"), start=1):
        task_id = entry["id"]
        parent = entry.get("parent")
        tasks.append(
            Task(
                id=task_id,
                name=str(entry.get("name") or task_id),
                parent=str(parent) if parent else None,
                tags=_parse_tags(entry.get("tags"), f"task {task_id}"),
                input_row=row,
            )
        )
    return tasks


def load_bookings(path: str | Path, default_scenario: str = "plan") -> pd.DataFrame:
    # Ids such as "0042" must stay strings to match the JSON entities.
    df = pd.read_csv(path, dtype=str)
    _require_columns(df, _BOOKING_REQUIRED_COLUMNS, "bookings.csv")
    for col in ["task", "resource", "date"]:
        if df[col].isna().any():
            raise ValueError(f"column '{col}' contains missing values")
        df[col] = df[col].astype(str).str.strip()
    try:
        df["effort"] = pd.to_numeric(df["effort"].str.strip())
    except ValueError as exc:
        raise ValueError("invalid numeric value in column 'effort'") from exc
    if df["effort"].isna().any():
        raise ValueError("column 'effort' contains missing values")
    if (df["effort"] < 0).any():
        raise ValueError("column 'effort' contains negative values")
    if "scenario" not in df.columns:
        df["scenario"] = default_scenario
    df["scenario"] = df["scenario"].fillna(default_scenario).astype(str)
    df["date"] = [_parse_date(value, "date") for value in df["date"]]
    return df


def _bookings_from_df(df: pd.DataFrame) -> List[Booking]:
    return [
        Booking(
            task=str(row.task),
            resource=str(row.resource),
            scenario=str(row.scenario),
            day=row.date,
            effort=float(row.effort),
        )
        for row in df.itertuples(index=False)
    ]


def load_schedule(
    resources_path: str | Path,
    tasks_path: str | Path,
    bookings_path: str | Path,
    config: ReportConfig,
) -> Schedule:
    bookings_df = load_bookings(bookings_path, default_scenario=config.scenarios[0])
    return Schedule(
        load_resources(resources_path),
        load_tasks(tasks_path),
        _bookings_from_df(bookings_df),
        scenarios=config.scenarios,
        calendar=config.calendar,
    )


def _parse_list_filter(raw: object, key: str) -> ListFilter:
    if raw is None:
        return ListFilter()
    if not isinstance(raw, dict):
        raise ValueError(f"{key} must be an object")
    hide = raw.get("hide", [])
    if not isinstance(hide, list):
        raise ValueError(f"{key}.hide must be an array")
    sort = raw.get("sort", "id")
    if sort not in SORT_KEYS:
        raise ValueError(f"{key}.sort must be one of {', '.join(SORT_KEYS)}")
    require_tag = raw.get("require_tag")
    if require_tag is not None and not isinstance(require_tag, str):
        raise ValueError(f"{key}.require_tag must be a string")
    return ListFilter(hide=tuple(str(item) for item in hide), sort=sort, require_tag=require_tag)


def _parse_calendar(raw: object) -> CalendarConfig:
    if raw is None:
        return CalendarConfig()
    if not isinstance(raw, dict):
        raise ValueError("calendar must be an object")
    weekmask = raw.get("weekmask", CalendarConfig.weekmask)
    if not isinstance(weekmask, str) or not weekmask.split():
        raise ValueError("calendar.weekmask must be a non-empty string")
    unknown = [day for day in weekmask.split() if day not in _WEEKDAYS]
    if unknown:
        raise ValueError(f"calendar.weekmask contains unknown days: {', '.join(unknown)}")
    holidays = raw.get("holidays", [])
    if not isinstance(holidays, list):
        raise ValueError("calendar.holidays must be an array")
    return CalendarConfig(
        weekmask=weekmask,
        holidays=tuple(_parse_date(value, "calendar.holidays") for value in holidays),
    )


def _parse_number_format(raw: object) -> NumberFormat:
    if raw is None:
        return NumberFormat()
    if not isinstance(raw, dict):
        raise ValueError("number_format must be an object")
    precision = raw.get("precision", 2)
    if not isinstance(precision, int) or isinstance(precision, bool) or precision < 0:
        raise ValueError("number_format.precision must be a non-negative integer")
    decimal_mark = raw.get("decimal_mark", ".")
    thousands_mark = raw.get("thousands_mark", "")
    if not isinstance(decimal_mark, str) or not isinstance(thousands_mark, str):
        raise ValueError("number_format marks must be strings")
    return NumberFormat(precision=precision, decimal_mark=decimal_mark, thousands_mark=thousands_mark)


def _parse_idle_bucket(data: dict) -> Tuple[Optional[str], Optional[str]]:
    idle_id = data.get("idle_bucket_id")
    idle_name = data.get("idle_bucket_name")
    if idle_id is None and idle_name is None:
        return None, None
    if not isinstance(idle_id, str) or not idle_id or not isinstance(idle_name, str) or not idle_name:
        raise ValueError("idle_bucket_id and idle_bucket_name must both be non-empty strings")
    return idle_id, idle_name


def load_config(path: str | Path) -> ReportConfig:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("config file must be a JSON object")
    try:
        start = dateparser.isoparse(data["start"]).date()
        end = dateparser.isoparse(data["end"]).date()
    except (KeyError, ValueError, TypeError) as exc:
        raise ValueError("start and end must be valid ISO date strings") from exc
    if end <= start:
        raise ValueError("end must be later than start")

    scenarios = data.get("scenarios", ["plan"])
    if not isinstance(scenarios, list) or not scenarios or not all(isinstance(s, str) and s for s in scenarios):
        raise ValueError("scenarios must be a non-empty array of strings")
    scenario_index = data.get("scenario_index", 0)
    if not isinstance(scenario_index, int) or isinstance(scenario_index, bool):
        raise ValueError("scenario_index must be an integer")
    if not (0 <= scenario_index < len(scenarios)):
        raise ValueError("scenario_index out of range")

    idle_bucket_id, idle_bucket_name = _parse_idle_bucket(data)

    tag_names = {}
    for key, default in (
        ("resource_id_tag", ReportConfig.resource_id_tag),
        ("project_id_tag", ReportConfig.project_id_tag),
        ("project_name_tag", ReportConfig.project_name_tag),
    ):
        value = data.get(key, default)
        if not isinstance(value, str) or not value:
            raise ValueError(f"{key} must be a non-empty string")
        tag_names[key] = value

    xml_custom_info = data.get("xml_custom_info", "")
    if not isinstance(xml_custom_info, str):
        raise ValueError("xml_custom_info must be a string")
    parse_custom_info(xml_custom_info)

    html_name_limit = data.get("html_name_limit", 15)
    if not isinstance(html_name_limit, int) or isinstance(html_name_limit, bool) or html_name_limit < 0:
        raise ValueError("html_name_limit must be a non-negative integer")

    formats = data.get("formats", list(OUTPUT_FORMATS))
    if not isinstance(formats, list) or not formats:
        raise ValueError("formats must be a non-empty array")
    unsupported = [fmt for fmt in formats if fmt not in OUTPUT_FORMATS]
    if unsupported:
        raise ValueError(f"unsupported formats: {', '.join(map(str, unsupported))}")

    report_name = data.get("report_name", ReportConfig.report_name)
    if not isinstance(report_name, str):
        raise ValueError("report_name must be a string")

    return ReportConfig(
        start=start,
        end=end,
        report_name=report_name,
        scenarios=tuple(scenarios),
        scenario_index=scenario_index,
        idle_bucket_id=idle_bucket_id,
        idle_bucket_name=idle_bucket_name,
        resource_filter=_parse_list_filter(data.get("resource_filter"), "resource_filter"),
        task_filter=_parse_list_filter(data.get("task_filter"), "task_filter"),
        calendar=_parse_calendar(data.get("calendar")),
        number_format=_parse_number_format(data.get("number_format")),
        xml_custom_info=xml_custom_info,
        html_name_limit=html_name_limit,
        formats=tuple(formats),
        logging_level=data.get("logging_level", "INFO"),
        **tag_names,
    )


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target
