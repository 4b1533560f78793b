"""
Shared fixtures: a small schedule matching the reference allocation scenario.

R1 works 6 days on P1 and 9 days on P2 (15 of 20 working days).
R2 works 10 days on P1 and 12 days on P3 (22 of 20 working days).
"""

import sys
from datetime import date
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from allocation_report.models import Booking, ReportConfig, Resource, Task  # noqa: E402
from allocation_report.schedule import Schedule  # noqa: E402

START = date(2026, 3, 2)
END = date(2026, 3, 28)
SAMPLE_DIR = REPO_ROOT / "reports" / "sample"


def resource(resource_id, rid=None, parent=None, name=None):
    tags = {} if rid is None else {"external_resource_id": rid}
    return Resource(id=resource_id, name=name or resource_id.title(), parent=parent, tags=tags)


def task(task_id, pid=None, pname=None, parent=None):
    tags = {}
    if pid is not None:
        tags["external_project_id"] = pid
    if pname is not None:
        tags["external_project_name"] = pname
    return Task(id=task_id, name=task_id, parent=parent, tags=tags)


def booking(task_id, resource_id, effort, day=START, scenario="plan"):
    return Booking(task=task_id, resource=resource_id, scenario=scenario, day=day, effort=effort)


def make_config(**overrides):
    values = {
        "start": START,
        "end": END,
        "idle_bucket_id": "VAC",
        "idle_bucket_name": "Vacation",
    }
    values.update(overrides)
    return ReportConfig(**values)


def scenario_resources():
    return [
        resource("team"),
        resource("alice", "R1", parent="team", name="Alice"),
        resource("bob", "R2", parent="team", name="Bob"),
    ]


def scenario_tasks():
    return [
        task("p1.a", "P1", "Alpha"),
        task("p1.b", "P1", "Alpha"),
        task("p2", "P2", "Beta"),
        task("p3", "P3", "Gamma"),
    ]


def scenario_bookings():
    return [
        booking("p1.a", "alice", 4.0),
        booking("p1.b", "alice", 2.0, day=date(2026, 3, 3)),
        booking("p2", "alice", 9.0, day=date(2026, 3, 10)),
        booking("p1.b", "bob", 10.0),
        booking("p3", "bob", 12.0, day=date(2026, 3, 16)),
    ]


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def schedule():
    return Schedule(scenario_resources(), scenario_tasks(), scenario_bookings())
