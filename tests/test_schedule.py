"""Tests for the schedule data source: lists, tags, effort queries, calendar."""

from datetime import date

import pytest

from allocation_report.models import CalendarConfig, ListFilter, Resource, Task
from allocation_report.schedule import Schedule

from conftest import END, START, booking, resource, task


class TestWorkingDays:
    def test_four_weeks(self, schedule):
        assert schedule.working_days(START, END) == 20.0

    def test_end_is_exclusive(self, schedule):
        # Monday to Monday is one working week.
        assert schedule.working_days(date(2026, 3, 2), date(2026, 3, 9)) == 5.0

    def test_holidays_reduce_capacity(self):
        calendar = CalendarConfig(holidays=(date(2026, 3, 4), date(2026, 3, 7)))
        sched = Schedule([resource("a", "R1")], [], [], calendar=calendar)
        # 2026-03-07 is a Saturday and does not count twice.
        assert sched.working_days(date(2026, 3, 2), date(2026, 3, 9)) == 4.0

    def test_custom_weekmask(self):
        calendar = CalendarConfig(weekmask="Mon Tue Wed Thu Fri Sat")
        sched = Schedule([resource("a", "R1")], [], [], calendar=calendar)
        assert sched.working_days(date(2026, 3, 2), date(2026, 3, 9)) == 6.0

    def test_empty_interval(self, schedule):
        assert schedule.working_days(END, START) == 0.0


class TestEffort:
    def test_resource_scope(self, schedule):
        alice = schedule.resource("alice")
        assert schedule.effort(alice, 0, START, END) == pytest.approx(15.0)

    def test_container_resource_includes_members(self, schedule):
        team = schedule.resource("team")
        assert schedule.effort(team, 0, START, END) == pytest.approx(37.0)

    def test_task_and_resource_scope(self, schedule):
        effort = schedule.effort(schedule.task("p1.b"), 0, START, END, resource=schedule.resource("bob"))
        assert effort == pytest.approx(10.0)

    def test_task_scope_without_resource(self, schedule):
        assert schedule.effort(schedule.task("p1.b"), 0, START, END) == pytest.approx(12.0)

    def test_bookings_outside_interval_ignored(self):
        sched = Schedule(
            [resource("a", "R1")],
            [task("t", "P1", "Alpha")],
            [
                booking("t", "a", 1.0, day=date(2026, 3, 1)),
                booking("t", "a", 2.0, day=START),
                booking("t", "a", 4.0, day=END),
            ],
        )
        assert sched.effort(sched.resource("a"), 0, START, END) == pytest.approx(2.0)

    def test_container_task_includes_subtree(self):
        sched = Schedule(
            [resource("a", "R1")],
            [task("root"), task("root.x", parent="root"), task("root.y", parent="root")],
            [booking("root.x", "a", 1.5), booking("root.y", "a", 2.5)],
        )
        assert sched.effort(sched.task("root"), 0, START, END) == pytest.approx(4.0)

    def test_scenario_separation(self):
        sched = Schedule(
            [resource("a", "R1")],
            [task("t", "P1", "Alpha")],
            [booking("t", "a", 3.0), booking("t", "a", 5.0, scenario="actual")],
            scenarios=("plan", "actual"),
        )
        assert sched.effort(sched.resource("a"), 0, START, END) == pytest.approx(3.0)
        assert sched.effort(sched.resource("a"), 1, START, END) == pytest.approx(5.0)

    def test_unknown_scenario_index(self, schedule):
        with pytest.raises(ValueError, match="unknown scenario index"):
            schedule.effort(schedule.resource("alice"), 3, START, END)


class TestEntities:
    def test_custom_tag_absent_vs_empty(self):
        entity = Task(id="t", name="t", tags={"external_project_id": ""})
        assert Schedule.custom_tag(entity, "external_project_id") == ""
        assert Schedule.custom_tag(entity, "external_project_name") is None

    def test_is_leaf(self, schedule):
        assert not schedule.is_leaf(schedule.resource("team"))
        assert schedule.is_leaf(schedule.resource("alice"))
        assert schedule.is_leaf(schedule.task("p2"))

    def test_assigned_resources_in_roster_order(self, schedule):
        assigned = schedule.assigned_resources(schedule.task("p1.b"), 0)
        assert [r.id for r in assigned] == ["alice", "bob"]

    def test_assigned_resources_ignore_interval(self):
        sched = Schedule(
            [resource("a", "R1")],
            [task("t", "P1", "Alpha")],
            [booking("t", "a", 1.0, day=date(2025, 1, 6))],
        )
        assert [r.id for r in sched.assigned_resources(sched.task("t"), 0)] == ["a"]

    def test_hide_removes_subtree(self, schedule):
        listed = schedule.resource_list(ListFilter(hide=("team",)))
        assert listed == []

    def test_sort_by_name(self):
        sched = Schedule(
            [Resource(id="r1", name="Zed"), Resource(id="r2", name="Amy")], [], []
        )
        assert [r.id for r in sched.resource_list(ListFilter(sort="name"))] == ["r2", "r1"]

    def test_input_order(self):
        sched = Schedule(
            [], [Task(id="b", name="b", input_row=1), Task(id="a", name="a", input_row=2)], []
        )
        assert [t.id for t in sched.task_list(ListFilter(sort="none"))] == ["b", "a"]
        assert [t.id for t in sched.task_list()] == ["a", "b"]

    def test_require_tag(self, schedule):
        listed = schedule.resource_list(ListFilter(require_tag="external_resource_id"))
        assert [r.id for r in listed] == ["alice", "bob"]


class TestValidation:
    def test_duplicate_ids(self):
        with pytest.raises(ValueError, match="duplicate resource id 'a'"):
            Schedule([resource("a"), resource("a")], [], [])

    def test_unknown_parent(self):
        with pytest.raises(ValueError, match="unknown parent"):
            Schedule([], [task("t", parent="missing")], [])

    def test_booking_unknown_task(self):
        with pytest.raises(ValueError, match="unknown tasks: nope"):
            Schedule([resource("a")], [], [booking("nope", "a", 1.0)])

    def test_booking_unknown_resource(self):
        with pytest.raises(ValueError, match="unknown resources: ghost"):
            Schedule([], [task("t")], [booking("t", "ghost", 1.0)])

    def test_booking_unknown_scenario(self):
        with pytest.raises(ValueError, match="unknown scenarios"):
            Schedule([resource("a")], [task("t")], [booking("t", "a", 1.0, scenario="draft")])

    def test_negative_effort(self):
        with pytest.raises(ValueError, match="negative effort"):
            Schedule([resource("a")], [task("t")], [booking("t", "a", -1.0)])
