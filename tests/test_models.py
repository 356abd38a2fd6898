"""Tests for the canonical GoalSpec contract."""

from datetime import date

import pytest
from pydantic import ValidationError

from app.cadence.errors import ScheduleInputError
from app.cadence.models import (
    AddOverride,
    CancelOverride,
    CountRule,
    GoalSpec,
    MoveOverride,
    Period,
    WeeklyRule,
    weekday_index,
    zone_for,
)
from tests.conftest import make_spec, spec_wire


class TestPeriod:
    def test_inclusive_days(self):
        assert Period(start=date(2025, 10, 1), end=date(2025, 10, 14)).days == 14

    def test_single_day(self):
        p = Period(start=date(2025, 10, 1), end=date(2025, 10, 1))
        assert p.days == 1
        assert p.contains(date(2025, 10, 1))

    def test_inverted_rejected(self):
        with pytest.raises(ValidationError):
            Period(start=date(2025, 10, 14), end=date(2025, 10, 1))


class TestWeeklyRule:
    def test_by_weekday_alias_sorted_and_deduped(self):
        rule = WeeklyRule.model_validate({"byWeekday": [5, 1, 3, 1], "time": "7:05"})
        assert rule.weekdays == (1, 3, 5)
        assert rule.time == "07:05"

    def test_default_time(self):
        assert WeeklyRule(weekdays=[2]).time == "09:00"

    def test_weekday_out_of_range(self):
        with pytest.raises(ValidationError):
            WeeklyRule(weekdays=[7])

    def test_bad_clock(self):
        with pytest.raises(ValidationError):
            WeeklyRule(weekdays=[1], time="25:00")

    def test_serializes_by_weekday(self):
        dumped = WeeklyRule(weekdays=[1], time="19:00").model_dump(by_alias=True)
        assert dumped["byWeekday"] == (1,)


class TestOverrides:
    def test_discriminated_by_kind(self):
        spec = make_spec(
            overrides=[
                {"kind": "cancel", "date": "2025-10-03"},
                {"kind": "add", "date": "2025-10-04", "time": "10:00"},
                {"kind": "move", "date": "2025-10-06", "toDate": "2025-10-07", "toTime": "08:00"},
            ]
        )
        assert isinstance(spec.overrides[0], CancelOverride)
        assert isinstance(spec.overrides[1], AddOverride)
        move = spec.overrides[2]
        assert isinstance(move, MoveOverride)
        assert move.from_date == date(2025, 10, 6)
        assert move.to_time == "08:00"

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            make_spec(overrides=[{"kind": "skip", "date": "2025-10-03"}])


class TestCountRule:
    def test_double_equals_canonicalised(self):
        assert CountRule(operator="==", count=3).operator == "="

    @pytest.mark.parametrize(
        "operator,actual,expected",
        [(">=", 3, True), (">=", 2, False), ("<=", 4, False), ("<=", 1, True), ("=", 3, True), ("=", 2, False)],
    )
    def test_accepts(self, operator, actual, expected):
        assert CountRule(operator=operator, count=3).accepts(actual) is expected

    def test_negative_count_rejected(self):
        with pytest.raises(ValidationError):
            CountRule(count=-1)


class TestGoalSpec:
    def test_wire_shape_lifted(self):
        spec = GoalSpec.model_validate(spec_wire(countRule={"operator": ">=", "count": 3, "unit": "per_week"}))
        assert spec.rules[0].weekdays == (1, 3, 5)
        assert spec.count_rule.count == 3

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            make_spec(timezone="Mars/Olympus")

    def test_constraint_must_be_reachable(self):
        with pytest.raises(ValidationError):
            make_spec(weekdayConstraints=[2])

    def test_constraint_reachable_through_add(self):
        spec = make_spec(
            weekdayConstraints=[6],
            overrides=[{"kind": "add", "date": "2025-10-04", "time": "10:00"}],
        )
        assert spec.weekday_constraints == (6,)

    def test_time_rules_legacy_list(self):
        spec = make_spec(timeRules=[{"days": [1, 3], "range": ["18:00", "21:00"]}])
        assert spec.time_rules[1] == (("18:00", "21:00"),)
        assert spec.time_rules[3] == (("18:00", "21:00"),)

    def test_iso_week_boundary_name(self):
        assert make_spec(weekBoundary="isoWeek").week_boundary == 1

    def test_frozen(self):
        spec = make_spec()
        with pytest.raises(ValidationError):
            spec.title = "changed"

    def test_to_wire_nests_schedule(self):
        wire = make_spec(countRule={"count": 2}).to_wire()
        assert wire["schedule"]["rules"] == [{"byWeekday": [1, 3, 5], "time": "19:00", "durationMinutes": None}]
        assert wire["countRule"] == {"operator": ">=", "count": 2, "unit": "per_week"}
        assert "rules" not in wire


class TestHelpers:
    def test_weekday_index_sunday_zero(self):
        assert weekday_index(date(2025, 10, 5)) == 0  # Sunday
        assert weekday_index(date(2025, 10, 6)) == 1  # Monday

    def test_zone_for_unknown(self):
        with pytest.raises(ScheduleInputError) as exc:
            zone_for("Nowhere/Special")
        assert exc.value.field == "timezone"
