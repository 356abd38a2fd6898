"""Tests for occurrence expansion, preview and validation."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from app.cadence.models import Occurrence
from app.cadence.occurrences import build_occurrences, preview_occurrences, validate_occurrences
from tests.conftest import make_spec, spec_wire

SEOUL = ZoneInfo("Asia/Seoul")


def _local_days(occurrences: list[Occurrence]) -> list[date]:
    return [o.start.astimezone(SEOUL).date() for o in occurrences]


class TestBuildOccurrences:
    def test_mon_wed_fri_two_weeks(self):
        occ = build_occurrences(make_spec())
        assert len(occ) == 6
        assert occ[0].start == datetime(2025, 10, 1, 10, 0, tzinfo=timezone.utc)

    def test_utc_and_default_duration(self):
        occ = build_occurrences(make_spec())
        assert all(o.start.tzinfo == timezone.utc for o in occ)
        assert all(o.end - o.start == timedelta(minutes=60) for o in occ)

    def test_sorted(self):
        occ = build_occurrences(make_spec())
        assert [o.start for o in occ] == sorted(o.start for o in occ)

    def test_cancel_removes_date(self):
        occ = build_occurrences(make_spec(overrides=[{"kind": "cancel", "date": "2025-10-03"}]))
        assert len(occ) == 5
        assert date(2025, 10, 3) not in _local_days(occ)

    def test_retime_keeps_count(self):
        occ = build_occurrences(make_spec(overrides=[{"kind": "retime", "date": "2025-10-03", "time": "07:00"}]))
        assert len(occ) == 6
        friday = [o for o in occ if o.start.astimezone(SEOUL).date() == date(2025, 10, 3)]
        assert friday[0].start.astimezone(SEOUL).strftime("%H:%M") == "07:00"

    def test_move_keeps_count(self):
        spec = make_spec(
            overrides=[{"kind": "move", "date": "2025-10-03", "toDate": "2025-10-04", "toTime": "10:00"}]
        )
        days = _local_days(build_occurrences(spec))
        assert len(days) == 6
        assert date(2025, 10, 3) not in days
        assert date(2025, 10, 4) in days

    def test_add_allows_duplicate_day(self):
        occ = build_occurrences(
            make_spec(overrides=[{"kind": "add", "date": "2025-10-01", "time": "07:00", "durationMinutes": 30}])
        )
        assert len(occ) == 7
        assert occ[0].start.astimezone(SEOUL).strftime("%H:%M") == "07:00"
        assert occ[0].end - occ[0].start == timedelta(minutes=30)

    def test_precedence_ignores_list_order(self):
        # Add is applied after cancel even when listed first
        overrides = [
            {"kind": "add", "date": "2025-10-03", "time": "08:00"},
            {"kind": "cancel", "date": "2025-10-03"},
        ]
        occ = build_occurrences(make_spec(overrides=overrides))
        friday = [o for o in occ if o.start.astimezone(SEOUL).date() == date(2025, 10, 3)]
        assert len(friday) == 1
        assert friday[0].start.astimezone(SEOUL).strftime("%H:%M") == "08:00"

    def test_add_outside_period_dropped(self):
        occ = build_occurrences(make_spec(overrides=[{"kind": "add", "date": "2025-11-01", "time": "08:00"}]))
        assert len(occ) == 6

    def test_spec_untouched(self):
        spec = make_spec(overrides=[{"kind": "cancel", "date": "2025-10-03"}])
        before = spec.model_dump()
        build_occurrences(spec)
        assert spec.model_dump() == before

    def test_deterministic(self):
        spec = make_spec(overrides=[{"kind": "add", "date": "2025-10-01", "time": "19:00"}])
        assert build_occurrences(spec) == build_occurrences(spec)

    def test_dst_gap_resolves(self):
        # 02:30 does not exist on 2025-03-09 in New York
        spec = make_spec(
            timezone="America/New_York",
            period={"start": "2025-03-09", "end": "2025-03-09"},
            rules=[{"byWeekday": [0], "time": "02:30"}],
        )
        occ = build_occurrences(spec)
        assert len(occ) == 1
        assert occ[0].start == datetime(2025, 3, 9, 7, 30, tzinfo=timezone.utc)

    def test_rules_on_same_day_both_expand(self):
        spec = make_spec(
            period={"start": "2025-10-06", "end": "2025-10-12"},
            rules=[{"byWeekday": [1], "time": "07:00"}, {"byWeekday": [1, 3], "time": "19:00"}],
        )
        occ = build_occurrences(spec)
        assert _local_days(occ) == [date(2025, 10, 6), date(2025, 10, 6), date(2025, 10, 8)]

    def test_period_bounds_inclusive(self):
        spec = make_spec(period={"start": "2025-10-01", "end": "2025-10-06"}, rules=[{"byWeekday": [1, 3], "time": "19:00"}])
        assert _local_days(build_occurrences(spec)) == [date(2025, 10, 1), date(2025, 10, 6)]

    def test_rule_without_weekdays_expands_nothing(self):
        spec = make_spec(rules=[{"byWeekday": [], "time": "19:00"}])
        assert build_occurrences(spec) == []


class TestPreviewOccurrences:
    def test_from_partial_wire_spec(self):
        partial = spec_wire()
        del partial["schedule"]["overrides"]
        del partial["timezone"]
        previews = preview_occurrences(partial)
        assert len(previews) == 6
        first = previews[0]
        assert first.date == date(2025, 10, 1)
        assert first.time == "19:00"
        assert first.day_name == "Wednesday"
        assert first.week_number == 1
        assert previews[-1].week_number == 2

    def test_missing_rules(self):
        assert preview_occurrences({"period": {"start": "2025-10-01", "end": "2025-10-14"}}) == []

    def test_missing_period(self):
        assert preview_occurrences({"schedule": {"rules": [{"byWeekday": [1], "time": "07:00"}]}}) == []

    def test_nested_constraints_ignored(self):
        partial = spec_wire()
        partial["schedule"]["weekdayConstraints"] = [0]
        assert len(preview_occurrences(partial)) == 6


class TestValidateOccurrences:
    def test_empty(self):
        check = validate_occurrences([])
        assert not check.valid
        assert check.errors == ["at least one occurrence required"]

    def test_ok(self):
        assert validate_occurrences(build_occurrences(make_spec())).valid

    def test_too_many(self):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        occ = [Occurrence(start=start + timedelta(days=i), end=start + timedelta(days=i, hours=1)) for i in range(101)]
        check = validate_occurrences(occ)
        assert check.errors == ["too many occurrences"]

    def test_inverted(self):
        start = datetime(2025, 1, 1, 12, tzinfo=timezone.utc)
        check = validate_occurrences([Occurrence(start=start, end=start - timedelta(hours=1))])
        assert check.errors == ["occurrence ends before it starts"]
