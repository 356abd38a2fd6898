"""Tests for weekly frequency aggregation."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from app.cadence.errors import ScheduleInputError
from app.cadence.frequency import NO_COMPLETE_BLOCK, aggregate_frequency


def _record(ts: str, passed: bool = True) -> dict:
    return {"ts": ts, "passed": passed, "goalId": "g1", "method": "manual"}


class TestAggregateFrequency:
    def test_one_of_two_weeks(self):
        records = [
            _record("2025-09-08T10:00:00+09:00"),
            _record("2025-09-10T10:00:00+09:00"),
            _record("2025-09-12T10:00:00+09:00"),
            _record("2025-09-16T10:00:00+09:00"),
            _record("2025-09-18T10:00:00+09:00"),
        ]
        report = aggregate_frequency(records, 3, "2025-09-08", "2025-09-21")
        assert report.total_weeks == 2
        assert report.passed_weeks == 1
        assert not report.overall_pass
        assert report.reason == "1/2 weeks passed"
        assert report.week_results[0].week_key == "2025-09-08_to_2025-09-14"
        assert report.week_results[1].verification_days == [date(2025, 9, 16), date(2025, 9, 18)]

    def test_distinct_days_only(self):
        records = [_record("2025-09-08T08:00:00+09:00"), _record("2025-09-08T20:00:00+09:00")]
        report = aggregate_frequency(records, 2, "2025-09-08", "2025-09-14")
        assert report.week_results[0].count == 1
        assert not report.overall_pass

    def test_failed_records_ignored(self):
        records = [_record("2025-09-08T08:00:00+09:00", passed=False)]
        assert aggregate_frequency(records, 1, "2025-09-08", "2025-09-14").week_results[0].count == 0

    def test_local_day_in_goal_timezone(self):
        # 2025-09-14T23:30 UTC is already Monday 2025-09-15 in Seoul
        records = [_record("2025-09-14T23:30:00Z")]
        report = aggregate_frequency(records, 1, "2025-09-08", "2025-09-21", timezone="Asia/Seoul")
        assert report.week_results[0].count == 0
        assert report.week_results[1].count == 1

    def test_naive_timestamp_taken_as_local(self):
        records = [{"ts": datetime(2025, 9, 9, 7, 0), "passed": True}]
        assert aggregate_frequency(records, 1, "2025-09-08", "2025-09-14").overall_pass

    def test_all_weeks_pass(self):
        records = [_record("2025-09-09T10:00:00+09:00"), _record("2025-09-17T10:00:00+09:00")]
        report = aggregate_frequency(records, 1, "2025-09-08", "2025-09-21")
        assert report.overall_pass
        assert report.reason == "all complete weeks achieved target"

    def test_no_complete_block(self):
        report = aggregate_frequency([], 3, "2025-09-10", "2025-09-16")
        assert report.total_weeks == 0
        assert not report.overall_pass
        assert report.reason == NO_COMPLETE_BLOCK

    def test_inverted_range(self):
        with pytest.raises(ScheduleInputError):
            aggregate_frequency([], 3, "2025-09-21", "2025-09-08")

    def test_malformed_record(self):
        with pytest.raises(ScheduleInputError) as exc:
            aggregate_frequency([{"passed": True}], 3, "2025-09-08", "2025-09-21")
        assert exc.value.field == "records[0]"
