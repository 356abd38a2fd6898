"""Frequency aggregation over verification records.

A frequency goal passes a week when the number of distinct local days with
at least one passed verification reaches the weekly target. Only complete
weeks are judged; every one of them must pass.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from app.cadence.errors import ScheduleInputError
from app.cadence.models import FrequencyReport, VerificationRecord, WeekResult, zone_for
from app.cadence.weeks import parse_calendar_date, slice_complete_weeks
from app.config import settings

logger = logging.getLogger(__name__)

NO_COMPLETE_BLOCK = "no complete 7-day block in range"


def _coerce_records(records: Iterable[VerificationRecord | Mapping[str, Any]]) -> list[VerificationRecord]:
    coerced: list[VerificationRecord] = []
    for index, record in enumerate(records):
        if isinstance(record, VerificationRecord):
            coerced.append(record)
            continue
        try:
            coerced.append(VerificationRecord.model_validate(record))
        except ValidationError as exc:
            raise ScheduleInputError(f"records[{index}]", exc.errors()[0]["msg"])
    return coerced


def aggregate_frequency(
    records: Iterable[VerificationRecord | Mapping[str, Any]],
    target_per_week: int,
    start: date | str,
    end: date | str,
    boundary_weekday: int | None = 1,
    timezone: str | None = None,
) -> FrequencyReport:
    """Judge each complete week in [start, end] (both inclusive) against the target.

    Record timestamps are read in `timezone` (default from settings); naive
    timestamps are taken as already local.
    """
    if target_per_week < 0:
        raise ScheduleInputError("targetPerWeek", f"expected a non-negative count, got {target_per_week}")
    s = parse_calendar_date(start, "start")
    e = parse_calendar_date(end, "end")
    if e < s:
        raise ScheduleInputError("end", f"end {e} precedes start {s}")
    tz = zone_for(timezone or settings.default_tz)

    # `end` is the last included day, so the slice runs to the day after it
    blocks = slice_complete_weeks(s, e + timedelta(days=1), boundary_weekday)
    if not blocks:
        return FrequencyReport(reason=NO_COMPLETE_BLOCK)

    passed_days: set[date] = set()
    for record in _coerce_records(records):
        if not record.passed:
            continue
        ts: datetime = record.ts
        passed_days.add((ts.astimezone(tz) if ts.tzinfo else ts).date())

    results: list[WeekResult] = []
    for block in blocks:
        days = sorted(d for d in passed_days if block.contains(d))
        results.append(
            WeekResult(
                week_key=f"{block.from_date}_to_{block.to_date}",
                from_date=block.from_date,
                to_date=block.to_date,
                count=len(days),
                target=target_per_week,
                passed=len(days) >= target_per_week,
                verification_days=days,
            )
        )

    passed_weeks = sum(1 for r in results if r.passed)
    overall = passed_weeks == len(results)
    reason = "all complete weeks achieved target" if overall else f"{passed_weeks}/{len(results)} weeks passed"
    logger.debug("Frequency %s..%s target=%d: %s", s, e, target_per_week, reason)
    return FrequencyReport(
        total_weeks=len(results),
        passed_weeks=passed_weeks,
        week_results=results,
        overall_pass=overall,
        reason=reason,
    )
