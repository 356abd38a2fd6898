"""Occurrence builder: expand weekly rules + overrides into dated instances.

Base dates come from one weekly rrule per rule; overrides are then applied
in a fixed order (cancel, retime, move, add) no matter how they are listed,
so the result depends only on the spec's content. Wall-clock times are
resolved in the spec's time zone and returned as UTC instants.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule
from pydantic import ValidationError

from app.cadence.models import (
    AddOverride,
    CancelOverride,
    GoalSpec,
    MoveOverride,
    Occurrence,
    OccurrenceCheck,
    OccurrencePreview,
    RetimeOverride,
    WeeklyRule,
    weekday_index,
)
from app.cadence.vocab import weekday_name
from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Candidate:
    day: date
    clock: str
    duration: int
    seq: int


# rrule weekday constants indexed 0 = Sunday
_RRULE_DAYS = (SU, MO, TU, WE, TH, FR, SA)


def _wall_time(day: date, clock: str, tz: ZoneInfo) -> datetime:
    # fold=0: nonexistent times shift forward, ambiguous ones take the first instant
    hour, minute = (int(part) for part in clock.split(":"))
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def _rule_days(rule: WeeklyRule, start: date, end: date) -> list[date]:
    if not rule.weekdays:
        return []
    recurrence = rrule(
        WEEKLY,
        dtstart=datetime.combine(start, time.min),
        until=datetime.combine(end, time.min),
        byweekday=[_RRULE_DAYS[d] for d in rule.weekdays],
    )
    return [moment.date() for moment in recurrence]


def _base_candidates(spec: GoalSpec, seq: Iterator[int]) -> list[_Candidate]:
    candidates: list[_Candidate] = []
    for rule in spec.rules:
        duration = rule.duration_minutes or spec.default_duration_min
        for day in _rule_days(rule, spec.period.start, spec.period.end):
            candidates.append(_Candidate(day, rule.time, duration, next(seq)))
    return candidates


def _insert(
    candidates: list[_Candidate],
    spec: GoalSpec,
    day: date,
    clock: str,
    duration: int,
    seq: Iterator[int],
    kind: str,
) -> None:
    if not spec.period.contains(day):
        logger.warning("Dropping %s override on %s outside period %s..%s", kind, day, spec.period.start, spec.period.end)
        return
    candidates.append(_Candidate(day, clock, duration, next(seq)))


def _apply_overrides(candidates: list[_Candidate], spec: GoalSpec, seq: Iterator[int]) -> list[_Candidate]:
    cancels = [o for o in spec.overrides if isinstance(o, CancelOverride)]
    retimes = [o for o in spec.overrides if isinstance(o, RetimeOverride)]
    moves = [o for o in spec.overrides if isinstance(o, MoveOverride)]
    adds = [o for o in spec.overrides if isinstance(o, AddOverride)]

    cancelled = {o.date for o in cancels}
    result = [c for c in candidates if c.day not in cancelled]

    for retime in retimes:
        for cand in result:
            if cand.day == retime.date:
                cand.clock = retime.time

    for move in moves:
        source = next((c for c in result if c.day == move.from_date), None)
        duration = spec.default_duration_min
        if source is not None:
            duration = source.duration
            result.remove(source)
        else:
            logger.debug("Move from %s matched no occurrence", move.from_date)
        _insert(result, spec, move.to_date, move.to_time, duration, seq, "move")

    for add in adds:
        duration = add.duration_minutes or spec.default_duration_min
        _insert(result, spec, add.date, add.time, duration, seq, "add")

    return result


def build_occurrences(spec: GoalSpec) -> list[Occurrence]:
    """Expand `spec` into UTC occurrences sorted by start (ties: insertion order)."""
    tz = spec.zone
    seq = itertools.count()
    candidates = _apply_overrides(_base_candidates(spec, seq), spec, seq)

    timed: list[tuple[datetime, int, Occurrence]] = []
    for cand in candidates:
        start = _wall_time(cand.day, cand.clock, tz).astimezone(timezone.utc)
        end = start + timedelta(minutes=cand.duration)
        timed.append((start, cand.seq, Occurrence(start=start, end=end)))
    timed.sort(key=lambda item: (item[0], item[1]))

    logger.debug(
        "Built %d occurrences for %s..%s (%d overrides)",
        len(timed),
        spec.period.start,
        spec.period.end,
        len(spec.overrides),
    )
    return [occ for _, _, occ in timed]


def preview_occurrences(partial: GoalSpec | Mapping[str, Any]) -> list[OccurrencePreview]:
    """Display projection for a spec that may not be complete yet.

    Missing overrides, count rule and time zone are tolerated. Returns []
    when there is no period or no rule to expand.
    """
    if isinstance(partial, GoalSpec):
        spec = partial
    else:
        draft = dict(partial)
        draft.pop("weekdayConstraints", None)
        draft.pop("weekday_constraints", None)
        if isinstance(draft.get("schedule"), Mapping):
            schedule = dict(draft["schedule"])
            schedule.pop("weekdayConstraints", None)
            schedule.pop("weekday_constraints", None)
            draft["schedule"] = schedule
        if not draft.get("timezone"):
            draft["timezone"] = settings.default_tz
        try:
            spec = GoalSpec.model_validate(draft)
        except ValidationError as exc:
            logger.debug("Preview skipped, partial spec not usable: %s", exc.error_count())
            return []

    if not spec.rules:
        return []

    tz = spec.zone
    previews: list[OccurrencePreview] = []
    for occ in build_occurrences(spec):
        local = occ.start.astimezone(tz)
        day = local.date()
        previews.append(
            OccurrencePreview(
                date=day,
                time=local.strftime("%H:%M"),
                day_name=weekday_name(weekday_index(day)),
                week_number=(day - spec.period.start).days // 7 + 1,
            )
        )
    return previews


def validate_occurrences(occurrences: list[Occurrence]) -> OccurrenceCheck:
    errors: list[str] = []
    if not occurrences:
        errors.append("at least one occurrence required")
    if len(occurrences) > settings.max_occurrences:
        errors.append("too many occurrences")
    if any(occ.end < occ.start for occ in occurrences):
        errors.append("occurrence ends before it starts")
    return OccurrenceCheck(valid=not errors, errors=errors)
