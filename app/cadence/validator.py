"""Schedule validator: reconcile calendar entries against a GoalSpec.

Two policies:

  per week (default)   every complete 7-day block must satisfy the count
                       rule, cover each constrained weekday and keep timed
                       entries inside that weekday's windows. Partial edge
                       days are ignored.
  partial weeks        (`enforce_partial_weeks`) the whole inclusive period is
                       one aggregate: the count rule is prorated over the
                       period length, each constrained weekday that occurs in
                       the period needs one entry, and every timed entry is
                       window-checked.

Incompatibility is data (issues + optional fixes); only malformed input raises.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import date, timedelta
from fractions import Fraction
from typing import Any

from pydantic import ValidationError

from app.cadence.errors import ScheduleInputError
from app.cadence.models import (
    CalendarEvent,
    CountRule,
    GoalSpec,
    GoalType,
    ScheduleFix,
    TimeWindow,
    ValidationResult,
    WeekBlock,
    weekday_index,
)
from app.cadence.vocab import weekday_name
from app.cadence.weeks import parse_calendar_date, slice_complete_weeks
from app.config import settings

logger = logging.getLogger(__name__)

NO_COMPLETE_WEEK = "no complete week in period"


# ---------------------------------------------------------------------------
# Input coercion
# ---------------------------------------------------------------------------


def _coerce_events(events: Iterable[CalendarEvent | Mapping[str, Any]]) -> list[CalendarEvent]:
    coerced: list[CalendarEvent] = []
    for index, event in enumerate(events):
        if isinstance(event, CalendarEvent):
            coerced.append(event)
            continue
        try:
            coerced.append(CalendarEvent.model_validate(event))
        except ValidationError as exc:
            raise ScheduleInputError(f"events[{index}]", exc.errors()[0]["msg"])
    return coerced


def _coerce_goal_type(goal_type: GoalType | str | None, spec: GoalSpec) -> GoalType:
    if goal_type is None:
        return spec.type
    try:
        return GoalType(goal_type)
    except ValueError:
        raise ScheduleInputError("goalType", f"unknown goal type {goal_type!r}")


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def _in_window(clock: str, window: TimeWindow) -> bool:
    start, end = window
    if start <= end:
        return start <= clock <= end
    return clock >= start or clock <= end  # window crosses midnight


def _format_windows(windows: Iterable[TimeWindow]) -> str:
    return ", ".join(f"{s}-{e}" for s, e in windows)


def _time_violations(events: list[CalendarEvent], spec: GoalSpec) -> list[dict[str, Any]]:
    violations: list[dict[str, Any]] = []
    for event in events:
        if event.time is None:
            continue
        windows = spec.time_rules.get(weekday_index(event.date))
        if not windows:
            continue
        if not any(_in_window(event.time, w) for w in windows):
            violations.append(
                {"date": event.date.isoformat(), "time": event.time, "windows": [list(w) for w in windows]}
            )
    return violations


def _time_issue(label: str, violation: dict[str, Any]) -> str:
    day = date.fromisoformat(violation["date"])
    return (
        f"{label}: session on {day} ({weekday_name(weekday_index(day))}) at {violation['time']} "
        f"is outside the allowed window(s) {_format_windows(tuple(w) for w in violation['windows'])}"
    )


def _missing_weekdays(events: list[CalendarEvent], required: Iterable[int]) -> list[int]:
    present = {weekday_index(e.date) for e in events}
    return [d for d in required if d not in present]


def _prorated_target(rule: CountRule, days: int) -> int:
    exact = Fraction(rule.count * days, 7)
    if rule.operator == ">=":
        target = math.floor(exact)
        return max(1, target) if rule.count > 0 else target
    if rule.operator == "<=":
        return math.ceil(exact)
    return math.floor(exact + Fraction(1, 2))


def _frequency_issue(label: str, actual: int, rule: CountRule, required: int) -> str:
    return f"{label}: {actual} session(s) scheduled, requires {rule.operator} {required}"


def _week_label(number: int, block: WeekBlock) -> str:
    return f"week {number} ({block.from_date} to {block.to_date})"


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


def _per_week(
    events: list[CalendarEvent],
    spec: GoalSpec,
    blocks: list[WeekBlock],
) -> tuple[list[str], dict[str, Any]]:
    rule = spec.count_rule
    issues: list[str] = []
    weeks: list[dict[str, Any]] = []
    all_missing: list[dict[str, Any]] = []
    all_violations: list[dict[str, Any]] = []

    if not blocks:
        issues.append(NO_COMPLETE_WEEK)

    for number, block in enumerate(blocks, start=1):
        label = _week_label(number, block)
        week_events = [e for e in events if block.contains(e.date)]
        count = len(week_events)

        freq_ok = rule is None or rule.accepts(count)
        if not freq_ok:
            issues.append(_frequency_issue(label, count, rule, rule.count))

        missing = _missing_weekdays(week_events, spec.weekday_constraints)
        for day in missing:
            issues.append(f"{label}: no session on {weekday_name(day)}")
            all_missing.append({"week": number, "weekday": day})

        violations = _time_violations(week_events, spec)
        issues.extend(_time_issue(label, v) for v in violations)
        all_violations.extend(violations)

        weeks.append(
            {
                "week": number,
                "from": block.from_date.isoformat(),
                "to": block.to_date.isoformat(),
                "count": count,
                "frequencyPassed": freq_ok,
                "missingWeekdays": missing,
                "timeViolations": len(violations),
                "passed": freq_ok and not missing and not violations,
            }
        )

    details = {
        "policy": "perWeek",
        "frequencyCheck": {
            "passed": bool(blocks) and all(w["frequencyPassed"] for w in weeks),
            "operator": rule.operator if rule else None,
            "required": rule.count if rule else None,
            "counts": [w["count"] for w in weeks],
        },
        "weekdayCheck": {
            "passed": not all_missing,
            "required": list(spec.weekday_constraints),
            "missing": all_missing,
        },
        "timeCheck": {"passed": not all_violations, "violations": all_violations},
        "weeks": weeks,
    }
    return issues, details


def _whole_period(
    events: list[CalendarEvent],
    spec: GoalSpec,
    start: date,
    end: date,
    blocks: list[WeekBlock],
) -> tuple[list[str], dict[str, Any]]:
    rule = spec.count_rule
    days = (end - start).days + 1
    label = f"period {start} to {end}"
    issues: list[str] = []

    total = len(events)
    target = _prorated_target(rule, days) if rule else None
    freq_ok = rule is None or rule.accepts(total, target)
    if not freq_ok:
        issues.append(_frequency_issue(label, total, rule, target))

    occurring = {weekday_index(start + timedelta(days=i)) for i in range(min(days, 7))}
    required = [d for d in spec.weekday_constraints if d in occurring]
    missing = _missing_weekdays(events, required)
    issues.extend(f"{label}: no session on {weekday_name(d)}" for d in missing)

    violations = _time_violations(events, spec)
    issues.extend(_time_issue(label, v) for v in violations)

    weeks = [
        {
            "week": number,
            "from": block.from_date.isoformat(),
            "to": block.to_date.isoformat(),
            "count": sum(1 for e in events if block.contains(e.date)),
        }
        for number, block in enumerate(blocks, start=1)
    ]

    details = {
        "policy": "partialWeeks",
        "frequencyCheck": {
            "passed": freq_ok,
            "operator": rule.operator if rule else None,
            "required": target,
            "actual": total,
            "periodDays": days,
        },
        "weekdayCheck": {"passed": not missing, "required": required, "missing": missing},
        "timeCheck": {"passed": not violations, "violations": violations},
        "weeks": weeks,
    }
    return issues, details


# ---------------------------------------------------------------------------
# Fixes
# ---------------------------------------------------------------------------


def _circular_gap(a: int, b: int) -> int:
    d = abs(a - b) % 7
    return min(d, 7 - d)


def _spread_pick(chosen: set[int]) -> int:
    free = [d for d in range(7) if d not in chosen]
    if not chosen:
        return free[0]
    return max(free, key=lambda d: (min(_circular_gap(d, c) for c in chosen), -d))


def _fix_time(day: int, preferred: str | None, spec: GoalSpec) -> str:
    windows = spec.time_rules.get(day)
    if preferred is None:
        preferred = spec.rules[0].time if spec.rules else settings.default_rule_time
    if windows and not any(_in_window(preferred, w) for w in windows):
        return windows[0][0]
    return preferred


def _session_count(plan: dict[int, list[str]]) -> int:
    return sum(len(times) for times in plan.values())


def _trim_to_cap(plan: dict[int, list[str]], cap: int, constrained: set[int]) -> None:
    # extra sessions on one day go first, then whole unconstrained days
    for day in sorted(plan, reverse=True):
        while len(plan[day]) > 1 and _session_count(plan) > cap:
            plan[day].pop()
    for day in sorted(set(plan) - constrained, reverse=True):
        if _session_count(plan) <= cap:
            break
        del plan[day]


def _suggest_fix(events: list[CalendarEvent], spec: GoalSpec) -> ScheduleFix | None:
    rule = spec.count_rule
    if rule is not None and rule.count > 7:
        return None

    constrained = set(spec.weekday_constraints)
    if rule is not None and rule.operator in ("<=", "=") and len(constrained) > rule.count:
        return None

    # The user's own pattern: weekdays they booked and the in-window times they used
    user_times: dict[int, list[str]] = {}
    for event in events:
        wd = weekday_index(event.date)
        bucket = user_times.setdefault(wd, [])
        if event.time is None:
            continue
        windows = spec.time_rules.get(wd)
        if (not windows or any(_in_window(event.time, w) for w in windows)) and event.time not in bucket:
            bucket.append(event.time)
    if not user_times:
        for r in spec.rules:
            for wd in r.weekdays:
                user_times.setdefault(wd, []).append(r.time)

    used = Counter(t for times in user_times.values() for t in times)
    common = used.most_common(1)[0][0] if used else None

    plan: dict[int, list[str]] = {}
    for day in sorted(set(user_times) | constrained):
        plan[day] = sorted(user_times.get(day) or []) or [_fix_time(day, common, spec)]

    if rule is not None:
        if rule.operator in (">=", "="):
            while _session_count(plan) < rule.count:
                day = _spread_pick(set(plan))
                plan[day] = [_fix_time(day, common, spec)]
        if rule.operator in ("<=", "="):
            _trim_to_cap(plan, rule.count, constrained)

    return ScheduleFix(weekly_weekdays=sorted(plan), weekly_time_settings=dict(sorted(plan.items())))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def validate_goal_by_calendar_events(
    events: Iterable[CalendarEvent | Mapping[str, Any]],
    spec: GoalSpec,
    start: date | str,
    end: date | str,
    goal_type: GoalType | str | None = None,
) -> ValidationResult:
    """Check calendar entries in [start, end] against `spec`.

    Raises ScheduleInputError for malformed dates, an inverted range, malformed
    events or an unknown goal type. Everything else is reported in the result.
    """
    s = parse_calendar_date(start, "start")
    e = parse_calendar_date(end, "end")
    if e < s:
        raise ScheduleInputError("end", f"end {e} precedes start {s}")
    kind = _coerce_goal_type(goal_type, spec)

    in_range = [ev for ev in _coerce_events(events) if s <= ev.date <= e]
    blocks = slice_complete_weeks(s, e, spec.week_boundary)

    if spec.enforce_partial_weeks:
        issues, details = _whole_period(in_range, spec, s, e, blocks)
    else:
        issues, details = _per_week(in_range, spec, blocks)
    details["goalType"] = kind.value

    compatible = not issues
    fixes = None
    if not compatible and issues != [NO_COMPLETE_WEEK]:
        fixes = _suggest_fix(in_range, spec)

    logger.debug(
        "Validated %d event(s) over %s..%s (%s): compatible=%s, %d issue(s)",
        len(in_range),
        s,
        e,
        details["policy"],
        compatible,
        len(issues),
    )
    return ValidationResult(
        is_compatible=compatible,
        complete_week_count=len(blocks),
        issues=issues,
        validation_details=details,
        fixes=fixes,
    )
