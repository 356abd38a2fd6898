"""Slot normalizer: coerce loosely typed draft values into canonical shapes.

Drafts come from an upstream AI step or from chat widgets, one slot at a
time, so every field is optional and may be spelled several ways.  This is
the single place where that optionality is resolved: downstream code only
ever sees the models in `app.cadence.models`.

Never raises.  A slot whose raw value cannot be understood is reported in
`missing_fields` (never replaced by an arbitrary default) so the caller can
ask a follow-up question naming exactly that field.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import re
from collections.abc import Callable, Mapping
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import TypeAdapter, ValidationError

from app.cadence.errors import ScheduleInputError
from app.cadence.models import (
    CountRule,
    GoalSpec,
    GoalType,
    Milestone,
    NormalizedValue,
    Override,
    Period,
    Signal,
    SpecAssembly,
    WeeklyRule,
    zone_for,
)
from app.cadence.vocab import COUNT_WORDS, TIME_ANCHORS_KO, signal_from_label, weekday_from_name
from app.config import settings

logger = logging.getLogger(__name__)

LEGACY_SLOT_IDS: dict[str, str] = {
    "weekdays": "baseRule.weekdays",
    "time": "baseRule.time",
}

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_KO_TIME_RE = re.compile(r"(오전|오후|아침|저녁|밤|새벽)?\s*(\d{1,2})\s*시\s*(?:(\d{1,2})\s*분|(반))?")
_EN_TIME_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([ap])\.?m\.?$")
_KO_PM = {"오후", "저녁", "밤"}
_KO_AM = {"오전", "아침", "새벽"}

_OVERRIDE_ADAPTER: TypeAdapter[Any] = TypeAdapter(Override)


# ---------------------------------------------------------------------------
# Value parsers (None when the value is not understood)
# ---------------------------------------------------------------------------


def _clock(hour: int, minute: int) -> str | None:
    if 0 <= hour <= 23 and 0 <= minute <= 59:
        return f"{hour:02d}:{minute:02d}"
    return None


def parse_clock(raw: Any, zone: ZoneInfo) -> str | None:
    """Parse a wall-clock time into zero-padded 24-hour "HH:MM"."""
    if isinstance(raw, dt.datetime):
        if raw.tzinfo is not None:
            raw = raw.astimezone(zone)
        return raw.strftime("%H:%M")
    if isinstance(raw, dt.time):
        return raw.strftime("%H:%M")
    if not isinstance(raw, str):
        return None

    text = raw.strip()
    m = _HHMM_RE.match(text)
    if m:
        return _clock(int(m.group(1)), int(m.group(2)))

    m = _KO_TIME_RE.search(text)
    if m:
        meridiem, hour, minute, half = m.group(1), int(m.group(2)), m.group(3), m.group(4)
        if meridiem == "밤" and hour == 12:
            hour = 0  # 밤 12시 is midnight
        elif meridiem in _KO_PM and hour < 12:
            hour += 12
        elif meridiem in _KO_AM and hour == 12:
            hour = 0
        return _clock(hour, 30 if half else int(minute or 0))

    m = _EN_TIME_RE.match(text.lower())
    if m:
        hour = int(m.group(1))
        if hour > 12:
            return None
        if m.group(3) == "p" and hour != 12:
            hour += 12
        elif m.group(3) == "a" and hour == 12:
            hour = 0
        return _clock(hour, int(m.group(2) or 0))

    if not any(ch.isdigit() for ch in text):
        for anchor, clock in TIME_ANCHORS_KO.items():
            if anchor in text:
                return clock
        return None

    try:
        parsed = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parse_clock(parsed, zone)


def parse_calendar_day(raw: Any, zone: ZoneInfo) -> dt.date | None:
    """Parse a date-like value; aware datetimes are read in `zone`."""
    if isinstance(raw, dt.datetime):
        return (raw.astimezone(zone) if raw.tzinfo else raw).date()
    if isinstance(raw, dt.date):
        return raw
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    try:
        return dt.date.fromisoformat(text)
    except ValueError:
        pass
    try:
        parsed = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parse_calendar_day(parsed, zone)


def parse_weekdays(raw: Any) -> list[int]:
    """Map indices / English / Korean day names to sorted unique 0..6 (0 = Sunday)."""
    if isinstance(raw, str):
        tokens = [t for t in re.split(r"[\s,/·]+", raw) if t]
        items: list[Any] = []
        for token in tokens:
            if weekday_from_name(token) is None and all(weekday_from_name(ch) is not None for ch in token):
                items.extend(token)  # "월수금"
            else:
                items.append(token)
        raw = items
    if not isinstance(raw, (list, tuple, set, frozenset)):
        return []

    days: set[int] = set()
    for item in raw:
        if isinstance(item, bool):
            continue
        if isinstance(item, int):
            if 0 <= item <= 6:
                days.add(item)
        elif isinstance(item, str):
            text = item.strip()
            if text.isdigit() and 0 <= int(text) <= 6:
                days.add(int(text))
                continue
            idx = weekday_from_name(text)
            if idx is not None:
                days.add(idx)
    return sorted(days)


def parse_per_week(raw: Any) -> int | None:
    """Weekly count clamped to [1, 7]; None when no number can be read."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, Mapping):
        return parse_per_week(raw.get("targetPerWeek", raw.get("count")))
    num: int | float | None = None
    if isinstance(raw, (int, float)):
        num = raw
    elif isinstance(raw, str):
        text = raw.strip().lower()
        m = re.search(r"\d+", text)
        if m:
            num = int(m.group(0))
        else:
            for token in re.split(r"[\s,/]+", text):
                word = token.rstrip("번회")
                if word in COUNT_WORDS:
                    num = COUNT_WORDS[word]
                    break
    if num is None or (isinstance(num, float) and not math.isfinite(num)):
        return None
    return max(1, min(7, int(num)))


def parse_signals(raw: Any) -> list[Signal]:
    """Ordered, de-duplicated signals; unknown labels are dropped."""
    if isinstance(raw, (str, Signal)):
        raw = [raw]
    if not isinstance(raw, (list, tuple, set, frozenset)):
        return []
    signals: list[Signal] = []
    for item in raw:
        signal = item if isinstance(item, Signal) else signal_from_label(str(item))
        if signal is None:
            logger.warning("Dropping unknown verification label %r", item)
            continue
        if signal not in signals:
            signals.append(signal)
    return signals


# ---------------------------------------------------------------------------
# Slot handlers
# ---------------------------------------------------------------------------


def _slot_type(raw: Any, zone: ZoneInfo) -> GoalType | None:
    if isinstance(raw, GoalType):
        return raw
    if isinstance(raw, str) and raw.strip().lower() in GoalType.__members__:
        return GoalType(raw.strip().lower())
    return None


def _slot_text(raw: Any, zone: ZoneInfo) -> str | None:
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


def _slot_period(raw: Any, zone: ZoneInfo) -> Period | None:
    if isinstance(raw, Period):
        return raw
    if isinstance(raw, Mapping):
        start_raw = raw.get("startDate", raw.get("start"))
        end_raw = raw.get("endDate", raw.get("end"))
    elif isinstance(raw, (list, tuple)) and len(raw) == 2:
        start_raw, end_raw = raw
    else:
        return None
    start = parse_calendar_day(start_raw, zone)
    end = parse_calendar_day(end_raw, zone)
    if start is None or end is None:
        return None
    if end < start:
        logger.warning("Period end %s precedes start %s, swapping", end, start)
        start, end = end, start
    return Period(start=start, end=end)


def _slot_weekdays(raw: Any, zone: ZoneInfo) -> list[int] | None:
    return parse_weekdays(raw) or None


def _slot_time(raw: Any, zone: ZoneInfo) -> str | None:
    return parse_clock(raw, zone)


def _slot_exceptions(raw: Any, zone: ZoneInfo) -> list[Any] | None:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        return None
    overrides: list[Any] = []
    for item in raw:
        try:
            overrides.append(_OVERRIDE_ADAPTER.validate_python(item))
        except ValidationError:
            logger.warning("Dropping malformed schedule override %r", item)
    return overrides


def _slot_per_week(raw: Any, zone: ZoneInfo) -> int | None:
    return parse_per_week(raw)


def _slot_milestones(raw: Any, zone: ZoneInfo) -> list[Milestone] | None:
    if not isinstance(raw, (list, tuple)) or not raw:
        return None
    milestones: list[Milestone] = []
    for index, item in enumerate(raw, start=1):
        if isinstance(item, Mapping) and item.get("key") and item.get("label"):
            milestones.append(Milestone(key=str(item["key"]), label=str(item["label"])))
        elif isinstance(item, str):
            milestones.append(Milestone(key=f"m{index}", label=item.strip()))
        else:
            milestones.append(Milestone(key=f"m{index}", label=str(item)))
    return milestones


def _slot_verification(raw: Any, zone: ZoneInfo) -> list[Signal]:
    if isinstance(raw, Mapping):
        raw = raw.get("signals", raw.get("methods"))
    signals = parse_signals(raw)
    if not signals:
        logger.warning("No usable verification labels in %r, falling back to manual", raw)
        return [Signal.manual]
    return signals


def _slot_success_rate(raw: Any, zone: ZoneInfo) -> int | None:
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, str):
        m = re.search(r"\d+(?:\.\d+)?", raw)
        if not m:
            return None
        raw = float(m.group(0))
    if not isinstance(raw, (int, float)) or (isinstance(raw, float) and not math.isfinite(raw)):
        return None
    return max(0, min(100, int(round(raw))))


def _slot_confirm(raw: Any, zone: ZoneInfo) -> bool | None:
    return True if raw else None


_SLOT_HANDLERS: dict[str, Callable[[Any, ZoneInfo], Any]] = {
    "type": _slot_type,
    "title": _slot_text,
    "period": _slot_period,
    "baseRule.weekdays": _slot_weekdays,
    "baseRule.time": _slot_time,
    "exceptions": _slot_exceptions,
    "perWeek": _slot_per_week,
    "milestones": _slot_milestones,
    "currentState": _slot_text,
    "verification": _slot_verification,
    "successRate": _slot_success_rate,
    "confirmOccurrences": _slot_confirm,
}


def _zone_or_none(name: str | None) -> ZoneInfo | None:
    try:
        return zone_for(name or settings.default_tz)
    except ScheduleInputError:
        logger.warning("Unknown time zone %r", name)
        return None


def normalize(slot: str, raw: Any, timezone: str | None = None) -> NormalizedValue:
    """Normalize one draft slot; unparseable input is reported, never raised."""
    slot_id = LEGACY_SLOT_IDS.get(slot, slot)
    handler = _SLOT_HANDLERS.get(slot_id)
    if handler is None:
        logger.warning("Unknown slot %r", slot)
        return NormalizedValue(slot=slot_id, value=raw, missing_fields=[slot_id])

    zone = _zone_or_none(timezone)
    if zone is None:
        return NormalizedValue(slot=slot_id, missing_fields=[slot_id, "timezone"])

    value = handler(raw, zone)
    if value is None:
        logger.warning("Slot %s could not be normalized from %r", slot_id, raw)
        return NormalizedValue(slot=slot_id, missing_fields=[slot_id])

    logger.debug("Slot %s normalized: %r -> %r", slot_id, raw, value)
    return NormalizedValue(slot=slot_id, value=value)


# ---------------------------------------------------------------------------
# Whole-draft assembly
# ---------------------------------------------------------------------------


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _rules_from_draft(
    draft: Mapping[str, Any],
    schedule: Mapping[str, Any],
    zone: ZoneInfo,
    missing: list[str],
) -> list[WeeklyRule]:
    entries: list[tuple[Any, Any]] = []
    if isinstance(schedule.get("rules"), list):
        for rule in schedule["rules"]:
            rule = _mapping(rule)
            entries.append((rule.get("byWeekday", rule.get("weekdays")), rule.get("time")))
    elif isinstance(schedule.get("events"), list):
        # AI shape: one entry per weekday, grouped into one rule per time
        by_time: dict[Any, list[Any]] = {}
        for event in schedule["events"]:
            event = _mapping(event)
            by_time.setdefault(event.get("time"), []).append(event.get("dayOfWeek"))
        entries.extend((days, clock) for clock, days in by_time.items())
    elif "weekdays" in draft or "baseRule.weekdays" in draft:
        entries.append(
            (draft.get("baseRule.weekdays", draft.get("weekdays")), draft.get("baseRule.time", draft.get("time")))
        )

    rules: list[WeeklyRule] = []
    for raw_days, raw_time in entries:
        days = parse_weekdays(raw_days)
        if not days:
            logger.warning("Skipping rule without usable weekdays: %r", raw_days)
            continue
        if raw_time is None:
            rules.append(WeeklyRule(weekdays=days))
            continue
        clock = parse_clock(raw_time, zone)
        if clock is None:
            if "baseRule.time" not in missing:
                missing.append("baseRule.time")
            continue
        rules.append(WeeklyRule(weekdays=days, time=clock))
    return rules


def _count_rule_from_draft(
    draft: Mapping[str, Any],
    schedule: Mapping[str, Any],
    warnings: list[str],
) -> CountRule | None:
    raw_rule = schedule.get("countRule", draft.get("countRule"))
    if isinstance(raw_rule, Mapping):
        if raw_rule.get("unit", "per_week") != "per_week":
            warnings.append(f"countRule unit {raw_rule.get('unit')!r} is not supported")
        else:
            try:
                return CountRule.model_validate(raw_rule)
            except ValidationError:
                warnings.append("countRule could not be read")

    per_week = parse_per_week(_mapping(draft.get("frequency")).get("targetPerWeek", draft.get("perWeek")))
    if per_week is not None:
        return CountRule(operator=">=", count=per_week)
    return None


def _time_rules_from_draft(raw: Any, zone: ZoneInfo, warnings: list[str]) -> dict[int, list[tuple[str, str]]]:
    if isinstance(raw, list):
        pairs = [(day, _mapping(entry).get("range")) for entry in raw for day in _mapping(entry).get("days") or []]
    elif isinstance(raw, Mapping):
        pairs = [(day, window) for day, windows in raw.items() for window in (windows or [])]
    else:
        return {}

    rules: dict[int, list[tuple[str, str]]] = {}
    for day, window in pairs:
        days = parse_weekdays([day])
        if not days or not isinstance(window, (list, tuple)) or len(window) != 2:
            warnings.append(f"Dropped time window {window!r} for weekday {day!r}")
            continue
        start, end = parse_clock(window[0], zone), parse_clock(window[1], zone)
        if start is None or end is None:
            warnings.append(f"Dropped time window {window!r} for weekday {day!r}")
            continue
        bucket = rules.setdefault(days[0], [])
        if (start, end) not in bucket:
            bucket.append((start, end))
    return rules


def _fields_from_error(exc: ValidationError) -> list[str]:
    fields: list[str] = []
    for err in exc.errors():
        name = next((str(part) for part in err.get("loc", ()) if isinstance(part, str)), "spec")
        if name not in fields:
            fields.append(name)
    return fields


def assemble_goal_spec(draft: Mapping[str, Any], timezone: str | None = None) -> SpecAssembly:
    """Build a canonical GoalSpec from a loosely typed draft.

    Accepts the canonical wire shape as well as the AI draft shape
    (``schedule.events``, ``frequency.targetPerWeek``, ``verification.signals``).
    Returns the spec, or the list of fields the caller still has to ask for.
    """
    missing: list[str] = []
    warnings: list[str] = []

    tz_name = draft.get("timezone") or timezone or settings.default_tz
    zone = _zone_or_none(tz_name)
    if zone is None:
        return SpecAssembly(missing_fields=["timezone"])

    schedule = _mapping(draft.get("schedule"))

    goal_type = _slot_type(draft.get("type"), zone)
    if goal_type is None:
        missing.append("type")

    period = _slot_period(draft.get("period"), zone)
    if period is None:
        missing.append("period")

    rules = _rules_from_draft(draft, schedule, zone, missing)
    if goal_type == GoalType.schedule and not rules and "baseRule.time" not in missing:
        missing.append("baseRule.weekdays")

    overrides = _slot_exceptions(schedule.get("overrides", draft.get("exceptions")), zone)
    if overrides is None:
        missing.append("exceptions")

    count_rule = _count_rule_from_draft(draft, schedule, warnings)
    if goal_type == GoalType.frequency and count_rule is None:
        missing.append("perWeek")

    if missing:
        logger.info("Draft incomplete, missing %s", missing)
        return SpecAssembly(missing_fields=missing, warnings=warnings)

    verification = _mapping(draft.get("verification"))
    methods = _slot_verification(verification.get("methods", verification.get("signals")), zone)
    mandatory = parse_signals(verification.get("mandatory"))

    raw_duration = schedule.get("defaultDurationMin", draft.get("defaultDurationMin"))
    payload: dict[str, Any] = {
        "type": goal_type,
        "title": _slot_text(draft.get("title"), zone),
        "timezone": tz_name,
        "period": period,
        "rules": rules,
        "overrides": overrides,
        "count_rule": count_rule,
        "weekday_constraints": parse_weekdays(schedule.get("weekdayConstraints", draft.get("weekdayConstraints"))),
        "time_rules": _time_rules_from_draft(
            schedule.get("timeRules", draft.get("timeRules")), zone, warnings
        ),
        "enforce_partial_weeks": bool(schedule.get("enforcePartialWeeks", draft.get("enforcePartialWeeks", False))),
        "verification": {"methods": methods, "mandatory": mandatory},
    }
    boundary = schedule.get("weekBoundary", draft.get("weekBoundary"))
    if boundary is not None:
        payload["week_boundary"] = boundary
    if isinstance(raw_duration, int) and not isinstance(raw_duration, bool) and raw_duration > 0:
        payload["default_duration_min"] = raw_duration

    try:
        spec = GoalSpec.model_validate(payload)
    except ValidationError as exc:
        fields = _fields_from_error(exc)
        logger.warning("Draft failed canonical validation on %s", fields)
        return SpecAssembly(
            missing_fields=fields,
            warnings=warnings + [err["msg"] for err in exc.errors()],
        )
    return SpecAssembly(spec=spec, warnings=warnings)
