"""Quest generation: expand a goal into dated to-do items.

Schedule goals get one quest per built occurrence. Frequency goals spread
the weekly count over the allowed days of each 7-day stretch counted from
the period start (the last stretch may be partial). Milestone goals place
their steps evenly from the first to the last day of the period.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timedelta
from typing import Any

from dateutil.rrule import WEEKLY, rrule

from app.cadence import slots
from app.cadence.errors import ScheduleInputError
from app.cadence.models import GoalSpec, GoalType, Milestone, Quest, QuestCheck, weekday_index
from app.cadence.occurrences import build_occurrences
from app.cadence.vocab import weekday_name
from app.config import settings

logger = logging.getLogger(__name__)

WORKDAYS: tuple[int, ...] = (1, 2, 3, 4, 5)
DEFAULT_TITLE = "Goal"

_QUEST_SLOTS: dict[GoalType, tuple[str, ...]] = {
    GoalType.schedule: ("title", "period", "baseRule.weekdays", "baseRule.time"),
    GoalType.frequency: ("title", "period", "perWeek"),
    GoalType.milestone: ("title", "period", "milestones"),
}


def _week_number(spec: GoalSpec, day: date) -> int:
    return (day - spec.period.start).days // 7 + 1


def _week_starts(spec: GoalSpec) -> list[date]:
    recurrence = rrule(
        WEEKLY,
        dtstart=datetime.combine(spec.period.start, time.min),
        until=datetime.combine(spec.period.end, time.min),
    )
    return [moment.date() for moment in recurrence]


def _spread(days: list[date], count: int) -> list[date]:
    if count >= len(days):
        return days
    return [days[i * len(days) // count] for i in range(count)]


# ---------------------------------------------------------------------------
# Per goal type
# ---------------------------------------------------------------------------


def _schedule_quests(spec: GoalSpec, title: str) -> list[Quest]:
    if not spec.rules:
        raise ScheduleInputError("rules", "schedule quests need at least one weekly rule")
    zone = spec.zone
    quests: list[Quest] = []
    for number, occ in enumerate(build_occurrences(spec), start=1):
        local = occ.start.astimezone(zone)
        day = local.date()
        clock = local.strftime("%H:%M")
        wd = weekday_index(day)
        quests.append(
            Quest(
                id=f"schedule-{number}",
                title=f"{title} - {day.month}/{day.day}",
                description=f'Complete "{title}" on {weekday_name(wd)} at {clock}.',
                target_date=day,
                goal_type=GoalType.schedule,
                verification=list(spec.verification.methods),
                weekday=wd,
                time=clock,
                week_number=_week_number(spec, day),
                occurrence=number,
            )
        )
    return quests


def _frequency_quests(
    spec: GoalSpec,
    title: str,
    per_week: int | None,
    allowed_days: Iterable[int] | None,
) -> list[Quest]:
    target = per_week or (spec.count_rule.count if spec.count_rule else None)
    if not target:
        raise ScheduleInputError("perWeek", "frequency quests need a weekly count of at least 1")
    allowed = set(allowed_days or spec.weekday_constraints or WORKDAYS)

    quests: list[Quest] = []
    for week, week_start in enumerate(_week_starts(spec), start=1):
        week_end = min(week_start + timedelta(days=6), spec.period.end)
        open_days = [
            week_start + timedelta(days=offset)
            for offset in range((week_end - week_start).days + 1)
            if weekday_index(week_start + timedelta(days=offset)) in allowed
        ]
        # A short stretch gets at most one quest per open day
        for nth, day in enumerate(_spread(open_days, target), start=1):
            wd = weekday_index(day)
            quests.append(
                Quest(
                    id=f"frequency-{len(quests) + 1}",
                    title=f"{title} - {nth}/{target} (week {week})",
                    description=f'Complete "{title}" on {weekday_name(wd)} ({nth} of {target} this week).',
                    target_date=day,
                    goal_type=GoalType.frequency,
                    verification=list(spec.verification.methods),
                    weekday=wd,
                    week_number=week,
                    occurrence=nth,
                )
            )
    return quests


def _milestone_quests(spec: GoalSpec, title: str, milestones: list[Milestone]) -> list[Quest]:
    if not milestones:
        raise ScheduleInputError("milestones", "milestone quests need at least one step")
    span = (spec.period.end - spec.period.start).days
    last = len(milestones) - 1
    quests: list[Quest] = []
    for index, milestone in enumerate(milestones):
        offset = span if last == 0 else span * index // last
        day = spec.period.start + timedelta(days=offset)
        quests.append(
            Quest(
                id=f"milestone-{index + 1}",
                title=f"{title} - {milestone.label}",
                description=f'Finish the "{milestone.label}" step of "{title}".',
                target_date=day,
                goal_type=GoalType.milestone,
                verification=list(spec.verification.methods),
                week_number=_week_number(spec, day),
                occurrence=index + 1,
            )
        )
    return quests


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def generate_quests(
    spec: GoalSpec,
    *,
    per_week: int | None = None,
    allowed_days: Iterable[int] | None = None,
    milestones: Iterable[Milestone] | None = None,
) -> list[Quest]:
    """Dated quests for `spec`, ordered by date.

    `per_week` and `allowed_days` only apply to frequency goals; they default
    to the count rule and the weekday constraints (else Monday to Friday).
    Schedule and frequency output is capped at ``settings.max_quests``.
    Raises ScheduleInputError when the goal type's own input is missing.
    """
    title = spec.title or DEFAULT_TITLE
    if spec.type is GoalType.schedule:
        quests = _schedule_quests(spec, title)
    elif spec.type is GoalType.frequency:
        quests = _frequency_quests(spec, title, per_week, allowed_days)
    else:
        return _milestone_quests(spec, title, list(milestones or []))

    if len(quests) > settings.max_quests:
        logger.info("Capping %d %s quests at %d", len(quests), spec.type.value, settings.max_quests)
        quests = quests[: settings.max_quests]
    logger.debug("Generated %d %s quest(s) for %s..%s", len(quests), spec.type.value, spec.period.start, spec.period.end)
    return quests


def validate_quest_generation(draft: Mapping[str, Any]) -> QuestCheck:
    """Report which draft slots quest generation still lacks."""
    filled = set(slots.filled_slots(draft))
    if "type" not in filled:
        return QuestCheck(valid=False, errors=["type is required"])
    kind = GoalType(draft["type"])
    errors = [f"{slot} is required for {kind.value} quests" for slot in _QUEST_SLOTS[kind] if slot not in filled]
    return QuestCheck(valid=not errors, errors=errors)
