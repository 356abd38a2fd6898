"""Conversation slots: which draft fields each goal type still needs.

Works on the raw wire-shaped draft (camelCase, nested ``schedule`` /
``frequency`` / ``milestone`` blocks) so it can run before the draft is
complete enough to become a GoalSpec.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from app.cadence.models import GoalType

SLOT_IDS: tuple[str, ...] = (
    "type",
    "title",
    "period",
    "baseRule.weekdays",
    "baseRule.time",
    "exceptions",
    "confirmOccurrences",
    "perWeek",
    "milestones",
    "currentState",
    "verification",
    "successRate",
)

REQUIRED_SLOTS: dict[GoalType, tuple[str, ...]] = {
    GoalType.schedule: (
        "type",
        "title",
        "period",
        "baseRule.weekdays",
        "baseRule.time",
        "confirmOccurrences",
        "verification",
        "successRate",
    ),
    GoalType.frequency: ("type", "title", "period", "perWeek", "verification", "successRate"),
    GoalType.milestone: ("type", "title", "period", "milestones", "currentState", "verification", "successRate"),
}


def _block(draft: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = draft.get(key)
    return value if isinstance(value, Mapping) else {}


def _goal_type(draft: Mapping[str, Any]) -> GoalType | None:
    try:
        return GoalType(draft.get("type"))
    except ValueError:
        return None


def filled_slots(draft: Mapping[str, Any]) -> list[str]:
    schedule = _block(draft, "schedule")
    period = _block(draft, "period")
    rules = schedule.get("rules") or []
    first_rule = rules[0] if rules and isinstance(rules[0], Mapping) else {}
    milestone = _block(draft, "milestone")
    verification = _block(draft, "verification")
    success = _block(draft, "successCriteria")

    checks = {
        "type": _goal_type(draft) is not None,
        "title": bool(draft.get("title")),
        "period": bool(period.get("start") and period.get("end")),
        "baseRule.weekdays": bool(first_rule.get("byWeekday") or first_rule.get("weekdays")),
        "baseRule.time": bool(first_rule.get("time")),
        "exceptions": bool(schedule.get("overrides")),
        "confirmOccurrences": bool(schedule.get("occurrences")),
        "perWeek": bool(_block(draft, "frequency").get("targetPerWeek")),
        "milestones": bool(milestone.get("milestones")),
        "currentState": bool(milestone.get("currentState")),
        "verification": bool(verification.get("signals") or verification.get("methods")),
        "successRate": success.get("targetRate") is not None,
    }
    return [slot for slot in SLOT_IDS if checks[slot]]


def missing_slots(draft: Mapping[str, Any]) -> list[str]:
    """Required slots not yet filled, in asking order. Without a type, only "type"."""
    goal_type = _goal_type(draft)
    if goal_type is None:
        return ["type"]
    filled = set(filled_slots(draft))
    return [slot for slot in REQUIRED_SLOTS[goal_type] if slot not in filled]


def is_all_required_filled(draft: Mapping[str, Any]) -> bool:
    return _goal_type(draft) is not None and not missing_slots(draft)
