"""Verification policy: which proof signals a goal offers and requires.

Static table, no I/O. Each PolicyDefinition lists the signal every plan of
that goal type must carry and the base combinations chosen from the shape
of the schedule (has a time? has a place?).

A plan is only sufficient when at least one objective signal (location,
photo, screentime) is both offered and mandatory; self-report alone never is.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from app.cadence.errors import ScheduleInputError
from app.cadence.models import (
    OBJECTIVE_SIGNALS,
    FollowUpQuestion,
    GoalType,
    PlanContext,
    Signal,
    SignalCheck,
    VerificationPlan,
)
from app.cadence.vocab import DIGITAL_CUES, PHOTO_CUES, PLACE_CUES, mentions
from app.config import settings

logger = logging.getLogger(__name__)

ASK_TARGET_LOCATION = "ask_target_location"
INSUFFICIENT_SIGNALS = "no objective verification signal (location, photo or screentime) is mandatory"


@dataclass(frozen=True, slots=True)
class PolicyDefinition:
    goal_type: GoalType
    required: Signal
    fallback: tuple[Signal, ...]
    with_time_and_place: tuple[Signal, ...] | None = None
    with_time: tuple[Signal, ...] | None = None
    with_place: tuple[Signal, ...] | None = None


VERIFICATION_POLICIES: dict[GoalType, PolicyDefinition] = {
    GoalType.schedule: PolicyDefinition(
        goal_type=GoalType.schedule,
        required=Signal.time,
        fallback=(Signal.time, Signal.manual),
        with_time_and_place=(Signal.time, Signal.location),
        with_time=(Signal.time, Signal.photo),
    ),
    GoalType.frequency: PolicyDefinition(
        goal_type=GoalType.frequency,
        required=Signal.manual,
        fallback=(Signal.manual, Signal.photo),
        with_place=(Signal.manual, Signal.location),
    ),
    GoalType.milestone: PolicyDefinition(
        goal_type=GoalType.milestone,
        required=Signal.time,
        fallback=(Signal.time, Signal.manual),
        with_time=(Signal.time, Signal.photo),
    ),
}


def get_policy(goal_type: GoalType | str) -> PolicyDefinition:
    try:
        return VERIFICATION_POLICIES[GoalType(goal_type)]
    except ValueError:
        raise ScheduleInputError("goalType", f"unknown goal type {goal_type!r}")


def base_signals(goal_type: GoalType | str, *, has_time: bool = False, has_location: bool = False) -> tuple[Signal, ...]:
    policy = get_policy(goal_type)
    if has_time and has_location and policy.with_time_and_place:
        return policy.with_time_and_place
    if has_time and policy.with_time:
        return policy.with_time
    if has_location and policy.with_place:
        return policy.with_place
    return policy.fallback


def _split_signals(raw: Iterable[Any]) -> tuple[list[Signal], list[str]]:
    known: list[Signal] = []
    unknown: list[str] = []
    for item in raw:
        try:
            signal = Signal(item)
        except ValueError:
            unknown.append(f"unknown verification signal {item!r}")
            continue
        if signal not in known:
            known.append(signal)
    return known, unknown


def validate_verification_signals(goal_type: GoalType | str, signals: Iterable[Signal | str]) -> SignalCheck:
    """Check a signal list against the goal type's minimum combination."""
    kind = get_policy(goal_type).goal_type
    raw = list(signals)
    present, errors = _split_signals(raw)
    has = set(present)
    suggestions: list[Signal] = []

    if kind is GoalType.schedule:
        if Signal.time not in has:
            errors.append('Schedule goals must include "time" signal')
            suggestions.append(Signal.time)
        if Signal.time in has and not has & {Signal.location, Signal.photo, Signal.manual}:
            errors.append("Schedule with time must include location, photo, or manual signal")
            suggestions.extend([Signal.location, Signal.photo, Signal.manual])

    elif kind is GoalType.frequency:
        if Signal.manual not in has:
            errors.append('Frequency goals must include "manual" signal')
            suggestions.append(Signal.manual)
        # manual alone is the accepted fallback
        if Signal.manual in has and not has & {Signal.photo, Signal.location} and len(raw) > 1:
            errors.append("Frequency goals should include photo or location signal")
            suggestions.extend([Signal.photo, Signal.location])

    elif kind is GoalType.milestone:
        if Signal.time not in has:
            errors.append('Milestone goals must include "time" signal')
            suggestions.append(Signal.time)
        if not has & {Signal.manual, Signal.photo}:
            errors.append("Milestone goals must include manual or photo signal")
            suggestions.extend([Signal.manual, Signal.photo])

    return SignalCheck(valid=not errors, errors=errors, suggestions=list(dict.fromkeys(suggestions)))


def _add(signals: list[Signal], signal: Signal) -> None:
    if signal not in signals:
        signals.append(signal)


def compute_verification_plan(
    goal_type: GoalType | str,
    context: PlanContext | Mapping[str, Any] | None = None,
) -> VerificationPlan:
    """Derive offered and mandatory signals from the goal's shape and text."""
    policy = get_policy(goal_type)
    errors: list[str] = []

    if isinstance(context, PlanContext):
        ctx = context
    else:
        raw = dict(context or {})
        # Unknown labels are reported, not fatal
        raw_methods, method_errors = _split_signals(raw.pop("methods", None) or [])
        raw_mandatory, mandatory_errors = _split_signals(raw.pop("mandatory", None) or [])
        errors.extend(method_errors + mandatory_errors)
        ctx = PlanContext.model_validate({**raw, "methods": raw_methods, "mandatory": raw_mandatory})

    methods = list(base_signals(policy.goal_type, has_time=ctx.has_time, has_location=ctx.has_location))
    for signal in ctx.methods:
        _add(methods, signal)
    mandatory: list[Signal] = []
    for signal in ctx.mandatory:
        _add(mandatory, signal)
        _add(methods, signal)
    _add(mandatory, policy.required)
    for signal in methods:
        if signal in OBJECTIVE_SIGNALS:
            _add(mandatory, signal)
            break

    missing_fields: list[str] = []
    follow_up: FollowUpQuestion | None = None
    location = ctx.location
    place_name = ctx.target_location_name or (location.name if location else None)
    place_id = ctx.place_id or (location.place_id if location else None)

    if place_name or place_id:
        _add(methods, Signal.location)
        _add(mandatory, Signal.location)
    elif location is not None and location.mode == "movement":
        _add(methods, Signal.location)
        _add(mandatory, Signal.location)
    elif (location is not None and location.mode == "geofence") or mentions(ctx.text, PLACE_CUES):
        _add(methods, Signal.location)
        _add(mandatory, Signal.location)
        missing_fields.append("targetLocation")
        follow_up = FollowUpQuestion(field="targetLocation", code=ASK_TARGET_LOCATION)

    if ctx.screentime is not None or mentions(ctx.text, DIGITAL_CUES):
        _add(methods, Signal.screentime)
        _add(mandatory, Signal.screentime)

    if mentions(ctx.text, PHOTO_CUES):
        _add(methods, Signal.photo)
        _add(mandatory, Signal.photo)

    sufficient = any(s in methods and s in mandatory for s in OBJECTIVE_SIGNALS)
    if not sufficient and settings.require_objective_signal:
        errors.append(INSUFFICIENT_SIGNALS)

    errors.extend(validate_verification_signals(policy.goal_type, methods).errors)

    logger.debug(
        "Verification plan for %s: methods=%s mandatory=%s sufficient=%s",
        policy.goal_type.value,
        [s.value for s in methods],
        [s.value for s in mandatory],
        sufficient,
    )
    return VerificationPlan(
        methods=methods,
        mandatory=mandatory,
        sufficient=sufficient,
        valid=not errors,
        errors=errors,
        missing_fields=missing_fields,
        follow_up=follow_up,
    )
