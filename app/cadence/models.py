"""Canonical goal-schedule contract: Pydantic v2 models.

Everything past the normalizer works on these frozen, validated models.
Wire format is camelCase (``byWeekday``, ``countRule``, ``isCompatible``);
Python attributes are snake_case.
"""

from __future__ import annotations

import datetime as dt
import re
from enum import Enum
from typing import Annotated, Any, Literal, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from app.cadence.errors import ScheduleInputError
from app.config import settings

_CLOCK_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def _coerce_clock(value: Any) -> Any:
    if isinstance(value, dt.time):
        return value.strftime("%H:%M")
    if isinstance(value, str):
        m = _CLOCK_RE.match(value.strip())
        if m:
            return f"{int(m.group(1)):02d}:{m.group(2)}"
    raise ValueError(f"invalid clock time {value!r}, expected HH:MM")


ClockTime = Annotated[str, BeforeValidator(_coerce_clock)]
Weekday = Annotated[int, Field(ge=0, le=6)]  # 0 = Sunday
TimeWindow = tuple[ClockTime, ClockTime]


def zone_for(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising a contract error for unknown zones."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ScheduleInputError("timezone", f"unknown time zone {name!r}")


class GoalType(str, Enum):
    schedule = "schedule"
    frequency = "frequency"
    milestone = "milestone"


class Signal(str, Enum):
    time = "time"
    location = "location"
    photo = "photo"
    screentime = "screentime"
    manual = "manual"


# Stronger than self-report; at least one must be both offered and mandatory.
OBJECTIVE_SIGNALS: frozenset[Signal] = frozenset({Signal.location, Signal.photo, Signal.screentime})


class CadenceModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Schedule specification
# ---------------------------------------------------------------------------


class Period(CadenceModel):
    start: dt.date
    end: dt.date

    @model_validator(mode="after")
    def _start_not_after_end(self) -> Period:
        if self.end < self.start:
            raise ValueError(f"period end {self.end} precedes start {self.start}")
        return self

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: dt.date) -> bool:
        return self.start <= day <= self.end


class WeeklyRule(CadenceModel):
    weekdays: tuple[Weekday, ...] = Field(
        validation_alias=AliasChoices("byWeekday", "weekdays", "by_weekday"),
        serialization_alias="byWeekday",
    )
    time: ClockTime = Field(default_factory=lambda: settings.default_rule_time)
    duration_minutes: int | None = Field(default=None, gt=0)

    @field_validator("weekdays", mode="after")
    @classmethod
    def _dedupe_weekdays(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        return tuple(sorted(set(v)))


class CancelOverride(CadenceModel):
    kind: Literal["cancel"] = "cancel"
    date: dt.date


class RetimeOverride(CadenceModel):
    kind: Literal["retime"] = "retime"
    date: dt.date
    time: ClockTime


class AddOverride(CadenceModel):
    kind: Literal["add"] = "add"
    date: dt.date
    time: ClockTime
    duration_minutes: int | None = Field(default=None, gt=0)


class MoveOverride(CadenceModel):
    kind: Literal["move"] = "move"
    from_date: dt.date = Field(
        validation_alias=AliasChoices("fromDate", "from_date", "from", "date"),
        serialization_alias="date",
    )
    to_date: dt.date
    to_time: ClockTime


Override = Annotated[
    Union[CancelOverride, RetimeOverride, AddOverride, MoveOverride],
    Field(discriminator="kind"),
]


class CountRule(CadenceModel):
    operator: Literal[">=", "=", "<="] = ">="
    count: int = Field(ge=0)
    unit: Literal["per_week"] = "per_week"

    @field_validator("operator", mode="before")
    @classmethod
    def _canonical_equals(cls, v: Any) -> Any:
        return "=" if v == "==" else v

    def accepts(self, actual: int | float, target: int | float | None = None) -> bool:
        """Compare `actual` against `target` (default: `count`) with this rule's operator."""
        required = self.count if target is None else target
        if self.operator == ">=":
            return actual >= required
        if self.operator == "<=":
            return actual <= required
        return actual == required


class VerificationSpec(CadenceModel):
    methods: tuple[Signal, ...] = (Signal.manual,)
    mandatory: tuple[Signal, ...] = ()


_WEEK_BOUNDARY_NAMES = {"isoweek": 1, "startweekday": None}


class GoalSpec(CadenceModel):
    """Canonical declarative recurrence + constraint description for a goal."""

    type: GoalType = GoalType.schedule
    title: str | None = None
    timezone: str = Field(default_factory=lambda: settings.default_tz)
    period: Period
    rules: tuple[WeeklyRule, ...] = ()
    overrides: tuple[Override, ...] = ()
    default_duration_min: int = Field(default_factory=lambda: settings.default_duration_min, gt=0)
    count_rule: CountRule | None = None
    weekday_constraints: tuple[Weekday, ...] = ()
    time_rules: dict[Weekday, tuple[TimeWindow, ...]] = Field(default_factory=dict)
    week_boundary: Weekday | None = None
    enforce_partial_weeks: bool = False
    verification: VerificationSpec = Field(default_factory=VerificationSpec)

    @model_validator(mode="before")
    @classmethod
    def _lift_schedule_block(cls, data: Any) -> Any:
        # Wire shape nests rules/overrides (and legacy countRule etc.) under "schedule".
        if isinstance(data, dict) and isinstance(data.get("schedule"), dict):
            data = dict(data)
            for key, value in data.pop("schedule").items():
                data.setdefault(key, value)
        return data

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, v: str) -> str:
        try:
            zone_for(v)
        except ScheduleInputError as exc:
            raise ValueError(exc.message)
        return v

    @field_validator("weekday_constraints", mode="after")
    @classmethod
    def _sorted_constraints(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        return tuple(sorted(set(v)))

    @field_validator("time_rules", mode="before")
    @classmethod
    def _time_rules_from_list(cls, v: Any) -> Any:
        # Legacy list form: [{"days": [1, 3], "range": ["18:00", "21:00"]}, ...]
        if isinstance(v, list):
            merged: dict[int, list[Any]] = {}
            for entry in v:
                if not isinstance(entry, dict):
                    raise ValueError("time rule entries must be objects with days and range")
                for day in entry.get("days") or []:
                    merged.setdefault(day, []).append(entry.get("range"))
            return merged
        return v

    @field_validator("week_boundary", mode="before")
    @classmethod
    def _named_boundary(cls, v: Any) -> Any:
        if isinstance(v, str) and v.replace("_", "").lower() in _WEEK_BOUNDARY_NAMES:
            return _WEEK_BOUNDARY_NAMES[v.replace("_", "").lower()]
        return v

    @model_validator(mode="after")
    def _constraints_reachable(self) -> GoalSpec:
        if not self.rules or not self.weekday_constraints:
            return self
        reachable = {day for rule in self.rules for day in rule.weekdays}
        for override in self.overrides:
            if isinstance(override, AddOverride):
                reachable.add(weekday_index(override.date))
            elif isinstance(override, MoveOverride):
                reachable.add(weekday_index(override.to_date))
        unreachable = sorted(set(self.weekday_constraints) - reachable)
        if unreachable:
            raise ValueError(f"weekdayConstraints {unreachable} not produced by any rule or add override")
        return self

    @property
    def zone(self) -> ZoneInfo:
        return zone_for(self.timezone)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the nested camelCase JSON shape callers exchange."""
        body = self.model_dump(
            by_alias=True,
            mode="json",
            exclude={"rules", "overrides", "default_duration_min"},
        )
        body["schedule"] = {
            "rules": [r.model_dump(by_alias=True, mode="json") for r in self.rules],
            "overrides": [o.model_dump(by_alias=True, mode="json") for o in self.overrides],
            "defaultDurationMin": self.default_duration_min,
        }
        return body


def weekday_index(day: dt.date) -> int:
    """Weekday with 0 = Sunday, matching the wire format."""
    return (day.weekday() + 1) % 7


# ---------------------------------------------------------------------------
# Engine outputs
# ---------------------------------------------------------------------------


class Occurrence(CadenceModel):
    start: dt.datetime
    end: dt.datetime


class OccurrencePreview(CadenceModel):
    date: dt.date
    time: str
    day_name: str
    week_number: int


class OccurrenceCheck(CadenceModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


class WeekBlock(CadenceModel):
    from_date: dt.date = Field(alias="from")
    to_date: dt.date = Field(alias="to")

    def contains(self, day: dt.date) -> bool:
        return self.from_date <= day <= self.to_date


class CalendarEvent(CadenceModel):
    """User-authored entry; `time` is None for manual/no-time entries."""

    date: dt.date
    time: ClockTime | None = None

    @property
    def is_timed(self) -> bool:
        return self.time is not None


class ScheduleFix(CadenceModel):
    weekly_weekdays: list[int] = Field(default_factory=list)
    weekly_time_settings: dict[int, list[str]] = Field(default_factory=dict)


class ValidationResult(CadenceModel):
    is_compatible: bool
    complete_week_count: int = 0
    issues: list[str] = Field(default_factory=list)
    validation_details: dict[str, Any] = Field(default_factory=dict)
    fixes: ScheduleFix | None = None


# ---------------------------------------------------------------------------
# Normalizer outputs
# ---------------------------------------------------------------------------


class NormalizedValue(CadenceModel):
    slot: str
    value: Any = None
    missing_fields: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing_fields


class Milestone(CadenceModel):
    key: str
    label: str


class SpecAssembly(CadenceModel):
    spec: GoalSpec | None = None
    missing_fields: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Verification policy
# ---------------------------------------------------------------------------


class LocationConstraint(CadenceModel):
    mode: Literal["geofence", "movement"] = "geofence"
    name: str | None = None
    place_id: str | None = None
    radius_m: float | None = None
    min_dwell_min: float | None = None
    min_distance_km: float | None = None


class ScreentimeConstraint(CadenceModel):
    bundle_ids: list[str] = Field(default_factory=list)
    category: str | None = None


class PlanContext(CadenceModel):
    has_time: bool = False
    has_location: bool = False
    text: str | None = Field(default=None, validation_alias=AliasChoices("text", "prompt", "originalText"))
    methods: list[Signal] = Field(default_factory=list)
    mandatory: list[Signal] = Field(default_factory=list)
    location: LocationConstraint | None = None
    screentime: ScreentimeConstraint | None = None
    target_location_name: str | None = None
    place_id: str | None = None


class SignalCheck(CadenceModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    suggestions: list[Signal] = Field(default_factory=list)


class FollowUpQuestion(CadenceModel):
    field: str
    code: str


class VerificationPlan(CadenceModel):
    methods: list[Signal] = Field(default_factory=list)
    mandatory: list[Signal] = Field(default_factory=list)
    sufficient: bool = False
    valid: bool = False
    errors: list[str] = Field(default_factory=list)
    missing_fields: list[str] = Field(default_factory=list)
    follow_up: FollowUpQuestion | None = None


# ---------------------------------------------------------------------------
# Frequency aggregation
# ---------------------------------------------------------------------------


class VerificationRecord(CadenceModel):
    ts: dt.datetime
    passed: bool
    goal_id: str | None = None
    method: str | None = None


class WeekResult(CadenceModel):
    week_key: str
    from_date: dt.date = Field(alias="from")
    to_date: dt.date = Field(alias="to")
    count: int
    target: int
    passed: bool
    verification_days: list[dt.date] = Field(default_factory=list)


class FrequencyReport(CadenceModel):
    total_weeks: int = 0
    passed_weeks: int = 0
    week_results: list[WeekResult] = Field(default_factory=list)
    overall_pass: bool = False
    reason: str = ""


# ---------------------------------------------------------------------------
# Quest generation
# ---------------------------------------------------------------------------


class Quest(CadenceModel):
    """One dated to-do derived from a goal; `occurrence` counts from 1."""

    id: str
    title: str
    description: str
    target_date: dt.date
    goal_type: GoalType
    verification: list[Signal] = Field(default_factory=list)
    weekday: Weekday | None = None
    time: str | None = None
    week_number: int | None = None
    occurrence: int = 1


class QuestCheck(CadenceModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# HTTP request bodies
# ---------------------------------------------------------------------------


class CadenceRequest(CadenceModel):
    # Caller-owned counter echoed back so stale responses can be dropped
    generation: int | None = None


class NormalizeRequest(CadenceRequest):
    slot: str
    value: Any = None
    timezone: str | None = None


class AssembleRequest(CadenceRequest):
    draft: dict[str, Any]
    timezone: str | None = None


class SlotsRequest(CadenceRequest):
    draft: dict[str, Any]


class OccurrencesRequest(CadenceRequest):
    spec: GoalSpec


class PreviewRequest(CadenceRequest):
    spec: dict[str, Any]


class OccurrencesCheckRequest(CadenceRequest):
    occurrences: list[Occurrence]


class ValidateRequest(CadenceRequest):
    events: list[CalendarEvent] = Field(default_factory=list)
    spec: GoalSpec
    start: str
    end: str
    goal_type: str | None = None


class PlanRequest(CadenceRequest):
    goal_type: str
    context: dict[str, Any] = Field(default_factory=dict)


class SignalsRequest(CadenceRequest):
    goal_type: str
    signals: list[str] = Field(default_factory=list)


class FrequencyRequest(CadenceRequest):
    records: list[VerificationRecord] = Field(default_factory=list)
    target_per_week: int
    start: str
    end: str
    boundary_weekday: Weekday | None = 1
    timezone: str | None = None


class QuestsRequest(CadenceRequest):
    spec: GoalSpec
    per_week: int | None = Field(default=None, ge=1, le=7)
    allowed_days: list[Weekday] | None = None
    milestones: list[Milestone] | None = None


class QuestsCheckRequest(CadenceRequest):
    draft: dict[str, Any]
