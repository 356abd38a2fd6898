"""Cadence HTTP router: normalizer, occurrences, quests, weeks, validation, verification."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import Any, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from app.auth import verify_api_key
from app.cadence import frequency, normalizer, occurrences, quests, slots, validator, verification, weeks
from app.cadence.errors import ScheduleInputError
from app.cadence.models import (
    AssembleRequest,
    FrequencyRequest,
    NormalizeRequest,
    OccurrencesCheckRequest,
    OccurrencesRequest,
    PlanRequest,
    PreviewRequest,
    QuestsCheckRequest,
    QuestsRequest,
    SignalsRequest,
    SlotsRequest,
    ValidateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cadence", tags=["cadence"])

T = TypeVar("T")


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid date for '{name}': {value}")


def _run(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call an engine function, turning contract errors into 422s."""
    try:
        return fn(*args, **kwargs)
    except ScheduleInputError as exc:
        logger.info("Rejected %s: %s", fn.__name__, exc)
        raise HTTPException(status_code=422, detail=str(exc))
    except ValidationError as exc:
        logger.info("Rejected %s: %d validation error(s)", fn.__name__, exc.error_count())
        raise HTTPException(status_code=422, detail=str(exc))


def _dump(model: Any) -> Any:
    return model.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# /cadence/normalize, /cadence/assemble, /cadence/slots
# ---------------------------------------------------------------------------


@router.post("/normalize")
async def normalize_slot(
    body: NormalizeRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    result = normalizer.normalize(body.slot, body.value, body.timezone)
    return {"generation": body.generation, **_dump(result)}


@router.post("/assemble")
async def assemble_spec(
    body: AssembleRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    result = normalizer.assemble_goal_spec(body.draft, body.timezone)
    return {
        "generation": body.generation,
        "spec": result.spec.to_wire() if result.spec else None,
        "missingFields": result.missing_fields,
        "warnings": result.warnings,
    }


@router.post("/slots")
async def slot_status(
    body: SlotsRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    return {
        "generation": body.generation,
        "filled": slots.filled_slots(body.draft),
        "missing": slots.missing_slots(body.draft),
        "complete": slots.is_all_required_filled(body.draft),
    }


# ---------------------------------------------------------------------------
# /cadence/occurrences
# ---------------------------------------------------------------------------


@router.post("/occurrences")
async def expand_occurrences(
    body: OccurrencesRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    built = _run(occurrences.build_occurrences, body.spec)
    check = occurrences.validate_occurrences(built)
    return {
        "generation": body.generation,
        "occurrences": [_dump(o) for o in built],
        "validation": _dump(check),
    }


@router.post("/occurrences/preview")
async def preview_occurrences(
    body: PreviewRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    previews = occurrences.preview_occurrences(body.spec)
    return {"generation": body.generation, "occurrences": [_dump(p) for p in previews]}


@router.post("/occurrences/validate")
async def check_occurrences(
    body: OccurrencesCheckRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    return {"generation": body.generation, **_dump(occurrences.validate_occurrences(body.occurrences))}


# ---------------------------------------------------------------------------
# /cadence/quests
# ---------------------------------------------------------------------------


@router.post("/quests")
async def build_quests(
    body: QuestsRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    generated = _run(
        quests.generate_quests,
        body.spec,
        per_week=body.per_week,
        allowed_days=body.allowed_days,
        milestones=body.milestones,
    )
    return {"generation": body.generation, "count": len(generated), "quests": [_dump(q) for q in generated]}


@router.post("/quests/validate")
async def check_quest_inputs(
    body: QuestsCheckRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    return {"generation": body.generation, **_dump(quests.validate_quest_generation(body.draft))}


# ---------------------------------------------------------------------------
# /cadence/weeks
# ---------------------------------------------------------------------------


@router.get("/weeks")
async def complete_weeks(
    _: str = Depends(verify_api_key),
    from_date: str = Query(..., alias="from", description="Start date (YYYY-MM-DD)"),
    to_date: str = Query(..., alias="to", description="End date (YYYY-MM-DD)"),
    boundary: int | None = Query(default=None, ge=0, le=6, description="Week start weekday, 0 = Sunday"),
    generation: int | None = Query(default=None),
) -> dict:
    start = _parse_date(from_date, "from")
    end = _parse_date(to_date, "to")
    blocks = _run(weeks.slice_complete_weeks, start, end, boundary)
    return {"generation": generation, "count": len(blocks), "weeks": [_dump(b) for b in blocks]}


# ---------------------------------------------------------------------------
# /cadence/validate
# ---------------------------------------------------------------------------


@router.post("/validate")
async def validate_schedule(
    body: ValidateRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    result = _run(
        validator.validate_goal_by_calendar_events,
        body.events,
        body.spec,
        body.start,
        body.end,
        body.goal_type,
    )
    return {"generation": body.generation, **_dump(result)}


# ---------------------------------------------------------------------------
# /cadence/verification
# ---------------------------------------------------------------------------


@router.post("/verification/plan")
async def verification_plan(
    body: PlanRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    plan = _run(verification.compute_verification_plan, body.goal_type, body.context)
    return {"generation": body.generation, **_dump(plan)}


@router.post("/verification/validate")
async def verification_signals(
    body: SignalsRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    check = _run(verification.validate_verification_signals, body.goal_type, body.signals)
    return {"generation": body.generation, **_dump(check)}


# ---------------------------------------------------------------------------
# /cadence/frequency
# ---------------------------------------------------------------------------


@router.post("/frequency")
async def frequency_report(
    body: FrequencyRequest,
    _: str = Depends(verify_api_key),
) -> dict:
    report = _run(
        frequency.aggregate_frequency,
        body.records,
        body.target_per_week,
        body.start,
        body.end,
        body.boundary_weekday,
        body.timezone,
    )
    return {"generation": body.generation, **_dump(report)}
