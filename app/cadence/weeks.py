"""Week slicer: partition a date range into complete 7-day blocks.

Only full weeks count toward a weekly requirement, so partial edge days are
never returned as a block. Blocks start on the boundary weekday (default:
the range's own first weekday) and run 7 consecutive calendar days; a block
is emitted only when it fits strictly before `end`.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from app.cadence.errors import ScheduleInputError
from app.cadence.models import WeekBlock, weekday_index

logger = logging.getLogger(__name__)

WEEK = timedelta(days=7)


def parse_calendar_date(value: Any, field: str) -> date:
    """Accept a date or an ISO "YYYY-MM-DD" string; anything else is a contract error."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise ScheduleInputError(field, f"expected ISO date YYYY-MM-DD, got {value!r}")


def _check_range(start: Any, end: Any) -> tuple[date, date]:
    s = parse_calendar_date(start, "start")
    e = parse_calendar_date(end, "end")
    if e < s:
        raise ScheduleInputError("end", f"end {e} precedes start {s}")
    return s, e


def slice_complete_weeks(start: Any, end: Any, boundary_weekday: int | None = None) -> list[WeekBlock]:
    s, e = _check_range(start, end)
    if boundary_weekday is not None and not 0 <= boundary_weekday <= 6:
        raise ScheduleInputError("boundaryWeekday", f"expected 0..6, got {boundary_weekday}")

    block_start = s
    if boundary_weekday is not None:
        block_start += timedelta(days=(boundary_weekday - weekday_index(s)) % 7)

    blocks: list[WeekBlock] = []
    while block_start + WEEK <= e:
        blocks.append(WeekBlock(from_date=block_start, to_date=block_start + timedelta(days=6)))
        block_start += WEEK

    logger.debug("Sliced %s..%s into %d complete week(s)", s, e, len(blocks))
    return blocks


def count_complete_weeks(start: Any, end: Any, boundary_weekday: int | None = None) -> int:
    return len(slice_complete_weeks(start, end, boundary_weekday))


def has_complete_weeks(start: Any, end: Any, boundary_weekday: int | None = None) -> bool:
    return count_complete_weeks(start, end, boundary_weekday) > 0


def get_first_complete_week(start: Any, end: Any, boundary_weekday: int | None = None) -> WeekBlock | None:
    blocks = slice_complete_weeks(start, end, boundary_weekday)
    return blocks[0] if blocks else None


def get_last_complete_week(start: Any, end: Any, boundary_weekday: int | None = None) -> WeekBlock | None:
    blocks = slice_complete_weeks(start, end, boundary_weekday)
    return blocks[-1] if blocks else None


def week_block_for(day: date, blocks: list[WeekBlock]) -> int | None:
    """Index of the block containing `day`, or None for a partial-edge day."""
    for index, block in enumerate(blocks):
        if block.contains(day):
            return index
    return None
