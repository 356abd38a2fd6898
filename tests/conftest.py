"""Shared fixtures for the test suite."""

from __future__ import annotations

from datetime import date
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from app.cadence.models import CalendarEvent, GoalSpec
from app.main import app


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_spec(**overrides: Any) -> GoalSpec:
    """Mon/Wed/Fri 19:00 in Asia/Seoul over 2025-10-01..2025-10-14, unless overridden."""
    data: dict[str, Any] = {
        "type": "schedule",
        "timezone": "Asia/Seoul",
        "period": {"start": "2025-10-01", "end": "2025-10-14"},
        "rules": [{"byWeekday": [1, 3, 5], "time": "19:00"}],
    }
    data.update(overrides)
    return GoalSpec.model_validate(data)


def make_event(day: str | date, time: str | None = None) -> CalendarEvent:
    """Helper to build a calendar entry; omit `time` for an untimed entry."""
    return CalendarEvent(date=day, time=time)


def spec_wire(**overrides: Any) -> dict[str, Any]:
    """Same default spec as make_spec, in the nested camelCase wire shape."""
    data: dict[str, Any] = {
        "type": "schedule",
        "timezone": "Asia/Seoul",
        "period": {"start": "2025-10-01", "end": "2025-10-14"},
        "schedule": {"rules": [{"byWeekday": [1, 3, 5], "time": "19:00"}], "overrides": []},
    }
    data.update(overrides)
    return data
