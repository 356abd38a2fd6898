"""Contract-violation errors for the cadence engine.

Incompatible schedules and weak verification plans are returned as data.
Only malformed input (unparseable dates, inverted periods) raises.
"""

from __future__ import annotations


class ScheduleInputError(ValueError):
    """Raised when a caller passes structurally invalid input."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")
