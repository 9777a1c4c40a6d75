"""
Pytest configuration and fixtures for the meetmatch test suite.
"""

import itertools
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add backend to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from meetmatch.agent.working_hours import LunchWindowPattern, UserAvailability  # noqa: E402
from meetmatch.services.calendar_source import (  # noqa: E402
    CalendarEvent, WeeklyAvailability, categorize_event
)
from meetmatch.utils.config import MatchingConfig  # noqa: E402


@pytest.fixture
def matching_config():
    """Matching defaults independent of the process environment."""
    return MatchingConfig(
        slot_step_minutes=30,
        max_slots=10,
        lookahead_days=14,
        lead_time_minutes=120,
        lookback_days=60,
        travel_buffer_minutes=30,
        default_duration=60,
        match_timeout_seconds=5.0,
        default_timezone="UTC",
    )


@pytest.fixture
def at():
    """UTC instant in October 2025 (the 15th is a Wednesday)."""
    def _at(day, hour=0, minute=0, month=10):
        return datetime(2025, month, day, hour, minute, tzinfo=timezone.utc)
    return _at


@pytest.fixture
def wednesday_morning(at):
    """Wednesday 2025-10-15 08:00 UTC."""
    return at(15, 8)


@pytest.fixture
def make_event():
    """Factory for calendar events with sequential ids."""
    counter = itertools.count(1)

    def _make(start, end, title="Team meeting", **kwargs):
        return CalendarEvent(
            id=f"evt-{next(counter)}",
            title=title,
            start_time=start,
            end_time=end,
            category=categorize_event(title),
            **kwargs
        )
    return _make


@pytest.fixture
def no_lunch():
    return LunchWindowPattern("12:00", "13:00", enabled=False, confidence=0.1, detected_from_gaps=False)


@pytest.fixture
def make_availability(no_lunch):
    """Factory for declared Mon-Fri 09:00-17:00 availability."""
    def _make(user_id="alice", timezone_name="UTC", schedule=None, lunch=None):
        return UserAvailability(
            user_id=user_id,
            timezone=timezone_name,
            schedule=schedule or WeeklyAvailability.business_hours(),
            lunch_window=lunch or no_lunch,
            origin="declared",
        )
    return _make
