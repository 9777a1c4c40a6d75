"""Tests for request orchestration over a calendar source."""

import asyncio
import time
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from meetmatch.agent.constraints import ConstraintValidationError, Constraints, TimeOfDay, TravelBuffer
from meetmatch.agent.local_fallback import BookableSlot
from meetmatch.agent.matching_service import (
    MatchingService,
    MatchingTimeoutError,
    format_slot_label,
    generate_response_message,
)
from meetmatch.agent.mutual_availability import MultiUserAvailabilityRequest
from meetmatch.services.calendar_source import (
    InMemoryCalendarSource,
    ParticipantCalendar,
    TimeWindow,
    WeeklyAvailability,
)


class SlowCalendarSource(InMemoryCalendarSource):
    async def get_participant(self, user_id, start, end):
        await asyncio.sleep(1)
        return await super().get_participant(user_id, start, end)


@pytest.fixture
def source():
    return InMemoryCalendarSource({
        "alice": ParticipantCalendar("alice", availability=WeeklyAvailability.business_hours()),
        "bob": ParticipantCalendar("bob"),
    })


@pytest.fixture
def service(source, matching_config):
    return MatchingService(source, matching_config)


@pytest.fixture
def sync_history(make_event, at):
    """One 13:00 sync on each weekday of the week of 2025-10-06"""
    def _history():
        return [make_event(at(day, 13), at(day, 14), "Team sync") for day in (6, 7, 8, 9, 10)]
    return _history


# ---------------------------------------------------------------------------
# Lifecycle and loading
# ---------------------------------------------------------------------------

class TestLifecycle:
    """Source initialization and participant loading."""

    def test_initialize_without_source_hooks(self, service):
        assert asyncio.run(service.initialize()) is True
        asyncio.run(service.cleanup())

    def test_initialize_failure_is_reported(self, matching_config):
        source = AsyncMock()
        source.initialize.side_effect = RuntimeError("connection refused")

        assert asyncio.run(MatchingService(source, matching_config).initialize()) is False

    def test_cleanup_failure_is_logged_not_raised(self, matching_config):
        source = AsyncMock()
        source.cleanup.side_effect = RuntimeError("already closed")

        assert asyncio.run(MatchingService(source, matching_config).cleanup()) is None
        source.cleanup.assert_awaited_once()

    def test_failed_fetch_degrades_participant(self, service, wednesday_morning):
        loaded = asyncio.run(service.load_participants(["alice", "ghost"], wednesday_morning))

        assert [p.degraded for p in loaded] == [False, True]
        ghost = loaded[1]
        assert ghost.calendar.events == []
        assert ghost.profile.availability.origin == "default"
        assert ghost.analysis.overall_confidence == 0

    def test_declared_availability_is_applied(self, service, wednesday_morning):
        alice, bob = asyncio.run(service.load_participants(["alice", "bob"], wednesday_morning))

        assert alice.profile.availability.origin == "declared"
        assert bob.profile.availability.origin == "default"

    def test_scoring_history_excludes_upcoming_events(self, source, service, make_event, wednesday_morning, at):
        past = make_event(at(14, 10), at(14, 11))
        upcoming = make_event(at(16, 10), at(16, 11))
        source.participants["bob"].events.extend([past, upcoming])

        bob = asyncio.run(service.load_participants(["bob"], wednesday_morning))[0]

        assert bob.profile.events == [past, upcoming]
        assert bob.profile.history == [past]

    def test_fetch_window_covers_future_horizon(self, service, wednesday_morning, at):
        assert service._fetch_until(wednesday_morning) == at(30, 8)
        assert service._fetch_until(wednesday_morning, at(20), 3) == at(24)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

class TestFindMutualAvailability:
    """N-party search through the service."""

    def test_unknown_participant_does_not_abort(self, service, wednesday_morning, at):
        request = MultiUserAvailabilityRequest(duration=60, lookahead_days=1)

        result = asyncio.run(service.find_mutual_availability(["alice", "bob", "ghost"], request, wednesday_morning))

        starts = [slot.start for slot in result.ranked_slots]
        assert len(starts) == 10
        assert starts[0] == at(15, 10)
        # Default lunch window 12:00-13:00 applies to everyone without history
        assert at(15, 12) not in starts
        assert all(slot.available_users == ["alice", "bob", "ghost"] for slot in result.ranked_slots)

    def test_busy_participant(self, source, service, make_event, wednesday_morning, at):
        source.participants["bob"].events.append(make_event(at(15, 10), at(15, 11)))
        request = MultiUserAvailabilityRequest(duration=60, lookahead_days=1)

        result = asyncio.run(service.find_mutual_availability(["alice", "bob"], request, wednesday_morning))

        assert result.ranked_slots[0].start == at(15, 11)
        assert result.conflict_analysis.user_conflicts == {"alice": 0, "bob": 2}

    def test_timeout(self, matching_config, wednesday_morning):
        slow = SlowCalendarSource({"alice": ParticipantCalendar("alice")})
        service = MatchingService(slow, replace(matching_config, match_timeout_seconds=0.05))

        with pytest.raises(MatchingTimeoutError):
            asyncio.run(service.find_mutual_availability(
                ["alice"], MultiUserAvailabilityRequest(lookahead_days=1), wednesday_morning
            ))

    def test_timeout_interrupts_slow_matching(self, source, matching_config, wednesday_morning):
        service = MatchingService(source, replace(matching_config, match_timeout_seconds=0.05))
        service.engine.find_mutual_availability = MagicMock(side_effect=lambda *args: time.sleep(0.5))

        with pytest.raises(MatchingTimeoutError):
            asyncio.run(service.find_mutual_availability(
                ["alice"], MultiUserAvailabilityRequest(lookahead_days=1), wednesday_morning
            ))

    def test_lookahead_is_capped(self, service, wednesday_morning):
        request = MultiUserAvailabilityRequest(duration=30, lookahead_days=20000)

        with pytest.raises(ConstraintValidationError):
            asyncio.run(service.find_mutual_availability(["alice"], request, wednesday_morning))


class TestFindCommonTimes:
    """Two-party search, pattern engine or fallback."""

    def test_fallback_without_history(self, service, wednesday_morning, at):
        result = asyncio.run(service.find_common_times("alice", "bob", Constraints(duration=60), wednesday_morning))

        assert result.method == "fallback"
        assert result.slots[0] == BookableSlot(at(15, 10), at(15, 11))
        assert len(result.slots) == 10

    def test_pattern_engine_with_history(self, source, service, sync_history, wednesday_morning, at):
        source.add(ParticipantCalendar("carol", events=sync_history()))
        source.add(ParticipantCalendar("dave", events=sync_history()))
        constraints = Constraints(duration=60, travel_buffer=TravelBuffer(30, 30))

        result = asyncio.run(service.find_common_times("carol", "dave", constraints, wednesday_morning))

        assert result.method == "pattern"
        assert len(result.slots) == 10
        # Inferred hours are 12:30-14:30; the meeting sits inside its travel buffer
        assert result.slots[0] == BookableSlot(at(15, 13), at(15, 14))
        assert result.to_dict()["slots"][0] == {"start": "2025-10-15T13:00:00Z", "end": "2025-10-15T14:00:00Z"}

    def test_one_sided_history_uses_fallback(self, source, service, sync_history, wednesday_morning):
        source.add(ParticipantCalendar("carol", events=sync_history()))

        result = asyncio.run(service.find_common_times("carol", "bob", Constraints(), wednesday_morning))

        assert result.method == "fallback"

    def test_declared_windows_constrain_fallback(self, source, service, wednesday_morning, at):
        source.add(ParticipantCalendar("erin", availability=WeeklyAvailability({
            "thursday": [TimeWindow("15:00", "16:00")]
        })))

        result = asyncio.run(service.find_common_times("alice", "erin", Constraints(duration=60), wednesday_morning))

        assert result.slots == [BookableSlot(at(16, 15), at(16, 16)), BookableSlot(at(23, 15), at(23, 16))]

    def test_pattern_engine_honours_date_range(self, source, service, sync_history, wednesday_morning, at):
        source.add(ParticipantCalendar("carol", events=sync_history()))
        source.add(ParticipantCalendar("dave", events=sync_history()))
        constraints = Constraints(duration=60, start_date=at(16, 13), end_date=at(17, 14))

        result = asyncio.run(service.find_common_times("carol", "dave", constraints, wednesday_morning))

        assert result.method == "pattern"
        # Inferred hours are 12:30-14:30 on both days
        assert sorted(slot.start for slot in result.slots) == [at(16, 13), at(16, 13, 30), at(17, 12, 30), at(17, 13)]
        assert all(slot.end <= at(17, 14) for slot in result.slots)


class TestCustomTimes:
    """Free-text requests."""

    def test_parsed_request_returns_labelled_slots(self, service, wednesday_morning):
        response = asyncio.run(service.custom_times("alice", "bob", "30 min tomorrow afternoon", wednesday_morning))

        assert response["message"] == "I found these available times in the afternoon for 30 minutes:"
        assert response["slots"] == [{
            "start": "2025-10-16T12:00:00Z",
            "end": "2025-10-16T12:30:00Z",
            "label": "Thu, Oct 16 12:00 PM - 12:30 PM",
        }]
        assert response["constraints"]["duration"] == 30
        assert response["constraints"]["preferredTime"] == "afternoon"

    def test_at_most_three_slots(self, service, wednesday_morning):
        response = asyncio.run(service.custom_times("alice", "bob", "quick sync", wednesday_morning))
        assert len(response["slots"]) == 3

    def test_no_slots_message(self, service, wednesday_morning):
        response = asyncio.run(service.custom_times("alice", "bob", "2 hours between 9 and 10", wednesday_morning))
        assert response["slots"] == []
        assert response["message"].startswith("I couldn't find any available slots")

    def test_relative_dates_use_participant_timezone(self, source, service, at):
        source.add(ParticipantCalendar(
            "lena", timezone="America/Los_Angeles", availability=WeeklyAvailability.business_hours()
        ))
        # Monday 20:00 in Los Angeles is already Tuesday in UTC
        now = at(14, 3)

        response = asyncio.run(service.custom_times("lena", "bob", "30 min tomorrow", now))

        assert response["constraints"]["startDate"] == "2025-10-14T07:00:00Z"
        assert response["slots"][0]["start"] == "2025-10-14T16:00:00Z"
        assert response["slots"][0]["label"] == "Tue, Oct 14 9:00 AM - 9:30 AM"


class TestUserInsights:
    """Per-user analysis."""

    def test_insights_payload(self, source, service, sync_history, wednesday_morning):
        source.add(ParticipantCalendar("carol", events=sync_history()))

        response = asyncio.run(service.user_insights("carol", wednesday_morning))

        assert set(response) == {
            "userId", "timezone", "workingHours", "summary", "suggestedTimes", "insights", "degraded"
        }
        assert response["degraded"] is False
        assert response["workingHours"]["workingHours"]["monday"]["start"] == "12:30"
        assert response["summary"].startswith("Analyzed 5 meetings across 5 days.")
        assert response["suggestedTimes"][0]["time"] == "13:00"
        assert response["insights"]["preferredMeetingTimes"]

    def test_unknown_user_is_degraded(self, service, wednesday_morning):
        response = asyncio.run(service.user_insights("ghost", wednesday_morning))

        assert response["degraded"] is True
        assert response["summary"].startswith("Analyzed 0 meetings across 0 days.")


class TestFormatting:
    """Labels and messages."""

    def test_format_slot_label(self, at):
        assert format_slot_label(at(16, 13), at(16, 14), "UTC") == "Thu, Oct 16 1:00 PM - 2:00 PM"
        assert format_slot_label(at(20, 14), at(20, 15), "America/New_York") == "Mon, Oct 20 10:00 AM - 11:00 AM"

    def test_response_message(self):
        constraints = Constraints(
            duration=45,
            time_window=TimeWindow("10:00", "12:00"),
            avoid_days=["friday"],
            location="SOMA",
        )

        assert generate_response_message([object()], constraints) == (
            "I found these available times between 10:00 and 12:00 (avoiding friday) for 45 minutes near SOMA:"
        )
        assert generate_response_message([object()], Constraints(preferred_time=TimeOfDay.MORNING)) == (
            "I found these available times in the morning:"
        )
