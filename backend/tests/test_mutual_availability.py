"""Tests for the multi-participant availability resolver."""

from datetime import timedelta

import pytest

from meetmatch.agent.constraints import ConstraintValidationError, Constraints, TravelBuffer
from meetmatch.agent.mutual_availability import (
    AvailabilityPolicy,
    MultiUserAvailabilityEngine,
    MultiUserAvailabilityRequest,
    ParticipantProfile,
    slot_reason,
)
from meetmatch.agent.time_grid import TimeGridGenerator
from meetmatch.services.calendar_source import TimeWindow, WeeklyAvailability


@pytest.fixture
def engine(matching_config):
    return MultiUserAvailabilityEngine(matching_config)


@pytest.fixture
def profile(make_availability):
    def _profile(user_id, events=(), history=None, **kwargs):
        return ParticipantProfile(
            user_id=user_id,
            events=list(events),
            availability=make_availability(user_id=user_id, **kwargs),
            history=history,
        )
    return _profile


@pytest.fixture
def wednesday_grid(matching_config, at):
    """Every 60-minute Wednesday slot between 09:00 and 17:00"""
    return list(TimeGridGenerator(matching_config).generate(60, at(15), 1, now=at(1), tz="UTC", max_slots=None))


@pytest.fixture
def busy_alice(profile, make_event, at):
    return profile("alice", [make_event(at(15, 14), at(15, 15))])


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

class TestAvailabilityPolicy:
    """Quorum rules."""

    @pytest.mark.parametrize("policy,free,total,admitted", [
        (AvailabilityPolicy.REQUIRE_ALL, 3, 3, True),
        (AvailabilityPolicy.REQUIRE_ALL, 2, 3, False),
        (AvailabilityPolicy.MAJORITY, 2, 3, True),
        (AvailabilityPolicy.MAJORITY, 1, 2, False),
        (AvailabilityPolicy.ANY, 1, 5, True),
        (AvailabilityPolicy.ANY, 0, 5, False),
    ])
    def test_admits(self, policy, free, total, admitted):
        assert policy.admits(free, total) is admitted

    @pytest.mark.parametrize("available,conflicting,confidence,reason", [
        (2, 0, 0.9, "Excellent time - all users available with high confidence"),
        (2, 0, 0.6, "Good time - all users available"),
        (2, 1, 0.9, "Most users available (2/3)"),
        (1, 1, 0.9, "Some users available (1/2)"),
    ])
    def test_slot_reason(self, available, conflicting, confidence, reason):
        assert slot_reason(available, conflicting, confidence) == reason


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class TestResolve:
    """Verdict intersection and ranking."""

    def test_conflicting_slot_is_excluded_when_all_required(self, engine, wednesday_grid, busy_alice, profile, at):
        result = engine.resolve(wednesday_grid, [busy_alice, profile("bob")])

        starts = [slot.start for slot in result.ranked_slots]
        assert at(15, 14) not in starts
        assert at(15, 10) in starts
        assert all(not slot.conflicting_users for slot in result.ranked_slots)

    def test_conflicting_slot_survives_relaxed_policy(self, engine, wednesday_grid, busy_alice, profile, at):
        result = engine.resolve(wednesday_grid, [busy_alice, profile("bob")], AvailabilityPolicy.ANY)

        fourteen = next(slot for slot in result.ranked_slots if slot.start == at(15, 14))
        assert fourteen.available_users == ["bob"]
        assert fourteen.conflicting_users == ["alice"]
        assert fourteen.per_user["alice"].reason == "Existing meeting conflict"
        assert fourteen.reason == "Some users available (1/2)"
        assert fourteen.confidence == pytest.approx(0.7 * 0.5)
        assert all(slot.available_users for slot in result.ranked_slots)

    def test_majority_of_three(self, engine, wednesday_grid, busy_alice, profile, at):
        result = engine.resolve(wednesday_grid, [busy_alice, profile("bob"), profile("carol")], AvailabilityPolicy.MAJORITY)

        fourteen = next(slot for slot in result.ranked_slots if slot.start == at(15, 14))
        assert fourteen.reason == "Most users available (2/3)"

    def test_majority_of_two_needs_both(self, engine, wednesday_grid, busy_alice, profile, at):
        result = engine.resolve(wednesday_grid, [busy_alice, profile("bob")], AvailabilityPolicy.MAJORITY)
        assert at(15, 14) not in [slot.start for slot in result.ranked_slots]

    def test_ranked_by_confidence_then_start(self, engine, wednesday_grid, profile, at):
        result = engine.resolve(wednesday_grid, [profile("alice"), profile("bob")])
        ranked = result.ranked_slots

        assert ranked[0].start == at(15, 10)
        assert ranked[0].confidence == pytest.approx(0.8)
        assert ranked[0].reason == "Good time - all users available"
        for previous, current in zip(ranked, ranked[1:]):
            assert (-previous.confidence, previous.start) <= (-current.confidence, current.start)

    def test_resolution_is_repeatable(self, engine, wednesday_grid, busy_alice, profile):
        participants = [busy_alice, profile("bob")]

        first = engine.resolve(wednesday_grid, participants, AvailabilityPolicy.ANY)
        second = engine.resolve(wednesday_grid, participants, AvailabilityPolicy.ANY)

        assert [s.to_dict() for s in first.ranked_slots] == [s.to_dict() for s in second.ranked_slots]

    def test_no_participants(self, engine, wednesday_grid):
        result = engine.resolve(wednesday_grid, [])

        assert result.ranked_slots == []
        assert result.message == "No participants to match"

    def test_no_candidates(self, engine, profile):
        result = engine.resolve([], [profile("alice")])

        assert result.ranked_slots == []
        assert result.message == "No candidate slots in the search horizon"
        assert result.recommendations.suggested_duration == 60

    def test_nothing_mutual(self, engine, wednesday_grid, profile, make_event, at):
        blocked = profile("alice", [make_event(at(15, 0), at(16, 0))])

        result = engine.resolve(wednesday_grid, [blocked, profile("bob")])

        assert result.ranked_slots == []
        assert result.message == "No mutually available times found"


class TestConflictAnalysis:
    """Conflict tallies across all candidates."""

    def test_counts_conflicts_per_user_and_time(self, engine, wednesday_grid, busy_alice, profile):
        analysis = engine.resolve(wednesday_grid, [busy_alice, profile("bob")]).conflict_analysis

        assert analysis.total_conflicts == 3
        assert analysis.user_conflicts == {"alice": 3, "bob": 0}
        assert analysis.most_conflicted_times == ["13:30", "14:00", "14:30"]

    def test_to_dict(self, engine, wednesday_grid, busy_alice, profile):
        data = engine.resolve(wednesday_grid, [busy_alice, profile("bob")]).to_dict()

        assert set(data) == {"availableSlots", "conflictAnalysis", "recommendations"}
        assert data["conflictAnalysis"]["totalConflicts"] == 3
        assert data["availableSlots"][0]["start"] == "2025-10-15T10:00:00Z"
        assert data["availableSlots"][0]["perUser"]["bob"] == {"available": True, "confidence": 0.8}


class TestRecommendations:
    """Best times, alternatives and suggested duration."""

    def test_best_and_alternative_times(self, engine, wednesday_grid, profile):
        recommendations = engine.resolve(wednesday_grid, [profile("alice"), profile("bob")]).recommendations

        assert len(recommendations.best_mutual_times) == 4
        assert all(slot.confidence > 0.7 for slot in recommendations.best_mutual_times)
        assert len(recommendations.alternative_options) == 10
        assert all(slot.confidence > 0.5 for slot in recommendations.alternative_options)

    def test_suggested_duration_averages_meeting_lengths(self, engine, wednesday_grid, profile, make_event, at):
        history = [make_event(at(8, 10), at(8, 10, 30)), make_event(at(9, 10), at(9, 10, 30))]
        participants = [profile("alice", history=history), profile("bob")]

        recommendations = engine.resolve(wednesday_grid, participants, requested_duration=60).recommendations

        assert recommendations.suggested_duration == 45

    def test_suggested_duration_ignores_non_meetings(self, engine, wednesday_grid, profile, make_event, at):
        history = [make_event(at(8, 10), at(8, 10, 30), "Dentist")]

        recommendations = engine.resolve(wednesday_grid, [profile("alice", history=history)], requested_duration=60).recommendations

        assert recommendations.suggested_duration == 60

    def test_suggested_duration_is_clamped(self, engine, profile):
        assert engine.resolve([], [profile("alice")], requested_duration=300).recommendations.suggested_duration == 120
        assert engine.resolve([], [profile("alice")], requested_duration=5).recommendations.suggested_duration == 15


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class TestFindMutualAvailability:
    """Grid construction from a request."""

    def test_first_slot_after_lead_time(self, engine, profile, wednesday_morning, at):
        request = MultiUserAvailabilityRequest(duration=60, lookahead_days=3)

        result = engine.find_mutual_availability([profile("alice"), profile("bob")], request, now=wednesday_morning)

        assert result.ranked_slots[0].start == at(15, 10)
        assert all(slot.start >= at(15, 10) for slot in result.ranked_slots)

    def test_grid_is_not_capped(self, engine, profile, wednesday_morning):
        request = MultiUserAvailabilityRequest(duration=60, lookahead_days=3)

        result = engine.find_mutual_availability([profile("alice")], request, now=wednesday_morning)

        assert len(result.ranked_slots) == 43

    def test_explicit_cap(self, engine, profile, wednesday_morning):
        request = MultiUserAvailabilityRequest(duration=60, lookahead_days=3, max_slots=5)

        result = engine.find_mutual_availability([profile("alice")], request, now=wednesday_morning)

        assert len(result.ranked_slots) == 5

    def test_excluded_days(self, engine, profile, wednesday_morning, at):
        request = MultiUserAvailabilityRequest(duration=60, lookahead_days=3, exclude_days=["wednesday", "thursday"])

        result = engine.find_mutual_availability([profile("alice")], request, now=wednesday_morning)

        assert {slot.start.date() for slot in result.ranked_slots} == {at(17).date()}

    def test_declared_weekend_opens_weekends(self, engine, profile, at):
        weekend = WeeklyAvailability({"saturday": [TimeWindow("10:00", "12:00")]})
        request = MultiUserAvailabilityRequest(duration=60, lookahead_days=1, horizon_start=at(18))

        result = engine.find_mutual_availability([profile("alice", schedule=weekend)], request, now=at(1))

        assert [slot.start for slot in result.ranked_slots][0] == at(18, 10)

    def test_invalid_request(self, engine, profile):
        with pytest.raises(ConstraintValidationError):
            engine.find_mutual_availability([profile("alice")], MultiUserAvailabilityRequest(duration=0))

        with pytest.raises(ConstraintValidationError, match="unknown weekdays"):
            MultiUserAvailabilityRequest(exclude_days=["someday"]).validate()

    def test_from_constraints(self, at):
        constraints = Constraints(
            duration=60,
            avoid_days=["monday"],
            travel_buffer=TravelBuffer(30, 30),
            start_date=at(20),
            end_date=at(22, 12),
        )

        request = MultiUserAvailabilityRequest.from_constraints(constraints, AvailabilityPolicy.ANY)

        assert request.duration == 120
        assert request.meeting_duration == 60
        assert request.lookahead_days is None
        assert request.horizon_start == at(20)
        assert request.horizon_end == at(22, 12)
        assert request.exclude_days == ["monday"]
        assert request.policy is AvailabilityPolicy.ANY

    def test_date_range_bounds_both_ends(self, engine, profile, wednesday_morning, at):
        constraints = Constraints(duration=60, start_date=at(16, 14), end_date=at(17, 12))
        request = MultiUserAvailabilityRequest.from_constraints(constraints)

        result = engine.find_mutual_availability([profile("alice")], request, now=wednesday_morning)

        starts = sorted(slot.start for slot in result.ranked_slots)
        assert starts[0] == at(16, 14)
        assert starts[-1] == at(17, 11)
        assert all(at(16, 14) <= slot.start and slot.end <= at(17, 12) for slot in result.ranked_slots)
        # Friday morning is searched even though the range is under two days
        assert at(17, 9) in starts

    def test_suggested_duration_excludes_travel_buffer(self, engine, profile, wednesday_morning, at):
        constraints = Constraints(duration=60, travel_buffer=TravelBuffer(30, 30), start_date=at(16), end_date=at(17))
        request = MultiUserAvailabilityRequest.from_constraints(constraints)

        result = engine.find_mutual_availability([profile("alice")], request, now=wednesday_morning)

        assert result.recommendations.suggested_duration == 60

    def test_lookahead_is_capped(self, engine, profile, wednesday_morning):
        request = MultiUserAvailabilityRequest(duration=30, lookahead_days=20000)

        with pytest.raises(ConstraintValidationError, match="lookahead_days must not exceed 90"):
            engine.find_mutual_availability([profile("alice")], request, now=wednesday_morning)

    def test_date_range_is_capped(self, engine, profile, wednesday_morning, at):
        request = MultiUserAvailabilityRequest(horizon_start=at(16), horizon_end=at(16) + timedelta(days=120))

        with pytest.raises(ConstraintValidationError, match="date range must not exceed 90 days"):
            engine.find_mutual_availability([profile("alice")], request, now=wednesday_morning)
