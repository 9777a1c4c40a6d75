"""
Mutual Availability - multi-participant slot resolution

Scores every candidate slot for every participant, keeps the slots a policy
quorum can attend, ranks them and explains the conflicts behind the rest.
Two-party matching is the N=2 case of the same resolver.
"""

import logging
import math
from typing import Dict, List, Optional, Any, Iterable, Sequence
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass, field
from collections import Counter
from enum import Enum

import numpy as np

from .constraints import Constraints, ConstraintValidationError, TimeOfDay
from .slot_scorer import SlotScorer, SlotVerdict
from .time_grid import CandidateSlot, TimeGridGenerator
from .working_hours import UserAvailability
from ..services.calendar_source import CalendarEvent, EventCategory, TimeWindow
from ..utils.config import config, MatchingConfig
from ..utils.helpers import (
    WEEKDAY_NAMES, get_timezone, to_local, to_iso_utc, measure_execution_time
)

logger = logging.getLogger(__name__)

MIN_SUGGESTED_DURATION = 15
MAX_SUGGESTED_DURATION = 120

class AvailabilityPolicy(Enum):
    """How many participants must be free for a slot to survive"""
    REQUIRE_ALL = "require_all"
    MAJORITY = "majority"
    ANY = "any"

    def admits(self, free: int, total: int) -> bool:
        if free == 0:
            return False
        if self is AvailabilityPolicy.REQUIRE_ALL:
            return free == total
        if self is AvailabilityPolicy.MAJORITY:
            return free * 2 > total
        return True

@dataclass
class ParticipantProfile:
    """One participant's inputs to a matching run"""
    user_id: str
    events: List[CalendarEvent]
    availability: UserAvailability
    history: Optional[List[CalendarEvent]] = None

    @property
    def scoring_history(self) -> List[CalendarEvent]:
        return self.events if self.history is None else self.history

@dataclass
class ScoredSlot:
    """A surviving candidate slot with its ranking data"""
    start: datetime
    end: datetime
    confidence: float
    available_users: List[str]
    conflicting_users: List[str]
    per_user: Dict[str, SlotVerdict]
    reason: str
    slot_type: str = "meeting"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': to_iso_utc(self.start),
            'end': to_iso_utc(self.end),
            'confidence': round(self.confidence, 4),
            'availableUsers': list(self.available_users),
            'conflictingUsers': list(self.conflicting_users),
            'perUser': {user_id: verdict.to_dict() for user_id, verdict in self.per_user.items()},
            'reason': self.reason,
            'type': self.slot_type
        }

@dataclass
class ConflictAnalysis:
    """Why no slot is perfect: event conflicts across all candidates"""
    total_conflicts: int
    user_conflicts: Dict[str, int]
    most_conflicted_times: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalConflicts': self.total_conflicts,
            'userConflicts': dict(self.user_conflicts),
            'mostConflictedTimes': list(self.most_conflicted_times)
        }

@dataclass
class Recommendations:
    best_mutual_times: List[ScoredSlot]
    alternative_options: List[ScoredSlot]
    suggested_duration: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bestMutualTimes': [slot.to_dict() for slot in self.best_mutual_times],
            'alternativeOptions': [slot.to_dict() for slot in self.alternative_options],
            'suggestedDuration': self.suggested_duration
        }

@dataclass
class MutualAvailabilityResult:
    ranked_slots: List[ScoredSlot]
    conflict_analysis: ConflictAnalysis
    recommendations: Recommendations
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'availableSlots': [slot.to_dict() for slot in self.ranked_slots],
            'conflictAnalysis': self.conflict_analysis.to_dict(),
            'recommendations': self.recommendations.to_dict()
        }
        if self.message:
            result['message'] = self.message
        return result

@dataclass
class MultiUserAvailabilityRequest:
    """Search parameters for an N-party match"""
    duration: int = 60
    time_window: Optional[TimeWindow] = None
    preferred_time: Optional[TimeOfDay] = None
    exclude_days: List[str] = field(default_factory=list)
    lookahead_days: Optional[int] = None
    policy: AvailabilityPolicy = AvailabilityPolicy.REQUIRE_ALL
    horizon_start: Optional[datetime] = None
    horizon_end: Optional[datetime] = None
    max_slots: Optional[int] = None
    # Meeting length without travel buffers, for the suggested duration
    meeting_duration: Optional[int] = None

    def validate(
        self,
        max_lookahead_days: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> 'MultiUserAvailabilityRequest':
        errors = []
        if self.duration <= 0:
            errors.append("duration must be positive")
        unknown_days = [day for day in self.exclude_days if day not in WEEKDAY_NAMES]
        if unknown_days:
            errors.append(f"unknown weekdays: {', '.join(unknown_days)}")
        if self.lookahead_days is not None:
            if self.lookahead_days <= 0:
                errors.append("lookahead_days must be positive")
            elif max_lookahead_days is not None and self.lookahead_days > max_lookahead_days:
                errors.append(f"lookahead_days must not exceed {max_lookahead_days}")
        horizon_start = self.horizon_start or now
        if horizon_start and self.horizon_end:
            span = self.horizon_end - horizon_start
            if span <= timedelta(0):
                errors.append("horizon_start must precede horizon_end")
            elif max_lookahead_days is not None and span > timedelta(days=max_lookahead_days):
                errors.append(f"date range must not exceed {max_lookahead_days} days")
        if errors:
            raise ConstraintValidationError("; ".join(errors))
        return self

    @classmethod
    def from_constraints(
        cls,
        constraints: Constraints,
        policy: AvailabilityPolicy = AvailabilityPolicy.REQUIRE_ALL,
        lookahead_days: Optional[int] = None
    ) -> 'MultiUserAvailabilityRequest':
        """Map parsed constraints onto a search request"""
        return cls(
            duration=constraints.total_duration,
            time_window=constraints.time_window,
            preferred_time=constraints.preferred_time,
            exclude_days=list(constraints.avoid_days),
            lookahead_days=lookahead_days,
            policy=policy,
            horizon_start=constraints.start_date,
            horizon_end=constraints.end_date,
            meeting_duration=constraints.duration
        )

def slot_reason(available: int, conflicting: int, average_confidence: float) -> str:
    """Human-readable justification for a ranked slot"""
    total = available + conflicting
    if conflicting == 0:
        if average_confidence > 0.8:
            return 'Excellent time - all users available with high confidence'
        return 'Good time - all users available'
    if available > conflicting:
        return f"Most users available ({available}/{total})"
    return f"Some users available ({available}/{total})"

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))

class MultiUserAvailabilityEngine:
    """
    Multi-User Availability Resolver

    Pure over in-memory data: no I/O, no shared mutable state, so a single
    instance is safe to reuse across requests.
    """

    def __init__(
        self,
        matching_config: Optional[MatchingConfig] = None,
        scorer: Optional[SlotScorer] = None,
        grid_generator: Optional[TimeGridGenerator] = None
    ):
        self.config = matching_config or config.matching
        self.scorer = scorer or SlotScorer()
        self.grid_generator = grid_generator or TimeGridGenerator(self.config)

    @measure_execution_time
    def resolve(
        self,
        candidate_slots: Iterable[CandidateSlot],
        participants: Sequence[ParticipantProfile],
        policy: AvailabilityPolicy = AvailabilityPolicy.REQUIRE_ALL,
        requested_duration: Optional[int] = None,
        tz=None
    ) -> MutualAvailabilityResult:
        """
        Intersect per-participant verdicts and rank the survivors

        Args:
            candidate_slots: Slots to evaluate (any iterable, consumed once)
            participants: Everyone who should attend
            policy: Quorum a slot needs to survive
            requested_duration: Fallback for the suggested duration
            tz: Timezone for conflict clock buckets

        Returns:
            MutualAvailabilityResult; empty lists when nothing qualifies
        """
        slots = list(candidate_slots)
        if requested_duration is None:
            requested_duration = slots[0].duration_minutes if slots else self.config.default_duration

        if not participants:
            return MutualAvailabilityResult(
                ranked_slots=[],
                conflict_analysis=ConflictAnalysis(0, {}, []),
                recommendations=Recommendations([], [], requested_duration),
                message="No participants to match"
            )

        ranked: List[ScoredSlot] = []
        for slot in slots:
            scored = self._score_slot(slot, participants, policy)
            if scored is not None:
                ranked.append(scored)

        ranked.sort(key=lambda s: (-s.confidence, s.start, s.end))

        message = None
        if not slots:
            message = "No candidate slots in the search horizon"
        elif not ranked:
            message = "No mutually available times found"

        logger.info(
            f"Resolved {len(slots)} candidate slots for {len(participants)} participants: "
            f"{len(ranked)} available ({policy.value})"
        )

        return MutualAvailabilityResult(
            ranked_slots=ranked,
            conflict_analysis=self.analyze_conflicts(slots, participants, tz),
            recommendations=self.generate_recommendations(ranked, participants, requested_duration),
            message=message
        )

    def _score_slot(
        self,
        slot: CandidateSlot,
        participants: Sequence[ParticipantProfile],
        policy: AvailabilityPolicy
    ) -> Optional[ScoredSlot]:
        available_users: List[str] = []
        conflicting_users: List[str] = []
        per_user: Dict[str, SlotVerdict] = {}

        for participant in participants:
            verdict = self.scorer.is_available(
                slot, participant.events, participant.availability, participant.scoring_history
            )
            per_user[participant.user_id] = verdict
            if verdict.available:
                available_users.append(participant.user_id)
            else:
                conflicting_users.append(participant.user_id)

        if not policy.admits(len(available_users), len(participants)):
            logger.debug(f"Discarded {slot.start.isoformat()}: {len(available_users)}/{len(participants)} free")
            return None

        average_confidence = float(np.mean([per_user[u].confidence for u in available_users]))
        availability_ratio = len(available_users) / len(participants)

        return ScoredSlot(
            start=slot.start,
            end=slot.end,
            confidence=average_confidence * availability_ratio,
            available_users=available_users,
            conflicting_users=conflicting_users,
            per_user=per_user,
            reason=slot_reason(len(available_users), len(conflicting_users), average_confidence)
        )

    def analyze_conflicts(
        self,
        slots: Sequence[CandidateSlot],
        participants: Sequence[ParticipantProfile],
        tz=None
    ) -> ConflictAnalysis:
        """Tally event conflicts per participant and per clock time over all candidates"""
        local_tz = get_timezone(tz or self.config.default_timezone)
        user_conflicts = {participant.user_id: 0 for participant in participants}
        time_conflicts: Counter = Counter()
        total_conflicts = 0

        for slot in slots:
            local_start = to_local(slot.start, local_tz)
            time_key = f"{local_start.hour}:{local_start.minute:02d}"
            for participant in participants:
                if any(slot.overlaps(event.start_time, event.end_time) for event in participant.events):
                    total_conflicts += 1
                    user_conflicts[participant.user_id] += 1
                    time_conflicts[time_key] += 1

        # Counter.most_common keeps first-seen order among equal counts
        most_conflicted_times = [time_key for time_key, _ in time_conflicts.most_common(5)]

        return ConflictAnalysis(
            total_conflicts=total_conflicts,
            user_conflicts=user_conflicts,
            most_conflicted_times=most_conflicted_times
        )

    def generate_recommendations(
        self,
        ranked: Sequence[ScoredSlot],
        participants: Sequence[ParticipantProfile],
        requested_duration: int
    ) -> Recommendations:
        best_mutual_times = [
            slot for slot in ranked
            if slot.confidence > 0.7 and not slot.conflicting_users
        ][:5]

        quorum = math.ceil(len(participants) * 0.7)
        alternative_options = [
            slot for slot in ranked
            if slot.confidence > 0.5 and len(slot.available_users) >= quorum
        ][:10]

        average_durations = []
        for participant in participants:
            meetings = [e for e in participant.scoring_history if e.category == EventCategory.MEETING]
            if meetings:
                average_durations.append(float(np.mean([e.duration_minutes for e in meetings])))
            else:
                average_durations.append(float(requested_duration))

        suggested = _round_half_up(float(np.mean(average_durations))) if average_durations else requested_duration

        return Recommendations(
            best_mutual_times=best_mutual_times,
            alternative_options=alternative_options,
            suggested_duration=max(MIN_SUGGESTED_DURATION, min(MAX_SUGGESTED_DURATION, suggested))
        )

    def find_mutual_availability(
        self,
        participants: Sequence[ParticipantProfile],
        request: MultiUserAvailabilityRequest,
        now: Optional[datetime] = None,
        tz=None
    ) -> MutualAvailabilityResult:
        """Build the candidate grid for a request and resolve it"""
        now = now or datetime.now(timezone.utc)
        request.validate(self.config.max_lookahead_days, now)
        tz = tz or (participants[0].availability.timezone if participants else self.config.default_timezone)
        allow_weekends = any(p.availability.schedule.declares_weekend() for p in participants)

        grid = self.grid_generator.generate(
            request.duration,
            request.horizon_start or now,
            request.lookahead_days,
            time_window=request.time_window,
            preferred_time=request.preferred_time,
            excluded_weekdays=[WEEKDAY_NAMES.index(day) for day in request.exclude_days],
            allow_weekends=allow_weekends,
            now=now,
            not_before=request.horizon_start,
            horizon_end=request.horizon_end,
            max_slots=request.max_slots,
            tz=tz
        )
        return self.resolve(grid, participants, request.policy, request.meeting_duration or request.duration, tz)

__all__ = [
    'AvailabilityPolicy',
    'ParticipantProfile',
    'ScoredSlot',
    'ConflictAnalysis',
    'Recommendations',
    'MutualAvailabilityResult',
    'MultiUserAvailabilityRequest',
    'MultiUserAvailabilityEngine',
    'slot_reason',
]
