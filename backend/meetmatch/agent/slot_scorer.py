"""
Single-User Slot Scorer

Decides whether one participant is free for one candidate slot and how
confident that verdict is, using their events, schedulable hours and lunch
window. All clock comparisons happen in the participant's own timezone.
"""

import logging
from typing import List, Optional, Sequence
from datetime import datetime
from dataclasses import dataclass

from .time_grid import CandidateSlot
from .working_hours import UserAvailability
from ..services.calendar_source import CalendarEvent
from ..utils.helpers import MINUTES_PER_DAY, WEEKDAY_NAMES, get_timezone, to_local

logger = logging.getLogger(__name__)

MEETING_CONFLICT = "Existing meeting conflict"
OUTSIDE_WORKING_HOURS = "Outside working hours"
LUNCH_CONFLICT = "Lunch time conflict"

MINIMUM_CONFIDENCE = 0.3

@dataclass(frozen=True)
class SlotVerdict:
    """One participant's verdict for one slot"""
    available: bool
    confidence: float
    reason: Optional[str] = None

    def to_dict(self):
        result = {'available': self.available, 'confidence': self.confidence}
        if self.reason:
            result['reason'] = self.reason
        return result

def default_hour_confidence(hour: int) -> float:
    """Baseline confidence by local start hour when there is no history"""
    if 10 <= hour <= 11:
        return 0.8
    if 14 <= hour <= 15:
        return 0.7
    if 9 <= hour <= 16:
        return 0.6
    return MINIMUM_CONFIDENCE

class SlotScorer:
    """Scores candidate slots for a single participant"""

    def is_available(
        self,
        slot: CandidateSlot,
        events: Sequence[CalendarEvent],
        availability: UserAvailability,
        history: Optional[Sequence[CalendarEvent]] = None
    ) -> SlotVerdict:
        """
        Check if a participant is available for a slot

        Args:
            slot: Candidate [start, end) interval
            events: Busy events to test for overlap
            availability: Schedulable hours and lunch window
            history: Events used for the confidence heuristic (defaults to events)

        Returns:
            SlotVerdict; confidence is 0 whenever the participant is unavailable
        """
        if any(slot.start < event.end_time and slot.end > event.start_time for event in events):
            return SlotVerdict(False, 0.0, MEETING_CONFLICT)

        tz = get_timezone(availability.timezone)
        local_start = to_local(slot.start, tz)
        local_end = to_local(slot.end, tz)
        day = WEEKDAY_NAMES[local_start.weekday()]

        if not availability.is_day_enabled(day):
            return SlotVerdict(False, 0.0, OUTSIDE_WORKING_HOURS)

        start_minutes = local_start.hour * 60 + local_start.minute
        end_minutes = (
            (local_end.date() - local_start.date()).days * MINUTES_PER_DAY
            + local_end.hour * 60 + local_end.minute
        )

        if not any(
            window.start_minutes <= start_minutes and end_minutes <= window.end_minutes
            for window in availability.windows_for(day)
        ):
            return SlotVerdict(False, 0.0, OUTSIDE_WORKING_HOURS)

        lunch = availability.lunch_window
        if lunch.enabled and start_minutes < lunch.end_minutes and end_minutes > lunch.start_minutes:
            return SlotVerdict(False, 0.0, LUNCH_CONFLICT)

        confidence = self.slot_confidence(local_start, events if history is None else history, tz)
        return SlotVerdict(True, confidence)

    def slot_confidence(self, local_start: datetime, history: Sequence[CalendarEvent], tz) -> float:
        """
        Confidence that a free slot is genuinely usable

        Hours the participant habitually books on that weekday score lower;
        without same-weekday history a fixed time-of-day baseline applies.
        """
        weekday = local_start.weekday()
        same_weekday: List[datetime] = [
            start for start in (to_local(event.start_time, tz) for event in history)
            if start.weekday() == weekday
        ]

        if not same_weekday:
            return default_hour_confidence(local_start.hour)

        same_hour = sum(1 for start in same_weekday if start.hour == local_start.hour)
        usage_ratio = same_hour / len(same_weekday)
        return max(MINIMUM_CONFIDENCE, 1 - usage_ratio)

__all__ = [
    'SlotVerdict',
    'SlotScorer',
    'default_hour_confidence',
    'MEETING_CONFLICT',
    'OUTSIDE_WORKING_HOURS',
    'LUNCH_CONFLICT',
]
