"""
Availability Insights - recurring patterns in a participant's calendar

Summarises history into recurring meeting hours, focus blocks between
meetings, habitually busy hours and a handful of recommendations.
"""

import logging
from typing import Dict, List, Optional, Any
from datetime import datetime
from dataclasses import dataclass, field, asdict
from collections import defaultdict

import numpy as np

from ..services.calendar_source import CalendarEvent, EventCategory
from ..utils.config import config
from ..utils.helpers import WEEKDAY_NAMES, BUSINESS_DAYS, get_timezone, to_local, to_iso_utc

logger = logging.getLogger(__name__)

FOCUS_MIN_GAP_MINUTES = 60
PATTERN_MIN_FREQUENCY = 0.1
BUSY_MIN_FREQUENCY = 0.5

def hour_slot(hour: int) -> str:
    return f"{hour:02d}:00-{hour + 1:02d}:00"

@dataclass
class MeetingPattern:
    """Recurring activity in one weekday/hour bucket"""
    day: str
    time_slot: str
    frequency: float  # occurrences per week
    average_duration: float
    meeting_types: List[str]
    confidence: float

@dataclass
class FocusBlock:
    start: datetime
    end: datetime
    confidence: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': to_iso_utc(self.start),
            'end': to_iso_utc(self.end),
            'confidence': self.confidence,
            'reason': self.reason,
            'type': 'focus'
        }

@dataclass
class InsightRecommendations:
    best_time_for_meetings: str
    best_time_for_focus: str
    least_busy_day: str
    most_busy_day: str
    average_meeting_duration: int
    meeting_frequency: float

@dataclass
class AvailabilityInsights:
    preferred_meeting_times: List[MeetingPattern] = field(default_factory=list)
    focus_time_blocks: List[FocusBlock] = field(default_factory=list)
    busy_patterns: List[MeetingPattern] = field(default_factory=list)
    recommendations: Optional[InsightRecommendations] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'preferredMeetingTimes': [asdict(p) for p in self.preferred_meeting_times],
            'focusTimeBlocks': [b.to_dict() for b in self.focus_time_blocks],
            'busyPatterns': [asdict(p) for p in self.busy_patterns],
            'recommendations': asdict(self.recommendations) if self.recommendations else None
        }

def weeks_in_data(events: List[CalendarEvent]) -> float:
    """Span of the history in weeks, never less than one"""
    if not events:
        return 1.0
    starts = [e.start_time for e in events]
    weeks = (max(starts) - min(starts)).total_seconds() / (7 * 24 * 3600)
    return max(weeks, 1.0)

class AvailabilityInsightsService:
    """Derives availability insights from calendar history"""

    def infer(self, events: List[CalendarEvent], tz=None) -> AvailabilityInsights:
        local_tz = get_timezone(tz or config.matching.default_timezone)
        weeks = weeks_in_data(events)

        patterns = self.analyze_meeting_patterns(events, local_tz, weeks)
        insights = AvailabilityInsights(
            preferred_meeting_times=patterns,
            focus_time_blocks=self.identify_focus_blocks(events, local_tz),
            busy_patterns=self.analyze_busy_patterns(events, local_tz, weeks),
            recommendations=self.generate_recommendations(events, patterns, local_tz, weeks)
        )
        logger.info(
            f"Derived {len(insights.preferred_meeting_times)} meeting patterns and "
            f"{len(insights.focus_time_blocks)} focus blocks from {len(events)} events"
        )
        return insights

    def analyze_meeting_patterns(self, events: List[CalendarEvent], tz, weeks: float) -> List[MeetingPattern]:
        buckets: Dict[tuple, List[CalendarEvent]] = defaultdict(list)
        for event in events:
            start = to_local(event.start_time, tz)
            buckets[(start.weekday(), start.hour)].append(event)

        patterns = []
        for (weekday, hour), bucket in sorted(buckets.items()):
            frequency = len(bucket) / weeks
            if frequency <= PATTERN_MIN_FREQUENCY:
                continue
            patterns.append(MeetingPattern(
                day=WEEKDAY_NAMES[weekday],
                time_slot=hour_slot(hour),
                frequency=frequency,
                average_duration=float(np.mean([e.duration_minutes for e in bucket])),
                meeting_types=sorted({e.category.value for e in bucket}),
                confidence=min(frequency / 2, 1.0)
            ))
        return patterns

    def identify_focus_blocks(self, events: List[CalendarEvent], tz) -> List[FocusBlock]:
        """Weekday gaps of an hour or more between consecutive meetings"""
        by_date: Dict[Any, List[CalendarEvent]] = defaultdict(list)
        for event in events:
            by_date[to_local(event.start_time, tz).date()].append(event)

        blocks = []
        for day in sorted(by_date):
            if day.weekday() >= 5:
                continue
            ordered = sorted(by_date[day], key=lambda e: e.start_time)
            for current, following in zip(ordered, ordered[1:]):
                gap_minutes = (following.start_time - current.end_time).total_seconds() / 60
                if gap_minutes >= FOCUS_MIN_GAP_MINUTES:
                    blocks.append(FocusBlock(
                        start=current.end_time,
                        end=following.start_time,
                        confidence=min(gap_minutes / 120, 1.0),
                        reason=f"{int(gap_minutes)}min gap between meetings"
                    ))

        blocks.sort(key=lambda b: (-b.confidence, b.start))
        return blocks

    def analyze_busy_patterns(self, events: List[CalendarEvent], tz, weeks: float) -> List[MeetingPattern]:
        counts: Dict[tuple, int] = defaultdict(int)
        for event in events:
            start = to_local(event.start_time, tz)
            counts[(start.weekday(), start.hour)] += 1

        busy = []
        for (weekday, hour), count in sorted(counts.items()):
            frequency = count / weeks
            if frequency > BUSY_MIN_FREQUENCY:
                busy.append(MeetingPattern(
                    day=WEEKDAY_NAMES[weekday],
                    time_slot=hour_slot(hour),
                    frequency=frequency,
                    average_duration=60.0,
                    meeting_types=['busy'],
                    confidence=min(frequency, 1.0)
                ))
        return busy

    def generate_recommendations(
        self,
        events: List[CalendarEvent],
        patterns: List[MeetingPattern],
        tz,
        weeks: float
    ) -> InsightRecommendations:
        meetings = [e for e in events if e.category == EventCategory.MEETING]
        average_duration = float(np.mean([e.duration_minutes for e in meetings])) if meetings else 0.0

        best_pattern = max(patterns, key=lambda p: p.confidence) if patterns else None

        day_counts = {day: 0 for day in BUSINESS_DAYS}
        for event in events:
            day = WEEKDAY_NAMES[to_local(event.start_time, tz).weekday()]
            if day in day_counts:
                day_counts[day] += 1

        # min/max return the first business day among ties
        least_busy = min(BUSINESS_DAYS, key=lambda d: day_counts[d])
        most_busy = max(BUSINESS_DAYS, key=lambda d: day_counts[d])

        return InsightRecommendations(
            best_time_for_meetings=best_pattern.time_slot if best_pattern else '10:00-11:00',
            best_time_for_focus='09:00-11:00',
            least_busy_day=least_busy.capitalize(),
            most_busy_day=most_busy.capitalize(),
            average_meeting_duration=int(round(average_duration)),
            meeting_frequency=len(meetings) / weeks
        )

__all__ = [
    'MeetingPattern',
    'FocusBlock',
    'InsightRecommendations',
    'AvailabilityInsights',
    'AvailabilityInsightsService',
    'weeks_in_data',
]
