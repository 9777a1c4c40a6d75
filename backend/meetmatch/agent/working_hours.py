"""
Working Hours Detection - infer schedulable hours from calendar history

Converts a participant's past meetings into a per-weekday working-hours
pattern, a lunch-window pattern and confidence scores describing how far the
inferred pattern can be trusted over declared or default hours.
"""

import logging
from typing import Dict, List, Optional, Any, Tuple
from datetime import datetime, timedelta, date, timezone
from dataclasses import dataclass, field, asdict
from collections import defaultdict, Counter
import statistics

import numpy as np

from ..services.calendar_source import (
    CalendarEvent, CalendarSource, TimeWindow, WeeklyAvailability, DEFAULT_WORK_WINDOW
)
from ..utils.config import config, MatchingConfig
from ..utils.helpers import (
    MINUTES_PER_DAY, WEEKDAY_NAMES, BUSINESS_DAYS, get_timezone, to_local,
    minutes_to_time, time_to_minutes, to_iso_utc, measure_execution_time
)

logger = logging.getLogger(__name__)

WORKDAY_BUFFER_MINUTES = 30
LUNCH_SEARCH_START = 11 * 60 + 30   # 11:30
LUNCH_SEARCH_END = 14 * 60          # 14:00
LUNCH_MIN_GAP = 30
LUNCH_MAX_GAP = 120
LUNCH_ENABLE_THRESHOLD = 0.3

@dataclass
class WorkingHoursPattern:
    """Inferred working hours for one weekday"""
    day: str
    start: str
    end: str
    enabled: bool
    confidence: float
    meeting_count: int
    average_gap_minutes: float

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(self.start, self.end)

@dataclass
class LunchWindowPattern:
    """Inferred or defaulted lunch window"""
    start: str
    end: str
    enabled: bool
    confidence: float
    detected_from_gaps: bool

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end)

@dataclass
class AnalysisMetadata:
    total_bookings: int
    date_range_from: str
    date_range_to: str
    unique_days_with_meetings: int
    average_meetings_per_day: float
    most_active_days: List[str] = field(default_factory=list)
    preferred_meeting_times: List[Tuple[int, int]] = field(default_factory=list)  # (hour, frequency)

@dataclass
class WorkingHoursAnalysis:
    """Complete result of a working-hours inference run"""
    working_hours: Dict[str, WorkingHoursPattern]
    lunch_window: LunchWindowPattern
    overall_confidence: float
    metadata: AnalysisMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            'workingHours': {day: asdict(p) for day, p in self.working_hours.items()},
            'lunchWindow': asdict(self.lunch_window),
            'overallConfidence': self.overall_confidence,
            'analysisMetadata': asdict(self.metadata)
        }

@dataclass
class UserAvailability:
    """Schedulable rules the slot scorer evaluates for one participant"""
    user_id: str
    timezone: str
    schedule: WeeklyAvailability
    lunch_window: LunchWindowPattern
    buffer_time: int = 15
    origin: str = "inferred"  # inferred, declared, default

    def is_day_enabled(self, day: str) -> bool:
        return self.schedule.has_windows(day)

    def windows_for(self, day: str) -> List[TimeWindow]:
        return self.schedule.windows_for(day)

@dataclass
class _Meeting:
    start: int      # minutes from local midnight
    end: int
    day: date

@dataclass
class _BookingPatterns:
    day_patterns: Dict[str, List[_Meeting]]
    hourly_frequency: Counter
    unique_days: int
    average_meetings_per_day: float
    most_active_days: List[str]
    preferred_meeting_times: List[Tuple[int, int]]
    gap_analysis: List[Tuple[int, int, str]]   # (gap start, gap end, weekday)

def default_lunch_window() -> LunchWindowPattern:
    return LunchWindowPattern(
        start='12:00',
        end='13:00',
        enabled=True,
        confidence=0.3,  # Low confidence default
        detected_from_gaps=False
    )

def _same_day_gaps(meetings: List[_Meeting]) -> List[Tuple[int, int]]:
    """(end, next start) between consecutive meetings on the same calendar date"""
    by_date: Dict[date, List[_Meeting]] = defaultdict(list)
    for meeting in meetings:
        by_date[meeting.day].append(meeting)

    gaps = []
    for day in sorted(by_date):
        ordered = sorted(by_date[day], key=lambda m: (m.start, m.end))
        for current, following in zip(ordered, ordered[1:]):
            gaps.append((current.end, following.start))
    return gaps

class WorkingHoursDetector:
    """
    Working-hours inference engine

    Pure analysis over in-memory events via analyze(); analyze_for_user()
    adds the fetch step and never raises on upstream failures.
    """

    def __init__(self, matching_config: Optional[MatchingConfig] = None):
        self.config = matching_config or config.matching

    @measure_execution_time
    def analyze(
        self,
        events: List[CalendarEvent],
        lookback_days: Optional[int] = None,
        now: Optional[datetime] = None,
        tz=None
    ) -> WorkingHoursAnalysis:
        """
        Analyze calendar history and detect working hours patterns

        Args:
            events: Historical events; anything outside the lookback window is ignored
            lookback_days: Days of history to consider (config default)
            now: End of the lookback window
            tz: Timezone name used for local clock times

        Returns:
            WorkingHoursAnalysis; the default business-day pattern when no history remains
        """
        lookback_days = lookback_days or self.config.lookback_days
        end_date = now or datetime.now(timezone.utc)
        start_date = end_date - timedelta(days=lookback_days)
        local_tz = get_timezone(tz or self.config.default_timezone)

        bookings = [e for e in events if start_date <= e.start_time <= end_date]
        if not bookings:
            logger.info("No meeting history in lookback window, using default working hours")
            return self.default_analysis(start_date, end_date)

        patterns = self._analyze_booking_patterns(bookings, local_tz)
        working_hours = self._detect_daily_working_hours(patterns)
        lunch_window = self._detect_lunch_window(patterns)
        overall_confidence = self._calculate_overall_confidence(len(bookings), patterns, working_hours)

        logger.info(
            f"Analyzed {len(bookings)} meetings across {patterns.unique_days} days "
            f"(confidence {overall_confidence:.2f})"
        )

        return WorkingHoursAnalysis(
            working_hours=working_hours,
            lunch_window=lunch_window,
            overall_confidence=overall_confidence,
            metadata=AnalysisMetadata(
                total_bookings=len(bookings),
                date_range_from=to_iso_utc(start_date),
                date_range_to=to_iso_utc(end_date),
                unique_days_with_meetings=patterns.unique_days,
                average_meetings_per_day=patterns.average_meetings_per_day,
                most_active_days=patterns.most_active_days,
                preferred_meeting_times=patterns.preferred_meeting_times
            )
        )

    async def analyze_for_user(
        self,
        source: CalendarSource,
        user_id: str,
        lookback_days: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> WorkingHoursAnalysis:
        """Fetch a user's history and analyze it, degrading to defaults on failure"""
        lookback_days = lookback_days or self.config.lookback_days
        end_date = now or datetime.now(timezone.utc)
        start_date = end_date - timedelta(days=lookback_days)

        try:
            events = await source.get_events(user_id, start_date, end_date)
            tz_name = await source.get_timezone(user_id)
        except Exception as e:
            logger.warning(f"Error fetching history for {user_id}, using default working hours: {str(e)}")
            return self.default_analysis(start_date, end_date)

        return self.analyze(events, lookback_days, end_date, tz_name)

    def _analyze_booking_patterns(self, bookings: List[CalendarEvent], tz) -> _BookingPatterns:
        day_patterns: Dict[str, List[_Meeting]] = {day: [] for day in WEEKDAY_NAMES}
        hourly_frequency: Counter = Counter()
        unique_dates = set()

        for booking in bookings:
            start = to_local(booking.start_time, tz)
            end = to_local(booking.end_time, tz)
            start_minutes = start.hour * 60 + start.minute
            # Meetings running past midnight count until the end of their start day
            end_minutes = end.hour * 60 + end.minute if end.date() == start.date() else MINUTES_PER_DAY

            day_patterns[WEEKDAY_NAMES[start.weekday()]].append(
                _Meeting(start=start_minutes, end=end_minutes, day=start.date())
            )
            unique_dates.add(start.date())
            hourly_frequency[start.hour] += 1

        gap_analysis = []
        for day, meetings in day_patterns.items():
            for gap_start, gap_end in _same_day_gaps(meetings):
                gap = gap_end - gap_start
                # Gaps between 30 minutes and 2 hours are potential lunch breaks
                if LUNCH_MIN_GAP <= gap <= LUNCH_MAX_GAP:
                    gap_analysis.append((gap_start, gap_end, day))

        preferred_meeting_times = sorted(
            hourly_frequency.items(), key=lambda item: (-item[1], item[0])
        )[:5]

        day_activity = sorted(
            ((day, len(meetings)) for day, meetings in day_patterns.items()),
            key=lambda item: -item[1]
        )
        most_active_days = [day for day, count in day_activity if count > 0][:3]

        return _BookingPatterns(
            day_patterns=day_patterns,
            hourly_frequency=hourly_frequency,
            unique_days=len(unique_dates),
            average_meetings_per_day=len(bookings) / max(len(unique_dates), 1),
            most_active_days=most_active_days,
            preferred_meeting_times=preferred_meeting_times,
            gap_analysis=gap_analysis
        )

    def _detect_daily_working_hours(self, patterns: _BookingPatterns) -> Dict[str, WorkingHoursPattern]:
        working_hours: Dict[str, WorkingHoursPattern] = {}

        for day in WEEKDAY_NAMES:
            meetings = patterns.day_patterns[day]

            if not meetings:
                working_hours[day] = WorkingHoursPattern(
                    day=day,
                    start=DEFAULT_WORK_WINDOW.start,
                    end=DEFAULT_WORK_WINDOW.end,
                    enabled=day in BUSINESS_DAYS,  # Enable business days by default
                    confidence=0.0,
                    meeting_count=0,
                    average_gap_minutes=0.0
                )
                continue

            earliest_start = min(m.start for m in meetings)
            latest_end = max(m.end for m in meetings)

            work_start = max(0, earliest_start - WORKDAY_BUFFER_MINUTES)
            work_end = min(MINUTES_PER_DAY, latest_end + WORKDAY_BUFFER_MINUTES)

            positive_gaps = [end - start for start, end in _same_day_gaps(meetings) if end - start > 0]
            average_gap = statistics.mean(positive_gaps) if positive_gaps else 0.0

            working_hours[day] = WorkingHoursPattern(
                day=day,
                start=minutes_to_time(work_start),
                end=minutes_to_time(work_end),
                enabled=True,
                confidence=self.day_confidence(len(meetings), latest_end - earliest_start),
                meeting_count=len(meetings),
                average_gap_minutes=float(average_gap)
            )

        return working_hours

    @staticmethod
    def day_confidence(meeting_count: int, span_minutes: int) -> float:
        """More, denser meetings within a narrower span increase confidence"""
        density = meeting_count / max(span_minutes / 60, 1)  # meetings per hour
        return min(1.0, (meeting_count / 10) * (density / 2))

    def _detect_lunch_window(self, patterns: _BookingPatterns) -> LunchWindowPattern:
        lunch_gaps = [
            (start, end) for start, end, _ in patterns.gap_analysis
            if start >= LUNCH_SEARCH_START and end <= LUNCH_SEARCH_END
        ]

        if not lunch_gaps:
            return LunchWindowPattern(
                start='12:00',
                end='13:00',
                enabled=False,
                confidence=0.1,
                detected_from_gaps=False
            )

        starts = np.array([start for start, _ in lunch_gaps], dtype=float)
        ends = np.array([end for _, end in lunch_gaps], dtype=float)

        consistency = 1 / (1 + (np.var(starts) + np.var(ends)) / 3600)
        frequency = len(lunch_gaps) / max(patterns.unique_days, 1)
        confidence = float(min(1.0, consistency * frequency * 2))

        return LunchWindowPattern(
            start=minutes_to_time(int(round(starts.mean()))),
            end=minutes_to_time(int(round(ends.mean()))),
            enabled=confidence > LUNCH_ENABLE_THRESHOLD,
            confidence=confidence,
            detected_from_gaps=True
        )

    def _calculate_overall_confidence(
        self,
        total_bookings: int,
        patterns: _BookingPatterns,
        working_hours: Dict[str, WorkingHoursPattern]
    ) -> float:
        data_volume_score = min(1.0, total_bookings / 50)
        time_span_score = min(1.0, patterns.unique_days / 30)
        consistency_score = min(1.0, patterns.average_meetings_per_day / 3)

        day_confidences = [p.confidence for p in working_hours.values() if p.enabled]
        avg_day_confidence = float(np.mean(day_confidences)) if day_confidences else 0.0

        overall = (
            data_volume_score * 0.3 +
            time_span_score * 0.3 +
            consistency_score * 0.2 +
            avg_day_confidence * 0.2
        )
        return round(overall, 2)

    def default_analysis(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> WorkingHoursAnalysis:
        """Business days 09:00-17:00, weekends off, low-confidence noon lunch"""
        end_date = end_date or datetime.now(timezone.utc)
        start_date = start_date or end_date
        working_hours = {
            day: WorkingHoursPattern(
                day=day,
                start=DEFAULT_WORK_WINDOW.start,
                end=DEFAULT_WORK_WINDOW.end,
                enabled=day in BUSINESS_DAYS,
                confidence=0.0,
                meeting_count=0,
                average_gap_minutes=0.0
            )
            for day in WEEKDAY_NAMES
        }
        return WorkingHoursAnalysis(
            working_hours=working_hours,
            lunch_window=default_lunch_window(),
            overall_confidence=0.0,
            metadata=AnalysisMetadata(
                total_bookings=0,
                date_range_from=to_iso_utc(start_date),
                date_range_to=to_iso_utc(end_date),
                unique_days_with_meetings=0,
                average_meetings_per_day=0.0
            )
        )

    def suggest_optimal_meeting_times(
        self,
        analysis: WorkingHoursAnalysis,
        duration: int
    ) -> List[Dict[str, Any]]:
        """Suggest clock times for a meeting of the given length, best first"""
        suggestions: List[Dict[str, Any]] = []

        for hour, frequency in analysis.metadata.preferred_meeting_times:
            suggestions.append({
                'time': minutes_to_time(hour * 60),
                'confidence': min(1.0, frequency / 10),
                'reason': f"Historically active time ({frequency} meetings)"
            })

        for pattern in analysis.working_hours.values():
            if not pattern.enabled or pattern.confidence <= 0.5:
                continue
            if pattern.average_gap_minutes < duration:
                continue

            start_minutes = time_to_minutes(pattern.start)
            end_minutes = time_to_minutes(pattern.end)
            mid_morning = start_minutes + 90
            mid_afternoon = end_minutes - 90

            if mid_morning + duration <= end_minutes:
                suggestions.append({
                    'time': minutes_to_time(mid_morning),
                    'confidence': pattern.confidence * 0.8,
                    'reason': f"Good fit for {pattern.day} schedule"
                })
            if mid_afternoon >= start_minutes:
                suggestions.append({
                    'time': minutes_to_time(mid_afternoon),
                    'confidence': pattern.confidence * 0.7,
                    'reason': f"Afternoon slot on {pattern.day}"
                })

        suggestions.sort(key=lambda s: -s['confidence'])
        unique: List[Dict[str, Any]] = []
        seen = set()
        for suggestion in suggestions:
            if suggestion['time'] not in seen:
                seen.add(suggestion['time'])
                unique.append(suggestion)
        return unique[:5]

    def to_user_availability(
        self,
        analysis: WorkingHoursAnalysis,
        user_id: str,
        timezone_name: str = "UTC",
        declared: Optional[WeeklyAvailability] = None
    ) -> UserAvailability:
        """
        Turn an analysis into schedulable rules

        An explicitly declared weekly availability overrides the inferred
        per-day hours; the inferred lunch window still applies.
        """
        if declared is not None:
            schedule = declared
            origin = "declared"
        else:
            schedule = WeeklyAvailability({
                day: [pattern.window] if pattern.enabled else []
                for day, pattern in analysis.working_hours.items()
            })
            origin = "inferred" if analysis.metadata.total_bookings else "default"

        return UserAvailability(
            user_id=user_id,
            timezone=timezone_name,
            schedule=schedule,
            lunch_window=analysis.lunch_window,
            origin=origin
        )

def generate_summary(analysis: WorkingHoursAnalysis) -> str:
    """Human-readable summary of a working-hours analysis"""
    confidence = analysis.overall_confidence
    if confidence > 0.8:
        confidence_level = 'high'
    elif confidence > 0.5:
        confidence_level = 'medium'
    else:
        confidence_level = 'low'

    active_days = ', '.join(
        pattern.day for pattern in analysis.working_hours.values()
        if pattern.enabled and pattern.meeting_count > 0
    )

    return (
        f"Analyzed {analysis.metadata.total_bookings} meetings across "
        f"{analysis.metadata.unique_days_with_meetings} days. "
        f"Detected working pattern with {confidence_level} confidence. "
        f"Most active days: {active_days or 'None detected'}."
    )

__all__ = [
    'WorkingHoursPattern',
    'LunchWindowPattern',
    'AnalysisMetadata',
    'WorkingHoursAnalysis',
    'UserAvailability',
    'WorkingHoursDetector',
    'default_lunch_window',
    'generate_summary',
]
