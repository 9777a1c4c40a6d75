"""
Local Fallback Search

Finds bookable meeting times from declared weekly availability alone, for
parties without enough calendar history for pattern-based matching. Each
mutual window yields at most one slot per day.
"""

import logging
from typing import Dict, List, Optional, Sequence
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass

from .constraints import Constraints, validate_constraints
from .time_grid import TimeGridGenerator
from ..services.calendar_source import TimeWindow, WeeklyAvailability, DEFAULT_WORK_WINDOW
from ..utils.config import config, MatchingConfig
from ..utils.helpers import (
    WEEKDAY_NAMES, get_timezone, local_datetime, to_local, to_iso_utc,
    round_up_to_step, measure_execution_time
)

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class BookableSlot:
    """The meeting itself, travel buffer excluded"""
    start: datetime
    end: datetime

    def to_dict(self) -> Dict[str, str]:
        return {'start': to_iso_utc(self.start), 'end': to_iso_utc(self.end)}

def intersect_windows(first: Sequence[TimeWindow], second: Sequence[TimeWindow]) -> List[TimeWindow]:
    """Pairwise overlaps of two window lists, sorted by start"""
    overlaps = []
    for a in first:
        for b in second:
            overlap = a.intersect(b)
            if overlap is not None:
                overlaps.append(overlap)
    return sorted(overlaps, key=lambda w: w.start_minutes)

def mutual_weekly_availability(availabilities: Sequence[Optional[WeeklyAvailability]]) -> WeeklyAvailability:
    """
    Intersect every party's weekly windows day by day

    A party without declared availability counts as 09:00-17:00 every day.
    """
    mutual: Dict[str, List[TimeWindow]] = {}
    for day in WEEKDAY_NAMES:
        windows: List[TimeWindow] = [TimeWindow('00:00', '24:00')]
        for availability in availabilities:
            party_windows = availability.windows_for(day) if availability is not None else [DEFAULT_WORK_WINDOW]
            windows = intersect_windows(windows, party_windows)
            if not windows:
                break
        mutual[day] = windows
    return WeeklyAvailability(mutual)

class LocalFallbackSearch:
    """Declared-availability intersection search for any number of parties"""

    def __init__(
        self,
        matching_config: Optional[MatchingConfig] = None,
        grid_generator: Optional[TimeGridGenerator] = None
    ):
        self.config = matching_config or config.matching
        self.grid_generator = grid_generator or TimeGridGenerator(self.config)

    @measure_execution_time
    def find_slots(
        self,
        availabilities: Sequence[Optional[WeeklyAvailability]],
        constraints: Constraints,
        now: Optional[datetime] = None,
        tz=None
    ) -> List[BookableSlot]:
        """
        Find bookable slots inside every party's declared windows

        Args:
            availabilities: One entry per party; None for undeclared
            constraints: Duration, windows, excluded days, buffer and date range
            now: Reference instant for the same-day lead time
            tz: Timezone name the weekly windows are expressed in

        Returns:
            Up to max_slots BookableSlots in chronological order
        """
        validate_constraints(constraints, self.config.max_lookahead_days)
        now = now or datetime.now(timezone.utc)
        local_tz = get_timezone(tz or self.config.default_timezone)

        search_start = constraints.start_date or now
        search_end = min(
            constraints.end_date or now + timedelta(days=self.config.lookahead_days),
            search_start + timedelta(days=self.config.max_lookahead_days)
        )
        before = constraints.travel_buffer.before if constraints.travel_buffer else 0
        total_duration = constraints.total_duration

        mutual = mutual_weekly_availability(availabilities)
        allow_weekends = any(a is not None and a.declares_weekend() for a in availabilities)
        preferred_window = constraints.resolved_window()
        excluded = constraints.excluded_weekdays()

        slots: List[BookableSlot] = []
        day = to_local(search_start, local_tz).date()
        last_day = to_local(search_end, local_tz).date()

        while day <= last_day and len(slots) < self.config.max_slots:
            if self.grid_generator.is_day_searchable(
                day, excluded, constraints.time_window is not None, allow_weekends
            ):
                floor = self.grid_generator.day_floor(day, now, search_start, local_tz)
                for window_start, window_end in self.grid_generator.effective_windows(day, preferred_window, mutual):
                    start_minutes = round_up_to_step(max(window_start, floor), self.grid_generator.step)
                    if start_minutes + total_duration > window_end:
                        continue

                    outer_start = local_datetime(day, start_minutes, local_tz)
                    if outer_start + timedelta(minutes=total_duration) > search_end:
                        continue

                    meeting_start = outer_start + timedelta(minutes=before)
                    slots.append(BookableSlot(meeting_start, meeting_start + timedelta(minutes=constraints.duration)))
                    if len(slots) >= self.config.max_slots:
                        break
            day += timedelta(days=1)

        logger.info(f"Fallback search over {len(availabilities)} parties found {len(slots)} slots")
        return slots

    def find_common_times(
        self,
        first: Optional[WeeklyAvailability],
        second: Optional[WeeklyAvailability],
        constraints: Constraints,
        now: Optional[datetime] = None,
        tz=None
    ) -> List[BookableSlot]:
        """Two-party case of find_slots"""
        return self.find_slots([first, second], constraints, now, tz)

__all__ = [
    'BookableSlot',
    'intersect_windows',
    'mutual_weekly_availability',
    'LocalFallbackSearch',
]
