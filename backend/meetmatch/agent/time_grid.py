"""
Time Grid - candidate meeting start times

Enumerates candidate slots over a search horizon at a fixed step, inside each
day's schedulable windows narrowed to the preferred time of day. The same
window arithmetic backs the multi-user resolver and the local fallback search.
"""

import logging
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple
from datetime import datetime, timedelta, date, timezone
from dataclasses import dataclass

import pytz

from .constraints import TimeOfDay, PREFERRED_TIME_WINDOWS
from ..services.calendar_source import TimeWindow, WeeklyAvailability
from ..utils.config import config, MatchingConfig
from ..utils.helpers import (
    MINUTES_PER_DAY, get_timezone, local_datetime, to_local,
    round_up_to_step, weekday_name
)

logger = logging.getLogger(__name__)

WHOLE_DAY = TimeWindow('00:00', '24:00')

@dataclass(frozen=True)
class CandidateSlot:
    """Half-open candidate interval [start, end)"""
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start

@dataclass(frozen=True)
class TimeGrid:
    """
    Lazy, finite, restartable sequence of candidate slots

    Each iteration re-runs the enumeration from the first day of the horizon.
    """
    generator: 'TimeGridGenerator'
    duration: int
    horizon_start: datetime
    horizon_days: int
    preferred_window: TimeWindow
    explicit_window: bool
    excluded_weekdays: Tuple[int, ...]
    day_windows: Optional[WeeklyAvailability]
    allow_weekends: bool
    now: datetime
    not_before: Optional[datetime]
    horizon_end: Optional[datetime]
    max_slots: Optional[int]
    tz: pytz.BaseTzInfo

    def __iter__(self) -> Iterator[CandidateSlot]:
        emitted = 0
        for day in self.generator.iter_days(self.horizon_start, self.horizon_days, self.tz):
            if not self.generator.is_day_searchable(
                day, self.excluded_weekdays, self.explicit_window, self.allow_weekends
            ):
                continue

            floor = self.generator.day_floor(day, self.now, self.not_before, self.tz)
            for window_start, window_end in self.generator.effective_windows(
                day, self.preferred_window, self.day_windows
            ):
                for start_minutes in self.generator.window_starts(
                    window_start, window_end, self.duration, floor
                ):
                    start = local_datetime(day, start_minutes, self.tz)
                    end = start + timedelta(minutes=self.duration)
                    if self.horizon_end is not None and end > self.horizon_end:
                        break
                    yield CandidateSlot(start, end)
                    emitted += 1
                    if self.max_slots is not None and emitted >= self.max_slots:
                        return

class TimeGridGenerator:
    """Builds candidate-slot grids from search parameters"""

    def __init__(self, matching_config: Optional[MatchingConfig] = None):
        self.config = matching_config or config.matching

    @property
    def step(self) -> int:
        return self.config.slot_step_minutes

    def generate(
        self,
        duration: int,
        horizon_start: datetime,
        horizon_days: Optional[int] = None,
        *,
        time_window: Optional[TimeWindow] = None,
        preferred_time: Optional[TimeOfDay] = None,
        excluded_weekdays: Iterable[int] = (),
        day_windows: Optional[WeeklyAvailability] = None,
        allow_weekends: bool = False,
        now: Optional[datetime] = None,
        not_before: Optional[datetime] = None,
        horizon_end: Optional[datetime] = None,
        max_slots: Optional[int] = -1,
        tz=None
    ) -> TimeGrid:
        """
        Build a candidate grid

        Args:
            duration: Meeting length in minutes
            horizon_start: Instant whose local date is the first searched day
            horizon_days: Number of days to search (config lookahead by default)
            time_window: Explicit "HH:MM" window, wins over preferred_time
            preferred_time: Morning/afternoon/evening bucket
            excluded_weekdays: Weekday indexes (Monday=0) to skip
            day_windows: Declared schedulable windows; whole days when omitted
            allow_weekends: Search Saturday/Sunday without an explicit window
            now: Reference instant for the same-day lead time
            not_before: Candidates must start at or after this instant
            horizon_end: Candidates must end by this instant; also sets the
                horizon when horizon_days is omitted
            max_slots: Stop after this many candidates; None for no cap,
                -1 for the configured default
            tz: Timezone name or pytz timezone for local clock times

        Returns:
            A restartable TimeGrid; empty when the duration never fits
        """
        if duration <= 0:
            raise ValueError("duration must be positive")

        tz = tz if isinstance(tz, pytz.BaseTzInfo) else get_timezone(tz or self.config.default_timezone)
        if horizon_days is None:
            horizon_days = self.config.lookahead_days
            if horizon_end is not None:
                horizon_days = (to_local(horizon_end, tz).date() - to_local(horizon_start, tz).date()).days + 1

        return TimeGrid(
            generator=self,
            duration=duration,
            horizon_start=horizon_start,
            horizon_days=horizon_days,
            preferred_window=self.resolve_preferred_window(time_window, preferred_time),
            explicit_window=time_window is not None,
            excluded_weekdays=tuple(excluded_weekdays),
            day_windows=day_windows,
            allow_weekends=allow_weekends,
            now=now or datetime.now(timezone.utc),
            not_before=not_before,
            horizon_end=horizon_end,
            max_slots=self.config.max_slots if max_slots == -1 else max_slots,
            tz=tz
        )

    def resolve_preferred_window(
        self,
        time_window: Optional[TimeWindow],
        preferred_time: Optional[TimeOfDay]
    ) -> TimeWindow:
        if time_window is not None:
            return time_window
        return PREFERRED_TIME_WINDOWS[preferred_time]

    def iter_days(self, horizon_start: datetime, horizon_days: int, tz: pytz.BaseTzInfo) -> Iterator[date]:
        first_day = to_local(horizon_start, tz).date()
        for offset in range(max(horizon_days, 0)):
            yield first_day + timedelta(days=offset)

    def is_day_searchable(
        self,
        day: date,
        excluded_weekdays: Sequence[int],
        explicit_window: bool,
        allow_weekends: bool
    ) -> bool:
        if day.weekday() in excluded_weekdays:
            return False
        if day.weekday() >= 5 and not (explicit_window or allow_weekends):
            return False
        return True

    def earliest_start_minutes(self, day: date, now: datetime, tz: pytz.BaseTzInfo) -> int:
        """Same-day floor: now plus lead time, rounded up to the grid step"""
        local_now = to_local(now, tz)
        if day < local_now.date():
            return MINUTES_PER_DAY + 1
        if day > local_now.date():
            return 0
        minutes = local_now.hour * 60 + local_now.minute + self.config.lead_time_minutes
        if local_now.second or local_now.microsecond:
            minutes += 1
        return round_up_to_step(minutes, self.step)

    def day_floor(
        self,
        day: date,
        now: datetime,
        not_before: Optional[datetime],
        tz: pytz.BaseTzInfo
    ) -> int:
        """Earliest start minute on a day from the lead time and a search start"""
        floor = self.earliest_start_minutes(day, now, tz)
        if not_before is None:
            return floor

        local_start = to_local(not_before, tz)
        if day < local_start.date():
            return MINUTES_PER_DAY + 1
        if day == local_start.date():
            minutes = local_start.hour * 60 + local_start.minute
            if local_start.second or local_start.microsecond:
                minutes += 1
            floor = max(floor, round_up_to_step(minutes, self.step))
        return floor

    def effective_windows(
        self,
        day: date,
        preferred_window: TimeWindow,
        day_windows: Optional[WeeklyAvailability]
    ) -> List[Tuple[int, int]]:
        """Day windows intersected with the preferred window, in minutes"""
        base = day_windows.windows_for(weekday_name(day)) if day_windows is not None else [WHOLE_DAY]
        result = []
        for window in base:
            overlap = window.intersect(preferred_window)
            if overlap is not None:
                result.append((overlap.start_minutes, overlap.end_minutes))
        return result

    def window_starts(self, window_start: int, window_end: int, duration: int, floor: int = 0) -> Iterator[int]:
        """Start minutes stepping through a window while the meeting still fits"""
        start = window_start if window_start >= floor else floor
        while start + duration <= window_end:
            yield start
            start += self.step

__all__ = ['CandidateSlot', 'TimeGrid', 'TimeGridGenerator', 'WHOLE_DAY']
