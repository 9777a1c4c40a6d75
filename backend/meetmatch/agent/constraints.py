"""
Scheduling constraints shared by the time grid, the fallback search and the
free-text parser.
"""

import logging
from typing import Dict, List, Optional, Any, Tuple
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from enum import Enum

from ..services.calendar_source import TimeWindow
from ..utils.helpers import WEEKDAY_NAMES, parse_iso_datetime, to_iso_utc

logger = logging.getLogger(__name__)

class TimeOfDay(Enum):
    """Preferred time-of-day buckets"""
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"

PREFERRED_TIME_WINDOWS: Dict[Optional[TimeOfDay], TimeWindow] = {
    TimeOfDay.MORNING: TimeWindow('08:00', '12:00'),
    TimeOfDay.AFTERNOON: TimeWindow('12:00', '17:00'),
    TimeOfDay.EVENING: TimeWindow('17:00', '22:00'),
    None: TimeWindow('09:00', '17:00'),
}

class ConstraintValidationError(ValueError):
    """Inconsistent or out-of-range scheduling constraints"""

@dataclass(frozen=True)
class TravelBuffer:
    """Minutes reserved before and after an in-person meeting"""
    before: int = 0
    after: int = 0

    @property
    def total(self) -> int:
        return self.before + self.after

@dataclass
class Constraints:
    """Structured meeting constraints"""
    duration: int = 60
    time_window: Optional[TimeWindow] = None
    preferred_time: Optional[TimeOfDay] = None
    avoid_days: List[str] = field(default_factory=list)
    travel_buffer: Optional[TravelBuffer] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    location: Optional[str] = None

    def resolved_window(self) -> TimeWindow:
        """Explicit window wins over the preferred bucket"""
        if self.time_window is not None:
            return self.time_window
        return PREFERRED_TIME_WINDOWS[self.preferred_time]

    def excluded_weekdays(self) -> Tuple[int, ...]:
        return tuple(sorted(WEEKDAY_NAMES.index(day) for day in set(self.avoid_days)))

    @property
    def total_duration(self) -> int:
        """Meeting duration plus any travel buffer"""
        return self.duration + (self.travel_buffer.total if self.travel_buffer else 0)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'duration': self.duration}
        if self.time_window:
            result['timeWindow'] = self.time_window.to_dict()
        if self.preferred_time:
            result['preferredTime'] = self.preferred_time.value
        if self.avoid_days:
            result['avoidDays'] = list(self.avoid_days)
        if self.travel_buffer:
            result['travelBuffer'] = {'before': self.travel_buffer.before, 'after': self.travel_buffer.after}
        if self.start_date:
            result['startDate'] = to_iso_utc(self.start_date)
        if self.end_date:
            result['endDate'] = to_iso_utc(self.end_date)
        if self.location:
            result['location'] = self.location
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Constraints':
        """Build and validate constraints from a camelCase payload"""
        try:
            window = data.get('timeWindow')
            buffer = data.get('travelBuffer')
            preferred = data.get('preferredTime')
            constraints = cls(
                duration=int(data.get('duration', 60)),
                time_window=TimeWindow(window['start'], window['end']) if window else None,
                preferred_time=TimeOfDay(preferred) if preferred else None,
                avoid_days=[day.lower() for day in data.get('avoidDays') or []],
                travel_buffer=TravelBuffer(int(buffer.get('before', 0)), int(buffer.get('after', 0))) if buffer else None,
                start_date=parse_iso_datetime(data['startDate']) if data.get('startDate') else None,
                end_date=parse_iso_datetime(data['endDate']) if data.get('endDate') else None,
                location=data.get('location')
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConstraintValidationError(f"Invalid constraints: {str(e)}") from e
        return validate_constraints(constraints)

def validate_constraints(constraints: Constraints, max_span_days: Optional[int] = None) -> Constraints:
    """Reject malformed constraints before they reach the matching pipeline"""
    errors = []

    if constraints.duration <= 0:
        errors.append("duration must be positive")
    unknown_days = [day for day in constraints.avoid_days if day not in WEEKDAY_NAMES]
    if unknown_days:
        errors.append(f"unknown weekdays: {', '.join(unknown_days)}")
    if constraints.travel_buffer and (constraints.travel_buffer.before < 0 or constraints.travel_buffer.after < 0):
        errors.append("travel buffer must not be negative")
    if constraints.start_date and constraints.end_date and constraints.start_date >= constraints.end_date:
        errors.append("startDate must precede endDate")
    elif (max_span_days is not None and constraints.start_date and constraints.end_date
            and constraints.end_date - constraints.start_date > timedelta(days=max_span_days)):
        errors.append(f"date range must not exceed {max_span_days} days")

    if errors:
        message = "; ".join(errors)
        logger.warning(f"Rejected constraints: {message}")
        raise ConstraintValidationError(message)

    return constraints

__all__ = [
    'TimeOfDay',
    'PREFERRED_TIME_WINDOWS',
    'ConstraintValidationError',
    'TravelBuffer',
    'Constraints',
    'validate_constraints',
]
