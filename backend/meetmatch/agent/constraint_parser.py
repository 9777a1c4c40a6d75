"""
Constraint Parser - free text to structured meeting constraints

Best-effort keyword matching at the request boundary. Anything the parser
does not recognise simply yields fewer constraints; parsing never fails.
"""

import re
import logging
from typing import List, Optional, Protocol, Tuple
from datetime import datetime, timedelta, timezone

from .constraints import Constraints, TimeOfDay, TravelBuffer
from ..services.calendar_source import TimeWindow
from ..utils.config import config, MatchingConfig
from ..utils.helpers import WEEKDAY_NAMES, get_timezone, local_datetime, to_local, clean_text

logger = logging.getLogger(__name__)

class ConstraintParser(Protocol):
    """Anything that turns a request string into Constraints"""

    def parse(self, text: str, now: Optional[datetime] = None, tz=None) -> Constraints:
        ...

_DAY_PATTERNS = [
    ('monday', r'\b(?:monday|mon)s?\b'),
    ('tuesday', r'\b(?:tuesday|tues|tue)s?\b'),
    ('wednesday', r'\b(?:wednesday|wed)s?\b'),
    ('thursday', r'\b(?:thursday|thurs|thur|thu)s?\b'),
    ('friday', r'\b(?:friday|fri)s?\b'),
    ('saturday', r'\b(?:saturday|sat)s?\b'),
    ('sunday', r'\b(?:sunday|sun)s?\b'),
]

# Checked in order; the first matching rule sets the duration
_DURATION_RULES: List[Tuple[int, List[str]]] = [
    (90, [r'\b90\s*min', r'\b1\.5\s*h']),
    (120, [r'\b2\s*h(?:ours?|rs?)?\b']),
    (30, [r'\b30\s*min', r'\b30\s*m\b']),
    (60, [r'\b60\s*min', r'\b1\s*h(?:ours?|rs?)?\b', r'\bhour\b']),
]

_TIME_RANGE = re.compile(
    r'between\s+(\d{1,2})(?::(\d{2}))?\s*(?:-|to\b|and\b)\s*(\d{1,2})(?::(\d{2}))?'
)

_LOCATIONS = [
    ('SOMA', r'\bsoma\b'),
    ('Mission', r'\bmission\b'),
    ('Financial District', r'\bfinancial district\b|\bfidi\b'),
]

_IN_PERSON_CUES = r'\bin person\b|\bin-person\b|\bmeet up\b|\bcoffee\b|\blunch\b|\bdinner\b'

class KeywordConstraintParser:
    """Deterministic, case-insensitive keyword parser"""

    def __init__(self, matching_config: Optional[MatchingConfig] = None):
        self.config = matching_config or config.matching

    def parse(self, text: str, now: Optional[datetime] = None, tz=None) -> Constraints:
        """
        Parse a free-text request

        Args:
            text: Request such as "30 min next week, avoid fridays"
            now: Reference instant for relative dates
            tz: Timezone name for relative dates

        Returns:
            Constraints with a 60-minute default duration
        """
        prompt = clean_text(text)
        constraints = Constraints(duration=self.parse_duration(prompt))

        constraints.preferred_time = self.parse_preferred_time(prompt)
        constraints.avoid_days = self.parse_avoid_days(prompt)
        constraints.time_window = self.parse_time_window(prompt)

        date_range = self.parse_date_range(prompt, now or datetime.now(timezone.utc), tz)
        if date_range:
            constraints.start_date, constraints.end_date = date_range

        location = self.parse_location(prompt)
        if location or re.search(_IN_PERSON_CUES, prompt):
            buffer = self.config.travel_buffer_minutes
            constraints.travel_buffer = TravelBuffer(before=buffer, after=buffer)
            constraints.location = location

        logger.debug(f"Parsed constraints {constraints.to_dict()} from '{prompt}'")
        return constraints

    def parse_preferred_time(self, prompt: str) -> Optional[TimeOfDay]:
        for time_of_day in TimeOfDay:
            if time_of_day.value in prompt:
                return time_of_day
        return None

    def parse_avoid_days(self, prompt: str) -> List[str]:
        """Weekdays named after the word "avoid", Monday first"""
        match = re.search(r'\bavoid\w*\b(.*)', prompt)
        if not match:
            return []

        clause = match.group(1)
        avoid = {day for day, pattern in _DAY_PATTERNS if re.search(pattern, clause)}
        if re.search(r'\bweekends?\b', clause):
            avoid.update(('saturday', 'sunday'))
        return [day for day in WEEKDAY_NAMES if day in avoid]

    def parse_duration(self, prompt: str) -> int:
        for minutes, patterns in _DURATION_RULES:
            if any(re.search(pattern, prompt) for pattern in patterns):
                return minutes
        return self.config.default_duration

    def parse_time_window(self, prompt: str) -> Optional[TimeWindow]:
        match = _TIME_RANGE.search(prompt)
        if not match:
            return None

        start_hour, start_minute, end_hour, end_minute = match.groups()
        start = int(start_hour) * 60 + int(start_minute or 0)
        end = int(end_hour) * 60 + int(end_minute or 0)

        if int(start_minute or 0) >= 60 or int(end_minute or 0) >= 60 or not 0 <= start < end <= 24 * 60:
            logger.debug(f"Ignoring invalid time range '{match.group(0)}'")
            return None
        return TimeWindow.from_minutes(start, end)

    def parse_date_range(self, prompt: str, now: datetime, tz=None) -> Optional[Tuple[datetime, datetime]]:
        """Relative date anchors; later anchors override earlier ones"""
        local_tz = get_timezone(tz or self.config.default_timezone)
        today = to_local(now, local_tz).date()
        date_range = None

        if 'next week' in prompt:
            start = local_datetime(today + timedelta(days=7), 0, local_tz)
            date_range = (start, local_datetime(today + timedelta(days=14), 0, local_tz))

        if 'this week' in prompt:
            next_monday = today + timedelta(days=7 - today.weekday())
            date_range = (now, local_datetime(next_monday, 0, local_tz))

        if 'tomorrow' in prompt:
            tomorrow = today + timedelta(days=1)
            date_range = (
                local_datetime(tomorrow, 0, local_tz),
                local_datetime(tomorrow + timedelta(days=1), 0, local_tz)
            )

        return date_range

    def parse_location(self, prompt: str) -> Optional[str]:
        for name, pattern in _LOCATIONS:
            if re.search(pattern, prompt):
                return name
        return None

__all__ = ['ConstraintParser', 'KeywordConstraintParser']
