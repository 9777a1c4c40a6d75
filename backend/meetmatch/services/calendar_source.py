"""
Calendar Source - Participant events and declared availability

Provider-agnostic access to the data the matching engine consumes: a list of
busy calendar events per participant and, optionally, their declared weekly
availability. Concrete sources are an in-memory source and an HTTP source
backed by aiohttp.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Any, Tuple
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urljoin

import aiohttp

from ..utils.config import config, CalendarSourceConfig
from ..utils.helpers import (
    WEEKDAY_NAMES, WEEKEND_DAYS, time_to_minutes, minutes_to_time,
    parse_iso_datetime, to_iso_utc, ensure_utc
)

logger = logging.getLogger(__name__)

class EventCategory(Enum):
    """Calendar event categories"""
    MEETING = "meeting"
    FOCUS = "focus"
    BREAK = "break"
    OTHER = "other"

_CATEGORY_KEYWORDS = [
    (EventCategory.MEETING, ('meeting', 'call', 'sync')),
    (EventCategory.FOCUS, ('focus', 'deep work', 'coding')),
    (EventCategory.BREAK, ('lunch', 'break', 'coffee')),
]

def categorize_event(title: Optional[str]) -> EventCategory:
    """Derive an event category from its title"""
    lower_title = (title or '').lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lower_title for keyword in keywords):
            return category
    return EventCategory.OTHER

class CalendarSourceError(Exception):
    """Raised when a participant's calendar data cannot be fetched"""

@dataclass(frozen=True)
class CalendarEvent:
    """Calendar event data structure"""
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    attendees: Tuple[str, ...] = ()
    category: EventCategory = EventCategory.OTHER
    source: str = "unknown"
    location: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self):
        if self.end_time <= self.start_time:
            raise ValueError(f"Event {self.id} ends before it starts")

    @property
    def duration_minutes(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 60

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval overlap with [start, end)"""
        return start < self.end_time and end > self.start_time

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "unknown") -> 'CalendarEvent':
        title = data.get('title') or data.get('summary') or 'Meeting'
        category = data.get('type') or data.get('category')
        return cls(
            id=str(data.get('id', '')),
            title=title,
            start_time=parse_iso_datetime(data.get('startTime') or data['start_time']),
            end_time=parse_iso_datetime(data.get('endTime') or data['end_time']),
            attendees=tuple(data.get('attendees') or ()),
            category=EventCategory(category) if category else categorize_event(title),
            source=data.get('source', source),
            location=data.get('location'),
            description=data.get('description')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'start_time': to_iso_utc(self.start_time),
            'end_time': to_iso_utc(self.end_time),
            'attendees': list(self.attendees),
            'category': self.category.value,
            'source': self.source,
            'location': self.location,
            'description': self.description
        }

@dataclass(frozen=True)
class TimeWindow:
    """Local clock-time window, "HH:MM" to "HH:MM" (end exclusive)"""
    start: str
    end: str

    def __post_init__(self):
        if self.start_minutes >= self.end_minutes:
            raise ValueError(f"Time window start {self.start} must precede end {self.end}")

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end)

    @property
    def width_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    def intersect(self, other: 'TimeWindow') -> Optional['TimeWindow']:
        """Overlap of two windows, or None when they only touch or are disjoint"""
        overlap_start = max(self.start_minutes, other.start_minutes)
        overlap_end = min(self.end_minutes, other.end_minutes)
        if overlap_start < overlap_end:
            return TimeWindow(minutes_to_time(overlap_start), minutes_to_time(overlap_end))
        return None

    @classmethod
    def from_minutes(cls, start: int, end: int) -> 'TimeWindow':
        return cls(minutes_to_time(start), minutes_to_time(end))

    def to_dict(self) -> Dict[str, str]:
        return {'start': self.start, 'end': self.end}

DEFAULT_WORK_WINDOW = TimeWindow('09:00', '17:00')

@dataclass
class WeeklyAvailability:
    """
    Declared schedulable hours per weekday

    Windows per day are sorted by start and must not overlap; an empty or
    missing day means unavailable that day.
    """
    windows: Dict[str, List[TimeWindow]] = field(default_factory=dict)

    def __post_init__(self):
        normalized: Dict[str, List[TimeWindow]] = {}
        for day, day_windows in self.windows.items():
            key = day.lower()
            if key not in WEEKDAY_NAMES:
                raise ValueError(f"Unknown weekday: {day}")
            ordered = sorted(day_windows, key=lambda w: w.start_minutes)
            for previous, current in zip(ordered, ordered[1:]):
                if current.start_minutes < previous.end_minutes:
                    raise ValueError(f"Overlapping windows on {key}: {previous} and {current}")
            normalized[key] = ordered
        self.windows = normalized

    def windows_for(self, day: str) -> List[TimeWindow]:
        return list(self.windows.get(day.lower(), []))

    def has_windows(self, day: str) -> bool:
        return bool(self.windows.get(day.lower()))

    def declares_weekend(self) -> bool:
        return any(self.has_windows(day) for day in WEEKEND_DAYS)

    @classmethod
    def business_hours(cls) -> 'WeeklyAvailability':
        """Monday-Friday 09:00-17:00"""
        return cls({day: [DEFAULT_WORK_WINDOW] for day in WEEKDAY_NAMES[:5]})

    @classmethod
    def from_dict(cls, data: Dict[str, List[Dict[str, str]]]) -> 'WeeklyAvailability':
        return cls({
            day: [TimeWindow(w['start'], w['end']) for w in (windows or [])]
            for day, windows in data.items()
        })

    def to_dict(self) -> Dict[str, List[Dict[str, str]]]:
        return {day: [w.to_dict() for w in windows] for day, windows in self.windows.items()}

@dataclass
class ParticipantCalendar:
    """Everything the engine knows about one participant for a request"""
    user_id: str
    events: List[CalendarEvent] = field(default_factory=list)
    availability: Optional[WeeklyAvailability] = None
    timezone: str = "UTC"

class CalendarSource:
    """Interface for fetching participant calendar data"""

    async def get_events(self, user_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        raise NotImplementedError

    async def get_weekly_availability(self, user_id: str) -> Optional[WeeklyAvailability]:
        return None

    async def get_timezone(self, user_id: str) -> str:
        return config.matching.default_timezone

    async def get_participant(self, user_id: str, start: datetime, end: datetime) -> ParticipantCalendar:
        """Fetch events, availability and timezone concurrently"""
        events, availability, tz_name = await asyncio.gather(
            self.get_events(user_id, start, end),
            self.get_weekly_availability(user_id),
            self.get_timezone(user_id)
        )
        return ParticipantCalendar(
            user_id=user_id,
            events=events,
            availability=availability,
            timezone=tz_name
        )

class InMemoryCalendarSource(CalendarSource):
    """Calendar source over participant data already held in memory"""

    def __init__(self, participants: Optional[Dict[str, ParticipantCalendar]] = None):
        self.participants: Dict[str, ParticipantCalendar] = dict(participants or {})

    def add(self, participant: ParticipantCalendar) -> None:
        self.participants[participant.user_id] = participant

    def _lookup(self, user_id: str) -> ParticipantCalendar:
        try:
            return self.participants[user_id]
        except KeyError:
            raise CalendarSourceError(f"Unknown participant: {user_id}") from None

    async def get_events(self, user_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        participant = self._lookup(user_id)
        start, end = ensure_utc(start), ensure_utc(end)
        return [e for e in participant.events if e.overlaps(start, end)]

    async def get_weekly_availability(self, user_id: str) -> Optional[WeeklyAvailability]:
        return self._lookup(user_id).availability

    async def get_timezone(self, user_id: str) -> str:
        return self._lookup(user_id).timezone

class HttpCalendarSource(CalendarSource):
    """
    Calendar source backed by an HTTP service

    Expects ``GET /users/{id}/events?from=&to=`` returning ``{"events": [...]}``
    and ``GET /users/{id}/availability`` returning
    ``{"timezone": ..., "schedulableHours": {...}}`` (404 when undeclared).
    """

    def __init__(self, source_config: Optional[CalendarSourceConfig] = None):
        self.config = source_config or config.calendar_source
        self.session: Optional[aiohttp.ClientSession] = None
        self._profiles: Dict[str, Dict[str, Any]] = {}

    async def initialize(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
                headers={"Content-Type": "application/json"}
            )
            logger.info(f"Calendar source session opened for {self.config.base_url}")

    async def cleanup(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None
            logger.info("Calendar source session closed")

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Optional[Dict[str, Any]]:
        await self.initialize()
        url = urljoin(self.config.base_url, path)
        try:
            async with self.session.get(url, params=params) as response:
                if response.status == 404:
                    return None
                if response.status != 200:
                    raise CalendarSourceError(f"GET {path} failed with status {response.status}")
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CalendarSourceError(f"GET {path} failed: {str(e)}") from e

    async def get_events(self, user_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        payload = await self._get_json(
            f"/users/{user_id}/events",
            params={'from': to_iso_utc(start), 'to': to_iso_utc(end)}
        )
        if payload is None:
            raise CalendarSourceError(f"No calendar found for {user_id}")
        try:
            events = [CalendarEvent.from_dict(item) for item in payload.get('events', [])]
        except (KeyError, ValueError) as e:
            raise CalendarSourceError(f"Malformed event payload for {user_id}: {str(e)}") from e
        logger.info(f"Retrieved {len(events)} events for {user_id}")
        return events

    async def _profile(self, user_id: str) -> Dict[str, Any]:
        if user_id not in self._profiles:
            self._profiles[user_id] = await self._get_json(f"/users/{user_id}/availability") or {}
        return self._profiles[user_id]

    async def get_weekly_availability(self, user_id: str) -> Optional[WeeklyAvailability]:
        profile = await self._profile(user_id)
        hours = profile.get('schedulableHours')
        if not hours:
            return None
        try:
            return WeeklyAvailability.from_dict(hours)
        except (KeyError, ValueError) as e:
            raise CalendarSourceError(f"Malformed availability for {user_id}: {str(e)}") from e

    async def get_timezone(self, user_id: str) -> str:
        profile = await self._profile(user_id)
        return profile.get('timezone') or config.matching.default_timezone

__all__ = [
    'EventCategory',
    'categorize_event',
    'CalendarSourceError',
    'CalendarEvent',
    'TimeWindow',
    'DEFAULT_WORK_WINDOW',
    'WeeklyAvailability',
    'ParticipantCalendar',
    'CalendarSource',
    'InMemoryCalendarSource',
    'HttpCalendarSource',
]
