"""
meetmatch Matching Service - request orchestration

Fetches every participant's calendar concurrently, infers or applies their
working hours, and hands the in-memory result to the matching engine:
- N-party mutual availability with ranking and conflict analysis
- Two-party common times (pattern engine, or declared-hours fallback)
- Free-text requests parsed into constraints
"""

import asyncio
import logging
from typing import Dict, List, Optional, Any, Sequence, Tuple
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass, asdict
from functools import partial
from concurrent.futures import ThreadPoolExecutor

from .availability_insights import AvailabilityInsightsService
from .constraint_parser import ConstraintParser, KeywordConstraintParser
from .constraints import Constraints, validate_constraints
from .local_fallback import BookableSlot, LocalFallbackSearch
from .mutual_availability import (
    AvailabilityPolicy, MultiUserAvailabilityEngine, MultiUserAvailabilityRequest,
    MutualAvailabilityResult, ParticipantProfile
)
from .working_hours import WorkingHoursAnalysis, WorkingHoursDetector, generate_summary
from ..services.calendar_source import CalendarSource, HttpCalendarSource, ParticipantCalendar
from ..utils.config import config, MatchingConfig
from ..utils.helpers import (
    get_timezone, to_local, format_duration, measure_execution_time, safe_execute, safe_json_serialize
)

logger = logging.getLogger(__name__)

class MatchingTimeoutError(Exception):
    """A matching request exceeded its time limit"""

@dataclass
class LoadedParticipant:
    """Fetched calendar plus the analysis derived from it"""
    calendar: ParticipantCalendar
    analysis: WorkingHoursAnalysis
    profile: ParticipantProfile
    degraded: bool = False

    @property
    def has_history(self) -> bool:
        return self.analysis.metadata.total_bookings > 0

@dataclass
class CommonTimesResult:
    slots: List[BookableSlot]
    timezone: str
    method: str  # pattern or fallback

    def to_dict(self) -> Dict[str, Any]:
        return {
            'slots': [slot.to_dict() for slot in self.slots],
            'timezone': self.timezone,
            'method': self.method
        }

def format_slot_label(start: datetime, end: datetime, tz=None) -> str:
    """e.g. "Mon, Oct 20 10:00 AM - 11:00 AM" in the given timezone"""
    local_tz = get_timezone(tz or config.matching.default_timezone)
    local_start = to_local(start, local_tz)
    local_end = to_local(end, local_tz)

    def clock(value: datetime) -> str:
        hour = value.hour % 12 or 12
        return f"{hour}:{value.minute:02d} {'AM' if value.hour < 12 else 'PM'}"

    return f"{local_start.strftime('%a, %b')} {local_start.day} {clock(local_start)} - {clock(local_end)}"

def generate_response_message(slots: Sequence[Any], constraints: Constraints) -> str:
    """Summary sentence describing what was searched for"""
    if not slots:
        return ("I couldn't find any available slots matching your criteria. "
                "Would you like to try different constraints?")

    message = "I found these available times"
    if constraints.preferred_time:
        message += f" in the {constraints.preferred_time.value}"
    if constraints.time_window:
        message += f" between {constraints.time_window.start} and {constraints.time_window.end}"
    if constraints.avoid_days:
        message += f" (avoiding {', '.join(constraints.avoid_days)})"
    if constraints.duration != 60:
        message += f" for {format_duration(constraints.duration)}"
    if constraints.location:
        message += f" near {constraints.location}"
    return message + ':'

class MatchingService:
    """
    Main matching orchestrator

    Owns the calendar source and the engine components. All I/O happens in
    the fetch phase; matching itself runs only after every fetch resolved.
    """

    def __init__(
        self,
        source: Optional[CalendarSource] = None,
        matching_config: Optional[MatchingConfig] = None,
        parser: Optional[ConstraintParser] = None
    ):
        self.config = matching_config or config.matching
        self.source = source or HttpCalendarSource()
        self.parser = parser or KeywordConstraintParser(self.config)

        self.detector = WorkingHoursDetector(self.config)
        self.engine = MultiUserAvailabilityEngine(self.config)
        self.fallback = LocalFallbackSearch(self.config, self.engine.grid_generator)
        self.insights = AvailabilityInsightsService()
        self.executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="meetmatch")

        logger.info(f"Matching service initialized with {type(self.source).__name__}")

    async def initialize(self) -> bool:
        """Open source connections; returns False if that fails"""
        try:
            initialize = getattr(self.source, 'initialize', None)
            if initialize is not None:
                await initialize()
            return True
        except Exception as e:
            logger.error(f"Matching service initialization failed: {str(e)}")
            return False

    @safe_execute
    async def cleanup(self) -> None:
        """Cleanup service resources"""
        # Matching still running past its time limit is not waited for
        self.executor.shutdown(wait=False)
        cleanup = getattr(self.source, 'cleanup', None)
        if cleanup is not None:
            await cleanup()
        logger.info("Matching service cleanup completed")

    # =========================================================================
    # Participant loading
    # =========================================================================

    def _fetch_until(
        self,
        now: datetime,
        horizon_start: Optional[datetime] = None,
        lookahead_days: Optional[int] = None
    ) -> datetime:
        """End of the event fetch window, covering the whole search horizon"""
        anchor = max(now, horizon_start) if horizon_start else now
        return anchor + timedelta(days=(lookahead_days or self.config.lookahead_days) + 1)

    def _build_participant(
        self,
        calendar: ParticipantCalendar,
        now: datetime,
        degraded: bool = False
    ) -> LoadedParticipant:
        if degraded:
            analysis = self.detector.default_analysis(now - timedelta(days=self.config.lookback_days), now)
        else:
            analysis = self.detector.analyze(calendar.events, self.config.lookback_days, now, calendar.timezone)

        availability = self.detector.to_user_availability(
            analysis, calendar.user_id, calendar.timezone, declared=calendar.availability
        )
        return LoadedParticipant(
            calendar=calendar,
            analysis=analysis,
            profile=ParticipantProfile(
                calendar.user_id,
                list(calendar.events),
                availability,
                history=[e for e in calendar.events if e.start_time <= now]
            ),
            degraded=degraded
        )

    async def load_participants(
        self,
        user_ids: Sequence[str],
        now: Optional[datetime] = None,
        until: Optional[datetime] = None
    ) -> List[LoadedParticipant]:
        """
        Fetch all participants concurrently

        A failed fetch never aborts the request: that participant gets the
        default working-hours pattern and no known events.
        """
        now = now or datetime.now(timezone.utc)
        start = now - timedelta(days=self.config.lookback_days)
        end = until or self._fetch_until(now)

        results = await asyncio.gather(
            *(self.source.get_participant(user_id, start, end) for user_id in user_ids),
            return_exceptions=True
        )

        participants = []
        for user_id, result in zip(user_ids, results):
            if isinstance(result, Exception):
                logger.warning(f"Calendar fetch failed for {user_id}, using default pattern: {str(result)}")
                fallback = ParticipantCalendar(user_id=user_id, timezone=self.config.default_timezone)
                participants.append(self._build_participant(fallback, now, degraded=True))
            else:
                participants.append(self._build_participant(result, now))

        logger.info(
            f"Loaded {len(participants)} participants "
            f"({sum(1 for p in participants if p.degraded)} degraded)"
        )
        return participants

    async def _time_boxed(self, coroutine, operation: str):
        try:
            return await asyncio.wait_for(coroutine, timeout=self.config.match_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"{operation} exceeded {self.config.match_timeout_seconds}s")
            raise MatchingTimeoutError(
                f"{operation} did not complete within {self.config.match_timeout_seconds} seconds"
            ) from None

    async def _run_sync(self, func, *args, **kwargs):
        """Run synchronous matching work in the thread pool so the time limit can fire"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args, **kwargs))

    # =========================================================================
    # Matching operations
    # =========================================================================

    @measure_execution_time
    async def find_mutual_availability(
        self,
        user_ids: Sequence[str],
        request: MultiUserAvailabilityRequest,
        now: Optional[datetime] = None
    ) -> MutualAvailabilityResult:
        """Ranked mutual availability for any number of participants"""
        now = now or datetime.now(timezone.utc)
        request.validate(self.config.max_lookahead_days, now)
        logger.debug(f"Mutual availability request: {safe_json_serialize(asdict(request))}")

        async def run() -> MutualAvailabilityResult:
            until = self._fetch_until(now, request.horizon_start, request.lookahead_days)
            if request.horizon_end:
                until = max(until, request.horizon_end)
            participants = await self.load_participants(user_ids, now, until)
            profiles = [p.profile for p in participants]
            tz = participants[0].calendar.timezone if participants else None
            return await self._run_sync(self.engine.find_mutual_availability, profiles, request, now, tz)

        return await self._time_boxed(run(), "Mutual availability search")

    @measure_execution_time
    async def find_common_times(
        self,
        user1_id: str,
        user2_id: str,
        constraints: Constraints,
        now: Optional[datetime] = None
    ) -> CommonTimesResult:
        """
        Bookable times for two people

        Uses the pattern engine when both have calendar history, otherwise
        intersects their declared weekly availability.
        """
        validate_constraints(constraints, self.config.max_lookahead_days)
        now = now or datetime.now(timezone.utc)

        async def run() -> CommonTimesResult:
            until = max(self._fetch_until(now), constraints.end_date or now)
            participants = await self.load_participants([user1_id, user2_id], now, until)
            return await self._match_pair(participants, constraints, now)

        return await self._time_boxed(run(), "Common times search")

    async def _match_pair(
        self,
        participants: Sequence[LoadedParticipant],
        constraints: Constraints,
        now: datetime
    ) -> CommonTimesResult:
        tz = participants[0].calendar.timezone

        if all(p.has_history for p in participants):
            slots = await self._run_sync(self._pattern_slots, participants, constraints, now, tz)
            method = "pattern"
        else:
            slots = await self._run_sync(
                self.fallback.find_common_times,
                participants[0].calendar.availability,
                participants[1].calendar.availability,
                constraints, now, tz
            )
            method = "fallback"

        user_ids = ' and '.join(p.calendar.user_id for p in participants)
        logger.info(f"Common times for {user_ids}: {len(slots)} slots via {method}")
        return CommonTimesResult(slots=slots, timezone=tz, method=method)

    def _pattern_slots(
        self,
        participants: Sequence[LoadedParticipant],
        constraints: Constraints,
        now: datetime,
        tz: str
    ) -> List[BookableSlot]:
        request = MultiUserAvailabilityRequest.from_constraints(constraints, AvailabilityPolicy.REQUIRE_ALL)
        result = self.engine.find_mutual_availability([p.profile for p in participants], request, now, tz)

        before = constraints.travel_buffer.before if constraints.travel_buffer else 0
        slots = []
        for scored in result.ranked_slots[:self.config.max_slots]:
            start = scored.start + timedelta(minutes=before)
            slots.append(BookableSlot(start, start + timedelta(minutes=constraints.duration)))
        return slots

    async def custom_times(
        self,
        user1_id: str,
        user2_id: str,
        prompt: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Parse a free-text request and return the top three labelled slots

        Relative dates ("tomorrow", "next week") are read in the first
        participant's timezone.
        """
        now = now or datetime.now(timezone.utc)

        async def run() -> Tuple[Constraints, CommonTimesResult]:
            # Parsed ranges end within two weeks, inside the default fetch window
            participants = await self.load_participants([user1_id, user2_id], now)
            constraints = self.parser.parse(prompt, now, participants[0].calendar.timezone)
            validate_constraints(constraints, self.config.max_lookahead_days)
            logger.info(f"Custom times for {user1_id} and {user2_id}: {safe_json_serialize(constraints.to_dict())}")
            return constraints, await self._match_pair(participants, constraints, now)

        constraints, common = await self._time_boxed(run(), "Custom times search")
        slots = [
            {**slot.to_dict(), 'label': format_slot_label(slot.start, slot.end, common.timezone)}
            for slot in common.slots[:3]
        ]

        return {
            'message': generate_response_message(slots, constraints),
            'slots': slots,
            'constraints': constraints.to_dict()
        }

    async def user_insights(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Working-hours analysis, suggestions and calendar insights for one user"""
        now = now or datetime.now(timezone.utc)
        participant = (await self.load_participants([user_id], now))[0]
        history = [e for e in participant.calendar.events if e.start_time <= now]

        return {
            'userId': user_id,
            'timezone': participant.calendar.timezone,
            'workingHours': participant.analysis.to_dict(),
            'summary': generate_summary(participant.analysis),
            'suggestedTimes': self.detector.suggest_optimal_meeting_times(
                participant.analysis, self.config.default_duration
            ),
            'insights': self.insights.infer(history, participant.calendar.timezone).to_dict(),
            'degraded': participant.degraded
        }

__all__ = [
    'MatchingService',
    'MatchingTimeoutError',
    'LoadedParticipant',
    'CommonTimesResult',
    'format_slot_label',
    'generate_response_message',
]
