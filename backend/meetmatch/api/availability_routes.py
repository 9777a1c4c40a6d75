"""
Availability Routes - meeting time matching endpoints

Thin HTTP layer over the matching service: validates request bodies with
pydantic, converts them into engine constraints and wraps results in the
standard success/error envelopes.
"""

import logging
from typing import List, Optional, Any
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..agent.constraints import Constraints, ConstraintValidationError, TimeOfDay
from ..agent.matching_service import MatchingService, MatchingTimeoutError
from ..agent.mutual_availability import AvailabilityPolicy, MultiUserAvailabilityRequest
from ..services.calendar_source import TimeWindow
from ..utils.helpers import create_error_response, create_success_response

logger = logging.getLogger(__name__)

# Request models
class TimeWindowPayload(BaseModel):
    """Local clock-time window"""
    start: str = Field(..., description="Start time, HH:MM")
    end: str = Field(..., description="End time, HH:MM (exclusive)")

class TravelBufferPayload(BaseModel):
    before: int = Field(0, description="Minutes reserved before the meeting")
    after: int = Field(0, description="Minutes reserved after the meeting")

class ConstraintsPayload(BaseModel):
    """Structured meeting constraints"""
    duration: int = Field(60, description="Meeting length in minutes")
    timeWindow: Optional[TimeWindowPayload] = None
    preferredTime: Optional[TimeOfDay] = None
    avoidDays: List[str] = Field(default_factory=list, description="Weekday names to skip")
    travelBuffer: Optional[TravelBufferPayload] = None
    startDate: Optional[str] = Field(None, description="ISO-8601 search start")
    endDate: Optional[str] = Field(None, description="ISO-8601 search end (exclusive)")
    location: Optional[str] = None

    def to_constraints(self) -> Constraints:
        return Constraints.from_dict(self.model_dump(mode="json", exclude_none=True))

class MutualAvailabilityPayload(BaseModel):
    """N-party availability search"""
    userIds: List[str] = Field(..., min_length=1, description="Participants to match")
    duration: int = Field(60, description="Meeting length in minutes")
    preferredTimeRange: Optional[TimeWindowPayload] = None
    preferredTime: Optional[TimeOfDay] = None
    excludeDays: List[str] = Field(default_factory=list)
    lookAheadDays: Optional[int] = None
    policy: AvailabilityPolicy = AvailabilityPolicy.REQUIRE_ALL
    requireAllUsers: Optional[bool] = Field(None, description="false relaxes the policy to any participant")

    def to_request(self) -> MultiUserAvailabilityRequest:
        policy = self.policy
        if self.requireAllUsers is False:
            policy = AvailabilityPolicy.ANY
        try:
            window = TimeWindow(self.preferredTimeRange.start, self.preferredTimeRange.end) \
                if self.preferredTimeRange else None
        except ValueError as e:
            raise ConstraintValidationError(f"Invalid preferredTimeRange: {str(e)}") from e

        return MultiUserAvailabilityRequest(
            duration=self.duration,
            time_window=window,
            preferred_time=self.preferredTime,
            exclude_days=[day.lower() for day in self.excludeDays],
            lookahead_days=self.lookAheadDays,
            policy=policy
        ).validate()

class CommonTimesPayload(BaseModel):
    user1Id: str = Field(..., min_length=1)
    user2Id: str = Field(..., min_length=1)
    constraints: ConstraintsPayload = Field(default_factory=ConstraintsPayload)

class CustomTimesPayload(BaseModel):
    user1Id: str = Field(..., min_length=1)
    user2Id: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1, description="Free-text scheduling request")

class ParsePayload(BaseModel):
    prompt: str = Field(..., description="Free-text scheduling request")

# Create router
availability_router = APIRouter()

# Dependency to get the matching service
async def get_matching_service(request: Request) -> MatchingService:
    """Get matching service instance from app state"""
    service = getattr(request.app.state, 'matching_service', None)
    if service is None:
        raise HTTPException(
            status_code=503,
            detail="Matching service not initialized"
        )
    return service

def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=create_error_response(message, code))

async def _run(operation: str, coroutine) -> Any:
    """Await a matching call and map engine errors onto HTTP responses"""
    try:
        return await coroutine
    except ConstraintValidationError as e:
        logger.warning(f"{operation} rejected: {str(e)}")
        return _error(400, str(e), "INVALID_CONSTRAINTS")
    except MatchingTimeoutError as e:
        return _error(504, str(e), "MATCH_TIMEOUT")
    except Exception as e:
        logger.error(f"{operation} failed: {str(e)}")
        return _error(500, f"{operation} failed", "MATCHING_ERROR")

@availability_router.post("/availability/mutual")
async def mutual_availability(
    payload: MutualAvailabilityPayload,
    service: MatchingService = Depends(get_matching_service)
):
    """Ranked mutual availability across any number of participants"""
    logger.info(f"Mutual availability requested for {len(payload.userIds)} users")
    try:
        match_request = payload.to_request()
    except ConstraintValidationError as e:
        return _error(400, str(e), "INVALID_CONSTRAINTS")

    result = await _run(
        "Mutual availability search",
        service.find_mutual_availability(payload.userIds, match_request)
    )
    if isinstance(result, JSONResponse):
        return result
    return create_success_response(result.to_dict(), result.message or "Mutual availability computed")

@availability_router.post("/find-common-times")
async def find_common_times(
    payload: CommonTimesPayload,
    service: MatchingService = Depends(get_matching_service)
):
    """Bookable times for two participants"""
    try:
        constraints = payload.constraints.to_constraints()
    except ConstraintValidationError as e:
        return _error(400, str(e), "INVALID_CONSTRAINTS")

    result = await _run(
        "Common times search",
        service.find_common_times(payload.user1Id, payload.user2Id, constraints)
    )
    if isinstance(result, JSONResponse):
        return result
    return create_success_response(result.to_dict(), f"Found {len(result.slots)} common times")

@availability_router.post("/custom-ai-times")
async def custom_times(
    payload: CustomTimesPayload,
    service: MatchingService = Depends(get_matching_service)
):
    """Parse a free-text request and return the top three labelled slots"""
    result = await _run(
        "Custom times search",
        service.custom_times(payload.user1Id, payload.user2Id, payload.prompt)
    )
    if isinstance(result, JSONResponse):
        return result
    return create_success_response(result, result['message'])

@availability_router.post("/constraints/parse")
async def parse_constraints(
    payload: ParsePayload,
    service: MatchingService = Depends(get_matching_service)
):
    """Structured constraints for a free-text request"""
    constraints = service.parser.parse(payload.prompt)
    return create_success_response(constraints.to_dict(), "Constraints parsed")

@availability_router.get("/users/{user_id}/insights")
async def user_insights(
    user_id: str,
    service: MatchingService = Depends(get_matching_service)
):
    """Working-hours analysis and calendar insights for one user"""
    result = await _run("Insights lookup", service.user_insights(user_id))
    if isinstance(result, JSONResponse):
        return result
    return create_success_response(result, result['summary'])

__all__ = ['availability_router', 'get_matching_service']
