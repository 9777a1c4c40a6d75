"""
Shared Utility Functions for meetmatch

Provides clock-time and weekday arithmetic, timezone handling, error handling
decorators, response envelopes and serialization helpers used across the
matching engine and the HTTP layer.
"""

import asyncio
import logging
import math
from typing import Dict, Optional, Any
from datetime import datetime, timedelta, date, time, timezone
from dateutil import parser as date_parser
import pytz
import json
from functools import wraps
from enum import Enum
import traceback

# Configure module logger
logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

# Monday-first, matching datetime.weekday()
WEEKDAY_NAMES = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']
BUSINESS_DAYS = WEEKDAY_NAMES[:5]
WEEKEND_DAYS = WEEKDAY_NAMES[5:]

# =============================================================================
# Clock-time Utilities
# =============================================================================

def time_to_minutes(value: str) -> int:
    """Convert an "HH:MM" string to minutes from midnight ("24:00" -> 1440)"""
    hours, minutes = value.strip().split(':')
    total = int(hours) * 60 + int(minutes)
    if not 0 <= int(minutes) < 60 or not 0 <= total <= MINUTES_PER_DAY:
        raise ValueError(f"Invalid clock time: {value!r}")
    return total

def minutes_to_time(minutes: int) -> str:
    """Convert minutes from midnight to "HH:MM" format"""
    minutes = int(minutes)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"

def round_up_to_step(minutes: int, step: int = 30) -> int:
    """Round minutes up to the next multiple of step (no-op when aligned)"""
    return int(math.ceil(minutes / step) * step)

def weekday_name(target: date) -> str:
    """Lowercase weekday name for a date"""
    return WEEKDAY_NAMES[target.weekday()]

# =============================================================================
# Date and Time Utilities
# =============================================================================

def get_timezone(name: Optional[str]) -> pytz.BaseTzInfo:
    """Resolve a timezone name, falling back to UTC for unknown names"""
    try:
        return pytz.timezone(name or 'UTC')
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{name}', using UTC")
        return pytz.utc

def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 instant into an aware UTC datetime"""
    return ensure_utc(date_parser.isoparse(value))

def to_iso_utc(dt: datetime) -> str:
    """Format an instant as ISO-8601 UTC with a trailing Z"""
    formatted = ensure_utc(dt).isoformat()
    if formatted.endswith('+00:00'):
        return formatted[:-6] + 'Z'
    return formatted

def to_local(dt: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Convert an instant to local wall time in tz"""
    return ensure_utc(dt).astimezone(tz)

def local_datetime(day: date, minutes: int, tz: pytz.BaseTzInfo) -> datetime:
    """Aware datetime for a local day plus minutes from midnight (1440 rolls over)"""
    extra_days, minutes = divmod(int(minutes), MINUTES_PER_DAY)
    target_day = day + timedelta(days=extra_days)
    naive = datetime.combine(target_day, time(minutes // 60, minutes % 60))
    return tz.normalize(tz.localize(naive))

def minutes_of_day(dt: datetime, tz: pytz.BaseTzInfo) -> int:
    """Local clock minutes from midnight for an instant"""
    local = to_local(dt, tz)
    return local.hour * 60 + local.minute

def format_duration(minutes: int) -> str:
    """Format duration in minutes to human-readable string"""
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours = minutes // 60
    remaining_minutes = minutes % 60
    if remaining_minutes == 0:
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{hours} hour{'s' if hours != 1 else ''} and {remaining_minutes} minute{'s' if remaining_minutes != 1 else ''}"

def clean_text(text: Optional[str]) -> str:
    """Collapse whitespace and lowercase free text"""
    if not text:
        return ""
    return ' '.join(text.split()).lower()

# =============================================================================
# Error Handling and Logging
# =============================================================================

def safe_execute(func):
    """Decorator for safe function execution with error logging"""
    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
            return None

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
            return None

    if asyncio.iscoroutinefunction(func):
        return async_wrapper
    else:
        return sync_wrapper

def create_error_response(
    error_message: str,
    error_code: str = "GENERAL_ERROR",
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Create standardized error response"""
    return {
        "success": False,
        "error": {
            "message": error_message,
            "code": error_code,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    }

def create_success_response(
    data: Any = None,
    message: str = "Operation completed successfully"
) -> Dict[str, Any]:
    """Create standardized success response"""
    return {
        "success": True,
        "message": message,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

# =============================================================================
# JSON and Serialization Utilities
# =============================================================================

def json_default(obj: Any) -> Any:
    """json.dumps default hook for datetimes and enums"""
    if isinstance(obj, datetime):
        return to_iso_utc(obj)
    if isinstance(obj, (date, time)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

def safe_json_serialize(data: Any) -> str:
    """Safely serialize data to JSON with datetime handling"""
    try:
        return json.dumps(data, default=json_default, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.error(f"Error serializing to JSON: {str(e)}")
        return "{}"

# =============================================================================
# Performance Utilities
# =============================================================================

def measure_execution_time(func):
    """Decorator to measure function execution time"""
    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        start_time = datetime.now()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            execution_time = (datetime.now() - start_time).total_seconds()
            logger.error(f"{func.__name__} failed after {execution_time:.3f} seconds: {str(e)}")
            raise
        execution_time = (datetime.now() - start_time).total_seconds()
        logger.debug(f"{func.__name__} executed in {execution_time:.3f} seconds")
        return result

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        start_time = datetime.now()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            execution_time = (datetime.now() - start_time).total_seconds()
            logger.error(f"{func.__name__} failed after {execution_time:.3f} seconds: {str(e)}")
            raise
        execution_time = (datetime.now() - start_time).total_seconds()
        logger.debug(f"{func.__name__} executed in {execution_time:.3f} seconds")
        return result

    if asyncio.iscoroutinefunction(func):
        return async_wrapper
    else:
        return sync_wrapper

# =============================================================================
# Export all utility functions
# =============================================================================

__all__ = [
    # Clock-time utilities
    'MINUTES_PER_DAY',
    'WEEKDAY_NAMES',
    'BUSINESS_DAYS',
    'WEEKEND_DAYS',
    'time_to_minutes',
    'minutes_to_time',
    'round_up_to_step',
    'weekday_name',

    # Date/Time utilities
    'get_timezone',
    'ensure_utc',
    'parse_iso_datetime',
    'to_iso_utc',
    'to_local',
    'local_datetime',
    'minutes_of_day',
    'format_duration',
    'clean_text',

    # Error handling
    'safe_execute',
    'create_error_response',
    'create_success_response',

    # Serialization
    'json_default',
    'safe_json_serialize',

    # Performance
    'measure_execution_time',
]
