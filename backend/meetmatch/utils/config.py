"""
meetmatch Configuration Management
Handles environment variables, matching defaults, and service settings
"""

import os
from typing import Dict, Any
from dataclasses import dataclass
from pathlib import Path
import logging

import pytz

logger = logging.getLogger(__name__)

@dataclass
class MatchingConfig:
    """Matching engine defaults"""
    slot_step_minutes: int
    max_slots: int
    lookahead_days: int
    lead_time_minutes: int
    lookback_days: int
    travel_buffer_minutes: int
    default_duration: int
    match_timeout_seconds: float
    default_timezone: str
    max_lookahead_days: int = 90

    @classmethod
    def from_env(cls) -> 'MatchingConfig':
        return cls(
            slot_step_minutes=int(os.getenv('MATCH_SLOT_STEP_MINUTES', '30')),
            max_slots=int(os.getenv('MATCH_MAX_SLOTS', '10')),
            lookahead_days=int(os.getenv('MATCH_LOOKAHEAD_DAYS', '14')),
            lead_time_minutes=int(os.getenv('MATCH_LEAD_TIME_MINUTES', '120')),
            lookback_days=int(os.getenv('MATCH_LOOKBACK_DAYS', '60')),
            travel_buffer_minutes=int(os.getenv('MATCH_TRAVEL_BUFFER_MINUTES', '30')),
            default_duration=int(os.getenv('MATCH_DEFAULT_DURATION', '60')),
            match_timeout_seconds=float(os.getenv('MATCH_TIMEOUT_SECONDS', '10')),
            default_timezone=os.getenv('MATCH_DEFAULT_TIMEZONE', 'UTC'),
            max_lookahead_days=int(os.getenv('MATCH_MAX_LOOKAHEAD_DAYS', '90'))
        )

@dataclass
class CalendarSourceConfig:
    """External calendar source (events + declared availability)"""
    base_url: str
    timeout_seconds: float

    @classmethod
    def from_env(cls) -> 'CalendarSourceConfig':
        return cls(
            base_url=os.getenv('CALENDAR_SOURCE_URL', 'http://localhost:8080'),
            timeout_seconds=float(os.getenv('CALENDAR_SOURCE_TIMEOUT', '5'))
        )

@dataclass
class APIConfig:
    """FastAPI Application Configuration"""
    host: str
    port: int
    debug: bool
    cors_origins: list[str]
    log_level: str

    @classmethod
    def from_env(cls) -> 'APIConfig':
        return cls(
            host=os.getenv('API_HOST', '0.0.0.0'),
            port=int(os.getenv('API_PORT', '8000')),
            debug=os.getenv('DEBUG', 'False').lower() == 'true',
            cors_origins=os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(','),
            log_level=os.getenv('LOG_LEVEL', 'INFO')
        )

class Config:
    """Main Configuration Manager"""

    def __init__(self):
        self.load_environment()

        # Load all configuration sections
        self.matching = MatchingConfig.from_env()
        self.calendar_source = CalendarSourceConfig.from_env()
        self.api = APIConfig.from_env()

        self.validate_config()

    def load_environment(self) -> None:
        """Load environment variables from .env file if it exists"""
        env_path = Path(__file__).parent.parent.parent / 'config' / '.env'

        if env_path.exists():
            with open(env_path, 'r') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        os.environ.setdefault(key.strip(), value.strip())
            logger.info(f"Loaded environment from {env_path}")

    def validate_config(self) -> None:
        """Validate matching and service settings"""
        errors = []

        matching = self.matching
        for name in ('slot_step_minutes', 'max_slots', 'lookahead_days',
                     'lookback_days', 'default_duration', 'max_lookahead_days'):
            if getattr(matching, name) <= 0:
                errors.append(f"{name} must be positive")
        if matching.lookahead_days > matching.max_lookahead_days:
            errors.append("lookahead_days must not exceed max_lookahead_days")
        if matching.lead_time_minutes < 0:
            errors.append("lead_time_minutes must not be negative")
        if matching.travel_buffer_minutes < 0:
            errors.append("travel_buffer_minutes must not be negative")
        if matching.match_timeout_seconds <= 0:
            errors.append("match_timeout_seconds must be positive")
        if matching.default_timezone not in pytz.all_timezones_set:
            errors.append(f"Unknown timezone: {matching.default_timezone}")

        if self.calendar_source.timeout_seconds <= 0:
            errors.append("CALENDAR_SOURCE_TIMEOUT must be positive")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.debug("Configuration validation passed")

    def get_log_config(self) -> Dict[str, Any]:
        """Get logging configuration"""
        return {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'default': {
                    'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                },
            },
            'handlers': {
                'default': {
                    'formatter': 'default',
                    'class': 'logging.StreamHandler',
                    'stream': 'ext://sys.stdout',
                },
            },
            'root': {
                'level': self.api.log_level,
                'handlers': ['default'],
            },
        }

# Global configuration instance
config = Config()

# Export commonly used configurations
__all__ = [
    'config',
    'MatchingConfig',
    'CalendarSourceConfig',
    'APIConfig',
    'Config'
]
