"""Dependency injection for FastAPI."""

from functools import lru_cache

from perftrace.api.services.recording_service import RecordingService
from perftrace.core.config import Config


@lru_cache
def get_recording_service() -> RecordingService:
    """Get singleton recording service instance.

    Returns:
        RecordingService instance
    """
    return RecordingService(Config.from_env())
