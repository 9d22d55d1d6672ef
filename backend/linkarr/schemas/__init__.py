"""
Schemas Package

Pydantic models for identification results and API payloads.
"""

from linkarr.schemas.media_info import MediaInfo, SeasonInfo, EpisodeInfo
from linkarr.schemas.responses import (
    ErrorResponse,
    PaginatedResponse,
    TrackedFileResponse,
    TrackedFileStatsResponse,
    ManualMatchRequest,
    RedetectResponse,
    ReconcilerStatusResponse,
)

__all__ = [
    # Identification
    'MediaInfo',
    'SeasonInfo',
    'EpisodeInfo',
    # API
    'ErrorResponse',
    'PaginatedResponse',
    'TrackedFileResponse',
    'TrackedFileStatsResponse',
    'ManualMatchRequest',
    'RedetectResponse',
    'ReconcilerStatusResponse',
]
