"""
API Schemas

Pydantic models for API requests and responses.
Used for OpenAPI documentation and response validation.
"""

from typing import Optional, List, Dict, Any, Generic, TypeVar
from pydantic import BaseModel, Field

T = TypeVar('T')


# ============================================================================
# Base Response Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str = Field(..., description="Error message")

    model_config = {
        "json_schema_extra": {
            "example": {
                "detail": "Tracked file 123 not found"
            }
        }
    }


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response."""
    items: List[T] = Field(..., description="List of items")
    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    total_pages: int = Field(..., description="Total number of pages")


# ============================================================================
# Tracked Files
# ============================================================================

class TrackedFileResponse(BaseModel):
    """Response model for a tracked file."""
    id: int = Field(..., description="Unique identifier")
    source_file: str = Field(..., description="Path of the source media file")
    dest_file: Optional[str] = Field(None, description="Symlink created for it (Success only)")
    media_type: Optional[str] = Field(None, description="Movies, TvShows, Extras or Unknown")
    tmdb_id: Optional[int] = Field(None, description="TMDb id of the movie or show")
    imdb_id: Optional[str] = Field(None, description="IMDb id if available")
    season_number: Optional[int] = Field(None, description="Season number (episodes)")
    episode_number: Optional[int] = Field(None, description="Episode number (episodes)")
    episode_number2: Optional[int] = Field(None, description="Last episode of a multi-episode file")
    title: Optional[str] = Field(None, description="Movie title or show name")
    year: Optional[int] = Field(None, description="Release year")
    genres: List[str] = Field(default_factory=list, description="Genre names")
    status: str = Field(..., description="Working, Success, Failed or Duplicate")
    error_message: Optional[str] = Field(None, description="Why the file failed")
    created_at: Optional[str] = Field(None, description="Creation timestamp")
    updated_at: Optional[str] = Field(None, description="Last update timestamp")
    detection_version: int = Field(..., description="Version the result was produced with")
    target_detection_version: int = Field(..., description="Version the file should be evaluated against")
    version_outdated: bool = Field(False, description="Re-detection pending")

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": 1,
                "source_file": "/downloads/movies/Movie.Title.2020.1080p.BluRay.x264-GROUP.mkv",
                "dest_file": "/media/movies/Movie Title (2020)/Movie Title (2020).mkv",
                "media_type": "Movies",
                "tmdb_id": 12345,
                "imdb_id": "tt1234567",
                "season_number": None,
                "episode_number": None,
                "episode_number2": None,
                "title": "Movie Title",
                "year": 2020,
                "genres": ["Drama"],
                "status": "Success",
                "error_message": None,
                "created_at": "2026-01-24T10:00:00",
                "updated_at": "2026-01-24T10:00:02",
                "detection_version": 1,
                "target_detection_version": 1,
                "version_outdated": False
            }
        }
    }


class TrackedFileStatsResponse(BaseModel):
    """Counts of tracked files."""
    total: int = Field(..., description="Total tracked files")
    by_status: Dict[str, int] = Field(..., description="Count per status")
    by_media_type: Dict[str, int] = Field(..., description="Count per media type")


class ManualMatchRequest(BaseModel):
    """Operator-provided identification for a tracked file."""
    tmdb_id: int = Field(..., ge=1, description="TMDb id of the movie or show")
    season_number: Optional[int] = Field(None, ge=0, description="Season number (TV match)")
    episode_number: Optional[int] = Field(None, ge=0, description="Episode number (TV match)")
    episode_number2: Optional[int] = Field(None, ge=0, description="Last episode of a multi-episode file")


class RedetectResponse(BaseModel):
    """Result of a re-detection request."""
    scope: str = Field(..., description="failed or all")
    scheduled: int = Field(..., description="Rows scheduled for the next pass")


class DeleteTrackedFilesRequest(BaseModel):
    """Bulk delete body."""
    ids: List[int] = Field(..., min_length=1, max_length=1000, description="Tracked file ids")


class DeleteResponse(BaseModel):
    deleted: int = Field(..., description="Rows deleted (their links removed)")


class RecreateLinksResponse(BaseModel):
    success_count: int = Field(..., description="Files linked after the rebuild")


class LinkCleanupResponse(BaseModel):
    removed: int = Field(..., description="Dead links removed")
    message: str


class ReconcilerStatusResponse(BaseModel):
    """Reconciler worker status."""
    running: bool
    pass_count: int
    last_pass_started: Optional[str] = None
    last_pass_finished: Optional[str] = None
    last_pass_duration: Optional[float] = None
    last_error: Optional[str] = None
    active_files: int
    max_concurrent: int
    poll_interval: float
    detection_version: int
    redetect_scope: str
    mappings: List[Dict[str, Any]]
