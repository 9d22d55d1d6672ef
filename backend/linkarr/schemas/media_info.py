"""
Media Identification Schemas

Pydantic models describing what a source file was identified as. A MediaInfo is
produced by the media identifier, consumed by the symlink manager (to compute
the destination path) and by the tracking store (denormalized onto the row).
"""

from typing import Optional, List
from pydantic import BaseModel, Field

from linkarr.models.tracked_file import MediaType


class EpisodeInfo(BaseModel):
    """One episode of a season."""
    episode_number: int = Field(..., description="Episode number within the season")
    name: Optional[str] = Field(None, description="Episode title")
    overview: Optional[str] = None
    still_path: Optional[str] = None
    air_date: Optional[str] = None
    tmdb_id: Optional[int] = None


class SeasonInfo(BaseModel):
    """One season of a show with its episode catalog."""
    season_number: int = Field(..., description="Season number (0 for specials)")
    name: Optional[str] = None
    overview: Optional[str] = None
    poster_path: Optional[str] = None
    air_date: Optional[str] = None
    episodes: List[EpisodeInfo] = Field(default_factory=list)


class MediaInfo(BaseModel):
    """
    Canonical identification of a movie or a TV episode.

    Movie results carry title/year and provider ids. Episode results carry the
    show title, season/episode numbers (plus episode_number2 for multi-episode
    files), the episode title, the show's season catalog (seasons) and the part
    of it this file covers (seasons_scanned).
    """
    title: str = Field(..., description="Movie title or show name")
    year: Optional[int] = Field(None, description="Release year or first air year")
    tmdb_id: Optional[int] = None
    imdb_id: Optional[str] = None
    media_type: MediaType = MediaType.UNKNOWN
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    episode_number2: Optional[int] = Field(None, description="Last episode of a multi-episode file")
    episode_title: Optional[str] = None
    episode_tmdb_id: Optional[int] = None
    poster_path: Optional[str] = None
    summary: Optional[str] = None
    status: Optional[str] = Field(None, description="Provider lifecycle status (TV only)")
    genres: List[str] = Field(default_factory=list)
    seasons: List[SeasonInfo] = Field(default_factory=list)
    seasons_scanned: List[SeasonInfo] = Field(default_factory=list)

    @property
    def is_episode(self) -> bool:
        return self.media_type == MediaType.TV_SHOWS
