"""
Media Identifier for Linkarr

Resolves a source file into a canonical MediaInfo:

    1. Parse the path into ParsedMovie / ParsedEpisode / Unparsed
    2. Query TMDb for the parsed title
    3. Pick the best candidate
         - movies: exact year match among results, else the first result
         - shows: the first result
    4. Fetch the full record (movie + external ids, or show + season + episode)

Every failure raises IdentificationError, which the reconciler records as a
Failed row. Provider errors are not retried here.
"""

import logging
from typing import Optional, Dict, Any, List

from linkarr.models.tracked_file import MediaType
from linkarr.schemas.media_info import MediaInfo, SeasonInfo, EpisodeInfo
from linkarr.services.exceptions import IdentificationError, ProviderAPIError
from linkarr.services.filename_parser import (
    FilenameParser, ParsedMovie, ParsedEpisode, Unparsed, get_filename_parser
)
from linkarr.services.tmdb_client import TMDbClient, get_tmdb_client

logger = logging.getLogger(__name__)


def _year_of(date_value: Optional[str]) -> Optional[int]:
    """Year from a TMDb "YYYY-MM-DD" date."""
    if date_value and len(date_value) >= 4 and date_value[:4].isdigit():
        return int(date_value[:4])
    return None


def pick_movie_candidate(results: List[Dict[str, Any]], year: Optional[int]) -> Optional[Dict[str, Any]]:
    """
    Choose a movie among search results.

    Prefers the first result released in the parsed year, else the first result.
    """
    if not results:
        return None
    if year:
        for result in results:
            if _year_of(result.get('release_date')) == year:
                return result
    return results[0]


def _episode_info(data: Dict[str, Any], default_number: Optional[int] = None) -> EpisodeInfo:
    return EpisodeInfo(
        episode_number=data.get('episode_number', default_number),
        name=data.get('name'),
        overview=data.get('overview'),
        still_path=data.get('still_path'),
        air_date=data.get('air_date'),
        tmdb_id=data.get('id'),
    )


def _genre_names(data: Dict[str, Any]) -> List[str]:
    return [g.get('name') for g in data.get('genres', []) if g.get('name')]


class MediaIdentifier:
    """
    Turns file paths into MediaInfo using a FilenameParser and a TMDbClient.

    Example:
        >>> identifier = MediaIdentifier()
        >>> info = await identifier.identify("/dl/Movie.Title.2020.1080p.mkv", MediaType.MOVIES)
        >>> info.title, info.year
        ('Movie Title', 2020)
    """

    def __init__(self, provider: Optional[TMDbClient] = None, parser: Optional[FilenameParser] = None):
        self.provider = provider or get_tmdb_client()
        self.parser = parser or get_filename_parser()

    async def identify(self, file_path: str, media_type_hint: MediaType = MediaType.UNKNOWN) -> MediaInfo:
        """
        Identify a source file.

        Args:
            file_path: Absolute source path
            media_type_hint: Media type of the folder mapping

        Returns:
            MediaInfo for a movie or an episode

        Raises:
            IdentificationError: No pattern matched, no provider match, or provider failure
        """
        parsed = self.parser.parse(file_path, media_type_hint)

        try:
            if isinstance(parsed, ParsedEpisode):
                return await self._identify_episode(parsed)
            if isinstance(parsed, ParsedMovie):
                return await self._identify_movie(parsed)
        except ProviderAPIError as e:
            raise IdentificationError(
                f"Provider lookup failed: {e}",
                media_type=MediaType.TV_SHOWS if isinstance(parsed, ParsedEpisode) else MediaType.MOVIES
            ) from e

        if isinstance(parsed, Unparsed):
            hint = media_type_hint if media_type_hint == MediaType.TV_SHOWS else MediaType.UNKNOWN
            raise IdentificationError(
                f"Filename did not match any media pattern: {file_path}",
                media_type=hint
            )
        raise IdentificationError(f"Unsupported parse result {parsed!r}", media_type=MediaType.UNKNOWN)

    async def identify_by_id(
        self,
        media_type: MediaType,
        tmdb_id: int,
        season_number: Optional[int] = None,
        episode_number: Optional[int] = None,
        episode_number2: Optional[int] = None
    ) -> MediaInfo:
        """
        Build MediaInfo from known provider ids (manual match).

        Raises:
            IdentificationError: Missing season/episode for a show, or provider failure
        """
        try:
            if media_type == MediaType.TV_SHOWS:
                if season_number is None or episode_number is None:
                    raise IdentificationError(
                        "Season and episode numbers are required for a TV match",
                        media_type=media_type
                    )
                show = await self.provider.get_show(tmdb_id)
                return await self._build_episode_info(show, season_number, episode_number, episode_number2)

            movie = await self.provider.get_movie(tmdb_id)
            return self._build_movie_info(movie)
        except ProviderAPIError as e:
            raise IdentificationError(f"Provider lookup failed: {e}", media_type=media_type) from e

    # ============================================================================
    # Movies
    # ============================================================================

    async def _identify_movie(self, parsed: ParsedMovie) -> MediaInfo:
        if not parsed.title:
            raise IdentificationError("No title could be extracted", media_type=MediaType.MOVIES)

        results = await self.provider.search_movie(parsed.title, parsed.year)
        if not results and parsed.year:
            # TMDb's year filter misses films whose local release year differs
            results = await self.provider.search_movie(parsed.title)

        candidate = pick_movie_candidate(results, parsed.year)
        if candidate is None:
            raise IdentificationError(
                f"No movie found for '{parsed.title}' ({parsed.year or 'no year'})",
                media_type=MediaType.MOVIES
            )

        movie = await self.provider.get_movie(candidate['id'])
        info = self._build_movie_info(movie)
        logger.info(f"✓ Identified movie: {info.title} ({info.year}) [tmdb={info.tmdb_id}]")
        return info

    def _build_movie_info(self, movie: Dict[str, Any]) -> MediaInfo:
        external_ids = movie.get('external_ids') or {}
        return MediaInfo(
            title=movie.get('title') or movie.get('original_title') or 'Unknown',
            year=_year_of(movie.get('release_date')),
            tmdb_id=movie.get('id'),
            imdb_id=movie.get('imdb_id') or external_ids.get('imdb_id'),
            media_type=MediaType.MOVIES,
            poster_path=movie.get('poster_path'),
            summary=movie.get('overview'),
            genres=_genre_names(movie),
        )

    # ============================================================================
    # TV episodes
    # ============================================================================

    async def _identify_episode(self, parsed: ParsedEpisode) -> MediaInfo:
        results = await self.provider.search_show(parsed.title)
        if not results:
            raise IdentificationError(f"No show found for '{parsed.title}'", media_type=MediaType.TV_SHOWS)

        show = await self.provider.get_show(results[0]['id'])
        info = await self._build_episode_info(show, parsed.season, parsed.episode, parsed.episode2)
        logger.info(
            f"✓ Identified episode: {info.title} S{info.season_number:02d}E{info.episode_number:02d} "
            f"[tmdb={info.tmdb_id}]"
        )
        return info

    async def _build_episode_info(
        self,
        show: Dict[str, Any],
        season_number: int,
        episode_number: int,
        episode_number2: Optional[int]
    ) -> MediaInfo:
        show_id = show['id']
        season = await self.provider.get_season(show_id, season_number)
        episode = await self.provider.get_episode(show_id, season_number, episode_number)

        season_info = SeasonInfo(
            season_number=season.get('season_number', season_number),
            name=season.get('name'),
            overview=season.get('overview'),
            poster_path=season.get('poster_path'),
            air_date=season.get('air_date'),
            episodes=[_episode_info(e) for e in season.get('episodes', []) if e.get('episode_number') is not None],
        )

        covered = {episode_number}
        if episode_number2:
            covered.update(range(episode_number, episode_number2 + 1))
        scanned = season_info.model_copy(update={
            'episodes': [e for e in season_info.episodes if e.episode_number in covered] or [_episode_info(episode, episode_number)]
        })

        # Catalog of the other seasons, without their episode lists
        seasons = [
            SeasonInfo(
                season_number=s.get('season_number'),
                name=s.get('name'),
                overview=s.get('overview'),
                poster_path=s.get('poster_path'),
                air_date=s.get('air_date'),
            )
            for s in show.get('seasons', [])
            if s.get('season_number') is not None and s.get('season_number') != season_number
        ]
        seasons.append(season_info)
        seasons.sort(key=lambda s: s.season_number)

        external_ids = show.get('external_ids') or {}
        return MediaInfo(
            title=show.get('name') or show.get('original_name') or 'Unknown',
            year=_year_of(show.get('first_air_date')),
            tmdb_id=show_id,
            imdb_id=external_ids.get('imdb_id'),
            media_type=MediaType.TV_SHOWS,
            season_number=season_number,
            episode_number=episode_number,
            episode_number2=episode_number2 if episode_number2 and episode_number2 > episode_number else None,
            episode_title=episode.get('name'),
            episode_tmdb_id=episode.get('id'),
            poster_path=show.get('poster_path'),
            summary=show.get('overview'),
            status=show.get('status'),
            genres=_genre_names(show),
            seasons=seasons,
            seasons_scanned=[scanned],
        )
