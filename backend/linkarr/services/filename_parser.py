"""
Filename Parser for Linkarr

Turns a source path into a structural guess before any provider lookup.

The result is one of three variants:
    ParsedEpisode  - show title + season/episode numbers (SxxEyy naming)
    ParsedMovie    - title + optional year
    Unparsed       - nothing usable was recognized

Selection:
    - TvShows mappings only accept episode naming
    - Movies mappings always produce a movie (the year is optional)
    - Extras/Unknown mappings try episode naming, then movie naming

When the filename itself carries no title (e.g. "S01E02.mkv" or an obfuscated
release name), the nearest meaningful parent folder name is used instead.

Patterns are configurable (MOVIE_PATTERN, TVSHOW_PATTERN,
TITLE_CLEANUP_PATTERN) and must keep the named groups used here:
title/year for movies, title/season/episode/episode2 for episodes.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional, Union

from linkarr.config import Config
from linkarr.models.tracked_file import MediaType

logger = logging.getLogger(__name__)

_SEASON_FOLDER_RE = re.compile(r'^(?:season|saison|series|s)[\s._\-]*\d{1,3}$', re.IGNORECASE)
_TRAILING_YEAR_RE = re.compile(r'^(?P<title>.*?)[\s._\-]*[\(\[]?(?P<year>(?:19|20)\d{2})[\)\]]?$')
_BRACKETS_RE = re.compile(r'\[[^\]]*\]|\{[^}]*\}')
_SEPARATORS_RE = re.compile(r'[._]+')
_SPACES_RE = re.compile(r'\s+')


@dataclass(frozen=True)
class ParsedMovie:
    title: str
    year: Optional[int] = None


@dataclass(frozen=True)
class ParsedEpisode:
    title: str
    season: int
    episode: int
    episode2: Optional[int] = None
    year: Optional[int] = None


@dataclass(frozen=True)
class Unparsed:
    title: str = ""


ParsedName = Union[ParsedMovie, ParsedEpisode, Unparsed]


class FilenameParser:
    """Regex-driven filename parser (see module docstring)."""

    def __init__(
        self,
        movie_pattern: Optional[str] = None,
        tvshow_pattern: Optional[str] = None,
        cleanup_pattern: Optional[str] = None
    ):
        self.movie_re = re.compile(movie_pattern or Config.MOVIE_PATTERN, re.IGNORECASE)
        self.tvshow_re = re.compile(tvshow_pattern or Config.TVSHOW_PATTERN, re.IGNORECASE)
        self.cleanup_re = re.compile(cleanup_pattern or Config.TITLE_CLEANUP_PATTERN)

    def clean_title(self, raw: str) -> str:
        """
        Remove release noise and normalize separators.

        "Movie.Title.1080p.BluRay.x264-GRP" -> "Movie Title"
        """
        if not raw:
            return ""
        title = self.cleanup_re.sub('', raw)
        title = _BRACKETS_RE.sub(' ', title)
        title = _SEPARATORS_RE.sub(' ', title)
        title = _SPACES_RE.sub(' ', title)
        return title.strip(' -')

    def parse(self, file_path: str, hint: MediaType = MediaType.UNKNOWN) -> ParsedName:
        """
        Parse a source path according to the mapping's media type hint.

        Args:
            file_path: Source file path
            hint: Media type of the folder mapping

        Returns:
            ParsedEpisode, ParsedMovie or Unparsed
        """
        path = PurePath(file_path)
        stem = path.stem

        if hint == MediaType.TV_SHOWS:
            return self._parse_episode(path) or Unparsed(self.clean_title(stem))

        if hint == MediaType.MOVIES:
            return self._parse_movie(path) or ParsedMovie(title=self._fallback_title(path))

        episode = self._parse_episode(path)
        if episode:
            return episode
        movie = self._parse_movie(path)
        if movie:
            return movie
        return Unparsed(self.clean_title(stem))

    def _parse_episode(self, path: PurePath) -> Optional[ParsedEpisode]:
        match = self.tvshow_re.search(path.stem)
        if not match:
            return None

        raw_title = self.clean_title(match.group('title') or '')
        if not raw_title:
            raw_title = self._folder_title(path)
        if not raw_title:
            return None

        title, year = raw_title, None
        year_match = _TRAILING_YEAR_RE.match(raw_title)
        if year_match and year_match.group('title'):
            title = year_match.group('title').strip(' -')
            year = int(year_match.group('year'))

        episode2 = match.groupdict().get('episode2')
        return ParsedEpisode(
            title=title,
            season=int(match.group('season')),
            episode=int(match.group('episode')),
            episode2=int(episode2) if episode2 else None,
            year=year,
        )

    def _parse_movie(self, path: PurePath) -> Optional[ParsedMovie]:
        for candidate in (path.stem, path.parent.name):
            if not candidate:
                continue
            match = self.movie_re.match(candidate)
            if match:
                title = self.clean_title(match.group('title'))
                if title:
                    return ParsedMovie(title=title, year=int(match.group('year')))
        return None

    def _folder_title(self, path: PurePath) -> str:
        """Nearest parent folder that is not a season folder, cleaned."""
        for parent in path.parents:
            name = parent.name
            if not name:
                break
            if _SEASON_FOLDER_RE.match(name.strip()):
                continue
            return self.clean_title(name)
        return ""

    def _fallback_title(self, path: PurePath) -> str:
        return self.clean_title(path.stem) or self._folder_title(path)


_filename_parser: Optional[FilenameParser] = None


def get_filename_parser() -> FilenameParser:
    """Get the global filename parser (patterns from configuration)."""
    global _filename_parser
    if _filename_parser is None:
        _filename_parser = FilenameParser()
    return _filename_parser


def parse_filename(file_path: str, hint: MediaType = MediaType.UNKNOWN) -> ParsedName:
    """Parse a path with the configured patterns."""
    return get_filename_parser().parse(file_path, hint)
