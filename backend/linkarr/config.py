"""
Configuration Management for Linkarr

This module centralizes all application configuration: polling cadence, provider
credentials, media server access, filename detection patterns and the folder
mappings under reconciliation.

Scalar settings come from environment variables with sensible defaults. Folder
mappings come from a YAML file (MAPPINGS_FILE) or, for container deployments,
from the FOLDER_MAPPINGS environment variable.

Mappings file format:
    mappings:
      - source: /downloads/movies
        destination: /media/movies
        media_type: Movies
      - source: /downloads/tv
        destination: /media/tv
        media_type: TvShows
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import yaml

from linkarr.models.tracked_file import MediaType

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""
    pass


@dataclass(frozen=True)
class FolderMapping:
    """One area under reconciliation: a source tree mirrored into a destination tree."""
    source_folder: str
    destination_folder: str
    media_type: MediaType = MediaType.UNKNOWN


class Config:
    """
    Centralized configuration management using environment variables.

    All settings have defaults and can be overridden via environment variables.
    Values are read once at import time, like the rest of the application.
    """

    # =============================================================================
    # APPLICATION SETTINGS
    # =============================================================================
    APP_VERSION = "1.0.0"
    APP_TITLE = "Linkarr"
    APP_DESCRIPTION = "Poll-based media identification and symlink library builder"
    APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT = int(os.getenv("APP_PORT", "8000"))

    # =============================================================================
    # LOGGING
    # =============================================================================
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_JSON = os.getenv("LOG_JSON", "false").lower() == "true"

    # =============================================================================
    # DATABASE CONFIGURATION
    # =============================================================================
    # ./data/ when started from backend/, ./backend/data/ from the project root
    _db_path = "./data/linkarr.db" if os.path.exists("./data") else "./backend/data/linkarr.db"
    DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{_db_path}")

    # =============================================================================
    # FOLDER MAPPINGS
    # =============================================================================
    MAPPINGS_FILE = os.getenv("MAPPINGS_FILE", "./config/mappings.yaml")
    # Alternative to the file: "src:dest:Type;src2:dest2:Type"
    FOLDER_MAPPINGS = os.getenv("FOLDER_MAPPINGS", "")

    # =============================================================================
    # RECONCILIATION LOOP
    # =============================================================================
    # Seconds between two reconciliation passes
    POLLING_INTERVAL = float(os.getenv("POLLING_INTERVAL", "30"))

    # Seconds to wait after a pass-level error before trying again
    ERROR_BACKOFF = float(os.getenv("ERROR_BACKOFF", "5"))

    # Seconds to wait before processing files of a folder seen for the first time
    PROCESS_NEW_FOLDER_DELAY = float(os.getenv("PROCESS_NEW_FOLDER_DELAY", "0"))

    # New files are processed in batches, with a pause between batches
    BATCH_SIZE = int(os.getenv("BATCH_SIZE", "100"))
    BATCH_PAUSE = float(os.getenv("BATCH_PAUSE", "0.1"))

    # Concurrent file identification/link workers (1..4)
    MAX_CONCURRENT_FILES = max(1, min(4, int(os.getenv("MAX_CONCURRENT_FILES", "2"))))

    MEDIA_EXTENSIONS = [
        ext.strip().lower()
        for ext in os.getenv(
            "MEDIA_EXTENSIONS",
            ".mkv,.mp4,.avi,.m4v,.mov,.wmv,.ts,.m2ts,.webm"
        ).split(",")
        if ext.strip()
    ]

    # =============================================================================
    # MEDIA DETECTION
    # =============================================================================
    # Bump to re-identify rows according to REDETECT_SCOPE on next start
    DETECTION_VERSION = int(os.getenv("DETECTION_VERSION", "1"))

    # "failed" re-identifies Failed/Duplicate rows only, "all" includes Success rows
    REDETECT_SCOPE = os.getenv("REDETECT_SCOPE", "failed").lower()

    MOVIE_PATTERN = os.getenv(
        "MOVIE_PATTERN",
        r"^(?P<title>.+?)[\s._\-]*[\(\[]?(?P<year>(?:19|20)\d{2})[\)\]]?(?:[\s._\-]|$)"
    )
    TVSHOW_PATTERN = os.getenv(
        "TVSHOW_PATTERN",
        r"^(?P<title>.*?)[\s._\-]*[Ss](?P<season>\d{1,2})[\s._\-]*[Ee](?P<episode>\d{1,3})"
        r"(?:-?[Ee](?P<episode2>\d{1,3}))?(?!\d)"
    )
    # Everything from the first technical token on is dropped. Edition and
    # language words only go when they lead into one ("FRENCH.1080p"), so
    # "The French Connection" keeps its title.
    TITLE_CLEANUP_PATTERN = os.getenv(
        "TITLE_CLEANUP_PATTERN",
        r"(?i)[\s._\-\[\(]+"
        r"(?:(?:proper|repack|extended|unrated|multi|vostfr|french|truefrench)[\s._\-\[\]\(\)]+)*"
        r"(?:2160p|1080p|720p|576p|480p|4k|uhd|hdr10?\+?|"
        r"bluray|blu-ray|bdrip|brrip|web-?dl|webrip|hdtv|dvdrip|remux|"
        r"x26[45]|h\.?26[45]|hevc|avc|xvid|aac(?:\d\.\d)?|ac3|dts(?:-hd)?|ddp?\d\.\d|atmos)\b.*$"
    )

    # =============================================================================
    # METADATA PROVIDER (TMDb)
    # =============================================================================
    TMDB_API_KEY = os.getenv("TMDB_API_KEY", "")
    TMDB_LANGUAGE = os.getenv("TMDB_LANGUAGE", "en-US")
    TMDB_API_TIMEOUT = int(os.getenv("TMDB_API_TIMEOUT", "10"))

    # Provider response cache TTL (hours)
    PROVIDER_CACHE_TTL_HOURS = int(os.getenv("PROVIDER_CACHE_TTL_HOURS", "24"))

    # =============================================================================
    # MEDIA SERVER (Plex)
    # =============================================================================
    PLEX_URL = os.getenv("PLEX_URL", "")
    PLEX_TOKEN = os.getenv("PLEX_TOKEN", "")
    PLEX_TIMEOUT = int(os.getenv("PLEX_TIMEOUT", "10"))

    @classmethod
    def validate(cls) -> List[str]:
        """
        Validate critical configuration values.

        Returns:
            List of problems found (empty when configuration is valid)
        """
        problems = []

        if not cls.DATABASE_URL:
            problems.append("DATABASE_URL is empty")

        if cls.APP_PORT < 1 or cls.APP_PORT > 65535:
            problems.append(f"APP_PORT out of range: {cls.APP_PORT}")

        if cls.POLLING_INTERVAL <= 0:
            problems.append(f"POLLING_INTERVAL must be positive: {cls.POLLING_INTERVAL}")

        if cls.BATCH_SIZE < 1:
            problems.append(f"BATCH_SIZE must be at least 1: {cls.BATCH_SIZE}")

        if cls.REDETECT_SCOPE not in ("failed", "all"):
            problems.append(f"REDETECT_SCOPE must be 'failed' or 'all': {cls.REDETECT_SCOPE}")

        return problems

    @classmethod
    def get_summary(cls) -> dict:
        """
        Get configuration summary for logging/debugging.

        Returns:
            Dictionary with non-sensitive configuration values
        """
        return {
            "app_version": cls.APP_VERSION,
            "app_host": cls.APP_HOST,
            "app_port": cls.APP_PORT,
            "database_url": cls.DATABASE_URL.split("@")[-1] if "@" in cls.DATABASE_URL else "sqlite",
            "mappings_file": cls.MAPPINGS_FILE,
            "polling_interval": cls.POLLING_INTERVAL,
            "batch_size": cls.BATCH_SIZE,
            "max_concurrent_files": cls.MAX_CONCURRENT_FILES,
            "detection_version": cls.DETECTION_VERSION,
            "redetect_scope": cls.REDETECT_SCOPE,
            "tmdb_configured": bool(cls.TMDB_API_KEY),
            "plex_configured": bool(cls.PLEX_URL and cls.PLEX_TOKEN),
            "log_json": cls.LOG_JSON,
        }


def parse_media_type(value: Optional[str]) -> MediaType:
    """
    Parse a media type name from configuration.

    Accepts the enum value ("TvShows") case-insensitively, plus a few aliases.

    Raises:
        ConfigurationError: If the name is unknown
    """
    if value is None or value == "":
        return MediaType.UNKNOWN

    aliases = {
        "movie": MediaType.MOVIES,
        "movies": MediaType.MOVIES,
        "tv": MediaType.TV_SHOWS,
        "tvshow": MediaType.TV_SHOWS,
        "tvshows": MediaType.TV_SHOWS,
        "show": MediaType.TV_SHOWS,
        "shows": MediaType.TV_SHOWS,
        "extras": MediaType.EXTRAS,
        "unknown": MediaType.UNKNOWN,
    }
    media_type = aliases.get(str(value).strip().lower().replace("_", "").replace(" ", ""))
    if media_type is None:
        raise ConfigurationError(f"Unknown media type in folder mapping: {value!r}")
    return media_type


def _build_mapping(source: Optional[str], destination: Optional[str], media_type: Optional[str]) -> FolderMapping:
    if not source or not destination:
        raise ConfigurationError(
            f"Folder mapping needs both source and destination (got {source!r} -> {destination!r})"
        )

    if not os.path.isabs(source) or not os.path.isabs(destination):
        raise ConfigurationError(
            f"Folder mapping paths must be absolute: {source!r} -> {destination!r}"
        )

    source_norm = os.path.normpath(source)
    destination_norm = os.path.normpath(destination)

    if source_norm == destination_norm:
        raise ConfigurationError(f"Source and destination are the same folder: {source_norm}")

    # A destination inside its source would be rediscovered as new files every pass
    if destination_norm.startswith(source_norm + os.sep):
        raise ConfigurationError(
            f"Destination {destination_norm} is inside source {source_norm}"
        )

    return FolderMapping(
        source_folder=source_norm,
        destination_folder=destination_norm,
        media_type=parse_media_type(media_type),
    )


def parse_mappings_env(value: str) -> List[FolderMapping]:
    """
    Parse mappings from the compact environment form "src:dest:Type;...".

    Args:
        value: Raw FOLDER_MAPPINGS value

    Returns:
        List of FolderMapping
    """
    mappings = []
    for chunk in value.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        parts = chunk.split(":")
        if len(parts) not in (2, 3):
            raise ConfigurationError(f"Invalid FOLDER_MAPPINGS entry: {chunk!r}")
        media_type = parts[2] if len(parts) == 3 else None
        mappings.append(_build_mapping(parts[0], parts[1], media_type))
    return mappings


def parse_mappings_yaml(content: str) -> List[FolderMapping]:
    """
    Parse mappings from YAML content.

    Args:
        content: YAML document with a top-level "mappings" list

    Returns:
        List of FolderMapping

    Raises:
        ConfigurationError: If the document is malformed
    """
    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid mappings YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError("Mappings YAML must be a mapping with a 'mappings' key")

    entries = data.get("mappings") or []
    if not isinstance(entries, list):
        raise ConfigurationError("'mappings' must be a list")

    mappings = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Invalid mapping entry: {entry!r}")
        mappings.append(_build_mapping(
            entry.get("source"),
            entry.get("destination"),
            entry.get("media_type"),
        ))
    return mappings


def load_folder_mappings(
    mappings_file: Optional[str] = None,
    env_value: Optional[str] = None
) -> List[FolderMapping]:
    """
    Load folder mappings from the environment or the YAML mappings file.

    FOLDER_MAPPINGS takes precedence when set. A missing mappings file yields an
    empty list (the service runs idle and says so in the logs).

    Args:
        mappings_file: Path to YAML file (defaults to Config.MAPPINGS_FILE)
        env_value: Compact mapping string (defaults to Config.FOLDER_MAPPINGS)

    Returns:
        List of FolderMapping in configuration order

    Raises:
        ConfigurationError: If mappings are invalid or duplicated
    """
    env_value = Config.FOLDER_MAPPINGS if env_value is None else env_value
    mappings_file = mappings_file or Config.MAPPINGS_FILE

    if env_value:
        mappings = parse_mappings_env(env_value)
        logger.info(f"Loaded {len(mappings)} folder mapping(s) from FOLDER_MAPPINGS")
    else:
        path = Path(mappings_file)
        if not path.exists():
            logger.warning(f"⚠ Mappings file not found: {path}. No folders will be reconciled.")
            return []
        mappings = parse_mappings_yaml(path.read_text(encoding="utf-8"))
        logger.info(f"Loaded {len(mappings)} folder mapping(s) from {path}")

    validate_mapping_layout(mappings)
    return mappings


def _is_within(path: str, folder: str) -> bool:
    return path.startswith(folder.rstrip(os.sep) + os.sep)


def validate_mapping_layout(mappings: List[FolderMapping]) -> None:
    """
    Reject mappings whose trees overlap.

    A source nested in another source would be walked (and its rows matched
    by prefix) by both mappings, and a destination inside any source would be
    picked up as new files.

    Raises:
        ConfigurationError: On duplicated or nested sources, or a destination inside a source
    """
    seen = set()
    for mapping in mappings:
        if mapping.source_folder in seen:
            raise ConfigurationError(f"Source folder mapped twice: {mapping.source_folder}")
        seen.add(mapping.source_folder)

    for mapping in mappings:
        for other in mappings:
            if other is mapping:
                continue
            if _is_within(mapping.source_folder, other.source_folder):
                raise ConfigurationError(
                    f"Source {mapping.source_folder} is nested inside source {other.source_folder}"
                )
            if mapping.destination_folder == other.source_folder or _is_within(
                mapping.destination_folder, other.source_folder
            ):
                raise ConfigurationError(
                    f"Destination {mapping.destination_folder} is inside source {other.source_folder}"
                )


# Singleton instance
config = Config()
