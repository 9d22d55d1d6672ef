"""
PlexNotifier - Media Server Notifier Adapter

Tells Plex that a path in the destination tree changed so it scans just that
path instead of waiting for its periodic library scan.

Flow:
    1. GET /library/sections (XML) -> section keys and their Location paths
    2. Pick the section whose location is the longest prefix of the path
       (falls back to "all" when no section matches)
    3. GET /library/sections/{key}/refresh?path=<path>

Notifications are fire-and-forget: notify_path_changed() never raises, it logs
the failure and returns False. Without PLEX_URL/PLEX_TOKEN the notifier is
disabled and every call is a no-op.

Usage Example:
    notifier = PlexNotifier(base_url="http://localhost:32400", token="xxxx")
    await notifier.notify_path_changed("/media/movies/Movie Title (2020)")
"""

import logging
import os
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional
from urllib.parse import urljoin

import httpx

from linkarr.config import Config
from .exceptions import LinkarrError, MediaServerError, NetworkRetryableError, retry_on_network_error
from .rate_limiter import rate_limited

logger = logging.getLogger(__name__)

ALL_SECTIONS = "all"


def parse_sections(xml_text: str) -> Dict[str, List[str]]:
    """
    Parse a /library/sections response.

    Returns:
        Mapping of section key -> list of location paths
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise MediaServerError(f"Invalid XML from Plex: {e}")

    sections: Dict[str, List[str]] = {}
    for directory in root.iter('Directory'):
        key = directory.get('key')
        if not key:
            continue
        sections[key] = [
            location.get('path') for location in directory.findall('Location')
            if location.get('path')
        ]
    return sections


def match_section(sections: Dict[str, List[str]], path: str) -> Optional[str]:
    """Key of the section with the longest location prefix of path."""
    path = os.path.normpath(path)
    best_key, best_len = None, -1
    for key, locations in sections.items():
        for location in locations:
            location = os.path.normpath(location)
            if path == location or path.startswith(location.rstrip(os.sep) + os.sep):
                if len(location) > best_len:
                    best_key, best_len = key, len(location)
    return best_key


class PlexNotifier:
    """
    Client for partial Plex library scans.

    Attributes:
        base_url: Plex server URL (e.g., http://localhost:32400)
        token: X-Plex-Token
        timeout: Request timeout in seconds
    """

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None, timeout: Optional[int] = None):
        self.base_url = (base_url if base_url is not None else Config.PLEX_URL).rstrip('/')
        self.token = token if token is not None else Config.PLEX_TOKEN
        self.timeout = timeout or Config.PLEX_TIMEOUT
        self._sections: Optional[Dict[str, List[str]]] = None
        if self.enabled:
            logger.debug(f"PlexNotifier initialized for: {self.base_url}")

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.token)

    def _get_headers(self) -> Dict[str, str]:
        return {
            'X-Plex-Token': self.token,
            'Accept': 'application/xml'
        }

    @retry_on_network_error(max_retries=2)
    @rate_limited(service="plex", tokens=1)
    async def _request(self, endpoint: str, params: Optional[Dict] = None) -> str:
        url = urljoin(self.base_url + '/', endpoint.lstrip('/'))

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, headers=self._get_headers(), params=params)

                if response.status_code in (502, 503, 504):
                    raise NetworkRetryableError(
                        f"Plex temporarily unavailable (HTTP {response.status_code})"
                    )

                if response.status_code >= 400:
                    raise MediaServerError(
                        f"Plex API error: {response.status_code}",
                        status_code=response.status_code
                    )

                return response.text

        except httpx.TimeoutException as e:
            raise NetworkRetryableError(f"Request timeout to {url}") from e
        except httpx.ConnectError as e:
            raise NetworkRetryableError(f"Connection error to {url}") from e
        except httpx.HTTPError as e:
            raise MediaServerError(f"HTTP error: {e}")

    async def get_sections(self, refresh: bool = False) -> Dict[str, List[str]]:
        """Library sections and their locations (cached until refresh)."""
        if self._sections is None or refresh:
            self._sections = parse_sections(await self._request('/library/sections'))
        return self._sections

    async def resolve_section(self, path: str) -> str:
        """
        Section key to refresh for path.

        Re-reads the section list once on a miss (libraries added while running).
        """
        sections = await self.get_sections()
        key = match_section(sections, path)
        if key is None:
            sections = await self.get_sections(refresh=True)
            key = match_section(sections, path)
        return key or ALL_SECTIONS

    async def notify_path_changed(self, path: str) -> bool:
        """
        Ask Plex to scan path.

        Args:
            path: Destination folder (or file) that changed

        Returns:
            True if the refresh was accepted
        """
        if not self.enabled:
            logger.debug(f"Plex not configured, skipping notification for {path}")
            return False

        try:
            section = await self.resolve_section(path)
            await self._request(f'/library/sections/{section}/refresh', params={'path': path})
        except LinkarrError as e:
            logger.warning(f"⚠ Plex notification failed for {path}: {e}")
            return False

        logger.info(f"✓ Plex scan requested for {path} (section {section})")
        return True


_plex_notifier: Optional[PlexNotifier] = None


def get_plex_notifier() -> PlexNotifier:
    """Get the global Plex notifier instance."""
    global _plex_notifier
    if _plex_notifier is None:
        _plex_notifier = PlexNotifier()
    return _plex_notifier
