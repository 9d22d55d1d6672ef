"""
TMDb Client for Linkarr

Metadata Provider Adapter: the six lookups the media identifier needs, backed
by the TMDb v3 REST API and a persistent response cache.

Key Features:
    - v3 API key or v4 bearer token (auto-detected)
    - Cache-first lookups through ProviderCache (TTL from configuration)
    - Token bucket pacing ("tmdb" service, 40 requests / 10 s)
    - HTTP status classification into ProviderAPIError / NetworkRetryableError

Lookups are not retried here. A failed lookup surfaces as an exception and the
caller records the file as Failed.

Usage Example:
    >>> client = TMDbClient(api_key="df667ef7a7f9009def29e0bd78725f3d")
    >>> results = await client.search_movie("The Matrix", year=1999)
    >>> movie = await client.get_movie(results[0]["id"])
    >>> movie["external_ids"]["imdb_id"]
    'tt0133093'
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List, Callable

import requests
from sqlalchemy.orm import Session

from linkarr.config import Config
from linkarr.database import SessionLocal
from linkarr.models.provider_cache import ProviderCache
from linkarr.services.exceptions import ProviderAPIError, NetworkRetryableError, classify_http_error
from linkarr.services.rate_limiter import rate_limited
from linkarr.utils.tmdb_auth import format_tmdb_request, mask_credential

logger = logging.getLogger(__name__)


class TMDbClient:
    """
    Thin async client over the TMDb REST API.

    Blocking requests calls run through asyncio.to_thread so the reconciliation
    loop keeps running while lookups are in flight. Each cache access opens its
    own short-lived session from session_factory.

    Attributes:
        api_key: v3 key or v4 token
        language: Metadata language (e.g. "en-US")
        timeout: Request timeout in seconds
        cache_ttl_hours: Provider cache TTL; 0 disables the cache
    """

    BASE_URL = "https://api.themoviedb.org/3"

    def __init__(
        self,
        api_key: Optional[str] = None,
        language: Optional[str] = None,
        timeout: Optional[int] = None,
        cache_ttl_hours: Optional[int] = None,
        session_factory: Optional[Callable[[], Session]] = SessionLocal
    ):
        self.api_key = api_key if api_key is not None else Config.TMDB_API_KEY
        self.language = language or Config.TMDB_LANGUAGE
        self.timeout = timeout or Config.TMDB_API_TIMEOUT
        self.cache_ttl_hours = Config.PROVIDER_CACHE_TTL_HOURS if cache_ttl_hours is None else cache_ttl_hours
        self.session_factory = session_factory
        logger.debug(f"TMDbClient initialized (key={mask_credential(self.api_key)}, language={self.language})")

    # ============================================================================
    # Lookups
    # ============================================================================

    async def search_movie(self, title: str, year: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Search movies by title.

        Args:
            title: Cleaned title
            year: Optional release year (narrows TMDb's ranking, not a hard filter)

        Returns:
            Ranked list of result dicts (id, title, release_date, ...)
        """
        params = {'query': title, 'include_adult': 'false'}
        if year:
            params['year'] = str(year)
        data = await self._get('/search/movie', params)
        return data.get('results', []) if data else []

    async def search_show(self, title: str) -> List[Dict[str, Any]]:
        """Search TV shows by name. Returns the ranked result list."""
        data = await self._get('/search/tv', {'query': title, 'include_adult': 'false'})
        return data.get('results', []) if data else []

    async def get_movie(self, movie_id: int) -> Dict[str, Any]:
        """Get full movie details including external_ids (imdb_id)."""
        return await self._get(f'/movie/{movie_id}', {'append_to_response': 'external_ids'})

    async def get_show(self, show_id: int) -> Dict[str, Any]:
        """Get full show details including external_ids and the season list."""
        return await self._get(f'/tv/{show_id}', {'append_to_response': 'external_ids'})

    async def get_season(self, show_id: int, season_number: int) -> Dict[str, Any]:
        """Get a season with its episodes."""
        return await self._get(f'/tv/{show_id}/season/{season_number}', {})

    async def get_episode(self, show_id: int, season_number: int, episode_number: int) -> Dict[str, Any]:
        """Get a single episode."""
        return await self._get(f'/tv/{show_id}/season/{season_number}/episode/{episode_number}', {})

    # ============================================================================
    # Transport
    # ============================================================================

    def _cache_key(self, path: str, params: Dict[str, str]) -> str:
        query = "&".join(f"{k}={str(v).lower()}" for k, v in sorted(params.items()))
        return f"tmdb:{self.language}:{path}?{query}"

    def _cache_get(self, cache_key: str) -> Optional[Dict[str, Any]]:
        db = self.session_factory()
        try:
            entry = ProviderCache.get_cached(db, cache_key)
            return entry.payload if entry else None
        finally:
            db.close()

    def _cache_put(self, cache_key: str, payload: Dict[str, Any]) -> None:
        db = self.session_factory()
        try:
            ProviderCache.upsert(db, cache_key, payload, ttl_hours=self.cache_ttl_hours)
        finally:
            db.close()

    def cleanup_cache(self) -> int:
        """Delete expired cache entries (sync, runs in thread). Returns the count removed."""
        if self.session_factory is None:
            return 0
        db = self.session_factory()
        try:
            return ProviderCache.cleanup_expired(db)
        finally:
            db.close()

    @property
    def cache_enabled(self) -> bool:
        return self.session_factory is not None and self.cache_ttl_hours > 0

    async def _get(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        """
        Cache-first GET.

        Raises:
            ProviderAPIError: Non-retryable API error (bad key, not found)
            NetworkRetryableError: Transient failure (timeout, 429, 5xx)
        """
        cache_key = self._cache_key(path, params)

        if self.cache_enabled:
            cached = await asyncio.to_thread(self._cache_get, cache_key)
            if cached is not None:
                logger.debug(f"✓ Cache HIT {cache_key}")
                return cached

        data = await self._fetch(path, params)

        if self.cache_enabled:
            try:
                await asyncio.to_thread(self._cache_put, cache_key, data)
            except Exception as e:
                # The lookup itself succeeded
                logger.warning(f"⚠ Could not cache TMDb response for {path}: {e}")

        return data

    @rate_limited(service="tmdb", tokens=1)
    async def _fetch(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        if not self.api_key:
            raise ProviderAPIError("TMDb API key not configured. Set TMDB_API_KEY.")

        try:
            auth_params, headers = format_tmdb_request(self.api_key)
        except ValueError as e:
            raise ProviderAPIError(f"Invalid TMDb credential: {e}")

        request_params = dict(params)
        request_params.update(auth_params)
        request_params['language'] = self.language
        url = f"{self.BASE_URL}{path}"

        try:
            response = await asyncio.to_thread(
                requests.get,
                url,
                params=request_params,
                headers=headers,
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise NetworkRetryableError(f"TMDb API timeout for {path}", original_exception=e)
        except requests.exceptions.ConnectionError as e:
            raise NetworkRetryableError(f"TMDb API connection error for {path}", original_exception=e)
        except requests.exceptions.RequestException as e:
            raise NetworkRetryableError(f"TMDb API request failed: {e}", original_exception=e)

        if response.status_code == 401:
            raise ProviderAPIError("TMDb API authentication failed. Check API key.", status_code=401)
        if response.status_code == 404:
            raise ProviderAPIError(f"TMDb resource not found: {path}", status_code=404)
        if response.status_code != 200:
            raise classify_http_error(response.status_code, f"TMDb API returned HTTP {response.status_code} for {path}")

        try:
            return response.json()
        except ValueError as e:
            raise ProviderAPIError(f"TMDb returned invalid JSON for {path}: {e}")


_tmdb_client: Optional[TMDbClient] = None


def get_tmdb_client() -> TMDbClient:
    """Get the global TMDb client instance."""
    global _tmdb_client
    if _tmdb_client is None:
        _tmdb_client = TMDbClient()
    return _tmdb_client
