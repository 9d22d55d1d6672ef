"""
Rate Limiter Service

Token bucket rate limiting for external API calls, so that a pass discovering
hundreds of new files does not saturate the metadata provider.

Features:
- Token bucket algorithm with configurable rates
- Async-safe with asyncio locks
- Per-service rate limits
- Decorator for coroutine functions
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Callable, TypeVar, ParamSpec, Any, Awaitable

from linkarr.services.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

P = ParamSpec('P')
T = TypeVar('T')


@dataclass
class RateLimitConfig:
    """Configuration for a rate limiter."""
    tokens_per_second: float  # Refill rate
    max_tokens: int  # Maximum bucket capacity (burst allowance)
    name: str = ""


class TokenBucket:
    """
    Token bucket rate limiter.

    - Bucket has a maximum capacity (burst allowance)
    - Tokens refill at a constant rate
    - Each request consumes one or more tokens
    - Requests wait when the bucket is empty
    """

    def __init__(self, config: RateLimitConfig):
        self.config = config
        self._tokens = float(config.max_tokens)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self.config.max_tokens, self._tokens + elapsed * self.config.tokens_per_second)
        self._last_refill = now

    async def acquire(self, tokens: int = 1, wait: bool = True, timeout: float = 30.0) -> bool:
        """
        Acquire tokens from the bucket.

        Args:
            tokens: Number of tokens to acquire
            wait: If True, wait for tokens. If False, return immediately.
            timeout: Maximum time to wait for tokens (seconds)

        Returns:
            True if tokens were acquired, False if not (only when wait=False)

        Raises:
            RateLimitExceeded: When wait=True and timeout is exceeded
        """
        start_time = time.monotonic()

        async with self._lock:
            while True:
                self._refill()

                if self._tokens >= tokens:
                    self._tokens -= tokens
                    return True

                if not wait:
                    return False

                wait_time = (tokens - self._tokens) / self.config.tokens_per_second

                elapsed = time.monotonic() - start_time
                if elapsed + wait_time > timeout:
                    raise RateLimitExceeded(service=self.config.name, retry_after=wait_time)

                await asyncio.sleep(min(wait_time, 0.1))

    @property
    def available_tokens(self) -> float:
        """Current available tokens (without acquiring lock)."""
        return self._tokens


class RateLimiter:
    """Multi-service rate limiter manager."""

    DEFAULT_LIMITS = {
        "tmdb": RateLimitConfig(
            tokens_per_second=4.0,  # 40 requests per 10 seconds
            max_tokens=10,
            name="tmdb"
        ),
        "plex": RateLimitConfig(
            tokens_per_second=2.0,
            max_tokens=5,
            name="plex"
        ),
    }

    def __init__(self):
        self._buckets: Dict[str, TokenBucket] = {}
        self._custom_configs: Dict[str, RateLimitConfig] = {}

    def get_bucket(self, service: str) -> TokenBucket:
        """Get or create token bucket for a service."""
        if service not in self._buckets:
            config = self._custom_configs.get(service) or self.DEFAULT_LIMITS.get(
                service,
                RateLimitConfig(tokens_per_second=1.0, max_tokens=5, name=service)
            )
            self._buckets[service] = TokenBucket(config)
        return self._buckets[service]

    def configure(self, service: str, tokens_per_second: float, max_tokens: int) -> None:
        """Override the rate limit for a service."""
        config = RateLimitConfig(tokens_per_second=tokens_per_second, max_tokens=max_tokens, name=service)
        self._custom_configs[service] = config
        if service in self._buckets:
            self._buckets[service] = TokenBucket(config)
        logger.info(f"Rate limit configured for {service}: {tokens_per_second}/s, burst={max_tokens}")

    async def acquire(self, service: str, tokens: int = 1, wait: bool = True, timeout: float = 30.0) -> bool:
        """Acquire tokens for a service."""
        return await self.get_bucket(service).acquire(tokens, wait, timeout)

    def get_status(self, service: str) -> Dict[str, Any]:
        """Get rate limiter status for a service."""
        bucket = self.get_bucket(service)
        return {
            "service": service,
            "available_tokens": bucket.available_tokens,
            "max_tokens": bucket.config.max_tokens,
            "tokens_per_second": bucket.config.tokens_per_second,
        }


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def rate_limited(
    service: str,
    tokens: int = 1,
    wait: bool = True,
    timeout: float = 30.0
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """
    Decorator to apply rate limiting to a coroutine function.

    Example:
        @rate_limited(service="tmdb")
        async def search_movie(self, title):
            ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            await get_rate_limiter().acquire(service, tokens, wait, timeout)
            return await func(*args, **kwargs)
        return wrapper

    return decorator
