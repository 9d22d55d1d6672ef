"""
Typed Exception Hierarchy for Linkarr

This module defines the exceptions raised across the reconciliation pipeline,
with support for automatic retry logic with exponential backoff for retryable
network errors.

Exception Hierarchy:
    LinkarrError
    ├── ProviderAPIError (non-retryable)
    │   ├── NetworkRetryableError (retryable with exponential backoff)
    │   └── RateLimitExceeded
    ├── IdentificationError (file recorded as Failed)
    ├── SymlinkError (file recorded as Failed)
    │   └── DuplicateLinkError (file recorded as Duplicate)
    └── MediaServerError

The @retry_on_network_error decorator provides automatic retry logic with:
    - Configurable maximum retries
    - Exponential backoff: 2^n seconds delay
    - Logging of every retry attempt

Metadata lookups are not retried: a provider failure turns into a Failed row,
revisited only after a detection version bump.
"""

import asyncio
import functools
import logging
import time
from typing import Callable, TypeVar, ParamSpec, Optional

logger = logging.getLogger(__name__)

P = ParamSpec('P')
T = TypeVar('T')


# ============================================================================
# Exception Hierarchy
# ============================================================================

class LinkarrError(Exception):
    """Base class for all Linkarr errors."""
    pass


class ProviderAPIError(LinkarrError):
    """
    Base exception for external API errors (non-retryable).

    Use this for errors that should fail fast:
    - Invalid API key/token
    - Resource not found
    - Malformed response
    """

    def __init__(self, message: str, status_code: int = None, response_data: dict = None):
        """
        Initialize ProviderAPIError.

        Args:
            message: Human-readable error description
            status_code: HTTP status code if applicable
            response_data: Raw response data for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_data = response_data

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.__class__.__name__} (HTTP {self.status_code}): {self.message}"
        return f"{self.__class__.__name__}: {self.message}"


class NetworkRetryableError(ProviderAPIError):
    """
    Exception for network-level errors that may succeed on retry.

    - Connection timeouts
    - DNS resolution failures
    - Temporary service unavailability (HTTP 502/503/504)
    - Rate limiting (HTTP 429)
    """

    def __init__(self, message: str, original_exception: Exception = None, retry_after: int = None):
        """
        Initialize NetworkRetryableError.

        Args:
            message: Human-readable error description
            original_exception: Original exception that triggered this error
            retry_after: Suggested retry delay in seconds (e.g., from Retry-After header)
        """
        super().__init__(message)
        self.original_exception = original_exception
        self.retry_after = retry_after


class RateLimitExceeded(ProviderAPIError):
    """
    Raised when the internal rate limiter blocks a request before it reaches
    the external API.

    Attributes:
        service: The service that was rate limited
        retry_after: Seconds to wait before retrying
    """

    def __init__(self, service: str, retry_after: float, message: str = None):
        msg = message or f"Rate limit exceeded for {service}. Retry after {retry_after:.1f}s"
        super().__init__(msg)
        self.service = service
        self.retry_after = retry_after


class IdentificationError(LinkarrError):
    """
    Raised when a file cannot be identified.

    Attributes:
        media_type: Media type determined before the failure (Unknown when no
            filename pattern matched)
    """

    def __init__(self, message: str, media_type=None):
        super().__init__(message)
        self.message = message
        self.media_type = media_type


class SymlinkError(LinkarrError):
    """Raised when a symlink cannot be created or removed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path


class DuplicateLinkError(SymlinkError):
    """
    Raised when the destination path is already taken by another source.

    Attributes:
        dest_path: Destination path that was computed
        existing_target: What currently lives there (link target, or the path
            itself for a regular file)
    """

    def __init__(self, dest_path: str, existing_target: Optional[str]):
        super().__init__(
            f"Destination already links to another source: {dest_path} -> {existing_target}",
            path=dest_path
        )
        self.dest_path = dest_path
        self.existing_target = existing_target


class MediaServerError(LinkarrError):
    """Raised when the media server API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# ============================================================================
# Retry Decorator
# ============================================================================

def retry_on_network_error(
    max_retries: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: int = 2,
    retryable_exceptions: tuple = (NetworkRetryableError,)
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator for automatic retry with exponential backoff on network errors.

    delay = min(base_delay * (exponential_base ^ attempt), max_delay), or the
    exception's retry_after when it carries one.

    Args:
        max_retries: Maximum number of retry attempts (default: 5)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        exponential_base: Base for exponential calculation (default: 2)
        retryable_exceptions: Tuple of exception types to retry

    Returns:
        Decorated function with retry logic

    Example:
        @retry_on_network_error(max_retries=2)
        async def refresh_section(section_id):
            return await client.get(f"/library/sections/{section_id}/refresh")
    """

    def _delay_for(attempt: int, error: Exception) -> float:
        delay = min(base_delay * (exponential_base ** attempt), max_delay)
        if isinstance(error, NetworkRetryableError) and error.retry_after:
            delay = min(error.retry_after, max_delay)
        return delay

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                for attempt in range(max_retries + 1):
                    try:
                        return await func(*args, **kwargs)

                    except retryable_exceptions as e:
                        if attempt >= max_retries:
                            logger.error(
                                f"Max retries ({max_retries}) exceeded for {func.__name__}. "
                                f"Final error: {e}"
                            )
                            raise

                        delay = _delay_for(attempt, e)
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_retries} failed for {func.__name__}: {e}. "
                            f"Retrying in {delay}s..."
                        )
                        await asyncio.sleep(delay)

                    except LinkarrError as e:
                        logger.error(f"Non-retryable error in {func.__name__}: {e}. Not retrying.")
                        raise

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except retryable_exceptions as e:
                    if attempt >= max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func.__name__}. "
                            f"Final error: {e}"
                        )
                        raise

                    delay = _delay_for(attempt, e)
                    logger.warning(
                        f"Attempt {attempt + 1}/{max_retries} failed for {func.__name__}: {e}. "
                        f"Retrying in {delay}s..."
                    )
                    time.sleep(delay)

                except LinkarrError as e:
                    logger.error(f"Non-retryable error in {func.__name__}: {e}. Not retrying.")
                    raise

        return sync_wrapper

    return decorator


# ============================================================================
# Convenience Functions
# ============================================================================

def is_retryable_error(exception: Exception) -> bool:
    """Check if an exception is retryable."""
    return isinstance(exception, NetworkRetryableError)


def classify_http_error(status_code: int, message: str, response_data: dict = None) -> ProviderAPIError:
    """
    Classify HTTP errors into appropriate exception types.

    Args:
        status_code: HTTP status code
        message: Error message
        response_data: Optional response data for debugging

    Returns:
        Appropriate exception instance based on status code
    """
    if status_code == 429:
        retry_after = None
        if response_data and 'retry_after' in response_data:
            retry_after = int(response_data['retry_after'])
        return NetworkRetryableError(message=f"Rate limited: {message}", retry_after=retry_after)

    if status_code == 503:
        return NetworkRetryableError(message=f"Service temporarily unavailable: {message}")

    if status_code in (502, 504):
        return NetworkRetryableError(message=f"Gateway error (HTTP {status_code}): {message}")

    return ProviderAPIError(message=message, status_code=status_code, response_data=response_data)
