"""
ProviderCache Database Model for Linkarr

Persistent cache of metadata provider responses (TMDb searches and detail
records) keyed by request, so that re-detection passes and restarts do not hit
the provider again for data fetched recently.

Cache Strategy:
    1. Build a cache key from the request (e.g. "tmdb:search/movie:matrix:1999")
    2. If cached and not expired, return the stored JSON payload
    3. Otherwise call the provider and upsert the payload with a fresh TTL

Expired entries are deleted on read and by cleanup_expired(), which the
reconciler calls once per pass.
"""

from datetime import datetime, timedelta
from typing import Optional, Any

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .base import Base


class ProviderCache(Base):
    """
    Database model for caching provider API responses.

    Table Structure:
        - id: Primary key (auto-increment)
        - cache_key: Request fingerprint (unique)
        - payload: Raw JSON response
        - cached_at: Timestamp when data was cached
        - expires_at: Timestamp when cache entry expires (cached_at + TTL)
    """

    __tablename__ = 'provider_cache'

    id = Column(Integer, primary_key=True, autoincrement=True)
    cache_key = Column(String(500), nullable=False, unique=True)
    payload = Column(JSON, nullable=True)
    cached_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)

    def __init__(self, cache_key: str, payload: Any, ttl_hours: int = 24):
        self.cache_key = cache_key
        self.payload = payload
        self.refresh_ttl(ttl_hours)

    def is_expired(self) -> bool:
        """Check if cache entry has expired."""
        return datetime.utcnow() >= self.expires_at

    def refresh_ttl(self, ttl_hours: int = 24) -> None:
        """Restart the TTL from now."""
        self.cached_at = datetime.utcnow()
        self.expires_at = self.cached_at + timedelta(hours=ttl_hours)

    @classmethod
    def get_cached(cls, db: Session, cache_key: str) -> Optional['ProviderCache']:
        """
        Get cached entry by key if not expired.

        Args:
            db: SQLAlchemy database session
            cache_key: Request fingerprint

        Returns:
            ProviderCache entry if found and not expired, None otherwise
        """
        entry = db.query(cls).filter(cls.cache_key == cache_key).first()

        if entry is None:
            return None

        if entry.is_expired():
            db.delete(entry)
            db.commit()
            return None

        return entry

    @classmethod
    def upsert(cls, db: Session, cache_key: str, payload: Any, ttl_hours: int = 24) -> 'ProviderCache':
        """
        Insert or update a cache entry and restart its TTL.

        Args:
            db: SQLAlchemy database session
            cache_key: Request fingerprint
            payload: JSON-serializable response
            ttl_hours: Time-to-live in hours

        Returns:
            ProviderCache entry (new or updated)
        """
        entry = db.query(cls).filter(cls.cache_key == cache_key).first()

        if entry:
            entry.payload = payload
            entry.refresh_ttl(ttl_hours)
        else:
            entry = cls(cache_key=cache_key, payload=payload, ttl_hours=ttl_hours)
            db.add(entry)

        try:
            db.commit()
        except IntegrityError:
            # Another worker cached the same key first
            db.rollback()
            entry = db.query(cls).filter(cls.cache_key == cache_key).first()
            entry.payload = payload
            entry.refresh_ttl(ttl_hours)
            db.commit()

        db.refresh(entry)
        return entry

    @classmethod
    def cleanup_expired(cls, db: Session) -> int:
        """
        Delete all expired cache entries.

        Returns:
            Number of expired entries deleted
        """
        expired_count = db.query(cls).filter(cls.expires_at <= datetime.utcnow()).delete()
        db.commit()
        return expired_count

    def __repr__(self) -> str:
        expired_status = "EXPIRED" if self.is_expired() else "VALID"
        return f"<ProviderCache(key='{self.cache_key}', status={expired_status})>"


Index('idx_provider_cache_expires_at', ProviderCache.expires_at)
