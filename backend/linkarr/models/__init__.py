"""
Database models for Linkarr
"""

from .base import Base
from .tracked_file import TrackedFile, TrackedFileRef, FileStatus, MediaType
from .provider_cache import ProviderCache

__all__ = [
    'Base', 'TrackedFile', 'TrackedFileRef', 'FileStatus', 'MediaType', 'ProviderCache'
]
