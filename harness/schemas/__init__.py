"""Pydantic schemas for cache state and repository metadata."""

from harness.schemas.cache import (
    CacheEntry,
    CacheStats,
    EnsureOutcome,
    EnsureResult,
    EvictionReport,
)
from harness.schemas.repository import RemoteDescriptor, RepositoryIdentity

__all__ = [
    "CacheEntry",
    "CacheStats",
    "EnsureOutcome",
    "EnsureResult",
    "EvictionReport",
    "RemoteDescriptor",
    "RepositoryIdentity",
]
