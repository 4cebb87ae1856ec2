"""Workspace cache schemas."""

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from harness.schemas.common import BaseSchema
from harness.schemas.repository import RepositoryIdentity


class EnsureOutcome(str, Enum):
    """Which lifecycle transition an ensure call took."""

    CLONED = "cloned"  # absent -> fresh
    UPDATED = "updated"  # stale -> fresh
    REUSED = "reused"  # fresh, no network
    STALE_RETAINED = "stale_retained"  # stale, update failed


class EnsureResult(BaseModel):
    """Path of a working copy plus how it was obtained."""

    identity: RepositoryIdentity
    path: Path
    outcome: EnsureOutcome

    @property
    def degraded(self) -> bool:
        """True when the returned copy is known to be possibly stale."""
        return self.outcome is EnsureOutcome.STALE_RETAINED


class CacheEntry(BaseSchema):
    """One materialized working copy on disk."""

    owner: str
    name: str
    path: Path
    last_updated: datetime
    size_bytes: int = Field(ge=0)

    @property
    def identity(self) -> RepositoryIdentity:
        return RepositoryIdentity(owner=self.owner, name=self.name)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class CacheStats(BaseModel):
    """Aggregate statistics over all cache entries."""

    total_repos: int = 0
    total_size_bytes: int = 0
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None


class EvictionReport(BaseModel):
    """Result of one eviction sweep.

    ``removed`` only counts successful removals; entries whose removal
    failed are listed by full name in ``failed``. ``retained`` counts
    candidates that were refreshed between the scan and their removal.
    """

    scanned: int = 0
    candidates: int = 0
    removed: int = 0
    freed_bytes: int = 0
    retained: int = 0
    failed: list[str] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed)
