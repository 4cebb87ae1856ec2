"""Age-based eviction of cached working copies."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from harness.core.config import settings
from harness.schemas.cache import CacheEntry, EvictionReport
from harness.schemas.common import ensure_utc
from harness.services.repo_cache import RepoCache

logger = logging.getLogger(__name__)


class EvictionPolicy:
    """Reclaims disk space by removing cache entries.

    Every entry is judged on its own and removed independently; a failed
    removal is recorded and the sweep moves on. Reported counts only
    include entries that were actually removed.
    """

    def __init__(self, cache: RepoCache, max_age_days: int | None = None):
        self.cache = cache
        self.max_age_days = max_age_days if max_age_days is not None else settings.max_age_days

    def cutoff(self, max_age_days: int | None = None, now: datetime | None = None) -> datetime:
        """Return the instant before which entries count as expired."""
        days = self.max_age_days if max_age_days is None else max_age_days
        if days < 0:
            raise ValueError(f"max_age_days must not be negative, got: {days}")
        reference = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        return reference - timedelta(days=days)

    def sweep(
        self,
        max_age_days: int | None = None,
        now: datetime | None = None,
    ) -> EvictionReport:
        """Remove entries last updated strictly before ``now - max_age_days``."""
        cutoff = self.cutoff(max_age_days, now)
        logger.info(f"Evicting cache entries last updated before {cutoff.isoformat()}")
        return self._evict(lambda entry: entry.last_updated < cutoff, older_than=cutoff)

    def sweep_all(self) -> EvictionReport:
        """Remove every entry regardless of age."""
        logger.info("Evicting all cache entries")
        return self._evict(lambda entry: True)

    def evict_older_than(
        self,
        max_age_days: int | None = None,
        now: datetime | None = None,
    ) -> int:
        """Clean repos older than ``max_age_days``; returns the number removed."""
        return self.sweep(max_age_days, now).removed

    def evict_all(self) -> int:
        """Clean all cached repos; returns the number removed."""
        return self.sweep_all().removed

    def _evict(
        self,
        should_evict: Callable[[CacheEntry], bool],
        older_than: datetime | None = None,
    ) -> EvictionReport:
        report = EvictionReport()

        # Snapshot first so removals never disturb the scan
        entries = list(self.cache.list_entries())
        report.scanned = len(entries)

        for entry in entries:
            if not should_evict(entry):
                continue
            report.candidates += 1

            try:
                removed = self.cache.remove(entry.identity, older_than=older_than)
            except Exception as e:
                logger.error(f"Unexpected error evicting {entry.full_name}: {e}")
                removed = False

            if removed:
                report.removed += 1
                report.freed_bytes += entry.size_bytes
            elif not self.cache.exists(entry.identity):
                # Vanished concurrently; nothing was removed by us
                continue
            elif older_than is not None and self._refreshed_since(entry, older_than):
                # Refreshed after the scan listed it
                report.retained += 1
            else:
                report.failed.append(entry.full_name)

        if report.failed:
            logger.warning(
                f"Eviction partially failed: {len(report.failed)} of {report.candidates} "
                f"entries could not be removed: {report.failed}"
            )

        logger.info(
            f"Evicted {report.removed} of {report.scanned} cached repos, "
            f"freed {report.freed_bytes} bytes"
        )
        return report

    def _refreshed_since(self, entry: CacheEntry, cutoff: datetime) -> bool:
        updated = self.cache.last_updated(entry.identity)
        return updated is not None and updated >= cutoff
