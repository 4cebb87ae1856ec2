"""Workspace cache garbage collection worker.

Periodically removes cached working copies that have not been refreshed
within the retention window, and offers an on-demand purge of the whole
cache.
"""

import logging
from datetime import datetime, timezone

from harness.core.celery import celery_app
from harness.schemas.cache import EvictionReport
from harness.services.eviction import EvictionPolicy
from harness.services.repo_cache import RepoCache

logger = logging.getLogger(__name__)


# =============================================================================
# Helper Functions
# =============================================================================


def _get_policy(cache_root: str | None = None) -> EvictionPolicy:
    """Build an eviction policy over the configured (or given) cache root."""
    cache = RepoCache(cache_root=cache_root)
    return EvictionPolicy(cache)


def _summarize(report: EvictionReport, cache_root: str) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cache_root": cache_root,
        "scanned": report.scanned,
        "candidates": report.candidates,
        "removed": report.removed,
        "retained": report.retained,
        "freed_bytes": report.freed_bytes,
        "failed": report.failed,
        "status": "partial" if report.partial else "completed",
    }


# =============================================================================
# Celery Tasks
# =============================================================================


@celery_app.task(name="harness.workers.cache_gc.evict_stale_repositories")
def evict_stale_repositories(
    max_age_days: int | None = None,
    cache_root: str | None = None,
) -> dict:
    """
    Remove cached repositories not refreshed within ``max_age_days``.

    Runs nightly via Celery Beat with the configured retention.

    Returns:
        dict with eviction statistics.
    """
    policy = _get_policy(cache_root)
    logger.info(f"Starting cache eviction in {policy.cache.cache_root}")

    try:
        report = policy.sweep(max_age_days)
    except Exception as e:
        logger.error(f"Cache eviction failed: {e}")
        raise

    return _summarize(report, str(policy.cache.cache_root))


@celery_app.task(name="harness.workers.cache_gc.purge_repository_cache")
def purge_repository_cache(cache_root: str | None = None) -> dict:
    """
    Remove every cached repository.

    Returns:
        dict with eviction statistics.
    """
    policy = _get_policy(cache_root)
    logger.info(f"Purging all cached repositories in {policy.cache.cache_root}")

    try:
        report = policy.sweep_all()
    except Exception as e:
        logger.error(f"Cache purge failed: {e}")
        raise

    return _summarize(report, str(policy.cache.cache_root))
