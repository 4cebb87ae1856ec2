"""Concurrent warm-up of the workspace cache.

The batch driver calls this before running the analysis tool so that every
repository in a run has a local working copy. Work fans out over a thread
pool; the cache's per-identity locks keep duplicate descriptors from racing.
"""

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from harness.core.config import settings
from harness.schemas.cache import EnsureOutcome, EnsureResult
from harness.schemas.repository import RemoteDescriptor
from harness.services.repo_cache import RepoCache, SyncFailure

logger = logging.getLogger(__name__)


@dataclass
class WarmReport:
    """Outcome of a warm-up run.

    Attributes:
        results: Successful ensures, in completion order
        failures: full_name -> error message for repositories that could
            not be cloned
    """

    results: list[EnsureResult] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    def count(self, outcome: EnsureOutcome) -> int:
        return sum(1 for result in self.results if result.outcome is outcome)


def warm_cache(
    cache: RepoCache,
    descriptors: Iterable[RemoteDescriptor],
    max_workers: int | None = None,
    timeout: float | None = None,
) -> WarmReport:
    """Ensure a working copy for each descriptor, in parallel.

    Clone failures are collected in the report instead of raised so one
    unreachable repository does not stop the batch.
    """
    report = WarmReport()
    workers = max_workers or settings.warm_workers

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="warm_") as executor:
        futures = {
            executor.submit(cache.ensure_detailed, descriptor, timeout): descriptor
            for descriptor in descriptors
        }

        for future in as_completed(futures):
            descriptor = futures[future]
            try:
                report.results.append(future.result())
            except SyncFailure as e:
                report.failures[descriptor.full_name] = str(e)

    logger.info(
        f"Cache warm-up finished: {len(report.results)} ready "
        f"({report.count(EnsureOutcome.CLONED)} cloned, "
        f"{report.count(EnsureOutcome.UPDATED)} updated, "
        f"{report.count(EnsureOutcome.STALE_RETAINED)} stale), "
        f"{len(report.failures)} failed"
    )
    return report
