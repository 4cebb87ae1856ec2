"""Freshness check for cached working copies.

Staleness is decided by comparing the committer time of the local HEAD with
the last-commit time the remote host reported for the repository. Equal
timestamps count as fresh. This tolerates clock resolution differences
between hosts, at the price of missing a push that lands in the same second
as the cached commit; it is an approximation of "did the remote change",
not a content comparison.
"""

import logging
from pathlib import Path

from harness.schemas.repository import RemoteDescriptor
from harness.services.git_sync import CommitInfo, SyncAdapter, SyncTransportError

logger = logging.getLogger(__name__)


class FreshnessOracle:
    """Decides whether a local working copy needs a refresh."""

    def __init__(self, sync: SyncAdapter):
        self.sync = sync

    def local_commit(self, path: Path, timeout: float | None = None) -> CommitInfo | None:
        """Return the local HEAD commit, or None if history cannot be read."""
        try:
            return self.sync.most_recent_commit(path, timeout=timeout)
        except SyncTransportError as e:
            logger.info(f"No readable history at {path}: {e}")
            return None

    def is_stale(
        self,
        path: Path,
        descriptor: RemoteDescriptor,
        timeout: float | None = None,
    ) -> bool:
        """Return True if the copy at ``path`` is older than the remote head.

        A copy without retrievable history (interrupted clone, corruption,
        adapter error) is always stale.
        """
        local = self.local_commit(path, timeout=timeout)
        if local is None:
            return True

        stale = descriptor.last_commit > local.timestamp
        if stale:
            logger.debug(
                f"{descriptor.full_name} is stale: remote {descriptor.last_commit.isoformat()} "
                f"> local {local.timestamp.isoformat()} ({local.hash[:7]})"
            )
        return stale
