"""Local workspace cache of cloned repositories.

Each repository under test gets one working copy at
``<cache_root>/<owner>/<name>``. The filesystem is the only record of what
is cached: an entry exists iff its directory exists, and every scan re-reads
the tree.

Lifecycle per identity::

    absent --clone ok----> fresh
    absent --clone fails-> absent        (SyncFailure)
    fresh  --remote moves-> stale
    stale  --update ok---> fresh
    stale  --update fails-> stale        (path still returned)
    fresh|stale --remove--> absent

``ensure`` and ``remove`` for the same identity are serialized by a
per-identity lock; different identities run fully in parallel. The lock is a
thread lock in front of an ``fcntl.flock`` on
``<cache_root>/.locks/<owner>/<name>.lock``, so a GC worker process and a
batch driver sharing the cache root exclude each other too. Enumeration
takes no locks and may observe a clone or eviction in progress.
"""

import fcntl
import logging
import os
import shutil
import threading
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from harness.core.config import settings
from harness.schemas.cache import CacheEntry, CacheStats, EnsureOutcome, EnsureResult
from harness.schemas.common import ensure_utc
from harness.schemas.repository import (
    RemoteDescriptor,
    RepositoryIdentity,
    validate_path_segment,
)
from harness.services.dir_size import directory_size
from harness.services.freshness import FreshnessOracle
from harness.services.git_sync import GitSyncAdapter, SyncAdapter, SyncTransportError

logger = logging.getLogger(__name__)

# Dot-prefixed, so scans never mistake it for an owner directory
LOCK_DIR_NAME = ".locks"


# =============================================================================
# Exceptions
# =============================================================================


class SyncFailure(Exception):
    """Raised when a working copy could not be created.

    No entry exists for the identity afterwards.
    """

    def __init__(self, identity: RepositoryIdentity, message: str):
        self.identity = identity
        super().__init__(f"Could not clone {identity.full_name}: {message}")


def _is_entry_name(name: str) -> bool:
    """Directory names that cannot be an owner or repo name are not entries."""
    try:
        validate_path_segment(name)
    except ValueError:
        return False
    return True


# =============================================================================
# RepoCache
# =============================================================================


class RepoCache:
    """Creates, refreshes, enumerates and removes cached working copies."""

    def __init__(
        self,
        cache_root: Path | str | None = None,
        sync: SyncAdapter | None = None,
        oracle: FreshnessOracle | None = None,
        timeout: float | None = None,
        clone_depth: int | None = None,
    ):
        self.cache_root = Path(cache_root if cache_root is not None else settings.cache_root)
        self.sync = sync or GitSyncAdapter()
        self.oracle = oracle or FreshnessOracle(self.sync)
        self.timeout = timeout
        self.clone_depth = clone_depth or settings.clone_depth

        self._locks: dict[RepositoryIdentity, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Paths and locking
    # -------------------------------------------------------------------------

    def path_for(self, identity: RepositoryIdentity) -> Path:
        """Get path for a repo in the cache."""
        return self.cache_root / identity.owner / identity.name

    def lock_path_for(self, identity: RepositoryIdentity) -> Path:
        """Lock file guarding an entry across processes."""
        return self.cache_root / LOCK_DIR_NAME / identity.owner / f"{identity.name}.lock"

    def _lock_for(self, identity: RepositoryIdentity) -> threading.Lock:
        # One lock per identity ever seen; bounded by the registry size.
        # Dropping entries would let two threads hold different locks for
        # the same identity.
        with self._locks_guard:
            lock = self._locks.get(identity)
            if lock is None:
                lock = threading.Lock()
                self._locks[identity] = lock
            return lock

    @contextmanager
    def _exclusive(self, identity: RepositoryIdentity) -> Generator[None, None, None]:
        """Hold the identity's thread lock, then its file lock.

        Lock files are left in place after removal; unlinking them would let
        a waiter lock an orphaned inode.
        """
        with self._lock_for(identity):
            lock_path = self.lock_path_for(identity)
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_path.touch(exist_ok=True)

            lock_fd = os.open(str(lock_path), os.O_RDWR)
            try:
                fcntl.flock(lock_fd, fcntl.LOCK_EX)
                yield
            finally:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)
                os.close(lock_fd)

    def exists(self, identity: RepositoryIdentity) -> bool:
        """Check if repo exists in cache. No network, no freshness check."""
        return self.path_for(identity).is_dir()

    # -------------------------------------------------------------------------
    # Ensure
    # -------------------------------------------------------------------------

    def ensure(self, descriptor: RemoteDescriptor, timeout: float | None = None) -> Path:
        """Return the path of a present, reasonably fresh working copy.

        Raises:
            SyncFailure: If the repository was not cached and cloning failed
        """
        return self.ensure_detailed(descriptor, timeout=timeout).path

    def ensure_detailed(
        self,
        descriptor: RemoteDescriptor,
        timeout: float | None = None,
    ) -> EnsureResult:
        """Clone, update or reuse the working copy for ``descriptor``.

        Args:
            descriptor: Remote repository with URL, default branch and the
                remote's last commit time
            timeout: Per git operation limit in seconds (defaults to the
                cache's timeout, then the adapter's)

        Returns:
            EnsureResult with the path and the transition taken

        Raises:
            SyncFailure: If the repository was not cached and cloning failed
        """
        identity = descriptor.identity
        path = self.path_for(identity)
        effective_timeout = timeout if timeout is not None else self.timeout

        with self._exclusive(identity):
            if not path.is_dir():
                self._clone(descriptor, path, effective_timeout)
                return EnsureResult(identity=identity, path=path, outcome=EnsureOutcome.CLONED)

            if not self.oracle.is_stale(path, descriptor, timeout=effective_timeout):
                logger.debug(f"Reusing fresh copy of {identity.full_name}")
                return EnsureResult(identity=identity, path=path, outcome=EnsureOutcome.REUSED)

            if self._update(descriptor, path, effective_timeout):
                return EnsureResult(identity=identity, path=path, outcome=EnsureOutcome.UPDATED)

            return EnsureResult(
                identity=identity, path=path, outcome=EnsureOutcome.STALE_RETAINED
            )

    def _clone(self, descriptor: RemoteDescriptor, path: Path, timeout: float | None) -> None:
        """Clone into ``path``; on failure leave no entry behind."""
        identity = descriptor.identity
        try:
            self.sync.clone(
                descriptor.url,
                path,
                descriptor.default_branch,
                depth=self.clone_depth,
                timeout=timeout,
            )
        except (SyncTransportError, OSError) as e:
            logger.error(f"Clone of {identity.full_name} failed: {e}")
            self._discard(identity, path)
            raise SyncFailure(identity, str(e)) from e

        self._touch(path)
        logger.info(f"Cloned {identity.full_name} into {path}")

    def _update(self, descriptor: RemoteDescriptor, path: Path, timeout: float | None) -> bool:
        """Fetch the branch head and hard reset to it.

        Returns False (keeping the stale copy) when the update fails.
        """
        identity = descriptor.identity
        try:
            self.sync.fetch_shallow(
                path,
                descriptor.url,
                descriptor.default_branch,
                depth=self.clone_depth,
                timeout=timeout,
            )
            self.sync.hard_reset(path, "FETCH_HEAD", timeout=timeout)
        except (SyncTransportError, OSError) as e:
            logger.warning(f"Failed to update {identity.full_name}, using stale copy at {path}: {e}")
            return False

        self._touch(path)
        logger.info(f"Updated {identity.full_name} at {path}")
        return True

    @staticmethod
    def _touch(path: Path) -> None:
        """Stamp the entry directory so its mtime records the last refresh."""
        try:
            os.utime(path)
        except OSError as e:
            logger.debug(f"Could not update mtime of {path}: {e}")

    def _discard(self, identity: RepositoryIdentity, path: Path) -> None:
        """Remove a partially written entry after a failed clone."""
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
            if path.exists():
                logger.warning(f"Could not fully remove partial clone at {path}")
        self._prune_owner_dir(identity)

    # -------------------------------------------------------------------------
    # Remove
    # -------------------------------------------------------------------------

    def last_updated(self, identity: RepositoryIdentity) -> datetime | None:
        """Return when the entry was last cloned or refreshed, or None if absent."""
        try:
            mtime = self.path_for(identity).stat().st_mtime
        except OSError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    def remove(self, identity: RepositoryIdentity, older_than: datetime | None = None) -> bool:
        """Remove a repo from cache.

        The owner directory is removed too when it becomes empty.

        Args:
            identity: Entry to remove
            older_than: Only remove the entry if it was last updated strictly
                before this instant. Checked under the identity lock, so an
                entry refreshed after an eviction scan listed it survives.

        Returns:
            True if the entry was removed, False if it did not exist, was
            refreshed at or after ``older_than``, or could not be fully removed
        """
        path = self.path_for(identity)

        with self._exclusive(identity):
            if not path.is_dir():
                return False

            if older_than is not None:
                updated = self.last_updated(identity)
                if updated is not None and updated >= ensure_utc(older_than):
                    logger.info(
                        f"Keeping {identity.full_name}: refreshed at {updated.isoformat()}"
                    )
                    return False

            try:
                shutil.rmtree(path)
            except FileNotFoundError:
                # Deleted underneath us; still gone
                pass
            except OSError as e:
                logger.warning(f"Partially removed {identity.full_name} at {path}: {e}")
                return False

            self._prune_owner_dir(identity)

        logger.info(f"Removed {identity.full_name} from cache")
        return True

    def _prune_owner_dir(self, identity: RepositoryIdentity) -> None:
        owner_dir = self.cache_root / identity.owner
        try:
            owner_dir.rmdir()
        except OSError:
            # Not empty (siblings remain) or already gone
            pass

    # -------------------------------------------------------------------------
    # Enumeration
    # -------------------------------------------------------------------------

    def list_entries(self) -> Iterator[CacheEntry]:
        """Yield every cached repo, re-scanning the cache root on each call.

        Non-directories, names no identity could have (such as dot-prefixed
        ones) and entries that vanish during the scan are skipped.
        """
        try:
            owners = sorted(os.scandir(self.cache_root), key=lambda e: e.name)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Failed to list cached repos in {self.cache_root}: {e}")
            return

        for owner in owners:
            if not _is_entry_name(owner.name) or not owner.is_dir(follow_symlinks=False):
                continue

            try:
                repos = sorted(os.scandir(owner.path), key=lambda e: e.name)
            except OSError:
                continue

            for repo in repos:
                if not _is_entry_name(repo.name) or not repo.is_dir(follow_symlinks=False):
                    continue
                try:
                    mtime = repo.stat(follow_symlinks=False).st_mtime
                except OSError:
                    continue

                yield CacheEntry(
                    owner=owner.name,
                    name=repo.name,
                    path=Path(repo.path),
                    last_updated=datetime.fromtimestamp(mtime, tz=timezone.utc),
                    size_bytes=directory_size(Path(repo.path)),
                )

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        entries = list(self.list_entries())
        if not entries:
            return CacheStats()

        dates = [entry.last_updated for entry in entries]
        return CacheStats(
            total_repos=len(entries),
            total_size_bytes=sum(entry.size_bytes for entry in entries),
            oldest_entry=min(dates),
            newest_entry=max(dates),
        )
