"""Git transport primitives used by the workspace cache.

This module provides an abstract interface for the handful of remote
synchronization operations the cache needs (shallow clone, shallow fetch,
hard reset, last-commit lookup), with a concrete implementation that shells
out to the git binary.
"""

from __future__ import annotations

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from harness.core.config import settings

logger = logging.getLogger(__name__)


class SyncTransportError(Exception):
    """Raised when a git operation fails (network, auth, missing ref, timeout, disk)."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"git {operation} failed: {message}")


@dataclass(frozen=True)
class CommitInfo:
    """Most recent commit of a working copy."""

    hash: str
    timestamp: datetime


class SyncAdapter(ABC):
    """Abstract interface for remote synchronization.

    Implementations: GitSyncAdapter (git CLI). Tests use in-memory fakes.
    All operations block the caller until done.
    """

    @abstractmethod
    def clone(
        self,
        url: str,
        destination: Path,
        branch: str,
        depth: int = 1,
        timeout: float | None = None,
    ) -> None:
        """Create a single-branch shallow checkout of ``branch`` at ``destination``.

        Implementations create missing parent directories of ``destination``
        themselves: removing a sibling entry may prune an empty owner
        directory just before the call.

        Raises:
            SyncTransportError: If the clone fails or times out
        """
        ...

    @abstractmethod
    def fetch_shallow(
        self,
        path: Path,
        url: str,
        branch: str,
        depth: int = 1,
        timeout: float | None = None,
    ) -> None:
        """Fetch the latest ``depth`` commits of ``branch`` from ``url`` into FETCH_HEAD.

        Raises:
            SyncTransportError: If the fetch fails or times out
        """
        ...

    @abstractmethod
    def hard_reset(
        self,
        path: Path,
        ref: str = "FETCH_HEAD",
        timeout: float | None = None,
    ) -> None:
        """Reset the working tree at ``path`` to ``ref``, discarding local changes.

        Raises:
            SyncTransportError: If the reset fails
        """
        ...

    @abstractmethod
    def most_recent_commit(
        self,
        path: Path,
        timeout: float | None = None,
    ) -> CommitInfo:
        """Return hash and committer time of HEAD in ``path``.

        Raises:
            SyncTransportError: If there is no readable history
        """
        ...


class GitSyncAdapter(SyncAdapter):
    """SyncAdapter backed by the git command line client."""

    def __init__(
        self,
        git_binary: str | None = None,
        default_timeout: float | None = None,
    ):
        self.git_binary = git_binary or settings.git_binary
        self.default_timeout = (
            default_timeout if default_timeout is not None else settings.git_timeout_seconds
        )

    def _run(
        self,
        operation: str,
        args: list[str],
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> str:
        """Run one git command and return stdout.

        Non-zero exit codes, timeouts and OS errors (missing binary, missing
        cwd) are all reported as SyncTransportError.
        """
        effective_timeout = timeout if timeout is not None else self.default_timeout
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        if cwd is not None:
            # Never let a broken entry resolve to an enclosing repository
            env["GIT_CEILING_DIRECTORIES"] = str(Path(cwd).resolve().parent)
        try:
            result = subprocess.run(
                [self.git_binary, *args],
                capture_output=True,
                text=True,
                timeout=effective_timeout,
                cwd=str(cwd) if cwd else None,
                env=env,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"git {operation} timed out after {effective_timeout}s")
            raise SyncTransportError(operation, f"timed out after {effective_timeout}s")
        except OSError as e:
            raise SyncTransportError(operation, str(e)) from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            logger.debug(f"git {operation} exited {result.returncode}: {stderr}")
            raise SyncTransportError(operation, stderr or f"exit code {result.returncode}")

        return result.stdout

    def clone(
        self,
        url: str,
        destination: Path,
        branch: str,
        depth: int = 1,
        timeout: float | None = None,
    ) -> None:
        logger.info(f"Cloning {url} ({branch}) into {destination}")
        try:
            Path(destination).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SyncTransportError("clone", str(e)) from e
        self._run(
            "clone",
            [
                "clone",
                "--depth", str(depth),
                "--branch", branch,
                "--single-branch",
                "--quiet",
                url,
                str(destination),
            ],
            timeout=timeout,
        )

    def fetch_shallow(
        self,
        path: Path,
        url: str,
        branch: str,
        depth: int = 1,
        timeout: float | None = None,
    ) -> None:
        logger.info(f"Fetching {url} ({branch}) into {path}")
        self._run(
            "fetch",
            ["fetch", "--depth", str(depth), "--quiet", url, branch],
            cwd=path,
            timeout=timeout,
        )

    def hard_reset(
        self,
        path: Path,
        ref: str = "FETCH_HEAD",
        timeout: float | None = None,
    ) -> None:
        self._run("reset", ["reset", "--hard", "--quiet", ref], cwd=path, timeout=timeout)

    def most_recent_commit(
        self,
        path: Path,
        timeout: float | None = None,
    ) -> CommitInfo:
        output = self._run(
            "log",
            ["log", "-1", "--format=%H %ct"],
            cwd=path,
            timeout=timeout,
        ).strip()

        parts = output.split()
        if len(parts) != 2 or not parts[1].isdigit():
            raise SyncTransportError("log", f"unexpected output: {output!r}")

        return CommitInfo(
            hash=parts[0],
            timestamp=datetime.fromtimestamp(int(parts[1]), tz=timezone.utc),
        )
