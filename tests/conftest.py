"""Shared fixtures for workspace cache tests."""

from __future__ import annotations

import os
import shutil
import subprocess
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from harness.schemas.repository import RemoteDescriptor
from harness.services.git_sync import CommitInfo, SyncAdapter, SyncTransportError

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Fake Sync Adapter
# =============================================================================


class FakeSyncAdapter(SyncAdapter):
    """In-memory stand-in for the git transport.

    ``remotes`` maps URL -> CommitInfo of the branch head. Cloning writes a
    small working tree plus a ``.git`` directory; fetch+reset copies the
    remote head into the local record. ``fail`` holds operation names that
    should raise SyncTransportError.
    """

    def __init__(self, clone_delay: float = 0.0):
        self.remotes: dict[str, CommitInfo] = {}
        self.local: dict[Path, CommitInfo] = {}
        self.fetched: dict[Path, CommitInfo] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail: set[str] = set()
        self.clone_delay = clone_delay
        self.timeouts: list[float | None] = []
        self._lock = threading.Lock()
        self.active_clones = 0
        self.max_active_clones = 0

    def publish(self, url: str, timestamp: datetime, sha: str | None = None) -> None:
        """Move the remote head of ``url`` to a new commit at ``timestamp``."""
        sha = sha or f"{int(timestamp.timestamp()):040x}"
        self.remotes[url] = CommitInfo(hash=sha, timestamp=timestamp)

    def network_calls(self) -> list[str]:
        return [op for op, _ in self.calls if op in ("clone", "fetch", "reset")]

    def _record(self, operation: str, target: str, timeout: float | None) -> None:
        with self._lock:
            self.calls.append((operation, target))
            self.timeouts.append(timeout)

    def clone(self, url, destination, branch, depth=1, timeout=None):
        self._record("clone", str(destination), timeout)
        with self._lock:
            self.active_clones += 1
            self.max_active_clones = max(self.max_active_clones, self.active_clones)
        try:
            destination = Path(destination)
            destination.mkdir(parents=True)
            (destination / "README.md").write_text(f"# {url}@{branch}\n")
            if self.clone_delay:
                time.sleep(self.clone_delay)
            if "clone" in self.fail or url not in self.remotes:
                raise SyncTransportError("clone", f"repository '{url}' not found")
            (destination / ".git").mkdir()
            (destination / ".git" / "HEAD").write_text(f"ref: refs/heads/{branch}\n")
            self.local[destination] = self.remotes[url]
        finally:
            with self._lock:
                self.active_clones -= 1

    def fetch_shallow(self, path, url, branch, depth=1, timeout=None):
        self._record("fetch", str(path), timeout)
        if "fetch" in self.fail or url not in self.remotes:
            raise SyncTransportError("fetch", "could not resolve host")
        self.fetched[Path(path)] = self.remotes[url]

    def hard_reset(self, path, ref="FETCH_HEAD", timeout=None):
        self._record("reset", str(path), timeout)
        if "reset" in self.fail:
            raise SyncTransportError("reset", "index.lock exists")
        self.local[Path(path)] = self.fetched[Path(path)]

    def most_recent_commit(self, path, timeout=None):
        self._record("log", str(path), timeout)
        if "log" in self.fail or Path(path) not in self.local:
            raise SyncTransportError("log", "does not have any commits yet")
        return self.local[Path(path)]


@pytest.fixture
def fake_sync() -> FakeSyncAdapter:
    return FakeSyncAdapter()


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    root = tmp_path / "repos"
    root.mkdir()
    return root


def make_descriptor(
    owner: str = "acme",
    name: str = "widgets",
    last_commit: datetime = T0,
    url: str | None = None,
    branch: str = "main",
) -> RemoteDescriptor:
    return RemoteDescriptor(
        owner=owner,
        name=name,
        url=url or f"https://github.com/{owner}/{name}.git",
        default_branch=branch,
        last_commit=last_commit,
    )


def set_mtime(path: Path, when: datetime) -> None:
    ts = when.timestamp()
    os.utime(path, (ts, ts))


def owner_dirs(root: Path) -> list[str]:
    """Owner directory names under a cache root, ignoring lock bookkeeping."""
    return sorted(p.name for p in root.iterdir() if not p.name.startswith("."))


# =============================================================================
# Real git helpers
# =============================================================================

GIT_AVAILABLE = shutil.which("git") is not None

requires_git = pytest.mark.skipif(not GIT_AVAILABLE, reason="git binary not available")


def git(repo: Path, *args: str, when: datetime | None = None) -> str:
    """Run git in ``repo`` with a fixed identity and optional commit date."""
    env = {
        **os.environ,
        "GIT_AUTHOR_NAME": "Test User",
        "GIT_AUTHOR_EMAIL": "test@example.com",
        "GIT_COMMITTER_NAME": "Test User",
        "GIT_COMMITTER_EMAIL": "test@example.com",
        "GIT_CONFIG_NOSYSTEM": "1",
    }
    if when is not None:
        stamp = f"@{int(when.timestamp())} +0000"
        env["GIT_AUTHOR_DATE"] = stamp
        env["GIT_COMMITTER_DATE"] = stamp
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        env=env,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


def commit_file(repo: Path, filename: str, content: str, when: datetime) -> None:
    (repo / filename).write_text(content)
    git(repo, "add", filename)
    git(repo, "commit", "-q", "-m", f"Update {filename}", when=when)


@pytest.fixture
def upstream(tmp_path: Path) -> Path:
    """A local upstream repository on branch ``main`` with one commit at T0."""
    repo = tmp_path / "upstream" / "widgets"
    repo.mkdir(parents=True)
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    commit_file(repo, "index.ts", "export const size = 1;\n", T0)
    return repo
