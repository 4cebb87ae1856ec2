"""Integration tests for the git-backed cache.

These tests build real git repositories in temporary directories and clone
them over file:// URLs, exercising the full ensure lifecycle end to end.
"""

from __future__ import annotations

import os
import shutil
import stat
from datetime import timedelta
from pathlib import Path

import pytest

from conftest import T0, commit_file, git, make_descriptor, owner_dirs, requires_git
from harness.schemas.cache import EnsureOutcome
from harness.services.git_sync import GitSyncAdapter, SyncTransportError
from harness.services.repo_cache import RepoCache, SyncFailure

pytestmark = [requires_git, pytest.mark.git]


@pytest.fixture
def adapter() -> GitSyncAdapter:
    return GitSyncAdapter(default_timeout=60)


@pytest.fixture
def git_cache(cache_root: Path, adapter: GitSyncAdapter) -> RepoCache:
    return RepoCache(cache_root=cache_root, sync=adapter)


# =============================================================================
# Adapter primitives
# =============================================================================


class TestGitSyncAdapter:
    def test_clone_is_shallow_single_branch(
        self, upstream: Path, tmp_path: Path, adapter: GitSyncAdapter
    ):
        commit_file(upstream, "index.ts", "export const size = 2;\n", T0 + timedelta(hours=1))
        git(upstream, "branch", "feature")
        destination = tmp_path / "clone"

        adapter.clone(upstream.as_uri(), destination, "main")

        assert git(destination, "rev-list", "--count", "HEAD").strip() == "1"
        branches = git(destination, "branch", "-r").split()
        assert "origin/feature" not in branches

    def test_clone_creates_missing_parent_directories(
        self, upstream: Path, tmp_path: Path, adapter: GitSyncAdapter
    ):
        destination = tmp_path / "cache" / "acme" / "widgets"

        adapter.clone(upstream.as_uri(), destination, "main")

        assert (destination / "index.ts").exists()

    def test_most_recent_commit_reads_committer_time(
        self, upstream: Path, adapter: GitSyncAdapter
    ):
        info = adapter.most_recent_commit(upstream)

        assert info.timestamp == T0
        assert info.hash == git(upstream, "rev-parse", "HEAD").strip()

    def test_most_recent_commit_does_not_escape_into_parent_repo(
        self, upstream: Path, adapter: GitSyncAdapter
    ):
        nested = upstream / "nested"
        nested.mkdir()

        with pytest.raises(SyncTransportError) as exc_info:
            adapter.most_recent_commit(nested)

        assert exc_info.value.operation == "log"

    def test_clone_missing_branch_fails(
        self, upstream: Path, tmp_path: Path, adapter: GitSyncAdapter
    ):
        with pytest.raises(SyncTransportError) as exc_info:
            adapter.clone(upstream.as_uri(), tmp_path / "clone", "does-not-exist")

        assert exc_info.value.operation == "clone"

    def test_missing_binary_is_transport_error(self, tmp_path: Path):
        adapter = GitSyncAdapter(git_binary=str(tmp_path / "no-such-git"))

        with pytest.raises(SyncTransportError):
            adapter.most_recent_commit(tmp_path)

    @pytest.mark.skipif(os.name == "nt", reason="needs a POSIX shell script")
    def test_timeout_is_transport_error(self, tmp_path: Path):
        slow_git = tmp_path / "slow-git"
        slow_git.write_text("#!/bin/sh\nexec sleep 5\n")
        slow_git.chmod(slow_git.stat().st_mode | stat.S_IXUSR)
        adapter = GitSyncAdapter(git_binary=str(slow_git))

        with pytest.raises(SyncTransportError, match="timed out"):
            adapter.clone("file:///nowhere", tmp_path / "clone", "main", timeout=0.5)


# =============================================================================
# End-to-end lifecycle
# =============================================================================


class TestGitBackedCache:
    def test_clone_reuse_update_scenario(self, upstream: Path, git_cache: RepoCache):
        url = upstream.as_uri()

        first = git_cache.ensure_detailed(make_descriptor(url=url, last_commit=T0))
        assert first.outcome is EnsureOutcome.CLONED
        assert (first.path / "index.ts").read_text() == "export const size = 1;\n"
        assert git_cache.sync.most_recent_commit(first.path).timestamp == T0

        second = git_cache.ensure_detailed(make_descriptor(url=url, last_commit=T0))
        assert second.outcome is EnsureOutcome.REUSED
        assert second.path == first.path

        later = T0 + timedelta(days=1)
        commit_file(upstream, "index.ts", "export const size = 2;\n", later)
        third = git_cache.ensure_detailed(make_descriptor(url=url, last_commit=later))

        assert third.outcome is EnsureOutcome.UPDATED
        assert third.path == first.path
        assert (third.path / "index.ts").read_text() == "export const size = 2;\n"
        assert git_cache.sync.most_recent_commit(third.path).timestamp == later

    def test_update_discards_local_modifications(self, upstream: Path, git_cache: RepoCache):
        url = upstream.as_uri()
        path = git_cache.ensure(make_descriptor(url=url, last_commit=T0))
        (path / "index.ts").write_text("locally edited\n")

        later = T0 + timedelta(days=1)
        commit_file(upstream, "other.ts", "export {};\n", later)
        git_cache.ensure(make_descriptor(url=url, last_commit=later))

        assert (path / "index.ts").read_text() == "export const size = 1;\n"
        assert (path / "other.ts").exists()

    def test_clone_failure_leaves_no_entry(
        self, upstream: Path, git_cache: RepoCache, cache_root: Path
    ):
        descriptor = make_descriptor(url=upstream.as_uri(), branch="does-not-exist")

        with pytest.raises(SyncFailure):
            git_cache.ensure(descriptor)

        assert git_cache.exists(descriptor.identity) is False
        assert owner_dirs(cache_root) == []

    def test_unreachable_remote_on_update_keeps_stale_copy(
        self, upstream: Path, git_cache: RepoCache
    ):
        url = upstream.as_uri()
        path = git_cache.ensure(make_descriptor(url=url, last_commit=T0))

        shutil.rmtree(upstream)
        result = git_cache.ensure_detailed(
            make_descriptor(url=url, last_commit=T0 + timedelta(days=1))
        )

        assert result.outcome is EnsureOutcome.STALE_RETAINED
        assert result.path == path
        assert (path / "index.ts").read_text() == "export const size = 1;\n"
        assert git_cache.sync.most_recent_commit(path).timestamp == T0

    def test_entry_size_excludes_git_directory(self, upstream: Path, git_cache: RepoCache):
        path = git_cache.ensure(make_descriptor(url=upstream.as_uri(), last_commit=T0))

        entry = next(iter(git_cache.list_entries()))

        assert entry.path == path
        assert entry.size_bytes == len("export const size = 1;\n")
