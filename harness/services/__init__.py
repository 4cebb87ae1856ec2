"""Workspace cache services.

Import directly from the submodules, e.g.
``from harness.services.repo_cache import RepoCache``.
"""

__all__ = [
    "EvictionPolicy",
    "RepoCache",
    "SyncFailure",
]


def __getattr__(name: str):
    """Lazy access to the most used services."""
    if name == "EvictionPolicy":
        from harness.services.eviction import EvictionPolicy
        return EvictionPolicy
    if name in ("RepoCache", "SyncFailure"):
        from harness.services import repo_cache
        return getattr(repo_cache, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
