"""Repository identity and remote descriptor schemas."""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, ConfigDict, Field, field_validator

from harness.schemas.common import BaseSchema, ensure_utc

_FORBIDDEN_CHARS = ("/", "\\", "\x00")


def validate_path_segment(value: str) -> str:
    """Validate that an owner or repository name is a single safe path segment.

    Names become directories under the cache root, so they must not escape
    it or collide with the dot-prefixed names the cache skips during scans.

    Raises:
        ValueError: If the value is not usable as a directory name
    """
    if not value or not value.strip():
        raise ValueError("must not be empty")
    if value in (".", ".."):
        raise ValueError(f"'{value}' is not a valid name")
    if value.startswith("."):
        raise ValueError(f"'{value}' must not start with '.'")
    for char in _FORBIDDEN_CHARS:
        if char in value:
            raise ValueError(f"'{value}' must not contain {char!r}")
    return value


PathSegment = Annotated[str, AfterValidator(validate_path_segment)]


class RepositoryIdentity(BaseSchema):
    """Cache key for one repository: the (owner, name) pair."""

    model_config = ConfigDict(frozen=True)

    owner: PathSegment
    name: PathSegment

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, full_name: str) -> "RepositoryIdentity":
        """Build an identity from an ``owner/name`` string."""
        owner, sep, name = full_name.strip().partition("/")
        if not sep:
            raise ValueError(f"Invalid repo format '{full_name}'. Use owner/name")
        return cls(owner=owner, name=name)

    def __str__(self) -> str:
        return self.full_name


class RemoteDescriptor(BaseSchema):
    """What the discovery registry knows about a remote repository.

    ``last_commit`` is a freshness hint reported by the remote host; the
    cache compares against it but never fetches it itself.
    """

    model_config = ConfigDict(frozen=True)

    owner: PathSegment
    name: PathSegment
    url: str
    default_branch: str = Field(alias="defaultBranch")
    last_commit: datetime = Field(alias="lastCommit")

    @field_validator("url", "default_branch")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("last_commit")
    @classmethod
    def _normalize_last_commit(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def identity(self) -> RepositoryIdentity:
        return RepositoryIdentity(owner=self.owner, name=self.name)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"
