"""JSON-file registry of repositories to test.

The discovery step writes one record per repository. The cache only reads
this file; it never re-derives ``lastCommit`` itself.

Accepted layouts::

    [{"owner": ..., "name": ..., "url": ..., "defaultBranch": ..., "lastCommit": ...}]
    {"repos": [ ...same records... ]}

Keys may be camelCase or snake_case. Unknown keys (scores, signals,
star counts) are ignored.
"""

import json
import logging
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from harness.core.config import settings
from harness.schemas.repository import RemoteDescriptor

logger = logging.getLogger(__name__)

_descriptor_list = TypeAdapter(list[RemoteDescriptor])


class RegistryError(ValueError):
    """Raised when the registry file cannot be parsed."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"Invalid registry {path}: {message}")


class RepositoryRegistry:
    """Read-only view of the repository registry file."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path if path is not None else settings.registry_path)

    def load(self) -> list[RemoteDescriptor]:
        """Load all descriptors.

        Returns:
            Descriptors in file order; empty if the file does not exist

        Raises:
            RegistryError: If the file is not valid JSON or a record is invalid
        """
        if not self.path.exists():
            logger.info(f"Registry {self.path} not found, nothing to load")
            return []

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise RegistryError(self.path, f"not valid JSON ({e})") from e

        if isinstance(raw, dict):
            raw = raw.get("repos", [])
        if not isinstance(raw, list):
            raise RegistryError(self.path, "expected a list of repositories")

        try:
            descriptors = _descriptor_list.validate_python(raw)
        except ValidationError as e:
            raise RegistryError(self.path, str(e)) from e

        logger.debug(f"Loaded {len(descriptors)} repositories from {self.path}")
        return descriptors

    def get(self, owner: str, name: str) -> RemoteDescriptor | None:
        """Return the descriptor for ``owner/name`` if registered."""
        for descriptor in self.load():
            if descriptor.owner == owner and descriptor.name == name:
                return descriptor
        return None
