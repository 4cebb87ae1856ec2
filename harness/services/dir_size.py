"""Directory size accounting for cached working copies."""

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Version-control metadata is not part of the working copy
EXCLUDED_DIRS = frozenset([".git"])


@dataclass
class DirectorySize:
    """Size of a directory tree in bytes.

    Attributes:
        total_bytes: Sum of regular file sizes that could be read
        skipped: Paths that could not be read; when non-empty the total
            is a lower bound
    """

    total_bytes: int = 0
    skipped: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.skipped


def measure_directory(path: Path) -> DirectorySize:
    """Recursively sum the size of regular files under ``path``.

    ``.git`` directories are pruned. Symlinks are neither followed nor
    counted. Unreadable directories and files that disappear during the
    walk are recorded in ``skipped`` instead of aborting the scan.

    Args:
        path: Root of the tree to measure

    Returns:
        DirectorySize with the byte total and any skipped paths
    """
    result = DirectorySize()

    def _on_error(error: OSError) -> None:
        result.skipped.append(str(error.filename))

    for dirpath, dirnames, filenames in os.walk(path, onerror=_on_error):
        dirnames[:] = [d for d in dirnames if d not in EXCLUDED_DIRS]

        for filename in filenames:
            file_path = os.path.join(dirpath, filename)
            try:
                st = os.lstat(file_path)
            except OSError:
                result.skipped.append(file_path)
                continue
            if stat.S_ISREG(st.st_mode):
                result.total_bytes += st.st_size

    if result.skipped:
        logger.debug(
            f"Size of {path} is a lower bound: skipped {len(result.skipped)} unreadable paths"
        )

    return result


def directory_size(path: Path) -> int:
    """Return the byte size of the working copy at ``path``, excluding ``.git``."""
    return measure_directory(path).total_bytes
