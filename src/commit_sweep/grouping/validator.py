"""
Path validation and exclusion rules.

Unsafe paths abort planning for the whole repository: nothing from a
repository whose status output contains such a path is ever staged.
Denylisted files (secrets, build artefacts, editor droppings) and, unless
opted in, binary files, submodules and broken symlinks are excluded from
grouping and reported under ``skipped``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from commit_sweep.grouping.group_model import FileChange


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


DEFAULT_DENYLIST = (
    # secrets
    ".env",
    ".env.*",
    "*.pem",
    "*.key",
    "*.p12",
    "*.pfx",
    "id_rsa",
    "id_rsa.*",
    "id_dsa*",
    "id_ecdsa*",
    "id_ed25519*",
    "credentials.json",
    "secrets.json",
    # build artefacts and caches
    "node_modules",
    "__pycache__",
    "*.pyc",
    "*.pyo",
    "*.egg-info",
    "dist",
    "build",
    # logs, temp and swap files
    "*.log",
    "*.tmp",
    "*.temp",
    "*.swp",
    "*.swo",
    "*~",
    # OS and editor state
    ".DS_Store",
    "Thumbs.db",
    ".idea",
    ".vscode",
)

BINARY_SNIFF_BYTES = 8000

SKIP_BINARY = "binary"
SKIP_SUBMODULES = "submodules"
SKIP_EXCLUDED = "excluded"
SKIP_BROKEN_SYMLINKS = "broken_symlinks"


class UnsafePathError(Exception):
    """Raised when a status entry names a path that must never reach git."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Unsafe path {path!r}: {reason}")
        self.path = path
        self.reason = reason


@dataclass
class ValidationResult:
    """Outcome of validating one repository's change set."""

    accepted: List[FileChange] = field(default_factory=list)
    skipped: Dict[str, List[str]] = field(
        default_factory=lambda: {
            SKIP_BINARY: [],
            SKIP_SUBMODULES: [],
            SKIP_EXCLUDED: [],
            SKIP_BROKEN_SYMLINKS: [],
        }
    )
    warnings: List[str] = field(default_factory=list)

    @property
    def excluded_paths(self) -> List[str]:
        return [path for paths in self.skipped.values() for path in paths]


def unsafe_path_reason(path: str) -> Optional[str]:
    """Return why ``path`` is unsafe, or ``None`` if it may be passed to git."""
    if not path:
        return "empty path"
    if "\0" in path:
        return "contains a null byte"
    if path.startswith("-"):
        return "starts with '-' and could be read as an option"
    if path.startswith("/") or os.path.isabs(path):
        return "is an absolute path"
    if ".." in path.split("/"):
        return "escapes the repository with '..'"
    return None


def is_path_denied(path: str, patterns: Sequence[str]) -> bool:
    """Return True if ``path`` matches any denylist pattern.

    A pattern matches the basename, any single path component, or, when it
    contains a ``/``, the whole path. A leading ``./`` is ignored.
    """
    normalized = path[2:] if path.startswith("./") else path
    components = [part for part in normalized.split("/") if part]
    for pattern in patterns:
        if "/" in pattern:
            if fnmatchcase(normalized, pattern[2:] if pattern.startswith("./") else pattern):
                return True
            continue
        if any(fnmatchcase(component, pattern) for component in components):
            return True
    return False


def is_binary_file(path: Path) -> bool:
    """Sniff for a NUL byte, the same heuristic git uses."""
    try:
        with path.open("rb") as handle:
            chunk = handle.read(BINARY_SNIFF_BYTES)
    except OSError:
        return False
    return b"\0" in chunk


class ChangeValidator:
    """Validate and annotate the collected change set of one repository.

    Parameters
    ----------
    repo_root : Path
        Repository working tree, used to inspect files on disk.
    denylist : Iterable[str]
        Patterns added to :data:`DEFAULT_DENYLIST`.
    include_binary, include_submodules, include_broken_symlinks : bool
        Opt-ins that keep the corresponding files in the change set.
    """

    def __init__(
        self,
        repo_root: Path,
        denylist: Iterable[str] = (),
        include_binary: bool = False,
        include_submodules: bool = False,
        include_broken_symlinks: bool = False,
    ) -> None:
        self.repo_root = Path(repo_root)
        self.patterns = list(DEFAULT_DENYLIST) + [p for p in denylist if p]
        self.include_binary = include_binary
        self.include_submodules = include_submodules
        self.include_broken_symlinks = include_broken_symlinks

    def check_paths(self, changes: Iterable[FileChange]) -> None:
        """Raise :class:`UnsafePathError` for the first unsafe path."""
        for change in changes:
            for path in change.paths:
                reason = unsafe_path_reason(path)
                if reason:
                    logger.error("Rejecting unsafe path %r: %s", path, reason)
                    raise UnsafePathError(path, reason)

    def annotate(self, change: FileChange) -> FileChange:
        """Return ``change`` with its exclusion flags filled in."""
        abs_path = self.repo_root / change.path
        denylisted = is_path_denied(change.path, self.patterns)
        broken = abs_path.is_symlink() and not abs_path.exists()
        submodule = not broken and abs_path.is_dir() and not abs_path.is_symlink()
        binary = (
            not change.is_deleted
            and not broken
            and not submodule
            and abs_path.is_file()
            and is_binary_file(abs_path)
        )
        return replace(
            change,
            denylisted=denylisted,
            broken_symlink=broken,
            submodule=submodule,
            binary=binary,
        )

    def validate(self, changes: Sequence[FileChange]) -> ValidationResult:
        """Annotate every change and split accepted from skipped files.

        Raises
        ------
        UnsafePathError
            If any path is unsafe. Nothing is returned for the repository.
        """
        self.check_paths(changes)
        result = ValidationResult()
        for change in changes:
            annotated = self.annotate(change)
            if annotated.denylisted:
                result.skipped[SKIP_EXCLUDED].append(annotated.path)
                result.warnings.append(f"Excluded by denylist: {annotated.path}")
            elif annotated.submodule and not self.include_submodules:
                result.skipped[SKIP_SUBMODULES].append(annotated.path)
                result.warnings.append(f"Skipped submodule: {annotated.path}")
            elif annotated.broken_symlink and not self.include_broken_symlinks:
                result.skipped[SKIP_BROKEN_SYMLINKS].append(annotated.path)
                result.warnings.append(f"Skipped broken symlink: {annotated.path}")
            elif annotated.binary and not self.include_binary:
                result.skipped[SKIP_BINARY].append(annotated.path)
                result.warnings.append(f"Skipped binary file: {annotated.path}")
            else:
                result.accepted.append(annotated)
        for warning in result.warnings:
            logger.info(warning)
        return result
