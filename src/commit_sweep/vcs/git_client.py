"""
Git client implementation for commit_sweep.

This module wraps every git operation commit-sweep performs. All commands
go through :meth:`GitClient._run` so unit tests can mock a single seam.
Output is decoded as UTF-8 with ``surrogateescape`` so paths that are not
valid UTF-8 survive the round trip back into git arguments unchanged.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from commit_sweep.grouping.group_model import FileChange


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


MIN_GIT_VERSION = (2, 20)

# Porcelain codes for unmerged entries
UNMERGED_CODES = frozenset({"DD", "AU", "UD", "UA", "DU", "AA", "UU"})

# Added to the index then deleted from the worktree: nothing to commit
NO_NET_CHANGE_CODES = frozenset({"AD"})

# Files whose presence in the git directory means an operation is underway
OPERATION_MARKERS = (
    ("MERGE_HEAD", "merge"),
    ("rebase-merge", "rebase"),
    ("rebase-apply", "rebase"),
    ("CHERRY_PICK_HEAD", "cherry-pick"),
    ("REVERT_HEAD", "revert"),
    ("BISECT_LOG", "bisect"),
)

CHECKPOINT_IDENTITY = ["-c", "user.name=commit-sweep", "-c", "user.email=commit-sweep@localhost"]


class GitError(Exception):
    """Raised when a Git command fails."""

    pass


class UnmergedPathsError(GitError):
    """Raised when the status output contains unmerged (conflicted) entries."""

    def __init__(self, paths: Sequence[str]) -> None:
        self.paths = list(paths)
        super().__init__("Unmerged paths: " + ", ".join(self.paths))


def parse_porcelain_z(output: str) -> Tuple[List[FileChange], List[str]]:
    """Parse ``git status --porcelain=v1 -z`` output.

    Each record is ``XY <path>`` terminated by NUL. Renames and copies are
    followed by a second NUL-terminated field holding the original path.
    Paths are taken verbatim; nothing is unquoted or split on whitespace.

    Returns
    -------
    Tuple[List[FileChange], List[str]]
        The changes, and the paths dropped because their status records no
        net change.

    Raises
    ------
    UnmergedPathsError
        If any entry is unmerged.
    """
    changes: List[FileChange] = []
    dropped: List[str] = []
    unmerged: List[str] = []
    fields = output.split("\0")
    index = 0
    while index < len(fields):
        entry = fields[index]
        index += 1
        if not entry:
            continue
        if len(entry) < 4 or entry[2] != " ":
            raise GitError(f"Malformed status entry: {entry!r}")
        code, path = entry[:2], entry[3:]
        orig_path = None
        if "R" in code or "C" in code:
            if index >= len(fields) or not fields[index]:
                raise GitError(f"Missing original path for {path!r}")
            orig_path = fields[index]
            index += 1
        if code in UNMERGED_CODES:
            unmerged.append(path)
            continue
        if code in NO_NET_CHANGE_CODES:
            dropped.append(path)
            continue
        changes.append(FileChange(path=path, status=code, orig_path=orig_path))
    if unmerged:
        raise UnmergedPathsError(unmerged)
    return changes, dropped


def parse_git_version(text: str) -> Optional[Tuple[int, int, int]]:
    """Parse ``git version 2.39.2`` (or vendor variants) into a tuple."""
    match = re.search(r"(\d+)\.(\d+)(?:\.(\d+))?", text)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3) or 0)


class GitClient:
    """Client for interacting with a Git repository.

    Parameters
    ----------
    repo_root : Path
        Top-level directory of the working tree.
    timeout : float, optional
        Seconds after which a single git invocation is abandoned.
    """

    def __init__(self, repo_root: Path, timeout: Optional[float] = None) -> None:
        self.repo_root = Path(repo_root)
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Static helpers
    # ------------------------------------------------------------------
    @staticmethod
    def find_repo_root(start: Path) -> Optional[Path]:
        """Return the top-level directory of the repository containing ``start``."""
        try:
            result = subprocess.run(
                ["git", "rev-parse", "--show-toplevel"],
                cwd=start,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="surrogateescape",
            )
        except OSError:
            return None
        if result.returncode != 0 or not result.stdout.strip():
            return None
        return Path(result.stdout.rstrip("\n"))

    @staticmethod
    def git_version() -> Optional[Tuple[int, int, int]]:
        """Return the installed git version, or ``None`` if git is missing."""
        try:
            result = subprocess.run(
                ["git", "--version"],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired):
            return None
        if result.returncode != 0:
            return None
        return parse_git_version(result.stdout)

    # ------------------------------------------------------------------
    # Basic Git commands
    # ------------------------------------------------------------------
    def _run(self, args: List[str], check: bool = True) -> subprocess.CompletedProcess:
        """Run a Git command in the repository root.

        Raises
        ------
        GitError
            If git cannot be started, times out, or exits with a non-zero
            status when ``check`` is True.
        """
        full_cmd = ["git"] + args
        logger.debug("Executing Git command: %s", " ".join(full_cmd))
        try:
            result = subprocess.run(
                full_cmd,
                cwd=self.repo_root,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="surrogateescape",
                timeout=self.timeout,
                # Keep terminal Ctrl-C away from git; the executor stops cooperatively
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise GitError("git executable not found") from exc
        except subprocess.TimeoutExpired as exc:
            logger.error("Git command timed out after %ss: %s", self.timeout, " ".join(full_cmd))
            raise GitError(f"git {args[0]} timed out after {self.timeout}s") from exc

        if check and result.returncode != 0:
            logger.error(
                "Git command failed: %s\nSTDOUT: %s\nSTDERR: %s",
                " ".join(full_cmd),
                result.stdout,
                result.stderr,
            )
            raise GitError(result.stderr.strip() or result.stdout.strip() or f"git {args[0]} failed")
        return result

    # ------------------------------------------------------------------
    # Status and change detection
    # ------------------------------------------------------------------
    def get_changes(self) -> Tuple[List[FileChange], List[str]]:
        """Collect the working tree's change set in a single status call.

        Raises
        ------
        UnmergedPathsError
            If the repository has conflicted entries.
        GitError
            If the status command fails.
        """
        result = self._run(["status", "--porcelain=v1", "-z", "--untracked-files=all"])
        return parse_porcelain_z(result.stdout)

    def has_unmerged_paths(self) -> bool:
        result = self._run(["ls-files", "-u", "-z"])
        return bool(result.stdout.strip("\0"))

    # ------------------------------------------------------------------
    # Refs and repository state
    # ------------------------------------------------------------------
    def get_current_branch(self) -> Optional[str]:
        """Return the checked out branch name, or ``None`` for a detached HEAD.

        Works on an unborn branch, where ``rev-parse`` would fail.
        """
        result = self._run(["symbolic-ref", "--short", "-q", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def head_sha(self) -> Optional[str]:
        """Return the commit HEAD points to, or ``None`` on an unborn branch."""
        result = self._run(["rev-parse", "--verify", "-q", "HEAD^{commit}"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def git_dir(self) -> Path:
        result = self._run(["rev-parse", "--git-dir"])
        path = Path(result.stdout.rstrip("\n"))
        return path if path.is_absolute() else self.repo_root / path

    def operations_in_progress(self) -> List[str]:
        """Return the names of merge/rebase/cherry-pick/revert/bisect operations underway."""
        git_dir = self.git_dir()
        found: List[str] = []
        for marker, name in OPERATION_MARKERS:
            if (git_dir / marker).exists() and name not in found:
                found.append(name)
        return found

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        result = self._run(["merge-base", "--is-ancestor", ancestor, descendant], check=False)
        if result.returncode in (0, 1):
            return result.returncode == 0
        raise GitError(result.stderr.strip() or "merge-base failed")

    def hash_objects(self, paths: Sequence[str]) -> List[str]:
        """Return the blob id of each worktree file in ``paths``."""
        if not paths:
            return []
        result = self._run(["hash-object", "--"] + list(paths))
        return result.stdout.split()

    # ------------------------------------------------------------------
    # Checkpoint plumbing
    # ------------------------------------------------------------------
    def write_tree(self) -> str:
        return self._run(["write-tree"]).stdout.strip()

    def commit_tree(self, tree: str, parent: Optional[str], message: str) -> str:
        """Create a dangling commit for ``tree``; used to anchor checkpoints."""
        args = CHECKPOINT_IDENTITY + ["commit-tree", tree]
        if parent:
            args += ["-p", parent]
        return self._run(args + ["-m", message]).stdout.strip()

    def update_ref(self, ref: str, sha: str) -> None:
        self._run(["update-ref", ref, sha])

    def delete_ref(self, ref: str) -> None:
        self._run(["update-ref", "-d", ref])

    def ref_exists(self, ref: str) -> bool:
        result = self._run(["rev-parse", "--verify", "-q", ref], check=False)
        return result.returncode == 0

    def reset_soft(self, sha: str) -> None:
        self._run(["reset", "-q", "--soft", sha])

    def read_tree(self, tree: str) -> None:
        """Replace the index with ``tree`` without touching the working tree."""
        self._run(["read-tree", tree])

    # ------------------------------------------------------------------
    # Staging and committing
    # ------------------------------------------------------------------
    def stage_paths(self, paths: Sequence[str]) -> None:
        """Stage worktree content of existing ``paths``."""
        if paths:
            self._run(["add", "--"] + list(paths))

    def stage_removals(self, paths: Sequence[str]) -> None:
        """Record the removal of ``paths`` that no longer exist in the worktree."""
        if paths:
            self._run(["rm", "--cached", "-q", "--ignore-unmatch", "--"] + list(paths))

    def unstage_paths(self, paths: Sequence[str]) -> None:
        """Reset the index entries of ``paths`` to HEAD, leaving the worktree alone."""
        if not paths:
            return
        if self.head_sha() is None:
            self._run(["rm", "--cached", "-r", "-q", "--ignore-unmatch", "--"] + list(paths))
        else:
            self._run(["reset", "-q", "HEAD", "--"] + list(paths))

    def staged_paths(self, paths: Optional[Sequence[str]] = None) -> List[str]:
        """Return paths whose index entry differs from HEAD, optionally limited to ``paths``."""
        args = ["diff", "--cached", "--name-only", "-z", "--no-renames"]
        if paths is not None:
            if not paths:
                return []
            args += ["--"] + list(paths)
        result = self._run(args)
        return [path for path in result.stdout.split("\0") if path]

    def commit(self, message: str, body: str = "", paths: Optional[Sequence[str]] = None) -> str:
        """Create a commit and return its sha.

        When ``paths`` is given the commit is limited to them (``git commit
        -- <paths>``), so content staged for other paths is left in the
        index. Without ``paths`` the index is committed as-is.
        """
        args = ["commit", "-q", "-m", message]
        if body:
            args += ["-m", body]
        if paths is not None:
            args += ["--"] + list(paths)
        self._run(args)
        sha = self.head_sha()
        if sha is None:
            raise GitError("commit did not advance HEAD")
        return sha
