"""
Repository checkpoints.

A checkpoint records the branch tip and the index (as a tree written with
``git write-tree``) before the first mutation. The tree is wrapped in an
anchor commit under :data:`CHECKPOINT_REF` so garbage collection cannot
prune it while the checkpoint may still be needed. commit-sweep never
writes to the working tree, so resetting the branch and reading the tree
back into the index restores the repository exactly.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from commit_sweep.execution.lock import repo_digest
from commit_sweep.execution.state import read_json, write_json_atomic
from commit_sweep.vcs.git_client import GitClient, GitError


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


CHECKPOINT_REF = "refs/commit-sweep/checkpoint"


class CheckpointError(Exception):
    """Raised when a checkpoint cannot be created or restored."""

    pass


@dataclass
class Checkpoint:
    """Pre-sweep state of one repository."""

    repo_path: str
    run_id: str
    head: Optional[str]
    branch: Optional[str]
    tree: str
    anchor: str
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            repo_path=data["repo_path"],
            run_id=data["run_id"],
            head=data.get("head"),
            branch=data.get("branch"),
            tree=data["tree"],
            anchor=data.get("anchor", ""),
            created_at=float(data.get("created_at", 0.0)),
        )


class CheckpointStore:
    """Persist the latest checkpoint of each repository under ``state_dir``."""

    def __init__(self, state_dir: Path) -> None:
        self.root = Path(state_dir) / "checkpoints"

    def path_for(self, repo_path: Path) -> Path:
        return self.root / f"{repo_digest(repo_path)}.json"

    def load(self, repo_path: Path) -> Optional[Checkpoint]:
        data = read_json(self.path_for(repo_path))
        if data is None:
            return None
        try:
            return Checkpoint.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed checkpoint for %s: %s", repo_path, exc)
            return None

    def save(self, checkpoint: Checkpoint) -> None:
        write_json_atomic(self.path_for(Path(checkpoint.repo_path)), checkpoint.to_dict())

    def clear(self, repo_path: Path) -> None:
        try:
            self.path_for(repo_path).unlink()
        except FileNotFoundError:
            pass


def create_checkpoint(client: GitClient, run_id: str) -> Checkpoint:
    """Snapshot HEAD and the index of the repository behind ``client``."""
    try:
        head = client.head_sha()
        branch = client.get_current_branch()
        tree = client.write_tree()
        anchor = client.commit_tree(tree, head, f"commit-sweep checkpoint {run_id}")
        client.update_ref(CHECKPOINT_REF, anchor)
    except GitError as exc:
        raise CheckpointError(f"Cannot create checkpoint: {exc}") from exc
    logger.info("Checkpoint %s created for %s (head %s)", anchor[:12], client.repo_root, head or "unborn")
    return Checkpoint(
        repo_path=str(client.repo_root),
        run_id=run_id,
        head=head,
        branch=branch,
        tree=tree,
        anchor=anchor,
    )


def restore_checkpoint(client: GitClient, checkpoint: Checkpoint) -> None:
    """Move the branch back to the checkpoint and restore the index.

    Raises
    ------
    CheckpointError
        If the checked out branch changed since the checkpoint or git
        refuses the reset.
    """
    branch = client.get_current_branch()
    if branch != checkpoint.branch:
        raise CheckpointError(
            f"Checkpoint was taken on branch {checkpoint.branch!r}, but {branch!r} is checked out"
        )
    try:
        if checkpoint.head:
            client.reset_soft(checkpoint.head)
        elif client.head_sha() is not None:
            # The branch was unborn: drop every commit made since
            client.delete_ref(f"refs/heads/{checkpoint.branch}")
        client.read_tree(checkpoint.tree)
    except GitError as exc:
        raise CheckpointError(f"Cannot restore checkpoint: {exc}") from exc
    logger.info("Restored %s to checkpoint %s", client.repo_root, (checkpoint.head or "unborn")[:12])


def drop_anchor(client: GitClient) -> None:
    """Delete the anchor ref once the checkpoint is no longer needed."""
    try:
        if client.ref_exists(CHECKPOINT_REF):
            client.delete_ref(CHECKPOINT_REF)
    except GitError as exc:
        logger.warning("Could not delete %s in %s: %s", CHECKPOINT_REF, client.repo_root, exc)
