"""
Operator-driven recovery: unresolved state checks, ``--restart`` and
``--undo``.

The functions here assume the caller holds the repository lock.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from commit_sweep.execution.checkpoint import (
    CheckpointError,
    CheckpointStore,
    drop_anchor,
    restore_checkpoint,
)
from commit_sweep.execution.state import SweepState, SweepStateStore
from commit_sweep.vcs.git_client import GitClient, GitError


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


class UnresolvedStateError(Exception):
    """Raised when a previous sweep of the repository did not finish cleanly."""

    def __init__(self, repo_path: Path, state: SweepState) -> None:
        self.repo_path = repo_path
        self.state = state
        detail = f": {state.last_error}" if state.last_error else ""
        super().__init__(
            f"Previous sweep {state.run_id} of {repo_path} is {state.status}{detail}. "
            "Rerun with --resume to continue or --restart to roll back and start over"
        )


class UndoError(Exception):
    """Raised when the last checkpoint cannot be restored safely."""

    pass


def unresolved_state(states: SweepStateStore, repo_path: Path) -> Optional[SweepState]:
    """Return the stored state of ``repo_path`` if it still needs resolution."""
    state = states.load(repo_path)
    if state is not None and state.unresolved:
        return state
    return None


def ensure_resolved(states: SweepStateStore, repo_path: Path, resume: bool = False) -> Optional[SweepState]:
    """Return the open sweep of ``repo_path`` that ``--resume`` continues.

    Returns None when there is nothing to resume.

    Raises
    ------
    UnresolvedStateError
        If ``repo_path`` has an open sweep and ``resume`` is False.
    """
    state = unresolved_state(states, repo_path)
    if state is not None and not resume:
        raise UnresolvedStateError(repo_path, state)
    return state


def restart_repository(client: GitClient, checkpoints: CheckpointStore, states: SweepStateStore) -> bool:
    """Roll back an unresolved sweep to its checkpoint and forget it.

    Returns True if a checkpoint was restored. A repository without an
    unresolved state is left untouched.

    Raises
    ------
    CheckpointError
        If the recorded checkpoint cannot be restored; the state is kept.
    """
    repo_path = client.repo_root
    state = unresolved_state(states, repo_path)
    if state is None:
        return False
    checkpoint = checkpoints.load(repo_path)
    restored = False
    if checkpoint is not None:
        restore_checkpoint(client, checkpoint)
        checkpoints.clear(repo_path)
        drop_anchor(client)
        restored = True
    else:
        logger.warning("No checkpoint recorded for %s; clearing state only", repo_path)
    states.clear(repo_path)
    logger.info("Restarted %s (previous run %s)", repo_path, state.run_id)
    return restored


def undo_repository(client: GitClient, checkpoints: CheckpointStore, states: SweepStateStore) -> str:
    """Restore the last checkpoint if HEAD still descends from it.

    Returns the sha (or ``"unborn"``) the branch was restored to.

    Raises
    ------
    UndoError
        If there is no checkpoint, commits that do not descend from it
        would be discarded, or git refuses the restore.
    """
    repo_path = client.repo_root
    checkpoint = checkpoints.load(repo_path)
    if checkpoint is None:
        raise UndoError(f"No checkpoint recorded for {repo_path}")
    current = client.head_sha()
    if checkpoint.head:
        if current is None:
            raise UndoError(f"{repo_path} has no commits; checkpoint {checkpoint.head[:12]} is unreachable")
        try:
            descends = client.is_ancestor(checkpoint.head, current)
        except GitError as exc:
            raise UndoError(f"Cannot compare HEAD with checkpoint: {exc}") from exc
        if not descends:
            raise UndoError(
                f"HEAD {current[:12]} of {repo_path} no longer descends from checkpoint {checkpoint.head[:12]}"
            )
    try:
        restore_checkpoint(client, checkpoint)
    except CheckpointError as exc:
        raise UndoError(str(exc)) from exc
    checkpoints.clear(repo_path)
    states.clear(repo_path)
    drop_anchor(client)
    return checkpoint.head or "unborn"
