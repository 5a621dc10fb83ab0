"""
Transactional execution of a plan.

Each repository moves through the states of :class:`ExecutorState`::

    INIT -> PREFLIGHT -> LOCK_HELD -> CHECKPOINTED -> EXECUTING(i)
         -> {EXECUTING(i+1) | GROUP_FAILED}
         -> COMPLETED | PARTIAL_FAILED | INTERRUPTED -> LOCK_RELEASED

Every transition is appended to the :class:`SweepSession` log. A failing
group is rolled back on its own and stops its repository; earlier groups
stay committed unless ``atomic`` asks for the whole repository to be
restored. ``atomic_repos`` runs preflight, lock/checkpoint and execution as
separate phases across all repositories and restores every checkpoint if
any repository fails.
"""

from __future__ import annotations

import enum
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from commit_sweep.execution.checkpoint import (
    Checkpoint,
    CheckpointError,
    CheckpointStore,
    create_checkpoint,
    restore_checkpoint,
)
from commit_sweep.execution.lock import LockTimeoutError, RepoLock
from commit_sweep.execution.recovery import (
    UndoError,
    UnresolvedStateError,
    ensure_resolved,
    restart_repository,
    undo_repository,
)
from commit_sweep.execution.signals import CancellationToken, SweepInterrupted
from commit_sweep.execution.state import STATE_COMPLETED, STATE_INTERRUPTED, SweepState, SweepStateStore
from commit_sweep.grouping.group_model import BUCKET_PRESTAGED, CommitGroup
from commit_sweep.plan.plan_builder import live_fingerprint
from commit_sweep.plan.plan_model import (
    ERROR_ATOMIC_ROLLBACK,
    ERROR_CHECKPOINT,
    ERROR_DETACHED_HEAD,
    ERROR_GIT,
    ERROR_GROUP_FAILED,
    ERROR_INTERRUPTED,
    ERROR_LOCK_TIMEOUT,
    ERROR_OPERATION_IN_PROGRESS,
    ERROR_PLAN_STATE_DIVERGED,
    ERROR_PROTECTED_BRANCH,
    ERROR_UNDO,
    ERROR_UNMERGED_PATHS,
    ERROR_UNRESOLVED_STATE,
    RESULT_COMMITTED,
    RESULT_FAILED,
    STATUS_COMPLETED,
    STATUS_EXECUTING,
    STATUS_FAILED,
    STATUS_INTERRUPTED,
    STATUS_PARTIAL,
    STATUS_PLANNED,
    STATUS_SKIPPED_CONFLICT,
    Plan,
    RepoPlan,
)
from commit_sweep.vcs.git_client import GitClient, GitError, UnmergedPathsError


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


DEFAULT_PROTECTED_BRANCHES = ("main", "master")


class ExecutorState(enum.Enum):
    INIT = "init"
    PREFLIGHT = "preflight"
    LOCK_HELD = "lock_held"
    CHECKPOINTED = "checkpointed"
    EXECUTING = "executing"
    GROUP_FAILED = "group_failed"
    COMPLETED = "completed"
    PARTIAL_FAILED = "partial_failed"
    INTERRUPTED = "interrupted"
    LOCK_RELEASED = "lock_released"


class PreflightError(Exception):
    """Raised when a repository is not in a state commit-sweep may touch."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass
class SweepSession:
    """All run-scoped state, threaded explicitly through the executor.

    Parameters
    ----------
    run_id : str
        Identifier of this run, recorded in checkpoints and sweep state.
    state_dir : Path
        Directory holding locks, checkpoints and sweep state.
    config : Dict[str, Any]
        Loaded configuration.
    atomic, atomic_repos, resume, allow_protected_branch : bool
        Execution switches from the command line.
    verify_fingerprint : bool
        Refuse repositories whose live state no longer matches the plan;
        set when executing a rehydrated plan.
    """

    run_id: str
    state_dir: Path
    config: Dict[str, Any] = field(default_factory=dict)
    token: CancellationToken = field(default_factory=CancellationToken)
    atomic: bool = False
    atomic_repos: bool = False
    resume: bool = False
    allow_protected_branch: bool = False
    verify_fingerprint: bool = False
    transitions: List[Dict[str, Any]] = field(default_factory=list)
    interrupted: bool = False
    states: SweepStateStore = field(init=False)
    checkpoints: CheckpointStore = field(init=False)

    def __post_init__(self) -> None:
        self.state_dir = Path(self.state_dir)
        self.states = SweepStateStore(self.state_dir)
        self.checkpoints = CheckpointStore(self.state_dir)

    def record(self, repo: str, old: ExecutorState, new: ExecutorState, detail: str = "") -> None:
        self.transitions.append(
            {"repo": repo, "from": old.value, "to": new.value, "detail": detail, "at": time.time()}
        )

    def client_for(self, path: Path) -> GitClient:
        return GitClient(Path(path), timeout=self.config.get("git_timeout"))

    def make_lock(self, repo_path: Path) -> RepoLock:
        return RepoLock(
            repo_path,
            self.state_dir,
            timeout=self.config.get("lock_timeout", 30.0),
            retry_interval=self.config.get("lock_retry_interval", 0.5),
            stale_after=self.config.get("lock_stale_seconds", 3600.0),
        )


@dataclass
class RepoRun:
    """Execution bookkeeping for one repository."""

    repo_plan: RepoPlan
    client: GitClient
    state: ExecutorState = ExecutorState.INIT
    lock: Optional[RepoLock] = None
    checkpoint: Optional[Checkpoint] = None
    sweep_state: Optional[SweepState] = None
    in_flight: Optional[CommitGroup] = None
    index_tree: Optional[str] = None
    resumed: bool = False

    @property
    def root(self) -> Path:
        return self.client.repo_root

    @property
    def locked(self) -> bool:
        return self.lock is not None and self.lock.handle is not None


class Executor:
    """Apply a :class:`Plan` to its repositories.

    Only this class, and the recovery helpers it calls, write to a
    repository.
    """

    def __init__(self, session: SweepSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def run(self, plan: Plan) -> Plan:
        """Execute ``plan`` in place and return it.

        An interrupt stops the run after cleanup; ``session.interrupted``
        is set and the affected repositories carry the interrupted status.
        """
        try:
            if self.session.atomic_repos:
                self._run_atomic_repos(plan)
            else:
                for repo_plan in plan.repos:
                    self.session.token.raise_if_cancelled()
                    self._run_single(repo_plan)
            self.session.token.raise_if_cancelled()
        except SweepInterrupted as exc:
            logger.warning("%s; run stopped", exc)
            self.session.interrupted = True
        return plan

    def restart(self, repo_plan: RepoPlan) -> bool:
        """Roll back an unresolved sweep of ``repo_plan``'s repository under its lock."""
        client = self.session.client_for(Path(repo_plan.path))
        lock = self.session.make_lock(client.repo_root)
        try:
            with lock:
                restart_repository(client, self.session.checkpoints, self.session.states)
        except LockTimeoutError as exc:
            repo_plan.add_error(ERROR_LOCK_TIMEOUT, str(exc))
            return False
        except CheckpointError as exc:
            repo_plan.add_error(ERROR_CHECKPOINT, str(exc))
            return False
        return True

    def undo(self, repo_plan: RepoPlan) -> bool:
        """Restore the last checkpoint of ``repo_plan``'s repository under its lock."""
        client = self.session.client_for(Path(repo_plan.path))
        lock = self.session.make_lock(client.repo_root)
        try:
            with lock:
                restored = undo_repository(client, self.session.checkpoints, self.session.states)
        except LockTimeoutError as exc:
            repo_plan.status = STATUS_FAILED
            repo_plan.add_error(ERROR_LOCK_TIMEOUT, str(exc))
            return False
        except UndoError as exc:
            repo_plan.status = STATUS_FAILED
            repo_plan.add_error(ERROR_UNDO, str(exc))
            return False
        repo_plan.head = restored
        repo_plan.status = STATUS_COMPLETED
        return True

    # ------------------------------------------------------------------
    # Preflight
    # ------------------------------------------------------------------
    def check_preflight(self, client: GitClient, repo_plan: RepoPlan) -> None:
        """Raise :class:`PreflightError` if the repository must not be touched."""
        operations = client.operations_in_progress()
        if operations:
            raise PreflightError(
                ERROR_OPERATION_IN_PROGRESS,
                f"A {', '.join(operations)} is in progress; finish or abort it first",
            )
        if client.has_unmerged_paths():
            raise PreflightError(ERROR_UNMERGED_PATHS, "Repository has unmerged paths")
        branch = client.get_current_branch()
        if branch is None:
            raise PreflightError(ERROR_DETACHED_HEAD, "HEAD is detached; check out a branch first")
        protected = self.session.config.get("protected_branches", DEFAULT_PROTECTED_BRANCHES)
        if branch in protected and not self.session.allow_protected_branch:
            raise PreflightError(
                ERROR_PROTECTED_BRANCH,
                f"Refusing to commit on protected branch {branch!r}; "
                "use --allow-protected-branch to override",
            )
        if self.session.verify_fingerprint:
            try:
                live = live_fingerprint(client)
            except UnmergedPathsError as exc:
                raise PreflightError(ERROR_UNMERGED_PATHS, str(exc)) from exc
            if live != repo_plan.state_fingerprint:
                raise PreflightError(
                    ERROR_PLAN_STATE_DIVERGED,
                    "Repository changed since the plan was saved; plan it again",
                )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _advance(self, run: RepoRun, new: ExecutorState, detail: str = "") -> None:
        self.session.record(run.repo_plan.repo, run.state, new, detail)
        logger.debug("%s: %s -> %s %s", run.repo_plan.repo, run.state.value, new.value, detail)
        run.state = new

    def _start(self, repo_plan: RepoPlan) -> Optional[RepoRun]:
        if repo_plan.status != STATUS_PLANNED:
            return None
        if not repo_plan.groups:
            repo_plan.status = STATUS_COMPLETED
            return None
        return RepoRun(repo_plan=repo_plan, client=self.session.client_for(Path(repo_plan.path)))

    def _preflight(self, run: RepoRun) -> bool:
        self._advance(run, ExecutorState.PREFLIGHT)
        try:
            self.check_preflight(run.client, run.repo_plan)
        except PreflightError as exc:
            run.repo_plan.status = STATUS_SKIPPED_CONFLICT if exc.code == ERROR_UNMERGED_PATHS else STATUS_FAILED
            run.repo_plan.add_error(exc.code, str(exc))
            logger.error("%s: preflight failed: %s", run.repo_plan.repo, exc)
            return False
        except GitError as exc:
            run.repo_plan.status = STATUS_FAILED
            run.repo_plan.add_error(ERROR_GIT, str(exc))
            return False
        return True

    def _acquire(self, run: RepoRun) -> bool:
        run.lock = self.session.make_lock(run.root)
        try:
            run.lock.acquire(cancel_check=self.session.token.raise_if_cancelled)
        except LockTimeoutError as exc:
            run.repo_plan.status = STATUS_FAILED
            run.repo_plan.add_error(ERROR_LOCK_TIMEOUT, str(exc))
            logger.error("%s: %s", run.repo_plan.repo, exc)
            return False
        self._advance(run, ExecutorState.LOCK_HELD, run.lock.lock_path.name)
        return True

    def _checkpoint(self, run: RepoRun) -> bool:
        session = self.session
        try:
            previous = ensure_resolved(session.states, run.root, resume=session.resume)
        except UnresolvedStateError as exc:
            run.repo_plan.status = STATUS_FAILED
            run.repo_plan.add_error(ERROR_UNRESOLVED_STATE, str(exc))
            return False

        checkpoint = session.checkpoints.load(run.root) if previous is not None else None
        if checkpoint is not None:
            run.resumed = True
            logger.info("%s: resuming run %s with its checkpoint", run.repo_plan.repo, previous.run_id)
        else:
            try:
                checkpoint = create_checkpoint(run.client, session.run_id)
            except CheckpointError as exc:
                run.repo_plan.status = STATUS_FAILED
                run.repo_plan.add_error(ERROR_CHECKPOINT, str(exc))
                return False
            session.checkpoints.save(checkpoint)
        run.checkpoint = checkpoint

        run.sweep_state = SweepState(repo_path=str(run.root), run_id=session.run_id)
        if previous is not None:
            run.sweep_state.started_at = previous.started_at
        session.states.save(run.sweep_state)
        self._advance(run, ExecutorState.CHECKPOINTED, checkpoint.anchor[:12])
        return True

    def _execute_groups(self, run: RepoRun) -> bool:
        """Commit every group in order; False once a group fails."""
        repo_plan = run.repo_plan
        repo_plan.status = STATUS_EXECUTING
        total = len(repo_plan.groups)
        for index, group in enumerate(repo_plan.groups, start=1):
            self.session.token.raise_if_cancelled()
            self._advance(run, ExecutorState.EXECUTING, f"{index}/{total} {group.id}")
            run.in_flight = group
            try:
                sha = self._commit_group(run, group)
            except GitError as exc:
                if self.session.token.cancelled:
                    # git died with the interrupt; in_flight stays set for cleanup
                    raise SweepInterrupted(self.session.token.signum) from exc
                self._advance(run, ExecutorState.GROUP_FAILED, group.id)
                self._rollback_group(run)
                run.in_flight = None
                repo_plan.record_result(group.id, RESULT_FAILED, error=str(exc))
                repo_plan.add_error(ERROR_GROUP_FAILED, f"Group {group.id} ({group.message}) failed: {exc}")
                logger.error("%s: group %s failed: %s", repo_plan.repo, group.id, exc)
                return False
            run.in_flight = None
            repo_plan.record_result(group.id, RESULT_COMMITTED, commit=sha)
            run.sweep_state.groups_completed.append(group.id)
            self.session.states.save(run.sweep_state)
            logger.info("%s: committed %s as %s", repo_plan.repo, group.id, sha[:12])
        return True

    def _commit_group(self, run: RepoRun, group: CommitGroup) -> str:
        client = run.client
        run.index_tree = client.write_tree()
        if group.bucket == BUCKET_PRESTAGED:
            return self._commit_prestaged(run, group)

        paths = group.all_paths
        present = [path for path in paths if os.path.lexists(os.path.join(str(run.root), path))]
        missing = [path for path in paths if path not in present]
        client.stage_paths(present)
        client.stage_removals(missing)
        if not client.staged_paths(paths):
            raise GitError(f"Nothing staged for group {group.id}")
        self.session.token.raise_if_cancelled()
        return client.commit(group.message, group.body, paths=paths)

    def _commit_prestaged(self, run: RepoRun, group: CommitGroup) -> str:
        """Commit the operator's index after dropping anything excluded from the group."""
        client = run.client
        wanted = set(group.all_paths)
        extras = [path for path in client.staged_paths() if path not in wanted]
        if extras:
            client.unstage_paths(extras)
            run.repo_plan.warnings.append("Unstaged excluded files before the pre-staged commit: " + ", ".join(extras))
        if not client.staged_paths():
            raise GitError("Nothing staged for the pre-staged group")
        self.session.token.raise_if_cancelled()
        return client.commit(group.message, group.body)

    def _rollback_group(self, run: RepoRun) -> None:
        """Put the index back the way it was before the in-flight group touched it."""
        if run.index_tree is None:
            return
        try:
            run.client.read_tree(run.index_tree)
        except GitError as exc:
            run.repo_plan.warnings.append(f"Could not unstage the failed group: {exc}")
            logger.error("%s: could not roll back the index: %s", run.repo_plan.repo, exc)

    def _restore(self, run: RepoRun) -> bool:
        if run.checkpoint is None:
            return False
        try:
            restore_checkpoint(run.client, run.checkpoint)
        except CheckpointError as exc:
            run.repo_plan.add_error(ERROR_CHECKPOINT, str(exc))
            logger.error("%s: %s", run.repo_plan.repo, exc)
            return False
        run.repo_plan.mark_rolled_back()
        return True

    def _complete(self, run: RepoRun) -> None:
        run.repo_plan.status = STATUS_COMPLETED
        self._advance(run, ExecutorState.COMPLETED)
        # The checkpoint record stays for --undo
        run.sweep_state.status = STATE_COMPLETED
        run.sweep_state.last_error = None
        self.session.states.save(run.sweep_state)

    def _fail(self, run: RepoRun) -> None:
        repo_plan = run.repo_plan
        repo_plan.status = STATUS_PARTIAL if repo_plan.committed_groups else STATUS_FAILED
        self._advance(run, ExecutorState.PARTIAL_FAILED)
        if self.session.atomic and self._restore(run):
            repo_plan.status = STATUS_FAILED
            self.session.states.clear(run.root)
            return
        self._persist_failure(run)

    def _persist_failure(self, run: RepoRun) -> None:
        if run.sweep_state is None:
            return
        errors = run.repo_plan.errors
        run.sweep_state.last_error = errors[-1]["message"] if errors else None
        self.session.states.save(run.sweep_state)

    def _cleanup_interrupted(self, runs: List[RepoRun]) -> None:
        """Unstage the in-flight group, restore checkpoints and persist the interrupt."""
        with self.session.token.shielded():
            for run in runs:
                if run.in_flight is not None:
                    self._rollback_group(run)
                    run.in_flight = None
                restored = self._restore(run)
                run.repo_plan.status = STATUS_INTERRUPTED
                run.repo_plan.add_error(
                    ERROR_INTERRUPTED,
                    "Interrupted; repository restored to its checkpoint" if restored else "Interrupted",
                )
                self._advance(run, ExecutorState.INTERRUPTED)
                if run.sweep_state is not None:
                    run.sweep_state.status = STATE_INTERRUPTED
                    run.sweep_state.last_error = "interrupted"
                    self.session.states.save(run.sweep_state)

    def _release(self, run: RepoRun) -> None:
        if not run.locked:
            return
        with self.session.token.shielded():
            run.lock.release()
            self._advance(run, ExecutorState.LOCK_RELEASED)

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------
    def _run_single(self, repo_plan: RepoPlan) -> None:
        run = self._start(repo_plan)
        if run is None:
            return
        if not self._preflight(run):
            return
        try:
            if not self._acquire(run) or not self._checkpoint(run):
                return
            if self._execute_groups(run):
                self._complete(run)
            else:
                self._fail(run)
        except SweepInterrupted:
            self._cleanup_interrupted([run])
            raise
        finally:
            self._release(run)

    def _abort_all(self, runs: List[RepoRun], culprit: str) -> None:
        """Fail every repository of an atomic run before anything was committed."""
        for run in runs:
            if run.repo_plan.status in (STATUS_PLANNED, STATUS_EXECUTING):
                run.repo_plan.status = STATUS_FAILED
                run.repo_plan.add_error(
                    ERROR_ATOMIC_ROLLBACK, f"Aborted before any commit because {culprit} failed"
                )
            # Nothing was committed; a resumed sweep stays unresolved
            if run.sweep_state is not None and not run.resumed:
                self.session.states.clear(run.root)

    def _rollback_all(self, runs: List[RepoRun], culprit: RepoRun) -> None:
        for run in runs:
            restored = self._restore(run)
            run.repo_plan.status = STATUS_FAILED
            run.repo_plan.add_error(
                ERROR_ATOMIC_ROLLBACK,
                f"Rolled back to the pre-sweep state because {culprit.repo_plan.repo} failed",
            )
            self._advance(run, ExecutorState.PARTIAL_FAILED, "atomic rollback")
            if restored:
                self.session.states.clear(run.root)
            else:
                self._persist_failure(run)

    def _run_atomic_repos(self, plan: Plan) -> None:
        runs: List[RepoRun] = []
        unplannable: List[RepoPlan] = []
        for repo_plan in plan.repos:
            if repo_plan.status != STATUS_PLANNED:
                unplannable.append(repo_plan)
                continue
            run = self._start(repo_plan)
            if run is not None:
                runs.append(run)
        if unplannable:
            self._abort_all(runs, unplannable[0].repo)
            return

        # Phase 1: preflight everything before touching anything
        for run in runs:
            self.session.token.raise_if_cancelled()
            if not self._preflight(run):
                self._abort_all(runs, run.repo_plan.repo)
                return

        try:
            # Phase 2: lock and checkpoint in a fixed order
            for run in sorted(runs, key=lambda r: str(r.root)):
                self.session.token.raise_if_cancelled()
                if not self._acquire(run) or not self._checkpoint(run):
                    self._abort_all(runs, run.repo_plan.repo)
                    return

            # Phase 3: execute repository by repository
            culprit: Optional[RepoRun] = None
            for run in runs:
                self.session.token.raise_if_cancelled()
                if not self._execute_groups(run):
                    culprit = run
                    break

            if culprit is None:
                for run in runs:
                    self._complete(run)
                return

            # Phase 4: restore every checkpoint, including successful repositories
            self._rollback_all(runs, culprit)
        except SweepInterrupted:
            self._cleanup_interrupted(runs)
            raise
        finally:
            for run in runs:
                self._release(run)
