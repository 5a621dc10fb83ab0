"""
Plan assembly, freezing and rehydration.

:class:`PlanBuilder` runs the read-only part of a sweep for each
repository: collect, validate, classify, group, then derive messages and
confidence. It never mutates a repository. A built plan can be frozen to a
JSON file carrying an integrity checksum and rehydrated later; execution of
a rehydrated plan is guarded by the recorded state fingerprint.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence

from commit_sweep.grouping.change_classifier import classify_file
from commit_sweep.grouping.group_model import FileChange
from commit_sweep.grouping.grouper import group_changes
from commit_sweep.grouping.validator import ChangeValidator, UnsafePathError
from commit_sweep.message.commit_message_generator import CommitMessageGenerator, Overrides
from commit_sweep.plan.plan_model import (
    ERROR_GIT,
    ERROR_NOT_A_REPOSITORY,
    ERROR_UNMERGED_PATHS,
    ERROR_UNSAFE_PATH,
    SCHEMA_VERSION,
    STATUS_FAILED,
    STATUS_SKIPPED_CONFLICT,
    Plan,
    RepoPlan,
    canonical_checksum,
)
from commit_sweep.tasks.task_resolver import TaskResolver, extract_task_id
from commit_sweep.vcs.git_client import GitClient, GitError, UnmergedPathsError


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


class PlanIntegrityError(Exception):
    """Raised when a frozen plan file is unreadable or its checksum does not match."""

    pass


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ") + "-" + uuid.uuid4().hex[:8]


def compute_state_fingerprint(
    client: GitClient,
    changes: Sequence[FileChange],
    branch: Optional[str],
    head: Optional[str],
) -> str:
    """Hash HEAD, branch, every status entry and the blob ids of changed files.

    Any edit to a changed file, any new change and any commit made since
    planning alter the fingerprint.
    """
    entries = sorted([change.status, change.path, change.orig_path or ""] for change in changes)
    hashable = [
        change.path
        for change in sorted(changes, key=lambda c: c.path)
        if not change.is_deleted
        and os.path.isfile(client.repo_root / change.path)
        and not os.path.islink(client.repo_root / change.path)
    ]
    blobs = dict(zip(hashable, client.hash_objects(hashable)))
    payload = json.dumps(
        {"head": head, "branch": branch, "entries": entries, "blobs": blobs},
        sort_keys=True,
        ensure_ascii=True,
    )
    return hashlib.sha256(payload.encode("ascii")).hexdigest()


def live_fingerprint(client: GitClient) -> str:
    """Fingerprint the repository as it is right now.

    Raises
    ------
    UnmergedPathsError, GitError
        If the status cannot be collected.
    """
    changes, _ = client.get_changes()
    return compute_state_fingerprint(client, changes, client.get_current_branch(), client.head_sha())


class PlanBuilder:
    """Build a :class:`Plan` from live repository state.

    Parameters
    ----------
    config : Dict[str, Any]
        Loaded configuration (see :func:`commit_sweep.config.load_config`).
    respect_staging : bool
        Isolate manually staged files into a first pre-staged group.
    exclude : Iterable[str]
        Denylist patterns from the command line, added to the configured ones.
    include_binary : bool
        Keep binary files instead of skipping them.
    include_task_id, include_body : bool
        Message generation switches.
    overrides : Overrides
        Operator overrides for type, scope and description.
    resolver : TaskResolver, optional
        Shared resolver so its cache spans every repository of the run.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        respect_staging: bool = False,
        exclude: Iterable[str] = (),
        include_binary: bool = False,
        include_task_id: bool = True,
        include_body: bool = False,
        overrides: Optional[Overrides] = None,
        resolver: Optional[TaskResolver] = None,
    ) -> None:
        self.config = config
        self.respect_staging = respect_staging
        self.denylist = list(config.get("denylist_extra", [])) + list(exclude)
        self.include_binary = include_binary or bool(config.get("include_binary"))
        self.include_task_id = include_task_id
        self.include_body = include_body
        self.overrides = overrides or Overrides()
        self.resolver = resolver or TaskResolver(
            config.get("task_lookup_command"),
            config.get("task_lookup_timeout", 5.0),
        )

    def client_for(self, root: Path) -> GitClient:
        return GitClient(root, timeout=self.config.get("git_timeout"))

    def build(self, repo_paths: Sequence[Path], run_id: Optional[str] = None) -> Plan:
        plan = Plan(run_id=run_id or new_run_id(), generated_at=utc_now())
        for path in repo_paths:
            plan.repos.append(self.build_repo(Path(path)))
        plan.meta.update(
            {
                "task_cache_hits": self.resolver.hits,
                "task_cache_misses": self.resolver.misses,
            }
        )
        return plan

    def build_repo(self, path: Path) -> RepoPlan:
        """Plan a single repository. Failures are recorded, never raised."""
        root = GitClient.find_repo_root(path) if path.is_dir() else None
        if root is None:
            repo_plan = RepoPlan(repo=path.name or str(path), path=str(path), status=STATUS_FAILED)
            repo_plan.add_error(ERROR_NOT_A_REPOSITORY, f"{path} is not inside a git working tree")
            return repo_plan

        client = self.client_for(root)
        repo_plan = RepoPlan(repo=root.name, path=str(root))
        try:
            self._plan_into(client, repo_plan)
        except UnmergedPathsError as exc:
            repo_plan.status = STATUS_SKIPPED_CONFLICT
            repo_plan.groups = []
            repo_plan.add_error(ERROR_UNMERGED_PATHS, str(exc))
            logger.warning("%s: %s", repo_plan.repo, exc)
        except UnsafePathError as exc:
            repo_plan.status = STATUS_FAILED
            repo_plan.groups = []
            repo_plan.add_error(ERROR_UNSAFE_PATH, str(exc))
        except GitError as exc:
            repo_plan.status = STATUS_FAILED
            repo_plan.groups = []
            repo_plan.add_error(ERROR_GIT, str(exc))
        return repo_plan

    def _plan_into(self, client: GitClient, repo_plan: RepoPlan) -> None:
        repo_plan.branch = client.get_current_branch()
        repo_plan.head = client.head_sha()
        repo_plan.task_id = extract_task_id(repo_plan.branch)
        repo_plan.task_title = self.resolver.resolve(repo_plan.task_id)

        changes, dropped = client.get_changes()
        for path in dropped:
            repo_plan.warnings.append(f"Ignoring {path}: added to the index then deleted, no net change")
        repo_plan.state_fingerprint = compute_state_fingerprint(
            client, changes, repo_plan.branch, repo_plan.head
        )

        validator = ChangeValidator(
            client.repo_root,
            denylist=self.denylist,
            include_binary=self.include_binary,
            include_submodules=bool(self.config.get("include_submodules")),
            include_broken_symlinks=bool(self.config.get("include_broken_symlinks")),
        )
        validation = validator.validate(changes)
        repo_plan.skipped = validation.skipped
        repo_plan.warnings.extend(validation.warnings)

        classified = [replace(change, bucket=classify_file(change.path)) for change in validation.accepted]
        grouping = group_changes(classified, respect_staging=self.respect_staging)
        repo_plan.warnings.extend(grouping.warnings)

        generator = CommitMessageGenerator(
            task_id=repo_plan.task_id,
            task_title=repo_plan.task_title,
            include_task_id=self.include_task_id,
            include_body=self.include_body,
            overrides=self.overrides,
        )
        repo_plan.groups = generator.generate_groups(grouping.groups)
        logger.info(
            "%s: %d change(s), %d group(s), %d skipped",
            repo_plan.repo,
            len(changes),
            len(repo_plan.groups),
            len(validation.excluded_paths),
        )


def freeze_plan(plan: Plan, path: Path) -> Path:
    """Write ``plan`` to ``path`` with a fresh checksum, atomically."""
    plan.checksum = plan.compute_checksum()
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".plan-", suffix=".json", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="ascii") as handle:
            json.dump(plan.to_dict(), handle, indent=2, sort_keys=True, ensure_ascii=True)
            handle.write("\n")
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.info("Plan %s written to %s", plan.run_id, target)
    return target


def rehydrate_plan(path: Path) -> Plan:
    """Load a frozen plan and verify its integrity.

    Raises
    ------
    PlanIntegrityError
        If the file cannot be read or parsed, declares another schema, or
        its checksum does not match its content.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except OSError as exc:
        raise PlanIntegrityError(f"Cannot read plan file {path}: {exc}") from exc
    except ValueError as exc:
        raise PlanIntegrityError(f"Plan file {path} is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise PlanIntegrityError(f"Plan file {path} does not contain a plan object")
    if data.get("schema_version") != SCHEMA_VERSION:
        raise PlanIntegrityError(
            f"Plan file {path} has schema {data.get('schema_version')!r}, expected {SCHEMA_VERSION!r}"
        )
    recorded = data.get("checksum")
    if not recorded:
        raise PlanIntegrityError(f"Plan file {path} has no checksum")
    actual = canonical_checksum(data)
    if actual != recorded:
        raise PlanIntegrityError(f"Plan file {path} checksum mismatch: recorded {recorded}, actual {actual}")

    try:
        return Plan.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise PlanIntegrityError(f"Plan file {path} is malformed: {exc}") from exc
