"""
Serializable plan structures.

A :class:`Plan` holds one :class:`RepoPlan` per repository passed on the
command line. Both serialize to the v1 plan schema; the checksum covers the
canonical JSON of everything except ``checksum`` and ``_meta``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from commit_sweep.grouping.group_model import CommitGroup
from commit_sweep.grouping.validator import (
    SKIP_BINARY,
    SKIP_BROKEN_SYMLINKS,
    SKIP_EXCLUDED,
    SKIP_SUBMODULES,
)


SCHEMA_VERSION = "commit-sweep/v1"

STATUS_PLANNED = "planned"
STATUS_EXECUTING = "executing"
STATUS_PARTIAL = "partial"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_INTERRUPTED = "interrupted"
STATUS_SKIPPED_CONFLICT = "skipped_conflict"

# Per-group execution outcomes
RESULT_COMMITTED = "committed"
RESULT_FAILED = "failed"
RESULT_ROLLED_BACK = "rolled_back"

# Error codes recorded in RepoPlan.errors
ERROR_NOT_A_REPOSITORY = "not_a_repository"
ERROR_UNSAFE_PATH = "unsafe_path"
ERROR_UNMERGED_PATHS = "unmerged_paths"
ERROR_OPERATION_IN_PROGRESS = "operation_in_progress"
ERROR_DETACHED_HEAD = "detached_head"
ERROR_PROTECTED_BRANCH = "protected_branch"
ERROR_PLAN_STATE_DIVERGED = "plan_state_diverged"
ERROR_LOCK_TIMEOUT = "lock_timeout"
ERROR_UNRESOLVED_STATE = "unresolved_state"
ERROR_CHECKPOINT = "checkpoint_failed"
ERROR_GROUP_FAILED = "group_failed"
ERROR_ATOMIC_ROLLBACK = "atomic_rollback"
ERROR_INTERRUPTED = "interrupted"
ERROR_UNDO = "undo_failed"
ERROR_GIT = "git_error"


UNCHECKED_KEYS = ("checksum", "_meta")


def canonical_checksum(data: Dict[str, Any]) -> str:
    """sha256 of the canonical JSON of ``data`` without checksum and metadata."""
    body = {key: value for key, value in data.items() if key not in UNCHECKED_KEYS}
    payload = json.dumps(body, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("ascii")).hexdigest()


def empty_skipped() -> Dict[str, List[str]]:
    return {SKIP_BINARY: [], SKIP_SUBMODULES: [], SKIP_EXCLUDED: [], SKIP_BROKEN_SYMLINKS: []}


@dataclass
class RepoPlan:
    """Planned (and, after execution, executed) work for one repository."""

    repo: str
    path: str
    branch: Optional[str] = None
    head: Optional[str] = None
    task_id: str = ""
    task_title: str = ""
    groups: List[CommitGroup] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    status: str = STATUS_PLANNED
    skipped: Dict[str, List[str]] = field(default_factory=empty_skipped)
    state_fingerprint: str = ""
    results: List[Dict[str, Any]] = field(default_factory=list)

    def add_error(self, code: str, message: str) -> None:
        self.errors.append({"code": code, "message": message})

    @property
    def error_codes(self) -> List[str]:
        return [error["code"] for error in self.errors]

    @property
    def committed_groups(self) -> List[str]:
        return [r["group_id"] for r in self.results if r["status"] == RESULT_COMMITTED]

    @property
    def failed_groups(self) -> List[str]:
        return [r["group_id"] for r in self.results if r["status"] == RESULT_FAILED]

    def record_result(
        self,
        group_id: str,
        status: str,
        commit: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        self.results.append({"group_id": group_id, "status": status, "commit": commit, "error": error})

    def mark_rolled_back(self) -> None:
        """Flag every committed group as undone after a checkpoint restore."""
        for result in self.results:
            if result["status"] == RESULT_COMMITTED:
                result["status"] = RESULT_ROLLED_BACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repo": self.repo,
            "path": self.path,
            "branch": self.branch,
            "head": self.head,
            "task_id": self.task_id,
            "task_title": self.task_title,
            "status": self.status,
            "errors": [dict(error) for error in self.errors],
            "warnings": list(self.warnings),
            "groups": [group.to_dict() for group in self.groups],
            "skipped": {key: list(paths) for key, paths in self.skipped.items()},
            "state_fingerprint": self.state_fingerprint,
            "results": [dict(result) for result in self.results],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepoPlan":
        skipped = empty_skipped()
        skipped.update({key: list(paths) for key, paths in (data.get("skipped") or {}).items()})
        return cls(
            repo=data["repo"],
            path=data["path"],
            branch=data.get("branch"),
            head=data.get("head"),
            task_id=data.get("task_id") or "",
            task_title=data.get("task_title") or "",
            groups=[CommitGroup.from_dict(group) for group in data.get("groups", [])],
            warnings=list(data.get("warnings", [])),
            errors=[dict(error) for error in data.get("errors", [])],
            status=data.get("status", STATUS_PLANNED),
            skipped=skipped,
            state_fingerprint=data.get("state_fingerprint", ""),
            results=[dict(result) for result in data.get("results", [])],
        )


@dataclass
class Plan:
    """A whole run: every repository, summary counters and run metadata."""

    run_id: str
    generated_at: str
    repos: List[RepoPlan] = field(default_factory=list)
    schema_version: str = SCHEMA_VERSION
    checksum: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "repos_scanned": len(self.repos),
            "repos_dirty": sum(1 for repo in self.repos if repo.groups),
            "groups_planned": sum(len(repo.groups) for repo in self.repos),
            "groups_executed": sum(len(repo.committed_groups) for repo in self.repos),
            "groups_failed": sum(len(repo.failed_groups) for repo in self.repos),
        }

    def body_dict(self) -> Dict[str, Any]:
        """Everything covered by the checksum."""
        return {
            "schema_version": self.schema_version,
            "run_id": self.run_id,
            "generated_at": self.generated_at,
            "repos": [repo.to_dict() for repo in self.repos],
            "summary": self.summary,
        }

    def compute_checksum(self) -> str:
        return canonical_checksum(self.body_dict())

    def to_dict(self) -> Dict[str, Any]:
        data = self.body_dict()
        data["checksum"] = canonical_checksum(data)
        data["_meta"] = dict(self.meta)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        return cls(
            run_id=data["run_id"],
            generated_at=data.get("generated_at", ""),
            repos=[RepoPlan.from_dict(repo) for repo in data.get("repos", [])],
            schema_version=data.get("schema_version", SCHEMA_VERSION),
            checksum=data.get("checksum", ""),
            meta=dict(data.get("_meta") or {}),
        )
