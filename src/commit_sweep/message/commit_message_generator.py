"""
Deterministic commit type, scope and message generation.

Every value produced here is a pure function of the group contents and
the task identifier, so planning the same repository state twice yields
identical subjects. Subjects follow Conventional Commits::

    type(scope): description (task-id)

with the scope omitted for the root sentinel. Subjects never exceed
:data:`MAX_SUBJECT_LENGTH` characters; when truncation is needed the task
suffix is preserved and the description is shortened.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from pathlib import PurePosixPath
from typing import Iterable, List, Optional, Sequence, Tuple

from commit_sweep.grouping.group_model import (
    BUCKET_CONFIG,
    BUCKET_DOC,
    BUCKET_PRESTAGED,
    BUCKET_SOURCE,
    BUCKET_TEST,
    KIND_ADDED,
    KIND_DELETED,
    KIND_MODIFIED,
    KIND_NAMES,
    KIND_RENAMED,
    ROOT_SCOPE,
    CommitGroup,
    FileChange,
)
from commit_sweep.message.confidence import FACTOR_AMBIGUOUS_TYPE, assess_confidence, penalize


MAX_SUBJECT_LENGTH = 72
ELLIPSIS = "..."

# Tie-break order for the dominant change kind
KIND_PRECEDENCE = (KIND_ADDED, KIND_RENAMED, KIND_DELETED, KIND_MODIFIED)

KIND_TO_TYPE = {
    KIND_ADDED: "feat",
    KIND_RENAMED: "refactor",
    KIND_DELETED: "chore",
    KIND_MODIFIED: "fix",
}

BUCKET_TO_TYPE = {
    BUCKET_TEST: "test",
    BUCKET_DOC: "docs",
    BUCKET_CONFIG: "chore",
}

KIND_VERBS = {
    KIND_ADDED: "add",
    KIND_MODIFIED: "update",
    KIND_DELETED: "remove",
    KIND_RENAMED: "rename",
}


@dataclass(frozen=True)
class Overrides:
    """Operator overrides applied to every planned group."""

    commit_type: Optional[str] = None
    scope: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class TypeDecision:
    """Result of commit type derivation."""

    commit_type: str
    ambiguous: bool = False


def dominant_change_kind(kinds: Sequence[str]) -> Tuple[str, bool]:
    """Return the plurality change kind and whether the mix is ambiguous.

    Ties are broken Added > Renamed > Deleted > Modified. The mix is
    ambiguous when the winning kind covers less than half of ``kinds``.
    """
    counts = Counter(kinds)
    best = max(KIND_PRECEDENCE, key=lambda kind: (counts[kind], -KIND_PRECEDENCE.index(kind)))
    ambiguous = counts[best] * 2 < len(kinds)
    return best, ambiguous


def detect_commit_type(group: CommitGroup) -> TypeDecision:
    """Derive the Conventional Commit type of ``group``.

    Non-source buckets map directly. Source groups, including ones that
    picked up tests or docs through the affinity rule, look only at the
    source files' statuses: attached files ride along without changing
    the type.
    """
    if group.bucket in BUCKET_TO_TYPE:
        return TypeDecision(BUCKET_TO_TYPE[group.bucket])

    source = [change for change in group.files if change.bucket == BUCKET_SOURCE]
    if not source:
        if group.bucket == BUCKET_PRESTAGED:
            buckets = {change.bucket for change in group.files}
            if len(buckets) == 1:
                return TypeDecision(BUCKET_TO_TYPE.get(buckets.pop(), "chore"))
        return TypeDecision("chore")

    kind, ambiguous = dominant_change_kind([change.change_kind for change in source])
    if ambiguous:
        return TypeDecision("chore", ambiguous=True)
    return TypeDecision(KIND_TO_TYPE[kind])


def detect_scope(paths: Iterable[str]) -> str:
    """Return the most common top-level directory of ``paths``.

    Ties resolve alphabetically. Top-level files do not vote; if there
    are only top-level files the root sentinel is returned.
    """
    counts = Counter()
    for path in paths:
        head, sep, _ = path.partition("/")
        if sep:
            counts[head] += 1
    if not counts:
        return ROOT_SCOPE
    return min(counts, key=lambda name: (-counts[name], name))


def describe(group: CommitGroup) -> str:
    """Build the description part of the subject."""
    if len(group.files) == 1:
        change = group.files[0]
        name = PurePosixPath(change.path).name
        if change.change_kind == KIND_RENAMED and change.orig_path:
            return f"rename {PurePosixPath(change.orig_path).name} to {name}"
        return f"{KIND_VERBS[change.change_kind]} {name}"

    kinds = {change.change_kind for change in group.files}
    verb = KIND_VERBS[kinds.pop()] if len(kinds) == 1 else "update"
    return f"{verb} {len(group.files)} {group.bucket} files"


def build_subject(commit_type: str, scope: str, description: str, task_id: str = "") -> str:
    """Assemble and, if needed, truncate the commit subject."""
    header = f"{commit_type}: " if scope == ROOT_SCOPE or not scope else f"{commit_type}({scope}): "
    suffix = f" ({task_id})" if task_id else ""
    subject = f"{header}{description}{suffix}"
    if len(subject) <= MAX_SUBJECT_LENGTH:
        return subject

    room = MAX_SUBJECT_LENGTH - len(suffix) - len(ELLIPSIS)
    if room <= len(header):
        # Task id too long to share the line; the body still carries it
        suffix = ""
        room = MAX_SUBJECT_LENGTH - len(ELLIPSIS)
    head = f"{header}{description}"[:room].rstrip()
    return f"{head}{ELLIPSIS}{suffix}"


def build_body(group: CommitGroup, task_id: str = "", task_title: str = "") -> str:
    """Enumerate each file with its change kind and repeat the task reference."""
    lines: List[str] = []
    for change in group.files:
        kind = KIND_NAMES[change.change_kind]
        if change.change_kind == KIND_RENAMED and change.orig_path:
            lines.append(f"- {kind}: {change.orig_path} -> {change.path}")
        else:
            lines.append(f"- {kind}: {change.path}")
    if task_id:
        lines.append("")
        lines.append(f"Task: {task_id} {task_title}".rstrip())
    return "\n".join(lines)


class CommitMessageGenerator:
    """Fill in type, scope, subject, body and confidence for planned groups.

    Parameters
    ----------
    task_id : str
        Task identifier resolved from the branch; may be empty.
    task_title : str
        Human readable task title; may be empty.
    include_task_id : bool
        Append ``(task-id)`` to subjects.
    include_body : bool
        Generate a commit body listing every file.
    overrides : Overrides
        Operator overrides applied after derivation.
    """

    def __init__(
        self,
        task_id: str = "",
        task_title: str = "",
        include_task_id: bool = True,
        include_body: bool = False,
        overrides: Optional[Overrides] = None,
    ) -> None:
        self.task_id = task_id
        self.task_title = task_title
        self.include_task_id = include_task_id
        self.include_body = include_body
        self.overrides = overrides or Overrides()

    def generate(self, group: CommitGroup) -> CommitGroup:
        """Return a copy of ``group`` with every derived field populated."""
        decision = detect_commit_type(group)
        commit_type = self.overrides.commit_type or decision.commit_type
        scope = self.overrides.scope or group.scope
        description = self.overrides.message or describe(group)
        suffix_id = self.task_id if self.include_task_id else ""

        confidence = assess_confidence(group.files, self.task_id)
        if decision.ambiguous:
            confidence = penalize(confidence, FACTOR_AMBIGUOUS_TYPE)

        return replace(
            group,
            type=commit_type,
            scope=scope,
            message=build_subject(commit_type, scope, description, suffix_id),
            body=build_body(group, self.task_id, self.task_title) if self.include_body else "",
            confidence=confidence,
        )

    def generate_groups(self, groups: Sequence[CommitGroup]) -> List[CommitGroup]:
        return [self.generate(group) for group in groups]
