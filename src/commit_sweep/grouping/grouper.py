"""
Partition a validated change set into atomic commit groups.

Pass 1 buckets files by ``(bucket, top-level directory)``. Pass 2 applies
the affinity rule: a test, doc or config candidate whose directory matches
an existing source group is folded into that source group, so a change and
its tests land in the same commit. Everything else becomes one group per
``(bucket, scope)``.

The root sentinel never attracts affinity merges: it is not a directory,
and folding every top-level README or manifest into unrelated root-level
source changes would defeat atomicity.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from commit_sweep.grouping.group_model import (
    BUCKET_CONFIG,
    BUCKET_DOC,
    BUCKET_PRESTAGED,
    BUCKET_SOURCE,
    BUCKET_TEST,
    ROOT_SCOPE,
    CommitGroup,
    FileChange,
)
from commit_sweep.message.commit_message_generator import detect_scope


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


BUCKET_ORDER = {
    BUCKET_PRESTAGED: 0,
    BUCKET_SOURCE: 1,
    BUCKET_TEST: 2,
    BUCKET_DOC: 3,
    BUCKET_CONFIG: 4,
}


@dataclass
class GroupingResult:
    """Groups in execution order plus any warnings raised while grouping."""

    groups: List[CommitGroup] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def grouped_paths(self) -> List[str]:
        return [path for group in self.groups for path in group.file_paths]


def _sort_key(bucket: str, scope: str) -> Tuple[int, bool, str]:
    return (BUCKET_ORDER[bucket], scope != ROOT_SCOPE, scope)


def split_prestaged(changes: Sequence[FileChange]) -> Tuple[List[FileChange], List[FileChange], List[str]]:
    """Separate manually staged files from the rest.

    Returns the staged files, the remaining files and one warning per
    staged path that also carries unstaged worktree edits. Those edits are
    not committed by the pre-staged group and stay in the working tree.
    """
    staged: List[FileChange] = []
    rest: List[FileChange] = []
    warnings: List[str] = []
    for change in changes:
        if change.is_staged:
            staged.append(change)
            if change.has_unstaged_changes:
                warnings.append(
                    f"{change.path} has both staged and unstaged changes; "
                    "only the staged content is committed, the rest stays in the working tree"
                )
        else:
            rest.append(change)
    return staged, rest, warnings


def group_changes(changes: Sequence[FileChange], respect_staging: bool = False) -> GroupingResult:
    """Partition ``changes`` into ordered :class:`CommitGroup` objects.

    Types, messages and confidence are left empty here; they are derived
    by :mod:`commit_sweep.message`.

    Parameters
    ----------
    changes : Sequence[FileChange]
        Validated, classified changes. Every one ends up in exactly one
        group.
    respect_staging : bool
        Isolate files with a staged index half into a first-executed
        pre-staged group.
    """
    result = GroupingResult()
    remaining = list(changes)
    prestaged: List[FileChange] = []
    if respect_staging:
        prestaged, remaining, overlap = split_prestaged(remaining)
        result.warnings.extend(overlap)

    # Pass 1: candidates keyed by (bucket, top-level directory)
    candidates: Dict[Tuple[str, str], List[FileChange]] = OrderedDict()
    for change in sorted(remaining, key=lambda c: c.path):
        candidates.setdefault((change.bucket, change.top_level_dir), []).append(change)

    # Pass 2: affinity merge into co-located source groups
    source_scopes = {scope for bucket, scope in candidates if bucket == BUCKET_SOURCE}
    merged: Dict[Tuple[str, str], List[FileChange]] = OrderedDict()
    for (bucket, scope), files in candidates.items():
        key = (bucket, scope)
        if bucket != BUCKET_SOURCE and scope != ROOT_SCOPE and scope in source_scopes:
            key = (BUCKET_SOURCE, scope)
            logger.debug("Affinity merge: %d %s file(s) into source group %s", len(files), bucket, scope)
        merged.setdefault(key, []).extend(files)

    ordered: List[Tuple[str, str, List[FileChange]]] = []
    if prestaged:
        files = sorted(prestaged, key=lambda c: c.path)
        ordered.append((BUCKET_PRESTAGED, detect_scope(c.path for c in files), files))
    for (bucket, scope) in sorted(merged, key=lambda key: _sort_key(*key)):
        files = sorted(merged[(bucket, scope)], key=lambda c: c.path)
        ordered.append((bucket, scope, files))

    for index, (bucket, scope, files) in enumerate(ordered, start=1):
        result.groups.append(
            CommitGroup(id=f"g{index}", type="", scope=scope, bucket=bucket, files=files)
        )
    return result
