"""
Data models for commit grouping.

:class:`FileChange` is one entry of the working tree's change set, as
collected from ``git status`` and annotated by the validator and the
classifier. :class:`CommitGroup` is a set of changes that will become a
single commit, together with its derived type, scope, message and
:class:`Confidence`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


BUCKET_SOURCE = "source"
BUCKET_TEST = "test"
BUCKET_DOC = "doc"
BUCKET_CONFIG = "config"
BUCKET_PRESTAGED = "pre-staged"

ROOT_SCOPE = "root"

COMMIT_TYPES = ("feat", "fix", "test", "docs", "chore", "refactor")

KIND_ADDED = "A"
KIND_MODIFIED = "M"
KIND_DELETED = "D"
KIND_RENAMED = "R"

KIND_NAMES = {
    KIND_ADDED: "added",
    KIND_MODIFIED: "modified",
    KIND_DELETED: "deleted",
    KIND_RENAMED: "renamed",
}


@dataclass(frozen=True)
class FileChange:
    """A single changed path in the working tree.

    Attributes
    ----------
    path : str
        Path relative to the repository root (the new path for renames).
    status : str
        Two-character porcelain status: index half then worktree half,
        ``"??"`` for untracked files.
    orig_path : str, optional
        Previous path for renames and copies.
    bucket : str
        Semantic bucket assigned by the classifier.
    """

    path: str
    status: str
    orig_path: Optional[str] = None
    bucket: str = BUCKET_SOURCE
    binary: bool = False
    submodule: bool = False
    broken_symlink: bool = False
    denylisted: bool = False

    @property
    def change_kind(self) -> str:
        """Collapse the two-character status into A, M, D or R."""
        code = self.status
        if code == "??":
            return KIND_ADDED
        if "R" in code:
            return KIND_RENAMED
        if "C" in code:
            return KIND_ADDED
        if "D" in code:
            return KIND_DELETED
        if "A" in code:
            return KIND_ADDED
        return KIND_MODIFIED

    @property
    def top_level_dir(self) -> str:
        head, sep, _ = self.path.partition("/")
        return head if sep else ROOT_SCOPE

    @property
    def is_staged(self) -> bool:
        """True when the index half records a change."""
        return self.status[0] not in (" ", "?")

    @property
    def has_unstaged_changes(self) -> bool:
        return self.status[1] != " "

    @property
    def is_deleted(self) -> bool:
        return self.change_kind == KIND_DELETED

    @property
    def excluded(self) -> bool:
        return self.binary or self.submodule or self.broken_symlink or self.denylisted

    @property
    def paths(self) -> List[str]:
        """Every path git must see to record this change."""
        if self.orig_path and self.change_kind == KIND_RENAMED:
            return [self.orig_path, self.path]
        return [self.path]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "orig_path": self.orig_path,
            "status": self.status,
            "bucket": self.bucket,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileChange":
        return cls(
            path=data["path"],
            status=data["status"],
            orig_path=data.get("orig_path"),
            bucket=data.get("bucket", BUCKET_SOURCE),
        )


@dataclass
class Confidence:
    """Additive confidence score with the factor codes that produced it."""

    score: int
    level: str
    factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level, "score": self.score, "factors": list(self.factors)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Confidence":
        return cls(score=int(data["score"]), level=data["level"], factors=list(data.get("factors", [])))


@dataclass
class CommitGroup:
    """Representation of a grouped commit.

    Attributes
    ----------
    id : str
        Identifier, stable for a given repository state.
    type : str
        Conventional Commit type, one of :data:`COMMIT_TYPES`.
    scope : str
        Top-level directory of the group, or :data:`ROOT_SCOPE`.
    bucket : str
        Bucket the group was formed from (the source bucket for merged
        groups, :data:`BUCKET_PRESTAGED` for the manual staging group).
    files : List[FileChange]
        Ordered, non-empty list of changes.
    message : str
        Commit subject, at most 72 characters.
    body : str
        Optional commit body.
    """

    id: str
    type: str
    scope: str
    bucket: str
    files: List[FileChange]
    message: str = ""
    body: str = ""
    confidence: Optional[Confidence] = None

    @property
    def file_paths(self) -> List[str]:
        return [change.path for change in self.files]

    @property
    def all_paths(self) -> List[str]:
        """Paths to stage, including rename origins, without duplicates."""
        seen: List[str] = []
        for change in self.files:
            for path in change.paths:
                if path not in seen:
                    seen.append(path)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "scope": self.scope,
            "bucket": self.bucket,
            "message": self.message,
            "body": self.body,
            "files": self.file_paths,
            "file_statuses": {change.path: change.status for change in self.files},
            "file_details": [change.to_dict() for change in self.files],
            "confidence": self.confidence.to_dict() if self.confidence else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommitGroup":
        if data.get("file_details"):
            files = [FileChange.from_dict(item) for item in data["file_details"]]
        else:
            statuses = data.get("file_statuses", {})
            files = [FileChange(path=path, status=statuses.get(path, " M")) for path in data["files"]]
        confidence = data.get("confidence")
        return cls(
            id=data["id"],
            type=data["type"],
            scope=data["scope"],
            bucket=data.get("bucket", BUCKET_SOURCE),
            files=files,
            message=data.get("message", ""),
            body=data.get("body") or "",
            confidence=Confidence.from_dict(confidence) if confidence else None,
        )
