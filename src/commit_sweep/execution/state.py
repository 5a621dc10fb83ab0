"""
Persistent per-repository sweep state.

One JSON record per repository, keyed by the same path digest as the
lock. The record survives a crash, an interrupt or a partial failure and
tells the next run that the repository needs ``--resume`` or
``--restart``. It is removed only on clean completion.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from commit_sweep.execution.lock import repo_digest


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


STATE_IN_PROGRESS = "in_progress"
STATE_INTERRUPTED = "interrupted"
STATE_COMPLETED = "completed"

UNRESOLVED_STATES = (STATE_IN_PROGRESS, STATE_INTERRUPTED)


def write_json_atomic(path: Path, data: Dict[str, Any]) -> None:
    """Write ``data`` next to ``path`` and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
        os.replace(tmp_name, str(path))
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Return the JSON object at ``path``; ``None`` if missing or unreadable."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable state file %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


@dataclass
class SweepState:
    """Progress record of one repository's sweep."""

    repo_path: str
    run_id: str
    status: str = STATE_IN_PROGRESS
    groups_completed: List[str] = field(default_factory=list)
    last_error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def unresolved(self) -> bool:
        return self.status in UNRESOLVED_STATES

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SweepState":
        return cls(
            repo_path=data["repo_path"],
            run_id=data["run_id"],
            status=data.get("status", STATE_IN_PROGRESS),
            groups_completed=list(data.get("groups_completed", [])),
            last_error=data.get("last_error"),
            started_at=float(data.get("started_at", 0.0)),
            updated_at=float(data.get("updated_at", 0.0)),
        )


class SweepStateStore:
    """Load, save and clear :class:`SweepState` records under ``state_dir``."""

    def __init__(self, state_dir: Path) -> None:
        self.root = Path(state_dir) / "runs"

    def path_for(self, repo_path: Path) -> Path:
        return self.root / f"{repo_digest(repo_path)}.json"

    def load(self, repo_path: Path) -> Optional[SweepState]:
        data = read_json(self.path_for(repo_path))
        if data is None:
            return None
        try:
            return SweepState.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed sweep state for %s: %s", repo_path, exc)
            return None

    def save(self, state: SweepState) -> None:
        state.updated_at = time.time()
        write_json_atomic(self.path_for(Path(state.repo_path)), state.to_dict())

    def clear(self, repo_path: Path) -> None:
        try:
            self.path_for(repo_path).unlink()
        except FileNotFoundError:
            pass
