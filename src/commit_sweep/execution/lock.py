"""
Per-repository exclusive lock.

The lock is a file created with ``O_CREAT | O_EXCL`` under
``<state_dir>/locks/`` and named after a digest of the repository path, so
two processes sweeping the same repository through different relative
paths still contend for one file. The file holds JSON with the holder's
pid, hostname and acquisition time. A lock is stale, and may be reclaimed,
when its holder on this host is no longer running or when it is older than
the configured age threshold.
"""

from __future__ import annotations

import errno
import hashlib
import json
import logging
import os
import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


LOCK_DIR_NAME = "locks"


class LockTimeoutError(Exception):
    """Raised when a repository lock cannot be acquired before the timeout."""

    def __init__(self, repo_path: Path, lock_path: Path, holder: Optional[Dict[str, Any]]) -> None:
        self.repo_path = repo_path
        self.lock_path = lock_path
        self.holder = holder or {}
        who = f"{self.holder.get('pid', '?')}@{self.holder.get('hostname', '?')}"
        super().__init__(
            f"Repository {repo_path} is locked by {who} (lock file {lock_path}). "
            f"If that process crashed, remove the lock file: rm {lock_path}"
        )


def repo_digest(repo_path: Path) -> str:
    """Short stable digest of the resolved repository path."""
    raw = str(Path(repo_path).resolve()).encode("utf-8", "surrogateescape")
    return hashlib.sha256(raw).hexdigest()[:16]


def lock_path_for(state_dir: Path, repo_path: Path) -> Path:
    return Path(state_dir) / LOCK_DIR_NAME / f"{repo_digest(repo_path)}.lock"


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    except OSError as exc:
        return exc.errno != errno.ESRCH
    return True


def read_record(path: Path) -> Optional[Dict[str, Any]]:
    """Return the holder record in ``path``, ``{}`` if unreadable, ``None`` if absent."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        return None
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


@dataclass
class LockHandle:
    """A held repository lock."""

    repo_path: Path
    pid: int
    hostname: str
    acquired_at: float
    lock_path: Path

    @property
    def holder(self) -> str:
        return f"{self.pid}@{self.hostname}"


class RepoLock:
    """Acquire and release the lock of one repository.

    Parameters
    ----------
    repo_path : Path
        Repository top-level directory.
    state_dir : Path
        commit-sweep state directory; lock files live in its ``locks``
        subdirectory.
    timeout : float
        Seconds to keep retrying while another process holds the lock.
    retry_interval : float
        Seconds between attempts.
    stale_after : float
        Age in seconds after which any lock is considered abandoned.
    """

    def __init__(
        self,
        repo_path: Path,
        state_dir: Path,
        timeout: float = 30.0,
        retry_interval: float = 0.5,
        stale_after: float = 3600.0,
    ) -> None:
        self.repo_path = Path(repo_path)
        self.lock_path = lock_path_for(state_dir, self.repo_path)
        self.timeout = timeout
        self.retry_interval = retry_interval
        self.stale_after = stale_after
        self.handle: Optional[LockHandle] = None

    def read_holder(self) -> Optional[Dict[str, Any]]:
        """Return the holder record, ``{}`` if unreadable, ``None`` if unlocked."""
        return read_record(self.lock_path)

    def is_stale(self, holder: Dict[str, Any]) -> bool:
        acquired_at = holder.get("acquired_at")
        if not isinstance(acquired_at, (int, float)):
            try:
                acquired_at = self.lock_path.stat().st_mtime
            except FileNotFoundError:
                return False
        if time.time() - acquired_at > self.stale_after:
            return True
        pid = holder.get("pid")
        if holder.get("hostname") == socket.gethostname() and isinstance(pid, int):
            return not pid_alive(pid)
        return False

    def _try_create(self) -> bool:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        now = time.time()
        record = {
            "pid": os.getpid(),
            "hostname": socket.gethostname(),
            "acquired_at": now,
            "repo": str(self.repo_path),
        }
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(record, handle)
        self.handle = LockHandle(
            repo_path=self.repo_path,
            pid=record["pid"],
            hostname=record["hostname"],
            acquired_at=now,
            lock_path=self.lock_path,
        )
        return True

    def _reclaim(self, holder: Dict[str, Any]) -> None:
        """Remove a stale lock file without racing another reclaimer.

        The file is renamed aside first and its record compared with the
        stale ``holder`` that was judged. If another process acquired the
        lock in between, the rename took its live lock, so the file is
        linked back under the lock name and nothing is reclaimed.
        """
        doomed = self.lock_path.with_name(f"{self.lock_path.name}.stale.{os.getpid()}")
        try:
            os.rename(str(self.lock_path), str(doomed))
        except FileNotFoundError:
            return
        taken = read_record(doomed)
        if taken != holder:
            try:
                os.link(str(doomed), str(self.lock_path))
            except FileExistsError:
                logger.warning("Lock %s changed hands while reclaiming; holder %s lost it", self.lock_path, taken)
            os.unlink(str(doomed))
            return
        logger.warning(
            "Reclaimed stale lock %s held by %s@%s",
            self.lock_path,
            holder.get("pid", "?"),
            holder.get("hostname", "?"),
        )
        os.unlink(str(doomed))

    def acquire(self, cancel_check: Optional[Callable[[], None]] = None) -> LockHandle:
        """Block until the lock is held or the timeout expires.

        ``cancel_check`` runs before every wait so a cancelled run stops
        waiting; whatever it raises propagates.

        Raises
        ------
        LockTimeoutError
            If another live process keeps the lock past ``timeout``.
        """
        deadline = time.monotonic() + self.timeout
        holder: Optional[Dict[str, Any]] = None
        while True:
            if self._try_create():
                logger.debug("Acquired lock %s for %s", self.lock_path, self.repo_path)
                return self.handle
            holder = self.read_holder()
            if holder is not None and self.is_stale(holder):
                self._reclaim(holder)
                continue
            if time.monotonic() >= deadline:
                raise LockTimeoutError(self.repo_path, self.lock_path, holder)
            if cancel_check is not None:
                cancel_check()
            time.sleep(self.retry_interval)

    def release(self) -> None:
        """Remove the lock file if this process still owns it."""
        if self.handle is None:
            return
        holder = self.read_holder()
        if holder and holder.get("pid") == self.handle.pid and holder.get("hostname") == self.handle.hostname:
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass
            logger.debug("Released lock %s", self.lock_path)
        else:
            logger.warning("Lock %s is no longer ours; leaving it in place", self.lock_path)
        self.handle = None

    def __enter__(self) -> LockHandle:
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False
