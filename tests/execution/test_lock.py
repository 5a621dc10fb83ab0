import json
import os
import socket
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import patch

from commit_sweep.execution.lock import LockTimeoutError, RepoLock, lock_path_for, pid_alive, repo_digest


class TestRepoLock(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.state_dir = Path(self._tmp.name) / "state"
        self.repo = Path(self._tmp.name) / "repo"
        self.repo.mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def make_lock(self, **kwargs) -> RepoLock:
        kwargs.setdefault("timeout", 0.2)
        kwargs.setdefault("retry_interval", 0.01)
        return RepoLock(self.repo, self.state_dir, **kwargs)

    def write_holder(self, **record) -> Path:
        path = lock_path_for(self.state_dir, self.repo)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record))
        return path

    def test_digest_is_path_based(self) -> None:
        self.assertEqual(repo_digest(self.repo), repo_digest(self.repo / "." / ".." / "repo"))
        self.assertEqual(len(repo_digest(self.repo)), 16)

    def test_acquire_and_release(self) -> None:
        lock = self.make_lock()
        handle = lock.acquire()
        self.assertEqual(handle.pid, os.getpid())
        holder = json.loads(lock.lock_path.read_text())
        self.assertEqual(holder["pid"], os.getpid())
        self.assertEqual(holder["hostname"], socket.gethostname())
        lock.release()
        self.assertFalse(lock.lock_path.exists())

    def test_second_lock_times_out_with_guidance(self) -> None:
        with self.make_lock():
            with self.assertRaises(LockTimeoutError) as ctx:
                self.make_lock().acquire()
        message = str(ctx.exception)
        self.assertIn(str(ctx.exception.lock_path), message)
        self.assertIn("rm ", message)

    def test_waiting_lock_acquires_after_release(self) -> None:
        first = self.make_lock()
        first.acquire()
        timer = threading.Timer(0.05, first.release)
        timer.start()
        try:
            handle = self.make_lock(timeout=2.0).acquire()
        finally:
            timer.join()
        self.assertIsNotNone(handle)

    def test_dead_holder_is_reclaimed(self) -> None:
        self.write_holder(pid=999999999, hostname=socket.gethostname(), acquired_at=time.time())
        with patch("commit_sweep.execution.lock.pid_alive", return_value=False):
            with self.assertLogs("commit_sweep.execution.lock", level="WARNING"):
                handle = self.make_lock().acquire()
        self.assertEqual(handle.pid, os.getpid())

    def test_old_lock_is_reclaimed(self) -> None:
        self.write_holder(pid=1, hostname="elsewhere", acquired_at=time.time() - 7200)
        handle = self.make_lock(stale_after=3600).acquire()
        self.assertEqual(handle.hostname, socket.gethostname())

    def test_reclaim_keeps_a_lock_acquired_after_the_stale_one_was_read(self) -> None:
        path = self.write_holder(pid=1, hostname="elsewhere", acquired_at=time.time() - 7200)
        late = self.make_lock(timeout=0, stale_after=3600)
        seen = late.read_holder()
        self.assertTrue(late.is_stale(seen))

        # Another process reclaims and acquires before this one acts
        path.unlink()
        winner = self.make_lock(stale_after=3600)
        handle = winner.acquire()

        late._reclaim(seen)

        self.assertTrue(path.exists())
        self.assertEqual(winner.read_holder()["acquired_at"], handle.acquired_at)
        self.assertEqual(list(path.parent.glob("*.stale.*")), [])
        with self.assertRaises(LockTimeoutError):
            late.acquire()

    def test_reclaim_removes_the_stale_lock_it_read(self) -> None:
        path = self.write_holder(pid=1, hostname="elsewhere", acquired_at=time.time() - 7200)
        lock = self.make_lock(stale_after=3600)
        with self.assertLogs("commit_sweep.execution.lock", level="WARNING"):
            lock._reclaim(lock.read_holder())
        self.assertFalse(path.exists())

    def test_foreign_live_lock_is_respected(self) -> None:
        self.write_holder(pid=1, hostname="elsewhere", acquired_at=time.time())
        with self.assertRaises(LockTimeoutError) as ctx:
            self.make_lock().acquire()
        self.assertEqual(ctx.exception.holder["hostname"], "elsewhere")

    def test_release_leaves_foreign_lock(self) -> None:
        lock = self.make_lock()
        lock.acquire()
        lock.lock_path.write_text(json.dumps({"pid": 1, "hostname": "elsewhere"}))
        lock.release()
        self.assertTrue(lock.lock_path.exists())

    def test_cancel_check_runs_while_waiting(self) -> None:
        class Stop(Exception):
            pass

        def cancel():
            raise Stop()

        with self.make_lock():
            with self.assertRaises(Stop):
                self.make_lock(timeout=5.0).acquire(cancel_check=cancel)

    def test_pid_alive(self) -> None:
        self.assertTrue(pid_alive(os.getpid()))
        self.assertFalse(pid_alive(0))


if __name__ == "__main__":
    unittest.main()
