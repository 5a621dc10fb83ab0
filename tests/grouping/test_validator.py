import os
import tempfile
import unittest
from pathlib import Path

from commit_sweep.grouping.group_model import FileChange
from commit_sweep.grouping.validator import (
    ChangeValidator,
    UnsafePathError,
    is_binary_file,
    is_path_denied,
    unsafe_path_reason,
)


class TestUnsafePaths(unittest.TestCase):
    def test_safe_paths(self) -> None:
        for path in ["a.py", "lib/x y,z.sh", "dir/-dash.txt", "weird\tname"]:
            with self.subTest(path=path):
                self.assertIsNone(unsafe_path_reason(path))

    def test_unsafe_paths(self) -> None:
        for path in ["", "-rf", "--exec=x", "/etc/passwd", "../escape", "a/../../b", "nul\0byte"]:
            with self.subTest(path=path):
                self.assertIsNotNone(unsafe_path_reason(path))

    def test_validate_aborts_on_unsafe_path(self) -> None:
        validator = ChangeValidator(Path("/nonexistent"))
        with self.assertRaises(UnsafePathError) as ctx:
            validator.validate([FileChange(path="ok.py", status=" M"), FileChange(path="-n", status="??")])
        self.assertEqual(ctx.exception.path, "-n")

    def test_rename_origin_is_checked(self) -> None:
        validator = ChangeValidator(Path("/nonexistent"))
        with self.assertRaises(UnsafePathError):
            validator.check_paths([FileChange(path="new.py", status="R ", orig_path="../old.py")])


class TestDenylist(unittest.TestCase):
    def test_patterns(self) -> None:
        patterns = [".env", "*.pem", "node_modules", "config/local/*.json"]
        self.assertTrue(is_path_denied(".env", patterns))
        self.assertTrue(is_path_denied("service/.env", patterns))
        self.assertTrue(is_path_denied("certs/server.pem", patterns))
        self.assertTrue(is_path_denied("web/node_modules/x/index.js", patterns))
        self.assertTrue(is_path_denied("./config/local/db.json", patterns))
        self.assertFalse(is_path_denied("config/db.json", patterns))
        self.assertFalse(is_path_denied("src/environment.py", patterns))


class TestChangeValidator(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_binary_detection(self) -> None:
        (self.root / "blob.bin").write_bytes(b"\x89PNG\0\0data")
        (self.root / "text.txt").write_text("hello\n")
        self.assertTrue(is_binary_file(self.root / "blob.bin"))
        self.assertFalse(is_binary_file(self.root / "text.txt"))
        self.assertFalse(is_binary_file(self.root / "missing"))

    def test_exclusions_are_reported_under_skipped(self) -> None:
        (self.root / "blob.bin").write_bytes(b"\0\1\2")
        (self.root / "app.py").write_text("print('hi')\n")
        (self.root / "vendor").mkdir()
        (self.root / ".env").write_text("TOKEN=1\n")
        os.symlink(str(self.root / "gone"), str(self.root / "dangling"))

        changes = [
            FileChange(path="app.py", status=" M"),
            FileChange(path="blob.bin", status="??"),
            FileChange(path="vendor", status=" M"),
            FileChange(path=".env", status="??"),
            FileChange(path="dangling", status="??"),
            FileChange(path="removed.py", status=" D"),
        ]
        result = ChangeValidator(self.root).validate(changes)
        self.assertEqual([c.path for c in result.accepted], ["app.py", "removed.py"])
        self.assertEqual(result.skipped["binary"], ["blob.bin"])
        self.assertEqual(result.skipped["submodules"], ["vendor"])
        self.assertEqual(result.skipped["excluded"], [".env"])
        self.assertEqual(result.skipped["broken_symlinks"], ["dangling"])
        self.assertEqual(len(result.warnings), 4)

    def test_opt_ins_keep_files(self) -> None:
        (self.root / "blob.bin").write_bytes(b"\0\1\2")
        validator = ChangeValidator(self.root, include_binary=True)
        result = validator.validate([FileChange(path="blob.bin", status="??")])
        self.assertEqual([c.path for c in result.accepted], ["blob.bin"])
        self.assertTrue(result.accepted[0].binary)

    def test_extra_denylist(self) -> None:
        (self.root / "notes.bak").write_text("x")
        result = ChangeValidator(self.root, denylist=["*.bak"]).validate([FileChange(path="notes.bak", status="??")])
        self.assertEqual(result.skipped["excluded"], ["notes.bak"])
        self.assertEqual(result.accepted, [])


if __name__ == "__main__":
    unittest.main()
