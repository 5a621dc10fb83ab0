import subprocess
import unittest
from types import SimpleNamespace
from unittest.mock import patch

from commit_sweep.tasks.task_resolver import TaskResolver, extract_task_id, parse_title


class TestExtractTaskId(unittest.TestCase):
    def test_branch_names(self) -> None:
        cases = [
            ("feature/br-123", "br-123"),
            ("bd-3f2a-session", "bd-3f2a"),
            ("fix/PROJ-42-login", "PROJ-42"),
            ("ABC-7", "ABC-7"),
            ("main", ""),
            ("feature/embr-12", ""),
            ("", ""),
            (None, ""),
        ]
        for branch, expected in cases:
            with self.subTest(branch=branch):
                self.assertEqual(extract_task_id(branch), expected)

    def test_bead_ids_win_over_tracker_keys(self) -> None:
        self.assertEqual(extract_task_id("PROJ-1/br-9"), "br-9")


class TestParseTitle(unittest.TestCase):
    def test_formats(self) -> None:
        self.assertEqual(parse_title('{"id": "br-1", "title": " Fix login "}'), "Fix login")
        self.assertEqual(parse_title('[{"title": "First"}, {"title": "Second"}]'), "First")
        self.assertEqual(parse_title('{"id": "br-1"}'), "")
        self.assertEqual(parse_title("42"), "")
        self.assertEqual(parse_title("\n  Plain title\nmore\n"), "Plain title")
        self.assertEqual(parse_title(""), "")


class DummyProc(SimpleNamespace):
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""


class TestTaskResolver(unittest.TestCase):
    @patch("commit_sweep.tasks.task_resolver.subprocess.run")
    def test_resolve_substitutes_id_and_caches(self, mock_run) -> None:
        mock_run.return_value = DummyProc(returncode=0, stdout='{"title": "Session expiry"}', stderr="")
        resolver = TaskResolver(["tracker", "show", "{id}"], timeout=2.0)

        self.assertEqual(resolver.resolve("br-1"), "Session expiry")
        self.assertEqual(resolver.resolve("br-1"), "Session expiry")

        mock_run.assert_called_once()
        self.assertEqual(mock_run.call_args[0][0], ["tracker", "show", "br-1"])
        self.assertEqual(mock_run.call_args[1]["timeout"], 2.0)
        self.assertTrue(mock_run.call_args[1]["start_new_session"])
        self.assertEqual((resolver.hits, resolver.misses), (1, 1))

    @patch("commit_sweep.tasks.task_resolver.subprocess.run")
    def test_empty_id_skips_lookup(self, mock_run) -> None:
        resolver = TaskResolver()
        self.assertEqual(resolver.resolve(""), "")
        mock_run.assert_not_called()
        self.assertEqual((resolver.hits, resolver.misses), (0, 0))

    @patch("commit_sweep.tasks.task_resolver.subprocess.run")
    def test_failures_degrade_to_empty_title(self, mock_run) -> None:
        failures = [
            FileNotFoundError("br"),
            subprocess.TimeoutExpired(["br"], 5),
            PermissionError("denied"),
            DummyProc(returncode=1, stdout="", stderr="unknown id"),
        ]
        for failure in failures:
            with self.subTest(failure=failure):
                if isinstance(failure, BaseException):
                    mock_run.side_effect = failure
                else:
                    mock_run.side_effect = None
                    mock_run.return_value = failure
                self.assertEqual(TaskResolver().resolve("br-2"), "")

    @patch("commit_sweep.tasks.task_resolver.subprocess.run")
    def test_failed_lookup_is_cached(self, mock_run) -> None:
        mock_run.side_effect = FileNotFoundError("br")
        resolver = TaskResolver()
        resolver.resolve("br-3")
        resolver.resolve("br-3")
        self.assertEqual(mock_run.call_count, 1)


if __name__ == "__main__":
    unittest.main()
