"""Failure, resume, restart and undo against real git repositories."""

import os
import tempfile
import unittest
from pathlib import Path

from commit_sweep.execution.state import SweepStateStore

from repo_factory import (
    DOCS_FROZEN_HOOK,
    git,
    head,
    init_repo,
    install_hook,
    json_data,
    porcelain,
    requires_git,
    run_cli,
    staged,
    state_dir,
    subjects,
    write_config,
    write_files,
)


@requires_git
class TestFailedGroup(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        write_config()
        self.repo = init_repo(Path(self._tmp.name) / "repo", {"src/app.py": "x = 1\n"})
        write_files(self.repo, {"src/app.py": "x = 2\n", "docs/guide.md": "# Guide\n"})
        self.before = head(self.repo)
        self.hook = install_hook(self.repo, DOCS_FROZEN_HOOK)

        self.failed = run_cli(self.repo, "--execute", "--json")

    def test_failed_group_is_unstaged_and_earlier_groups_stay(self) -> None:
        self.assertEqual(self.failed.exit_code, 1, self.failed.stderr)
        self.assertEqual(subjects(self.repo, 1), ["fix(src): update app.py (br-123)"])
        self.assertEqual(git(self.repo, "rev-parse", "HEAD~1").strip(), self.before)
        self.assertEqual(staged(self.repo), [])
        self.assertEqual(porcelain(self.repo), "?? docs/guide.md\n")

        repo = json_data(self.failed)["repos"][0]
        self.assertEqual(repo["status"], "partial")
        self.assertEqual([r["status"] for r in repo["results"]], ["committed", "failed"])
        self.assertIn("docs are frozen", repo["results"][1]["error"])

    def test_failed_sweep_is_recorded_as_unresolved(self) -> None:
        state = SweepStateStore(state_dir()).load(self.repo)
        self.assertIsNotNone(state)
        self.assertTrue(state.unresolved)
        self.assertEqual(state.groups_completed, ["g1"])

    def test_plain_execute_refuses_unresolved_repository(self) -> None:
        tip = head(self.repo)

        result = run_cli(self.repo, "--execute", "--json")

        self.assertEqual(result.exit_code, 4)
        self.assertEqual(head(self.repo), tip)
        codes = [error["code"] for error in json_data(result)["repos"][0]["errors"]]
        self.assertEqual(codes, ["unresolved_state"])

    def test_dry_run_warns_about_unresolved_repository(self) -> None:
        result = run_cli(self.repo)

        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertIn("--resume or --restart", result.stderr)

    def test_resume_commits_the_remaining_groups(self) -> None:
        self.hook.unlink()

        result = run_cli(self.repo, "--execute", "--resume")

        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertEqual(
            subjects(self.repo, 2),
            ["docs(docs): add guide.md (br-123)", "fix(src): update app.py (br-123)"],
        )
        self.assertEqual(porcelain(self.repo), "")
        self.assertFalse(SweepStateStore(state_dir()).load(self.repo).unresolved)

        # The original checkpoint survives the resume
        undo = run_cli(self.repo, "--undo")
        self.assertEqual(undo.exit_code, 0, undo.stderr)
        self.assertEqual(head(self.repo), self.before)

    def test_restart_rolls_back_and_plans_again(self) -> None:
        self.hook.unlink()

        result = run_cli(self.repo, "--execute", "--restart")

        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertEqual(git(self.repo, "rev-parse", "HEAD~2").strip(), self.before)
        self.assertEqual(
            subjects(self.repo, 2),
            ["docs(docs): add guide.md (br-123)", "fix(src): update app.py (br-123)"],
        )
        self.assertEqual(porcelain(self.repo), "")

    def test_atomic_restores_the_checkpoint(self) -> None:
        run_cli(self.repo, "--execute", "--restart", "--atomic")

        self.assertEqual(head(self.repo), self.before)
        self.assertEqual(staged(self.repo), [])
        self.assertEqual(porcelain(self.repo), " M src/app.py\n?? docs/guide.md\n")
        self.assertIsNone(SweepStateStore(state_dir()).load(self.repo))


@requires_git
class TestInterruptedCommit(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        write_config()
        self.repo = init_repo(Path(self._tmp.name) / "repo", {"src/app.py": "x = 1\n"})
        write_files(self.repo, {"src/app.py": "x = 2\n", "docs/guide.md": "# Guide\n"})
        self.before = head(self.repo)
        # Ctrl-C arrives while git is committing the second group
        install_hook(
            self.repo,
            "#!/bin/sh\n"
            "if git diff --cached --name-only | grep -q '^docs/'; then\n"
            f"  kill -INT {os.getpid()}\n"
            "  exit 130\n"
            "fi\n"
            "exit 0\n",
        )

    def test_interrupt_during_commit_restores_checkpoint(self) -> None:
        result = run_cli(self.repo, "--execute", "--json")

        self.assertEqual(result.exit_code, 5, result.stderr)
        self.assertEqual(head(self.repo), self.before)
        self.assertEqual(staged(self.repo), [])
        self.assertEqual(porcelain(self.repo), " M src/app.py\n?? docs/guide.md\n")
        repo = json_data(result)["repos"][0]
        self.assertEqual(repo["status"], "interrupted")
        self.assertNotIn("group_failed", [error["code"] for error in repo["errors"]])
        self.assertEqual(SweepStateStore(state_dir()).load(self.repo).status, "interrupted")

    def test_interrupted_sweep_can_be_resumed(self) -> None:
        run_cli(self.repo, "--execute")
        (self.repo / ".git" / "hooks" / "pre-commit").unlink()

        result = run_cli(self.repo, "--execute", "--resume")

        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertEqual(git(self.repo, "rev-parse", "HEAD~2").strip(), self.before)
        self.assertEqual(porcelain(self.repo), "")


@requires_git
class TestUndo(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        write_config()
        self.repo = init_repo(Path(self._tmp.name) / "repo", {"src/app.py": "x = 1\n"})

    def test_undo_restores_pre_sweep_head(self) -> None:
        write_files(self.repo, {"src/app.py": "x = 2\n", "src/extra.py": "y = 1\n"})
        before = head(self.repo)
        result = run_cli(self.repo, "--execute")
        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertNotEqual(head(self.repo), before)

        result = run_cli(self.repo, "--undo", "--json")

        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertEqual(head(self.repo), before)
        self.assertEqual(porcelain(self.repo), " M src/app.py\n?? src/extra.py\n")
        self.assertEqual(json_data(result)["repos"][0]["head"], before)
        self.assertEqual(git(self.repo, "for-each-ref", "refs/commit-sweep/"), "")

    def test_second_undo_has_nothing_to_restore(self) -> None:
        write_files(self.repo, {"src/app.py": "x = 2\n"})
        run_cli(self.repo, "--execute")
        run_cli(self.repo, "--undo")

        result = run_cli(self.repo, "--undo", "--json")

        self.assertEqual(result.exit_code, 1)
        self.assertEqual(json_data(result)["repos"][0]["errors"][0]["code"], "undo_failed")

    def test_undo_refuses_when_history_was_rewritten(self) -> None:
        write_files(self.repo, {"src/app.py": "x = 2\n"})
        before = head(self.repo)
        run_cli(self.repo, "--execute")
        git(self.repo, "checkout", "-q", "--orphan", "elsewhere")
        git(self.repo, "commit", "-q", "-m", "unrelated")
        unrelated = head(self.repo)

        result = run_cli(self.repo, "--undo")

        self.assertEqual(result.exit_code, 1)
        self.assertEqual(head(self.repo), unrelated)
        self.assertNotEqual(unrelated, before)


if __name__ == "__main__":
    unittest.main()
