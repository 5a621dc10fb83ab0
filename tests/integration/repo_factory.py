"""Helpers for building throwaway git repositories in integration tests."""

import json
import os
import shutil
import stat
import subprocess
import unittest
from pathlib import Path
from typing import Dict, List, Optional

from click.testing import CliRunner

from commit_sweep import cli


requires_git = unittest.skipIf(shutil.which("git") is None, "git is not installed")

FAILING_HOOK = "#!/bin/sh\necho 'rejected by hook' >&2\nexit 1\n"

DOCS_FROZEN_HOOK = """#!/bin/sh
if git diff --cached --name-only | grep -q '^docs/'; then
  echo 'docs are frozen' >&2
  exit 1
fi
exit 0
"""


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git"] + list(args),
        cwd=repo,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=True,
    )
    return result.stdout


def init_repo(path: Path, files: Dict[str, str], branch: Optional[str] = "feature/br-123") -> Path:
    """Create a repository with one commit holding ``files``, then switch to ``branch``."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "config", "user.email", "dev@example.com")
    git(path, "config", "user.name", "Dev")
    git(path, "config", "commit.gpgsign", "false")
    git(path, "config", "core.hooksPath", ".git/hooks")
    write_files(path, files)
    git(path, "add", "-A")
    git(path, "commit", "-q", "-m", "initial")
    if branch:
        git(path, "checkout", "-q", "-b", branch)
    return Path(git(path, "rev-parse", "--show-toplevel").strip())


def write_files(repo: Path, files: Dict[str, str]) -> None:
    for name, content in files.items():
        target = repo / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)


def install_hook(repo: Path, script: str, name: str = "pre-commit") -> Path:
    hook = repo / ".git" / "hooks" / name
    hook.parent.mkdir(parents=True, exist_ok=True)
    hook.write_text(script)
    hook.chmod(hook.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return hook


def head(repo: Path) -> str:
    return git(repo, "rev-parse", "HEAD").strip()


def subjects(repo: Path, count: int) -> List[str]:
    return git(repo, "log", f"-{count}", "--format=%s").splitlines()


def porcelain(repo: Path) -> str:
    return git(repo, "status", "--porcelain=v1", "--untracked-files=all")


def staged(repo: Path) -> List[str]:
    return git(repo, "diff", "--cached", "--name-only").splitlines()


def files_in_commit(repo: Path, rev: str = "HEAD") -> List[str]:
    return sorted(git(repo, "show", "--name-only", "--format=", rev).split("\n")[:-1])


def state_dir() -> Path:
    return Path(os.environ["COMMIT_SWEEP_STATE_DIR"])


def write_config(**overrides) -> Path:
    """Write the default config file used by every CLI invocation in the test."""
    config = {
        "task_lookup_command": ["commit-sweep-missing-tracker", "{id}"],
        "lock_timeout": 0.5,
        "lock_retry_interval": 0.05,
    }
    config.update(overrides)
    home = Path(os.environ["COMMIT_SWEEP_CONFIG_HOME"])
    home.mkdir(parents=True, exist_ok=True)
    path = home / "config.json"
    path.write_text(json.dumps(config))
    return path


def run_cli(*args: str):
    return CliRunner().invoke(cli.main, [str(arg) for arg in args])


def json_data(result) -> dict:
    return json.loads(result.stdout)["data"]
