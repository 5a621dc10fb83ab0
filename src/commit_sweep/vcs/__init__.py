"""
Version control system access.

Only git is supported; see :mod:`commit_sweep.vcs.git_client`.
"""

from .git_client import GitClient, GitError, UnmergedPathsError  # noqa: F401
