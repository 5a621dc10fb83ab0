"""
Dynamic version generation for commit_sweep.

The version is composed of:
- Major version: set manually in ``__init__.py``
- Minor version: highest ``v{major}.{minor}`` release tag
- Local segment: short SHA of the checkout the package was imported from

Format: ``{major}.{minor}.dev0+g{sha}`` (PEP 440 development release).
"""

import re
import subprocess
from pathlib import Path
from typing import List, Optional

_TAG_PATTERN = re.compile(r"^v(\d+)\.(\d+)")
_PACKAGE_DIR = Path(__file__).resolve().parent


def _git_output(args: List[str], repo_path: Optional[Path]) -> Optional[str]:
    """Run a read-only git query against the package checkout.

    The package directory is used by default rather than the current
    working directory: commit-sweep runs inside other people's
    repositories, whose tags say nothing about our own version.
    """
    cwd = repo_path or _PACKAGE_DIR
    try:
        result = subprocess.run(
            ["git", "-C", str(cwd)] + args,
            capture_output=True,
            text=True,
            check=True,
            timeout=5,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return None
    return result.stdout.strip()


def get_git_commit_sha(repo_path: Optional[Path] = None) -> str:
    """Return the 7 character HEAD sha, or ``'unknown'`` outside a checkout."""
    sha = _git_output(["rev-parse", "--short=7", "HEAD"], repo_path)
    return sha or "unknown"


def get_minor_version_from_tags(repo_path: Optional[Path] = None) -> int:
    """Return the highest minor number among ``v{major}.{minor}`` tags."""
    output = _git_output(["tag", "-l", "v*"], repo_path)
    if not output:
        return 0
    minors = []
    for tag in output.splitlines():
        match = _TAG_PATTERN.match(tag.strip())
        if match:
            minors.append(int(match.group(2)))
    return max(minors) if minors else 0


def generate_version(base_version: str, repo_path: Optional[Path] = None) -> str:
    """Build the full PEP 440 version string for ``base_version``."""
    minor = get_minor_version_from_tags(repo_path)
    commit_sha = get_git_commit_sha(repo_path)
    if commit_sha == "unknown":
        return f"{base_version}.{minor}.dev0"
    return f"{base_version}.{minor}.dev0+g{commit_sha}"
