"""
Heuristics for classifying changed files into semantic buckets.

The classifier is a deterministic, order-sensitive rule chain over the
file path alone: test patterns first, then documentation, then
configuration, with everything else falling through to source. Several
rules can match the same path (``tests/README.md`` is both a test-directory
file and a documentation file); the first matching rule wins.
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from pathlib import PurePosixPath

from commit_sweep.grouping.group_model import (
    BUCKET_CONFIG,
    BUCKET_DOC,
    BUCKET_SOURCE,
    BUCKET_TEST,
)


TEST_DIRS = {"test", "tests", "__tests__", "spec", "specs"}
TEST_NAME_PATTERNS = ("test_*", "*_test.*", "*.test.*", "*.spec.*", "*_spec.*", "conftest.py")

DOC_DIRS = {"doc", "docs", "documentation"}
DOC_EXTENSIONS = {".md", ".markdown", ".rst", ".adoc", ".asciidoc"}
DOC_STEMS = {"README", "CHANGELOG", "CHANGES", "HISTORY", "LICENSE", "COPYING", "CONTRIBUTING", "AUTHORS", "NOTICE"}

CONFIG_NAMES = {
    "Dockerfile",
    "Makefile",
    "Jenkinsfile",
    "Procfile",
    "Vagrantfile",
    "Gemfile",
    "Gemfile.lock",
    "Pipfile",
    "Pipfile.lock",
    "CMakeLists.txt",
    "setup.py",
    "go.mod",
    "go.sum",
    "pom.xml",
    "build.gradle",
    "settings.gradle",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
}
CONFIG_NAME_PATTERNS = ("requirements*.txt", "docker-compose*.yml", "docker-compose*.yaml", "*.mk")
CONFIG_EXTENSIONS = {".yml", ".yaml", ".toml", ".ini", ".cfg", ".conf", ".json", ".lock"}


def _is_test(path: PurePosixPath) -> bool:
    if any(part in TEST_DIRS for part in path.parts[:-1]):
        return True
    return any(fnmatchcase(path.name, pattern) for pattern in TEST_NAME_PATTERNS)


def _is_doc(path: PurePosixPath) -> bool:
    if path.suffix.lower() in DOC_EXTENSIONS:
        return True
    if path.name.split(".", 1)[0].upper() in DOC_STEMS:
        return True
    return any(part.lower() in DOC_DIRS for part in path.parts[:-1])


def _is_config(path: PurePosixPath) -> bool:
    # Dotfiles and anything under a dot-directory (.github, .gitlab, ...)
    if any(part.startswith(".") for part in path.parts):
        return True
    if path.name in CONFIG_NAMES:
        return True
    if any(fnmatchcase(path.name, pattern) for pattern in CONFIG_NAME_PATTERNS):
        return True
    return path.suffix.lower() in CONFIG_EXTENSIONS


def classify_file(file_path: str) -> str:
    """Classify a repository-relative path into a bucket.

    Parameters
    ----------
    file_path : str
        Path relative to the repository root, ``/`` separated.

    Returns
    -------
    str
        One of ``"test"``, ``"doc"``, ``"config"`` or ``"source"``.
    """
    path = PurePosixPath(file_path)
    if _is_test(path):
        return BUCKET_TEST
    if _is_doc(path):
        return BUCKET_DOC
    if _is_config(path):
        return BUCKET_CONFIG
    return BUCKET_SOURCE
