"""
Task identifier extraction and title lookup.

The identifier is parsed from the branch name. The title comes from a
single external command (by default the beads CLI, ``br show <id> --json``)
bounded by a short timeout. A missing tool, a timeout, a non-zero exit or
unparsable output all degrade to an empty title; the sweep never fails
because the tracker is unavailable.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from typing import Dict, List, Optional, Sequence


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


# Bead ids first (bd-3f2a, br-123), then tracker keys (ABC-123)
BEAD_ID_PATTERN = re.compile(r"(?<![A-Za-z0-9])((?:bd|br)-[0-9a-z]+)(?![0-9a-z])")
TRACKER_KEY_PATTERN = re.compile(r"(?<![A-Za-z0-9])([A-Z][A-Z0-9]+-\d+)(?![0-9])")

DEFAULT_LOOKUP_COMMAND = ["br", "show", "{id}", "--json"]
DEFAULT_LOOKUP_TIMEOUT = 5.0


def extract_task_id(branch: Optional[str]) -> str:
    """Return the task identifier embedded in ``branch`` or an empty string.

    Examples
    --------
    >>> extract_task_id("feature/br-123")
    'br-123'
    >>> extract_task_id("fix/PROJ-42-login")
    'PROJ-42'
    >>> extract_task_id("main")
    ''
    """
    if not branch:
        return ""
    for pattern in (BEAD_ID_PATTERN, TRACKER_KEY_PATTERN):
        match = pattern.search(branch)
        if match:
            return match.group(1)
    return ""


def parse_title(output: str) -> str:
    """Extract a title from lookup output.

    JSON output may be an object with a ``title`` key or a list whose first
    element is such an object. Anything else falls back to the first
    non-empty line of plain text output.
    """
    text = output.strip()
    if not text:
        return ""
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        title = data.get("title")
        return title.strip() if isinstance(title, str) else ""
    if data is not None:
        return ""
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


class TaskResolver:
    """Resolve task titles with a per-run cache.

    Parameters
    ----------
    command : Sequence[str]
        Lookup command; ``{id}`` in any argument is replaced with the task
        identifier.
    timeout : float
        Seconds to wait for the lookup command.
    """

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        timeout: float = DEFAULT_LOOKUP_TIMEOUT,
    ) -> None:
        self.command: List[str] = list(command) if command else list(DEFAULT_LOOKUP_COMMAND)
        self.timeout = timeout
        self._cache: Dict[str, str] = {}
        self.hits = 0
        self.misses = 0

    def _lookup(self, task_id: str) -> str:
        argv = [arg.replace("{id}", task_id) for arg in self.command]
        logger.debug("Looking up task title: %s", " ".join(argv))
        try:
            result = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                start_new_session=True,
            )
        except FileNotFoundError:
            logger.debug("Task lookup tool %s not found", argv[0])
            return ""
        except subprocess.TimeoutExpired:
            logger.warning("Task lookup for %s timed out after %.1fs", task_id, self.timeout)
            return ""
        except OSError as exc:
            logger.warning("Task lookup for %s failed: %s", task_id, exc)
            return ""
        if result.returncode != 0:
            logger.debug("Task lookup for %s exited with %d", task_id, result.returncode)
            return ""
        return parse_title(result.stdout)

    def resolve(self, task_id: str) -> str:
        """Return the title of ``task_id``, or an empty string."""
        if not task_id:
            return ""
        if task_id in self._cache:
            self.hits += 1
            return self._cache[task_id]
        self.misses += 1
        title = self._lookup(task_id)
        self._cache[task_id] = title
        return title
