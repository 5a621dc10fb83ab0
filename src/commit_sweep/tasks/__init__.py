"""Task identifier extraction and title lookup."""

from .task_resolver import TaskResolver, extract_task_id  # noqa: F401
