"""
Classification, validation and grouping of working tree changes.

See :mod:`commit_sweep.grouping.change_classifier`,
:mod:`commit_sweep.grouping.validator`, :mod:`commit_sweep.grouping.grouper`
and :mod:`commit_sweep.grouping.group_model` for details.
"""

from .change_classifier import classify_file  # noqa: F401
from .group_model import CommitGroup, Confidence, FileChange  # noqa: F401
