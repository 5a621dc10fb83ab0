"""
Commit type, scope, subject and confidence derivation.

Nothing here talks to git or to a language model; every output is a pure
function of the planned group and the task identifier.
"""

from .commit_message_generator import CommitMessageGenerator, Overrides  # noqa: F401
from .confidence import assess_confidence  # noqa: F401
