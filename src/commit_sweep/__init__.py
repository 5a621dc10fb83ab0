"""
Top-level package for commit_sweep.

commit-sweep turns a dirty git working tree into a sequence of atomic,
conventionally formatted commits using deterministic heuristics. The CLI
entry point lives in :mod:`commit_sweep.cli`.
"""

__all__ = ["__version__", "__base_version__"]

# Major version - controlled manually
__base_version__ = "0"

try:
    from commit_sweep._version import generate_version

    __version__ = generate_version(__base_version__)
except Exception:
    # Version generation must never break imports
    __version__ = f"{__base_version__}.0.dev0"
