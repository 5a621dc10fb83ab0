"""
Configuration loading for commit_sweep.

See :mod:`commit_sweep.config.loader` for the file format and defaults.
"""

from .loader import ConfigError, load_config, resolve_state_dir  # noqa: F401
