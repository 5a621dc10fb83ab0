#!/usr/bin/env python
"""
Thin wrapper script to invoke the commit_sweep CLI.

Running ``python commit_sweep_cli.py`` is equivalent to running the
``commit-sweep`` console script installed via ``pyproject.toml``.
"""

from commit_sweep.cli import main


if __name__ == "__main__":
    main(prog_name="commit-sweep")
