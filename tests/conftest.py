import os

import pytest


@pytest.fixture(autouse=True)
def isolate_state(tmp_path_factory, monkeypatch):
    """Point configuration and state at throwaway directories.

    Tests must never read the developer's ``~/.commit_sweep`` or leave
    locks and checkpoints behind in it.
    """
    home = tmp_path_factory.mktemp("commit_sweep_home")
    monkeypatch.setenv("COMMIT_SWEEP_CONFIG_HOME", str(home))
    monkeypatch.setenv("COMMIT_SWEEP_STATE_DIR", str(home / "state"))
    # Keep the developer's git identity and hooks out of integration repos
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    yield home
