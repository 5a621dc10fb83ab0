"""
Transactional execution, locking, checkpoints and recovery.

See :mod:`commit_sweep.execution.executor` for the state machine.
"""

from .executor import Executor, ExecutorState, PreflightError, SweepSession  # noqa: F401
from .lock import LockTimeoutError, RepoLock  # noqa: F401
from .signals import CancellationToken, SweepInterrupted  # noqa: F401
