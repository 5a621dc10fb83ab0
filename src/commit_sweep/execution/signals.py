"""
Cooperative cancellation.

SIGINT and SIGTERM do not unwind the stack. The handlers only set a flag on
the run's :class:`CancellationToken`; the executor checks it between steps
and runs its cleanup on the normal flow of control. Inside
:meth:`CancellationToken.shielded` further signals are recorded and
otherwise ignored, so cleanup itself cannot be interrupted.
"""

from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SweepInterrupted(Exception):
    """Raised at a step boundary once cancellation has been requested."""

    def __init__(self, signum: Optional[int] = None) -> None:
        self.signum = signum
        name = signal.Signals(signum).name if signum else "cancellation"
        super().__init__(f"Interrupted by {name}")


class CancellationToken:
    """Run-scoped cancellation flag, optionally wired to process signals."""

    def __init__(self) -> None:
        self.cancelled = False
        self.signum: Optional[int] = None
        self._shielded = False
        self._previous: Dict[int, object] = {}

    def cancel(self, signum: Optional[int] = None) -> None:
        if not self.cancelled:
            self.signum = signum
        self.cancelled = True

    def _handle(self, signum, frame) -> None:
        if self._shielded:
            logger.warning("Signal %d received during cleanup; ignoring", signum)
            return
        logger.warning("Signal %d received; stopping after the current step", signum)
        self.cancel(signum)

    def install(self) -> None:
        """Install handlers; a no-op outside the main thread."""
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in HANDLED_SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handle)

    def restore(self) -> None:
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)
        self._previous.clear()

    def raise_if_cancelled(self) -> None:
        if self.cancelled and not self._shielded:
            raise SweepInterrupted(self.signum)

    @contextmanager
    def shielded(self) -> Iterator[None]:
        """Ignore further signals for the duration of the block."""
        previous = self._shielded
        self._shielded = True
        try:
            yield
        finally:
            self._shielded = previous

    def __enter__(self) -> "CancellationToken":
        self.install()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.restore()
        return False
