"""
Mutual exclusion for restores.

The engine itself does not serialize restores against a store. Callers that
can run more than one restore at a time (a web process, a scheduler thread)
must share one RestoreGate per store. A second restore arriving while the
first is still running is refused rather than queued.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager

from sitebackup.errors import RestoreInProgressError

logger = logging.getLogger(__name__)


class RestoreGate:
    """Non-blocking single-flight lock around restore operations."""

    def __init__(self, name: str = "restore") -> None:
        self.name = name
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        """True while an operation holds the gate."""
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Generator[None, None, None]:
        """
        Hold the gate for the duration of the block.

        Raises:
            RestoreInProgressError: If the gate is already held.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning(f"Rejected concurrent {self.name}: another one is in progress")
            raise RestoreInProgressError(
                f"A {self.name} is already in progress", phase="stage"
            )
        try:
            yield
        finally:
            self._lock.release()
